"""Fan lifecycle events out to the enabled transports.

Event delivery is a side effect of lifecycle work, never a precondition for
it: :meth:`EventBus.emit` records transport failures in its report and logs
them, but does not raise.
"""
from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Protocol

from .models import Event, EventName

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class DeliveryResult:
    """Outcome of handing one event to one transport."""

    transport: str
    delivered: bool
    detail: str = ""


class EventTransport(Protocol):
    """Interface implemented by the socket and webhook transports."""

    name: str

    @property
    def enabled(self) -> bool: ...

    def send(self, event: Event) -> str: ...

    def test(self) -> DeliveryResult: ...

    def status(self) -> dict[str, object]: ...


@dataclass(slots=True)
class EmitReport:
    """Per-transport results for a single emitted event."""

    event: Event
    results: list[DeliveryResult] = field(default_factory=list)

    @property
    def failures(self) -> list[DeliveryResult]:
        """Results for transports that failed to deliver."""
        return [result for result in self.results if not result.delivered]


class EventBus:
    """Dispatch events to each enabled transport independently."""

    def __init__(self, transports: Sequence[EventTransport] = ()) -> None:
        """Register *transports*; disabled ones are skipped at emit time."""
        self.transports = list(transports)
        self.history: list[EmitReport] = []

    def enabled_transports(self) -> list[EventTransport]:
        """Return the transports currently enabled."""
        return [transport for transport in self.transports if transport.enabled]

    def emit(self, name: EventName, instance: str, **payload: object) -> EmitReport:
        """Deliver *name* for *instance* to every enabled transport."""
        event = Event(name=name, instance=instance, payload=payload)
        report = EmitReport(event=event)
        for transport in self.enabled_transports():
            try:
                detail = transport.send(event)
            except Exception as exc:  # noqa: BLE001 - delivery is best effort
                LOGGER.warning(
                    "Event %s for %s not delivered via %s: %s",
                    name.value,
                    instance,
                    transport.name,
                    exc,
                )
                report.results.append(DeliveryResult(transport.name, False, str(exc)))
                continue
            report.results.append(DeliveryResult(transport.name, True, detail))
        self.history.append(report)
        return report

    def test_all(self) -> list[DeliveryResult]:
        """Send a test event through every enabled transport."""
        return [transport.test() for transport in self.enabled_transports()]

    def status(self) -> list[dict[str, object]]:
        """Return status mappings for every registered transport."""
        return [transport.status() for transport in self.transports]

    def emitted(self) -> list[EventName]:
        """Names of events emitted so far in this invocation."""
        return [report.event.name for report in self.history]


__all__ = ["DeliveryResult", "EmitReport", "EventBus", "EventTransport"]
