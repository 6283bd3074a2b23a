"""Deliver events to local listeners over Unix domain sockets."""
from __future__ import annotations

import logging
import socket
from collections.abc import Sequence
from pathlib import Path

from ..errors import TransportFailureError
from .bus import DeliveryResult
from .models import Event, EventName

LOGGER = logging.getLogger(__name__)

_NO_LISTENER = (FileNotFoundError, ConnectionRefusedError)


class SocketTransport:
    """Write one JSON line per event to each configured socket.

    A socket path with nobody listening is not an error: the event is simply
    dropped for that path.
    """

    name = "socket"

    def __init__(
        self,
        paths: Sequence[Path],
        *,
        enabled: bool = False,
        timeout: float = 1.0,
    ) -> None:
        """Configure the socket paths and send timeout."""
        self.paths = [Path(path) for path in paths]
        self._enabled = enabled
        self.timeout = timeout

    @property
    def enabled(self) -> bool:
        return self._enabled

    def send(self, event: Event) -> str:
        """Send *event*; return a short summary of where it went."""
        data = event.to_json() + b"\n"
        delivered: list[str] = []
        dropped: list[str] = []
        errors: list[str] = []
        for path in self.paths:
            try:
                self._write(path, data)
            except _NO_LISTENER:
                LOGGER.debug("No listener on %s; dropped %s", path, event.name.value)
                dropped.append(str(path))
                continue
            except OSError as exc:
                errors.append(f"{path}: {exc}")
                continue
            delivered.append(str(path))

        if errors and not delivered:
            raise TransportFailureError("; ".join(errors))
        if delivered:
            return f"delivered to {', '.join(delivered)}"
        return "no listener"

    def _write(self, path: Path, data: bytes) -> None:
        if not path.exists():
            raise FileNotFoundError(str(path))
        with socket.socket(socket.AF_UNIX, socket.SOCK_STREAM) as sock:
            sock.settimeout(self.timeout)
            sock.connect(str(path))
            sock.sendall(data)

    def test(self) -> DeliveryResult:
        """Send a synthetic ``socket_test`` event."""
        event = Event(
            name=EventName.SOCKET_TEST,
            instance="socket-test",
            payload={"message": "Socket transport test from gsmctl"},
        )
        try:
            detail = self.send(event)
        except TransportFailureError as exc:
            return DeliveryResult(self.name, False, str(exc))
        return DeliveryResult(self.name, detail != "no listener", detail)

    def status(self) -> dict[str, object]:
        """Return the transport configuration and listener presence."""
        return {
            "transport": self.name,
            "enabled": self.enabled,
            "paths": [
                {"path": str(path), "present": path.exists()} for path in self.paths
            ],
            "timeout_seconds": self.timeout,
        }


__all__ = ["SocketTransport"]
