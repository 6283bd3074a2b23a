"""Deliver events to HTTP endpoints.

Each event is POSTed as JSON to the primary URL and then, independently, to
the secondary URL when one is configured. Every destination gets
``1 + retry_count`` attempts with a short exponential backoff. Delivery
succeeds when at least one destination answered with a 2xx status.

When a secret is configured the body is signed with HMAC-SHA256 and the
base64-encoded raw digest is sent as ``X-GSM-Signature: sha256=<digest>``.
"""
from __future__ import annotations

import base64
import hashlib
import hmac
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

import httpx

from .. import __version__
from ..config import WebhookEventsConfig
from ..errors import TransportFailureError
from .bus import DeliveryResult
from .models import Event, EventName

LOGGER = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-GSM-Signature"
TIMESTAMP_HEADER = "X-GSM-Timestamp"
EVENT_HEADER = "X-GSM-Event"
RETRY_HEADER = "X-GSM-Retry-Count"


def sign_body(secret: str, body: bytes) -> str:
    """Return the signature header value for *body*."""
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).digest()
    return f"sha256={base64.b64encode(digest).decode('ascii')}"


@dataclass(frozen=True, slots=True)
class UrlDelivery:
    """Outcome for one destination URL."""

    url: str
    delivered: bool
    attempts: int
    detail: str


class WebhookTransport:
    """POST events to the configured webhook URLs."""

    name = "webhook"

    def __init__(
        self,
        config: WebhookEventsConfig,
        *,
        client: httpx.Client | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Store configuration; *client* is injected in tests."""
        self.config = config
        self._client = client
        self._sleep = sleep

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    def _headers(self, event: Event, body: bytes, attempt: int) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "User-Agent": f"gsmctl/{__version__}",
            TIMESTAMP_HEADER: str(int(event.timestamp.timestamp())),
            EVENT_HEADER: event.name.value,
            RETRY_HEADER: str(attempt),
        }
        if self.config.secret:
            headers[SIGNATURE_HEADER] = sign_body(self.config.secret, body)
        return headers

    def _deliver(self, client: httpx.Client, url: str, event: Event, body: bytes) -> UrlDelivery:
        attempts = 1 + self.config.retry_count
        detail = ""
        for attempt in range(attempts):
            if attempt:
                self._sleep(min(float(2 ** (attempt - 1)), self.config.timeout_seconds))
            try:
                response = client.post(
                    url,
                    content=body,
                    headers=self._headers(event, body, attempt),
                    timeout=self.config.timeout_seconds,
                )
            except (httpx.HTTPError, httpx.InvalidURL) as exc:
                detail = f"{type(exc).__name__}: {exc}"
                LOGGER.debug("Webhook attempt %d to %s failed: %s", attempt + 1, url, detail)
                continue
            if response.is_success:
                return UrlDelivery(url, True, attempt + 1, f"HTTP {response.status_code}")
            detail = f"HTTP {response.status_code}"
            LOGGER.debug("Webhook attempt %d to %s returned %s", attempt + 1, url, detail)
        return UrlDelivery(url, False, attempts, detail or "no attempts made")

    def deliver(self, event: Event) -> list[UrlDelivery]:
        """Send *event* to every configured URL and return per-URL outcomes."""
        urls = self.config.urls
        if not urls:
            raise TransportFailureError("No webhook URL is configured.")
        body = event.to_json()
        if self._client is not None:
            return [self._deliver(self._client, url, event, body) for url in urls]
        with httpx.Client(timeout=self.config.timeout_seconds) as local_client:
            return [self._deliver(local_client, url, event, body) for url in urls]

    def send(self, event: Event) -> str:
        """Deliver *event*; raise :class:`TransportFailureError` if no URL accepted it."""
        outcomes = self.deliver(event)
        delivered = [outcome.url for outcome in outcomes if outcome.delivered]
        if not delivered:
            summary = "; ".join(f"{outcome.url}: {outcome.detail}" for outcome in outcomes)
            raise TransportFailureError(f"Webhook delivery failed: {summary}")
        return f"delivered to {', '.join(delivered)}"

    def test(self) -> DeliveryResult:
        """POST a synthetic ``webhook_test`` event to each URL."""
        event = Event(
            name=EventName.WEBHOOK_TEST,
            instance="webhook-test",
            payload={"message": "Webhook transport test from gsmctl"},
        )
        try:
            outcomes = self.deliver(event)
        except TransportFailureError as exc:
            return DeliveryResult(self.name, False, str(exc))
        detail = ", ".join(
            f"{outcome.url}={'ok' if outcome.delivered else outcome.detail}"
            for outcome in outcomes
        )
        return DeliveryResult(self.name, any(o.delivered for o in outcomes), detail)

    def status(self) -> dict[str, object]:
        """Return the transport configuration (secret masked)."""
        return {
            "transport": self.name,
            "enabled": self.enabled,
            "urls": list(self.config.urls),
            "timeout_seconds": self.config.timeout_seconds,
            "retry_count": self.config.retry_count,
            "signed": bool(self.config.secret),
        }


__all__ = ["SIGNATURE_HEADER", "UrlDelivery", "WebhookTransport", "sign_body"]
