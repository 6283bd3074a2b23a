"""Lifecycle event notification."""
from __future__ import annotations

from .bus import DeliveryResult, EmitReport, EventBus, EventTransport
from .models import Event, EventName
from .socket_transport import SocketTransport
from .webhook import WebhookTransport

__all__ = [
    "DeliveryResult",
    "EmitReport",
    "Event",
    "EventBus",
    "EventName",
    "EventTransport",
    "SocketTransport",
    "WebhookTransport",
]
