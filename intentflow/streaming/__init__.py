"""Realtime delivery of pipeline outcomes."""
from .notifier import (
    BroadcastResult,
    HttpRealtimeNotifier,
    NotificationMessage,
    NullNotifier,
    RealtimeNotifier,
)
from .outcomes import OutcomeBroadcaster
from .websocket import EventStreamManager, WebSocketNotifier

__all__ = [
    "BroadcastResult",
    "NotificationMessage",
    "RealtimeNotifier",
    "NullNotifier",
    "HttpRealtimeNotifier",
    "EventStreamManager",
    "WebSocketNotifier",
    "OutcomeBroadcaster",
]
