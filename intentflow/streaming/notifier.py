"""Realtime notification of pipeline outcomes.

Notifiers are best-effort: every call returns a ``BroadcastResult`` instead of
raising, and failures are logged as ``realtime.broadcast_failed`` so they are
never mistaken for a failed state transition.
"""
from datetime import datetime, timezone
from typing import Any, Literal, Protocol, runtime_checkable
import httpx
import structlog
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

log = structlog.get_logger()


def user_room(user_id: str) -> str:
    return f"user_{user_id}"


def request_room(request_id: str) -> str:
    return f"request_{request_id}"


class NotificationMessage(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    type: str = Field(..., description="e.g. proposal:created, intent:denied, intent:completed")
    data: dict[str, Any] = Field(default_factory=dict)
    request_id: str | None = None
    status: Literal["success", "error", "pending"] = "success"
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class BroadcastResult(BaseModel):
    success: bool
    broadcast_count: int = 0
    error: str | None = None


@runtime_checkable
class RealtimeNotifier(Protocol):
    async def notify(
        self, user_id: str, message: NotificationMessage, request_id: str | None = None
    ) -> BroadcastResult:
        ...


async def safe_notify(
    notifier: RealtimeNotifier | None,
    user_id: str,
    message: NotificationMessage,
    request_id: str | None = None,
) -> BroadcastResult | None:
    """Deliver through ``notifier`` without ever letting it raise into the caller."""
    if notifier is None:
        return None
    try:
        result = await notifier.notify(user_id, message, request_id=request_id)
    except Exception as e:
        log.warning(
            "realtime.broadcast_failed",
            user_id=user_id,
            request_id=request_id,
            message_type=message.type,
            error=str(e),
            error_type=type(e).__name__,
        )
        return BroadcastResult(success=False, error=str(e))
    return result


class NullNotifier:
    """Notifier that drops every message."""

    async def notify(
        self, user_id: str, message: NotificationMessage, request_id: str | None = None
    ) -> BroadcastResult:
        return BroadcastResult(success=True, broadcast_count=0)


class HttpRealtimeNotifier:
    """Publish messages to an external realtime service over HTTP.

    Each room is addressed as ``POST {base_url}/rooms/{room}/broadcast``.
    """

    def __init__(self, base_url: str, timeout: float = 5.0, transport: httpx.AsyncBaseTransport | None = None):
        """
        Args:
            base_url: Realtime service URL
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (tests use ``httpx.MockTransport``)
        """
        self.base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    async def notify(
        self, user_id: str, message: NotificationMessage, request_id: str | None = None
    ) -> BroadcastResult:
        rooms = [user_room(user_id)]
        if request_id:
            rooms.append(request_room(request_id))

        payload = message.to_wire()
        sent = 0
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                for room in rooms:
                    response = await client.post(f"{self.base_url}/rooms/{room}/broadcast", json=payload)
                    response.raise_for_status()
                    sent += 1
        except httpx.HTTPError as e:
            log.warning(
                "realtime.broadcast_failed",
                user_id=user_id,
                request_id=request_id,
                message_type=message.type,
                sent=sent,
                error=str(e),
            )
            return BroadcastResult(success=False, broadcast_count=sent, error=str(e))

        log.debug("realtime.broadcast", message_type=message.type, rooms=rooms)
        return BroadcastResult(success=True, broadcast_count=sent)
