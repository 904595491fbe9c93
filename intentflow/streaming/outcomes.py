"""Push terminal outcomes (denied, completed) to the user who asked for them."""
import structlog
from .notifier import NotificationMessage, RealtimeNotifier, safe_notify
from ..event_models import EventStage, StoredEvent
from ..metrics import Metrics

log = structlog.get_logger()

NOTIFIED_STAGES = {
    EventStage.DENIED.value: ("intent:denied", "error"),
    EventStage.COMPLETED.value: ("intent:completed", "success"),
}


class OutcomeBroadcaster:
    """Worker handler that relays ``*.denied`` and ``*.completed`` events to their owner."""

    def __init__(self, notifier: RealtimeNotifier, metrics: Metrics | None = None):
        self._notifier = notifier
        self._metrics = metrics or Metrics()

    async def __call__(self, event: StoredEvent):
        stage = event.type.rsplit(".", 1)[-1]
        if stage not in NOTIFIED_STAGES or not event.user_id:
            return None

        message_type, status = NOTIFIED_STAGES[stage]
        request_id = event.request_id or event.data.get("requestId")
        message = NotificationMessage(
            type=message_type,
            data={
                "eventId": event.id,
                "type": event.type,
                "aggregateId": event.aggregate_id,
                "correlationId": event.correlation_id,
                "denialReason": event.data.get("denialReason"),
            },
            request_id=request_id,
            status=status,
        )
        result = await safe_notify(self._notifier, event.user_id, message, request_id=request_id)
        self._metrics.record_broadcast(result.success)
        log.debug(
            "realtime.outcome_sent",
            event_id=event.id,
            message_type=message_type,
            success=result.success,
            broadcast_count=result.broadcast_count,
        )
        return result
