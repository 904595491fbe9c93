"""Executor interface: performs the mutation behind a validated intent."""
from abc import ABC, abstractmethod
from typing import Any
import structlog
from ..adapters.base import AppendResult
from ..event_models import Event, EventStage, create_event
from ..services.event_store import EventStore
from ..validator.engine import resolve_request_id

log = structlog.get_logger()


class Executor(ABC):
    """
    Handles ``<aggregate>.<action>.validated`` and emits ``.completed``.

    Subclasses set ``aggregate`` and ``action`` and implement ``execute``.
    The returned dict becomes the completed event's data; its ``id`` (when
    present) becomes the completed event's aggregate id.
    """

    aggregate: str = ""
    action: str = ""

    def __init__(self, store: EventStore):
        if not self.aggregate or not self.action:
            raise ValueError(f"{type(self).__name__} must set aggregate and action")
        self._store = store

    @property
    def name(self) -> str:
        return type(self).__name__

    @property
    def event_type(self) -> str:
        return f"{self.aggregate}.{self.action}.{EventStage.VALIDATED.value}"

    @property
    def completed_type(self) -> str:
        return f"{self.aggregate}.{self.action}.{EventStage.COMPLETED.value}"

    @abstractmethod
    async def execute(self, event: Event) -> dict[str, Any]:
        """
        Perform the mutation.

        Args:
            event: The validated event

        Returns:
            Result data, ideally including the affected ``id``
        """
        pass

    async def handle(self, event: Event) -> AppendResult:
        """Run ``execute`` and append the completed event exactly once per validated event."""
        result = await self.execute(event)
        correlation_id = event.correlation_id or event.id
        request_id = resolve_request_id(event)

        completed = create_event(
            self.completed_type,
            {**result, "requestId": request_id},
            event.user_id,
            aggregate_id=str(result["id"]) if result.get("id") else event.aggregate_id,
            source=event.source,
            correlation_id=correlation_id,
            causation_id=event.id,
            request_id=request_id,
            metadata=event.metadata,
        )
        appended = await self._store.append(
            completed, idempotency_key=f"{correlation_id}:{event.id}:{self.completed_type}"
        )
        log.info(
            "executor.completed",
            executor=self.name,
            event_id=event.id,
            completed_id=appended.event.id,
            duplicate=appended.duplicate,
        )
        return appended
