"""Base adapter interface for event store backends."""
from abc import ABC, abstractmethod
from datetime import datetime
from pydantic import BaseModel, Field
from ..event_models import Event, StoredEvent

MAX_SEARCH_LIMIT = 500


class EventFilters(BaseModel):
    """Search filters shared by ``search_events`` and ``count_events``."""

    user_id: str | None = None
    type: str | None = None
    aggregate_id: str | None = None
    aggregate_type: str | None = None
    correlation_id: str | None = None
    from_ts: datetime | None = None
    to_ts: datetime | None = None
    limit: int = Field(50, ge=1, le=MAX_SEARCH_LIMIT)
    offset: int = Field(0, ge=0)

    def matches(self, event: StoredEvent) -> bool:
        if self.user_id is not None and event.user_id != self.user_id:
            return False
        if self.type is not None and event.type != self.type:
            return False
        if self.aggregate_id is not None and event.aggregate_id != self.aggregate_id:
            return False
        if self.aggregate_type is not None and event.aggregate_type != self.aggregate_type:
            return False
        if self.correlation_id is not None and event.correlation_id != self.correlation_id:
            return False
        if self.from_ts is not None and event.timestamp < self.from_ts:
            return False
        if self.to_ts is not None and event.timestamp > self.to_ts:
            return False
        return True


class AppendResult(BaseModel):
    event: StoredEvent
    duplicate: bool = False
    hook_errors: list[str] = Field(default_factory=list)


class EventStoreAdapter(ABC):
    """Abstract interface for event store backend implementations."""

    @abstractmethod
    async def append(
        self,
        event: Event,
        expected_version: int | None = None,
        idempotency_key: str | None = None,
    ) -> AppendResult:
        """
        Append an event to the log.

        Args:
            event: The event to persist
            expected_version: Aggregate version the caller last read
            idempotency_key: Key that makes the append happen at most once

        Returns:
            The stored event, or the previously stored one when the key was used

        Raises:
            VersionConflictError: expected_version does not match the aggregate
        """
        pass

    @abstractmethod
    async def find_by_id(self, event_id: str) -> StoredEvent | None:
        pass

    @abstractmethod
    async def get_correlated_events(self, correlation_id: str) -> list[StoredEvent]:
        """
        Retrieve every event of one workflow.

        Returns:
            Events ordered by timestamp, ties broken by sequence
        """
        pass

    @abstractmethod
    async def get_aggregate_stream(self, aggregate_id: str, from_version: int = 0) -> list[StoredEvent]:
        """Events of one aggregate with a version above ``from_version``, oldest first."""
        pass

    @abstractmethod
    async def get_aggregate_version(self, aggregate_id: str) -> int:
        pass

    @abstractmethod
    async def search_events(self, filters: EventFilters) -> list[StoredEvent]:
        """
        Search the log, newest first.

        Args:
            filters: Field filters plus limit/offset paging

        Returns:
            One page of matching events
        """
        pass

    @abstractmethod
    async def count_events(self, filters: EventFilters) -> int:
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """
        Check if the backend is healthy and accessible.

        Returns:
            True if backend is healthy, False otherwise
        """
        pass

    def close(self):
        """Release backend connections. No-op for backends without any."""
        pass


def correlation_order(event: StoredEvent) -> tuple:
    return (event.timestamp, event.sequence)
