"""In-memory event store adapter."""
import asyncio
import structlog
from .base import AppendResult, EventFilters, EventStoreAdapter, correlation_order
from ..errors import VersionConflictError
from ..event_models import Event, StoredEvent

log = structlog.get_logger()


class InMemoryEventStore(EventStoreAdapter):
    """In-memory implementation of the event store adapter."""

    def __init__(self):
        self._log: list[StoredEvent] = []
        self._by_id: dict[str, StoredEvent] = {}
        self._versions: dict[str, int] = {}
        self._idempotency: dict[str, str] = {}
        self._lock = asyncio.Lock()

    async def append(
        self,
        event: Event,
        expected_version: int | None = None,
        idempotency_key: str | None = None,
    ) -> AppendResult:
        """Append event to the in-memory log."""
        async with self._lock:
            if idempotency_key is not None and idempotency_key in self._idempotency:
                existing = self._by_id[self._idempotency[idempotency_key]]
                log.info(
                    "event.duplicate",
                    id=existing.id,
                    type=existing.type,
                    idempotency_key=idempotency_key,
                    adapter="memory",
                )
                return AppendResult(event=existing, duplicate=True)

            version = None
            if event.aggregate_id is not None:
                current = self._versions.get(event.aggregate_id, 0)
                if expected_version is not None and expected_version != current:
                    raise VersionConflictError(event.aggregate_id, expected_version, current)
                version = current + 1
                self._versions[event.aggregate_id] = version

            stored = StoredEvent.from_event(event, sequence=len(self._log) + 1, aggregate_version=version)
            self._log.append(stored)
            self._by_id[stored.id] = stored
            if idempotency_key is not None:
                self._idempotency[idempotency_key] = stored.id

        log.info(
            "event.stored",
            id=stored.id,
            type=stored.type,
            sequence=stored.sequence,
            adapter="memory",
        )
        return AppendResult(event=stored)

    async def find_by_id(self, event_id: str) -> StoredEvent | None:
        return self._by_id.get(event_id)

    async def get_correlated_events(self, correlation_id: str) -> list[StoredEvent]:
        events = [e for e in self._log if e.correlation_id == correlation_id]
        return sorted(events, key=correlation_order)

    async def get_aggregate_stream(self, aggregate_id: str, from_version: int = 0) -> list[StoredEvent]:
        return [
            e for e in self._log
            if e.aggregate_id == aggregate_id and (e.aggregate_version or 0) > from_version
        ]

    async def get_aggregate_version(self, aggregate_id: str) -> int:
        return self._versions.get(aggregate_id, 0)

    async def search_events(self, filters: EventFilters) -> list[StoredEvent]:
        """Search the log newest first."""
        matched = [e for e in reversed(self._log) if filters.matches(e)]
        return matched[filters.offset:filters.offset + filters.limit]

    async def count_events(self, filters: EventFilters) -> int:
        return sum(1 for e in self._log if filters.matches(e))

    async def health_check(self) -> bool:
        """In-memory adapter is always healthy."""
        return True
