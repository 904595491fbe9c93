"""Event store service with pluggable backend adapters and append subscribers."""
import asyncio
import time
from typing import Awaitable, Callable
import structlog
from ..adapters.base import AppendResult, EventFilters, EventStoreAdapter
from ..adapters.memory import InMemoryEventStore
from ..adapters.redis_stream import RedisEventStore
from ..auth.identity import Identity
from ..config import Settings
from ..event_models import Event, StoredEvent, event_to_json
from ..metrics import Metrics

log = structlog.get_logger()

EventHook = Callable[[StoredEvent], Awaitable[None]]


def _hook_name(hook: EventHook) -> str:
    return getattr(hook, "__qualname__", None) or type(hook).__name__


class EventStore:
    """
    Append-only event log that delegates storage to an adapter.

    Subscribers registered with ``subscribe`` are notified after every new
    append. Their failures are logged and reported on the ``AppendResult`` but
    never fail the append itself.
    """

    def __init__(self, adapter: EventStoreAdapter, metrics: Metrics | None = None):
        """
        Initialize event store.

        Args:
            adapter: Backend adapter to use
            metrics: Metrics sink (a private one is created when omitted)
        """
        self._adapter = adapter
        self._metrics = metrics or Metrics()
        self._hooks: list[EventHook] = []

    @property
    def adapter(self) -> EventStoreAdapter:
        return self._adapter

    def subscribe(self, hook: EventHook):
        if hook not in self._hooks:
            self._hooks.append(hook)
            log.debug("event_store.subscribed", hook=_hook_name(hook))

    def unsubscribe(self, hook: EventHook):
        if hook in self._hooks:
            self._hooks.remove(hook)

    async def append(
        self,
        event: Event,
        expected_version: int | None = None,
        idempotency_key: str | None = None,
    ) -> AppendResult:
        """
        Append an event and notify subscribers.

        Args:
            event: The event to persist
            expected_version: Optimistic concurrency check for the aggregate
            idempotency_key: Dedupe key; a repeated key returns the first event

        Returns:
            AppendResult with the stored event, duplicate flag and hook errors
        """
        start_time = time.time()
        result = await self._adapter.append(
            event, expected_version=expected_version, idempotency_key=idempotency_key
        )
        stored = result.event

        if result.duplicate:
            self._metrics.record_duplicate(stored.type)
            return result

        self._metrics.record_event_appended(stored.type, len(event_to_json(stored)), start_time)
        log.info(
            "event.appended",
            id=stored.id,
            type=stored.type,
            user_id=stored.user_id,
            aggregate_id=stored.aggregate_id,
            correlation_id=stored.correlation_id,
            causation_id=stored.causation_id,
        )

        hook_errors = await self._notify(stored)
        if hook_errors:
            return result.model_copy(update={"hook_errors": hook_errors})
        return result

    async def _notify(self, stored: StoredEvent) -> list[str]:
        hooks = list(self._hooks)
        if not hooks:
            return []

        outcomes = await asyncio.gather(*(h(stored) for h in hooks), return_exceptions=True)

        errors = []
        for hook, outcome in zip(hooks, outcomes):
            if isinstance(outcome, Exception):
                name = _hook_name(hook)
                log.error(
                    "event_store.subscriber_failed",
                    hook=name,
                    event_id=stored.id,
                    type=stored.type,
                    error=str(outcome),
                    error_type=type(outcome).__name__,
                )
                self._metrics.record_subscriber_failure(name)
                errors.append(f"{name}: {outcome}")
        return errors

    async def find_by_id(self, event_id: str, requester: Identity | None = None) -> StoredEvent | None:
        event = await self._adapter.find_by_id(event_id)
        if event is None or (requester is not None and not requester.can_see(event.user_id)):
            return None
        return event

    async def get_correlated_events(
        self, correlation_id: str, requester: Identity | None = None
    ) -> list[StoredEvent]:
        events = await self._adapter.get_correlated_events(correlation_id)
        if requester is None:
            return events
        return [e for e in events if requester.can_see(e.user_id)]

    async def get_aggregate_stream(self, aggregate_id: str, from_version: int = 0) -> list[StoredEvent]:
        return await self._adapter.get_aggregate_stream(aggregate_id, from_version)

    async def get_aggregate_version(self, aggregate_id: str) -> int:
        return await self._adapter.get_aggregate_version(aggregate_id)

    async def search_events(
        self, filters: EventFilters, requester: Identity | None = None
    ) -> list[StoredEvent]:
        """Search events visible to ``requester`` (everything when omitted)."""
        return await self._adapter.search_events(_scoped(filters, requester))

    async def count_events(self, filters: EventFilters, requester: Identity | None = None) -> int:
        return await self._adapter.count_events(_scoped(filters, requester))

    async def health_check(self) -> bool:
        """Check backend adapter health."""
        return await self._adapter.health_check()

    def close(self):
        self._adapter.close()


def _scoped(filters: EventFilters, requester: Identity | None) -> EventFilters:
    """Force non-system requesters onto their own events."""
    if requester is None or requester.is_system:
        return filters
    return filters.model_copy(update={"user_id": requester.user_id})


def create_default_adapter(settings: Settings) -> EventStoreAdapter:
    """
    Create the adapter named by the STORE_ADAPTER setting.

    Returns:
        EventStoreAdapter, falling back to memory when Redis is not configured
    """
    if settings.STORE_ADAPTER == "redis":
        if not settings.REDIS_URL:
            log.warning(
                "adapter.fallback",
                requested="redis",
                actual="memory",
                reason="REDIS_URL not configured"
            )
            return InMemoryEventStore()

        log.info("adapter.selected", type="redis", url=str(settings.REDIS_URL))
        return RedisEventStore(str(settings.REDIS_URL), key_prefix=settings.REDIS_KEY_PREFIX)

    log.info("adapter.selected", type="memory")
    return InMemoryEventStore()
