"""Event store backends."""
from .base import AppendResult, EventFilters, EventStoreAdapter
from .memory import InMemoryEventStore
from .redis_stream import RedisEventStore

__all__ = [
    "AppendResult",
    "EventFilters",
    "EventStoreAdapter",
    "InMemoryEventStore",
    "RedisEventStore",
]
