"""Tests for event store adapters."""
import asyncio
from datetime import timedelta
import pytest
from unittest.mock import MagicMock, patch
import orjson
from redis.exceptions import ConnectionError as RedisConnectionError
from intentflow.adapters.base import EventFilters
from intentflow.adapters.memory import InMemoryEventStore
from intentflow.adapters.redis_stream import RedisEventStore
from intentflow.errors import StoreUnavailableError, VersionConflictError
from intentflow.event_models import StoredEvent, create_event, serialize_event


def _event(type="notes.create.requested", user_id="user-1", **kwargs):
    return create_event(type, kwargs.pop("data", {}), user_id, **kwargs)


@pytest.mark.asyncio
async def test_memory_append_assigns_sequence_and_version():
    store = InMemoryEventStore()

    first = await store.append(_event(aggregate_id="n1"))
    second = await store.append(_event(type="notes.update.requested", aggregate_id="n1"))
    other = await store.append(_event())

    assert first.event.sequence == 1
    assert second.event.sequence == 2
    assert other.event.sequence == 3
    assert first.event.aggregate_version == 1
    assert second.event.aggregate_version == 2
    assert other.event.aggregate_version is None
    assert first.event.aggregate_type == "notes"
    assert await store.get_aggregate_version("n1") == 2
    assert await store.get_aggregate_version("unknown") == 0


@pytest.mark.asyncio
async def test_memory_version_conflict():
    store = InMemoryEventStore()
    await store.append(_event(aggregate_id="n1"), expected_version=0)

    with pytest.raises(VersionConflictError) as exc:
        await store.append(_event(aggregate_id="n1"), expected_version=0)

    assert exc.value.expected == 0
    assert exc.value.actual == 1
    # Nothing was written by the failed append
    assert await store.count_events(EventFilters()) == 1


@pytest.mark.asyncio
async def test_memory_concurrent_same_aggregate_only_one_wins():
    store = InMemoryEventStore()

    results = await asyncio.gather(
        *(store.append(_event(aggregate_id="n1"), expected_version=0) for _ in range(5)),
        return_exceptions=True,
    )

    assert sum(1 for r in results if not isinstance(r, Exception)) == 1
    assert sum(1 for r in results if isinstance(r, VersionConflictError)) == 4


@pytest.mark.asyncio
async def test_memory_idempotency_key():
    store = InMemoryEventStore()
    first = await store.append(_event(), idempotency_key="corr:notes.create.validated")
    again = await store.append(_event(), idempotency_key="corr:notes.create.validated")

    assert again.duplicate is True
    assert again.event.id == first.event.id
    assert await store.count_events(EventFilters()) == 1


@pytest.mark.asyncio
async def test_memory_find_by_id():
    store = InMemoryEventStore()
    stored = (await store.append(_event())).event

    assert await store.find_by_id(stored.id) == stored
    assert await store.find_by_id("missing") is None


@pytest.mark.asyncio
async def test_memory_correlated_events_ordered_by_timestamp():
    store = InMemoryEventStore()
    root = _event(correlation_id="c1")
    late = root.model_copy(update={"id": "late", "timestamp": root.timestamp + timedelta(seconds=5)})
    early = root.model_copy(update={"id": "early", "timestamp": root.timestamp - timedelta(seconds=5)})

    await store.append(late)
    await store.append(root)
    await store.append(early)
    await store.append(_event(correlation_id="c2"))

    events = await store.get_correlated_events("c1")
    assert [e.id for e in events] == ["early", root.id, "late"]


@pytest.mark.asyncio
async def test_memory_aggregate_stream():
    store = InMemoryEventStore()
    for i in range(4):
        await store.append(_event(aggregate_id="n1", data={"i": i}))
    await store.append(_event(aggregate_id="n2"))

    stream = await store.get_aggregate_stream("n1", from_version=2)
    assert [e.aggregate_version for e in stream] == [3, 4]
    assert [e.data["i"] for e in stream] == [2, 3]


@pytest.mark.asyncio
async def test_memory_search_and_count():
    store = InMemoryEventStore()
    for i in range(5):
        await store.append(_event(user_id="alice", data={"i": i}))
    await store.append(_event(type="tasks.create.requested", user_id="bob"))

    page = await store.search_events(EventFilters(user_id="alice", limit=2))
    assert [e.data["i"] for e in page] == [4, 3]

    page2 = await store.search_events(EventFilters(user_id="alice", limit=2, offset=2))
    assert [e.data["i"] for e in page2] == [2, 1]

    assert await store.count_events(EventFilters(user_id="alice")) == 5
    assert await store.count_events(EventFilters(aggregate_type="tasks")) == 1
    assert await store.count_events(EventFilters(type="notes.create.requested")) == 5


@pytest.mark.asyncio
async def test_memory_search_time_range():
    store = InMemoryEventStore()
    stored = (await store.append(_event())).event

    assert await store.count_events(EventFilters(from_ts=stored.timestamp + timedelta(seconds=1))) == 0
    assert await store.count_events(EventFilters(to_ts=stored.timestamp + timedelta(seconds=1))) == 1


@pytest.mark.asyncio
async def test_memory_adapter_health_check():
    assert await InMemoryEventStore().health_check() is True


def _redis_mock(mock_redis_class):
    mock_redis = MagicMock()
    mock_redis_class.from_url.return_value = mock_redis
    pipe = MagicMock()
    mock_redis.pipeline.return_value.__enter__.return_value = pipe
    return mock_redis, pipe


@pytest.mark.asyncio
async def test_redis_append_writes_stream_and_indexes():
    with patch("intentflow.adapters.redis_stream.Redis") as mock_redis_class:
        mock_redis, pipe = _redis_mock(mock_redis_class)
        mock_redis.incr.return_value = 42
        pipe.get.return_value = None  # no idempotency hit, version 0

        store = RedisEventStore(redis_url="redis://localhost:6379")
        event = _event(aggregate_id="n1", correlation_id="c1")
        result = await store.append(event, expected_version=0, idempotency_key="c1:notes.create.requested")

        assert result.duplicate is False
        assert result.event.sequence == 42
        assert result.event.aggregate_version == 1

        pipe.watch.assert_called_once_with(
            "intentflow:aggregate:n1:version", "intentflow:idempotency:c1:notes.create.requested"
        )
        pipe.multi.assert_called_once()
        pipe.execute.assert_called_once()

        stream_key, fields = pipe.xadd.call_args[0][:2]
        assert stream_key == "intentflow:events"
        parsed = orjson.loads(fields["data"])
        assert parsed["id"] == event.id
        assert parsed["aggregateVersion"] == 1

        pushed = {c[0][0] for c in pipe.rpush.call_args_list}
        assert pushed == {"intentflow:aggregate:n1:events", "intentflow:correlation:c1"}


@pytest.mark.asyncio
async def test_redis_append_version_conflict():
    with patch("intentflow.adapters.redis_stream.Redis") as mock_redis_class:
        mock_redis, pipe = _redis_mock(mock_redis_class)
        mock_redis.incr.return_value = 1
        pipe.get.return_value = b"3"

        store = RedisEventStore(redis_url="redis://localhost:6379")
        with pytest.raises(VersionConflictError) as exc:
            await store.append(_event(aggregate_id="n1"), expected_version=1)

        assert exc.value.actual == 3
        pipe.execute.assert_not_called()


@pytest.mark.asyncio
async def test_redis_append_duplicate_returns_existing():
    existing = StoredEvent.from_event(_event(), sequence=5, aggregate_version=None)
    with patch("intentflow.adapters.redis_stream.Redis") as mock_redis_class:
        mock_redis, pipe = _redis_mock(mock_redis_class)
        mock_redis.incr.return_value = 6
        pipe.get.return_value = existing.id.encode()
        mock_redis.get.return_value = orjson.dumps(serialize_event(existing))

        store = RedisEventStore(redis_url="redis://localhost:6379")
        result = await store.append(_event(), idempotency_key="k")

        assert result.duplicate is True
        assert result.event == existing
        pipe.execute.assert_not_called()


@pytest.mark.asyncio
async def test_redis_failure_raises_store_unavailable():
    with patch("intentflow.adapters.redis_stream.Redis") as mock_redis_class:
        mock_redis, _ = _redis_mock(mock_redis_class)
        mock_redis.incr.side_effect = RedisConnectionError("connection refused")

        store = RedisEventStore(redis_url="redis://localhost:6379")
        with pytest.raises(StoreUnavailableError):
            await store.append(_event())


@pytest.mark.asyncio
async def test_redis_search_filters_newest_first():
    events = [
        StoredEvent.from_event(_event(user_id=user, data={"i": i}), sequence=i + 1, aggregate_version=None)
        for i, user in enumerate(["alice", "bob", "alice"])
    ]
    with patch("intentflow.adapters.redis_stream.Redis") as mock_redis_class:
        mock_redis, _ = _redis_mock(mock_redis_class)
        mock_redis.xrevrange.return_value = [
            (f"{e.sequence}-0".encode(), {b"data": orjson.dumps(serialize_event(e))})
            for e in reversed(events)
        ]

        store = RedisEventStore(redis_url="redis://localhost:6379")
        found = await store.search_events(EventFilters(user_id="alice"))
        count = await store.count_events(EventFilters(user_id="alice"))

        assert [e.data["i"] for e in found] == [2, 0]
        assert count == 2


@pytest.mark.asyncio
async def test_redis_correlated_events():
    a = StoredEvent.from_event(_event(correlation_id="c1"), sequence=1, aggregate_version=None)
    b = StoredEvent.from_event(_event(correlation_id="c1"), sequence=2, aggregate_version=None)
    with patch("intentflow.adapters.redis_stream.Redis") as mock_redis_class:
        mock_redis, _ = _redis_mock(mock_redis_class)
        mock_redis.lrange.return_value = [b.id.encode(), a.id.encode()]
        mock_redis.mget.return_value = [orjson.dumps(serialize_event(b)), orjson.dumps(serialize_event(a))]

        store = RedisEventStore(redis_url="redis://localhost:6379")
        events = await store.get_correlated_events("c1")

        mock_redis.lrange.assert_called_once_with("intentflow:correlation:c1", 0, -1)
        assert [e.id for e in events] == [a.id, b.id]


@pytest.mark.asyncio
async def test_redis_health_check():
    with patch("intentflow.adapters.redis_stream.Redis") as mock_redis_class:
        mock_redis, _ = _redis_mock(mock_redis_class)
        mock_redis.ping.return_value = True

        store = RedisEventStore(redis_url="redis://localhost:6379")
        assert await store.health_check() is True

        mock_redis.ping.side_effect = RedisConnectionError("down")
        assert await store.health_check() is False


def test_redis_close_drops_client():
    with patch("intentflow.adapters.redis_stream.Redis") as mock_redis_class:
        mock_redis, _ = _redis_mock(mock_redis_class)

        store = RedisEventStore(redis_url="redis://localhost:6379")
        store._get_client()
        store.close()

        mock_redis.close.assert_called_once()
        assert store._client is None
