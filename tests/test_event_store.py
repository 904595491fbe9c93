"""Tests for the event store service."""
import pytest
from unittest.mock import AsyncMock, patch
from intentflow.adapters.base import EventFilters
from intentflow.adapters.memory import InMemoryEventStore
from intentflow.adapters.redis_stream import RedisEventStore
from intentflow.auth.identity import Identity, identity_for
from intentflow.config import Settings
from intentflow.event_models import create_event
from intentflow.metrics import Metrics
from intentflow.services.event_store import EventStore, create_default_adapter


@pytest.fixture
def store():
    return EventStore(InMemoryEventStore(), metrics=Metrics())


@pytest.mark.asyncio
async def test_append_notifies_subscribers(store):
    seen = []

    async def hook(event):
        seen.append(event.id)

    store.subscribe(hook)
    store.subscribe(hook)  # subscribing twice is a no-op
    result = await store.append(create_event("notes.create.requested", {}, "u1"))

    assert seen == [result.event.id]
    assert result.hook_errors == []


@pytest.mark.asyncio
async def test_subscriber_failure_does_not_fail_append(store):
    calls = []

    async def broken(event):
        raise RuntimeError("boom")

    async def healthy(event):
        calls.append(event.id)

    store.subscribe(broken)
    store.subscribe(healthy)

    with patch("intentflow.services.event_store.log") as mock_log:
        result = await store.append(create_event("notes.create.requested", {}, "u1"))

    assert calls == [result.event.id]
    assert len(result.hook_errors) == 1
    assert "boom" in result.hook_errors[0]
    assert mock_log.error.call_args[0][0] == "event_store.subscriber_failed"
    assert await store.find_by_id(result.event.id) is not None


@pytest.mark.asyncio
async def test_duplicate_append_skips_subscribers(store):
    hook = AsyncMock()
    store.subscribe(hook)

    first = await store.append(create_event("notes.create.validated", {}, "u1"), idempotency_key="c:k")
    second = await store.append(create_event("notes.create.validated", {}, "u1"), idempotency_key="c:k")

    assert second.duplicate is True
    assert second.event.id == first.event.id
    hook.assert_awaited_once()


@pytest.mark.asyncio
async def test_unsubscribe(store):
    hook = AsyncMock()
    store.subscribe(hook)
    store.unsubscribe(hook)

    await store.append(create_event("notes.create.requested", {}, "u1"))
    hook.assert_not_awaited()


@pytest.mark.asyncio
async def test_reads_are_scoped_to_requester(store):
    alice = (await store.append(create_event("notes.create.requested", {}, "alice", correlation_id="c1"))).event
    await store.append(create_event("notes.create.requested", {}, "bob", correlation_id="c1"))

    as_bob = Identity("bob")
    as_system = Identity("system", is_system=True)

    assert await store.find_by_id(alice.id, requester=as_bob) is None
    assert await store.find_by_id(alice.id, requester=Identity("alice")) == alice
    assert await store.find_by_id(alice.id, requester=as_system) == alice

    assert len(await store.get_correlated_events("c1", requester=as_bob)) == 1
    assert len(await store.get_correlated_events("c1", requester=as_system)) == 2

    # A filter naming another tenant is overridden
    found = await store.search_events(EventFilters(user_id="alice"), requester=as_bob)
    assert {e.user_id for e in found} == {"bob"}
    assert await store.count_events(EventFilters(), requester=as_bob) == 1
    assert await store.count_events(EventFilters(), requester=as_system) == 2


def test_identity_for_system_users(settings):
    assert identity_for("admin", settings).is_system
    assert not identity_for("alice", settings).is_system


@pytest.mark.asyncio
async def test_aggregate_reads_delegate(store):
    await store.append(create_event("notes.create.requested", {}, "u1", aggregate_id="n1"))
    await store.append(create_event("notes.update.requested", {}, "u1", aggregate_id="n1"))

    assert await store.get_aggregate_version("n1") == 2
    assert len(await store.get_aggregate_stream("n1")) == 2
    assert await store.health_check() is True


def test_default_adapter_memory():
    settings = Settings(_env_file=None, STORE_ADAPTER="memory")
    assert isinstance(create_default_adapter(settings), InMemoryEventStore)


def test_default_adapter_redis_without_url_falls_back():
    settings = Settings(_env_file=None, STORE_ADAPTER="redis", REDIS_URL=None)
    with patch("intentflow.services.event_store.log") as mock_log:
        adapter = create_default_adapter(settings)

    assert isinstance(adapter, InMemoryEventStore)
    assert mock_log.warning.call_args[0][0] == "adapter.fallback"


def test_default_adapter_redis():
    settings = Settings(_env_file=None, STORE_ADAPTER="redis", REDIS_URL="redis://localhost:6379/0")
    adapter = create_default_adapter(settings)
    assert isinstance(adapter, RedisEventStore)
    assert adapter.prefix == "intentflow"
