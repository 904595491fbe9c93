"""Tests for realtime notifiers and the outcome broadcaster."""
import asyncio
import pytest
import httpx
import orjson
from unittest.mock import patch
from intentflow.adapters.memory import InMemoryEventStore
from intentflow.config import Settings
from intentflow.event_models import StoredEvent, as_workflow_root, create_event
from intentflow.metrics import Metrics
from intentflow.pipeline import build_pipeline
from intentflow.streaming.notifier import (
    HttpRealtimeNotifier,
    NotificationMessage,
    NullNotifier,
    safe_notify,
)
from intentflow.streaming.outcomes import OutcomeBroadcaster
from conftest import RecordingNotifier


def _stored(type, data=None, user_id="u1", **kwargs):
    return StoredEvent.from_event(create_event(type, data or {}, user_id, **kwargs), sequence=1, aggregate_version=None)


@pytest.mark.asyncio
async def test_http_notifier_posts_to_both_rooms():
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(200, json={"ok": True})

    notifier = HttpRealtimeNotifier("http://realtime.test/", transport=httpx.MockTransport(handler))
    message = NotificationMessage(type="intent:completed", data={"eventId": "e1"}, request_id="r1")

    result = await notifier.notify("u1", message, request_id="r1")

    assert result.success
    assert result.broadcast_count == 2
    assert [r.url.path for r in requests] == ["/rooms/user_u1/broadcast", "/rooms/request_r1/broadcast"]
    body = orjson.loads(requests[0].content)
    assert body["type"] == "intent:completed"
    assert body["requestId"] == "r1"
    assert body["status"] == "success"


@pytest.mark.asyncio
async def test_http_notifier_reports_failure():
    notifier = HttpRealtimeNotifier(
        "http://realtime.test", transport=httpx.MockTransport(lambda request: httpx.Response(503))
    )

    result = await notifier.notify("u1", NotificationMessage(type="intent:denied"))

    assert result.success is False
    assert result.broadcast_count == 0
    assert "503" in result.error


@pytest.mark.asyncio
async def test_safe_notify_swallows_notifier_errors():
    with patch("intentflow.streaming.notifier.log") as mock_log:
        result = await safe_notify(RecordingNotifier(fail=True), "u1", NotificationMessage(type="x"))

    assert result.success is False
    assert "realtime service down" in result.error
    assert mock_log.warning.call_args[0][0] == "realtime.broadcast_failed"


@pytest.mark.asyncio
async def test_safe_notify_without_notifier():
    assert await safe_notify(None, "u1", NotificationMessage(type="x")) is None
    assert (await safe_notify(NullNotifier(), "u1", NotificationMessage(type="x"))).success


@pytest.mark.asyncio
async def test_outcome_broadcaster_relays_terminal_stages():
    notifier = RecordingNotifier()
    broadcaster = OutcomeBroadcaster(notifier, metrics=Metrics())

    await broadcaster(_stored("notes.create.denied", {"denialReason": "nope"}, request_id="r1"))
    await broadcaster(_stored("notes.create.completed", {"requestId": "r2"}))
    await broadcaster(_stored("notes.create.validated"))
    await broadcaster(_stored("notes.create.completed", user_id=None))

    assert [m[1].type for m in notifier.messages] == ["intent:denied", "intent:completed"]
    denied_user, denied, denied_request = notifier.messages[0]
    assert denied_user == "u1"
    assert denied.status == "error"
    assert denied.data["denialReason"] == "nope"
    assert denied_request == "r1"
    assert notifier.messages[1][2] == "r2"


@pytest.mark.asyncio
async def test_outcome_broadcaster_failure_does_not_raise():
    broadcaster = OutcomeBroadcaster(RecordingNotifier(fail=True), metrics=Metrics())

    result = await broadcaster(_stored("notes.create.completed"))

    assert result.success is False


@pytest.mark.asyncio
async def test_realtime_outage_does_not_break_pipeline(settings):
    pipeline = build_pipeline(settings, adapter=InMemoryEventStore(), notifier=RecordingNotifier(fail=True))
    requested = as_workflow_root(create_event("notes.create.requested", {"source": "ai"}, "u1"))
    await pipeline.store.append(requested)

    results = await pipeline.runtime.run_until_idle()

    assert results[0].success
    assert await pipeline.proposals.count() == 1


class BlockingNotifier(RecordingNotifier):
    """Notifier that holds every delivery until released."""

    def __init__(self):
        super().__init__()
        self.release = asyncio.Event()

    async def notify(self, user_id, message, request_id=None):
        await self.release.wait()
        return await super().notify(user_id, message, request_id)


@pytest.mark.asyncio
async def test_append_does_not_wait_for_outcome_broadcast(settings):
    notifier = BlockingNotifier()
    pipeline = build_pipeline(settings, adapter=InMemoryEventStore(), notifier=notifier)
    completed = as_workflow_root(create_event("notes.create.completed", {"requestId": "r1"}, "u1"))

    result = await asyncio.wait_for(pipeline.store.append(completed), timeout=1)

    assert not result.duplicate
    assert result.hook_errors == []
    assert pipeline.runtime.pending == 1
    assert notifier.messages == []

    notifier.release.set()
    results = await pipeline.runtime.run_until_idle()

    assert [r.handler for r in results] == ["outcome_broadcaster"]
    assert [m[1].type for m in notifier.messages] == ["intent:completed"]


def test_http_notifier_timeout_comes_from_settings():
    settings = Settings(_env_file=None, REALTIME_URL="http://realtime.test", REALTIME_TIMEOUT=0.5)

    pipeline = build_pipeline(settings, adapter=InMemoryEventStore())

    assert isinstance(pipeline.notifier, HttpRealtimeNotifier)
    assert pipeline.notifier._timeout == 0.5
