"""Shared fixtures: an in-memory pipeline with a recording notifier."""
import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from intentflow.adapters.memory import InMemoryEventStore
from intentflow.config import Settings
from intentflow.main import create_app
from intentflow.pipeline import build_pipeline
from intentflow.streaming.notifier import BroadcastResult


class RecordingNotifier:
    """Notifier that remembers every message it was asked to deliver."""

    def __init__(self, fail: bool = False):
        self.messages = []
        self.fail = fail

    async def notify(self, user_id, message, request_id=None):
        if self.fail:
            raise ConnectionError("realtime service down")
        self.messages.append((user_id, message, request_id))
        return BroadcastResult(success=True, broadcast_count=1)

    def of_type(self, message_type):
        return [m for m in self.messages if m[1].type == message_type]


@pytest.fixture
def settings():
    return Settings(_env_file=None, STORE_ADAPTER="memory", LOG_JSON=False, SYSTEM_USER_IDS="system,admin")


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def pipeline(settings, notifier):
    return build_pipeline(settings, adapter=InMemoryEventStore(), notifier=notifier)


@pytest.fixture
def app(pipeline):
    return create_app(pipeline=pipeline)


@pytest_asyncio.fixture
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
