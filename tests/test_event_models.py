"""Tests for the event contract."""
from datetime import datetime, timezone
from unittest.mock import patch
import pytest
import orjson
from pydantic import BaseModel, ValidationError
from intentflow.errors import MalformedEventError, MalformedEventTypeError
from intentflow.event_models import (
    Event,
    EventSource,
    EventStage,
    StoredEvent,
    as_workflow_root,
    create_event,
    event_to_json,
    parse_event,
    parse_event_type,
    parse_stored_event,
    serialize_event,
)
from intentflow.event_schemas import EventSchemaRegistry, default_registry, has_ai_metadata
from intentflow.errors import EventDataValidationError, UnknownEventTypeError


def test_parse_event_type():
    name = parse_event_type("entities.create.requested")
    assert name.aggregate == "entities"
    assert name.action == "create"
    assert name.stage == "requested"
    assert str(name.with_stage(EventStage.VALIDATED)) == "entities.create.validated"
    assert name.target_type == "entitie"
    assert name.is_stage(EventStage.REQUESTED)


@pytest.mark.parametrize("bad", ["entities.requested", "a.b.c.requested", "entities..requested", "", "noDots"])
def test_parse_event_type_rejects_malformed(bad):
    with pytest.raises(MalformedEventTypeError):
        parse_event_type(bad)


def test_create_event_assigns_id_and_timestamp():
    event = create_event("notes.create.requested", {"title": "hello"}, "user-1")

    assert event.id
    assert event.timestamp.tzinfo is not None
    assert event.user_id == "user-1"
    assert event.source == EventSource.API
    assert event.version == "v1"


def test_create_event_ids_are_unique():
    ids = {create_event("notes.create.requested", {}, "u").id for _ in range(50)}
    assert len(ids) == 50


def test_create_event_keeps_data_when_schema_fails():
    """A payload failing its registered schema is logged, not rejected."""
    with patch("intentflow.event_models.log") as mock_log:
        event = create_event("entities.update.requested", {"title": "no entity id"}, "user-1")

    assert event.data == {"title": "no entity id"}
    mock_log.warning.assert_called_once()
    assert mock_log.warning.call_args[0][0] == "event.schema_validation_failed"


def test_create_event_validates_registered_schema():
    event = create_event(
        "entities.create.requested",
        {"title": "Plan", "tags": ["a"], "workspaceId": "W1"},
        "user-1",
    )
    # Extra routing keys survive validation
    assert event.data == {"title": "Plan", "tags": ["a"], "workspaceId": "W1"}


def test_create_event_unregistered_type_passes_through():
    event = create_event("widgets.spin.requested", {"speed": 3}, "user-1")
    assert event.data == {"speed": 3}


def test_custom_registry():
    class Ping(BaseModel):
        count: int

    registry = EventSchemaRegistry()
    registry.register("pings.send.requested", Ping)

    assert registry.registered_types() == ["pings.send.requested"]
    assert registry.validate("pings.send.requested", {"count": "3"}) == {"count": 3}
    with pytest.raises(EventDataValidationError):
        registry.validate("pings.send.requested", {"count": "many"})
    with pytest.raises(UnknownEventTypeError):
        registry.validate("pongs.send.requested", {})


def test_default_registry_types():
    assert "entities.create.requested" in default_registry().registered_types()


def test_event_is_immutable():
    event = create_event("notes.create.requested", {}, "user-1")
    with pytest.raises(ValidationError):
        event.type = "notes.delete.requested"


def test_roundtrip_serialize_parse():
    event = create_event(
        "entities.create.requested",
        {"title": "x", "workspaceId": "W1"},
        "user-1",
        aggregate_id="agg-1",
        source=EventSource.INTELLIGENCE,
        correlation_id="corr-1",
        causation_id="cause-1",
        request_id="req-1",
        metadata={"ai": {"agent": "planner"}},
    )

    wire = serialize_event(event)
    assert isinstance(wire["timestamp"], str)
    assert wire["userId"] == "user-1"
    assert wire["correlationId"] == "corr-1"

    parsed = parse_event(wire)
    assert parsed == event


def test_roundtrip_through_json_bytes():
    event = create_event("notes.create.requested", {"n": 1}, "user-1")
    parsed = parse_event(event_to_json(event))
    assert parsed.id == event.id
    assert abs((parsed.timestamp - event.timestamp).total_seconds()) < 1


def test_parse_accepts_native_and_epoch_timestamps():
    now = datetime(2025, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
    native = parse_event({"id": "e1", "type": "notes.create.requested", "timestamp": now})
    epoch = parse_event({"id": "e1", "type": "notes.create.requested", "timestamp": now.timestamp()})
    iso = parse_event({"id": "e1", "type": "notes.create.requested", "timestamp": "2025-01-02T03:04:05Z"})

    assert native.timestamp == epoch.timestamp == iso.timestamp == now


def test_parse_naive_timestamp_is_utc():
    parsed = parse_event({"id": "e1", "type": "t.a.requested", "timestamp": "2025-01-02T03:04:05"})
    assert parsed.timestamp.tzinfo is not None
    assert parsed.timestamp.utcoffset().total_seconds() == 0


@pytest.mark.parametrize(
    "raw",
    [
        {"type": "notes.create.requested", "timestamp": "2025-01-01T00:00:00Z"},
        {"id": "e1", "timestamp": "2025-01-01T00:00:00Z"},
        {"id": "e1", "type": "notes.create.requested"},
        {"id": "e1", "type": "notes.create.requested", "timestamp": "not a date"},
        {"id": "e1", "type": "notes.create.requested", "timestamp": "2025-01-01T00:00:00Z", "data": [1, 2]},
        {"id": "e1", "type": "notes.create.requested", "timestamp": "2025-01-01T00:00:00Z", "source": "carrier-pigeon"},
        ["not", "a", "mapping"],
        b"{broken json",
    ],
)
def test_parse_rejects_malformed(raw):
    with pytest.raises(MalformedEventError):
        parse_event(raw)


def test_stored_event_roundtrip():
    event = create_event("notes.create.requested", {}, "user-1", aggregate_id="n1")
    stored = StoredEvent.from_event(event, sequence=7, aggregate_version=2)

    assert stored.aggregate_type == "notes"
    parsed = parse_stored_event(orjson.loads(event_to_json(stored)))
    assert parsed == stored
    assert parsed.as_event() == event


def test_as_workflow_root():
    event = create_event("notes.create.requested", {}, "user-1")
    root = as_workflow_root(event)
    assert root.correlation_id == event.id
    assert as_workflow_root(create_event("n.c.requested", {}, "u", correlation_id="c")).correlation_id == "c"


def test_snake_and_camel_case_input():
    camel = Event.model_validate({"type": "n.c.requested", "userId": "u1", "requestId": "r1"})
    snake = Event.model_validate({"type": "n.c.requested", "user_id": "u1", "request_id": "r1"})
    assert camel.user_id == snake.user_id == "u1"
    assert camel.request_id == snake.request_id == "r1"


def test_has_ai_metadata():
    assert has_ai_metadata({"ai": {"agent": "x"}})
    assert not has_ai_metadata({"source": "ai"})
    assert not has_ai_metadata(None)
