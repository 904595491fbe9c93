"""Event contract: the immutable shape of every intent and fact.

Event types follow ``<aggregatePlural>.<action>.<stage>``, e.g.
``entities.create.requested``. On the wire events are camelCase JSON with an
ISO-8601 timestamp; in Python the fields are snake_case.
"""
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal
import uuid

import orjson
import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from .errors import (
    EventDataValidationError,
    MalformedEventError,
    MalformedEventTypeError,
    UnknownEventTypeError,
)
from .event_schemas import EventSchemaRegistry, default_registry

log = structlog.get_logger()

REQUIRED_FIELDS = ("id", "type", "timestamp")

_registry = default_registry()


class EventSource(str, Enum):
    API = "api"
    AUTOMATION = "automation"
    SYNC = "sync"
    MIGRATION = "migration"
    SYSTEM = "system"
    INTELLIGENCE = "intelligence"


class EventStage(str, Enum):
    REQUESTED = "requested"
    VALIDATED = "validated"
    DENIED = "denied"
    COMPLETED = "completed"


# Stages only the validator, proposal approval and executors may emit
OUTCOME_STAGES = frozenset({EventStage.VALIDATED.value, EventStage.DENIED.value, EventStage.COMPLETED.value})


@dataclass(frozen=True)
class EventName:
    """Structured ``aggregate.action.stage`` routing key."""

    aggregate: str
    action: str
    stage: str

    def __str__(self) -> str:
        return f"{self.aggregate}.{self.action}.{self.stage}"

    def with_stage(self, stage: EventStage | str) -> "EventName":
        return EventName(self.aggregate, self.action, _stage_value(stage))

    @property
    def target_type(self) -> str:
        """Singular aggregate name, e.g. ``entities`` -> ``entitie``.

        Only one trailing ``s`` is stripped so that ``f"{target_type}s"``
        always rebuilds the original aggregate.
        """
        return self.aggregate[:-1] if self.aggregate.endswith("s") else self.aggregate

    def is_stage(self, stage: EventStage | str) -> bool:
        return self.stage == _stage_value(stage)


def _stage_value(stage: EventStage | str) -> str:
    return stage.value if isinstance(stage, EventStage) else stage


def parse_event_type(event_type: str) -> EventName:
    """
    Parse an event type into its routing triple.

    Raises:
        MalformedEventTypeError: Not exactly three non-empty dot-separated segments
    """
    if not isinstance(event_type, str):
        raise MalformedEventTypeError(str(event_type))
    parts = event_type.split(".")
    if len(parts) != 3 or not all(p.strip() for p in parts):
        raise MalformedEventTypeError(event_type)
    return EventName(*parts)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Event(BaseModel):
    """An immutable, traceable intent or fact."""

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    version: Literal["v1"] = "v1"
    type: str = Field(..., min_length=1, max_length=128)
    aggregate_id: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)
    metadata: dict[str, Any] | None = None
    user_id: str | None = None
    source: EventSource = EventSource.API
    timestamp: datetime = Field(default_factory=_utcnow)
    correlation_id: str | None = None
    causation_id: str | None = None
    request_id: str | None = None

    @field_validator("timestamp")
    @classmethod
    def _ensure_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    @property
    def name(self) -> EventName:
        return parse_event_type(self.type)


class StoredEvent(Event):
    """An event after append, carrying its storage-assigned ordering."""

    sequence: int = Field(..., ge=1)
    aggregate_type: str
    aggregate_version: int | None = None

    @classmethod
    def from_event(cls, event: Event, sequence: int, aggregate_version: int | None) -> "StoredEvent":
        return cls(
            **event.model_dump(),
            sequence=sequence,
            aggregate_type=event.type.split(".", 1)[0],
            aggregate_version=aggregate_version,
        )

    def as_event(self) -> Event:
        return Event(**self.model_dump(exclude={"sequence", "aggregate_type", "aggregate_version"}))


def create_event(
    type: str,
    data: dict[str, Any] | None,
    user_id: str | None,
    aggregate_id: str | None = None,
    source: EventSource | str = EventSource.API,
    correlation_id: str | None = None,
    causation_id: str | None = None,
    request_id: str | None = None,
    metadata: dict[str, Any] | None = None,
    registry: EventSchemaRegistry | None = None,
) -> Event:
    """
    Build a new event, validating ``data`` against its registered schema.

    Schema failures never prevent construction: the failure is logged and the
    original data is kept.

    Args:
        type: Event type, ``<aggregatePlural>.<action>.<stage>``
        data: Event payload
        user_id: Acting identity
        registry: Schema registry (defaults to the built-in entity schemas)

    Returns:
        The new event with a fresh id and UTC timestamp
    """
    registry = registry or _registry
    payload = dict(data or {})
    try:
        payload = registry.validate(type, payload)
    except UnknownEventTypeError:
        log.debug("event.schema_missing", type=type)
    except EventDataValidationError as e:
        log.warning(
            "event.schema_validation_failed",
            type=type,
            errors=e.context.get("errors"),
        )

    return Event(
        type=type,
        data=payload,
        user_id=user_id,
        aggregate_id=aggregate_id,
        source=source,
        correlation_id=correlation_id,
        causation_id=causation_id,
        request_id=request_id,
        metadata=metadata,
    )


def as_workflow_root(event: Event) -> Event:
    """Make ``event`` start its own workflow unless it already belongs to one."""
    if event.correlation_id:
        return event
    return event.model_copy(update={"correlation_id": event.id})


def parse_event(raw: Any, model: type[Event] = Event) -> Event:
    """
    Rebuild an event from a persisted or transported representation.

    Args:
        raw: A mapping, JSON bytes/str, or an existing event
        model: ``Event`` or ``StoredEvent``

    Raises:
        MalformedEventError: Required fields missing or of the wrong shape
    """
    if isinstance(raw, model):
        return raw
    if isinstance(raw, Event):
        raw = raw.model_dump()
    if isinstance(raw, (bytes, bytearray, memoryview, str)):
        try:
            raw = orjson.loads(raw)
        except orjson.JSONDecodeError as e:
            raise MalformedEventError("event is not valid JSON", {"error": str(e)}) from e
    if not isinstance(raw, Mapping):
        raise MalformedEventError(
            "event must be a mapping", {"received": type(raw).__name__}
        )

    missing = [f for f in REQUIRED_FIELDS if raw.get(f) in (None, "")]
    if missing:
        raise MalformedEventError("event is missing required fields", {"missing": missing})

    try:
        return model.model_validate(dict(raw))
    except ValidationError as e:
        raise MalformedEventError(
            "event has malformed fields",
            {"errors": e.errors(include_url=False, include_input=False)},
        ) from e


def parse_stored_event(raw: Any) -> StoredEvent:
    return parse_event(raw, model=StoredEvent)


def serialize_event(event: Event) -> dict[str, Any]:
    """Wire shape: camelCase keys, ISO-8601 timestamp, enum values."""
    return event.model_dump(mode="json", by_alias=True)


def event_to_json(event: Event) -> bytes:
    return orjson.dumps(serialize_event(event))
