"""Per-type data schemas and event metadata models.

The registry maps an event type string to the pydantic model its ``data``
should satisfy. Types without a schema pass through untouched so new
aggregate/action pairs can be introduced without code changes.
"""
from datetime import datetime
from typing import Any, Literal

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import EventDataValidationError, UnknownEventTypeError

log = structlog.get_logger()


class EventData(BaseModel):
    """Base for data schemas. Routing keys (workspaceId, requestId...) ride along as extras."""
    model_config = ConfigDict(extra="allow")


class EntityCreateRequested(EventData):
    content: str | None = None
    title: str | None = None
    type: str | None = None  # note | task | project
    tags: list[str] | None = None
    metadata: dict[str, Any] | None = None


class EntityCreateValidated(EventData):
    entityId: str | None = None
    type: str | None = None
    filePath: str | None = None
    fileUrl: str | None = None


class EntityUpdateRequested(EventData):
    entityId: str
    changes: dict[str, Any] | None = None
    content: str | None = None
    title: str | None = None


class EntityUpdateValidated(EventData):
    entityId: str
    previousVersion: int | None = Field(default=None, ge=0)
    newVersion: int | None = Field(default=None, gt=0)


class EventSchemaRegistry:
    """Registry of data schemas keyed by event type."""

    def __init__(self, schemas: dict[str, type[BaseModel]] | None = None):
        self._schemas: dict[str, type[BaseModel]] = dict(schemas or {})

    def register(self, event_type: str, model: type[BaseModel]):
        self._schemas[event_type] = model
        log.debug("event_schema.registered", type=event_type, model=model.__name__)

    def get(self, event_type: str) -> type[BaseModel] | None:
        return self._schemas.get(event_type)

    def registered_types(self) -> list[str]:
        return sorted(self._schemas)

    def validate(self, event_type: str, data: dict[str, Any]) -> dict[str, Any]:
        """
        Validate ``data`` against the schema registered for ``event_type``.

        Returns:
            The validated data, including any extra keys

        Raises:
            UnknownEventTypeError: No schema is registered for the type
            EventDataValidationError: The data does not satisfy the schema
        """
        model = self._schemas.get(event_type)
        if model is None:
            raise UnknownEventTypeError(
                f"no data schema registered for {event_type}", {"type": event_type}
            )
        try:
            validated = model.model_validate(data)
            return {**data, **validated.model_dump(exclude_unset=True)}
        except ValidationError as e:
            raise EventDataValidationError(
                f"event data invalid for {event_type}",
                {"type": event_type, "errors": e.errors(include_url=False)},
            ) from e


def default_registry() -> EventSchemaRegistry:
    return EventSchemaRegistry({
        "entities.create.requested": EntityCreateRequested,
        "entities.create.validated": EntityCreateValidated,
        "entities.update.requested": EntityUpdateRequested,
        "entities.update.validated": EntityUpdateValidated,
    })


# --- Metadata: how/why an event happened, orthogonal to data ---

class AIConfidence(BaseModel):
    score: float = Field(..., ge=0, le=1)
    reasoning: str | None = None


class AIExtractionSource(BaseModel):
    messageId: str
    threadId: str
    content: str | None = None


class AIExtraction(BaseModel):
    extractedFrom: AIExtractionSource
    method: Literal["explicit", "implicit", "relationship"]


class AIMetadata(BaseModel):
    agent: str = Field(..., min_length=1)
    confidence: AIConfidence | None = None
    extraction: AIExtraction | None = None
    reasoning: dict[str, Any] | None = None
    inferredProperties: dict[str, Any] | None = None


class ImportMetadata(BaseModel):
    source: Literal["notion", "obsidian", "roam", "logseq", "markdown", "csv", "api", "other"]
    externalId: str | None = None
    externalUrl: str | None = None
    importedAt: datetime
    batchId: str | None = None
    transformed: bool = False


class SyncMetadata(BaseModel):
    deviceId: str
    platform: Literal["ios", "android", "web", "desktop", "cli"]
    syncedAt: datetime
    offline: bool = False
    conflictResolution: Literal["client_wins", "server_wins", "merged"] | None = None


class AutomationTrigger(BaseModel):
    type: str
    event: str | None = None
    schedule: str | None = None  # cron expression


class AutomationMetadata(BaseModel):
    ruleId: str
    ruleName: str
    trigger: AutomationTrigger
    executionId: str | None = None


class EventMetadata(BaseModel):
    """Top-level metadata sections. All optional; unknown keys are kept."""
    model_config = ConfigDict(extra="allow")

    ai: AIMetadata | None = None
    import_: ImportMetadata | None = Field(default=None, alias="import")
    sync: SyncMetadata | None = None
    automation: AutomationMetadata | None = None
    custom: dict[str, Any] | None = None


def has_ai_metadata(metadata: dict[str, Any] | None) -> bool:
    return isinstance(metadata, dict) and isinstance(metadata.get("ai"), dict)
