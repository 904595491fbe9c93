"""Error taxonomy for the intent pipeline.

Every domain error carries a stable ``code`` and the HTTP status the API
layer should answer with. Permission and policy failures are normally turned
into ``denied`` events or proposals by the validator; these exceptions only
reach callers for synchronous operations (parse, append, review).
"""
from typing import Any


class IntentflowError(Exception):
    """Base class for all intentflow errors."""

    code = "INTENTFLOW_ERROR"
    status_code = 500

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "error": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
        }
        if self.context:
            body["context"] = self.context
        return body


class MalformedEventError(IntentflowError):
    """A persisted or transported event is missing fields or has the wrong shape."""

    code = "MALFORMED_EVENT"
    status_code = 400


class MalformedEventTypeError(IntentflowError):
    """An event type does not follow ``<aggregate>.<action>.<stage>``."""

    code = "MALFORMED_EVENT_TYPE"
    status_code = 400

    def __init__(self, event_type: str):
        super().__init__(f"malformed event type: {event_type!r}", {"type": event_type})
        self.event_type = event_type


class UnknownEventTypeError(IntentflowError):
    """No data schema is registered for the event type. Never fatal."""

    code = "UNKNOWN_EVENT_TYPE"
    status_code = 400


class EventDataValidationError(IntentflowError):
    """Event data failed its registered schema. Never fatal on construction."""

    code = "EVENT_DATA_INVALID"
    status_code = 400


class VersionConflictError(IntentflowError):
    """Optimistic concurrency check failed for an aggregate."""

    code = "VERSION_CONFLICT"
    status_code = 409

    def __init__(self, aggregate_id: str, expected: int, actual: int):
        super().__init__(
            f"aggregate {aggregate_id} is at version {actual}, expected {expected}",
            {"aggregate_id": aggregate_id, "expected": expected, "actual": actual},
        )
        self.aggregate_id = aggregate_id
        self.expected = expected
        self.actual = actual


class NotFoundError(IntentflowError):
    code = "NOT_FOUND"
    status_code = 404

    def __init__(self, resource: str, resource_id: str | None = None):
        message = (
            f'{resource} with id "{resource_id}" not found' if resource_id else f"{resource} not found"
        )
        super().__init__(message, {"resource": resource, "id": resource_id})


class ProposalNotFoundError(NotFoundError):
    code = "PROPOSAL_NOT_FOUND"

    def __init__(self, proposal_id: str):
        super().__init__("Proposal", proposal_id)
        self.proposal_id = proposal_id


class ProposalStateConflictError(IntentflowError):
    """A review action does not apply to the proposal's current status."""

    code = "PROPOSAL_STATE_CONFLICT"
    status_code = 409

    def __init__(self, proposal_id: str, current: str, attempted: str):
        super().__init__(
            f"proposal {proposal_id} is {current}, cannot move to {attempted}",
            {"proposal_id": proposal_id, "current": current, "attempted": attempted},
        )
        self.current = current
        self.attempted = attempted


class StoreUnavailableError(IntentflowError):
    """Backing store could not be reached. Transient; safe to retry."""

    code = "STORE_UNAVAILABLE"
    status_code = 503


class ReservedEventStageError(IntentflowError):
    """Only the pipeline itself may publish validated, denied or completed events."""

    code = "RESERVED_EVENT_STAGE"
    status_code = 403

    def __init__(self, event_type: str, stage: str):
        super().__init__(
            f"{stage} events are emitted by the pipeline and cannot be published directly",
            {"type": event_type, "stage": stage},
        )
        self.event_type = event_type
        self.stage = stage
