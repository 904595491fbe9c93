"""Validator decision and outcome models."""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any
from pydantic import BaseModel
from ..access.permissions import Capability, Role
from ..event_models import EventName, StoredEvent
from ..streaming.notifier import BroadcastResult

MANAGE_ACTIONS = frozenset({
    "addMember",
    "removeMember",
    "updateMemberRole",
    "changeRole",
    "inviteMember",
})


class ValidationStatus(str, Enum):
    VALIDATED = "validated"
    DENIED = "denied"
    PROPOSAL_CREATED = "proposal_created"


class IntentOrigin(str, Enum):
    USER = "user"
    AI = "ai"
    USER_PROPOSAL = "user_proposal"


@dataclass(frozen=True)
class PermissionRequirement:
    """Capability an action needs inside a workspace. ``None`` means no check."""

    capability: Capability | None

    @classmethod
    def for_action(cls, action: str) -> "PermissionRequirement":
        if action == "delete":
            return cls(Capability.DELETE)
        if action in ("create", "update"):
            return cls(Capability.WRITE)
        if action in MANAGE_ACTIONS:
            return cls(Capability.MANAGE)
        return cls(None)


@dataclass(frozen=True)
class Decision:
    """Result of evaluating one request. Computing it has no side effects."""

    status: ValidationStatus
    reason: str
    name: EventName | None = None
    user_id: str | None = None
    workspace_id: str | None = None
    origin: str | None = None
    role: Role | None = None
    emit_type: str | None = None
    emit_data: dict[str, Any] = field(default_factory=dict)


class ValidationOutcome(BaseModel):
    status: ValidationStatus
    reason: str
    event: StoredEvent | None = None
    proposal_id: str | None = None
    duplicate: bool = False
    notification: BroadcastResult | None = None
