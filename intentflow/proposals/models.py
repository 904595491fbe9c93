"""Proposal models: deferred intents awaiting human review."""
from datetime import datetime, timezone
from enum import Enum
from typing import Any
import uuid
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ProposalStatus(str, Enum):
    PENDING = "pending"
    VALIDATED = "validated"
    REJECTED = "rejected"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ProposalRequest(BaseModel):
    """What the deferred request asked for, and why it was deferred."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    request_id: str
    source: str = Field(..., description="Intent origin: ai, user, user_proposal...")
    source_id: str = Field(..., description="Id of the requested event")
    target_type: str
    target_id: str
    change_type: str = Field(..., description="The action, e.g. create or update")
    data: dict[str, Any] = Field(default_factory=dict)
    reasoning: str
    ai_metadata: dict[str, Any] | None = None
    event: dict[str, Any] = Field(default_factory=dict, description="Serialized requested event")

    @property
    def validated_type(self) -> str:
        return f"{self.target_type}s.{self.change_type}.validated"


class Proposal(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=True,
        validate_default=True,
    )

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    workspace_id: str
    target_type: str
    target_id: str
    request: ProposalRequest
    status: ProposalStatus = ProposalStatus.PENDING
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    reviewed_by: str | None = None
    reviewed_at: datetime | None = None
    rejection_reason: str | None = None
    review_comment: str | None = None


class ProposalFilters(BaseModel):
    """List filters. ``status="all"`` disables the status filter."""

    workspace_id: str | None = None
    target_type: str | None = None
    target_id: str | None = None
    status: ProposalStatus | str = ProposalStatus.PENDING
    limit: int = Field(50, ge=1, le=500)

    def matches(self, proposal: Proposal) -> bool:
        if self.workspace_id is not None and proposal.workspace_id != self.workspace_id:
            return False
        if self.target_type is not None and proposal.target_type != self.target_type:
            return False
        if self.target_id is not None and proposal.target_id != self.target_id:
            return False
        status = self.status.value if isinstance(self.status, ProposalStatus) else self.status
        if status != "all" and proposal.status != status:
            return False
        return True


class ReviewResult(BaseModel):
    success: bool = True
    proposal: Proposal
    event_id: str | None = None
    emitted_type: str | None = None
    already_reviewed: bool = False
