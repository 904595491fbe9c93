from pydantic import BaseModel, Field
from typing import Any, Dict, List, Literal
from ..event_models import EventSource, StoredEvent
from ..proposals.models import Proposal


class PublishRequest(BaseModel):
    type: str = Field(..., min_length=1, max_length=128)
    data: Dict[str, Any] = Field(default_factory=dict)
    aggregate_id: str | None = None
    metadata: Dict[str, Any] | None = None
    source: EventSource = EventSource.API
    correlation_id: str | None = None
    causation_id: str | None = None
    request_id: str | None = None
    expected_version: int | None = Field(default=None, ge=0)


class PublishResponse(BaseModel):
    id: str
    request_id: str
    correlation_id: str
    status: Literal["requested", "accepted"]


class EventListResponse(BaseModel):
    total: int
    events: List[StoredEvent]


class ApproveRequest(BaseModel):
    comment: str | None = None


class RejectRequest(BaseModel):
    reason: str | None = None


class SubmitRequest(BaseModel):
    target_type: str = Field(..., min_length=1)
    change_type: str = Field(..., min_length=1)
    data: Dict[str, Any] = Field(default_factory=dict)
    target_id: str | None = None
    reasoning: str | None = None
    workspace_id: str | None = None
    request_id: str | None = None


class ProposalListResponse(BaseModel):
    total: int
    proposals: List[Proposal]
