"""Proposal review workflow: approve, reject, or explicitly submit for review."""
from datetime import datetime, timezone
from typing import Any
import uuid
import structlog
from pydantic import BaseModel
from .models import Proposal, ProposalFilters, ProposalStatus, ReviewResult
from .persistence import ProposalStore
from ..errors import ProposalNotFoundError, ProposalStateConflictError
from ..event_models import EventSource, as_workflow_root, create_event
from ..metrics import Metrics
from ..services.event_store import EventStore

log = structlog.get_logger()

USER_PROPOSAL_SOURCE = "user_proposal"


class SubmitResult(BaseModel):
    success: bool = True
    request_id: str
    status: str = "requested"
    event_id: str
    correlation_id: str


class ProposalReviewService:
    """
    Human review of deferred intents.

    Approving re-injects the intent as ``<targetType>s.<changeType>.validated``
    so executors pick it up; rejecting is terminal and emits nothing.
    """

    def __init__(self, store: EventStore, proposals: ProposalStore, metrics: Metrics | None = None):
        self._store = store
        self._proposals = proposals
        self._metrics = metrics or Metrics()

    async def list(self, filters: ProposalFilters | None = None) -> list[Proposal]:
        return await self._proposals.list(filters or ProposalFilters())

    async def get(self, proposal_id: str) -> Proposal:
        proposal = await self._proposals.get(proposal_id)
        if proposal is None:
            raise ProposalNotFoundError(proposal_id)
        return proposal

    async def approve(self, proposal_id: str, reviewer_id: str, comment: str | None = None) -> ReviewResult:
        """
        Approve a pending proposal and emit its validated event.

        Approving an already validated proposal repeats the (idempotent)
        emission, so a crash between the status change and the append heals
        on retry.

        Args:
            proposal_id: Proposal to approve
            reviewer_id: User approving it; becomes the emitted event's user
            comment: Optional approval comment

        Returns:
            ReviewResult with the proposal and the emitted event id

        Raises:
            ProposalNotFoundError: No such proposal
            ProposalStateConflictError: The proposal was rejected
        """
        proposal = await self.get(proposal_id)
        already_reviewed = False

        if proposal.status == ProposalStatus.PENDING:
            try:
                proposal = await self._proposals.transition(
                    proposal_id,
                    ProposalStatus.PENDING,
                    ProposalStatus.VALIDATED,
                    reviewed_by=reviewer_id,
                    reviewed_at=datetime.now(timezone.utc),
                    review_comment=comment,
                )
            except ProposalStateConflictError:
                # Lost a race with another reviewer
                proposal = await self.get(proposal_id)
                if proposal.status != ProposalStatus.VALIDATED:
                    raise
                already_reviewed = True
        elif proposal.status == ProposalStatus.VALIDATED:
            already_reviewed = True
        else:
            raise ProposalStateConflictError(proposal_id, proposal.status, ProposalStatus.VALIDATED.value)

        result = await self._emit_validated(proposal)

        if not already_reviewed:
            self._metrics.record_proposal_review("approved")
            self._metrics.set_pending_proposals(await self._proposals.count(ProposalStatus.PENDING))
        log.info(
            "proposal.approved",
            proposal_id=proposal_id,
            reviewer_id=reviewer_id,
            emitted_type=result.event.type,
            emitted_id=result.event.id,
            already_reviewed=already_reviewed,
        )
        return ReviewResult(
            proposal=proposal,
            event_id=result.event.id,
            emitted_type=result.event.type,
            already_reviewed=already_reviewed,
        )

    async def _emit_validated(self, proposal: Proposal):
        request = proposal.request
        original = request.event
        correlation_id = original.get("correlationId") or request.source_id
        event_type = request.validated_type

        data: dict[str, Any] = {
            **request.data,
            "approvedBy": proposal.reviewed_by,
            "approvedAt": proposal.reviewed_at.isoformat() if proposal.reviewed_at else None,
            "approvalComment": proposal.review_comment,
            "requestId": request.request_id,
        }
        event = create_event(
            event_type,
            data,
            proposal.reviewed_by,
            aggregate_id=original.get("aggregateId"),
            source=original.get("source") or EventSource.API,
            correlation_id=correlation_id,
            causation_id=request.source_id,
            request_id=request.request_id,
            metadata=original.get("metadata"),
        )
        return await self._store.append(
            event, idempotency_key=f"{correlation_id}:{request.source_id}:{event_type}"
        )

    async def reject(self, proposal_id: str, reviewer_id: str, reason: str | None = None) -> ReviewResult:
        """
        Reject a pending proposal. No event is ever emitted.

        Rejecting an already rejected proposal is a no-op.

        Raises:
            ProposalNotFoundError: No such proposal
            ProposalStateConflictError: The proposal was already approved
        """
        proposal = await self.get(proposal_id)

        if proposal.status == ProposalStatus.REJECTED:
            return ReviewResult(proposal=proposal, already_reviewed=True)
        if proposal.status == ProposalStatus.VALIDATED:
            raise ProposalStateConflictError(proposal_id, proposal.status, ProposalStatus.REJECTED.value)

        try:
            proposal = await self._proposals.transition(
                proposal_id,
                ProposalStatus.PENDING,
                ProposalStatus.REJECTED,
                reviewed_by=reviewer_id,
                reviewed_at=datetime.now(timezone.utc),
                rejection_reason=reason,
            )
        except ProposalStateConflictError:
            proposal = await self.get(proposal_id)
            if proposal.status != ProposalStatus.REJECTED:
                raise
            return ReviewResult(proposal=proposal, already_reviewed=True)

        self._metrics.record_proposal_review("rejected")
        self._metrics.set_pending_proposals(await self._proposals.count(ProposalStatus.PENDING))
        log.info("proposal.rejected", proposal_id=proposal_id, reviewer_id=reviewer_id, reason=reason)
        return ReviewResult(proposal=proposal)

    async def submit(
        self,
        user_id: str,
        target_type: str,
        change_type: str,
        data: dict[str, Any],
        target_id: str | None = None,
        reasoning: str | None = None,
        workspace_id: str | None = None,
        request_id: str | None = None,
    ) -> SubmitResult:
        """
        Inject a ``requested`` event that is routed to human review.

        Args:
            user_id: Submitting user
            target_type: Singular target type, e.g. ``entitie`` or ``note``
            change_type: Action, e.g. ``create``
            data: Intent payload

        Returns:
            SubmitResult with the request id to follow
        """
        request_id = request_id or str(uuid.uuid4())
        payload = {**data, "requestId": request_id}
        if target_id is not None:
            payload["targetId"] = target_id
        if reasoning is not None:
            payload["reasoning"] = reasoning
        if workspace_id is not None:
            payload["workspaceId"] = workspace_id

        event = as_workflow_root(create_event(
            f"{target_type}s.{change_type}.requested",
            payload,
            user_id,
            aggregate_id=target_id,
            source=EventSource.API,
            request_id=request_id,
            metadata={"source": USER_PROPOSAL_SOURCE, "submittedBy": user_id},
        ))
        result = await self._store.append(event)

        log.info(
            "proposal.submitted",
            request_id=request_id,
            event_id=result.event.id,
            type=result.event.type,
            user_id=user_id,
        )
        return SubmitResult(
            request_id=request_id,
            event_id=result.event.id,
            correlation_id=result.event.correlation_id,
        )
