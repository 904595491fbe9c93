"""Proposal review API."""
from fastapi import APIRouter, Depends, Query
from .schemas import ApproveRequest, ProposalListResponse, RejectRequest, SubmitRequest
from ..auth.identity import Identity
from ..dependencies import current_identity, get_review_service
from ..proposals.models import Proposal, ProposalFilters, ReviewResult
from ..proposals.service import ProposalReviewService, SubmitResult

router = APIRouter(prefix="/v1/proposals", tags=["proposals"])


@router.get("", response_model=ProposalListResponse)
async def list_proposals(
    workspace_id: str | None = None,
    target_type: str | None = None,
    target_id: str | None = None,
    status: str = Query("pending", pattern="^(pending|validated|rejected|all)$"),
    limit: int = Query(50, ge=1, le=500),
    identity: Identity = Depends(current_identity),
    reviews: ProposalReviewService = Depends(get_review_service),
):
    """
    List proposals, newest first.

    ``status`` defaults to ``pending``; ``all`` disables the status filter.
    """
    proposals = await reviews.list(ProposalFilters(
        workspace_id=workspace_id,
        target_type=target_type,
        target_id=target_id,
        status=status,
        limit=limit,
    ))
    return ProposalListResponse(total=len(proposals), proposals=proposals)


@router.post("/submit", response_model=SubmitResult)
async def submit_proposal(
    req: SubmitRequest,
    identity: Identity = Depends(current_identity),
    reviews: ProposalReviewService = Depends(get_review_service),
):
    """Inject a requested intent that is always routed to human review."""
    return await reviews.submit(
        identity.user_id,
        req.target_type,
        req.change_type,
        req.data,
        target_id=req.target_id,
        reasoning=req.reasoning,
        workspace_id=req.workspace_id,
        request_id=req.request_id,
    )


@router.get("/{proposal_id}", response_model=Proposal)
async def get_proposal(
    proposal_id: str,
    identity: Identity = Depends(current_identity),
    reviews: ProposalReviewService = Depends(get_review_service),
):
    return await reviews.get(proposal_id)


@router.post("/{proposal_id}/approve", response_model=ReviewResult)
async def approve_proposal(
    proposal_id: str,
    req: ApproveRequest | None = None,
    identity: Identity = Depends(current_identity),
    reviews: ProposalReviewService = Depends(get_review_service),
):
    return await reviews.approve(proposal_id, identity.user_id, comment=req.comment if req else None)


@router.post("/{proposal_id}/reject", response_model=ReviewResult)
async def reject_proposal(
    proposal_id: str,
    req: RejectRequest | None = None,
    identity: Identity = Depends(current_identity),
    reviews: ProposalReviewService = Depends(get_review_service),
):
    return await reviews.reject(proposal_id, identity.user_id, reason=req.reason if req else None)
