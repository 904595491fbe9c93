"""FastAPI dependencies resolving pipeline handles from ``app.state``."""
from fastapi import Depends, Header, HTTPException, Request, status
from .auth.api_key import verify_api_key
from .auth.identity import Identity, identity_for
from .pipeline import Pipeline
from .proposals.service import ProposalReviewService
from .services.event_store import EventStore


def get_pipeline(request: Request) -> Pipeline:
    return request.app.state.pipeline


def get_event_store(pipeline: Pipeline = Depends(get_pipeline)) -> EventStore:
    return pipeline.store


def get_review_service(pipeline: Pipeline = Depends(get_pipeline)) -> ProposalReviewService:
    return pipeline.reviews


async def current_identity(
    x_user_id: str | None = Header(default=None, alias="X-User-Id"),
    pipeline: Pipeline = Depends(get_pipeline),
    _api_key: str = Depends(verify_api_key),
) -> Identity:
    """
    Resolve the caller from the ``X-User-Id`` header.

    Raises:
        HTTPException: 401 if the header is missing
    """
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-Id header",
        )
    return identity_for(x_user_id, pipeline.settings)
