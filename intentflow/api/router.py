from datetime import datetime
from fastapi import APIRouter, Depends, HTTPException, Query
from .schemas import PublishRequest, PublishResponse, EventListResponse
from ..adapters.base import EventFilters, MAX_SEARCH_LIMIT
from ..auth.identity import Identity
from ..dependencies import current_identity, get_event_store
from ..errors import ReservedEventStageError
from ..event_models import OUTCOME_STAGES, EventStage, StoredEvent, as_workflow_root, create_event
from ..services.event_store import EventStore
from ..validator.engine import resolve_request_id

router = APIRouter(prefix="/v1", tags=["events"])


@router.post("/events", response_model=PublishResponse)
async def publish_event(
    req: PublishRequest,
    identity: Identity = Depends(current_identity),
    store: EventStore = Depends(get_event_store),
):
    """
    Publish an event for the calling user.

    Intents (``*.requested``) return immediately with status ``requested``;
    the outcome arrives later on the realtime channel or via the event queries.
    """
    stage = req.type.rsplit(".", 1)[-1]
    if stage in OUTCOME_STAGES and not identity.is_system:
        raise ReservedEventStageError(req.type, stage)

    event = as_workflow_root(create_event(
        req.type,
        req.data,
        identity.user_id,
        aggregate_id=req.aggregate_id,
        source=req.source,
        correlation_id=req.correlation_id,
        causation_id=req.causation_id,
        request_id=req.request_id,
        metadata=req.metadata,
    ))
    if event.request_id is None:
        event = event.model_copy(update={"request_id": resolve_request_id(event)})

    result = await store.append(event, expected_version=req.expected_version)
    stored = result.event
    is_intent = stored.type.endswith(f".{EventStage.REQUESTED.value}")
    return PublishResponse(
        id=stored.id,
        request_id=stored.request_id,
        correlation_id=stored.correlation_id,
        status="requested" if is_intent else "accepted",
    )


@router.get("/events", response_model=EventListResponse)
async def search_events(
    type: str | None = None,
    aggregate_id: str | None = None,
    aggregate_type: str | None = None,
    correlation_id: str | None = None,
    from_ts: datetime | None = None,
    to_ts: datetime | None = None,
    limit: int = Query(50, ge=1, le=MAX_SEARCH_LIMIT),
    offset: int = Query(0, ge=0),
    identity: Identity = Depends(current_identity),
    store: EventStore = Depends(get_event_store),
):
    """Search events, newest first. Non-system callers only see their own."""
    filters = EventFilters(
        type=type,
        aggregate_id=aggregate_id,
        aggregate_type=aggregate_type,
        correlation_id=correlation_id,
        from_ts=from_ts,
        to_ts=to_ts,
        limit=limit,
        offset=offset,
    )
    events = await store.search_events(filters, requester=identity)
    total = await store.count_events(filters, requester=identity)
    return EventListResponse(total=total, events=events)


@router.get("/events/correlation/{correlation_id}", response_model=list[StoredEvent])
async def get_correlated_events(
    correlation_id: str,
    identity: Identity = Depends(current_identity),
    store: EventStore = Depends(get_event_store),
):
    return await store.get_correlated_events(correlation_id, requester=identity)


@router.get("/events/{event_id}", response_model=StoredEvent)
async def get_event(
    event_id: str,
    identity: Identity = Depends(current_identity),
    store: EventStore = Depends(get_event_store),
):
    event = await store.find_by_id(event_id, requester=identity)
    if event is None:
        raise HTTPException(404, detail=f'Event with id "{event_id}" not found')
    return event
