"""Global validator: turns every ``*.requested`` event into exactly one outcome.

``evaluate`` computes the decision without side effects and can be re-run any
number of times. ``handle`` applies it: it appends the ``validated`` or
``denied`` event, or inserts a pending proposal. Both writes are keyed by
``<correlation_id>:<request event id>:<type>`` so redelivering the same
request is harmless while sibling requests in one workflow stay distinct.
"""
from typing import Any
import uuid
import structlog
from .models import (
    Decision,
    IntentOrigin,
    PermissionRequirement,
    ValidationOutcome,
    ValidationStatus,
)
from ..access.permissions import PermissionResolver, minimum_role
from ..access.workspaces import WorkspaceSettingsStore
from ..errors import MalformedEventTypeError
from ..event_models import (
    Event,
    EventSource,
    EventStage,
    create_event,
    parse_event_type,
    serialize_event,
)
from ..event_schemas import has_ai_metadata
from ..metrics import Metrics
from ..proposals.models import Proposal, ProposalRequest, ProposalStatus
from ..proposals.persistence import ProposalStore
from ..services.event_store import EventStore
from ..streaming.notifier import NotificationMessage, RealtimeNotifier, safe_notify

log = structlog.get_logger()

MALFORMED_TYPE = "malformed event type"
NO_USER_CONTEXT = "no user context"
PERMISSION_CHECK_ERROR = "permission check error"
AI_REVIEW_REQUIRED = "AI proposal requires review"
EXPLICIT_REVIEW_REQUIRED = "Explicit proposal requires review"
USER_AUTHORIZED = "User authorized"
AI_AUTO_APPROVED = "AI auto-approved by workspace policy"

PERSONAL_WORKSPACE = "personal"
PROPOSED_STAGE = "proposed"


def resolve_user_id(event: Event) -> str | None:
    user_id = event.user_id or event.data.get("userId")
    return str(user_id) if user_id else None


def resolve_request_id(event: Event) -> str:
    """Caller's request id, else one derived from the event id so retries agree."""
    request_id = event.request_id or event.data.get("requestId")
    if request_id:
        return str(request_id)
    return str(uuid.uuid5(uuid.NAMESPACE_URL, f"intentflow:request:{event.id}"))


def intent_origin(event: Event) -> str:
    """``data.source``, then ``metadata.source``, then the event source."""
    origin = event.data.get("source")
    if not origin and isinstance(event.metadata, dict):
        origin = event.metadata.get("source")
    if origin:
        return str(origin)
    if event.source == EventSource.INTELLIGENCE:
        return IntentOrigin.AI.value
    return IntentOrigin.USER.value


def _project_ids(data: dict[str, Any]) -> list[str] | None:
    value = data.get("projectIds")
    if isinstance(value, str):
        return [value]
    if isinstance(value, (list, tuple)):
        return [str(v) for v in value if v]
    return None


class GlobalValidator:
    """Permission and policy decision engine for requested intents."""

    def __init__(
        self,
        store: EventStore,
        proposals: ProposalStore,
        permissions: PermissionResolver,
        workspaces: WorkspaceSettingsStore,
        notifier: RealtimeNotifier | None = None,
        metrics: Metrics | None = None,
    ):
        self._store = store
        self._proposals = proposals
        self._permissions = permissions
        self._workspaces = workspaces
        self._notifier = notifier
        self._metrics = metrics or Metrics()

    async def evaluate(self, event: Event) -> Decision:
        """
        Decide what a requested event should become.

        Reads permissions and workspace settings but writes nothing.

        Args:
            event: A ``<aggregate>.<action>.requested`` event

        Returns:
            Decision describing the outcome and the event to emit, if any
        """
        try:
            name = parse_event_type(event.type)
        except MalformedEventTypeError:
            name = None
        if name is None or not name.is_stage(EventStage.REQUESTED):
            return Decision(ValidationStatus.DENIED, MALFORMED_TYPE, user_id=resolve_user_id(event))

        user_id = resolve_user_id(event)
        if not user_id:
            # An unattributed request can never be approved later, so no proposal
            return Decision(ValidationStatus.DENIED, NO_USER_CONTEXT, name=name)

        data = event.data
        workspace_id = data.get("workspaceId") or None
        requirement = PermissionRequirement.for_action(name.action)
        role = None

        def deny(reason: str) -> Decision:
            return Decision(
                ValidationStatus.DENIED,
                reason,
                name=name,
                user_id=user_id,
                workspace_id=workspace_id,
                role=role,
                emit_type=str(name.with_stage(EventStage.DENIED)),
                emit_data={**data, "denialReason": reason},
            )

        if workspace_id and requirement.capability is not None:
            try:
                result = await self._permissions.verify_permission(
                    user_id, str(workspace_id), _project_ids(data), requirement.capability
                )
            except Exception as e:
                log.error(
                    "validator.permission_check_failed",
                    event_id=event.id,
                    workspace_id=workspace_id,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                return deny(PERMISSION_CHECK_ERROR)

            role = result.role
            if not result.allowed:
                needed = minimum_role(requirement.capability).value
                return deny(f"{name.action} requires {needed} role: {result.reason or 'permission denied'}")

        origin = intent_origin(event)
        reason = USER_AUTHORIZED
        if origin == IntentOrigin.AI.value:
            settings = await self._workspaces.get_settings(str(workspace_id)) if workspace_id else {}
            if not settings.get("aiAutoApprove"):
                return Decision(
                    ValidationStatus.PROPOSAL_CREATED,
                    AI_REVIEW_REQUIRED,
                    name=name,
                    user_id=user_id,
                    workspace_id=workspace_id,
                    origin=origin,
                    role=role,
                )
            reason = AI_AUTO_APPROVED
        elif origin == IntentOrigin.USER_PROPOSAL.value:
            return Decision(
                ValidationStatus.PROPOSAL_CREATED,
                EXPLICIT_REVIEW_REQUIRED,
                name=name,
                user_id=user_id,
                workspace_id=workspace_id,
                origin=origin,
                role=role,
            )

        return Decision(
            ValidationStatus.VALIDATED,
            reason,
            name=name,
            user_id=user_id,
            workspace_id=workspace_id,
            origin=origin,
            role=role,
            emit_type=str(name.with_stage(EventStage.VALIDATED)),
            emit_data=dict(data),
        )

    async def handle(self, event: Event) -> ValidationOutcome:
        """
        Evaluate a requested event and apply the decision.

        Safe to call more than once for the same event.

        Returns:
            ValidationOutcome with the emitted event or the proposal id
        """
        decision = await self.evaluate(event)
        correlation_id = event.correlation_id or event.id
        request_id = resolve_request_id(event)

        if decision.status is ValidationStatus.PROPOSAL_CREATED:
            outcome = await self._defer(event, decision, correlation_id, request_id)
        elif decision.emit_type is not None:
            follow_up = create_event(
                decision.emit_type,
                decision.emit_data,
                decision.user_id,
                aggregate_id=event.aggregate_id,
                source=event.source,
                correlation_id=correlation_id,
                causation_id=event.id,
                request_id=request_id,
                metadata=event.metadata,
            )
            result = await self._store.append(
                follow_up, idempotency_key=f"{correlation_id}:{event.id}:{decision.emit_type}"
            )
            outcome = ValidationOutcome(
                status=decision.status,
                reason=decision.reason,
                event=result.event,
                duplicate=result.duplicate,
            )
        else:
            # Nothing to append: tell the requester directly if we know who it is
            notification = None
            if decision.user_id:
                notification = await safe_notify(
                    self._notifier,
                    decision.user_id,
                    NotificationMessage(
                        type="intent:denied",
                        data={"eventId": event.id, "type": event.type, "reason": decision.reason},
                        request_id=request_id,
                        status="error",
                    ),
                    request_id=request_id,
                )
            outcome = ValidationOutcome(
                status=decision.status, reason=decision.reason, notification=notification
            )

        self._metrics.record_validator_outcome(decision.status.value)
        log.info(
            f"validator.{decision.status.value}",
            event_id=event.id,
            type=event.type,
            user_id=decision.user_id,
            workspace_id=decision.workspace_id,
            reason=decision.reason,
            correlation_id=correlation_id,
            emitted_id=outcome.event.id if outcome.event else None,
            proposal_id=outcome.proposal_id,
            duplicate=outcome.duplicate,
        )
        return outcome

    async def _defer(
        self, event: Event, decision: Decision, correlation_id: str, request_id: str
    ) -> ValidationOutcome:
        name = decision.name
        data = event.data
        target_id = str(
            data.get("documentId")
            or data.get("entityId")
            or data.get("id")
            or data.get("targetId")
            or uuid.uuid5(uuid.NAMESPACE_URL, f"intentflow:target:{event.id}")
        )
        ai_metadata = event.metadata["ai"] if has_ai_metadata(event.metadata) else None

        proposal = Proposal(
            workspace_id=str(decision.workspace_id or PERSONAL_WORKSPACE),
            target_type=name.target_type,
            target_id=target_id,
            request=ProposalRequest(
                request_id=request_id,
                source=decision.origin,
                source_id=event.id,
                target_type=name.target_type,
                target_id=target_id,
                change_type=name.action,
                data=dict(data),
                reasoning=decision.reason,
                ai_metadata=ai_metadata,
                event=serialize_event(event),
            ),
        )
        proposal, created = await self._proposals.create(
            proposal,
            idempotency_key=f"{correlation_id}:{event.id}:{name.with_stage(PROPOSED_STAGE)}",
        )

        notification = None
        if created:
            self._metrics.record_proposal_created()
            self._metrics.set_pending_proposals(await self._proposals.count(ProposalStatus.PENDING))
            notification = await safe_notify(
                self._notifier,
                decision.user_id,
                NotificationMessage(
                    type="proposal:created",
                    data={
                        "proposalId": proposal.id,
                        "targetType": proposal.target_type,
                        "targetId": proposal.target_id,
                        "changeType": name.action,
                        "status": ProposalStatus.PENDING.value,
                    },
                    request_id=request_id,
                    status="success",
                ),
                request_id=request_id,
            )

        return ValidationOutcome(
            status=ValidationStatus.PROPOSAL_CREATED,
            reason=decision.reason,
            proposal_id=proposal.id,
            duplicate=not created,
            notification=notification,
        )
