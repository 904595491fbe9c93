"""Wiring of the intent pipeline.

``build_pipeline`` creates every component with explicit handles; nothing is
a module-level singleton. The FastAPI app keeps the result on ``app.state``.
"""
from dataclasses import dataclass, field
import structlog
from .access.permissions import MembershipPermissionResolver, PermissionResolver
from .access.workspaces import InMemoryWorkspaceSettingsStore, WorkspaceSettingsStore
from .adapters.base import EventStoreAdapter
from .config import Settings, get_settings
from .executors.base import Executor
from .metrics import Metrics
from .proposals.persistence import InMemoryProposalStore, ProposalStore
from .proposals.service import ProposalReviewService
from .services.event_store import EventStore, create_default_adapter
from .streaming.notifier import HttpRealtimeNotifier, RealtimeNotifier
from .streaming.outcomes import OutcomeBroadcaster
from .streaming.websocket import EventStreamManager, WebSocketNotifier
from .validator.engine import GlobalValidator
from .worker.runtime import WorkerRuntime

log = structlog.get_logger()

REQUESTED_PATTERN = "*.requested"
OUTCOME_PATTERNS = ("*.denied", "*.completed")


@dataclass
class Pipeline:
    settings: Settings
    metrics: Metrics
    store: EventStore
    proposals: ProposalStore
    permissions: PermissionResolver
    workspaces: WorkspaceSettingsStore
    stream_manager: EventStreamManager
    notifier: RealtimeNotifier
    validator: GlobalValidator
    reviews: ProposalReviewService
    runtime: WorkerRuntime
    executors: list[Executor] = field(default_factory=list)

    def add_executor(self, executor: Executor, retries: int | None = None):
        self.executors.append(executor)
        self.runtime.register_executor(
            executor, retries=self.settings.EXECUTOR_RETRIES if retries is None else retries
        )


def build_pipeline(
    settings: Settings | None = None,
    adapter: EventStoreAdapter | None = None,
    proposals: ProposalStore | None = None,
    permissions: PermissionResolver | None = None,
    workspaces: WorkspaceSettingsStore | None = None,
    notifier: RealtimeNotifier | None = None,
    metrics: Metrics | None = None,
) -> Pipeline:
    """
    Assemble the pipeline.

    Args:
        settings: Service settings (defaults to the environment)
        adapter: Event store backend (defaults to STORE_ADAPTER)
        notifier: Realtime notifier (HTTP when REALTIME_URL is set, else WebSocket rooms)

    Returns:
        Pipeline with the validator on ``*.requested`` events and the
        outcome broadcaster on ``*.denied`` and ``*.completed``
    """
    settings = settings or get_settings()
    metrics = metrics or Metrics()
    store = EventStore(adapter or create_default_adapter(settings), metrics=metrics)
    proposals = proposals or InMemoryProposalStore()
    permissions = permissions or MembershipPermissionResolver()
    workspaces = workspaces or InMemoryWorkspaceSettingsStore()
    stream_manager = EventStreamManager()

    if notifier is None:
        if settings.REALTIME_URL:
            notifier = HttpRealtimeNotifier(str(settings.REALTIME_URL), timeout=settings.REALTIME_TIMEOUT)
            log.info("realtime.selected", type="http", url=str(settings.REALTIME_URL))
        else:
            notifier = WebSocketNotifier(stream_manager)
            log.info("realtime.selected", type="websocket")

    validator = GlobalValidator(
        store, proposals, permissions, workspaces, notifier=notifier, metrics=metrics
    )
    runtime = WorkerRuntime(retries=settings.VALIDATOR_RETRIES, metrics=metrics)
    runtime.register(REQUESTED_PATTERN, validator.handle, name="global_validator")

    # Outcome broadcasts run off the worker queue, never inside append
    broadcaster = OutcomeBroadcaster(notifier, metrics=metrics)
    for pattern in OUTCOME_PATTERNS:
        runtime.register(pattern, broadcaster, name="outcome_broadcaster", retries=0)

    store.subscribe(runtime.enqueue)

    return Pipeline(
        settings=settings,
        metrics=metrics,
        store=store,
        proposals=proposals,
        permissions=permissions,
        workspaces=workspaces,
        stream_manager=stream_manager,
        notifier=notifier,
        validator=validator,
        reviews=ProposalReviewService(store, proposals, metrics=metrics),
        runtime=runtime,
    )
