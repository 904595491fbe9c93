"""In-process worker runtime.

Appended events are queued and delivered to every handler whose glob pattern
matches the event type. Delivery is at-least-once: a failing handler is
retried a bounded number of times, then the failure is logged and reported.
Handlers must therefore be idempotent.
"""
import asyncio
from dataclasses import dataclass
from fnmatch import fnmatchcase
from typing import Any, Awaitable, Callable
import structlog
from ..event_models import StoredEvent
from ..executors.base import Executor
from ..metrics import Metrics

log = structlog.get_logger()

Handler = Callable[[StoredEvent], Awaitable[Any]]


@dataclass(frozen=True)
class Registration:
    pattern: str
    handler: Handler
    name: str
    retries: int


@dataclass
class HandlerResult:
    handler: str
    success: bool
    attempts: int
    result: Any = None
    error: str | None = None


class WorkerRuntime:
    """Queue plus dispatcher for pipeline handlers."""

    def __init__(self, retries: int = 2, metrics: Metrics | None = None, backoff_seconds: float = 0.0):
        """
        Args:
            retries: Default extra attempts after a failure
            metrics: Metrics sink
            backoff_seconds: Delay before retry n is ``n * backoff_seconds``
        """
        self.retries = retries
        self.backoff_seconds = backoff_seconds
        self._metrics = metrics or Metrics()
        self._registrations: list[Registration] = []
        self._queue: asyncio.Queue[StoredEvent] = asyncio.Queue()
        self._task: asyncio.Task | None = None

    def register(self, pattern: str, handler: Handler, name: str | None = None, retries: int | None = None):
        registration = Registration(
            pattern=pattern,
            handler=handler,
            name=name or getattr(handler, "__qualname__", repr(handler)),
            retries=self.retries if retries is None else retries,
        )
        self._registrations.append(registration)
        log.info("worker.handler_registered", handler=registration.name, pattern=pattern, retries=registration.retries)

    def register_executor(self, executor: Executor, retries: int | None = None):
        self.register(executor.event_type, executor.handle, name=executor.name, retries=retries)

    def handlers_for(self, event_type: str) -> list[Registration]:
        return [r for r in self._registrations if fnmatchcase(event_type, r.pattern)]

    async def enqueue(self, event: StoredEvent):
        """Event store subscriber: queue the event for dispatch."""
        if self.handlers_for(event.type):
            self._queue.put_nowait(event)

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    async def dispatch(self, event: StoredEvent) -> list[HandlerResult]:
        """
        Deliver one event to every matching handler.

        Returns:
            One HandlerResult per matching handler. Failures are reported, never raised.
        """
        return [await self._deliver(r, event) for r in self.handlers_for(event.type)]

    async def _deliver(self, registration: Registration, event: StoredEvent) -> HandlerResult:
        attempts = 0
        max_attempts = 1 + registration.retries
        while True:
            attempts += 1
            try:
                result = await registration.handler(event)
                return HandlerResult(registration.name, True, attempts, result=result)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                if attempts >= max_attempts:
                    log.error(
                        "worker.handler_failed",
                        handler=registration.name,
                        event_id=event.id,
                        type=event.type,
                        attempts=attempts,
                        error=str(e),
                        error_type=type(e).__name__,
                    )
                    self._metrics.record_handler_failure(registration.name)
                    return HandlerResult(registration.name, False, attempts, error=str(e))

                log.warning(
                    "worker.handler_retry",
                    handler=registration.name,
                    event_id=event.id,
                    attempt=attempts,
                    error=str(e),
                )
                if self.backoff_seconds:
                    await asyncio.sleep(self.backoff_seconds * attempts)

    async def run_until_idle(self) -> list[HandlerResult]:
        """Drain the queue in the current task, including events appended while draining."""
        results: list[HandlerResult] = []
        while not self._queue.empty():
            event = self._queue.get_nowait()
            try:
                results.extend(await self.dispatch(event))
            finally:
                self._queue.task_done()
        return results

    async def _consume(self):
        while True:
            event = await self._queue.get()
            try:
                await self.dispatch(event)
            finally:
                self._queue.task_done()

    async def start(self):
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._consume())
            log.info("worker.started", handlers=len(self._registrations))

    async def stop(self):
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
            log.info("worker.stopped", pending=self.pending)
