"""At-least-once, bounded-retry dispatch of appended events."""
from .runtime import HandlerResult, WorkerRuntime

__all__ = ["HandlerResult", "WorkerRuntime"]
