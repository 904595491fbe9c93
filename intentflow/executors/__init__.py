"""Executors subscribe to validated intents and emit completed facts."""
from .base import Executor

__all__ = ["Executor"]
