"""Metrics: Prometheus registry plus the in-process collector."""
from .collector import MetricsCollector
from .prometheus import Metrics

__all__ = ["Metrics", "MetricsCollector"]
