"""In-process metrics collector for the intent pipeline."""
import time
from typing import Dict, List
from collections import defaultdict
import structlog

log = structlog.get_logger()


# Metric names
EVENTS_APPENDED_TOTAL = "events_appended_total"
EVENTS_DUPLICATE_TOTAL = "events_duplicate_total"
APPEND_LATENCY_MS = "append_latency_ms"
SUBSCRIBER_FAILURES_TOTAL = "subscriber_failures_total"
VALIDATOR_OUTCOMES_TOTAL = "validator_outcomes_total"
PROPOSALS_CREATED_TOTAL = "proposals_created_total"
PROPOSALS_REVIEWED_TOTAL = "proposals_reviewed_total"
PROPOSALS_PENDING = "proposals_pending"
HANDLER_FAILURES_TOTAL = "handler_failures_total"
BROADCASTS_TOTAL = "broadcasts_total"
WEBSOCKET_CONNECTIONS = "websocket_connections"
HTTP_REQUESTS_TOTAL = "http_requests_total"
HTTP_REQUEST_DURATION_MS = "http_request_duration_ms"
ERRORS_TOTAL = "errors_total"


class MetricsCollector:
    """
    Collects and aggregates metrics for the pipeline.

    Tracks:
    - Appended and duplicate events
    - Validator outcomes by status
    - Proposal creation and review decisions
    - Handler and broadcast failures
    """

    def __init__(self):
        self._counters: Dict[str, int] = defaultdict(int)
        self._gauges: Dict[str, float] = defaultdict(float)
        self._histograms: Dict[str, List[float]] = defaultdict(list)
        self._start_time = time.time()

    def increment(self, metric: str, value: int = 1, labels: Dict[str, str] | None = None):
        """
        Increment a counter metric.

        Args:
            metric: Metric name
            value: Amount to increment by
            labels: Optional labels for the metric
        """
        key = self._make_key(metric, labels)
        self._counters[key] += value
        log.debug("metric.increment", metric=metric, value=value, labels=labels)

    def gauge(self, metric: str, value: float, labels: Dict[str, str] | None = None):
        key = self._make_key(metric, labels)
        self._gauges[key] = value
        log.debug("metric.gauge", metric=metric, value=value, labels=labels)

    def histogram(self, metric: str, value: float, labels: Dict[str, str] | None = None):
        key = self._make_key(metric, labels)
        self._histograms[key].append(value)

    def record_latency(self, metric: str, start_time: float, labels: Dict[str, str] | None = None):
        """Record milliseconds elapsed since ``start_time``."""
        latency_ms = (time.time() - start_time) * 1000
        self.histogram(metric, latency_ms, labels)

    def counter(self, metric: str, labels: Dict[str, str] | None = None) -> int:
        return self._counters.get(self._make_key(metric, labels), 0)

    def get_metrics(self) -> Dict:
        """
        Get all collected metrics.

        Returns:
            Dictionary with uptime, counters, gauges and histogram summaries
        """
        histogram_stats = {}
        for key, values in self._histograms.items():
            if values:
                histogram_stats[key] = {
                    "count": len(values),
                    "sum": sum(values),
                    "avg": sum(values) / len(values),
                    "min": min(values),
                    "max": max(values),
                }

        return {
            "uptime_seconds": time.time() - self._start_time,
            "counters": dict(self._counters),
            "gauges": dict(self._gauges),
            "histograms": histogram_stats,
        }

    def reset(self):
        """Reset all metrics (useful for testing)."""
        self._counters.clear()
        self._gauges.clear()
        self._histograms.clear()
        self._start_time = time.time()
        log.info("metrics.reset")

    @staticmethod
    def _make_key(metric: str, labels: Dict[str, str] | None) -> str:
        """Format ``metric{k=v,...}`` with labels sorted by name."""
        if not labels:
            return metric

        label_str = ",".join(f"{k}={v}" for k, v in sorted(labels.items()))
        return f"{metric}{{{label_str}}}"
