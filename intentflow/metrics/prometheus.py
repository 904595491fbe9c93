"""
Prometheus metrics for the intentflow service.

Each ``Metrics`` instance owns its own registry, so several apps (and tests)
can live in one process. Domain counters are mirrored into the in-process
``MetricsCollector`` served at ``/v1/metrics``.
"""
from prometheus_client import Counter, Histogram, Gauge, Info, CollectorRegistry
import psutil
import os
import time
import structlog
from . import collector as names
from .collector import MetricsCollector

log = structlog.get_logger()


class Metrics:
    """
    Centralized metrics for the intentflow service.
    """

    def __init__(
        self,
        service_name: str = "intentflow",
        version: str = "0.1.0",
        registry: CollectorRegistry | None = None,
        collector: MetricsCollector | None = None,
    ):
        self.service_name = service_name
        self.version = version
        self.registry = registry or CollectorRegistry()
        self.collector = collector or MetricsCollector()

        # HTTP Metrics
        self.http_requests_total = Counter(
            "http_requests_total",
            "Total HTTP requests",
            ["service", "method", "path", "status"],
            registry=self.registry,
        )

        self.http_request_duration = Histogram(
            "http_request_duration_seconds",
            "HTTP request duration in seconds",
            ["service", "method", "path"],
            registry=self.registry,
        )

        self.http_requests_active = Gauge(
            "http_requests_active",
            "Number of active HTTP requests",
            ["service"],
            registry=self.registry,
        )
        self.http_requests_active.labels(service=service_name).set(0)

        # Application Info
        self.app_info = Info(
            "app",
            "Application information",
            registry=self.registry,
        )
        self.app_info.info({"service": service_name, "version": version})

        self.app_up = Gauge(
            "app_up",
            "Application up status (1=up, 0=down)",
            ["service", "version"],
            registry=self.registry,
        )
        self.app_up.labels(service=service_name, version=version).set(1)

        # Business Metrics - pipeline specific
        self.events_appended_total = Counter(
            "intentflow_events_appended_total",
            "Total events appended to the store",
            ["event_type"],
            registry=self.registry,
        )

        self.event_size_bytes = Histogram(
            "intentflow_event_size_bytes",
            "Event payload size in bytes",
            ["event_type"],
            registry=self.registry,
        )

        self.validator_outcomes_total = Counter(
            "intentflow_validator_outcomes_total",
            "Validator decisions by outcome",
            ["status"],
            registry=self.registry,
        )

        self.proposals_reviewed_total = Counter(
            "intentflow_proposals_reviewed_total",
            "Proposal review decisions",
            ["decision"],
            registry=self.registry,
        )

        self.proposals_pending = Gauge(
            "intentflow_proposals_pending",
            "Proposals awaiting review",
            registry=self.registry,
        )

        self.handler_failures_total = Counter(
            "intentflow_handler_failures_total",
            "Worker handler deliveries that exhausted their retries",
            ["handler"],
            registry=self.registry,
        )

        # System Metrics
        self._setup_process_metrics()

    def _setup_process_metrics(self):
        """Set up process-level metrics using psutil."""
        self.process_cpu_seconds = Counter(
            "process_cpu_seconds_total",
            "Total CPU time consumed by process",
            ["service"],
            registry=self.registry,
        )

        self.process_memory_bytes = Gauge(
            "process_resident_memory_bytes",
            "Resident memory size in bytes",
            ["service"],
            registry=self.registry,
        )

        self.process_open_fds = Gauge(
            "process_open_fds",
            "Number of open file descriptors",
            ["service"],
            registry=self.registry,
        )

        self._last_cpu_total = 0.0
        self.update_system_metrics()

    def update_system_metrics(self):
        """Update system metrics from psutil."""
        try:
            process = psutil.Process(os.getpid())

            cpu_times = process.cpu_times()
            cpu_total = cpu_times.user + cpu_times.system
            # Counter can't be set, so feed it the delta since the last update
            cpu_diff = cpu_total - self._last_cpu_total
            if cpu_diff > 0:
                self.process_cpu_seconds.labels(service=self.service_name).inc(cpu_diff)
            self._last_cpu_total = cpu_total

            self.process_memory_bytes.labels(service=self.service_name).set(process.memory_info().rss)

            if hasattr(process, "num_fds"):
                self.process_open_fds.labels(service=self.service_name).set(process.num_fds())

        except psutil.Error as e:
            log.debug("metrics.process_update_failed", error=str(e))

    def record_event_appended(self, event_type: str, size_bytes: int, start_time: float):
        self.events_appended_total.labels(event_type=event_type).inc()
        self.event_size_bytes.labels(event_type=event_type).observe(size_bytes)
        self.collector.increment(names.EVENTS_APPENDED_TOTAL, labels={"type": event_type})
        self.collector.record_latency(names.APPEND_LATENCY_MS, start_time)

    def record_duplicate(self, event_type: str):
        self.collector.increment(names.EVENTS_DUPLICATE_TOTAL, labels={"type": event_type})

    def record_subscriber_failure(self, hook: str):
        self.collector.increment(names.SUBSCRIBER_FAILURES_TOTAL, labels={"hook": hook})

    def record_validator_outcome(self, status: str):
        self.validator_outcomes_total.labels(status=status).inc()
        self.collector.increment(names.VALIDATOR_OUTCOMES_TOTAL, labels={"status": status})

    def record_proposal_created(self):
        self.collector.increment(names.PROPOSALS_CREATED_TOTAL)

    def record_proposal_review(self, decision: str):
        self.proposals_reviewed_total.labels(decision=decision).inc()
        self.collector.increment(names.PROPOSALS_REVIEWED_TOTAL, labels={"decision": decision})

    def set_pending_proposals(self, count: int):
        self.proposals_pending.set(count)
        self.collector.gauge(names.PROPOSALS_PENDING, count)

    def record_handler_failure(self, handler: str):
        self.handler_failures_total.labels(handler=handler).inc()
        self.collector.increment(names.HANDLER_FAILURES_TOTAL, labels={"handler": handler})

    def record_broadcast(self, success: bool):
        self.collector.increment(names.BROADCASTS_TOTAL, labels={"success": str(success).lower()})

    def set_websocket_connections(self, count: int):
        self.collector.gauge(names.WEBSOCKET_CONNECTIONS, count)

    def record_http_request(self, method: str, path: str, status: int, start_time: float):
        duration = time.time() - start_time
        self.http_requests_total.labels(
            service=self.service_name, method=method, path=path, status=status
        ).inc()
        self.http_request_duration.labels(
            service=self.service_name, method=method, path=path
        ).observe(duration)
        self.collector.increment(names.HTTP_REQUESTS_TOTAL, labels={"method": method, "status": str(status)})
        self.collector.histogram(names.HTTP_REQUEST_DURATION_MS, duration * 1000)
        return duration
