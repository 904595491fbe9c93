"""Tests for metrics and telemetry."""
import asyncio
import time
import pytest
from prometheus_client import CollectorRegistry
from intentflow.metrics import Metrics, MetricsCollector
from intentflow.metrics.collector import VALIDATOR_OUTCOMES_TOTAL


@pytest.mark.asyncio
async def test_metrics_endpoint_exists(client):
    """Test that /v1/metrics is accessible."""
    response = await client.get("/v1/metrics")
    assert response.status_code == 200
    data = response.json()
    assert "uptime_seconds" in data
    assert "counters" in data
    assert "gauges" in data
    assert "histograms" in data
    assert data["gauges"]["websocket_connections"] == 0


def test_counter_increment():
    test_collector = MetricsCollector()

    test_collector.increment("test_counter")
    test_collector.increment("test_counter")
    test_collector.increment("test_counter", value=3)

    metrics = test_collector.get_metrics()
    assert metrics["counters"]["test_counter"] == 5
    assert test_collector.counter("test_counter") == 5
    assert test_collector.counter("never_seen") == 0


def test_counter_with_labels():
    test_collector = MetricsCollector()

    test_collector.increment("requests", labels={"method": "GET", "path": "/events"})
    test_collector.increment("requests", labels={"path": "/events", "method": "POST"})
    test_collector.increment("requests", labels={"method": "GET", "path": "/events"})

    metrics = test_collector.get_metrics()
    assert metrics["counters"]["requests{method=GET,path=/events}"] == 2
    assert metrics["counters"]["requests{method=POST,path=/events}"] == 1


def test_gauge_value():
    test_collector = MetricsCollector()

    test_collector.gauge("temperature", 23.5)
    test_collector.gauge("temperature", 24.0)  # Update value

    assert test_collector.get_metrics()["gauges"]["temperature"] == 24.0


def test_histogram_recording():
    test_collector = MetricsCollector()

    test_collector.histogram("latency", 10.5)
    test_collector.histogram("latency", 20.0)
    test_collector.histogram("latency", 15.5)

    stats = test_collector.get_metrics()["histograms"]["latency"]
    assert stats["count"] == 3
    assert stats["sum"] == 46.0
    assert stats["min"] == 10.5
    assert stats["max"] == 20.0
    assert abs(stats["avg"] - 15.33) < 0.01


@pytest.mark.asyncio
async def test_latency_recording():
    test_collector = MetricsCollector()

    start_time = time.time()
    await asyncio.sleep(0.01)  # Sleep 10ms
    test_collector.record_latency("operation_latency", start_time)

    stats = test_collector.get_metrics()["histograms"]["operation_latency"]
    assert stats["count"] == 1
    assert stats["min"] >= 10


def test_metrics_reset():
    test_collector = MetricsCollector()

    test_collector.increment("counter", value=10)
    test_collector.gauge("gauge", 50.0)
    test_collector.histogram("hist", 100.0)

    test_collector.reset()

    metrics = test_collector.get_metrics()
    assert len(metrics["counters"]) == 0
    assert len(metrics["gauges"]) == 0
    assert len(metrics["histograms"]) == 0


def test_metrics_instances_are_isolated():
    first, second = Metrics(), Metrics()

    first.record_validator_outcome("denied")

    assert first.registry is not second.registry
    assert first.collector.counter(VALIDATOR_OUTCOMES_TOTAL, {"status": "denied"}) == 1
    assert second.collector.counter(VALIDATOR_OUTCOMES_TOTAL, {"status": "denied"}) == 0


def test_prometheus_counters_follow_recordings():
    registry = CollectorRegistry()
    metrics = Metrics(registry=registry)

    metrics.record_event_appended("notes.create.requested", 120, time.time())
    metrics.record_proposal_review("approved")
    metrics.set_pending_proposals(4)
    metrics.record_handler_failure("global_validator")

    assert registry.get_sample_value(
        "intentflow_events_appended_total", {"event_type": "notes.create.requested"}
    ) == 1
    assert registry.get_sample_value("intentflow_proposals_reviewed_total", {"decision": "approved"}) == 1
    assert registry.get_sample_value("intentflow_proposals_pending") == 4
    assert registry.get_sample_value("intentflow_handler_failures_total", {"handler": "global_validator"}) == 1


@pytest.mark.asyncio
async def test_pipeline_activity_is_recorded(client, pipeline):
    await client.post(
        "/v1/events",
        json={"type": "notes.create.requested", "data": {"source": "ai"}},
        headers={"X-User-Id": "alice"},
    )
    await pipeline.runtime.run_until_idle()

    data = (await client.get("/v1/metrics")).json()

    assert data["counters"]["events_appended_total{type=notes.create.requested}"] == 1
    assert data["counters"]["validator_outcomes_total{status=proposal_created}"] == 1
    assert data["counters"]["proposals_created_total"] == 1
    assert data["gauges"]["proposals_pending"] == 1
    assert "append_latency_ms" in data["histograms"]


@pytest.mark.asyncio
async def test_uptime_tracking():
    test_collector = MetricsCollector()

    await asyncio.sleep(0.1)

    assert test_collector.get_metrics()["uptime_seconds"] >= 0.1
