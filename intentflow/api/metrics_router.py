"""Metrics API endpoint."""
from fastapi import APIRouter, Depends
from ..dependencies import get_pipeline
from ..pipeline import Pipeline

router = APIRouter(prefix="/v1", tags=["metrics"])


@router.get("/metrics")
async def get_metrics(pipeline: Pipeline = Depends(get_pipeline)):
    """
    Get current pipeline metrics as JSON.

    Example response:
    ```json
    {
      "uptime_seconds": 123.45,
      "counters": {
        "events_appended_total{type=entities.create.requested}": 10,
        "validator_outcomes_total{status=proposal_created}": 3
      },
      "gauges": {
        "proposals_pending": 3,
        "websocket_connections": 1
      },
      "histograms": {
        "append_latency_ms": {"count": 20, "sum": 4.1, "avg": 0.2, "min": 0.1, "max": 0.9}
      }
    }
    ```
    """
    pipeline.metrics.set_websocket_connections(pipeline.stream_manager.connection_count)
    pipeline.metrics.update_system_metrics()
    return pipeline.metrics.collector.get_metrics()
