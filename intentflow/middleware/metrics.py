"""HTTP metrics middleware."""
import time
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
import structlog
from ..metrics import Metrics

log = structlog.get_logger()


class MetricsMiddleware(BaseHTTPMiddleware):
    """
    Collect HTTP metrics for Prometheus.

    - Records request count by method, path, status
    - Records request duration histogram
    - Tracks active requests
    """

    def __init__(self, app, metrics: Metrics):
        super().__init__(app)
        self.metrics = metrics

    async def dispatch(self, request: Request, call_next):
        # Skip metrics endpoint to avoid recursion
        if request.url.path.startswith("/metrics"):
            return await call_next(request)

        active = self.metrics.http_requests_active.labels(service=self.metrics.service_name)
        active.inc()
        start_time = time.time()
        # Route templates keep label cardinality bounded
        route = request.scope.get("route")
        path = getattr(route, "path", request.url.path)

        try:
            response = await call_next(request)
            route = request.scope.get("route")
            path = getattr(route, "path", path)
            duration = self.metrics.record_http_request(request.method, path, response.status_code, start_time)
            log.info(
                "http_request",
                http_status=response.status_code,
                duration_ms=round(duration * 1000, 2),
            )
            return response

        except Exception as e:
            duration = self.metrics.record_http_request(request.method, path, 500, start_time)
            log.error(
                "http_request_error",
                error=str(e),
                error_type=type(e).__name__,
                duration_ms=round(duration * 1000, 2),
            )
            raise

        finally:
            active.dec()
