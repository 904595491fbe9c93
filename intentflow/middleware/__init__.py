"""HTTP middleware: correlation ids, error responses, payload validation, metrics."""
from .correlation import CorrelationMiddleware, get_correlation_id
from .error_handler import ErrorHandlerMiddleware, intentflow_error_handler
from .metrics import MetricsMiddleware
from .validation import ValidationMiddleware

__all__ = [
    "CorrelationMiddleware",
    "ErrorHandlerMiddleware",
    "MetricsMiddleware",
    "ValidationMiddleware",
    "get_correlation_id",
    "intentflow_error_handler",
]
