"""Structured error responses."""
from fastapi import Request, HTTPException
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
import structlog
from .correlation import get_correlation_id
from ..errors import IntentflowError

log = structlog.get_logger()


def error_body(request: Request, error: str, message, status_code: int, **extra) -> dict:
    return {
        "error": error,
        "message": message,
        "status_code": status_code,
        "correlation_id": get_correlation_id(),
        "path": str(request.url.path),
        **extra,
    }


async def intentflow_error_handler(request: Request, exc: IntentflowError) -> JSONResponse:
    """Exception handler turning domain errors into their HTTP status."""
    log.warning(
        "intentflow.error",
        code=exc.code,
        status_code=exc.status_code,
        message=exc.message,
        path=request.url.path,
    )
    body = error_body(request, exc.__class__.__name__, exc.message, exc.status_code, code=exc.code)
    if exc.context:
        body["context"] = exc.context
    return JSONResponse(status_code=exc.status_code, content=body)


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """Last line of defence: structured responses for anything still unhandled."""

    async def dispatch(self, request: Request, call_next):
        try:
            return await call_next(request)
        except IntentflowError as exc:
            return await intentflow_error_handler(request, exc)
        except HTTPException as exc:
            log.warning(
                "http.exception",
                status_code=exc.status_code,
                detail=exc.detail,
                path=request.url.path,
            )
            return JSONResponse(
                status_code=exc.status_code,
                content=error_body(request, exc.__class__.__name__, exc.detail, exc.status_code),
            )
        except Exception as exc:
            log.error(
                "unhandled.exception",
                error=str(exc),
                error_type=exc.__class__.__name__,
                path=request.url.path,
                exc_info=True
            )
            return JSONResponse(
                status_code=500,
                content=error_body(request, "InternalServerError", "An unexpected error occurred", 500),
            )
