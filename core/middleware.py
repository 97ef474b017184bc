"""
Application Middleware for the Video Feed API.

Key Middleware Components:
- `CorrelationMiddleware`: assigns a correlation ID to every request (or
  reuses the caller's `X-Correlation-ID` / `X-Request-ID`) so all log lines of
  one request can be traced together.
- `ErrorHandlingMiddleware`: turns `VideoAPIException` subclasses, HTTP
  exceptions and unexpected errors into one JSON error envelope carrying the
  correlation ID.
- `RequestTimingMiddleware`: logs each request with its status and duration
  and adds an `X-Process-Time` header; slow requests are logged as warnings.

Ordering: Starlette runs the middleware added last first, so the application
adds `ErrorHandlingMiddleware` before `CorrelationMiddleware` to make the
correlation ID available when an error response is built.
"""

import time
import uuid
from typing import Any, Callable, Dict, Optional

from fastapi import HTTPException, Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from .exceptions import VideoAPIException, status_code_for
from .logging_config import get_logger, set_correlation_id

logger = get_logger("core.middleware")

SLOW_REQUEST_SECONDS = 1.0


class CorrelationMiddleware(BaseHTTPMiddleware):
    """Middleware to add correlation IDs to requests"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        correlation_id = (
            request.headers.get("X-Correlation-ID")
            or request.headers.get("X-Request-ID")
            or str(uuid.uuid4())
        )

        set_correlation_id(correlation_id)
        request.state.correlation_id = correlation_id

        response = await call_next(request)
        response.headers["X-Correlation-ID"] = correlation_id
        return response


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """Middleware for centralized error handling"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        try:
            return await call_next(request)

        except VideoAPIException as e:
            status_code = status_code_for(e)
            log = logger.error if status_code >= 500 else logger.warning
            log(
                f"Application error: {e.message}",
                extra={
                    "error_type": type(e).__name__,
                    "error_code": e.error_code,
                    "status_code": status_code,
                    "path": request.url.path,
                    "method": request.method,
                },
            )
            return create_error_response(
                type(e).__name__,
                e.error_code,
                e.message,
                status_code=status_code,
                correlation_id=getattr(request.state, "correlation_id", None),
                details=e.details,
            )

        except HTTPException as e:
            logger.warning(
                f"HTTP exception: {e.status_code} - {e.detail}",
                extra={
                    "status_code": e.status_code,
                    "path": request.url.path,
                    "method": request.method,
                },
            )
            return create_error_response(
                "HTTPException",
                f"HTTP_{e.status_code}",
                e.detail,
                status_code=e.status_code,
                correlation_id=getattr(request.state, "correlation_id", None),
            )

        except Exception as e:
            logger.error(
                f"Unexpected error: {str(e)}",
                extra={
                    "error_type": type(e).__name__,
                    "path": request.url.path,
                    "method": request.method,
                },
                exc_info=True,
            )
            return create_error_response(
                "InternalServerError",
                "INTERNAL_ERROR",
                "An unexpected error occurred",
                status_code=500,
                correlation_id=getattr(request.state, "correlation_id", None),
            )


class RequestTimingMiddleware(BaseHTTPMiddleware):
    """Logs request completion time"""

    def __init__(self, app: ASGIApp, slow_request_seconds: float = SLOW_REQUEST_SECONDS):
        super().__init__(app)
        self.slow_request_seconds = slow_request_seconds

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.perf_counter()
        response = await call_next(request)
        process_time = time.perf_counter() - start_time
        process_time_ms = round(process_time * 1000, 2)

        response.headers["X-Process-Time"] = str(process_time_ms)

        extra = {
            "method": request.method,
            "path": request.url.path,
            "status_code": response.status_code,
            "process_time_ms": process_time_ms,
        }
        if process_time > self.slow_request_seconds:
            logger.warning(f"Slow request: {request.method} {request.url.path}", extra=extra)
        else:
            logger.info(
                f"{request.method} {request.url.path} - {response.status_code}", extra=extra
            )
        return response


def get_client_ip(request: Request) -> str:
    """Extract client IP from request, considering proxy headers"""
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        # First hop is the original client
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip

    return request.client.host if request.client else "unknown"


def create_error_response(
    error_type: str,
    error_code: str,
    message: Any,
    status_code: int = 400,
    correlation_id: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
) -> JSONResponse:
    """Create standardized error response"""

    error_data = {"error": {"type": error_type, "code": error_code, "message": message}}

    if correlation_id:
        error_data["error"]["correlation_id"] = correlation_id

    if details:
        error_data["error"]["details"] = details

    return JSONResponse(status_code=status_code, content=error_data)
