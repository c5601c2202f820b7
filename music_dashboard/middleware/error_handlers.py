"""HTTP error responses.

Every failure leaves the API as ``{"error": {"code", "message", "details"}}``,
the same code vocabulary the relay puts in its ``error`` events.
"""

from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded

from music_dashboard.exceptions import DashboardException, ErrorCode, UpstreamUnavailableException
from music_dashboard.logging_config import get_logger, log_with_context

logger = get_logger(__name__)


def error_response(
    status_code: int,
    code: ErrorCode,
    message: str,
    details: dict[str, Any] | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": {"code": code.value, "message": message, "details": details or {}}},
        headers=headers,
    )


async def dashboard_exception_handler(request: Request, exc: DashboardException) -> JSONResponse:
    """Render a DashboardException, passing Spotify's Retry-After on to the caller."""
    log_with_context(
        logger,
        "error" if exc.status_code >= 500 else "warning",
        "Request failed",
        error_code=exc.code.value,
        error_message=exc.message,
        status_code=exc.status_code,
        method=request.method,
        path=request.url.path,
        event_type="request_error",
    )

    headers = None
    if isinstance(exc, UpstreamUnavailableException) and exc.retry_after is not None:
        headers = {"Retry-After": str(int(exc.retry_after))}
    return error_response(exc.status_code, exc.code, exc.message, exc.details, headers)


async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    log_with_context(
        logger,
        "warning",
        "Client rate limited",
        limit=exc.detail,
        path=request.url.path,
        client=request.client.host if request.client else None,
        event_type="client_rate_limited",
    )
    return error_response(429, ErrorCode.RATE_LIMITED, f"Rate limit exceeded: {exc.detail}")


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    log_with_context(
        logger,
        "error",
        "Unhandled exception",
        error=str(exc),
        error_type=type(exc).__name__,
        method=request.method,
        path=request.url.path,
        event_type="unhandled_error",
    )
    logger.error("Exception traceback:", exc_info=exc)

    # Internal details stay in the log
    return error_response(500, ErrorCode.INTERNAL_ERROR, "Internal server error")


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(DashboardException, dashboard_exception_handler)
    app.add_exception_handler(RateLimitExceeded, rate_limit_handler)
    app.add_exception_handler(Exception, general_exception_handler)
