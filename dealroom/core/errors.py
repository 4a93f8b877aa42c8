"""Standardized error responses and the data room exception taxonomy."""
from typing import Any

import sentry_sdk
import structlog
from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel

logger = structlog.get_logger()


class ErrorResponse(BaseModel):
    """Standard error envelope returned by all API error handlers."""
    error: str
    message: str
    detail: Any = None
    request_id: str = "unknown"


# ── Exception taxonomy ────────────────────────────────────────────────────────


class DataRoomError(Exception):
    """Base class for errors raised by data room services."""

    status_code = 500
    error = "dataroom_error"

    def __init__(self, message: str, detail: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail

    @property
    def headers(self) -> dict[str, str]:
        return {}


class Unauthenticated(DataRoomError):
    status_code = 401
    error = "unauthenticated"

    @property
    def headers(self) -> dict[str, str]:
        return {"WWW-Authenticate": "Bearer"}


class Forbidden(DataRoomError):
    status_code = 403
    error = "forbidden"

    def __init__(self, message: str = "No access to this data room", reason: str = "no-access") -> None:
        super().__init__(message, detail={"reason": reason})
        self.reason = reason


class NotFound(DataRoomError, LookupError):
    status_code = 404
    error = "not_found"


class InvalidInput(DataRoomError, ValueError):
    status_code = 400
    error = "invalid_input"


class Conflict(DataRoomError):
    status_code = 409
    error = "conflict"


class RateLimited(DataRoomError):
    status_code = 429
    error = "rate_limited"

    def __init__(self, limit: int, window: int) -> None:
        super().__init__("Too many requests. Please slow down.", detail={"limit": limit, "window": window})
        self.limit = limit
        self.window = window

    @property
    def headers(self) -> dict[str, str]:
        return {
            "retry-after": str(self.window),
            "x-ratelimit-limit": str(self.limit),
            "x-ratelimit-remaining": "0",
            "x-ratelimit-window": str(self.window),
        }


class UpstreamFailure(DataRoomError):
    status_code = 500
    error = "upstream_failure"


# ── Handlers ──────────────────────────────────────────────────────────────────


def _envelope(request: Request, status_code: int, error: str, message: str, detail: Any = None,
              headers: dict[str, str] | None = None) -> JSONResponse:
    request_id = request.headers.get("x-request-id", "unknown")
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(
            error=error, message=message, detail=detail, request_id=request_id
        ).model_dump(),
        headers=headers,
    )


async def dataroom_exception_handler(request: Request, exc: DataRoomError) -> JSONResponse:
    """Render taxonomy errors raised by services into the standard envelope."""
    if exc.status_code >= 500:
        logger.error(
            "dataroom_request_failed",
            error=exc.message,
            error_type=type(exc).__name__,
            path=request.url.path,
        )
        sentry_sdk.capture_exception(exc)
    return _envelope(request, exc.status_code, exc.error, exc.message, exc.detail, exc.headers)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Missing or malformed fields are client input errors (400)."""
    errors = [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg", "")}
        for err in exc.errors()
    ]
    message = errors[0]["msg"] if errors else "Invalid request"
    return _envelope(request, 400, InvalidInput.error, message, errors)


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch unhandled exceptions and return a consistent JSON envelope."""
    request_id = request.headers.get("x-request-id", "unknown")

    logger.error(
        "unhandled_exception",
        error=str(exc),
        error_type=type(exc).__name__,
        path=request.url.path,
        method=request.method,
        request_id=request_id,
    )

    sentry_sdk.capture_exception(exc)

    return JSONResponse(
        status_code=500,
        content={
            "error": "internal_server_error",
            "message": "An unexpected error occurred. Our team has been notified.",
            "request_id": request_id,
        },
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Standardize HTTPException responses into the same JSON envelope."""
    if isinstance(exc.detail, dict):
        error = exc.detail.get("error", f"http_{exc.status_code}")
        message = exc.detail.get("message", str(exc.detail))
        detail: Any = exc.detail.get("detail")
    else:
        error = f"http_{exc.status_code}"
        message = str(exc.detail)
        detail = exc.detail

    return _envelope(request, exc.status_code, error, message, detail, dict(exc.headers or {}))
