"""
Error types shared by the API and the job handler, plus the JSON envelope
every API response is wrapped in.

Envelope:

    {"ok": true,  "data": ...,  "message": ..., "request_id": ..., "timestamp": ...}
    {"ok": false, "error": {"message", "code", "details"}, "request_id": ..., "timestamp": ...}
"""

import uuid
from datetime import UTC, datetime
from typing import Any

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from reviewbot.config.logging import add_request_context, get_logger

logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


class ReviewBotException(Exception):
    """Error with an HTTP status, rendered into the error envelope by the API."""

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


class NotFoundError(ReviewBotException):
    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, status.HTTP_404_NOT_FOUND, details)


class NonRetryableError(ReviewBotException):
    """
    A job failure that another attempt cannot fix.

    Jobs failing with this error go straight to the failed state instead of
    consuming the remaining retry budget.
    """


class TenantConfigurationError(NonRetryableError):
    """The installation is unknown, disabled, or missing credentials."""

    def __init__(self, message: str, installation_id: int):
        super().__init__(message, details={"installation_id": installation_id})
        self.installation_id = installation_id


def _envelope(ok: bool, request_id: str | None, **fields: Any) -> dict[str, Any]:
    return {
        "ok": ok,
        **fields,
        "request_id": request_id,
        "timestamp": datetime.now(UTC).isoformat(),
    }


def create_error_response(
    status_code: int,
    message: str,
    details: dict[str, Any] | None = None,
    request_id: str | None = None,
) -> dict[str, Any]:
    error = {"message": message, "code": status_code, "details": details or {}}
    return _envelope(False, request_id, error=error)


def create_success_response(
    data: Any, message: str | None = None, request_id: str | None = None
) -> dict[str, Any]:
    return _envelope(True, request_id, data=data, message=message)


def _error_json(
    request: Request,
    status_code: int,
    message: str,
    details: dict[str, Any] | None = None,
) -> JSONResponse:
    request_id = getattr(request.state, "request_id", None)
    return JSONResponse(
        status_code=status_code,
        content=create_error_response(status_code, message, details, request_id),
    )


async def reviewbot_exception_handler(
    request: Request, exc: ReviewBotException
) -> JSONResponse:
    log = logger.warning if exc.status_code < 500 else logger.error
    log(
        "Request failed",
        exception=exc.__class__.__name__,
        message=exc.message,
        status_code=exc.status_code,
        details=exc.details,
    )
    return _error_json(request, exc.status_code, exc.message, exc.details)


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    logger.warning("HTTP error", status_code=exc.status_code, detail=exc.detail)
    return _error_json(request, exc.status_code, str(exc.detail))


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = [
        {"loc": list(error["loc"]), "message": error["msg"]} for error in exc.errors()
    ]
    return _error_json(request, 422, "Invalid request", {"errors": errors})


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("Unhandled exception", exception=exc.__class__.__name__, exc_info=exc)
    return _error_json(
        request, status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error"
    )


def install_exception_handlers(app: FastAPI) -> None:
    """Render every API error, expected or not, as the error envelope."""
    app.add_exception_handler(ReviewBotException, reviewbot_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Tag each request with an id, reusing the caller's X-Request-ID when sent."""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        request.state.request_id = request_id

        add_request_context(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )

        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response
