"""
Application errors and the handlers that turn them into responses.

Services raise AppError subclasses; the API never builds error JSON by hand.
"""

import builtins
import logging
from typing import Optional
from uuid import uuid4

from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.requests import Request

from flashdeck.core.logging import get_request_id


class AppError(Exception):
    code = "app_error"
    status_code = 500

    def __init__(self, message: str, *, code: Optional[str] = None, status_code: Optional[int] = None, request_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        self.request_id = request_id


class ValidationError(AppError, ValueError):
    code = "validation_error"
    status_code = 400


class NotFoundError(AppError, ValueError):
    code = "not_found"
    status_code = 404


class AuthenticationError(AppError):
    code = "unauthorized"
    status_code = 401


class PermissionError(AppError, builtins.PermissionError):
    code = "forbidden"
    status_code = 403


class ConflictError(AppError):
    code = "conflict"
    status_code = 409


class InvalidSortFieldError(ValidationError):
    """Raised when a list request asks to sort by a column outside the allow-list."""
    code = "invalid_sort_field"

    def __init__(self, field: str, allowed=()):
        super().__init__(f"Invalid sort field: {field}")
        self.field = field
        self.allowed = tuple(sorted(allowed))


_HTTP_CODES = {
    401: "unauthorized",
    403: "forbidden",
    404: "not_found",
    405: "method_not_allowed",
}

logger = logging.getLogger("flashdeck.errors")


def _request_id_for(request: Request) -> str:
    return getattr(request.state, "request_id", None) or get_request_id() or uuid4().hex


def error_body(code: str, message: str, request_id: str) -> dict:
    """The one error shape every non-2xx response carries."""
    return {
        "error": {"code": code, "message": message, "request_id": request_id},
        "detail": message,
    }


def _respond(request: Request, status_code: int, code: str, message: str, *, request_id: Optional[str] = None, exc_info=None) -> JSONResponse:
    rid = request_id or _request_id_for(request)
    logger.log(
        logging.ERROR if status_code >= 500 else logging.WARNING,
        "request.error",
        exc_info=exc_info,
        extra={"request_id": rid, "error_code": code, "status": status_code, "path": request.url.path},
    )
    return JSONResponse(
        status_code=status_code,
        content=error_body(code, message, rid),
        headers={"x-request-id": rid},
    )


async def app_error_handler(request: Request, exc: AppError):
    return _respond(request, exc.status_code, exc.code, exc.message, request_id=exc.request_id)


async def http_error_handler(request: Request, exc: StarletteHTTPException):
    code = _HTTP_CODES.get(exc.status_code, "http_error")
    return _respond(request, exc.status_code, code, str(exc.detail or "HTTP error"))


async def request_validation_handler(request: Request, exc: RequestValidationError):
    """Schema failures on bodies and params answer 400 like service-level validation."""
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg") or "Invalid request"
    if location:
        message = f"{location}: {message}"
    return _respond(request, 400, ValidationError.code, message)


async def unhandled_exception_handler(request: Request, exc: Exception):
    # Internals never reach the client
    return _respond(request, 500, "internal_error", "Unexpected error", exc_info=exc)
