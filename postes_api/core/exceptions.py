"""
Error taxonomy and global exception handlers.

Every failure leaves the API as ``{"success": false, "message", "code"}``
(plus ``details`` when there is something useful to add). Stack traces never
reach the client.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException

from postes_api.core.config import settings
from postes_api.db.errors import PersistenceError, PersistenceErrorKind

logger = logging.getLogger(__name__)


class AppError(Exception):
    """Base class for errors that map onto a failure envelope."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    code: str = "INTERNAL_SERVER_ERROR"
    message: str = "Internal server error"

    def __init__(
        self,
        message: str | None = None,
        *,
        code: str | None = None,
        status_code: int | None = None,
        details: Any = None,
    ) -> None:
        self.message = message or self.message
        self.code = code or self.code
        self.status_code = status_code or self.status_code
        self.details = details
        super().__init__(self.message)


# ── Auth ────────────────────────────────────────────────────────────
class MissingAuthError(AppError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "MISSING_AUTH"
    message = "Authentication required"


class InvalidTokenError(AppError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "INVALID_TOKEN"
    message = "Invalid or expired token"


class ForbiddenError(AppError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "FORBIDDEN"
    message = "You do not have permission to perform this action"


class InvalidCredentialsError(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "INVALID_CREDENTIALS"
    message = "Invalid password"


# ── Request / resource ──────────────────────────────────────────────
class ValidationError(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "VALIDATION_ERROR"
    message = "Invalid request data"


class MissingFieldsError(ValidationError):
    code = "MISSING_FIELDS"

    def __init__(self, fields: list[str]) -> None:
        super().__init__(
            f"Missing required fields: {', '.join(fields)}",
            details={"missingFields": fields},
        )
        self.fields = fields


class NotFoundError(AppError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "NOT_FOUND"

    def __init__(self, resource: str, resource_id: Any = None, *, code: str | None = None):
        detail = f"{resource} not found"
        if resource_id is not None:
            detail = f"{resource} '{resource_id}' not found"
        super().__init__(detail, code=code)


class DuplicateEntryError(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "DUPLICATE_ENTRY"
    message = "A record with the same unique value already exists"


# ── Uploads ─────────────────────────────────────────────────────────
class UploadProcessingError(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "UPLOAD_ERROR"
    message = "File upload failed"


class InvalidFileTypeError(UploadProcessingError):
    code = "INVALID_FILE_TYPE"
    message = "Only JPEG and PNG images are allowed"


class InternalServerError(AppError):
    pass


# ── Handlers ────────────────────────────────────────────────────────
def _envelope(status_code: int, message: str, code: str, details: Any = None) -> JSONResponse:
    content: dict[str, Any] = {"success": False, "message": message, "code": code}
    if details is not None:
        content["details"] = details
    return JSONResponse(status_code=status_code, content=content)


async def _app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    else:
        logger.info("%s %s rejected: %s (%s)", request.method, request.url.path, exc.code, exc.message)
    return _envelope(exc.status_code, exc.message, exc.code, exc.details)


async def _persistence_error_handler(request: Request, exc: PersistenceError) -> JSONResponse:
    if exc.kind is PersistenceErrorKind.DUPLICATE_KEY:
        message = f"{exc.entity} already exists" if exc.entity else DuplicateEntryError.message
        return _envelope(400, message, DuplicateEntryError.code)
    if exc.kind is PersistenceErrorKind.NOT_FOUND:
        return _envelope(404, f"{exc.entity or 'Record'} not found", NotFoundError.code)

    logger.error("Database error on %s %s: %s", request.method, request.url.path, exc, exc_info=exc)
    message = "Database operation failed"
    if not settings.is_production:
        message = f"{message}: {exc.original}"
    return _envelope(500, message, "DATABASE_ERROR")


def _field_name(err: dict[str, Any]) -> str:
    name = ".".join(str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path"))
    return name or "body"


async def _request_validation_handler(_request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    if errors and all(err.get("type") == "missing" for err in errors):
        missing = MissingFieldsError([_field_name(err) for err in errors])
        return _envelope(missing.status_code, missing.message, missing.code, missing.details)

    problems = []
    for err in errors:
        location = _field_name(err)
        problems.append(f"{location}: {err.get('msg')}" if location else str(err.get("msg")))
    return _envelope(400, "; ".join(problems) or ValidationError.message, ValidationError.code)


async def _http_exception_handler(_request: Request, exc: HTTPException) -> JSONResponse:
    return _envelope(exc.status_code, str(exc.detail), f"HTTP_{exc.status_code}")


async def _rate_limit_handler(_request: Request, exc: RateLimitExceeded) -> JSONResponse:
    return _envelope(429, f"Too many requests: {exc.detail}", "RATE_LIMITED")


async def _generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled exception on %s %s: %s", request.method, request.url.path, exc)
    message = "Internal server error"
    if not settings.is_production:
        message = str(exc) or message
    return _envelope(500, message, InternalServerError.code)


def register_exception_handlers(app: FastAPI) -> None:
    """Attach all exception handlers to the FastAPI app."""
    app.add_exception_handler(AppError, _app_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(PersistenceError, _persistence_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _request_validation_handler)  # type: ignore[arg-type]
    app.add_exception_handler(HTTPException, _http_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RateLimitExceeded, _rate_limit_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, _generic_exception_handler)
