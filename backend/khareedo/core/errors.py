"""
Application error taxonomy and the FastAPI handlers that render it.

Every failure leaves the API in the same envelope as a success:
``{"success": false, "message": "..."}``. A ``stack`` field is added only
in development.
"""

import logging
import traceback
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError
from starlette.exceptions import HTTPException

from khareedo.core.config import settings

logger = logging.getLogger(__name__)


class AppError(Exception):
    """Base class for errors that map straight onto an HTTP status."""
    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(AppError):
    status_code = 400
    default_message = "Validation failed"


class NotFoundError(AppError):
    status_code = 404
    default_message = "Resource not found"


class AuthError(AppError):
    status_code = 401
    default_message = "Authentication required"


class ForbiddenError(AppError):
    status_code = 403
    default_message = "Access denied"


class ConflictError(AppError):
    # Duplicates surface as 400 with a descriptive message
    status_code = 400
    default_message = "Duplicate field value entered"


class UpstreamError(AppError):
    status_code = 500
    default_message = "Upstream service failed"


def _user_id(request: Request) -> Optional[str]:
    user = getattr(request.state, "user", None)
    return getattr(user, "user_id", None)


def _envelope(request: Request, status_code: int, message: str, exc: Exception) -> JSONResponse:
    body = {"success": False, "message": message}
    if status_code >= 500:
        logger.error(
            f"{request.method} {request.url} failed for user={_user_id(request)}: {exc!r}"
        )
    if settings.is_development and status_code >= 500:
        body["stack"] = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    return JSONResponse(status_code=status_code, content=body)


async def app_error_handler(request: Request, exc: AppError):
    return _envelope(request, exc.status_code, exc.message, exc)


async def http_exception_handler(request: Request, exc: HTTPException):
    message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    return _envelope(request, exc.status_code, message, exc)


async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if errors:
        first = errors[0]
        field = ".".join(str(p) for p in first.get("loc", []) if p not in ("body", "query", "path", "form"))
        message = f"{field}: {first.get('msg')}" if field else first.get("msg", "Validation failed")
    else:
        message = "Validation failed"
    return _envelope(request, 400, message, exc)


async def integrity_error_handler(request: Request, exc: IntegrityError):
    logger.warning(f"Integrity error on {request.method} {request.url}: {exc.orig}")
    return _envelope(request, 400, ConflictError.default_message, exc)


async def unhandled_exception_handler(request: Request, exc: Exception):
    message = str(exc) if settings.is_development and str(exc) else AppError.default_message
    return _envelope(request, 500, message, exc)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(IntegrityError, integrity_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
