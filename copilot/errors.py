"""
Error taxonomy and the JSON envelope every response uses.

Services raise the exceptions below; the handlers registered by
``register_exception_handlers`` turn them into ``{status, message}``
responses. Only the message string leaves the process.
"""

import logging
from typing import Any, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class CopilotError(Exception):
    """Base class for errors that map to an HTTP status."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message: str = "Something went wrong"

    def __init__(self, message: Optional[str] = None, status_code: Optional[int] = None):
        self.message = message or self.default_message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.message)


class NotFound(CopilotError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Not found"


class Conflict(CopilotError):
    """Uniqueness violation on create. Callers resolve it by updating."""
    status_code = status.HTTP_409_CONFLICT
    default_message = "Already exists"


class ValidationFailure(CopilotError):
    status_code = 422
    default_message = "Invalid input"


class UpstreamFailure(CopilotError):
    status_code = status.HTTP_502_BAD_GATEWAY
    default_message = "Upstream service error"


class CompletionTimeout(UpstreamFailure):
    status_code = status.HTTP_504_GATEWAY_TIMEOUT
    default_message = "The assistant did not answer in time"


class AuthenticationFailure(CopilotError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Not Logged"


class AlreadyLoggedIn(CopilotError):
    """Raised on logged-out-only routes when a valid session exists."""
    status_code = status.HTTP_208_ALREADY_REPORTED
    default_message = "Already Logged"

    def __init__(self, user_data: dict):
        super().__init__()
        self.user_data = user_data


def envelope(status_code: int = 200, message: str = "Success", data: Any = None) -> dict:
    """Build the ``{status, message, data?}`` body."""
    body: dict = {"status": status_code, "message": message}
    if data is not None:
        body["data"] = data
    return body


def envelope_response(status_code: int, message: str, data: Any = None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=envelope(status_code, message, data))


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(AlreadyLoggedIn)
    async def _already_logged_in(request: Request, exc: AlreadyLoggedIn):
        return envelope_response(exc.status_code, exc.message, exc.user_data)

    @app.exception_handler(CopilotError)
    async def _copilot_error(request: Request, exc: CopilotError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        return envelope_response(exc.status_code, exc.message)

    @app.exception_handler(SQLAlchemyError)
    async def _database_error(request: Request, exc: SQLAlchemyError):
        logger.error(f"{request.method} {request.url.path} database error: {exc}")
        return envelope_response(500, "DB gets something wrong")

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content=envelope(exc.status_code, str(exc.detail)),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def _validation_error(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        message = errors[0].get("msg", "Invalid input") if errors else "Invalid input"
        return envelope_response(422, message)
