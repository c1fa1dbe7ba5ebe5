"""
API error taxonomy and the exception handlers that render it.

Every error response has the same body:

    {"status": 403, "error": "Forbidden",
     "message": "TASK-002: You are not allowed to edit this task.",
     "path": "/api/tasks/7", "timestamp": "...", "details": []}

The code ahead of the colon in ``message`` is a stable public contract that
clients branch on; the text after it is for humans and may change.
"""

import logging
from http import HTTPStatus
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from auth.exceptions import MalformedTokenError, PrincipalNotFoundError, UnknownRoleError
from time_utils import utc_now

logger = logging.getLogger(__name__)

# Stable error codes
AUTH_REQUIRED = "AUTH-001"
ADMIN_REQUIRED = "AUTH-002"
TASK_NOT_FOUND = "TASK-001"
TASK_ACCESS_DENIED = "TASK-002"
TASK_INVALID_DATE_RANGE = "TASK-003"
COMMENT_NOT_FOUND = "CMT-001"
COMMENT_ACCESS_DENIED = "CMT-002"
USER_ALREADY_EXISTS = "USR-001"
USER_NOT_FOUND = "USR-002"
WRONG_CURRENT_PASSWORD = "USR-003"
PASSWORD_UNCHANGED = "USR-004"
UNKNOWN_ROLE = "USR-005"
INVALID_REQUEST = "REQ-001"
INTERNAL_ERROR = "SRV-001"


class ApiError(Exception):
    """Base class for errors that map to a specific HTTP response."""

    status_code = 500
    code = INTERNAL_ERROR

    def __init__(self, message: str, code: Optional[str] = None, details: Optional[List[Dict[str, Any]]] = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.details = details or []

    @property
    def coded_message(self) -> str:
        return f"{self.code}: {self.message}"


class BadRequestError(ApiError):
    status_code = 400
    code = INVALID_REQUEST


class NotAuthenticatedError(ApiError):
    status_code = 401
    code = AUTH_REQUIRED

    def __init__(self, message: str = "Authentication is required to perform this action.", **kwargs):
        super().__init__(message, **kwargs)


class ForbiddenError(ApiError):
    status_code = 403


class NotFoundError(ApiError):
    status_code = 404


class ConflictError(ApiError):
    status_code = 409


def error_body(status_code: int, message: str, path: str, details: Optional[List[Dict[str, Any]]] = None) -> Dict[str, Any]:
    """Build the error response body shared by every handler."""
    return {
        "status": status_code,
        "error": HTTPStatus(status_code).phrase,
        "message": message,
        "path": path,
        "timestamp": utc_now().isoformat(),
        "details": details or [],
    }


def _json_error(
    request: Request,
    status_code: int,
    message: str,
    details: Optional[List[Dict[str, Any]]] = None,
) -> JSONResponse:
    headers = {"WWW-Authenticate": "Bearer"} if status_code == 401 else None
    return JSONResponse(
        status_code=status_code,
        content=error_body(status_code, message, request.url.path, details),
        headers=headers,
    )


def _field_name(location) -> str:
    # ("body", "title") -> "title"; ("query", "start") -> "start"
    parts = [str(part) for part in location]
    if len(parts) > 1 and parts[0] in ("body", "query", "path", "header"):
        parts = parts[1:]
    return ".".join(parts)


def register_exception_handlers(app: FastAPI) -> None:
    """Install the handlers that translate exceptions into error responses."""

    @app.exception_handler(ApiError)
    async def handle_api_error(request: Request, exc: ApiError):
        logger.info(
            f"API error: status={exc.status_code} message='{exc.coded_message}' path='{request.url.path}'"
        )
        return _json_error(request, exc.status_code, exc.coded_message, exc.details)

    @app.exception_handler(MalformedTokenError)
    async def handle_malformed_token(request: Request, exc: MalformedTokenError):
        logger.info(f"Malformed token on {request.url.path}: {exc}")
        return _json_error(request, 401, f"{AUTH_REQUIRED}: Invalid or expired token.")

    @app.exception_handler(PrincipalNotFoundError)
    async def handle_principal_not_found(request: Request, exc: PrincipalNotFoundError):
        logger.info(f"Token subject {exc.identity} no longer exists (path='{request.url.path}')")
        return _json_error(request, 404, f"{USER_NOT_FOUND}: Authenticated user not found.")

    @app.exception_handler(UnknownRoleError)
    async def handle_unknown_role(request: Request, exc: UnknownRoleError):
        return _json_error(request, 400, f"{UNKNOWN_ROLE}: Unknown role '{exc.role_name}'.")

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError):
        details = [
            {"field": _field_name(error.get("loc", ())), "message": error.get("msg", "")}
            for error in exc.errors()
        ]
        logger.info(f"Request validation failed: {len(details)} error(s), path='{request.url.path}'")
        return _json_error(
            request,
            400,
            f"{INVALID_REQUEST}: Request validation failed. Check the request fields.",
            details,
        )

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_exception(request: Request, exc: StarletteHTTPException):
        return _json_error(request, exc.status_code, f"HTTP-{exc.status_code}: {exc.detail}")

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        logger.error(f"Unexpected error on {request.method} {request.url.path}", exc_info=exc)
        return _json_error(
            request,
            500,
            f"{INTERNAL_ERROR}: An unexpected server error occurred. Please try again later.",
        )
