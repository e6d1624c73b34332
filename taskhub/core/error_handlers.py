"""Exception handlers that turn engine errors into JSON envelopes.

Every error body has the shape
``{"success": false, "error": {"code", "message", "details"?}}``.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from taskhub.core.config import settings
from taskhub.services.query_errors import (
    AuthorizationError,
    ExecutionError,
    QueryNotFoundError,
    QueryPermissionError,
    ValidationError,
)

logger = logging.getLogger(__name__)


def _error_response(
    status_code: int,
    code: str,
    message: str,
    details: list | None = None,
    headers: dict | None = None,
) -> JSONResponse:
    body: dict = {
        "success": False,
        "error": {
            "code": code,
            "message": message,
        },
    }
    if details:
        body["error"]["details"] = details
    return JSONResponse(status_code=status_code, content=body, headers=headers)


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    detail = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
    return _error_response(
        status_code=exc.status_code,
        code=f"HTTP_{exc.status_code}",
        message=detail,
        headers=getattr(exc, "headers", None),
    )


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = []
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", []) if part != "body"]
        details.append({"field": ".".join(loc), "message": err.get("msg", "Invalid value")})
    return _error_response(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        code="VALIDATION_ERROR",
        message="Request body is malformed",
        details=details,
    )


async def query_validation_handler(request: Request, exc: ValidationError) -> JSONResponse:
    return _error_response(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        code="VALIDATION_ERROR",
        message="Query is invalid",
        details=[e.as_dict() for e in exc.errors],
    )


async def authorization_handler(request: Request, exc: AuthorizationError) -> JSONResponse:
    if not exc.authenticated:
        return _error_response(status.HTTP_401_UNAUTHORIZED, "UNAUTHENTICATED", str(exc))
    return _error_response(status.HTTP_403_FORBIDDEN, "FORBIDDEN", str(exc))


async def execution_handler(request: Request, exc: ExecutionError) -> JSONResponse:
    logger.error(
        "query execution error on %s %s retryable=%s cause=%r",
        request.method,
        request.url.path,
        exc.retryable,
        exc.__cause__,
    )
    if exc.retryable:
        return _error_response(
            status.HTTP_503_SERVICE_UNAVAILABLE,
            "STORAGE_UNAVAILABLE",
            str(exc),
            headers={"Retry-After": "1"},
        )
    return _error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "STORAGE_ERROR", str(exc))


async def not_found_handler(request: Request, exc: QueryNotFoundError) -> JSONResponse:
    return _error_response(status.HTTP_404_NOT_FOUND, "NOT_FOUND", str(exc))


async def permission_handler(request: Request, exc: QueryPermissionError) -> JSONResponse:
    return _error_response(status.HTTP_403_FORBIDDEN, "FORBIDDEN", str(exc))


async def sqlalchemy_exception_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.error("Database error on %s %s: %s", request.method, request.url.path, exc, exc_info=True)
    message = "A database error occurred. Please try again later."
    if settings.DEBUG:
        message = f"Database error: {exc}"
    return _error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "DATABASE_ERROR", message)


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(ValidationError, query_validation_handler)
    app.add_exception_handler(AuthorizationError, authorization_handler)
    app.add_exception_handler(ExecutionError, execution_handler)
    app.add_exception_handler(QueryNotFoundError, not_found_handler)
    app.add_exception_handler(QueryPermissionError, permission_handler)
    app.add_exception_handler(SQLAlchemyError, sqlalchemy_exception_handler)
