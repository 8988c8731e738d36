"""
Custom exception classes and error handling.

Provides consistent error responses across the API. Every error body has
the shape ``{"error": str, "code": str, "timestamp": iso8601}``; outside
production, 5xx responses also carry ``stack`` and ``details``.
"""
import logging
import traceback
from datetime import datetime, timezone
from typing import Optional, Dict, Any

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError, NoResultFound, OperationalError, SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from core.config import settings

logger = logging.getLogger(__name__)


class APIException(HTTPException):
    """Base API exception with consistent structure."""

    def __init__(
        self,
        status_code: int,
        detail: str,
        error_code: Optional[str] = None,
        headers: Optional[Dict[str, Any]] = None
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)
        self.error_code = error_code


class NotFoundError(APIException):
    """Resource not found."""

    def __init__(self, detail: str = "Resource not found", error_code: str = "NOT_FOUND"):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=detail,
            error_code=error_code
        )


class ValidationError(APIException):
    """Malformed or missing input."""

    def __init__(self, detail: str, error_code: str = "VALIDATION_ERROR"):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=detail,
            error_code=error_code
        )


class UnauthorizedError(APIException):
    """Authentication required."""

    def __init__(self, detail: str = "Authentication required", error_code: str = "UNAUTHORIZED"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            error_code=error_code,
            headers={"WWW-Authenticate": "Bearer"}
        )


class ForbiddenError(APIException):
    """Access denied."""

    def __init__(self, detail: str = "Access denied", error_code: str = "FORBIDDEN"):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=detail,
            error_code=error_code
        )


class ConflictError(APIException):
    """Resource conflict (e.g., duplicate entry)."""

    def __init__(self, detail: str, error_code: str = "CONFLICT"):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=detail,
            error_code=error_code
        )


class InternalServerError(APIException):
    """Unexpected failure."""

    def __init__(self, detail: str = "Internal server error", error_code: str = "INTERNAL_ERROR"):
        super().__init__(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=detail,
            error_code=error_code
        )


STATUS_CODES = {
    400: "BAD_REQUEST",
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
    429: "RATE_LIMITED",
    500: "INTERNAL_ERROR",
    503: "SERVICE_UNAVAILABLE",
}


def error_body(message: str, code: str, exc: Optional[BaseException] = None,
               details: Any = None) -> Dict[str, Any]:
    body: Dict[str, Any] = {
        "error": message,
        "code": code,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    if not settings.is_production:
        if exc is not None:
            body["stack"] = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
        if details is not None:
            body["details"] = details
    return body


def _json_error(status_code: int, message: str, code: str, exc: Optional[BaseException] = None,
                details: Any = None, headers: Optional[Dict[str, Any]] = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=error_body(message, code, exc=exc, details=details),
        headers=headers,
    )


def _log_request_error(request: Request, message: str, exc: BaseException):
    logger.error(
        message,
        exc_info=exc,
        extra={
            "extra_fields": {
                "method": request.method,
                "path": request.url.path,
                "error": str(exc),
            }
        },
    )


def map_integrity_error(exc: IntegrityError):
    """Classify a constraint violation into (status, code, message)."""
    text = str(getattr(exc, "orig", exc)).lower()
    if "unique" in text or "duplicate" in text:
        return status.HTTP_409_CONFLICT, "DUPLICATE_ENTRY", "A record with this value already exists"
    if "foreign key" in text:
        return status.HTTP_400_BAD_REQUEST, "INVALID_REFERENCE", "Referenced record does not exist"
    if "not null" in text:
        return status.HTTP_400_BAD_REQUEST, "MISSING_RELATION", "A required relation is missing"
    return status.HTTP_500_INTERNAL_SERVER_ERROR, "DATABASE_ERROR", "Database error"


def register_exception_handlers(app: FastAPI):
    """Install the error handlers that give every failure the same body shape."""

    @app.exception_handler(APIException)
    async def api_exception_handler(request: Request, exc: APIException):
        return _json_error(
            exc.status_code,
            str(exc.detail),
            exc.error_code or STATUS_CODES.get(exc.status_code, "ERROR"),
            headers=exc.headers,
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        if exc.status_code == status.HTTP_404_NOT_FOUND and exc.detail == "Not Found":
            body = error_body(f"Route {request.url.path} not found", "ROUTE_NOT_FOUND")
            body["path"] = request.url.path
            body["method"] = request.method
            return JSONResponse(status_code=404, content=body)
        return _json_error(
            exc.status_code,
            str(exc.detail),
            STATUS_CODES.get(exc.status_code, "ERROR"),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        messages = []
        for err in errors:
            loc = ".".join(str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path"))
            messages.append(f"{loc}: {err.get('msg')}" if loc else err.get("msg", "Invalid value"))
        body = error_body("; ".join(messages) or "Invalid request", "VALIDATION_ERROR")
        body["details"] = [
            {"field": ".".join(str(p) for p in err.get("loc", ())), "message": err.get("msg")}
            for err in errors
        ]
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=body)

    @app.exception_handler(IntegrityError)
    async def integrity_error_handler(request: Request, exc: IntegrityError):
        status_code, code, message = map_integrity_error(exc)
        if status_code >= 500:
            _log_request_error(request, f"Unclassified integrity error: {exc}", exc)
            if settings.is_production:
                message, code = "Internal server error", "INTERNAL_ERROR"
            return _json_error(status_code, message, code, exc=exc)
        logger.warning(f"Integrity error on {request.method} {request.url.path}: {code}")
        return _json_error(status_code, message, code)

    @app.exception_handler(NoResultFound)
    async def no_result_handler(request: Request, exc: NoResultFound):
        return _json_error(status.HTTP_404_NOT_FOUND, "Record not found", "NOT_FOUND")

    @app.exception_handler(OperationalError)
    async def operational_error_handler(request: Request, exc: OperationalError):
        _log_request_error(request, "Database unavailable", exc)
        return _json_error(
            status.HTTP_503_SERVICE_UNAVAILABLE,
            "Database connection error",
            "DATABASE_CONNECTION_ERROR",
            exc=exc,
        )

    @app.exception_handler(SQLAlchemyError)
    async def database_error_handler(request: Request, exc: SQLAlchemyError):
        _log_request_error(request, f"Database error: {exc}", exc)
        message = "Internal server error" if settings.is_production else "Database error"
        code = "INTERNAL_ERROR" if settings.is_production else "DATABASE_ERROR"
        return _json_error(status.HTTP_500_INTERNAL_SERVER_ERROR, message, code, exc=exc, details=str(exc))

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Global exception handler for unhandled errors."""
        _log_request_error(request, f"Unhandled exception: {exc}", exc)
        message = "Internal server error" if settings.is_production else str(exc) or "Internal server error"
        return _json_error(status.HTTP_500_INTERNAL_SERVER_ERROR, message, "INTERNAL_ERROR", exc=exc)
