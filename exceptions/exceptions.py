from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError, ResponseValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
import logging

logger = logging.getLogger(__name__)


class LibraryException(Exception):
    """Base exception for library-related errors."""

    status_code = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationError(LibraryException):
    """Raised when required input is missing or malformed."""

    status_code = 400


class ConflictError(LibraryException):
    """Raised on a uniqueness or borrowing-state violation."""

    status_code = 400


class AuthError(LibraryException):
    """Raised on bad credentials or a missing/invalid token."""

    status_code = 401


class ForbiddenError(LibraryException):
    """Raised when the caller's role does not allow the operation."""

    status_code = 403


class NotFoundError(LibraryException):
    status_code = 404


class ServiceUnavailable(LibraryException):
    """Raised when the store fails or times out. Safe to retry."""

    status_code = 500

    def __init__(self, operation: str, details: str):
        self.operation = operation
        self.details = details
        super().__init__(f"Database error during {operation}: {details}")


# Exception handlers
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    logger.error(f"HTTP error {exc.status_code}: {exc.detail}")
    if exc.status_code == 404:
        return JSONResponse(
            status_code=404,
            content={
                "detail": "Route not found",
                "info": "This is an API server. All endpoints are under /api",
                "available_endpoints": "/api",
            },
        )
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail},
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.error(f"Request validation error: {exc.errors()}")
    return JSONResponse(
        status_code=400,
        content={"detail": "Invalid request parameters. Please check your input."},
    )


async def response_validation_exception_handler(
    request: Request, exc: ResponseValidationError
):
    logger.error(f"Response validation error: {exc.errors()}")
    return JSONResponse(
        status_code=500,
        content={
            "detail": "The server encountered an unexpected error. Please contact support."
        },
    )


async def general_exception_handler(request: Request, exc: Exception):
    logger.exception(f"Unexpected error: {str(exc)}", exc_info=exc)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
    )


async def library_exception_handler(request: Request, exc: LibraryException):
    logger.info(f"{type(exc).__name__} on {request.method} {request.url.path}: {exc}")
    headers = None
    if isinstance(exc, AuthError):
        headers = {"WWW-Authenticate": "Bearer"}
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message},
        headers=headers,
    )


async def service_unavailable_exception_handler(
    request: Request, exc: ServiceUnavailable
):
    logger.error(f"Store failure during {exc.operation}: {exc.details}")
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "detail": "Service temporarily unavailable, please retry.",
            "retryable": True,
        },
    )


def add_exception_handlers(app: FastAPI):
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(
        ResponseValidationError, response_validation_exception_handler
    )
    app.add_exception_handler(Exception, general_exception_handler)
    app.add_exception_handler(LibraryException, library_exception_handler)
    app.add_exception_handler(ServiceUnavailable, service_unavailable_exception_handler)
