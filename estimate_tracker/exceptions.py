"""
Global exception handlers and custom exception classes.

Every error leaving the API is rendered as the same envelope:
``{"success": false, "error": "<message>"}``.
"""
from fastapi import Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
import logging

# Set up logging
logger = logging.getLogger(__name__)

class AppException(Exception):
    """
    Base exception class for application-specific exceptions.
    """
    def __init__(self, status_code: int, detail: str):
        super().__init__(detail)
        self.status_code = status_code
        self.detail = detail


class StoreError(Exception):
    """Raised when the record store rejects or fails an operation."""


class StorageError(Exception):
    """Raised when the object store rejects or fails an operation."""


def error_envelope(status_code: int, detail: str, headers: dict = None) -> JSONResponse:
    """
    Build the failure envelope shared by every endpoint.

    Args:
        status_code: HTTP status code of the response
        detail: Human-readable reason
        headers: Optional extra response headers

    Returns:
        JSONResponse: Failure envelope
    """
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": detail},
        headers=headers
    )


async def app_exception_handler(request: Request, exc: AppException):
    """
    Handler for application-specific exceptions.

    Args:
        request: The request that caused the exception
        exc: The exception instance

    Returns:
        JSONResponse: Standardized error response
    """
    logger.error(f"Application error: {exc.detail}")
    return error_envelope(exc.status_code, exc.detail)


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """
    Handler for HTTP exceptions raised by dependencies and routers.

    Args:
        request: The request that caused the exception
        exc: The exception instance

    Returns:
        JSONResponse: Standardized error response, keeping any auth headers
    """
    logger.warning(f"HTTP error {exc.status_code} on {request.url.path}: {exc.detail}")
    return error_envelope(exc.status_code, str(exc.detail), headers=getattr(exc, "headers", None))


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """
    Handler for request validation exceptions.

    Args:
        request: The request that caused the exception
        exc: The validation exception instance

    Returns:
        JSONResponse: Standardized error response with validation details
    """
    logger.error(f"Validation error: {exc.errors()}")
    messages = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        messages.append(f"{location}: {error.get('msg')}" if location else error.get("msg"))
    return error_envelope(
        status.HTTP_400_BAD_REQUEST,
        "Validation error: " + "; ".join(messages)
    )


# Register exception handlers with FastAPI app
def register_exception_handlers(app):
    """
    Register all exception handlers with the FastAPI application.

    Args:
        app: FastAPI application instance
    """
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
