"""
Custom exception classes.

Represent errors related to CGI route configuration and program invocation.
"""

import logging
from fastapi import Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class CgiGatewayError(Exception):
    """Base exception class for the CGI gateway."""

    pass


class RouteConfigError(CgiGatewayError):
    """Raised when a CGI route definition is invalid."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Invalid CGI route {path!r}: {reason}")


class RouteNotFoundError(CgiGatewayError):
    """Raised when no CGI route matches the request path."""

    def __init__(self, request_path: str):
        self.request_path = request_path
        super().__init__(f"No CGI route for path: {request_path}")


class SpawnError(CgiGatewayError):
    """Raised when the CGI program could not be started."""

    def __init__(self, command: str, cause: BaseException):
        self.command = command
        self.cause = cause
        super().__init__(f"Failed to start CGI program {command}: {cause}")


# ===========================================
# Exception Handlers
# ===========================================


async def global_exception_handler(request: Request, exc: Exception):
    """
    Catch-all handler for unhandled exceptions.
    """
    logger.error(
        f"Global exception handler caught: {exc}",
        exc_info=True,
        extra={
            "path": request.url.path,
            "method": request.method,
        },
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"message": "Internal Server Error", "detail": str(exc)},
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """
    Handler for HTTPException.
    """
    return JSONResponse(status_code=exc.status_code, content={"message": exc.detail})


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """
    Handler for validation errors.
    """
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"message": "Validation Error", "detail": str(exc.errors())},
    )
