"""
Exception handlers for the LMS backend.

Every error leaves the API as JSON so that it passes through CORSMiddleware
and the frontend can read it:

1. LMSException subclasses -> their own status code and to_dict() body
   (503 from an open circuit adds Retry-After)
2. HTTPException responses
3. Validation errors (422)
4. Anything else -> logged, generic 500
"""

import logging
import traceback

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from exceptions import LMSException, ServiceUnavailableError

logger = logging.getLogger(__name__)


def add_error_handlers(app: FastAPI) -> None:
    """
    Register the JSON exception handlers on an app.

    Usage:
        from middleware.error_handlers import add_error_handlers
        add_error_handlers(app)
    """

    @app.exception_handler(LMSException)
    async def lms_exception_handler(request: Request, exc: LMSException):
        """Handle application errors with their structured body."""
        headers = {}
        if isinstance(exc, ServiceUnavailableError) and exc.retry_after is not None:
            headers["Retry-After"] = str(exc.retry_after)

        log = logger.warning if exc.status_code >= 500 else logger.info
        log(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")

        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_dict(),
            headers=headers or None,
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        """Handle HTTP exceptions."""
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Handle validation errors."""
        return JSONResponse(
            status_code=422,
            content={
                "detail": "Validation error",
                "errors": jsonable_encoder(exc.errors()),
            },
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        """Handle any unhandled exception."""
        error_type = type(exc).__name__
        error_msg = str(exc) if str(exc) else "(no message)"

        logger.error(
            f"Unhandled exception in request {request.method} {request.url.path}: "
            f"{error_type}: {error_msg}"
        )
        logger.debug(f"Full traceback:\n{traceback.format_exc()}")

        # Internal error messages are logged, not returned
        return JSONResponse(
            status_code=500,
            content={
                "detail": "Internal server error",
                "error_type": error_type,
            },
        )
