"""
Global error handlers for the QnA bot HTTP service
"""

import logging
import traceback
import uuid
from fastapi import Request
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from qna_bot.config.bot_config import ConfigurationError

logger = logging.getLogger(__name__)


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Handle HTTP exceptions (FastAPI's HTTPException subclasses Starlette's)"""
    logger.error(f"HTTP exception: {exc.status_code} - {exc.detail}")
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": "http_error",
            "status_code": exc.status_code,
            "message": str(exc.detail),
            "path": str(request.url.path)
        }
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle request validation errors"""
    logger.error(f"Validation error: {exc.errors()}")
    return JSONResponse(
        status_code=422,
        content={
            "error": "validation_error",
            "status_code": 422,
            "message": "Invalid request data",
            "details": exc.errors(),
            "path": str(request.url.path)
        }
    )


async def configuration_exception_handler(request: Request, exc: ConfigurationError):
    """Bot is not configured; requests cannot be served until it is"""
    logger.error(f"Configuration error: {exc}")
    return JSONResponse(
        status_code=503,
        content={
            "error": "configuration_error",
            "status_code": 503,
            "message": str(exc),
            "path": str(request.url.path)
        }
    )


async def general_exception_handler(request: Request, exc: Exception):
    """Handle all unhandled exceptions"""
    error_id = str(uuid.uuid4())[:8]
    logger.error(f"Unhandled exception (ID: {error_id}): {str(exc)}\n{traceback.format_exc()}")

    # Don't expose internal errors in production
    if request.app.debug:
        return JSONResponse(
            status_code=500,
            content={
                "error": "internal_server_error",
                "error_id": error_id,
                "message": str(exc),
                "type": exc.__class__.__name__,
                "path": str(request.url.path)
            }
        )
    return JSONResponse(
        status_code=500,
        content={
            "error": "internal_server_error",
            "error_id": error_id,
            "message": "An internal error occurred. Please contact support with the error ID.",
            "path": str(request.url.path)
        }
    )


def register_error_handlers(app):
    """Register all error handlers with the FastAPI app"""
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(ConfigurationError, configuration_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)
