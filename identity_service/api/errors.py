"""JSON error responses.

Every error leaves the service as ``{"error": ..., "code": ...}``. Routes raise
``HTTPException`` with that dict as ``detail``; it becomes the whole body.
"""

import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from identity_service.core.request_context import get_request_id

logger = logging.getLogger(__name__)


def unknown_error_response(request_id: str | None) -> JSONResponse:
    """500 body for failures nothing else handled."""
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "Internal server error",
            "code": "UNKNOWN_ERROR",
            "requestId": request_id,
        },
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Unwrap dict details and give framework errors the same shape."""
    if isinstance(exc.detail, dict):
        content = exc.detail
    elif exc.status_code == status.HTTP_404_NOT_FOUND:
        content = {"error": "Endpoint not found", "code": "NOT_FOUND"}
    elif exc.status_code == status.HTTP_405_METHOD_NOT_ALLOWED:
        content = {"error": "Method not allowed", "code": "METHOD_NOT_ALLOWED"}
    else:
        content = {"error": str(exc.detail), "code": "HTTP_ERROR"}
    return JSONResponse(status_code=exc.status_code, content=content, headers=exc.headers)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed request bodies are a 400, naming the email when it is the culprit."""
    bad_email = any("email" in error.get("loc", ()) for error in exc.errors())
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "error": "Invalid email format" if bad_email else "Invalid request format",
            "code": "VALIDATION_ERROR",
        },
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(f"Unhandled error on {request.url.path}: {exc}", exc_info=exc)
    return unknown_error_response(get_request_id())


def register_exception_handlers(app: FastAPI) -> None:
    """Install the JSON error handlers on the application."""
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
