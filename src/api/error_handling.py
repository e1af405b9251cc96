"""
Exception handlers rendering the service's failure envelope.

Every error response has the shape ``{"error": <category>, "message": ...}``
plus the request correlation id, and for a retryable OTP failure the new
``session`` and ``challengeName``.
"""

from typing import Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from src.models.api_models import ErrorResponse
from src.services.errors import AuthServiceError, InvalidCodeError

logger = structlog.get_logger()

_STATUS_TO_CATEGORY = {
    400: "ValidationError",
    401: "Unauthorized",
    404: "NotFound",
    405: "MethodNotAllowed",
    409: "Conflict",
    429: "RateLimitExceeded",
}


def _correlation_id(request: Request) -> Optional[str]:
    return getattr(request.state, "correlation_id", None)


def create_error_response(
    request: Request,
    status_code: int,
    error_type: str,
    message: str,
    session: Optional[str] = None,
    challenge_name: Optional[str] = None
) -> JSONResponse:
    """Create standardized error response."""
    error_response = ErrorResponse(
        error=error_type,
        message=message,
        correlation_id=_correlation_id(request),
        session=session,
        challengeName=challenge_name
    )
    return JSONResponse(status_code=status_code, content=error_response.to_content())


def register_exception_handlers(app: FastAPI) -> None:
    """Install the failure-envelope handlers on the application."""

    @app.exception_handler(AuthServiceError)
    async def handle_auth_service_error(request: Request, exc: AuthServiceError):
        log = logger.error if exc.status_code >= 500 else logger.warning
        log(
            "Request rejected",
            path=request.url.path,
            status_code=exc.status_code,
            category=exc.category,
            reason=exc.reason
        )

        session = challenge_name = None
        if isinstance(exc, InvalidCodeError):
            session, challenge_name = exc.session, exc.challenge_name

        return create_error_response(
            request,
            exc.status_code,
            exc.category,
            exc.message,
            session=session,
            challenge_name=challenge_name
        )

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation_error(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        logger.warning("Request body invalid", path=request.url.path, error_count=len(errors))

        message = "Invalid request body"
        if errors:
            location = ".".join(str(part) for part in errors[0].get("loc", ()) if part != "body")
            message = f"{location}: {errors[0].get('msg')}" if location else str(errors[0].get("msg"))
        return create_error_response(request, 400, "ValidationError", message)

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_exception(request: Request, exc: StarletteHTTPException):
        category = _STATUS_TO_CATEGORY.get(exc.status_code, "InternalError")
        message = exc.detail if isinstance(exc.detail, str) else category
        return create_error_response(request, exc.status_code, category, message)

    @app.exception_handler(Exception)
    async def handle_uncaught(request: Request, exc: Exception):
        logger.error(
            "Unhandled exception",
            path=request.url.path,
            error_type=type(exc).__name__
        )
        return create_error_response(request, 500, "InternalError", "Internal server error")
