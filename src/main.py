"""Main FastAPI application for the phone OTP authentication service."""

import logging
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.config import settings
from src.api.auth import router as auth_router
from src.api.authorizer import router as authorizer_router
from src.api.error_handling import register_exception_handlers
from src.middleware import (
    RequestLoggingMiddleware,
    SecurityHeadersMiddleware,
    RateLimitMiddleware
)
from src.models.api_models import HealthResponse
from src.observability import setup_observability, instrument_fastapi_app

SERVICE_NAME = "phone-otp-auth"
SERVICE_VERSION = "1.0.0"

logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO), format="%(message)s")

# Configure structured logging
structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    wrapper_class=structlog.stdlib.BoundLogger,
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    logger.info(
        "Starting phone OTP authentication service",
        port=settings.port,
        host=settings.host,
        environment=settings.environment,
        issuer=settings.issuer
    )

    setup_observability(
        service_name=SERVICE_NAME,
        service_version=SERVICE_VERSION,
        otlp_endpoint=settings.otlp_endpoint,
        enable_console_export=settings.enable_console_export
    )
    instrument_fastapi_app(app)

    if not settings.cognito_user_pool_id or not settings.cognito_client_id:
        logger.warning("Cognito user pool or client id not configured")

    yield

    logger.info("Shutting down phone OTP authentication service")


# Create FastAPI application
app = FastAPI(
    title="Phone OTP Authentication Service",
    description="Passwordless phone OTP login with HttpOnly session cookies and a gateway authorizer",
    version=SERVICE_VERSION,
    lifespan=lifespan
)

register_exception_handlers(app)

# Add middleware (order matters - last added is executed first)
app.add_middleware(
    RateLimitMiddleware,
    max_requests=settings.rate_limit_requests,
    window_seconds=settings.rate_limit_window,
    protected_paths=[route.path for route in auth_router.routes]
)
app.add_middleware(SecurityHeadersMiddleware, enable_hsts=settings.is_production)
app.add_middleware(RequestLoggingMiddleware)

# Credentialed CORS so browsers send the session cookies
app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin.strip() for origin in settings.cors_origin.split(",") if origin.strip()],
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
)

# Include API routers
app.include_router(auth_router)
app.include_router(authorizer_router)


@app.get("/healthz", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Health check endpoint."""
    return HealthResponse(
        status="healthy",
        version=SERVICE_VERSION,
        environment=settings.environment
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "src.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        reload=False
    )
