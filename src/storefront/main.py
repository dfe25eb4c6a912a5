"""
Storefront Service - Main FastAPI Application
"""
from contextlib import asynccontextmanager
from datetime import datetime, timezone
import logging

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from storefront import __version__
from storefront.api import cart, deps, orders, payments, products, users
from storefront.config import settings
from storefront.db import database
from storefront.errors import StorefrontError
from storefront.log_config import setup_logging
from storefront.models.schemas import ApiResponse
from storefront.services.notifications import NotificationDispatcher
from storefront.services.user_service import UserService
from storefront.telemetry import (
    instrument_fastapi,
    instrument_sqlalchemy,
    setup_opentelemetry,
    shutdown_opentelemetry
)

# Setup logging
setup_logging(
    service_name=settings.service_name,
    log_level=settings.log_level,
    log_format=settings.log_format
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown events"""
    # Startup
    logger.info(f"Starting {settings.service_name}")
    logger.info(f"Environment: {settings.environment}")

    # Initialize database
    try:
        engine = database.init_database(settings.database_url)
        database.create_tables()
        logger.info("Database initialized successfully")

        # Instrument SQLAlchemy
        if settings.otel_enabled:
            instrument_sqlalchemy(engine)

    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise

    # Initialize OpenTelemetry
    if settings.otel_enabled:
        setup_opentelemetry(
            service_name=settings.otel_service_name or settings.service_name,
            otlp_endpoint=settings.otel_endpoint,
            enabled=settings.otel_enabled,
            service_version=settings.service_version,
            environment=settings.environment
        )
        logger.info("OpenTelemetry initialized")

    # Notification dispatcher (will be shared by every request)
    notifier = NotificationDispatcher(
        webhook_url=settings.notification_webhook_url,
        timeout=settings.notification_timeout_seconds,
        app_name=settings.app_name,
        frontend_url=settings.frontend_url
    )
    deps.notifier = notifier
    logger.info("Notification dispatcher initialized")

    if settings.admin_email and settings.admin_password:
        db = database.SessionLocal()
        try:
            UserService.ensure_admin(db, settings.admin_email, settings.admin_password)
        finally:
            db.close()

    logger.info(f"{settings.service_name} started successfully")

    yield

    # Shutdown
    logger.info(f"Shutting down {settings.service_name}")
    notifier.close(wait=True)
    shutdown_opentelemetry()


# Create FastAPI app
app = FastAPI(
    title="Storefront Service",
    description="Catalog, cart, checkout, order lifecycle and payments",
    version=__version__,
    lifespan=lifespan,
    docs_url=None,
    redoc_url=None,
    openapi_url=None
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Instrument FastAPI with OpenTelemetry
if settings.otel_enabled:
    instrument_fastapi(app)

# Include API routes
app.include_router(users.router)
app.include_router(products.router)
app.include_router(cart.router)
app.include_router(orders.router)
app.include_router(payments.router)


def _envelope(status_code: int, error: str, message: str = None) -> JSONResponse:
    body = ApiResponse.fail(error=error, message=message)
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body))


@app.get("/health")
async def health_check():
    """Health check endpoint (liveness)"""
    return {
        "status": "healthy",
        "service": settings.service_name,
        "version": __version__,
        "timestamp": datetime.now(timezone.utc).isoformat()
    }


@app.get("/ready")
def readiness_check():
    """Readiness check endpoint"""
    try:
        database.ping()
        return {
            "status": "ready",
            "service": settings.service_name,
            "database": "connected",
            "timestamp": datetime.now(timezone.utc).isoformat()
        }
    except Exception as e:
        logger.error(f"Readiness check failed: {e}")
        return JSONResponse(
            status_code=503,
            content={
                "status": "not_ready",
                "service": settings.service_name,
                "database": "disconnected",
                "timestamp": datetime.now(timezone.utc).isoformat()
            }
        )


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "service": settings.service_name,
        "version": __version__,
        "health": "/health",
        "ready": "/ready"
    }


@app.exception_handler(StorefrontError)
async def storefront_exception_handler(request: Request, exc: StorefrontError):
    """Render a business-rule failure as an error envelope"""
    if exc.status_code >= 500:
        logger.error(f"{exc.__class__.__name__} on {request.url.path}: {exc.message}")
    else:
        logger.info(f"{exc.__class__.__name__} on {request.url.path}: {exc.message}")
    return _envelope(exc.status_code, exc.message, exc.error_code)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Malformed requests share the validation_failed envelope"""
    details = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        details.append(f"{location}: {error.get('msg')}" if location else error.get("msg"))
    return _envelope(400, "; ".join(details) or "Invalid request", "validation_failed")


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler"""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return _envelope(500, "Internal server error", "internal_error")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "storefront.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
        log_level=settings.log_level.lower()
    )
