"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from identity_service.api.errors import register_exception_handlers
from identity_service.api.middleware import RequestContextMiddleware
from identity_service.api.routes import api_router
from identity_service.infrastructure.redis import redis_client
from identity_service.logging_config import setup_logging
from identity_service.persistence.database import engine, init_db
from identity_service.settings import settings

# Setup logging
setup_logging()

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    # Startup
    await redis_client.connect()
    if settings.auto_create_tables:
        await init_db()
    logger.info("Identity reconciliation service started", extra={"environment": settings.environment})
    yield
    # Shutdown
    await redis_client.disconnect()
    await engine.dispose()
    logger.info("Identity reconciliation service stopped")


# Create FastAPI app
app = FastAPI(
    title="Identity Reconciliation API",
    description="Links contact details observed over time to a single identity",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(RequestContextMiddleware)

register_exception_handlers(app)

# Include API routes
app.include_router(api_router, prefix=settings.api_prefix)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "operational",
        "service": "contact-management",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
