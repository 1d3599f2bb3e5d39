"""Main FastAPI application."""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import logging

from wallet_share import __version__
from wallet_share.config import settings
from wallet_share.database import Base

# Register every model with the metadata before routers import them
from wallet_share import models  # noqa: F401

from wallet_share.routers import (
    account_routes,
    profile_routes,
    program_routes,
    settings_routes,
    tier_routes,
)
from wallet_share.scheduler import start_scheduler, stop_scheduler

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s"
)
logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(
    title="Wallet Share Expander API",
    description="Account gap analysis, opportunity scoring and program lifecycle engine",
    version=__version__,
    redirect_slashes=False
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ============================================
# ROUTER REGISTRATION
# ============================================

app.include_router(profile_routes.router)
app.include_router(account_routes.router)
app.include_router(program_routes.router)
app.include_router(tier_routes.router)
app.include_router(settings_routes.router)


# ============================================
# HEALTH & ROOT ENDPOINTS
# ============================================

@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "version": __version__,
        "environment": settings.ENVIRONMENT,
        "registered_tables": len(Base.metadata.tables),
        "scheduler_enabled": settings.SCHEDULER_ENABLED,
    }


@app.get("/")
async def root():
    return {
        "message": "Wallet Share Expander API",
        "version": __version__,
        "docs": "/docs",
        "health": "/health"
    }


# ============================================
# STARTUP & SHUTDOWN
# ============================================

@app.on_event("startup")
async def startup_event():
    logger.info("Starting Wallet Share Expander API...")
    logger.info(f"Registered {len(Base.metadata.tables)} SQLAlchemy tables")

    if settings.SCHEDULER_ENABLED:
        start_scheduler()
    else:
        logger.info("Scheduler disabled")

    logger.info("Application started successfully!")


@app.on_event("shutdown")
async def shutdown_event():
    logger.info("Shutting down Wallet Share Expander API...")
    stop_scheduler()
