"""
HRIS Core - FastAPI Application Entry Point

Access scope, permission and approval routing service.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from hris_core import __version__
from hris_core.config import settings
from hris_core.database import close_db, init_db
from hris_core.dependencies import get_permission_gate
from hris_core.routers import access, cases
from hris_core.utils.error_handling import (
    ErrorTrackingMiddleware,
    setup_exception_handlers,
)

# Configure logging
logging.basicConfig(
    level=logging.INFO if not settings.debug else logging.DEBUG,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for FastAPI.
    Handles startup and shutdown events.
    """
    # Startup
    logger.info(f"Starting {settings.app_name}...")
    logger.info(f"Environment: {settings.app_env}")
    if settings.is_production and settings.jwt_secret_key == "change-me-in-production":
        logger.warning("JWT secret is the development default; set JWT_SECRET_KEY")

    # Fails fast when configured permission overrides are malformed
    gate = get_permission_gate()
    logger.info(f"Permission table loaded for {len(gate.table)} roles (RBAC enabled: {gate.rbac_enabled})")
    
    # Initialize database (dev only - use migrations in production)
    if settings.is_development:
        await init_db()
        logger.info("Database tables initialized")
    
    yield
    
    # Shutdown
    logger.info(f"Shutting down {settings.app_name}...")
    await close_db()
    logger.info("Database connections closed")


# Create FastAPI application
app = FastAPI(
    title=settings.app_name,
    description="Organizational access scoping, permission checks and multi-approver case routing",
    version=__version__,
    docs_url="/api/docs" if settings.is_development else None,
    redoc_url="/api/redoc" if settings.is_development else None,
    lifespan=lifespan,
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(ErrorTrackingMiddleware)

setup_exception_handlers(app)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "version": __version__,
    }


# ===========================================
# INCLUDE ROUTERS
# ===========================================

api_prefix = f"/api/{settings.api_version}"

app.include_router(access.router, prefix=api_prefix)
app.include_router(cases.router, prefix=api_prefix)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.is_development,
    )
