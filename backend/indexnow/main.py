# ============================================================================
# IndexNow - FastAPI Application Entry Point
# ============================================================================
"""
Main FastAPI application module for the IndexNow indexing pipeline.

This module sets up the FastAPI application with:
- CORS middleware configuration
- Application startup/shutdown event handlers
- API router integration
- Health endpoint

Usage:
    Direct: python -m indexnow.main
    Docker: uvicorn indexnow.main:app --host 0.0.0.0 --port 8000
"""

import logging
from datetime import datetime
from typing import Any, Dict

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api.v1 import api_router
from .config import settings
from .core.shared.database_service import DatabaseService, database_service
from .core.shared.pubsub_service import pubsub_service
from .dependencies import get_database_service

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger("indexnow.main")

# ============================================================================
# APPLICATION INITIALIZATION
# ============================================================================

app = FastAPI(
    title=settings.api_title,
    version=settings.api_version,
    description=(
        "IndexNow - multi-tenant URL indexing pipeline\n\n"
        "Creates indexing jobs from URL lists or sitemaps and submits them to "
        "the search indexing API across rotating service accounts."
    ),
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)

# ============================================================================
# APPLICATION EVENT HANDLERS
# ============================================================================


@app.on_event("startup")
async def startup_event() -> None:
    """Create tables for SQLite development databases; PostgreSQL uses Alembic."""
    logger.info(f"Starting {settings.api_title} {settings.api_version} (debug={settings.debug})")
    if database_service.db_type == "sqlite":
        await database_service.init_db()


@app.on_event("shutdown")
async def shutdown_event() -> None:
    await pubsub_service.close()
    await database_service.close()
    logger.info("Shutdown complete")


# ============================================================================
# ROUTER CONFIGURATION
# ============================================================================

app.include_router(api_router, prefix="/api/v1")


@app.get("/health", tags=["system"])
async def health(db: DatabaseService = Depends(get_database_service)) -> Dict[str, Any]:
    """Liveness check including database connectivity."""
    db_health = await db.health_check()
    return {
        "status": "healthy" if db_health["status"] == "healthy" else "degraded",
        "version": settings.api_version,
        "database": db_health,
        "timestamp": datetime.utcnow(),
    }


@app.get("/", tags=["root"])
async def root() -> Dict[str, Any]:
    return {
        "name": settings.api_title,
        "version": settings.api_version,
        "status": "running",
        "docs_url": "/docs",
        "health_check": "/health",
    }


# ============================================================================
# DEVELOPMENT SERVER
# ============================================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run("indexnow.main:app", host="0.0.0.0", port=8000, reload=settings.debug)
