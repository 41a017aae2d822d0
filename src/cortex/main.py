"""
Cortex Backend Application

FastAPI application entrypoint with async lifespan management.
Startup builds the service container, checks the database, bootstraps
the schema and resumes orphaned enrichment; shutdown winds down running
enrichment tasks and releases connections.
"""

import logging
import os
from collections.abc import Callable
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI

from cortex.api.deps import get_services
from cortex.api.v1.ai import router as ai_router
from cortex.api.v1.chat import router as chat_router
from cortex.api.v1.collections import router as collections_router
from cortex.api.v1.ingest import router as ingest_router
from cortex.api.v1.notes import router as notes_router
from cortex.api.v1.search import router as search_router
from cortex.api.v1.tags import router as tags_router
from cortex.core.config import settings
from cortex.core.container import Services, build_services
from cortex.core.logging import setup_logging

# Initialize logging before any log statements
setup_logging()
logger = logging.getLogger(__name__)


def create_app(container_factory: Callable[[], Services] = build_services) -> FastAPI:
    """
    Build the application.

    Args:
        container_factory: Builds the service container at startup
            (tests pass one wired to SQLite and fake backends).
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Application lifespan handler.

        Startup:
            - Validates database connectivity (required, blocks startup on failure)
            - Creates missing tables, resumes pending enrichment

        Shutdown:
            - Cancels running enrichment tasks and disposes the engine
        """
        logger.info("Starting %s...", settings.PROJECT_NAME)
        logger.info("Log Level: %s", settings.LOG_LEVEL)

        services = container_factory()
        await services.start()
        app.state.services = services

        yield  # Application runs here

        logger.info("Shutting down %s...", settings.PROJECT_NAME)
        await services.stop()

    app = FastAPI(title=settings.PROJECT_NAME, lifespan=lifespan)

    app.include_router(ingest_router, prefix="/api", tags=["Ingest"])
    app.include_router(ai_router, prefix="/api", tags=["AI"])
    app.include_router(chat_router, prefix="/api", tags=["Chat"])
    app.include_router(search_router, prefix="/api", tags=["Search"])
    app.include_router(notes_router, prefix="/api", tags=["Notes"])
    app.include_router(collections_router, prefix="/api", tags=["Collections"])
    app.include_router(tags_router, prefix="/api", tags=["Tags"])

    @app.get("/api/health")
    async def health_check(services: Services = Depends(get_services)):
        """
        Health check endpoint for load balancers and the web UI.

        The AI probe is bounded by AI_HEALTH_TIMEOUT; offline is reported,
        not raised, since the service keeps working with fallbacks.
        """
        ai_online = await services.ai.health_check()
        return {
            "status": "ok",
            "service": "cortex",
            "environment": os.getenv("ENVIRONMENT", "unknown"),
            "ai": "online" if ai_online else "offline",
        }

    return app


app = create_app()
