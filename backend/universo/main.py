# @TASK P0-T0.3 - FastAPI application entrypoint

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from universo.api import create_hierarchy_router
from universo.api.errors import register_exception_handlers
from universo.config import get_settings
from universo.database import engine
from universo.hierarchies import HIERARCHIES
from universo.services.publication_service import PublicationService

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application lifespan: startup and shutdown events."""
    # Startup: create all database tables if they don't exist
    from universo.database import Base
    from universo import models  # noqa: F401 - Import models to register them with Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    app.state.publications = PublicationService()
    logger.info("Started with hierarchies: %s", ", ".join(HIERARCHIES))

    yield
    # Shutdown: stop pending publications, then dispose the connection pool
    await app.state.publications.shutdown()
    await engine.dispose()


app = FastAPI(
    title="Universo Access",
    description="Hierarchical access control for containers, mid-levels and leaves",
    version="0.1.0",
    lifespan=lifespan,
)

# --- CORS Middleware ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

# --- Router includes ---
for _hierarchy in HIERARCHIES.values():
    app.include_router(create_hierarchy_router(_hierarchy), prefix="/api")


@app.get("/api/health")
async def health_check() -> dict:
    """Health check endpoint."""
    return {"status": "ok", "hierarchies": sorted(HIERARCHIES)}
