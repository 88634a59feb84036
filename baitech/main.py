"""BaiTech API -- Main Application Entry Point

Creates the FastAPI application, configures logging and CORS, and registers
the pricing, matching and booking routers under the /api/v1 prefix.

Run with::

    uvicorn baitech.main:app --host 0.0.0.0 --port 8000 --reload
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from baitech.core.config import settings
from baitech.core.logging import setup_logging

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Lifespan: startup / shutdown hooks
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Configure logging on startup; dispose of the connection pool on shutdown."""
    setup_logging(settings.log_level, sql_echo=settings.sql_echo)
    logger.info("%s %s starting", settings.app_name, settings.app_version)

    yield

    from baitech.api.deps import engine

    await engine.dispose()
    logger.info("%s stopped", settings.app_name)


# ---------------------------------------------------------------------------
# Application instance
# ---------------------------------------------------------------------------

app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health", tags=["Health"])
async def health():
    """Lightweight health check for load balancers and readiness checks."""
    return {"status": "ok", "version": settings.app_version}


# ---------------------------------------------------------------------------
# Register API route modules
# ---------------------------------------------------------------------------

from baitech.api.routes import bookings, matching, pricing  # noqa: E402

_prefix = settings.api_v1_prefix

app.include_router(pricing.router, prefix=_prefix)
app.include_router(matching.router, prefix=_prefix)
app.include_router(bookings.router, prefix=_prefix)
