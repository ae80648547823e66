"""
FastAPI application entry point for the telemetry rollup API.

The lifespan loads RollupSettings from the environment (failing startup on
invalid configuration) and places the telemetry client, the session-key
cache and the fetch orchestrator on app.state for route handlers. The client
and cache are closed on shutdown.

Run with::

    uvicorn rollup.src.api.main:app

CHANGELOG:
- 2026-10-17: Initial creation (STORY-113)
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from rollup.src.api.health import router as health_router
from rollup.src.api.series import router as series_router
from rollup.src.cache import build_cache
from rollup.src.client import TelemetryClient
from rollup.src.config import RollupSettings
from rollup.src.orchestrator import BatchFetchOrchestrator

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: build shared components, close them on shutdown."""
    settings = RollupSettings()
    client = TelemetryClient.from_settings(settings)
    cache = build_cache(settings)

    app.state.settings = settings
    app.state.client = client
    app.state.cache = cache
    app.state.orchestrator = BatchFetchOrchestrator.from_settings(
        settings, client, cache
    )

    logger.info("Configuration validated, rollup API ready")
    yield
    logger.info("Rollup API shutting down")
    await client.aclose()
    await cache.aclose()


app = FastAPI(
    title="Telemetry Rollup API",
    description="Per-device solar production rollups and specific-yield ranking.",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(health_router)
app.include_router(series_router)
