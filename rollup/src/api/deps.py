"""
FastAPI dependency injection providers.

Route handlers receive the orchestrator and settings built during the
application lifespan through Depends(); tests replace them with
``app.dependency_overrides``.

CHANGELOG:
- 2026-10-17: Initial creation (STORY-113)
"""

from typing import Annotated

from fastapi import Depends, Request

from rollup.src.config import RollupSettings
from rollup.src.orchestrator import BatchFetchOrchestrator


def get_orchestrator(request: Request) -> BatchFetchOrchestrator:
    """Return the orchestrator placed on app.state at startup."""
    return request.app.state.orchestrator


def get_settings(request: Request) -> RollupSettings:
    """Return the settings loaded at startup."""
    return request.app.state.settings


Orchestrator = Annotated[BatchFetchOrchestrator, Depends(get_orchestrator)]
Settings = Annotated[RollupSettings, Depends(get_settings)]
