"""
GET /health: liveness plus the state of the last fetch cycle.

Reports which session-key cache backs the orchestrator and a summary of the
most recently completed cycle. Status is ``degraded`` while that cycle has
failed devices, ``ok`` otherwise (including before the first cycle). No
upstream call is made.

CHANGELOG:
- 2026-10-18: Report cache backend and last cycle summary (STORY-114)
- 2026-10-17: Initial creation (STORY-113)

TODO:
- None
"""

from fastapi import APIRouter
from pydantic import BaseModel

from rollup.src.api.deps import Orchestrator, Settings

router = APIRouter(tags=["health"])


class LastCycleOut(BaseModel):
    """Summary of the most recently completed fetch cycle."""

    cycle_id: int
    devices: int
    failed_devices: int
    age_s: float | None


class HealthResponse(BaseModel):
    status: str
    session_key_cache: str
    last_cycle: LastCycleOut | None = None


@router.get("/health", response_model=HealthResponse)
async def health(orchestrator: Orchestrator, settings: Settings) -> HealthResponse:
    """Return service status and the last cycle summary.

    Returns:
        HealthResponse: ``status`` is ``degraded`` when the last cycle had
        failed devices.
    """
    cycle = orchestrator.last_completed
    last_cycle = None
    if cycle is not None:
        last_cycle = LastCycleOut(
            cycle_id=cycle.cycle_id,
            devices=cycle.total,
            failed_devices=len(cycle.errors),
            age_s=orchestrator.last_cycle_age_s(),
        )
    return HealthResponse(
        status="degraded" if last_cycle is not None and last_cycle.failed_devices else "ok",
        session_key_cache="redis" if settings.redis_url else "memory",
        last_cycle=last_cycle,
    )
