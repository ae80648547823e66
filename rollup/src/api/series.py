"""
POST /v1/series, POST /v1/export and POST /v1/export/periods endpoints.

All take a roster, an inclusive date window and a granularity, run one
fetch-and-compute cycle and rank the fleet by specific yield. /v1/series
returns the per-device period records (optionally re-bucketed into a coarser
granularity) with summary statistics, the per-device errors and the ranking.
/v1/export returns the ranking as a CSV attachment and /v1/export/periods
returns every device's period records as a CSV attachment.

A request identical to the previous one reuses that fetch while it is fresh
and had no failed devices; ``force_refresh`` always fetches again.

Invalid input (non-positive capacity, inverted window, empty roster, an
impossible re-bucket target) is rejected with 422. A cycle in which every
device failed is reported as 502 with each device's reason.

CHANGELOG:
- 2026-10-18: Add statistics, period export and force_refresh (STORY-114)
- 2026-10-17: Initial creation (STORY-113)

TODO:
- None
"""

import logging
from datetime import date

from fastapi import APIRouter, HTTPException, Response
from pydantic import BaseModel, Field

from rollup.src.aggregation import rebucket, series_statistics
from rollup.src.api.deps import Orchestrator, Settings
from rollup.src.engine import compute_device_series
from rollup.src.errors import ConfigurationError, FleetFetchError
from rollup.src.export import export_as_delimited_text, export_periods
from rollup.src.models import (
    AggregationBucket,
    DeviceError,
    FleetResult,
    Granularity,
    PeriodRecord,
    RosterEntry,
    SeriesStatistics,
    Window,
    YieldRanking,
)
from rollup.src.ranking import rank_fleet

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1", tags=["series"])


# ---------------------------------------------------------------------------
# Pydantic request/response models
# ---------------------------------------------------------------------------


class SeriesRequest(BaseModel):
    """Request body shared by the series and export endpoints.

    Attributes:
        roster: Devices to compute, in display order.
        start: First day of the window.
        end: Last day of the window (inclusive).
        granularity: Period width of the fetched series.
        rebucket: Optional coarser granularity to sum periods into.
        metric: DeviceYield field to rank by.
        force_refresh: Fetch again even if the previous cycle covers the
            same parameters.
    """

    roster: list[RosterEntry] = Field(min_length=1)
    start: date
    end: date
    granularity: Granularity = Granularity.DAY
    rebucket: Granularity | None = None
    metric: str = "specific_yield"
    force_refresh: bool = False


class DeviceSeriesOut(BaseModel):
    """One device's periods, optional buckets and failure."""

    device_id: str
    beneficiary_label: str
    capacity_kw: float
    total_kwh: float
    dropped_samples: int
    periods: list[PeriodRecord]
    buckets: list[AggregationBucket] = Field(default_factory=list)
    statistics: SeriesStatistics = Field(default_factory=SeriesStatistics)
    error: DeviceError | None = None


class SeriesResponse(BaseModel):
    """Response model for the series endpoint."""

    cycle_id: int
    fingerprint: str
    granularity: Granularity
    series: list[DeviceSeriesOut]
    errors: list[DeviceError]
    ranking: YieldRanking


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def _run_cycle(
    body: SeriesRequest,
    orchestrator: Orchestrator,
    settings: Settings,
) -> tuple[Window, FleetResult, YieldRanking]:
    """Compute and rank, mapping engine errors to HTTP errors.

    Raises:
        HTTPException: 422 on invalid input, 502 if every device failed.
    """
    window = Window.from_dates(body.start, body.end)
    try:
        result = await compute_device_series(
            body.roster,
            window,
            body.granularity,
            orchestrator=orchestrator,
            raw_to_kwh_factor=settings.raw_to_kwh_factor,
            force=body.force_refresh,
        )
        ranking = rank_fleet(result.series, window, metric=body.metric)
    except ConfigurationError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    except FleetFetchError as exc:
        logger.warning("All devices failed: %s", exc)
        raise HTTPException(
            status_code=502,
            detail={
                "message": "No device could be fetched",
                "errors": [error.model_dump() for error in exc.errors],
            },
        ) from exc
    return window, result, ranking


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


@router.post("/series", response_model=SeriesResponse)
async def post_series(
    body: SeriesRequest,
    orchestrator: Orchestrator,
    settings: Settings,
) -> SeriesResponse:
    """Return period records, errors and ranking for a roster.

    Raises:
        HTTPException: 422 on invalid input or re-bucket target, 502 if
            every device failed.
    """
    _, result, ranking = await _run_cycle(body, orchestrator, settings)

    series_out: list[DeviceSeriesOut] = []
    for item in result.series:
        buckets: list[AggregationBucket] = []
        if body.rebucket is not None:
            try:
                buckets = rebucket(item.periods, body.rebucket, source=body.granularity)
            except (KeyError, ValueError) as exc:
                raise HTTPException(
                    status_code=422,
                    detail=f"Cannot re-bucket {body.granularity.value} into "
                    f"{body.rebucket.value}",
                ) from exc
        series_out.append(
            DeviceSeriesOut(
                device_id=item.device_id,
                beneficiary_label=item.beneficiary_label,
                capacity_kw=item.capacity_kw,
                total_kwh=item.total_kwh,
                dropped_samples=item.dropped_samples,
                periods=item.periods,
                buckets=buckets,
                statistics=series_statistics(item.periods),
                error=item.error,
            )
        )

    logger.debug(
        "Series cycle %d: devices=%d errors=%d",
        result.cycle_id,
        len(result.series),
        len(result.errors),
    )
    return SeriesResponse(
        cycle_id=result.cycle_id,
        fingerprint=result.fingerprint,
        granularity=body.granularity,
        series=series_out,
        errors=result.errors,
        ranking=ranking,
    )


@router.post("/export")
async def post_export(
    body: SeriesRequest,
    orchestrator: Orchestrator,
    settings: Settings,
) -> Response:
    """Return the fleet ranking as a CSV attachment."""
    window, _, ranking = await _run_cycle(body, orchestrator, settings)
    filename = f"specific-yield-{body.start.isoformat()}-to-{body.end.isoformat()}.csv"
    return Response(
        content=export_as_delimited_text(ranking, window),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.post("/export/periods")
async def post_export_periods(
    body: SeriesRequest,
    orchestrator: Orchestrator,
    settings: Settings,
) -> Response:
    """Return every device's period records as a CSV attachment."""
    _, result, _ = await _run_cycle(body, orchestrator, settings)
    filename = (
        f"periods-{body.granularity.value}-{body.start.isoformat()}"
        f"-to-{body.end.isoformat()}.csv"
    )
    return Response(
        content=export_periods(result.series),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
