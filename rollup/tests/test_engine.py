"""
Unit tests for the fleet computation entry point.

Tests verify:
- End to end: raw Wh counters become per-day kWh periods per device, in
  roster order.
- Configuration errors are raised before any network call.
- A failed device is kept with no periods and its error; one healthy device
  is enough for a result.
- All devices failing raises a single FleetFetchError, and the same request
  fetches again once the upstream recovers.
- Progress callbacks are forwarded.

CHANGELOG:
- 2026-10-18: Cover recovery after a fully failed cycle and dropped rows (STORY-114)
- 2026-10-16: Initial creation (STORY-109)

TODO:
- None
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import date, datetime
from unittest.mock import AsyncMock

import pytest

from rollup.src.cache import InMemorySessionKeyCache
from rollup.src.engine import build_series, compute_device_series
from rollup.src.errors import ConfigurationError, FleetFetchError
from rollup.src.models import (
    DeviceError,
    Granularity,
    ProgressEvent,
    RawSample,
    RosterEntry,
    Window,
)
from rollup.src.orchestrator import BatchFetchOrchestrator, DeviceFetch

WINDOW = Window.from_dates(date(2025, 1, 1), date(2025, 1, 3))
LOOKBACK_DAY = date(2024, 12, 31)


@pytest.fixture()
def fleet_source(
    make_source: type,
    make_daily_rows: Callable[[date, list[float]], list[RawSample]],
    roster_three: list[RosterEntry],
):  # noqa: ANN201
    """Source with counters for all three roster devices."""
    return make_source(
        keys={e.device_serial: f"ps-{e.device_serial}" for e in roster_three},
        rows={
            "ps-SN1": make_daily_rows(LOOKBACK_DAY, [1000, 5000, 9000, 15000]),
            "ps-SN2": make_daily_rows(LOOKBACK_DAY, [0, 3000, 6000, 9000]),
            "ps-SN3": make_daily_rows(LOOKBACK_DAY, [500, 1500, 2500, 4500]),
        },
    )


def _orchestrator(
    source: object, cache: InMemorySessionKeyCache, sleep: AsyncMock
) -> BatchFetchOrchestrator:
    return BatchFetchOrchestrator(source, cache, sleep=sleep)  # type: ignore[arg-type]


class TestComputeDeviceSeries:
    """Full pipeline with a fake source."""

    @pytest.mark.asyncio
    async def test_end_to_end(
        self,
        fleet_source: object,
        memory_cache: InMemorySessionKeyCache,
        no_sleep: AsyncMock,
        roster_three: list[RosterEntry],
    ) -> None:
        result = await compute_device_series(
            roster_three,
            WINDOW,
            Granularity.DAY,
            orchestrator=_orchestrator(fleet_source, memory_cache, no_sleep),
        )

        assert [s.device_id for s in result.series] == ["SN1", "SN2", "SN3"]
        assert result.errors == []

        sn1 = result.series[0]
        assert [p.period_key for p in sn1.periods] == ["20250101", "20250102", "20250103"]
        assert [p.period_production_kwh for p in sn1.periods] == pytest.approx(
            [4.0, 4.0, 6.0]
        )
        assert sn1.periods[0].is_boundary_period is True
        assert sn1.periods[0].has_lookback is True
        assert sn1.periods[2].growth_percent == pytest.approx(50.0)
        assert sn1.total_kwh == pytest.approx(14.0)
        assert sn1.beneficiary_label == "Asha Devi"
        assert sn1.capacity_kw == 5.0
        assert len(sn1.samples) == 4

    @pytest.mark.asyncio
    async def test_partial_failure_keeps_failed_device(
        self,
        fleet_source,  # noqa: ANN001
        memory_cache: InMemorySessionKeyCache,
        no_sleep: AsyncMock,
        roster_three: list[RosterEntry],
    ) -> None:
        del fleet_source.keys["SN2"]

        result = await compute_device_series(
            roster_three,
            WINDOW,
            Granularity.DAY,
            orchestrator=_orchestrator(fleet_source, memory_cache, no_sleep),
        )

        failed = result.series[1]
        assert failed.device_id == "SN2"
        assert failed.ok is False
        assert failed.periods == []
        assert failed.total_kwh == 0
        assert [e.device_id for e in result.errors] == ["SN2"]
        assert result.series[0].ok and result.series[2].ok

    @pytest.mark.asyncio
    async def test_all_failed_raises(
        self,
        make_source: type,
        memory_cache: InMemorySessionKeyCache,
        no_sleep: AsyncMock,
        roster_three: list[RosterEntry],
    ) -> None:
        with pytest.raises(FleetFetchError) as exc_info:
            await compute_device_series(
                roster_three,
                WINDOW,
                Granularity.DAY,
                orchestrator=_orchestrator(make_source(), memory_cache, no_sleep),
            )
        assert [e.device_id for e in exc_info.value.errors] == ["SN1", "SN2", "SN3"]
        assert "All 3 device(s) failed" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_recovers_once_upstream_is_back(
        self,
        fleet_source,  # noqa: ANN001
        memory_cache: InMemorySessionKeyCache,
        no_sleep: AsyncMock,
        roster_three: list[RosterEntry],
    ) -> None:
        """A failed cycle is not replayed for the same parameters."""
        keys = dict(fleet_source.keys)
        fleet_source.keys.clear()
        orchestrator = _orchestrator(fleet_source, memory_cache, no_sleep)

        with pytest.raises(FleetFetchError):
            await compute_device_series(
                roster_three, WINDOW, Granularity.DAY, orchestrator=orchestrator
            )

        fleet_source.keys.update(keys)
        result = await compute_device_series(
            roster_three, WINDOW, Granularity.DAY, orchestrator=orchestrator
        )

        assert result.errors == []
        assert len(fleet_source.resolve_calls) == 6

    @pytest.mark.asyncio
    async def test_progress_forwarded(
        self,
        fleet_source: object,
        memory_cache: InMemorySessionKeyCache,
        no_sleep: AsyncMock,
        roster_three: list[RosterEntry],
    ) -> None:
        events: list[ProgressEvent] = []
        orchestrator = BatchFetchOrchestrator(
            fleet_source, memory_cache, batch_size=2, sleep=no_sleep  # type: ignore[arg-type]
        )

        result = await compute_device_series(
            roster_three,
            WINDOW,
            Granularity.DAY,
            orchestrator=orchestrator,
            progress=events.append,
        )

        assert [e.processed for e in events] == [2, 3]
        assert all(e.cycle_id == result.cycle_id for e in events)

    @pytest.mark.asyncio
    async def test_raw_factor_applied(
        self,
        fleet_source: object,
        memory_cache: InMemorySessionKeyCache,
        no_sleep: AsyncMock,
        roster_three: list[RosterEntry],
    ) -> None:
        result = await compute_device_series(
            roster_three,
            WINDOW,
            Granularity.DAY,
            orchestrator=_orchestrator(fleet_source, memory_cache, no_sleep),
            raw_to_kwh_factor=1.0,
        )
        assert result.series[0].periods[0].period_production_kwh == pytest.approx(4000.0)


class TestValidation:
    """Invalid input fails before any fetch."""

    @pytest.mark.asyncio
    async def test_zero_capacity(
        self,
        fleet_source,  # noqa: ANN001
        memory_cache: InMemorySessionKeyCache,
        no_sleep: AsyncMock,
        roster_three: list[RosterEntry],
    ) -> None:
        roster = [*roster_three[:2], roster_three[2].model_copy(update={"capacity_kw": 0.0})]

        with pytest.raises(ConfigurationError, match="SN3"):
            await compute_device_series(
                roster,
                WINDOW,
                Granularity.DAY,
                orchestrator=_orchestrator(fleet_source, memory_cache, no_sleep),
            )
        assert fleet_source.resolve_calls == []
        assert fleet_source.fetch_calls == []

    @pytest.mark.asyncio
    async def test_inverted_window(
        self,
        fleet_source,  # noqa: ANN001
        memory_cache: InMemorySessionKeyCache,
        no_sleep: AsyncMock,
        roster_three: list[RosterEntry],
    ) -> None:
        inverted = Window(start=datetime(2025, 1, 5), end=datetime(2025, 1, 1))

        with pytest.raises(ConfigurationError):
            await compute_device_series(
                roster_three,
                inverted,
                Granularity.DAY,
                orchestrator=_orchestrator(fleet_source, memory_cache, no_sleep),
            )
        assert fleet_source.fetch_calls == []

    @pytest.mark.asyncio
    async def test_empty_roster(
        self,
        fleet_source,  # noqa: ANN001
        memory_cache: InMemorySessionKeyCache,
        no_sleep: AsyncMock,
    ) -> None:
        with pytest.raises(ConfigurationError, match="empty"):
            await compute_device_series(
                [],
                WINDOW,
                Granularity.DAY,
                orchestrator=_orchestrator(fleet_source, memory_cache, no_sleep),
            )


class TestBuildSeries:
    """Single-device conversion."""

    def test_failed_fetch(self, roster_three: list[RosterEntry]) -> None:
        error = DeviceError(device_id="SN1", kind="SampleFetchError", message="HTTP 500")
        series = build_series(
            roster_three[0],
            DeviceFetch(entry=roster_three[0], error=error),
            WINDOW,
            Granularity.DAY,
            metric_id="p2",
            minute_interval=10,
        )
        assert series.error == error
        assert series.periods == []
        assert series.capacity_kw == 5.0

    def test_unparsable_rows_counted(self, roster_three: list[RosterEntry]) -> None:
        rows = [
            RawSample(timestamp="20241231", raw_value="1000"),
            RawSample(timestamp="garbage", raw_value="2000"),
            RawSample(timestamp="20250101", raw_value="n/a"),
            {"p2": "2500"},
            RawSample(timestamp="20250102", raw_value="3000"),
        ]
        series = build_series(
            roster_three[0],
            DeviceFetch(entry=roster_three[0], rows=rows),
            WINDOW,
            Granularity.DAY,
            metric_id="p2",
            minute_interval=10,
        )
        assert series.dropped_samples == 3
        assert [p.period_key for p in series.periods] == ["20250102"]
        assert series.periods[0].period_production_kwh == pytest.approx(2.0)
