"""
Unit tests for specific yield and fleet ranking.

Tests verify:
- avg daily energy uses the inclusive window length.
- Ranking is descending by specific yield regardless of roster order.
- Ties break by device id ascending.
- Non-positive capacity and empty windows raise ConfigurationError.
- Failed devices stay in the ranking with zeroed metrics and do not skew
  the fleet means or best/worst performers.

CHANGELOG:
- 2026-10-16: Add failed-device and metric selection tests (STORY-106)
- 2026-10-14: Initial creation (STORY-106)

TODO:
- None
"""

from __future__ import annotations

from datetime import date, datetime, timedelta

import pytest

from rollup.src.errors import ConfigurationError
from rollup.src.models import DeviceError, DeviceSeries, PeriodRecord, Window
from rollup.src.ranking import compute_yield, rank_fleet

WEEK = Window.from_dates(date(2025, 1, 1), date(2025, 1, 7))


def _series(
    device_id: str,
    capacity_kw: float,
    daily_kwh: float,
    window: Window = WEEK,
    error: DeviceError | None = None,
) -> DeviceSeries:
    """A device producing *daily_kwh* on every day of *window*."""
    first = window.start.date()
    periods = [
        PeriodRecord(
            period_key=(first + timedelta(days=i)).strftime("%Y%m%d"),
            date=first + timedelta(days=i),
            period_production_kwh=daily_kwh,
            cumulative_energy_kwh=daily_kwh * (i + 1),
        )
        for i in range(window.days)
    ]
    return DeviceSeries(
        device_id=device_id,
        capacity_kw=capacity_kw,
        periods=[] if error else periods,
        error=error,
    )


class TestComputeYield:
    """Per-device metrics."""

    def test_metrics(self) -> None:
        result = compute_yield(_series("A", 5.0, 20.0), WEEK)
        assert result.days_in_window == 7
        assert result.total_kwh == pytest.approx(140.0)
        assert result.avg_daily_kwh == pytest.approx(20.0)
        assert result.specific_yield == pytest.approx(4.0)

    def test_single_day_window_is_one_day(self) -> None:
        window = Window.from_dates(date(2025, 1, 1), date(2025, 1, 1))
        assert compute_yield(_series("A", 2.0, 8.0, window), window).avg_daily_kwh == 8.0

    @pytest.mark.parametrize("capacity", [0.0, -1.5])
    def test_non_positive_capacity_rejected(self, capacity: float) -> None:
        with pytest.raises(ConfigurationError, match="capacity"):
            compute_yield(_series("A", capacity, 1.0), WEEK)

    def test_empty_window_rejected(self) -> None:
        inverted = Window(start=datetime(2025, 1, 2), end=datetime(2025, 1, 1))
        with pytest.raises(ConfigurationError):
            compute_yield(_series("A", 5.0, 1.0), inverted)


class TestRankFleet:
    """Ordering and summary."""

    def test_smaller_plant_with_higher_yield_ranks_first(self) -> None:
        a = _series("A", 5.0, 20.0)
        b = _series("B", 2.0, 10.0)

        for roster in ([a, b], [b, a]):
            ranking = rank_fleet(roster, WEEK)
            assert [e.device_id for e in ranking.entries] == ["B", "A"]
            assert ranking.entries[0].specific_yield == pytest.approx(5.0)
            assert ranking.entries[1].specific_yield == pytest.approx(4.0)

    def test_ties_broken_by_device_id(self) -> None:
        ranking = rank_fleet(
            [_series("C", 2.0, 4.0), _series("A", 1.0, 2.0), _series("B", 4.0, 8.0)],
            WEEK,
        )
        assert [e.device_id for e in ranking.entries] == ["A", "B", "C"]

    def test_summary(self) -> None:
        ranking = rank_fleet([_series("A", 5.0, 20.0), _series("B", 2.0, 10.0)], WEEK)
        summary = ranking.summary

        assert summary.device_count == 2
        assert summary.total_kwh == pytest.approx(210.0)
        assert summary.mean_avg_daily_kwh == pytest.approx(15.0)
        assert summary.mean_specific_yield == pytest.approx(4.5)
        assert summary.total_capacity_kw == pytest.approx(7.0)
        assert summary.best is not None and summary.best.device_id == "B"
        assert summary.worst is not None and summary.worst.device_id == "A"

    def test_failed_device_kept_with_zero_metrics(self) -> None:
        error = DeviceError(device_id="X", kind="SessionKeyNotFound", message="gone")
        ranking = rank_fleet(
            [_series("A", 5.0, 20.0), _series("X", 3.0, 0.0, error=error)], WEEK
        )

        failed = next(e for e in ranking.entries if e.device_id == "X")
        assert failed.specific_yield == 0
        assert failed.error == error
        assert ranking.summary.device_count == 2
        assert ranking.summary.mean_specific_yield == pytest.approx(4.0)
        assert ranking.summary.worst is not None
        assert ranking.summary.worst.device_id == "A"
        assert ranking.summary.total_capacity_kw == pytest.approx(8.0)

    def test_empty_fleet(self) -> None:
        ranking = rank_fleet([], WEEK)
        assert ranking.entries == []
        assert ranking.summary.best is None
        assert ranking.summary.mean_specific_yield == 0.0

    def test_rank_by_total(self) -> None:
        ranking = rank_fleet(
            [_series("A", 5.0, 20.0), _series("B", 2.0, 10.0)], WEEK, metric="total_kwh"
        )
        assert ranking.metric == "total_kwh"
        assert [e.device_id for e in ranking.entries] == ["A", "B"]

    def test_unknown_metric_rejected(self) -> None:
        with pytest.raises(ConfigurationError, match="metric"):
            rank_fleet([_series("A", 5.0, 20.0)], WEEK, metric="peak_power")
