"""
Unit tests for period-over-period growth.

Tests verify:
- Signed percentage change against the previous measured period.
- No growth without a prior period, or when both periods are zero.
- A period after a zero-production period reports new production, never
  infinity or NaN.
- Unmeasured boundary zeros are never used as the comparison base.

CHANGELOG:
- 2026-10-13: Initial creation (STORY-104)

TODO:
- None
"""

from __future__ import annotations

import math
from datetime import date, timedelta

import pytest

from rollup.src.growth import NEW_PRODUCTION_GROWTH_PCT, apply_growth, growth_percent
from rollup.src.models import PeriodRecord


def _records(values: list[float], measured_first: bool = True) -> list[PeriodRecord]:
    first = date(2025, 1, 1)
    return [
        PeriodRecord(
            period_key=(first + timedelta(days=i)).strftime("%Y%m%d"),
            date=first + timedelta(days=i),
            period_production_kwh=value,
            cumulative_energy_kwh=0.0,
            is_boundary_period=i == 0,
            has_lookback=measured_first or i > 0,
        )
        for i, value in enumerate(values)
    ]


class TestGrowthPercent:
    """growth_percent edge cases."""

    def test_increase(self) -> None:
        assert growth_percent(0.055, 0.04) == pytest.approx(37.5)

    def test_decrease(self) -> None:
        assert growth_percent(0.0, 5.0) == pytest.approx(-100.0)

    def test_no_prior(self) -> None:
        assert growth_percent(5.0, None) is None

    def test_both_zero(self) -> None:
        assert growth_percent(0.0, 0.0) is None

    def test_new_production(self) -> None:
        assert growth_percent(3.0, 0.0) == NEW_PRODUCTION_GROWTH_PCT


class TestApplyGrowth:
    """apply_growth over a record series."""

    def test_series(self) -> None:
        result = apply_growth(_records([10.0, 12.0, 6.0]))
        assert result[0].growth_percent is None
        assert result[1].growth_percent == pytest.approx(20.0)
        assert result[2].growth_percent == pytest.approx(-50.0)

    def test_zero_then_positive_is_finite(self) -> None:
        result = apply_growth(_records([0.0, 4.0]))
        assert result[1].growth_percent == NEW_PRODUCTION_GROWTH_PCT
        assert math.isfinite(result[1].growth_percent)

    def test_unmeasured_first_skipped(self) -> None:
        result = apply_growth(_records([0.0, 4.0, 5.0], measured_first=False))
        assert result[1].growth_percent is None
        assert result[2].growth_percent == pytest.approx(25.0)

    def test_input_not_mutated(self) -> None:
        records = _records([1.0, 2.0])
        apply_growth(records)
        assert records[1].growth_percent is None

    def test_order_preserved(self) -> None:
        records = _records([1.0, 2.0, 3.0])
        result = apply_growth(records)
        assert [r.period_key for r in result] == [r.period_key for r in records]
