"""
Period-over-period growth for converted production series.

Growth compares each record's production with the production of the previous
measured in-window record. A record emitted as an unmeasured zero (first
period without a lookback sample) is never used as the comparison base.

A period that follows a zero-production period is reported as new production
with a fixed positive growth value instead of a division by zero.

CHANGELOG:
- 2026-10-13: Initial creation (STORY-104)
"""

from __future__ import annotations

from collections.abc import Sequence

from rollup.src.models import PeriodRecord

NEW_PRODUCTION_GROWTH_PCT: float = 100.0
"""Growth reported when the prior period produced nothing and this one did."""


def growth_percent(current_kwh: float, prior_kwh: float | None) -> float | None:
    """Percentage change from *prior_kwh* to *current_kwh*.

    Returns:
        ``None`` when there is no prior period or both are zero,
        :data:`NEW_PRODUCTION_GROWTH_PCT` when the prior is zero and the
        current is positive, otherwise the signed percentage change.
    """
    if prior_kwh is None:
        return None
    if prior_kwh > 0:
        return (current_kwh - prior_kwh) / prior_kwh * 100.0
    if current_kwh > 0:
        return NEW_PRODUCTION_GROWTH_PCT
    return None


def apply_growth(records: Sequence[PeriodRecord]) -> list[PeriodRecord]:
    """Return copies of *records* with ``growth_percent`` filled in.

    Order is preserved; the input records are not mutated.
    """
    prior: float | None = None
    result: list[PeriodRecord] = []
    for record in records:
        growth = growth_percent(record.period_production_kwh, prior)
        result.append(record.model_copy(update={"growth_percent": growth}))
        if record.has_lookback:
            prior = record.period_production_kwh
    return result
