"""
Multi-granularity aggregation of converted production series.

Re-bucketing groups a fine-grained PeriodRecord series (minute or day) by a
coarser bucket key and sums production per bucket. The result agrees within
floating-point tolerance with converting counters fetched directly at the
coarse granularity, because consecutive deltas telescope to the aggregate
delta.

series_statistics summarizes one device's series: total, mean, extremes
with their periods, non-zero periods and the growth of the last period over
the one before.

The BUCKET_CONFIG dict maps a target granularity to its bucket-key format and
the granularities it may be built from.

CHANGELOG:
- 2026-10-18: Add series_statistics; drop convert_direct (STORY-114)
- 2026-10-16: Add period_total (STORY-105)
- 2026-10-14: Initial creation (STORY-105)

TODO:
- None
"""

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import date

from rollup.src.growth import growth_percent
from rollup.src.models import (
    AggregationBucket,
    Granularity,
    PeriodRecord,
    SeriesStatistics,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BucketConfig:
    """Configuration for a coarse aggregation target.

    Attributes:
        key_format: strftime format of the bucket key.
        finer: Granularities whose records may be re-bucketed into this one.
    """

    key_format: str
    finer: frozenset[Granularity]


BUCKET_CONFIG: dict[Granularity, BucketConfig] = {
    Granularity.DAY: BucketConfig(
        key_format="%Y-%m-%d",
        finer=frozenset({Granularity.MINUTE}),
    ),
    Granularity.MONTH: BucketConfig(
        key_format="%Y-%m",
        finer=frozenset({Granularity.MINUTE, Granularity.DAY}),
    ),
    Granularity.YEAR: BucketConfig(
        key_format="%Y",
        finer=frozenset({Granularity.MINUTE, Granularity.DAY, Granularity.MONTH}),
    ),
}


def bucket_key(day: date, target: Granularity) -> str:
    """Return the bucket key (``YYYY-MM-DD``, ``YYYY-MM`` or ``YYYY``) of *day*.

    Raises:
        KeyError: If *target* is not a valid BUCKET_CONFIG key.
    """
    return day.strftime(BUCKET_CONFIG[target].key_format)


def rebucket(
    records: Iterable[PeriodRecord],
    target: Granularity,
    *,
    source: Granularity | None = None,
) -> list[AggregationBucket]:
    """Sum period production into coarser buckets.

    Args:
        records: PeriodRecords in chronological order.
        target: Coarse granularity to bucket by.
        source: Granularity of *records*, validated against the target when
            given.

    Returns:
        list[AggregationBucket]: One bucket per distinct key, in chronological
        order.

    Raises:
        ValueError: If *source* is not finer than *target*.
        KeyError: If *target* cannot be bucketed into.
    """
    config = BUCKET_CONFIG[target]
    if source is not None and source not in config.finer:
        raise ValueError(
            f"Cannot re-bucket {source.value} records into {target.value} buckets"
        )

    sums: dict[str, float] = {}
    counts: dict[str, int] = {}
    for record in records:
        key = bucket_key(record.date, target)
        sums[key] = sums.get(key, 0.0) + record.period_production_kwh
        counts[key] = counts.get(key, 0) + 1

    logger.debug(
        "Re-bucketed %d record(s) into %d %s bucket(s)",
        sum(counts.values()),
        len(sums),
        target.value,
    )
    # Bucket keys are zero-padded, so lexical order is chronological
    return [
        AggregationBucket(bucket_key=key, sum_kwh=sums[key], member_count=counts[key])
        for key in sorted(sums)
    ]


def period_total(records: Iterable[PeriodRecord]) -> float:
    """Total production over *records*."""
    return sum(record.period_production_kwh for record in records)


def series_statistics(records: Sequence[PeriodRecord]) -> SeriesStatistics:
    """Summarize one device's period series.

    Only measured records (those with a lookback sample) contribute to the
    totals, extremes and growth; unmeasured zeros are only counted. Ties for
    the maximum or minimum resolve to the earliest period.

    Args:
        records: PeriodRecords in chronological order.

    Returns:
        SeriesStatistics: Empty statistics (``count == 0``) when no record
        was measured.
    """
    measured = [record for record in records if record.has_lookback]
    unmeasured = len(records) - len(measured)
    final_cumulative = records[-1].cumulative_energy_kwh if records else None
    if not measured:
        return SeriesStatistics(
            unmeasured_periods=unmeasured,
            final_cumulative_kwh=final_cumulative,
        )

    total = period_total(measured)
    highest = max(measured, key=lambda record: record.period_production_kwh)
    lowest = min(measured, key=lambda record: record.period_production_kwh)
    last_growth = None
    if len(measured) > 1:
        last_growth = growth_percent(
            measured[-1].period_production_kwh, measured[-2].period_production_kwh
        )

    return SeriesStatistics(
        count=len(measured),
        unmeasured_periods=unmeasured,
        sum_kwh=total,
        avg_kwh=total / len(measured),
        max_kwh=highest.period_production_kwh,
        max_period_key=highest.period_key,
        min_kwh=lowest.period_production_kwh,
        min_period_key=lowest.period_key,
        non_zero_periods=sum(1 for r in measured if r.period_production_kwh > 0),
        final_cumulative_kwh=final_cumulative,
        last_growth_percent=last_growth,
    )
