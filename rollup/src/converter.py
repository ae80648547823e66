"""
Cumulative-to-period delta conversion with boundary lookback.

Turns one device's normalized cumulative series into one PeriodRecord per
in-window sample. Each period's production is the difference between its
cumulative reading and the reading one granularity step earlier:

- for every in-window sample after the first, the previous in-window sample;
- for the first in-window sample, the lookback sample whose key is exactly
  one step before it (or, failing that, one step before the window start).

The caller must fetch the extended window (one step before the window start
through its end) for the lookback sample to exist. Without one, the first
period is emitted as an unmeasured zero: ``period_production_kwh == 0``,
``has_lookback`` False and a ``"no prior sample"`` trace.

Counter resets (current reading below the previous one) are clamped to zero
and annotated in the trace; they are not errors.

The algorithm is identical at every granularity; only the key width and the
step size differ.

CHANGELOG:
- 2026-10-18: Carry the raw counter reading on each record (STORY-114)
- 2026-10-15: Second-chance lookback one step before the window start (STORY-104)
- 2026-10-13: Initial creation (STORY-104)

TODO:
- None
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from rollup.src.growth import apply_growth
from rollup.src.models import Granularity, NormalizedSample, PeriodRecord, Window
from rollup.src.timestamps import (
    DEFAULT_MINUTE_INTERVAL,
    period_start_date,
    previous_period_key,
    window_keys,
)

logger = logging.getLogger(__name__)

NO_PRIOR_SAMPLE_TRACE = "no prior sample"


def _delta_trace(current: float, previous: float, delta: float) -> str:
    return f"{current:.2f} kWh - {previous:.2f} kWh = {delta:.2f} kWh"


def _find_lookback(
    first: NormalizedSample,
    by_key: dict[str, NormalizedSample],
    start_key: str,
    granularity: Granularity,
    minute_interval: int,
) -> NormalizedSample | None:
    """Locate the sample exactly one step before the first in-window sample."""
    candidates = [previous_period_key(first.timestamp_key, granularity, minute_interval)]
    if first.timestamp_key != start_key:
        candidates.append(previous_period_key(start_key, granularity, minute_interval))
    for key in candidates:
        sample = by_key.get(key)
        if sample is not None and key < start_key:
            return sample
    return None


def convert_to_periods(
    samples: Sequence[NormalizedSample],
    window: Window,
    granularity: Granularity,
    *,
    minute_interval: int = DEFAULT_MINUTE_INTERVAL,
) -> list[PeriodRecord]:
    """Convert a cumulative series into per-period production records.

    Args:
        samples: Normalized samples keyed at *granularity*, covering the
            extended window.
        window: The requested window.
        granularity: Period width.
        minute_interval: Step width for minute granularity.

    Returns:
        One PeriodRecord per in-window sample, ascending by period key, with
        growth filled in. Empty when no sample falls inside the window.

    Raises:
        ValueError: If a sample key is not a period key at *granularity*.
    """
    for sample in samples:
        if len(sample.timestamp_key) != granularity.key_length:
            raise ValueError(
                f"Sample key {sample.timestamp_key!r} is not a "
                f"{granularity.value} period key"
            )

    ordered = sorted(samples, key=lambda s: s.timestamp_key)
    by_key = {s.timestamp_key: s for s in ordered}
    start_key, end_key = window_keys(window, granularity)
    in_window = [s for s in ordered if start_key <= s.timestamp_key <= end_key]

    records: list[PeriodRecord] = []
    for index, current in enumerate(in_window):
        if index > 0:
            previous = in_window[index - 1]
        else:
            previous = _find_lookback(
                current, by_key, start_key, granularity, minute_interval
            )

        if previous is None:
            logger.info(
                "No lookback sample before %s; first period reported as 0 kWh",
                current.timestamp_key,
            )
            records.append(
                PeriodRecord(
                    period_key=current.timestamp_key,
                    date=period_start_date(current.timestamp_key),
                    period_production_kwh=0.0,
                    cumulative_energy_kwh=current.cumulative_energy_kwh,
                    is_boundary_period=True,
                    has_lookback=False,
                    trace=NO_PRIOR_SAMPLE_TRACE,
                    original_raw_units=current.original_raw_units,
                )
            )
            continue

        raw_delta = current.cumulative_energy_kwh - previous.cumulative_energy_kwh
        trace = _delta_trace(
            current.cumulative_energy_kwh, previous.cumulative_energy_kwh, raw_delta
        )
        if raw_delta < 0:
            logger.warning(
                "Counter decreased at %s (%.3f kWh); clamping period to 0",
                current.timestamp_key,
                raw_delta,
            )
            trace = f"counter reset: {trace}, clamped to 0"

        records.append(
            PeriodRecord(
                period_key=current.timestamp_key,
                date=period_start_date(current.timestamp_key),
                period_production_kwh=max(0.0, raw_delta),
                cumulative_energy_kwh=current.cumulative_energy_kwh,
                is_boundary_period=index == 0,
                has_lookback=True,
                trace=trace,
                original_raw_units=current.original_raw_units,
            )
        )

    return apply_growth(records)
