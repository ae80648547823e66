"""
Pure normalizer that turns raw telemetry rows into a cumulative series.

Accepts one device's rows for one metric, in any of the closed set of shapes
the upstream endpoints return, converts each to a canonical RawSample, decodes
its timestamp, converts the raw counter from Wh to kWh and returns the samples
sorted ascending by timestamp key with duplicate keys collapsed (last wins).

Rows whose timestamp does not decode or whose value is not numeric are
dropped and counted; they never fail the batch.

Accepted row shapes:

- ``RawSample`` instances.
- Point rows ``{"time_stamp": "20250101", "p2": "123400"}`` from the
  day/month/year endpoint (exactly one value key besides ``time_stamp``).
- Minute rows ``{"time_stamp": "20250101101000", "p2": ..., "p24": ...}``
  where the metric id selects the value key.
- Tabular rows ``{"timestamp": "01/01/2025 10:10:00", "value": 123.4}``.

This is a pure function: no I/O, no clock, no shared state.

CHANGELOG:
- 2026-10-15: Truncate keys to a target granularity before de-duplication (STORY-104)
- 2026-10-13: Initial creation (STORY-103)

TODO:
- None
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass

from rollup.src.errors import TimestampParseError
from rollup.src.models import Granularity, NormalizedSample, RawSample
from rollup.src.timestamps import decode

logger = logging.getLogger(__name__)

WH_TO_KWH: float = 1 / 1000
"""Raw telemetry counters are in watt-hours; the engine works in kWh."""

_TIME_STAMP_FIELD = "time_stamp"
_TABULAR_TIME_FIELD = "timestamp"
_TABULAR_VALUE_FIELD = "value"

RawRow = RawSample | Mapping[str, object]


@dataclass(frozen=True)
class NormalizationResult:
    """Output of :func:`normalize`.

    Attributes:
        samples: Sorted, de-duplicated cumulative samples.
        dropped: Rows discarded for an unparsable timestamp or value.
        duplicates: Rows superseded by a later row with the same key.
    """

    samples: list[NormalizedSample]
    dropped: int = 0
    duplicates: int = 0


# ---------------------------------------------------------------------------
# Row shape coercion
# ---------------------------------------------------------------------------


def coerce_raw_sample(row: RawRow, *, metric_id: str | None = None) -> RawSample | None:
    """Convert one row of any accepted shape into a RawSample.

    Args:
        row: A RawSample or a mapping in one of the accepted row shapes.
        metric_id: Point id used to pick the value out of multi-point
            minute rows.

    Returns:
        The canonical RawSample, or ``None`` if the row matches no shape.
    """
    if isinstance(row, RawSample):
        return row
    if not isinstance(row, Mapping):
        return None

    if _TIME_STAMP_FIELD in row:
        timestamp = row[_TIME_STAMP_FIELD]
        value_keys = [k for k in row if k != _TIME_STAMP_FIELD]
        if metric_id is not None and metric_id in row:
            value = row[metric_id]
        elif len(value_keys) == 1:
            value = row[value_keys[0]]
        else:
            return None
    elif _TABULAR_TIME_FIELD in row and _TABULAR_VALUE_FIELD in row:
        timestamp = row[_TABULAR_TIME_FIELD]
        value = row[_TABULAR_VALUE_FIELD]
    else:
        return None

    if not isinstance(timestamp, str):
        return None
    if isinstance(value, bool):
        return None
    if value is not None and not isinstance(value, (str, int, float)):
        return None
    return RawSample(timestamp=timestamp, raw_value=value)


def _parse_raw_value(value: object) -> float | None:
    """Return *value* as a finite float, or ``None`` if it is not numeric."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def normalize(
    rows: Iterable[RawRow],
    *,
    raw_to_kwh_factor: float = WH_TO_KWH,
    granularity: Granularity | None = None,
    metric_id: str | None = None,
) -> NormalizationResult:
    """Normalize one device's raw rows into a sorted cumulative series.

    Args:
        rows: Raw rows for one device and one metric.
        raw_to_kwh_factor: Multiplier from raw units to kWh.
        granularity: When set, every key is truncated to the period key at
            this granularity before de-duplication, so readings from
            endpoints with different timestamp precision merge.
        metric_id: Point id used to select values from minute rows.

    Returns:
        A NormalizationResult whose samples are sorted ascending by
        ``timestamp_key`` with unique keys.
    """
    by_key: dict[str, NormalizedSample] = {}
    dropped = 0
    duplicates = 0

    for row in rows:
        raw = coerce_raw_sample(row, metric_id=metric_id)
        if raw is None:
            dropped += 1
            continue

        value = _parse_raw_value(raw.raw_value)
        if value is None:
            dropped += 1
            continue

        try:
            decoded = decode(raw.timestamp)
            key = (
                decoded.period_key(granularity)
                if granularity is not None
                else decoded.key
            )
        except TimestampParseError:
            dropped += 1
            continue

        if key in by_key:
            duplicates += 1
        by_key[key] = NormalizedSample(
            timestamp_key=key,
            cumulative_energy_kwh=value * raw_to_kwh_factor,
            original_raw_units=value,
        )

    if dropped:
        logger.warning("Dropped %d unparsable row(s) during normalization", dropped)
    if duplicates:
        logger.debug("Collapsed %d duplicate timestamp key(s)", duplicates)

    samples = [by_key[key] for key in sorted(by_key)]
    return NormalizationResult(samples=samples, dropped=dropped, duplicates=duplicates)
