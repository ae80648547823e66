"""
Data model for the telemetry rollup engine.

Raw readings arrive as RawSample, are normalized into a sorted, de-duplicated
list of NormalizedSample per device, and converted into PeriodRecord rows.
DeviceSeries bundles one device's samples and periods for one fetch cycle.
AggregationBucket and YieldRanking are derived views and never persisted.

All energy values are in kWh after normalization; the raw telemetry source
reports cumulative counters in Wh.

CHANGELOG:
- 2026-10-18: Add SeriesStatistics and PeriodRecord.original_raw_units (STORY-114)
- 2026-10-15: Add has_lookback flag to PeriodRecord (STORY-104)
- 2026-10-14: Add FleetResult and ProgressEvent (STORY-107)
- 2026-10-12: Initial creation (STORY-101)

TODO:
- None
"""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass
from datetime import date, datetime, time
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class Granularity(str, Enum):
    """Time resolution of a rollup."""

    MINUTE = "minute"
    DAY = "day"
    MONTH = "month"
    YEAR = "year"

    @property
    def key_length(self) -> int:
        """Length of the compact period key at this granularity."""
        lengths = {
            Granularity.MINUTE: 14,
            Granularity.DAY: 8,
            Granularity.MONTH: 6,
            Granularity.YEAR: 4,
        }
        return lengths[self]

    @property
    def rank(self) -> int:
        """Ordering from finest (0) to coarsest (3)."""
        order = {
            Granularity.MINUTE: 0,
            Granularity.DAY: 1,
            Granularity.MONTH: 2,
            Granularity.YEAR: 3,
        }
        return order[self]


@dataclass(frozen=True)
class Window:
    """Inclusive requested time window ``[start, end]``.

    Attributes:
        start: First instant of the window.
        end: Last instant of the window (inclusive).
    """

    start: datetime
    end: datetime

    @classmethod
    def from_dates(cls, start: date, end: date) -> Window:
        """Build a window covering whole calendar days ``start..end``."""
        return cls(
            start=datetime.combine(start, time.min),
            end=datetime.combine(end, time(23, 59, 59)),
        )

    @property
    def days(self) -> int:
        """Number of calendar days in the window, both endpoints included."""
        return (self.end.date() - self.start.date()).days + 1

    @property
    def is_empty(self) -> bool:
        return self.end < self.start


class RawSample(BaseModel):
    """One reading as received from the telemetry source.

    Attributes:
        timestamp: Encoded timestamp in any supported upstream encoding.
        raw_value: Cumulative counter value in raw units (Wh), possibly a
            string or missing.
    """

    timestamp: str
    raw_value: str | float | int | None = None


class NormalizedSample(BaseModel):
    """A validated cumulative reading keyed by a comparable timestamp key."""

    model_config = ConfigDict(frozen=True)

    timestamp_key: str
    cumulative_energy_kwh: float
    original_raw_units: float


class PeriodRecord(BaseModel):
    """Production during one period, derived from two cumulative readings.

    Attributes:
        period_key: Compact key of the period at the series granularity.
        date: Calendar date on which the period starts.
        period_production_kwh: Clamped, never-negative production.
        cumulative_energy_kwh: Counter value at the end of the period.
        growth_percent: Change against the previous measured period, or None.
        is_boundary_period: True for the first record of the window.
        has_lookback: False when no prior sample existed and the production
            is an unmeasured zero rather than a real one.
        trace: Human-readable audit of how the value was derived.
        original_raw_units: Counter reading at the end of the period before
            unit conversion (Wh from the upstream source).
    """

    period_key: str
    date: dt.date
    period_production_kwh: float = Field(ge=0)
    cumulative_energy_kwh: float
    growth_percent: float | None = None
    is_boundary_period: bool = False
    has_lookback: bool = True
    trace: str = ""
    original_raw_units: float | None = None


class RosterEntry(BaseModel):
    """One device from the (read-only) roster collaborator."""

    device_serial: str
    beneficiary_label: str = ""
    capacity_kw: float


class DeviceError(BaseModel):
    """A per-device failure surfaced as data.

    Attributes:
        device_id: Serial of the failed device.
        kind: Error class name, e.g. ``SessionKeyNotFound``.
        message: Human-readable reason.
    """

    device_id: str
    kind: str
    message: str

    @classmethod
    def from_exception(cls, device_id: str, exc: BaseException) -> DeviceError:
        return cls(device_id=device_id, kind=type(exc).__name__, message=str(exc))


class DeviceSeries(BaseModel):
    """One device's samples and periods for a single compute cycle."""

    device_id: str
    beneficiary_label: str = ""
    capacity_kw: float
    samples: list[NormalizedSample] = Field(default_factory=list)
    periods: list[PeriodRecord] = Field(default_factory=list)
    dropped_samples: int = 0
    error: DeviceError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def total_kwh(self) -> float:
        return sum(p.period_production_kwh for p in self.periods)


class AggregationBucket(BaseModel):
    """Summed production for one coarse bucket (e.g. ``2025-01`` or ``2025``)."""

    bucket_key: str
    sum_kwh: float
    member_count: int


class SeriesStatistics(BaseModel):
    """Summary statistics over one device's measured periods.

    Unmeasured periods (no lookback sample) are counted separately and
    excluded from every other figure.

    Attributes:
        count: Measured periods.
        unmeasured_periods: Periods emitted as an unmeasured zero.
        sum_kwh: Total production.
        avg_kwh: Mean production per measured period.
        max_kwh: Highest period production.
        max_period_key: Period key of the first period reaching *max_kwh*.
        min_kwh: Lowest period production.
        min_period_key: Period key of the first period reaching *min_kwh*.
        non_zero_periods: Measured periods with positive production.
        final_cumulative_kwh: Counter value at the end of the last period.
        last_growth_percent: Growth of the last measured period over the
            one before it.
    """

    count: int = 0
    unmeasured_periods: int = 0
    sum_kwh: float = 0.0
    avg_kwh: float = 0.0
    max_kwh: float | None = None
    max_period_key: str | None = None
    min_kwh: float | None = None
    min_period_key: str | None = None
    non_zero_periods: int = 0
    final_cumulative_kwh: float | None = None
    last_growth_percent: float | None = None


class DeviceYield(BaseModel):
    """Capacity-normalized performance of one device over a window."""

    device_id: str
    beneficiary_label: str = ""
    capacity_kw: float
    total_kwh: float
    avg_daily_kwh: float
    specific_yield: float
    days_in_window: int
    error: DeviceError | None = None


class FleetSummary(BaseModel):
    """Fleet-wide statistics over a ranking."""

    device_count: int
    total_kwh: float
    mean_avg_daily_kwh: float
    mean_specific_yield: float
    total_capacity_kw: float
    best: DeviceYield | None = None
    worst: DeviceYield | None = None


class YieldRanking(BaseModel):
    """Devices sorted by a performance metric, best first."""

    metric: str
    entries: list[DeviceYield]
    summary: FleetSummary


class ProgressEvent(BaseModel):
    """Emitted after each completed batch of a fetch cycle."""

    cycle_id: int
    processed: int
    total: int


class FleetResult(BaseModel):
    """Outcome of one compute cycle over a roster.

    Attributes:
        cycle_id: Monotonically increasing cycle sequence number.
        fingerprint: Hash of the cycle parameters, for staleness checks.
        series: One DeviceSeries per roster entry, in roster order.
        errors: Per-device failures, in roster order.
    """

    cycle_id: int
    fingerprint: str
    series: list[DeviceSeries]
    errors: list[DeviceError] = Field(default_factory=list)
