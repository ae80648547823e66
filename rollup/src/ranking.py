"""
Capacity-normalized yield and fleet ranking.

For each device over an inclusive window:

- ``avg_daily_kwh = total production / days in window``
- ``specific_yield = avg_daily_kwh / capacity_kw`` (kWh per kW)

Devices are ranked descending by the chosen metric, ties broken by device id
ascending so the order is deterministic regardless of roster order. Devices
that failed to fetch stay in the ranking with zeroed metrics and their error
attached; fleet means and best/worst performers are taken over the devices
that fetched successfully.

CHANGELOG:
- 2026-10-16: Rank by any DeviceYield metric (STORY-106)
- 2026-10-14: Initial creation (STORY-106)

TODO:
- None
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from rollup.src.errors import ConfigurationError
from rollup.src.models import DeviceSeries, DeviceYield, FleetSummary, Window, YieldRanking

logger = logging.getLogger(__name__)

RANKABLE_METRICS: frozenset[str] = frozenset(
    {"specific_yield", "avg_daily_kwh", "total_kwh"}
)


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def validate_capacity(device_id: str, capacity_kw: float) -> None:
    """Reject a non-positive rated capacity.

    Raises:
        ConfigurationError: If *capacity_kw* is not a positive number.
    """
    if not capacity_kw > 0:
        raise ConfigurationError(
            f"Device '{device_id}' has invalid capacity {capacity_kw!r} kW; must be > 0"
        )


def validate_window(window: Window) -> None:
    """Reject a window whose end precedes its start.

    Raises:
        ConfigurationError: If the window covers no time.
    """
    if window.is_empty:
        raise ConfigurationError(
            f"Window end {window.end.isoformat()} precedes start {window.start.isoformat()}"
        )


# ---------------------------------------------------------------------------
# Per-device yield
# ---------------------------------------------------------------------------


def compute_yield(series: DeviceSeries, window: Window) -> DeviceYield:
    """Compute total, average daily and specific yield for one device.

    Args:
        series: The device's converted series.
        window: Inclusive window the series covers.

    Returns:
        DeviceYield: Metrics for the device; zeros when it failed to fetch.

    Raises:
        ConfigurationError: On a non-positive capacity or an empty window.
    """
    validate_window(window)
    validate_capacity(series.device_id, series.capacity_kw)

    days = window.days
    total = series.total_kwh
    avg_daily = total / days
    return DeviceYield(
        device_id=series.device_id,
        beneficiary_label=series.beneficiary_label,
        capacity_kw=series.capacity_kw,
        total_kwh=total,
        avg_daily_kwh=avg_daily,
        specific_yield=avg_daily / series.capacity_kw,
        days_in_window=days,
        error=series.error,
    )


# ---------------------------------------------------------------------------
# Fleet ranking
# ---------------------------------------------------------------------------


def _summarize(entries: list[DeviceYield]) -> FleetSummary:
    measured = [entry for entry in entries if entry.error is None]
    count = len(measured)
    return FleetSummary(
        device_count=len(entries),
        total_kwh=sum(entry.total_kwh for entry in measured),
        mean_avg_daily_kwh=(
            sum(entry.avg_daily_kwh for entry in measured) / count if count else 0.0
        ),
        mean_specific_yield=(
            sum(entry.specific_yield for entry in measured) / count if count else 0.0
        ),
        total_capacity_kw=sum(entry.capacity_kw for entry in entries),
        best=measured[0] if measured else None,
        worst=measured[-1] if measured else None,
    )


def rank_fleet(
    series: Sequence[DeviceSeries],
    window: Window,
    metric: str = "specific_yield",
) -> YieldRanking:
    """Rank a fleet of devices by a yield metric, best first.

    Args:
        series: One DeviceSeries per device.
        window: Inclusive window the series cover.
        metric: DeviceYield field to rank by (``specific_yield``,
            ``avg_daily_kwh`` or ``total_kwh``).

    Returns:
        YieldRanking: Sorted entries plus fleet summary statistics.

    Raises:
        ConfigurationError: On an unknown metric, a non-positive capacity or
            an empty window.
    """
    if metric not in RANKABLE_METRICS:
        raise ConfigurationError(
            f"Unknown ranking metric '{metric}'; expected one of {sorted(RANKABLE_METRICS)}"
        )

    entries = [compute_yield(item, window) for item in series]
    entries.sort(key=lambda entry: (-getattr(entry, metric), entry.device_id))

    summary = _summarize(entries)
    logger.info(
        "Ranked %d device(s) by %s over %d day(s)",
        len(entries),
        metric,
        window.days,
    )
    return YieldRanking(metric=metric, entries=entries, summary=summary)
