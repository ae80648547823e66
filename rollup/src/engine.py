"""
Fleet computation entry point: fetch, normalize and convert per device.

compute_device_series validates its inputs, runs one orchestrator cycle and
turns every device's raw rows into a DeviceSeries. Configuration problems
(non-positive capacity, empty window, empty roster) fail before any network
call. Devices that failed to fetch are kept, in roster order, with no periods
and their error attached. A cycle in which every device failed raises a single
FleetFetchError.

The compute stages are synchronous and pure; the only suspension points are
the orchestrator's network calls.

CHANGELOG:
- 2026-10-18: Pass force refresh through to the orchestrator (STORY-114)
- 2026-10-16: Initial creation (STORY-109)

TODO:
- None
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence

from rollup.src.converter import convert_to_periods
from rollup.src.errors import ConfigurationError, FleetFetchError
from rollup.src.models import (
    DeviceSeries,
    FleetResult,
    Granularity,
    ProgressEvent,
    RosterEntry,
    Window,
)
from rollup.src.normalizer import WH_TO_KWH, normalize
from rollup.src.orchestrator import BatchFetchOrchestrator, DeviceFetch
from rollup.src.ranking import validate_capacity, validate_window

logger = logging.getLogger(__name__)


def validate_request(roster: Sequence[RosterEntry], window: Window) -> None:
    """Reject inputs for which no meaningful computation exists.

    Raises:
        ConfigurationError: On an empty roster, an empty window or a
            non-positive device capacity.
    """
    if not roster:
        raise ConfigurationError("Roster is empty")
    validate_window(window)
    for entry in roster:
        validate_capacity(entry.device_serial, entry.capacity_kw)


def build_series(
    entry: RosterEntry,
    fetched: DeviceFetch | None,
    window: Window,
    granularity: Granularity,
    *,
    metric_id: str,
    minute_interval: int,
    raw_to_kwh_factor: float = WH_TO_KWH,
) -> DeviceSeries:
    """Normalize and convert one device's rows into a DeviceSeries."""
    if fetched is None or fetched.error is not None:
        return DeviceSeries(
            device_id=entry.device_serial,
            beneficiary_label=entry.beneficiary_label,
            capacity_kw=entry.capacity_kw,
            error=fetched.error if fetched is not None else None,
        )

    normalized = normalize(
        fetched.rows,
        raw_to_kwh_factor=raw_to_kwh_factor,
        granularity=granularity,
        metric_id=metric_id,
    )
    periods = convert_to_periods(
        normalized.samples, window, granularity, minute_interval=minute_interval
    )
    return DeviceSeries(
        device_id=entry.device_serial,
        beneficiary_label=entry.beneficiary_label,
        capacity_kw=entry.capacity_kw,
        samples=normalized.samples,
        periods=periods,
        dropped_samples=normalized.dropped,
    )


async def compute_device_series(
    roster: Sequence[RosterEntry],
    window: Window,
    granularity: Granularity,
    *,
    orchestrator: BatchFetchOrchestrator,
    progress: Callable[[ProgressEvent], None] | None = None,
    raw_to_kwh_factor: float = WH_TO_KWH,
    force: bool = False,
) -> FleetResult:
    """Fetch and convert production series for every roster device.

    Args:
        roster: Devices in caller order.
        window: Inclusive requested window.
        granularity: Period width.
        orchestrator: Fetch orchestrator (owns the session key cache).
        progress: Called with a ProgressEvent after each batch.
        raw_to_kwh_factor: Multiplier from raw counter units to kWh.
        force: Fetch again even when the last cycle covers these
            parameters.

    Returns:
        FleetResult: One DeviceSeries per roster entry, in roster order,
        plus the per-device errors.

    Raises:
        ConfigurationError: Before any fetch, on invalid input.
        FleetFetchError: If no device could be fetched.
    """
    validate_request(roster, window)

    cycle = await orchestrator.fetch(
        roster, window, granularity, progress=progress, force=force
    )

    series = [
        build_series(
            entry,
            cycle.results[index] if index < len(cycle.results) else None,
            window,
            granularity,
            metric_id=orchestrator.metric_id,
            minute_interval=orchestrator.minute_interval,
            raw_to_kwh_factor=raw_to_kwh_factor,
        )
        for index, entry in enumerate(roster)
    ]
    errors = [item.error for item in series if item.error is not None]

    if len(errors) == len(series):
        logger.error("Cycle %d: all %d device(s) failed", cycle.cycle_id, len(series))
        raise FleetFetchError(errors)
    if errors:
        logger.warning(
            "Cycle %d: %d of %d device(s) failed: %s",
            cycle.cycle_id,
            len(errors),
            len(series),
            ", ".join(error.device_id for error in errors),
        )

    return FleetResult(
        cycle_id=cycle.cycle_id,
        fingerprint=cycle.fingerprint,
        series=series,
        errors=errors,
    )
