"""
Delimited-text exports of a fleet yield ranking and of per-period series.

export_as_delimited_text writes one CSV row per device, in ranking order:
serial, beneficiary label, capacity, total energy over the window, average
daily energy, specific yield and the window length in days. Totals and
averages are rounded to two decimals, specific yield to three.

export_periods writes one CSV row per period per device, in roster order:
serial, period key, date, production, cumulative energy, growth, the
calculation trace, the raw counter reading and whether the row is the first
period of the window. Failed devices contribute no rows.

CHANGELOG:
- 2026-10-18: Add per-period export (STORY-114)
- 2026-10-16: Initial creation (STORY-110)
"""

from __future__ import annotations

import csv
import io
from collections.abc import Sequence

from rollup.src.models import DeviceSeries, Window, YieldRanking

PERIOD_HEADERS = [
    "Device Serial",
    "Period",
    "Date",
    "Production (kWh)",
    "Cumulative (kWh)",
    "Growth %",
    "Calculation",
    "Original (Wh)",
    "Is First Period",
]


def export_headers(window: Window) -> list[str]:
    """Column headers; the total-energy column names the window dates."""
    start = window.start.date().isoformat()
    end = window.end.date().isoformat()
    return [
        "Device Serial",
        "Beneficiary",
        "Capacity (kW)",
        f"Total Energy ({start} to {end}) (kWh)",
        "Avg Daily Energy (kWh)",
        "Specific Yield (kWh/kW)",
        "Days in Range",
    ]


def export_as_delimited_text(ranking: YieldRanking, window: Window) -> str:
    """Serialize *ranking* as CSV text with a header row.

    Args:
        ranking: Ranked device yields.
        window: The window the ranking covers, for the header.

    Returns:
        str: CSV text, ``\\r\\n`` line endings, fields quoted where needed.
    """
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(export_headers(window))
    for entry in ranking.entries:
        writer.writerow(
            [
                entry.device_id,
                entry.beneficiary_label,
                f"{entry.capacity_kw:g}",
                f"{entry.total_kwh:.2f}",
                f"{entry.avg_daily_kwh:.2f}",
                f"{entry.specific_yield:.3f}",
                entry.days_in_window,
            ]
        )
    return buffer.getvalue()


def _raw_units(value: float | None) -> str:
    if value is None:
        return ""
    return str(int(value)) if value.is_integer() else str(value)


def export_periods(series: Sequence[DeviceSeries]) -> str:
    """Serialize every device's period records as CSV text.

    Growth is written with one decimal and left empty where it is undefined.

    Args:
        series: Device series in display order.

    Returns:
        str: CSV text with a header row, ``\\r\\n`` line endings.
    """
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(PERIOD_HEADERS)
    for device in series:
        for record in device.periods:
            writer.writerow(
                [
                    device.device_id,
                    record.period_key,
                    record.date.isoformat(),
                    f"{record.period_production_kwh:.2f}",
                    f"{record.cumulative_energy_kwh:.2f}",
                    ""
                    if record.growth_percent is None
                    else f"{record.growth_percent:.1f}",
                    record.trace,
                    _raw_units(record.original_raw_units),
                    "Yes" if record.is_boundary_period else "No",
                ]
            )
    return buffer.getvalue()
