"""
Device roster parsing from the tabular store.

The tabular store exposes the inverter sheet in three JSON shapes:

- gviz: ``{"table": {"rows": [{"c": [{"v": ...}, ...]}, ...]}}``, possibly
  wrapped in a JavaScript callback (``google.visualization...(...);``)
- values: ``{"values": [[...], ...]}``
- a plain list of rows

Columns are positional: 0 row number, 1 inverter serial, 2 beneficiary,
3 capacity (kW). The first row is a header and is skipped. Rows without a
serial or beneficiary are skipped silently; rows whose capacity is not a
positive number are skipped with a warning so one bad sheet row does not
block the rest of the fleet.

CHANGELOG:
- 2026-10-16: Add CSV roster loading for the CLI (STORY-111)
- 2026-10-15: Initial creation (STORY-111)

TODO:
- None
"""

from __future__ import annotations

import csv
import json
import logging
import math
from pathlib import Path
from typing import Any

from rollup.src.models import RosterEntry

logger = logging.getLogger(__name__)

SERIAL_COLUMN = 1
BENEFICIARY_COLUMN = 2
CAPACITY_COLUMN = 3


# ---------------------------------------------------------------------------
# Payload shapes
# ---------------------------------------------------------------------------


def _unwrap_text(text: str) -> Any:
    """Parse JSON, tolerating a JavaScript callback wrapper around it."""
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        start = text.find("{")
        end = text.rfind("}")
        if start == -1 or end <= start:
            raise ValueError("Roster payload is not JSON") from None
        return json.loads(text[start : end + 1])


def _rows_of(payload: Any) -> list[list[Any]]:
    if isinstance(payload, str):
        payload = _unwrap_text(payload)

    if isinstance(payload, dict):
        table = payload.get("table")
        if isinstance(table, dict) and isinstance(table.get("rows"), list):
            return [_gviz_cells(row) for row in table["rows"]]
        if isinstance(payload.get("values"), list):
            return [row if isinstance(row, list) else [] for row in payload["values"]]
        raise ValueError("Roster payload has neither 'table.rows' nor 'values'")

    if isinstance(payload, list):
        return [
            _gviz_cells(row) if isinstance(row, dict) else row
            for row in payload
            if isinstance(row, (list, dict))
        ]
    raise ValueError(f"Unsupported roster payload type: {type(payload).__name__}")


def _gviz_cells(row: Any) -> list[Any]:
    cells = row.get("c") if isinstance(row, dict) else None
    if not isinstance(cells, list):
        return []
    return [cell.get("v") if isinstance(cell, dict) else None for cell in cells]


def _cell(values: list[Any], index: int) -> str:
    if index >= len(values) or values[index] is None:
        return ""
    return str(values[index]).strip()


def _capacity(text: str) -> float | None:
    try:
        value = float(text)
    except ValueError:
        return None
    return value if math.isfinite(value) and value > 0 else None


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def parse_rows(rows: list[list[Any]]) -> list[RosterEntry]:
    """Map positional rows (header first) to roster entries."""
    entries: list[RosterEntry] = []
    for line, values in enumerate(rows[1:], start=2):
        serial = _cell(values, SERIAL_COLUMN)
        beneficiary = _cell(values, BENEFICIARY_COLUMN)
        if not serial or not beneficiary:
            continue
        capacity = _capacity(_cell(values, CAPACITY_COLUMN))
        if capacity is None:
            logger.warning(
                "Skipping roster row %d (%s): invalid capacity %r",
                line,
                serial,
                _cell(values, CAPACITY_COLUMN),
            )
            continue
        entries.append(
            RosterEntry(
                device_serial=serial,
                beneficiary_label=beneficiary,
                capacity_kw=capacity,
            )
        )
    logger.info("Parsed %d roster entries", len(entries))
    return entries


def parse_roster(payload: Any) -> list[RosterEntry]:
    """Parse a tabular-store payload (JSON text or decoded object).

    Raises:
        ValueError: If the payload matches none of the accepted shapes.
    """
    return parse_rows(_rows_of(payload))


def load_roster_csv(path: str | Path) -> list[RosterEntry]:
    """Read a roster from a CSV export with the same column layout."""
    with open(path, newline="", encoding="utf-8") as handle:
        rows = [row for row in csv.reader(handle)]
    return parse_rows(rows)
