"""
Timestamp codec for telemetry period keys.

The telemetry source and the tabular store encode timestamps in several
ways: compact numeric keys (``YYYY``, ``YYYYMM``, ``YYYYMMDD``,
``YYYYMMDDHHMM``, ``YYYYMMDDHHMMSS``), ISO-like dashed dates
(``YYYY-MM-DD[ HH:MM[:SS]]``) and slash-delimited day-first dates
(``DD/MM/YYYY[ HH:MM[:SS]]``). All of them decode to a DecodedTimestamp whose
compact key sorts lexicographically in chronological order, so samples from
different endpoints can be merged and ordered consistently.

Decoding fails closed: an unparsable string raises TimestampParseError (or
yields ``None`` via :func:`try_decode`) and the caller drops the sample.

CHANGELOG:
- 2026-10-13: Add previous_period_key and extended window keys (STORY-103)
- 2026-10-12: Initial creation (STORY-102)

TODO:
- None
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta

from rollup.src.errors import TimestampParseError
from rollup.src.models import Granularity, Window

# ---------------------------------------------------------------------------
# Accepted encodings
# ---------------------------------------------------------------------------

_COMPACT_RE = re.compile(r"^\d{4}(\d{2}(\d{2}(\d{4}(\d{2})?)?)?)?$")
"""Compact numeric key: 4, 6, 8, 12 or 14 digits."""

_DASHED_RE = re.compile(
    r"^(?P<y>\d{4})-(?P<mo>\d{1,2})-(?P<d>\d{1,2})"
    r"(?:[ T](?P<h>\d{1,2}):(?P<mi>\d{2})(?::(?P<s>\d{2}))?)?$"
)

_SLASHED_RE = re.compile(
    r"^(?P<d>\d{1,2})/(?P<mo>\d{1,2})/(?P<y>\d{4})"
    r"(?: (?P<h>\d{1,2}):(?P<mi>\d{2})(?::(?P<s>\d{2}))?)?$"
)

_PRECISION_BY_LENGTH: dict[int, Granularity] = {
    4: Granularity.YEAR,
    6: Granularity.MONTH,
    8: Granularity.DAY,
    12: Granularity.MINUTE,
    14: Granularity.MINUTE,
}

DEFAULT_MINUTE_INTERVAL = 10
"""Minute-view sampling step in minutes (telemetry source default)."""


# ---------------------------------------------------------------------------
# Decoded form
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DecodedTimestamp:
    """Calendar fields of a decoded timestamp plus its native precision."""

    year: int
    month: int = 1
    day: int = 1
    hour: int = 0
    minute: int = 0
    second: int = 0
    precision: Granularity = Granularity.DAY

    def to_datetime(self) -> datetime:
        return datetime(
            self.year, self.month, self.day, self.hour, self.minute, self.second
        )

    @property
    def key(self) -> str:
        """Compact key at the timestamp's own precision."""
        return self.period_key(self.precision)

    def period_key(self, granularity: Granularity) -> str:
        """Truncate to the compact key of the period containing this instant.

        Raises:
            TimestampParseError: If the timestamp is coarser than *granularity*
                (a month reading cannot name a day).
        """
        if granularity.rank < self.precision.rank:
            raise TimestampParseError(
                f"Timestamp {self.key!r} is too coarse for {granularity.value} keys"
            )
        full = self.to_datetime()
        if granularity is Granularity.MINUTE:
            return full.strftime("%Y%m%d%H%M00")
        return full.strftime("%Y%m%d%H%M%S")[: granularity.key_length]


# ---------------------------------------------------------------------------
# Encoding
# ---------------------------------------------------------------------------


def encode_date(value: date) -> str:
    """Encode a date as ``YYYYMMDD``."""
    return value.strftime("%Y%m%d")


def encode_datetime(value: datetime) -> str:
    """Encode a datetime as ``YYYYMMDDHHMMSS``."""
    return value.strftime("%Y%m%d%H%M%S")


def encode_period(value: datetime, granularity: Granularity) -> str:
    """Encode *value* as the compact key of its period at *granularity*."""
    decoded = DecodedTimestamp(
        year=value.year,
        month=value.month,
        day=value.day,
        hour=value.hour,
        minute=value.minute,
        second=value.second,
        precision=Granularity.MINUTE,
    )
    return decoded.period_key(granularity)


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------


def _build(precision: Granularity, *fields: int) -> DecodedTimestamp:
    try:
        # Calendar validation (month 13, Feb 30, hour 25 ...)
        datetime(*fields)
    except ValueError as exc:
        raise TimestampParseError(f"Invalid calendar value {fields}: {exc}") from exc
    return DecodedTimestamp(*fields, precision=precision)


def _from_match(match: re.Match[str]) -> DecodedTimestamp:
    year, month, day = int(match["y"]), int(match["mo"]), int(match["d"])
    if match["h"] is None:
        return _build(Granularity.DAY, year, month, day)
    return _build(
        Granularity.MINUTE,
        year,
        month,
        day,
        int(match["h"]),
        int(match["mi"]),
        int(match["s"] or 0),
    )


def decode(text: str) -> DecodedTimestamp:
    """Decode any supported timestamp encoding into calendar fields.

    Args:
        text: Compact, dashed or slash-delimited timestamp string.

    Returns:
        The decoded timestamp with its native precision.

    Raises:
        TimestampParseError: If *text* matches no encoding or names an
            impossible calendar value.
    """
    if not isinstance(text, str):
        raise TimestampParseError(f"Timestamp must be a string, got {type(text).__name__}")
    value = text.strip()

    if _COMPACT_RE.match(value):
        precision = _PRECISION_BY_LENGTH[len(value)]
        parts = [int(value[0:4])]
        for start in range(4, len(value), 2):
            parts.append(int(value[start : start + 2]))
        while len(parts) < 3:
            parts.append(1)
        return _build(precision, *parts)

    match = _DASHED_RE.match(value) or _SLASHED_RE.match(value)
    if match:
        return _from_match(match)

    raise TimestampParseError(f"Unrecognised timestamp encoding: {text!r}")


def try_decode(text: str) -> DecodedTimestamp | None:
    """Like :func:`decode` but returns ``None`` instead of raising."""
    try:
        return decode(text)
    except TimestampParseError:
        return None


def to_period_key(text: str, granularity: Granularity) -> str:
    """Decode *text* and truncate it to a period key at *granularity*."""
    return decode(text).period_key(granularity)


def period_start_date(key: str) -> date:
    """Calendar date on which the period named by *key* starts."""
    return decode(key).to_datetime().date()


# ---------------------------------------------------------------------------
# Period arithmetic
# ---------------------------------------------------------------------------


def previous_period_key(
    key: str,
    granularity: Granularity,
    minute_interval: int = DEFAULT_MINUTE_INTERVAL,
) -> str:
    """Return the key exactly one granularity step before *key*.

    Minute steps are ``minute_interval`` minutes wide; months and years step
    by calendar unit.
    """
    moment = decode(key).to_datetime()
    if granularity is Granularity.MINUTE:
        previous = moment - timedelta(minutes=minute_interval)
    elif granularity is Granularity.DAY:
        previous = moment - timedelta(days=1)
    elif granularity is Granularity.MONTH:
        if moment.month == 1:
            previous = moment.replace(year=moment.year - 1, month=12, day=1)
        else:
            previous = moment.replace(month=moment.month - 1, day=1)
    else:
        previous = moment.replace(year=moment.year - 1, month=1, day=1)
    return encode_period(previous, granularity)


def window_keys(window: Window, granularity: Granularity) -> tuple[str, str]:
    """Return ``(start_key, end_key)`` of *window* at *granularity*."""
    return (
        encode_period(window.start, granularity),
        encode_period(window.end, granularity),
    )


def extended_window_keys(
    window: Window,
    granularity: Granularity,
    minute_interval: int = DEFAULT_MINUTE_INTERVAL,
) -> tuple[str, str]:
    """Return the fetch range: one step before the window start through its end.

    The extra leading step supplies the lookback sample for the first
    in-window period.
    """
    start_key, end_key = window_keys(window, granularity)
    return previous_period_key(start_key, granularity, minute_interval), end_key


# ---------------------------------------------------------------------------
# Display formatting
# ---------------------------------------------------------------------------


def iso_label(key: str) -> str:
    """Format a compact key as ``YYYY``, ``YYYY-MM``, ``YYYY-MM-DD`` or
    ``YYYY-MM-DD HH:MM:SS`` depending on its precision."""
    decoded = decode(key)
    moment = decoded.to_datetime()
    formats = {
        Granularity.YEAR: "%Y",
        Granularity.MONTH: "%Y-%m",
        Granularity.DAY: "%Y-%m-%d",
        Granularity.MINUTE: "%Y-%m-%d %H:%M:%S",
    }
    return moment.strftime(formats[decoded.precision])


def human_label(key: str) -> str:
    """Format a day or minute key the way the tabular store writes it
    (``DD/MM/YYYY`` or ``DD/MM/YYYY HH:MM:SS``)."""
    decoded = decode(key)
    moment = decoded.to_datetime()
    if decoded.precision is Granularity.MINUTE:
        return moment.strftime("%d/%m/%Y %H:%M:%S")
    if decoded.precision is Granularity.DAY:
        return moment.strftime("%d/%m/%Y")
    return iso_label(key)
