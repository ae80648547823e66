"""
Shared test fixtures for the rollup test suite.

Provides environment isolation for RollupSettings, an in-memory session-key
cache, a scriptable fake telemetry source and helpers for building raw
daily counter rows.

CHANGELOG:
- 2026-10-13: Initial creation (STORY-101)

TODO:
- None
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import date, timedelta
from unittest.mock import AsyncMock

import pytest

from rollup.src.cache import InMemorySessionKeyCache
from rollup.src.errors import SampleFetchError, SessionKeyNotFound, UpstreamBusyError
from rollup.src.models import Granularity, RawSample, RosterEntry

# All RollupSettings environment variable names, used for cleanup.
_ALL_ROLLUP_ENV_VARS = (
    "TELEMETRY_BASE_URL",
    "TELEMETRY_APP_KEY",
    "TELEMETRY_ACCESS_KEY",
    "TELEMETRY_SYS_CODE",
    "TELEMETRY_TOKEN",
    "METRIC_ID",
    "BATCH_SIZE",
    "BATCH_COOLDOWN_MS",
    "BUSY_MAX_RETRIES",
    "BUSY_BACKOFF_MS",
    "REQUEST_TIMEOUT_S",
    "MINUTE_INTERVAL",
    "RAW_TO_KWH_FACTOR",
    "SESSION_KEY_TTL_S",
    "CYCLE_REUSE_S",
    "REDIS_URL",
)


@pytest.fixture(autouse=True)
def _clean_rollup_env(monkeypatch: pytest.MonkeyPatch, tmp_path: str) -> None:
    """Remove all rollup env vars and isolate from .env files before each test."""
    for var in _ALL_ROLLUP_ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture()
def env_vars_required_only(monkeypatch: pytest.MonkeyPatch) -> dict[str, str]:
    """Set only the required environment variables (no optional ones)."""
    env = {
        "TELEMETRY_APP_KEY": "app-key-123",
        "TELEMETRY_ACCESS_KEY": "access-key-456",
        "TELEMETRY_TOKEN": "token-789",
    }
    for key, value in env.items():
        monkeypatch.setenv(key, value)
    return env


# ---------------------------------------------------------------------------
# Fake telemetry source
# ---------------------------------------------------------------------------


class FakeSource:
    """Scriptable stand-in for TelemetryClient.

    Attributes:
        keys: device serial -> session key; serials absent here raise
            SessionKeyNotFound.
        rows: session key -> raw rows returned by every fetch.
        busy: session key -> number of fetches that raise UpstreamBusyError
            before succeeding.
        failing: session keys whose fetch raises SampleFetchError.
        delays: session key -> seconds to sleep inside fetch.
    """

    def __init__(
        self,
        keys: dict[str, str] | None = None,
        rows: dict[str, list[RawSample]] | None = None,
    ) -> None:
        self.keys = dict(keys or {})
        self.rows = dict(rows or {})
        self.busy: dict[str, int] = {}
        self.failing: set[str] = set()
        self.delays: dict[str, float] = {}
        self.resolve_calls: list[str] = []
        self.fetch_calls: list[tuple[str, str, str, str, Granularity]] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def __aenter__(self) -> FakeSource:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        return None

    async def resolve_session_key(self, device_serial: str) -> str:
        self.resolve_calls.append(device_serial)
        if device_serial not in self.keys:
            raise SessionKeyNotFound(device_serial)
        return self.keys[device_serial]

    async def fetch_cumulative_samples(
        self,
        session_key: str,
        metric_id: str,
        start_key: str,
        end_key: str,
        granularity: Granularity,
    ) -> list[RawSample]:
        self.fetch_calls.append((session_key, metric_id, start_key, end_key, granularity))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delays.get(session_key, 0))
            if self.busy.get(session_key, 0) > 0:
                self.busy[session_key] -= 1
                raise UpstreamBusyError("The system is busy")
            if session_key in self.failing:
                raise SampleFetchError(f"HTTP 500 for {session_key}")
            return list(self.rows.get(session_key, []))
        finally:
            self.in_flight -= 1


@pytest.fixture()
def memory_cache() -> InMemorySessionKeyCache:
    """Empty process-local session key cache without expiry."""
    return InMemorySessionKeyCache()


@pytest.fixture()
def no_sleep() -> AsyncMock:
    """Awaitable sleep replacement that records its calls."""
    return AsyncMock(return_value=None)


@pytest.fixture()
def make_source() -> type[FakeSource]:
    """The FakeSource class, for tests that script their own source."""
    return FakeSource


# ---------------------------------------------------------------------------
# Row helpers
# ---------------------------------------------------------------------------


def daily_rows(first_day: date, values_wh: list[float]) -> list[RawSample]:
    """Consecutive daily cumulative readings starting at *first_day*."""
    return [
        RawSample(
            timestamp=(first_day + timedelta(days=offset)).strftime("%Y%m%d"),
            raw_value=str(value),
        )
        for offset, value in enumerate(values_wh)
    ]


@pytest.fixture()
def make_daily_rows() -> Callable[[date, list[float]], list[RawSample]]:
    return daily_rows


@pytest.fixture()
def roster_three() -> list[RosterEntry]:
    """Three-device roster in a fixed display order."""
    return [
        RosterEntry(device_serial="SN1", beneficiary_label="Asha Devi", capacity_kw=5.0),
        RosterEntry(device_serial="SN2", beneficiary_label="Ravi Kumar", capacity_kw=3.0),
        RosterEntry(device_serial="SN3", beneficiary_label="Meena Sahu", capacity_kw=2.0),
    ]
