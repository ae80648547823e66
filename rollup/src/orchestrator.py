"""
Batched, failure-tolerant fetch of raw telemetry for a device roster.

A fetch cycle moves through ``IDLE -> FETCHING -> COMPLETED`` or
``IDLE -> FETCHING -> PARTIALLY_FAILED -> COMPLETED``. Devices are fetched in
fixed-size batches: devices inside a batch run concurrently, batches run
sequentially with a cooldown between them to respect upstream rate limits.

Per device the orchestrator:

1. Resolves the session key, reading through the injected SessionKeyCache.
2. Fetches raw cumulative samples for the extended window (one granularity
   step before the window start through its end).

Upstream "busy" responses are retried according to an explicit RetryPolicy;
the last busy failure surfaces as SampleFetchError. Any TelemetryError is
captured as a DeviceError on that device's result and never aborts the batch.

Results are assembled in roster order, not completion order. A ProgressEvent
is yielded after each batch. Each cycle carries a parameter fingerprint;
callers discard results whose fingerprint no longer matches what they want
(``FetchCycle.is_stale``). Re-running a cycle whose fingerprint matches the
last completed cycle returns that cycle without fetching, but only while that
cycle is fresh (younger than ``reuse_window_s``) and had no device failures.
``force=True`` always fetches.

CHANGELOG:
- 2026-10-18: Reuse only clean, fresh cycles; add force refresh (STORY-114)
- 2026-10-16: Retry busy responses on session key resolution too (STORY-107)
- 2026-10-15: Skip redundant cycles by fingerprint (STORY-107)
- 2026-10-14: Initial creation (STORY-107)

TODO:
- None
"""

from __future__ import annotations

import asyncio
import hashlib
import itertools
import json
import logging
import time
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol, TypeVar

from rollup.src.cache import SessionKeyCache
from rollup.src.config import RollupSettings
from rollup.src.errors import SampleFetchError, TelemetryError, UpstreamBusyError
from rollup.src.models import (
    DeviceError,
    Granularity,
    ProgressEvent,
    RosterEntry,
    Window,
)
from rollup.src.normalizer import RawRow
from rollup.src.timestamps import DEFAULT_MINUTE_INTERVAL, extended_window_keys

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_BATCH_SIZE = 10
DEFAULT_COOLDOWN_S = 0.3
DEFAULT_REUSE_WINDOW_S = 3600.0


class TelemetrySource(Protocol):
    """The two upstream operations the orchestrator drives."""

    async def resolve_session_key(self, device_serial: str) -> str: ...

    async def fetch_cumulative_samples(
        self,
        session_key: str,
        metric_id: str,
        start_key: str,
        end_key: str,
        granularity: Granularity,
    ) -> list[RawRow]: ...


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded fixed-delay retry for upstream busy responses.

    Attributes:
        max_retries: Retries after the first attempt.
        backoff_s: Delay before each retry.
    """

    max_retries: int = 2
    backoff_s: float = 2.0


class CycleState(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    PARTIALLY_FAILED = "partially_failed"
    COMPLETED = "completed"


@dataclass
class DeviceFetch:
    """Raw rows (or the failure) for one roster entry."""

    entry: RosterEntry
    rows: list[RawRow] = field(default_factory=list)
    error: DeviceError | None = None


def cycle_fingerprint(
    roster: Sequence[RosterEntry],
    window: Window,
    granularity: Granularity,
    metric_id: str = "p2",
) -> str:
    """Hash the parameters that determine a cycle's fetched data."""
    payload = json.dumps(
        {
            "devices": [entry.device_serial for entry in roster],
            "start": window.start.isoformat(),
            "end": window.end.isoformat(),
            "granularity": granularity.value,
            "metric": metric_id,
        },
        sort_keys=True,
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()[:16]


@dataclass
class FetchCycle:
    """State and results of one fetch cycle.

    Attributes:
        cycle_id: Monotonically increasing sequence number.
        fingerprint: Hash of the cycle parameters.
        roster: Devices in caller order.
        window: Requested window.
        granularity: Requested granularity.
        state: Current lifecycle state.
        processed: Devices finished so far.
        batch_index: 1-based index of the batch in flight or last finished.
        batch_count: Total number of batches.
        results: One DeviceFetch per roster entry once fetched.
        completed_at: Clock reading when the cycle completed.
    """

    cycle_id: int
    fingerprint: str
    roster: list[RosterEntry]
    window: Window
    granularity: Granularity
    state: CycleState = CycleState.IDLE
    processed: int = 0
    batch_index: int = 0
    batch_count: int = 0
    results: list[DeviceFetch | None] = field(default_factory=list)
    completed_at: float | None = None

    @property
    def total(self) -> int:
        return len(self.roster)

    @property
    def errors(self) -> list[DeviceError]:
        return [r.error for r in self.results if r is not None and r.error is not None]

    def is_stale(self, current_fingerprint: str) -> bool:
        """True when the caller now wants different parameters."""
        return self.fingerprint != current_fingerprint


class BatchFetchOrchestrator:
    """Fetch raw samples for a roster in bounded concurrent batches.

    Args:
        source: Telemetry source (TelemetryClient or a test fake).
        cache: Session-key cache shared across cycles.
        batch_size: Devices per concurrent batch.
        cooldown_s: Pause between batches.
        retry: Busy-response retry policy.
        metric_id: Point id of the lifetime-energy counter.
        minute_interval: Minute-granularity step, for the extended window.
        reuse_window_s: How long a clean completed cycle may be returned for
            identical parameters; ``0`` disables reuse.
        sleep: Awaitable sleep, injectable for tests.
        clock: Monotonic clock, injectable for tests.

    Raises:
        ValueError: If *batch_size* is below 1.
    """

    def __init__(
        self,
        source: TelemetrySource,
        cache: SessionKeyCache,
        *,
        batch_size: int = DEFAULT_BATCH_SIZE,
        cooldown_s: float = DEFAULT_COOLDOWN_S,
        retry: RetryPolicy | None = None,
        metric_id: str = "p2",
        minute_interval: int = DEFAULT_MINUTE_INTERVAL,
        reuse_window_s: float = DEFAULT_REUSE_WINDOW_S,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self._source = source
        self._cache = cache
        self._batch_size = batch_size
        self._cooldown_s = cooldown_s
        self._retry = retry if retry is not None else RetryPolicy()
        self._metric_id = metric_id
        self._minute_interval = minute_interval
        self._reuse_window_s = reuse_window_s
        self._sleep = sleep
        self._clock = clock
        self._cycle_ids = itertools.count(1)
        self._last_completed: FetchCycle | None = None

    @classmethod
    def from_settings(
        cls,
        settings: RollupSettings,
        source: TelemetrySource,
        cache: SessionKeyCache,
    ) -> BatchFetchOrchestrator:
        """Build an orchestrator from RollupSettings."""
        return cls(
            source,
            cache,
            batch_size=settings.batch_size,
            cooldown_s=settings.batch_cooldown_s,
            retry=RetryPolicy(
                max_retries=settings.busy_max_retries,
                backoff_s=settings.busy_backoff_s,
            ),
            metric_id=settings.metric_id,
            minute_interval=settings.minute_interval,
            reuse_window_s=settings.cycle_reuse_s,
        )

    @property
    def metric_id(self) -> str:
        return self._metric_id

    @property
    def minute_interval(self) -> int:
        return self._minute_interval

    @property
    def last_completed(self) -> FetchCycle | None:
        return self._last_completed

    def last_cycle_age_s(self) -> float | None:
        """Seconds since the last cycle completed, or None before the first."""
        cycle = self._last_completed
        if cycle is None or cycle.completed_at is None:
            return None
        return self._clock() - cycle.completed_at

    def fingerprint(
        self,
        roster: Sequence[RosterEntry],
        window: Window,
        granularity: Granularity,
    ) -> str:
        return cycle_fingerprint(roster, window, granularity, self._metric_id)

    # ------------------------------------------------------------------
    # Cycle control
    # ------------------------------------------------------------------

    def begin_cycle(
        self,
        roster: Sequence[RosterEntry],
        window: Window,
        granularity: Granularity,
        *,
        force: bool = False,
    ) -> FetchCycle:
        """Create a new cycle, or return the last one if it already covers
        these parameters.

        The last cycle is reused only when it completed without device
        failures and within ``reuse_window_s``; *force* always starts a new
        cycle.
        """
        fingerprint = self.fingerprint(roster, window, granularity)
        last = self._last_completed
        if not force and self._last_is_reusable(fingerprint):
            logger.info(
                "Cycle %d already satisfies fingerprint %s; skipping fetch",
                last.cycle_id,
                fingerprint,
            )
            return last

        entries = list(roster)
        return FetchCycle(
            cycle_id=next(self._cycle_ids),
            fingerprint=fingerprint,
            roster=entries,
            window=window,
            granularity=granularity,
            batch_count=-(-len(entries) // self._batch_size),
            results=[None] * len(entries),
        )

    def _last_is_reusable(self, fingerprint: str) -> bool:
        cycle = self._last_completed
        if cycle is None or cycle.fingerprint != fingerprint:
            return False
        if cycle.errors:
            logger.info(
                "Cycle %d had %d failed device(s); fetching again",
                cycle.cycle_id,
                len(cycle.errors),
            )
            return False
        age = self.last_cycle_age_s()
        return age is not None and age < self._reuse_window_s

    async def stream(self, cycle: FetchCycle) -> AsyncIterator[ProgressEvent]:
        """Run *cycle* batch by batch, yielding progress after each batch.

        A cycle that is already completed yields nothing.
        """
        if cycle.state is CycleState.COMPLETED:
            return

        start_key, end_key = extended_window_keys(
            cycle.window, cycle.granularity, self._minute_interval
        )
        cycle.state = CycleState.FETCHING
        logger.info(
            "Cycle %d started: %d device(s) in %d batch(es), %s %s..%s",
            cycle.cycle_id,
            cycle.total,
            cycle.batch_count,
            cycle.granularity.value,
            start_key,
            end_key,
        )

        for index, offset in enumerate(range(0, cycle.total, self._batch_size)):
            if index > 0 and self._cooldown_s > 0:
                await self._sleep(self._cooldown_s)

            batch = cycle.roster[offset : offset + self._batch_size]
            cycle.batch_index = index + 1
            fetched = await asyncio.gather(
                *(
                    self._fetch_device(entry, start_key, end_key, cycle.granularity)
                    for entry in batch
                )
            )
            for position, result in enumerate(fetched, start=offset):
                cycle.results[position] = result
            cycle.processed += len(batch)
            if any(result.error is not None for result in fetched):
                cycle.state = CycleState.PARTIALLY_FAILED

            logger.info(
                "Cycle %d batch %d/%d done (%d/%d devices)",
                cycle.cycle_id,
                cycle.batch_index,
                cycle.batch_count,
                cycle.processed,
                cycle.total,
            )
            yield ProgressEvent(
                cycle_id=cycle.cycle_id,
                processed=cycle.processed,
                total=cycle.total,
            )

        cycle.state = CycleState.COMPLETED
        cycle.completed_at = self._clock()
        self._last_completed = cycle
        logger.info(
            "Cycle %d completed: %d ok, %d failed",
            cycle.cycle_id,
            cycle.total - len(cycle.errors),
            len(cycle.errors),
        )

    async def fetch(
        self,
        roster: Sequence[RosterEntry],
        window: Window,
        granularity: Granularity,
        progress: Callable[[ProgressEvent], None] | None = None,
        *,
        force: bool = False,
    ) -> FetchCycle:
        """Run one full cycle, forwarding progress events to *progress*."""
        cycle = self.begin_cycle(roster, window, granularity, force=force)
        async for event in self.stream(cycle):
            if progress is not None:
                progress(event)
        return cycle

    # ------------------------------------------------------------------
    # Per-device fetch
    # ------------------------------------------------------------------

    async def _fetch_device(
        self,
        entry: RosterEntry,
        start_key: str,
        end_key: str,
        granularity: Granularity,
    ) -> DeviceFetch:
        serial = entry.device_serial
        try:
            session_key = await self._session_key(serial)
            rows = await self._with_retry(
                lambda: self._source.fetch_cumulative_samples(
                    session_key, self._metric_id, start_key, end_key, granularity
                ),
                f"sample fetch for {serial}",
            )
        except TelemetryError as exc:
            logger.warning("Device %s failed: %s: %s", serial, type(exc).__name__, exc)
            return DeviceFetch(entry=entry, error=DeviceError.from_exception(serial, exc))

        logger.debug("Device %s returned %d row(s)", serial, len(rows))
        return DeviceFetch(entry=entry, rows=list(rows))

    async def _session_key(self, device_serial: str) -> str:
        cached = await self._cache.get(device_serial)
        if cached is not None:
            return cached
        session_key = await self._with_retry(
            lambda: self._source.resolve_session_key(device_serial),
            f"session key resolution for {device_serial}",
        )
        await self._cache.set(device_serial, session_key)
        return session_key

    async def _with_retry(
        self,
        call: Callable[[], Awaitable[T]],
        description: str,
    ) -> T:
        """Await *call*, retrying UpstreamBusyError per the retry policy.

        Raises:
            SampleFetchError: When the source is still busy after the last
                retry, chained to the final UpstreamBusyError.
        """
        attempt = 0
        while True:
            try:
                return await call()
            except UpstreamBusyError as exc:
                if attempt >= self._retry.max_retries:
                    raise SampleFetchError(
                        f"{description} still busy after {attempt + 1} attempt(s)"
                    ) from exc
                attempt += 1
                logger.warning(
                    "Upstream busy during %s, retry %d/%d in %.1fs",
                    description,
                    attempt,
                    self._retry.max_retries,
                    self._retry.backoff_s,
                )
                await self._sleep(self._retry.backoff_s)
