"""
Session-key cache shared across fetch cycles.

Maps a device serial to the opaque session key the telemetry source requires
for sample queries. Resolving a key is a separate, more expensive upstream
call than fetching samples, so resolved keys outlive the fetch cycle that
discovered them.

Two implementations satisfy the SessionKeyCache protocol:

- InMemorySessionKeyCache: process-local dict with an optional TTL.
- RedisSessionKeyCache: redis.asyncio backed, shared between processes.
  Redis access is best-effort: connection failures are logged and treated
  as a cache miss (get) or a no-op (set), never propagated.

Writes are idempotent (same device, same key), so concurrent writers need no
locking.

CHANGELOG:
- 2026-10-15: Add Redis-backed cache (STORY-107)
- 2026-10-14: Initial creation (STORY-107)

TODO:
- None
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Protocol

import redis.asyncio as redis

from rollup.src.config import RollupSettings

logger = logging.getLogger(__name__)

DEFAULT_KEY_PREFIX = "session_key:"


class SessionKeyCache(Protocol):
    """Get/set of session keys by device serial."""

    async def get(self, device_serial: str) -> str | None: ...

    async def set(self, device_serial: str, session_key: str) -> None: ...

    async def aclose(self) -> None: ...


class InMemorySessionKeyCache:
    """Process-local session-key cache.

    Args:
        ttl_s: Entry lifetime in seconds; ``0`` keeps entries forever.
        clock: Monotonic clock, injectable for tests.
    """

    def __init__(
        self,
        ttl_s: float = 0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl_s = ttl_s
        self._clock = clock
        self._entries: dict[str, tuple[str, float | None]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    async def get(self, device_serial: str) -> str | None:
        entry = self._entries.get(device_serial)
        if entry is None:
            return None
        session_key, expires_at = entry
        if expires_at is not None and self._clock() >= expires_at:
            del self._entries[device_serial]
            return None
        return session_key

    async def set(self, device_serial: str, session_key: str) -> None:
        expires_at = self._clock() + self._ttl_s if self._ttl_s > 0 else None
        self._entries[device_serial] = (session_key, expires_at)

    async def aclose(self) -> None:
        self._entries.clear()


class RedisSessionKeyCache:
    """Redis-backed session-key cache.

    Keys are stored as ``{prefix}{device_serial}`` with the configured TTL.

    Args:
        url: Redis connection URL.
        ttl_s: Entry lifetime in seconds; ``0`` stores without expiry.
        prefix: Key prefix.
        client: Pre-built ``redis.asyncio.Redis`` client (tests inject a mock).
    """

    def __init__(
        self,
        url: str,
        ttl_s: int = 0,
        prefix: str = DEFAULT_KEY_PREFIX,
        client: redis.Redis | None = None,
    ) -> None:
        self._client = client if client is not None else redis.from_url(url)
        self._ttl_s = ttl_s
        self._prefix = prefix

    def _key(self, device_serial: str) -> str:
        return f"{self._prefix}{device_serial}"

    async def get(self, device_serial: str) -> str | None:
        try:
            value = await self._client.get(self._key(device_serial))
        except Exception:
            logger.warning(
                "Session key cache read failed for device %s",
                device_serial,
                exc_info=True,
            )
            return None
        if value is None:
            return None
        return value.decode() if isinstance(value, bytes) else str(value)

    async def set(self, device_serial: str, session_key: str) -> None:
        try:
            await self._client.set(
                self._key(device_serial),
                session_key,
                ex=self._ttl_s if self._ttl_s > 0 else None,
            )
        except Exception:
            logger.warning(
                "Session key cache write failed for device %s",
                device_serial,
                exc_info=True,
            )

    async def aclose(self) -> None:
        await self._client.aclose()


def build_cache(settings: RollupSettings) -> SessionKeyCache:
    """Select the cache backend from settings.

    Returns:
        A RedisSessionKeyCache when ``REDIS_URL`` is set, otherwise an
        InMemorySessionKeyCache.
    """
    if settings.redis_url:
        logger.info("Using Redis session key cache")
        return RedisSessionKeyCache(settings.redis_url, ttl_s=settings.session_key_ttl_s)
    logger.info("Using in-process session key cache")
    return InMemorySessionKeyCache(ttl_s=settings.session_key_ttl_s)
