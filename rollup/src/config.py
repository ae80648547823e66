"""
Rollup engine configuration loaded from environment variables.

Uses Pydantic BaseSettings for automatic env var loading and validation.
All configuration values come from environment variables or .env files;
no hardcoded credentials. Invalid values fail at startup with a
pydantic ValidationError.

CHANGELOG:
- 2026-10-18: Add CYCLE_REUSE_S (STORY-114)
- 2026-10-15: Add REDIS_URL and SESSION_KEY_TTL_S (STORY-107)
- 2026-10-12: Initial creation (STORY-101)

TODO:
- None
"""

from pydantic import field_validator
from pydantic_settings import BaseSettings

ALLOWED_MINUTE_INTERVALS = frozenset({1, 5, 10, 15, 30, 60})


class RollupSettings(BaseSettings):
    """Telemetry rollup configuration.

    All values are loaded from environment variables. Required variables
    must be set; optional variables have sensible defaults.

    Attributes:
        telemetry_base_url: Telemetry source gateway URL (must be HTTPS).
        telemetry_app_key: Application key sent in every request body.
        telemetry_access_key: Access key sent as the ``x-access-key`` header.
        telemetry_sys_code: System code sent as header and body field.
        telemetry_token: Pre-issued session token for the telemetry source.
        metric_id: Lifetime-energy point id (default ``p2``).
        batch_size: Devices fetched concurrently per batch.
        batch_cooldown_ms: Pause between batches in milliseconds.
        busy_max_retries: Retries after an upstream "busy" response.
        busy_backoff_ms: Fixed delay before each busy retry.
        request_timeout_s: Per-request HTTP timeout.
        minute_interval: Minute-granularity sampling step in minutes.
        raw_to_kwh_factor: Multiplier from raw counter units to kWh.
        session_key_ttl_s: Session key cache lifetime; 0 disables expiry.
        cycle_reuse_s: How long a clean completed cycle is served again for
            identical parameters; 0 always refetches.
        redis_url: Redis URL for a shared session key cache; empty selects
            the in-process cache.
    """

    telemetry_base_url: str = "https://gateway.isolarcloud.com.hk"
    telemetry_app_key: str
    telemetry_access_key: str
    telemetry_sys_code: str = "207"
    telemetry_token: str
    metric_id: str = "p2"
    batch_size: int = 10
    batch_cooldown_ms: int = 300
    busy_max_retries: int = 2
    busy_backoff_ms: int = 2000
    request_timeout_s: float = 30.0
    minute_interval: int = 10
    raw_to_kwh_factor: float = 0.001
    session_key_ttl_s: int = 30 * 24 * 3600
    cycle_reuse_s: int = 3600
    redis_url: str = ""

    @field_validator("telemetry_base_url")
    @classmethod
    def telemetry_base_url_must_be_https(cls, v: str) -> str:
        """Validate that the telemetry gateway URL uses HTTPS.

        Tokens and access keys travel in request headers, so plain HTTP is
        rejected at startup.
        """
        if not v.startswith("https://"):
            raise ValueError(
                f"TELEMETRY_BASE_URL must use HTTPS (got: '{v[:20]}...')"
            )
        return v.rstrip("/")

    @field_validator("batch_size")
    @classmethod
    def batch_size_must_be_valid(cls, v: int) -> int:
        """Validate batch size is between 1 and 100."""
        if v < 1 or v > 100:
            raise ValueError("BATCH_SIZE must be >= 1 and <= 100")
        return v

    @field_validator(
        "batch_cooldown_ms",
        "busy_max_retries",
        "busy_backoff_ms",
        "session_key_ttl_s",
        "cycle_reuse_s",
    )
    @classmethod
    def must_be_non_negative(cls, v: int) -> int:
        """Validate delays, retry counts and TTLs are non-negative."""
        if v < 0:
            raise ValueError("value must be >= 0")
        return v

    @field_validator("request_timeout_s", "raw_to_kwh_factor")
    @classmethod
    def must_be_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("value must be > 0")
        return v

    @field_validator("minute_interval")
    @classmethod
    def minute_interval_must_be_supported(cls, v: int) -> int:
        """Validate the minute step is one the telemetry source serves."""
        if v not in ALLOWED_MINUTE_INTERVALS:
            raise ValueError(
                f"MINUTE_INTERVAL must be one of {sorted(ALLOWED_MINUTE_INTERVALS)}"
            )
        return v

    @property
    def batch_cooldown_s(self) -> float:
        return self.batch_cooldown_ms / 1000

    @property
    def busy_backoff_s(self) -> float:
        return self.busy_backoff_ms / 1000

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}
