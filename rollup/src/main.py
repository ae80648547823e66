"""
Command-line entry point for one rollup cycle.

Loads settings from the environment, reads a roster CSV, fetches and converts
every device's production over the requested window, ranks the fleet by
specific yield and writes the CSV export to a file or stdout. With
``--periods`` the per-period export is written instead of the ranking. Progress and
per-device failures are logged as structured JSON on stderr.

Usage::

    python -m rollup.src.main --roster roster.csv \\
        --start 2025-01-01 --end 2025-01-31 --granularity day --output out.csv

Exit status is 1 when the cycle cannot produce a result (invalid roster or
window, or every device failed).

CHANGELOG:
- 2026-10-18: Add --periods (STORY-114)
- 2026-10-17: Initial creation (STORY-112)

TODO:
- None
"""

from __future__ import annotations

import argparse
import asyncio
import hashlib
import json
import logging
import sys
from datetime import UTC, date, datetime
from typing import TYPE_CHECKING

from rollup.src.errors import ConfigurationError, FleetFetchError
from rollup.src.models import Granularity, ProgressEvent, Window

if TYPE_CHECKING:
    from rollup.src.config import RollupSettings

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Structured JSON logging setup
# ---------------------------------------------------------------------------


def configure_logging(level: int = logging.INFO) -> None:
    """Configure structured JSON logging for the rollup CLI.

    Sets up the root logger with a JSON-formatted handler writing to stderr.
    """

    class _JsonFormatter(logging.Formatter):
        """Minimal JSON log formatter."""

        def format(self, record: logging.LogRecord) -> str:
            log_entry = {
                "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
                "level": record.levelname,
                "logger": record.name,
                "msg": record.getMessage(),
            }
            if record.exc_info and record.exc_info[1] is not None:
                log_entry["exception"] = self.formatException(record.exc_info)
            return json.dumps(log_entry)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(_JsonFormatter())
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)


def _masked_token(value: str | None) -> str:
    """Return a short non-reversible token fingerprint for diagnostics."""
    if not value:
        return "empty"
    digest = hashlib.sha256(value.encode("utf-8")).hexdigest()[:10]
    return f"len={len(value)} sha256={digest}"


def log_config_summary(settings: RollupSettings) -> None:
    """Log a config summary at startup, excluding secrets."""
    logger.info(
        "Rollup starting with config: base_url=%s, sys_code=%s, metric_id=%s, "
        "batch_size=%s, batch_cooldown_ms=%s, busy_max_retries=%s, "
        "busy_backoff_ms=%s, minute_interval=%s, redis=%s, "
        "token_masked=%s, access_key_masked=%s",
        settings.telemetry_base_url,
        settings.telemetry_sys_code,
        settings.metric_id,
        settings.batch_size,
        settings.batch_cooldown_ms,
        settings.busy_max_retries,
        settings.busy_backoff_ms,
        settings.minute_interval,
        "on" if settings.redis_url else "off",
        _masked_token(settings.telemetry_token),
        _masked_token(settings.telemetry_access_key),
    )


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="rollup",
        description="Compute per-device solar production and specific yield.",
    )
    parser.add_argument("--roster", required=True, help="Roster CSV path")
    parser.add_argument(
        "--start", required=True, type=date.fromisoformat, help="First day, YYYY-MM-DD"
    )
    parser.add_argument(
        "--end", required=True, type=date.fromisoformat, help="Last day, YYYY-MM-DD"
    )
    parser.add_argument(
        "--granularity",
        type=Granularity,
        choices=list(Granularity),
        default=Granularity.DAY,
        help="Period width (default: day)",
    )
    parser.add_argument("--output", help="CSV output path (default: stdout)")
    parser.add_argument(
        "--periods",
        action="store_true",
        help="Write one row per device period instead of the ranking",
    )
    return parser


def _log_progress(event: ProgressEvent) -> None:
    logger.info("Progress: %d/%d device(s)", event.processed, event.total)


# ---------------------------------------------------------------------------
# Entrypoint
# ---------------------------------------------------------------------------


async def async_main(argv: list[str] | None = None) -> int:
    """Async entrypoint: load config, run one cycle, write the export.

    Returns:
        int: Process exit status.
    """
    args = build_parser().parse_args(argv)
    configure_logging()

    from rollup.src.cache import build_cache
    from rollup.src.client import TelemetryClient
    from rollup.src.config import RollupSettings
    from rollup.src.engine import compute_device_series
    from rollup.src.export import export_as_delimited_text, export_periods
    from rollup.src.orchestrator import BatchFetchOrchestrator
    from rollup.src.ranking import rank_fleet
    from rollup.src.roster import load_roster_csv

    settings = RollupSettings()
    log_config_summary(settings)

    roster = load_roster_csv(args.roster)
    window = Window.from_dates(args.start, args.end)
    cache = build_cache(settings)

    try:
        async with TelemetryClient.from_settings(settings) as client:
            orchestrator = BatchFetchOrchestrator.from_settings(settings, client, cache)
            result = await compute_device_series(
                roster,
                window,
                args.granularity,
                orchestrator=orchestrator,
                progress=_log_progress,
                raw_to_kwh_factor=settings.raw_to_kwh_factor,
            )
        ranking = rank_fleet(result.series, window)
    except (ConfigurationError, FleetFetchError) as exc:
        logger.error("Rollup failed: %s", exc)
        return 1
    finally:
        await cache.aclose()

    if args.periods:
        csv_text = export_periods(result.series)
        row_count = sum(len(series.periods) for series in result.series)
    else:
        csv_text = export_as_delimited_text(ranking, window)
        row_count = len(ranking.entries)
    if args.output:
        with open(args.output, "w", newline="", encoding="utf-8") as handle:
            handle.write(csv_text)
        logger.info("Wrote %d row(s) to %s", row_count, args.output)
    else:
        sys.stdout.write(csv_text)
    return 0


def main() -> None:
    """Synchronous entrypoint for the rollup CLI."""
    sys.exit(asyncio.run(async_main()))


if __name__ == "__main__":
    main()
