"""
Error kinds raised by the rollup engine and its telemetry collaborators.

Per-device upstream failures (session key resolution, sample fetch, busy
responses, malformed payloads) are recovered by the orchestrator and attached
to that device's result. Configuration errors fail the whole cycle before any
network call is made. A cycle in which no device could be fetched surfaces a
single FleetFetchError carrying every per-device reason.

CHANGELOG:
- 2026-10-14: Add FleetFetchError for all-devices-failed cycles (STORY-107)
- 2026-10-12: Initial creation (STORY-101)

TODO:
- None
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from rollup.src.models import DeviceError


class RollupError(Exception):
    """Base class for every error raised by the rollup package."""


class ConfigurationError(RollupError):
    """Invalid input that makes the whole computation meaningless.

    Raised for a non-positive device capacity or an empty/inverted window.
    """


class TimestampParseError(RollupError, ValueError):
    """A timestamp string matched none of the supported encodings."""


class TelemetryError(RollupError):
    """Base class for failures talking to the telemetry source."""


class SessionKeyNotFound(TelemetryError):
    """The telemetry source knows no session key for a device serial."""

    def __init__(self, device_serial: str) -> None:
        super().__init__(f"No session key found for device '{device_serial}'")
        self.device_serial = device_serial


class SampleFetchError(TelemetryError):
    """Network, HTTP or API-level failure while fetching for one device."""


class MalformedResponseError(SampleFetchError):
    """The telemetry source answered with an unexpected payload shape."""


class UpstreamBusyError(TelemetryError):
    """The telemetry source reported it is busy; the call may be retried."""


class FleetFetchError(RollupError):
    """Every device in a fetch cycle failed.

    Attributes:
        errors: One :class:`~rollup.src.models.DeviceError` per failed device,
            in roster order.
    """

    def __init__(self, errors: list[DeviceError]) -> None:
        reasons = "; ".join(f"{e.device_id}: {e.message}" for e in errors)
        super().__init__(
            f"All {len(errors)} device(s) failed to fetch: {reasons}"
        )
        self.errors = errors
