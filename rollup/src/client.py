"""
HTTPS client for the telemetry source (iSolarCloud-style open API).

Implements the two operations the orchestrator needs:

- resolve_session_key(serial): map a device serial to the opaque ps_key
  required for point queries.
- fetch_cumulative_samples(...): return raw lifetime-energy readings for one
  point between two compact timestamp keys at a given granularity.

Every call is a JSON POST carrying the ``x-access-key``, ``sys_code`` and
``token`` headers. The API signals success with ``result_code == "1"``; a
non-success whose message mentions "busy" becomes UpstreamBusyError so the
orchestrator can retry it. TLS certificate verification is always enabled.

Rows are returned exactly as the source sent them; decoding individual rows
is left to the normalizer, which drops and counts the ones it cannot read.
Only a row container of the wrong type is a MalformedResponseError.

CHANGELOG:
- 2026-10-18: Return rows unchanged for the normalizer to decode (STORY-114)
- 2026-10-16: Accept flat point lists in day/month/year responses (STORY-108)
- 2026-10-13: Initial creation (STORY-108)

TODO:
- None
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from rollup.src.config import RollupSettings
from rollup.src.errors import (
    MalformedResponseError,
    SampleFetchError,
    SessionKeyNotFound,
    UpstreamBusyError,
)
from rollup.src.models import Granularity
from rollup.src.normalizer import RawRow

logger = logging.getLogger(__name__)

REALTIME_PATH = "/openapi/getPVInverterRealTimeData"
MINUTE_PATH = "/openapi/getDevicePointMinuteDataList"
PERIOD_PATH = "/openapi/getDevicePointsDayMonthYearDataList"

_SUCCESS_CODE = "1"
_LANG = "_en_US"

_QUERY_TYPE: dict[Granularity, str] = {
    Granularity.DAY: "1",
    Granularity.MONTH: "2",
    Granularity.YEAR: "3",
}


class TelemetryClient:
    """Async client for the telemetry source.

    Args:
        base_url: Gateway base URL. Must start with ``https://``.
        app_key: Application key sent in every request body.
        access_key: Access key sent as the ``x-access-key`` header.
        token: Session token sent as the ``token`` header.
        sys_code: System code sent as header and body field.
        timeout_s: Per-request timeout in seconds.
        minute_interval: Sampling step for minute queries.
        http_client: Externally owned ``httpx.AsyncClient``. When omitted the
            client creates and closes its own.

    Raises:
        ValueError: If *base_url* does not start with ``https://``.

    Usage::

        async with TelemetryClient.from_settings(settings) as client:
            ps_key = await client.resolve_session_key("A2241234567")
            rows = await client.fetch_cumulative_samples(
                ps_key, "p2", "20250101", "20250131", Granularity.DAY
            )
    """

    def __init__(
        self,
        base_url: str,
        app_key: str,
        access_key: str,
        token: str,
        sys_code: str = "207",
        timeout_s: float = 30.0,
        minute_interval: int = 10,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        if not base_url.lower().startswith("https://"):
            raise ValueError(f"Telemetry base URL must use HTTPS (got: '{base_url}')")
        self._base_url = base_url.rstrip("/")
        self._app_key = app_key
        self._access_key = access_key
        self._token = token
        self._sys_code = sys_code
        self._minute_interval = minute_interval
        self._owns_client = http_client is None
        self._client = (
            http_client
            if http_client is not None
            else httpx.AsyncClient(timeout=timeout_s, verify=True)
        )

    @classmethod
    def from_settings(
        cls,
        settings: RollupSettings,
        http_client: httpx.AsyncClient | None = None,
    ) -> TelemetryClient:
        """Build a client from RollupSettings."""
        return cls(
            base_url=settings.telemetry_base_url,
            app_key=settings.telemetry_app_key,
            access_key=settings.telemetry_access_key,
            token=settings.telemetry_token,
            sys_code=settings.telemetry_sys_code,
            timeout_s=settings.request_timeout_s,
            minute_interval=settings.minute_interval,
            http_client=http_client,
        )

    async def __aenter__(self) -> TelemetryClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the underlying HTTP client if this instance created it."""
        if self._owns_client:
            await self._client.aclose()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def resolve_session_key(self, device_serial: str) -> str:
        """Resolve a device serial to its ps_key.

        Raises:
            SessionKeyNotFound: If the source knows no key for the serial.
            UpstreamBusyError: If the source reported it is busy.
            SampleFetchError: On any other transport or API failure.
        """
        result = await self._post(
            REALTIME_PATH,
            {"sn_list": [device_serial]},
        )
        points = result.get("device_point_list") if isinstance(result, dict) else None
        for item in points or []:
            device_point = item.get("device_point") if isinstance(item, dict) else None
            if isinstance(device_point, dict) and device_point.get("ps_key"):
                return str(device_point["ps_key"])
        raise SessionKeyNotFound(device_serial)

    async def fetch_cumulative_samples(
        self,
        session_key: str,
        metric_id: str,
        start_key: str,
        end_key: str,
        granularity: Granularity,
    ) -> list[RawRow]:
        """Fetch raw cumulative readings for one point.

        Args:
            session_key: The device's ps_key.
            metric_id: Point id, e.g. ``p2``.
            start_key: First compact key of the range (inclusive).
            end_key: Last compact key of the range (inclusive).
            granularity: Selects the endpoint and query type.

        Returns:
            list[RawRow]: Row mappings in the order the source returned them.

        Raises:
            UpstreamBusyError: If the source reported it is busy.
            MalformedResponseError: If the rows are not a list.
            SampleFetchError: On any other transport or API failure.
        """
        if granularity is Granularity.MINUTE:
            result = await self._post(
                MINUTE_PATH,
                {
                    "points": metric_id,
                    "minute_interval": self._minute_interval,
                    "ps_key_list": [session_key],
                    "start_time_stamp": start_key,
                    "end_time_stamp": end_key,
                    "is_get_data_acquisition_time": "1",
                },
            )
            rows = result.get(session_key) if isinstance(result, dict) else None
        else:
            result = await self._post(
                PERIOD_PATH,
                {
                    "data_point": metric_id,
                    "data_type": "2",
                    "query_type": _QUERY_TYPE[granularity],
                    "order": "0",
                    "ps_key_list": [session_key],
                    "start_time": start_key,
                    "end_time": end_key,
                },
            )
            rows = result.get(session_key) if isinstance(result, dict) else None
            if isinstance(rows, dict):
                rows = rows.get(metric_id)

        if rows is None:
            logger.debug("No %s rows for %s", granularity.value, session_key)
            return []
        if not isinstance(rows, list):
            raise MalformedResponseError(
                f"Expected a list of rows for {session_key}, got {type(rows).__name__}"
            )
        return list(rows)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "x-access-key": self._access_key,
            "sys_code": self._sys_code,
            "token": self._token,
        }

    async def _post(self, path: str, body: dict[str, Any]) -> Any:
        """POST *body* to *path* and return ``result_data`` on success."""
        payload = {
            "appkey": self._app_key,
            "lang": _LANG,
            "sys_code": int(self._sys_code),
            **body,
        }
        try:
            response = await self._client.post(
                f"{self._base_url}{path}", json=payload, headers=self._headers()
            )
        except httpx.HTTPError as exc:
            raise SampleFetchError(f"Request to {path} failed: {exc}") from exc

        if response.status_code != 200:
            raise SampleFetchError(f"{path} returned HTTP {response.status_code}")

        try:
            data = response.json()
        except ValueError as exc:
            raise SampleFetchError(f"{path} returned a non-JSON body") from exc
        if not isinstance(data, dict):
            raise MalformedResponseError(f"{path} returned a non-object body")

        code = str(data.get("result_code", ""))
        if code != _SUCCESS_CODE:
            message = str(data.get("result_msg") or "")
            if "busy" in message.lower():
                raise UpstreamBusyError(f"{path}: {message}")
            raise SampleFetchError(f"{path} failed (result_code={code}): {message}")
        return data.get("result_data")
