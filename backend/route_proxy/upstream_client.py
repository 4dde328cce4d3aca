# backend/route_proxy/upstream_client.py
from __future__ import annotations

import asyncio
import logging
import math
from collections.abc import Awaitable, Callable
from typing import Any, Final

import httpx

from .domain import RawRouteSummary, TravelMode
from .errors import UpstreamError
from .logging_utils import log_event

# Taxi reuses the driving query; eBike reuses the bicycling query.
UPSTREAM_MODE: Final[dict[TravelMode, TravelMode]] = {
    TravelMode.DRIVING: TravelMode.DRIVING,
    TravelMode.TAXI: TravelMode.DRIVING,
    TravelMode.TRANSIT: TravelMode.TRANSIT,
    TravelMode.WALKING: TravelMode.WALKING,
    TravelMode.BICYCLING: TravelMode.BICYCLING,
    TravelMode.EBIKE: TravelMode.BICYCLING,
}

UPSTREAM_PATHS: Final[dict[TravelMode, str]] = {
    TravelMode.DRIVING: "/v5/direction/driving",
    TravelMode.TRANSIT: "/v5/direction/transit/integrated",
    TravelMode.WALKING: "/v5/direction/walking",
    TravelMode.BICYCLING: "/v5/direction/bicycling",
}

_OK_STATUS: Final[str] = "1"

SleepFn = Callable[[float], Awaitable[Any]]


def _format_upstream_error(resp: httpx.Response) -> str:
    """Best-effort decode of provider error payloads."""
    try:
        data = resp.json()
        if isinstance(data, dict):
            info = data.get("info")
            code = data.get("infocode")
            if info and code:
                return f"upstream {resp.status_code} {code}: {info}"
            if info:
                return f"upstream {resp.status_code}: {info}"
    except ValueError:
        # fall through to text
        pass

    body = (resp.text or "").strip().replace("\n", " ")
    if len(body) > 240:
        body = body[:240] + "..."
    if body:
        return f"upstream {resp.status_code}: {body}"
    return f"upstream HTTP {resp.status_code}"


class AmapClient:
    """Async client for the AMap web-service direction API.

    ``fetch`` makes one attempt plus up to ``max_retries`` retries, waiting a
    fixed ``retry_delay_s`` between attempts. Each attempt has its own timeout.
    """

    def __init__(
        self,
        *,
        api_key: str,
        base_url: str = "https://restapi.amap.com",
        timeout_s: float = 10.0,
        max_retries: int = 2,
        retry_delay_s: float = 1.0,
        transit_city_code: str = "010",
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.max_retries = max(0, int(max_retries))
        self.retry_delay_s = max(0.0, float(retry_delay_s))
        self.transit_city_code = transit_city_code
        self._sleep = sleep

        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout_s),
            headers={"accept": "application/json"},
            transport=transport,
        )

        self.calls = 0
        self.failures = 0

    async def aclose(self) -> None:
        await self._client.aclose()

    def build_request(
        self, mode: TravelMode, origin: str, destination: str
    ) -> tuple[str, dict[str, str]]:
        upstream = UPSTREAM_MODE[mode]
        url = f"{self.base_url}{UPSTREAM_PATHS[upstream]}"
        params: dict[str, str] = {
            "origin": origin,
            "destination": destination,
            "key": self.api_key,
            "show_fields": "cost",
        }
        if upstream is TravelMode.TRANSIT:
            params["city1"] = self.transit_city_code
            params["city2"] = self.transit_city_code
        return url, params

    async def _get_json(self, url: str, params: dict[str, str]) -> Any:
        try:
            resp = await self._client.get(url, params=params)
        except httpx.TimeoutException as e:
            raise UpstreamError(
                reason_code="upstream_timeout",
                message=f"upstream timed out: {type(e).__name__}",
            ) from e
        except httpx.HTTPError as e:
            # httpx exceptions can stringify to "", so include the type.
            msg = str(e).strip()
            detail = f"{type(e).__name__}: {msg}" if msg else type(e).__name__
            raise UpstreamError(
                reason_code="upstream_unreachable",
                message=f"upstream unreachable ({detail})",
            ) from e

        if not resp.is_success:
            raise UpstreamError(
                reason_code="upstream_http_error",
                message=_format_upstream_error(resp),
                details={"http_status": resp.status_code},
            )

        try:
            return resp.json()
        except ValueError as e:
            raise UpstreamError(
                reason_code="upstream_bad_payload",
                message="upstream returned a non-JSON body",
            ) from e

    async def _attempt(self, url: str, params: dict[str, str]) -> dict[str, Any]:
        data = await self._get_json(url, params)
        if not isinstance(data, dict):
            raise UpstreamError(
                reason_code="upstream_bad_payload",
                message="upstream payload is not a JSON object",
            )
        if str(data.get("status")) != _OK_STATUS:
            raise UpstreamError(
                reason_code="upstream_rejected",
                message=f"upstream status={data.get('status')} infocode={data.get('infocode')} info={data.get('info')}",
                details={"infocode": data.get("infocode")},
            )
        return data

    async def fetch(self, mode: TravelMode, origin: str, destination: str) -> dict[str, Any]:
        url, params = self.build_request(mode, origin, destination)
        attempts = self.max_retries + 1
        attempt = 0

        while True:
            attempt += 1
            self.calls += 1
            try:
                return await self._attempt(url, params)
            except UpstreamError as e:
                self.failures += 1
                if attempt >= attempts:
                    log_event(
                        "upstream_exhausted",
                        level=logging.ERROR,
                        travel_mode=mode.value,
                        attempts=attempts,
                        reason_code=e.reason_code,
                        detail=e.message,
                    )
                    raise UpstreamError(
                        reason_code=e.reason_code,
                        message=f"upstream request failed after {attempts} attempts: {e.message}",
                        details={"attempts": attempts, **(e.details or {})},
                    ) from e
                log_event(
                    "upstream_retry",
                    level=logging.WARNING,
                    travel_mode=mode.value,
                    attempt=attempt,
                    max_attempts=attempts,
                    reason_code=e.reason_code,
                    detail=e.message,
                )
            await self._sleep(self.retry_delay_s)

    async def fetch_raw(self, mode: TravelMode, origin: str, destination: str) -> Any:
        """Single attempt; returns the provider JSON untouched (debug passthrough)."""
        url, params = self.build_request(mode, origin, destination)
        self.calls += 1
        try:
            return await self._get_json(url, params)
        except UpstreamError:
            self.failures += 1
            raise


def _num(value: Any) -> float | None:
    # The provider encodes numbers as strings and empty fields as [] or "".
    # Every field read here is a non-negative quantity; negatives count as absent.
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        out = float(value)
    elif isinstance(value, str):
        try:
            out = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return out if math.isfinite(out) and out >= 0 else None


def _first(items: Any) -> dict[str, Any] | None:
    if isinstance(items, list) and items and isinstance(items[0], dict):
        return items[0]
    return None


def _count(items: Any) -> int | None:
    return len(items) if isinstance(items, list) else None


def _dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _path_summary(route: dict[str, Any], *, with_fare: bool) -> RawRouteSummary | None:
    path = _first(route.get("paths"))
    if path is None:
        return None
    cost = _dict(path.get("cost"))

    distance = _num(path.get("distance"))
    duration = _num(cost.get("duration"))
    if duration is None:
        duration = _num(path.get("duration"))
    if distance is None or duration is None:
        return None

    tolls = _num(cost.get("tolls"))
    if tolls is None:
        tolls = _num(path.get("tolls"))

    fare = None
    if with_fare:
        fare = _num(route.get("taxi_cost"))
        if fare is None:
            fare = _num(cost.get("taxi_fee"))

    return RawRouteSummary(
        distance_meters=distance,
        duration_seconds=duration,
        fare_amount=fare,
        toll_amount=tolls,
        segment_count=_count(path.get("steps")),
    )


def _transit_summary(route: dict[str, Any]) -> RawRouteSummary | None:
    transit = _first(route.get("transits"))
    if transit is None:
        return None

    cost_field = transit.get("cost")
    if isinstance(cost_field, dict):
        fare = _num(cost_field.get("transit_fee"))
        duration = _num(cost_field.get("duration"))
    else:
        fare = _num(cost_field)
        duration = None
    if duration is None:
        duration = _num(transit.get("duration"))

    distance = _num(transit.get("distance"))
    if distance is None:
        distance = _num(route.get("distance"))
    if distance is None or duration is None:
        return None

    return RawRouteSummary(
        distance_meters=distance,
        duration_seconds=duration,
        fare_amount=fare,
        segment_count=_count(transit.get("segments")),
        walking_distance_meters=_num(transit.get("walking_distance")),
    )


def extract_route_summary(mode: TravelMode, payload: Any) -> RawRouteSummary | None:
    """Pull the fields the cost model needs out of a provider payload.

    Returns None when the payload lacks what ``mode`` requires; optional
    sub-fields (tolls, fares, step lists) may be absent.
    """
    if not isinstance(payload, dict):
        return None
    route = payload.get("route")
    if not isinstance(route, dict):
        return None

    upstream = UPSTREAM_MODE[mode]
    if upstream is TravelMode.TRANSIT:
        return _transit_summary(route)
    return _path_summary(route, with_fare=mode is TravelMode.TAXI)
