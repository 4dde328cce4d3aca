"""Request orchestration: validate -> cache lookup -> upstream -> cost model -> cache store."""

from __future__ import annotations

import math
import re
from collections.abc import Mapping
from typing import Any, Protocol

from .cost_model import DEFAULT_COST_PARAMETERS, CostParameters, compute_route_result, reprice_congestion
from .domain import CongestionRange, PowerType, RouteQuery, RouteResult, TravelMode
from .errors import RouteValidationError, UpstreamError, invalid_parameter, missing_parameter
from .metrics_store import TrafficStats
from .pricing_store import PricingStateStore
from .route_cache import RouteCacheStore
from .upstream_client import extract_route_summary

# Modes whose price depends on the session's congestion baseline.
PRICED_MODES: frozenset[TravelMode] = frozenset({TravelMode.DRIVING, TravelMode.TAXI})

_TRUE = {"true", "1", "yes", "on"}
_FALSE = {"false", "0", "no", "off"}
_SESSION_ID_RE = re.compile(r"^[A-Za-z0-9_.:-]{1,128}$")


class UpstreamFetcher(Protocol):
    async def fetch(self, mode: TravelMode, origin: str, destination: str) -> dict[str, Any]: ...


def _text(params: Mapping[str, Any], name: str) -> str | None:
    value = params.get(name)
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def parse_coordinate(name: str, value: str | None) -> str:
    """Validate a ``"lng,lat"`` pair and return it in canonical 6-decimal form."""
    if value is None:
        raise missing_parameter(name)
    parts = value.split(",")
    if len(parts) != 2:
        raise invalid_parameter(name, value, "'<lng>,<lat>'")
    try:
        lng, lat = float(parts[0]), float(parts[1])
    except ValueError as e:
        raise invalid_parameter(name, value, "'<lng>,<lat>'") from e
    if not (math.isfinite(lng) and math.isfinite(lat)):
        raise invalid_parameter(name, value, "finite coordinates")
    if not (-180.0 <= lng <= 180.0 and -90.0 <= lat <= 90.0):
        raise invalid_parameter(name, value, "lng in [-180, 180] and lat in [-90, 90]")
    return f"{lng:.6f},{lat:.6f}"


def _parse_enum(name: str, value: str | None, enum_cls: Any, default: Any) -> Any:
    if value is None:
        return default
    try:
        return enum_cls(value.lower())
    except ValueError as e:
        allowed = "|".join(member.value for member in enum_cls)
        raise invalid_parameter(name, value, allowed) from e


def _parse_bool(name: str, value: str | None) -> bool:
    if value is None:
        return False
    lowered = value.lower()
    if lowered in _TRUE:
        return True
    if lowered in _FALSE:
        return False
    raise invalid_parameter(name, value, "true|false")


def parse_route_query(params: Mapping[str, Any]) -> RouteQuery:
    """Build a ``RouteQuery`` from raw query-string parameters.

    Raises ``RouteValidationError`` for missing or malformed values.
    """
    origin_raw = _text(params, "origin")
    destination_raw = _text(params, "destination")
    mode_raw = _text(params, "mode")
    for name, raw in (("origin", origin_raw), ("destination", destination_raw), ("mode", mode_raw)):
        if raw is None:
            raise missing_parameter(name)

    mode = _parse_enum("mode", mode_raw, TravelMode, None)
    session_id = _text(params, "sessionId")
    if session_id is not None and not _SESSION_ID_RE.match(session_id):
        raise invalid_parameter("sessionId", session_id, "1-128 characters of [A-Za-z0-9_.:-]")

    return RouteQuery(
        origin=parse_coordinate("origin", origin_raw),
        destination=parse_coordinate("destination", destination_raw),
        mode=mode,
        power_type=_parse_enum("powerType", _text(params, "powerType"), PowerType, PowerType.FUEL),
        congestion_range=_parse_enum(
            "congestionRange", _text(params, "congestionRange"), CongestionRange, CongestionRange.NONE
        ),
        has_congestion_quota=_parse_bool("hasCongestionQuota", _text(params, "hasCongestionQuota")),
        session_id=session_id,
    )


class RouteRequestHandler:
    def __init__(
        self,
        *,
        upstream: UpstreamFetcher,
        cache: RouteCacheStore,
        pricing: PricingStateStore,
        params: CostParameters = DEFAULT_COST_PARAMETERS,
        stats: TrafficStats | None = None,
    ) -> None:
        self.upstream = upstream
        self.cache = cache
        self.pricing = pricing
        self.params = params
        self.stats = stats or TrafficStats()

    async def handle(self, raw_params: Mapping[str, Any]) -> tuple[RouteQuery, RouteResult, bool]:
        """Validate and resolve one request.

        Returns ``(query, result, cache_hit)``. Validation failures and exhausted
        upstream retries raise; an unusable itinerary comes back as a normal
        result with ``available=False``.
        """
        self.stats.incr("total_requests")
        try:
            query = parse_route_query(raw_params)
        except RouteValidationError:
            self.stats.incr("validation_errors")
            raise
        result, cache_hit = await self.resolve(query)
        return query, result, cache_hit

    async def resolve(self, query: RouteQuery) -> tuple[RouteResult, bool]:
        key = query.cache_key()
        cached = self.cache.get(key)
        if cached is not None:
            self.stats.incr("cache_hits")
            if cached.available and query.mode in PRICED_MODES:
                # Entries are shared across sessions; serve this session its own baseline.
                base_price = self.pricing.adopt(
                    query.session_id, query.congestion_range, cached.congestion_base_price
                )
                cached = reprice_congestion(cached, query, base_price, self.params)
            return cached, True

        self.stats.incr("cache_misses")
        self.stats.incr("upstream_calls")
        try:
            payload = await self.upstream.fetch(query.mode, query.origin, query.destination)
        except UpstreamError:
            self.stats.incr("upstream_errors")
            raise

        summary = extract_route_summary(query.mode, payload)
        base_price = 0.0
        if query.mode in PRICED_MODES:
            base_price = self.pricing.get_or_create(query.session_id, query.congestion_range)

        result = compute_route_result(
            query,
            summary,
            congestion_base_price=base_price,
            params=self.params,
        )
        self.cache.set(key, result)
        return result, False
