from __future__ import annotations

import asyncio
import contextlib
import time
import uuid
from contextlib import asynccontextmanager
from typing import Annotated, Any

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response

from .cost_model import CostParameters
from .domain import RouteQuery, TravelMode
from .errors import RouteValidationError, UpstreamError
from .logging_utils import log_event, log_exception
from .metrics_store import MetricsStore, TrafficStats
from .models import CacheClearResponse, CacheStatsResponse, RouteEnvelope, StatusResponse
from .pricing_store import PricingStateStore
from .responses import render, validate_callback
from .route_cache import RouteCacheStore
from .route_handler import RouteRequestHandler, UpstreamFetcher, parse_route_query
from .settings import settings
from .sweeper import run_sweeps
from .upstream_client import AmapClient


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.route_cache = RouteCacheStore(
        ttl_s=settings.route_cache_ttl_s,
        max_entries=settings.route_cache_max_entries,
    )
    app.state.pricing_store = PricingStateStore(
        ttl_s=settings.session_ttl_s,
        tier_bounds=settings.congestion_tier_bounds,
        max_records=settings.session_max_records,
    )
    app.state.cost_params = CostParameters.from_settings(settings)
    app.state.traffic = TrafficStats()
    app.state.metrics = MetricsStore()
    app.state.upstream = AmapClient(
        api_key=settings.amap_api_key,
        base_url=settings.amap_base_url,
        timeout_s=settings.upstream_timeout_s,
        max_retries=settings.upstream_max_retries,
        retry_delay_s=settings.upstream_retry_delay_s,
        transit_city_code=settings.transit_city_code,
    )
    sweeper = asyncio.create_task(
        run_sweeps(
            app.state.route_cache,
            app.state.pricing_store,
            interval_s=settings.sweep_interval_s,
        )
    )
    log_event("service_started", service=settings.app_name, upstream=settings.amap_base_url)
    try:
        yield
    finally:
        sweeper.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await sweeper
        await app.state.upstream.aclose()


app = FastAPI(title="Route Cost Proxy", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in settings.cors_allow_origins.split(",") if o.strip()],
    allow_credentials=False,
    allow_methods=["GET", "POST", "DELETE"],
    allow_headers=["*"],
)


@app.middleware("http")
async def record_metrics(request: Request, call_next):
    t0 = time.perf_counter()
    response = await call_next(request)
    metrics: MetricsStore | None = getattr(request.app.state, "metrics", None)
    if metrics is not None:
        metrics.record(
            f"{request.method} {request.url.path}",
            duration_ms=(time.perf_counter() - t0) * 1000,
            status_code=response.status_code,
        )
    return response


def upstream_client(request: Request) -> UpstreamFetcher:
    upstream: UpstreamFetcher | None = getattr(request.app.state, "upstream", None)  # type: ignore[attr-defined]
    if upstream is None:
        raise HTTPException(status_code=503, detail="upstream client not initialised")
    return upstream


UpstreamDep = Annotated[UpstreamFetcher, Depends(upstream_client)]


def route_handler(request: Request, upstream: UpstreamDep) -> RouteRequestHandler:
    state = request.app.state
    return RouteRequestHandler(
        upstream=upstream,
        cache=state.route_cache,
        pricing=state.pricing_store,
        params=state.cost_params,
        stats=state.traffic,
    )


HandlerDep = Annotated[RouteRequestHandler, Depends(route_handler)]


def _cache_stats(request: Request) -> CacheStatsResponse:
    cache: RouteCacheStore = request.app.state.route_cache
    return CacheStatsResponse(**cache.snapshot())


@app.get("/")
async def root(request: Request) -> StatusResponse:
    state = request.app.state
    upstream = getattr(state, "upstream", None)
    return StatusResponse(
        service=settings.app_name,
        traffic=state.traffic.snapshot(),
        cache=_cache_stats(request),
        sessions=state.pricing_store.snapshot(),
        upstream={
            "base_url": settings.amap_base_url,
            "attempts": getattr(upstream, "calls", 0),
            "failed_attempts": getattr(upstream, "failures", 0),
            "max_retries": settings.upstream_max_retries,
        },
    )


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/metrics")
async def metrics(request: Request) -> dict[str, Any]:
    return request.app.state.metrics.snapshot()


def _mode_hint(request: Request) -> str | None:
    raw = (request.query_params.get("mode") or "").strip().lower()
    return raw if raw in {m.value for m in TravelMode} else None


@app.get("/api/route")
async def get_route(request: Request, handler: HandlerDep) -> Response:
    request_id = str(uuid.uuid4())
    t0 = time.perf_counter()
    params = request.query_params

    try:
        callback = validate_callback(params.get("callback"))
    except RouteValidationError as e:
        handler.stats.incr("total_requests")
        handler.stats.incr("validation_errors")
        envelope = RouteEnvelope.fail(e.message, reason_code=e.reason_code, mode=_mode_hint(request))
        return render(envelope.to_payload(), status_code=400)

    try:
        query, result, cache_hit = await handler.handle(params)
        payload = RouteEnvelope.ok(result).to_payload()
    except RouteValidationError as e:
        log_event(
            "route_request_rejected",
            request_id=request_id,
            reason_code=e.reason_code,
            detail=e.message,
        )
        envelope = RouteEnvelope.fail(e.message, reason_code=e.reason_code, mode=_mode_hint(request))
        return render(envelope.to_payload(), status_code=400, callback=callback)
    except UpstreamError as e:
        log_event(
            "route_request_failed",
            request_id=request_id,
            travel_mode=_mode_hint(request),
            reason_code=e.reason_code,
            detail=e.message,
            duration_ms=round((time.perf_counter() - t0) * 1000, 2),
        )
        envelope = RouteEnvelope.fail(e.message, reason_code=e.reason_code, mode=_mode_hint(request))
        return render(envelope.to_payload(), status_code=502, callback=callback)
    except Exception:
        handler.stats.incr("internal_errors")
        log_exception("route_request_error", request_id=request_id)
        envelope = RouteEnvelope.fail(
            "Internal error while computing route",
            reason_code="internal_error",
            mode=_mode_hint(request),
        )
        return render(envelope.to_payload(), status_code=500, callback=callback)

    log_event(
        "route_request",
        request_id=request_id,
        travel_mode=query.mode.value,
        power_type=query.power_type.value,
        congestion_range=query.congestion_range.value,
        has_session=query.session_id is not None,
        cache_hit=cache_hit,
        available=result.available,
        duration_ms=round((time.perf_counter() - t0) * 1000, 2),
    )
    return render(payload, callback=callback)


@app.get("/api/cache/stats", response_model=CacheStatsResponse)
async def cache_stats(request: Request) -> CacheStatsResponse:
    return _cache_stats(request)


def _clear_cache(request: Request) -> CacheClearResponse:
    cleared = request.app.state.route_cache.clear()
    sessions = 0
    if request.query_params.get("sessions", "").lower() in {"1", "true", "yes"}:
        sessions = request.app.state.pricing_store.clear()
    log_event("cache_cleared", cleared=cleared, sessions_cleared=sessions)
    return CacheClearResponse(cleared=cleared, sessions_cleared=sessions)


@app.delete("/api/cache", response_model=CacheClearResponse)
async def delete_cache(request: Request) -> CacheClearResponse:
    return _clear_cache(request)


@app.post("/api/cache/clear", response_model=CacheClearResponse)
async def post_cache_clear(request: Request) -> CacheClearResponse:
    return _clear_cache(request)


@app.get("/api/debug/upstream")
async def debug_upstream(request: Request, upstream: UpstreamDep) -> Response:
    """Raw provider payload for one query, single attempt, no cache."""
    params = request.query_params
    try:
        callback = validate_callback(params.get("callback"))
    except RouteValidationError as e:
        return render(RouteEnvelope.fail(e.message, reason_code=e.reason_code).to_payload(), status_code=400)

    if not settings.debug_upstream_enabled:
        envelope = RouteEnvelope.fail("Upstream debug endpoint disabled", reason_code="upstream_debug_disabled")
        return render(envelope.to_payload(), status_code=404, callback=callback)

    try:
        query: RouteQuery = parse_route_query(params)
        payload = await upstream.fetch_raw(query.mode, query.origin, query.destination)  # type: ignore[attr-defined]
    except RouteValidationError as e:
        envelope = RouteEnvelope.fail(e.message, reason_code=e.reason_code, mode=_mode_hint(request))
        return render(envelope.to_payload(), status_code=400, callback=callback)
    except UpstreamError as e:
        envelope = RouteEnvelope.fail(e.message, reason_code=e.reason_code, mode=_mode_hint(request))
        return render(envelope.to_payload(), status_code=502, callback=callback)

    log_event("upstream_debug", travel_mode=query.mode.value)
    return render(payload, callback=callback)
