from __future__ import annotations

import json
from dataclasses import replace
from typing import Any

import pytest
from fastapi.testclient import TestClient

from route_proxy.domain import RouteResult, TravelMode
from route_proxy.errors import UpstreamError
from route_proxy.main import app, route_handler, upstream_client
from route_proxy.metrics_store import TrafficStats
from route_proxy.settings import settings

ORIGIN = "116.481028,39.989643"
DESTINATION = "116.434446,39.908070"


def _driving_payload() -> dict[str, Any]:
    return {
        "status": "1",
        "info": "OK",
        "infocode": "10000",
        "route": {
            "taxi_cost": "35",
            "paths": [{"distance": "10000", "cost": {"duration": "1200", "tolls": "0"}, "steps": []}],
        },
    }


class SuccessUpstream:
    def __init__(self) -> None:
        self.calls = 0
        self.failures = 0

    async def fetch(self, mode: TravelMode, origin: str, destination: str) -> dict[str, Any]:
        self.calls += 1
        return _driving_payload()

    async def fetch_raw(self, mode: TravelMode, origin: str, destination: str) -> dict[str, Any]:
        self.calls += 1
        return {"status": "1", "raw": True, "mode": mode.value}


class NegativeTollUpstream(SuccessUpstream):
    async def fetch(self, mode: TravelMode, origin: str, destination: str) -> dict[str, Any]:
        payload = await super().fetch(mode, origin, destination)
        payload["route"]["paths"][0]["cost"]["tolls"] = "-5"
        return payload


class UnrenderableHandler:
    def __init__(self) -> None:
        self.stats = TrafficStats()

    async def handle(self, params: Any) -> tuple[Any, RouteResult, bool]:
        # Negative cost fails RouteInfo validation.
        return None, replace(RouteResult.unavailable(TravelMode.DRIVING, "none"), cost=-1.0), False


class FailingUpstream:
    calls = 0
    failures = 0

    async def fetch(self, mode: TravelMode, origin: str, destination: str) -> dict[str, Any]:
        raise UpstreamError(
            reason_code="upstream_unreachable",
            message="upstream request failed after 3 attempts: upstream unreachable (ConnectError)",
        )

    async def fetch_raw(self, mode: TravelMode, origin: str, destination: str) -> dict[str, Any]:
        raise UpstreamError(reason_code="upstream_timeout", message="upstream timed out: ReadTimeout")


def _route_params(**overrides: str) -> dict[str, str]:
    params = {"origin": ORIGIN, "destination": DESTINATION, "mode": "driving"}
    params.update(overrides)
    return params


def _unwrap_jsonp(text: str, callback: str) -> Any:
    prefix = f"/**/{callback}("
    assert text.startswith(prefix)
    assert text.endswith(");")
    return json.loads(text[len(prefix) : -2])


@pytest.fixture
def success_upstream():
    upstream = SuccessUpstream()
    app.dependency_overrides[upstream_client] = lambda: upstream
    try:
        yield upstream
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def failing_upstream():
    app.dependency_overrides[upstream_client] = lambda: FailingUpstream()
    try:
        yield
    finally:
        app.dependency_overrides.clear()


def test_route_success_envelope(success_upstream) -> None:
    with TestClient(app) as client:
        resp = client.get("/api/route", params=_route_params(hasCongestionQuota="true"))

    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "1"
    assert body["type"] == "driving"
    assert "reason_code" not in body
    info = body["route_info"]
    assert info["available"] is True
    assert info["cost"] == 11.23
    assert info["carbon_grams"] == 1710
    assert info["duration_minutes"] == 20


def test_route_jsonp_wrapping(success_upstream) -> None:
    with TestClient(app) as client:
        resp = client.get("/api/route", params=_route_params(mode="walking", callback="app.onRoute"))

    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("application/javascript")
    assert resp.headers["x-content-type-options"] == "nosniff"
    body = _unwrap_jsonp(resp.text, "app.onRoute")
    assert body["status"] == "1"
    assert body["route_info"]["calories"] == 650


@pytest.mark.parametrize("callback", ["alert(1)", "a;b", "1cb", "x" * 200])
def test_invalid_callback_rejected_as_json(success_upstream, callback) -> None:
    with TestClient(app) as client:
        resp = client.get("/api/route", params=_route_params(callback=callback))

    assert resp.status_code == 400
    assert resp.headers["content-type"].startswith("application/json")
    body = resp.json()
    assert body["status"] == "0"
    assert body["reason_code"] == "invalid_callback"
    assert success_upstream.calls == 0


def test_missing_parameter_returns_400_envelope(success_upstream) -> None:
    with TestClient(app) as client:
        resp = client.get("/api/route", params={"origin": ORIGIN, "mode": "transit"})

    assert resp.status_code == 400
    body = resp.json()
    assert body == {
        "status": "0",
        "info": "Missing required parameter: destination",
        "type": "transit",
        "route_info": None,
        "reason_code": "missing_parameter",
    }


def test_validation_error_over_jsonp_is_200(success_upstream) -> None:
    with TestClient(app) as client:
        resp = client.get("/api/route", params=_route_params(origin="999,999", callback="cb"))

    assert resp.status_code == 200
    body = _unwrap_jsonp(resp.text, "cb")
    assert body["status"] == "0"
    assert body["reason_code"] == "invalid_parameter"


def test_upstream_failure_returns_502_envelope(failing_upstream) -> None:
    with TestClient(app) as client:
        resp = client.get("/api/route", params=_route_params(mode="taxi"))
        stats = client.get("/").json()

    assert resp.status_code == 502
    body = resp.json()
    assert body["status"] == "0"
    assert body["type"] == "taxi"
    assert body["reason_code"] == "upstream_unreachable"
    assert "after 3 attempts" in body["info"]
    assert stats["traffic"]["upstream_errors"] == 1
    assert stats["cache"]["size"] == 0


def test_negative_toll_from_upstream_is_reported_as_zero() -> None:
    upstream = NegativeTollUpstream()
    app.dependency_overrides[upstream_client] = lambda: upstream
    try:
        with TestClient(app) as client:
            first = client.get("/api/route", params=_route_params())
            second = client.get("/api/route", params=_route_params())
    finally:
        app.dependency_overrides.clear()

    for resp in (first, second):
        assert resp.status_code == 200
        info = resp.json()["route_info"]
        assert info["available"] is True
        assert info["toll_cost"] == 0.0
    assert upstream.calls == 1


@pytest.mark.parametrize("callback", [None, "cb"])
def test_unrenderable_result_returns_internal_error_envelope(callback) -> None:
    handler = UnrenderableHandler()
    app.dependency_overrides[route_handler] = lambda: handler
    params = _route_params(callback=callback) if callback else _route_params()
    try:
        with TestClient(app) as client:
            resp = client.get("/api/route", params=params)
    finally:
        app.dependency_overrides.clear()

    if callback:
        assert resp.status_code == 200
        body = _unwrap_jsonp(resp.text, callback)
    else:
        assert resp.status_code == 500
        assert resp.headers["content-type"].startswith("application/json")
        body = resp.json()
    assert body["status"] == "0"
    assert body["type"] == "driving"
    assert body["reason_code"] == "internal_error"
    assert handler.stats.snapshot()["internal_errors"] == 1


def test_repeat_request_served_from_cache(success_upstream) -> None:
    with TestClient(app) as client:
        first = client.get("/api/route", params=_route_params(congestionRange="mid", sessionId="s-1"))
        second = client.get("/api/route", params=_route_params(congestionRange="mid", sessionId="s-1"))
        root = client.get("/").json()
        cache_stats = client.get("/api/cache/stats").json()

    assert first.json() == second.json()
    assert success_upstream.calls == 1
    assert root["status"] == "running"
    assert root["traffic"]["total_requests"] == 2
    assert root["traffic"]["cache_hits"] == 1
    assert root["traffic"]["upstream_calls"] == 1
    assert root["sessions"]["size"] == 1
    assert cache_stats["size"] == 1
    assert cache_stats["hits"] == 1


def test_cache_clear_endpoints(success_upstream) -> None:
    with TestClient(app) as client:
        client.get("/api/route", params=_route_params(congestionRange="low", sessionId="s-2"))
        client.get("/api/route", params=_route_params(mode="walking"))

        cleared = client.delete("/api/cache")
        assert cleared.status_code == 200
        assert cleared.json() == {"cleared": 2, "sessions_cleared": 0}

        client.get("/api/route", params=_route_params(congestionRange="low", sessionId="s-2"))
        cleared = client.post("/api/cache/clear", params={"sessions": "true"})
        assert cleared.json() == {"cleared": 1, "sessions_cleared": 1}

        assert client.get("/api/cache/stats").json()["size"] == 0

    assert success_upstream.calls == 3


def test_debug_upstream_passthrough(success_upstream) -> None:
    with TestClient(app) as client:
        resp = client.get("/api/debug/upstream", params=_route_params(mode="ebike"))
        cached = client.get("/api/cache/stats").json()

    assert resp.status_code == 200
    assert resp.json() == {"status": "1", "raw": True, "mode": "ebike"}
    assert cached["size"] == 0


def test_debug_upstream_failure(failing_upstream) -> None:
    with TestClient(app) as client:
        resp = client.get("/api/debug/upstream", params=_route_params())
    assert resp.status_code == 502
    assert resp.json()["reason_code"] == "upstream_timeout"


def test_debug_upstream_disabled(success_upstream, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings, "debug_upstream_enabled", False)
    with TestClient(app) as client:
        resp = client.get("/api/debug/upstream", params=_route_params())
    assert resp.status_code == 404
    assert resp.json()["reason_code"] == "upstream_debug_disabled"
    assert success_upstream.calls == 0


def test_health_and_metrics(success_upstream) -> None:
    with TestClient(app) as client:
        assert client.get("/health").json() == {"status": "ok"}
        client.get("/api/route", params=_route_params())
        client.get("/api/route", params={"mode": "driving"})
        metrics = client.get("/metrics").json()

    route_stats = metrics["endpoints"]["GET /api/route"]
    assert route_stats["request_count"] == 2
    assert route_stats["error_count"] == 1
    assert metrics["endpoints"]["GET /health"]["request_count"] == 1
