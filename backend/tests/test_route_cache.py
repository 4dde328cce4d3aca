from __future__ import annotations

from route_proxy.domain import ResultStatus, RouteResult, TravelMode
from route_proxy.route_cache import RouteCacheStore


class _Clock:
    def __init__(self, now: float = 500.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def _result(cost: float = 1.0) -> RouteResult:
    return RouteResult(
        status=ResultStatus.OK,
        message="OK",
        mode=TravelMode.WALKING,
        distance_km=1.0,
        duration_minutes=12,
        cost=cost,
        available=True,
    )


def test_route_cache_hit_and_miss_counters() -> None:
    cache = RouteCacheStore(ttl_s=60, max_entries=10)
    assert cache.get("missing") is None

    value = _result()
    cache.set("k", value)
    assert cache.get("k") is value

    stats = cache.snapshot()
    assert stats["hits"] == 1
    assert stats["misses"] == 1
    assert stats["size"] == 1


def test_route_cache_expires_lazily_on_read() -> None:
    clock = _Clock()
    cache = RouteCacheStore(ttl_s=300, max_entries=10, clock=clock)
    cache.set("k", _result())

    clock.now += 299.9
    assert cache.get("k") is not None

    clock.now += 0.1
    assert cache.get("k") is None
    stats = cache.snapshot()
    assert stats["expirations"] == 1
    assert stats["size"] == 0


def test_route_cache_set_restarts_ttl() -> None:
    clock = _Clock()
    cache = RouteCacheStore(ttl_s=10, max_entries=10, clock=clock)
    cache.set("k", _result(1.0))
    clock.now += 8
    cache.set("k", _result(2.0))
    clock.now += 8
    hit = cache.get("k")
    assert hit is not None
    assert hit.cost == 2.0


def test_route_cache_sweep_removes_only_stale_entries() -> None:
    clock = _Clock()
    cache = RouteCacheStore(ttl_s=30, max_entries=10, clock=clock)
    cache.set("old", _result())
    clock.now += 20
    cache.set("new", _result())
    clock.now += 15

    assert cache.sweep() == 1
    assert len(cache) == 1
    assert cache.get("new") is not None


def test_route_cache_evicts_oldest_beyond_max_entries() -> None:
    cache = RouteCacheStore(ttl_s=60, max_entries=2)
    cache.set("a", _result())
    cache.set("b", _result())
    cache.set("c", _result())

    assert cache.get("a") is None
    assert cache.get("b") is not None
    assert cache.get("c") is not None
    assert cache.snapshot()["evictions"] == 1


def test_route_cache_zero_ttl_never_serves() -> None:
    cache = RouteCacheStore(ttl_s=0, max_entries=10)
    cache.set("k", _result())
    assert cache.get("k") is None


def test_route_cache_clear() -> None:
    cache = RouteCacheStore(ttl_s=60, max_entries=10)
    cache.set("a", _result())
    cache.set("b", _result())
    assert cache.clear() == 2
    assert len(cache) == 0
    assert cache.snapshot()["ttl_s"] == 60
