from __future__ import annotations

import asyncio

import pytest

from route_proxy.domain import CongestionRange, RouteResult, TravelMode
from route_proxy.pricing_store import PricingStateStore
from route_proxy.route_cache import RouteCacheStore
from route_proxy.sweeper import run_sweeps, sweep_once


class _Stop(Exception):
    pass


class _Clock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def _stores(clock: _Clock) -> tuple[RouteCacheStore, PricingStateStore]:
    cache = RouteCacheStore(ttl_s=10, max_entries=10, clock=clock)
    pricing = PricingStateStore(ttl_s=20, clock=clock)
    return cache, pricing


def test_sweep_once_reports_removed_counts() -> None:
    clock = _Clock()
    cache, pricing = _stores(clock)
    cache.set("k", RouteResult.unavailable(TravelMode.WALKING, "none"))
    pricing.get_or_create("s", CongestionRange.MID)

    clock.now = 10
    assert sweep_once(cache, pricing) == {"route_cache_removed": 1, "sessions_removed": 0}

    clock.now = 20
    assert sweep_once(cache, pricing) == {"route_cache_removed": 0, "sessions_removed": 1}


def test_run_sweeps_loops_on_interval() -> None:
    clock = _Clock()
    cache, pricing = _stores(clock)
    delays: list[float] = []

    async def fake_sleep(delay: float) -> None:
        delays.append(delay)
        clock.now += delay
        cache.set(f"k{len(delays)}", RouteResult.unavailable(TravelMode.DRIVING, "none"))
        if len(delays) == 3:
            raise _Stop

    with pytest.raises(_Stop):
        asyncio.run(run_sweeps(cache, pricing, interval_s=15, sleep=fake_sleep))

    assert delays == [15, 15, 15]
    # Second pass dropped the entry written during the first wait.
    assert cache.snapshot()["expirations"] == 1


class _FlakyCache(RouteCacheStore):
    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self.sweeps = 0

    def sweep(self) -> int:
        self.sweeps += 1
        if self.sweeps == 1:
            raise RuntimeError("disk full")
        return super().sweep()


def test_run_sweeps_survives_a_failed_pass() -> None:
    clock = _Clock()
    cache = _FlakyCache(ttl_s=10, max_entries=10, clock=clock)
    pricing = PricingStateStore(ttl_s=20, clock=clock)
    pricing.get_or_create("s", CongestionRange.LOW)
    delays: list[float] = []

    async def fake_sleep(delay: float) -> None:
        delays.append(delay)
        clock.now += delay
        if len(delays) == 3:
            raise _Stop

    with pytest.raises(_Stop):
        asyncio.run(run_sweeps(cache, pricing, interval_s=15, sleep=fake_sleep))

    assert cache.sweeps == 2
    assert pricing.snapshot()["size"] == 0
