from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

from .logging_utils import log_event, log_exception
from .pricing_store import PricingStateStore
from .route_cache import RouteCacheStore


def sweep_once(cache: RouteCacheStore, pricing: PricingStateStore) -> dict[str, int]:
    removed = {"route_cache_removed": cache.sweep(), "sessions_removed": pricing.sweep()}
    if any(removed.values()):
        log_event("cache_sweep", **removed)
    return removed


async def run_sweeps(
    cache: RouteCacheStore,
    pricing: PricingStateStore,
    *,
    interval_s: float,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> None:
    """Sweep both stores every ``interval_s`` until cancelled.

    Runs on the event loop between requests; each sweep holds a store lock only
    for one pass over that store. A failed pass is logged and the next one runs
    on schedule.
    """
    while True:
        await sleep(interval_s)
        try:
            sweep_once(cache, pricing)
        except Exception:
            log_exception("cache_sweep_failed")
