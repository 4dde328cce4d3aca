from __future__ import annotations

import random
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass
from threading import Lock

from .domain import CongestionRange

TierBounds = tuple[float, float, float, float]

DEFAULT_TIER_BOUNDS: TierBounds = (0.0, 0.5, 1.0, 1.5)


@dataclass
class SessionPricingRecord:
    session_id: str
    congestion_range: CongestionRange
    base_price: float
    created_at: float


def validate_tier_bounds(bounds: TierBounds) -> TierBounds:
    values = tuple(float(b) for b in bounds)
    if len(values) != 4:
        raise ValueError("congestion tier bounds need exactly 4 edges")
    if values[0] < 0.0 or any(lo >= hi for lo, hi in zip(values, values[1:])):
        raise ValueError("congestion tier bounds must be non-negative and strictly increasing")
    return values  # type: ignore[return-value]


class PricingStateStore:
    """Per-session congestion price baselines.

    A record lives for ``ttl_s`` from creation; reads never extend it. Records
    are dropped by ``sweep()`` (run on a timer) or replaced when read after
    expiry. Anonymous callers (no session id) get a fresh draw every time.
    """

    def __init__(
        self,
        *,
        ttl_s: int,
        tier_bounds: TierBounds = DEFAULT_TIER_BOUNDS,
        max_records: int = 16384,
        rng: random.Random | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl_s = max(0, int(ttl_s))
        self._bounds = validate_tier_bounds(tier_bounds)
        self._max_records = max(1, int(max_records))
        self._rng = rng or random.Random()
        self._clock = clock
        self._lock = Lock()
        self._records: OrderedDict[tuple[str, CongestionRange], SessionPricingRecord] = OrderedDict()

        self._created = 0
        self._reused = 0
        self._expired = 0

    def tier_interval(self, congestion_range: CongestionRange) -> tuple[float, float] | None:
        b = self._bounds
        intervals = {
            CongestionRange.LOW: (b[0], b[1]),
            CongestionRange.MID: (b[1], b[2]),
            CongestionRange.HIGH: (b[2], b[3]),
            CongestionRange.NONE: None,
        }
        return intervals[congestion_range]

    def generate_baseline(self, congestion_range: CongestionRange) -> float:
        interval = self.tier_interval(congestion_range)
        if interval is None:
            return 0.0
        lo, hi = interval
        with self._lock:
            u = self._rng.random()
        # random() is in [0, 1), so this lands in (lo, hi].
        return hi - u * (hi - lo)

    def _is_expired(self, record: SessionPricingRecord, now: float) -> bool:
        return (now - record.created_at) >= self._ttl_s

    def get_or_create(self, session_id: str | None, congestion_range: CongestionRange) -> float:
        if congestion_range is CongestionRange.NONE:
            return 0.0
        if not session_id:
            return self.generate_baseline(congestion_range)

        key = (session_id, congestion_range)
        now = self._clock()
        with self._lock:
            record = self._records.get(key)
            if record is not None and not self._is_expired(record, now):
                self._reused += 1
                return record.base_price

        base_price = self.generate_baseline(congestion_range)
        with self._lock:
            # A concurrent request may have stored one meanwhile; keep the first.
            record = self._records.get(key)
            if record is not None and not self._is_expired(record, now):
                self._reused += 1
                return record.base_price
            self._store(key, base_price, now)
            self._created += 1
        return base_price

    def adopt(self, session_id: str | None, congestion_range: CongestionRange, base_price: float) -> float:
        """Bind a baseline the session is being served through a shared cache entry.

        A session that already holds a live record keeps it. Returns the
        baseline the session is bound to afterwards; anonymous callers and the
        ``none`` range get ``base_price`` back unchanged.
        """
        if not session_id or congestion_range is CongestionRange.NONE:
            return float(base_price)
        key = (session_id, congestion_range)
        now = self._clock()
        with self._lock:
            record = self._records.get(key)
            if record is not None and not self._is_expired(record, now):
                self._reused += 1
                return record.base_price
            self._store(key, float(base_price), now)
            self._created += 1
            return float(base_price)

    def _store(self, key: tuple[str, CongestionRange], base_price: float, now: float) -> None:
        self._records.pop(key, None)
        self._records[key] = SessionPricingRecord(
            session_id=key[0],
            congestion_range=key[1],
            base_price=base_price,
            created_at=now,
        )
        while len(self._records) > self._max_records:
            self._records.popitem(last=False)

    def sweep(self) -> int:
        now = self._clock()
        with self._lock:
            stale = [k for k, rec in self._records.items() if self._is_expired(rec, now)]
            for k in stale:
                del self._records[k]
            self._expired += len(stale)
            return len(stale)

    def clear(self) -> int:
        with self._lock:
            cleared = len(self._records)
            self._records.clear()
            return cleared

    def snapshot(self) -> dict[str, int]:
        with self._lock:
            return {
                "size": len(self._records),
                "created": self._created,
                "reused": self._reused,
                "expired": self._expired,
                "ttl_s": self._ttl_s,
                "max_records": self._max_records,
            }
