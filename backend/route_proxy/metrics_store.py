from __future__ import annotations

import time
from collections import Counter
from dataclasses import dataclass, field
from datetime import UTC, datetime
from threading import Lock


def _status_class(status_code: int) -> str:
    return f"{status_code // 100}xx"


@dataclass
class EndpointStats:
    request_count: int = 0
    error_count: int = 0
    total_duration_ms: float = 0.0
    max_duration_ms: float = 0.0
    status_classes: Counter[str] = field(default_factory=Counter)

    def add(self, duration_ms: float, status_code: int) -> None:
        self.request_count += 1
        if status_code >= 400:
            self.error_count += 1
        self.total_duration_ms += duration_ms
        self.max_duration_ms = max(self.max_duration_ms, duration_ms)
        self.status_classes[_status_class(status_code)] += 1

    def as_dict(self) -> dict[str, object]:
        avg = self.total_duration_ms / self.request_count if self.request_count else 0.0
        return {
            "request_count": self.request_count,
            "error_count": self.error_count,
            "avg_duration_ms": round(avg, 3),
            "max_duration_ms": round(self.max_duration_ms, 3),
            "status_classes": dict(sorted(self.status_classes.items())),
        }


class MetricsStore:
    """Per-endpoint HTTP counters, fed by the app's timing middleware.

    Endpoints are keyed as ``"<METHOD> <path>"``. A status of 400 or above
    counts as an error, so JSONP failures (always 200) are counted by the
    pipeline counters in ``TrafficStats`` instead.
    """

    def __init__(self) -> None:
        self._lock = Lock()
        self._created_at = datetime.now(UTC).isoformat()
        self._endpoints: dict[str, EndpointStats] = {}

    def record(self, endpoint: str, *, duration_ms: float, status_code: int) -> None:
        name = endpoint.strip() or "unknown"
        with self._lock:
            self._endpoints.setdefault(name, EndpointStats()).add(max(float(duration_ms), 0.0), status_code)

    def snapshot(self) -> dict[str, object]:
        with self._lock:
            endpoints = {name: self._endpoints[name].as_dict() for name in sorted(self._endpoints)}
            return {
                "created_at": self._created_at,
                "total_requests": sum(s.request_count for s in self._endpoints.values()),
                "total_errors": sum(s.error_count for s in self._endpoints.values()),
                "endpoints": endpoints,
            }


class TrafficStats:
    """Counters for the route pipeline (cache effectiveness, upstream load, errors)."""

    COUNTERS = (
        "total_requests",
        "cache_hits",
        "cache_misses",
        "upstream_calls",
        "validation_errors",
        "upstream_errors",
        "internal_errors",
    )

    def __init__(self) -> None:
        self._lock = Lock()
        self._started = time.monotonic()
        self._started_at = datetime.now(UTC).isoformat()
        self._counts: Counter[str] = Counter()

    def incr(self, counter: str, amount: int = 1) -> None:
        if counter not in self.COUNTERS:
            raise KeyError(f"unknown traffic counter: {counter}")
        with self._lock:
            self._counts[counter] += amount

    def snapshot(self) -> dict[str, object]:
        with self._lock:
            counts = {name: self._counts[name] for name in self.COUNTERS}
        lookups = counts["cache_hits"] + counts["cache_misses"]
        return {
            "started_at": self._started_at,
            "uptime_s": round(time.monotonic() - self._started, 1),
            **counts,
            "cache_hit_rate": round(counts["cache_hits"] / lookups, 4) if lookups else 0.0,
            "error_count": counts["validation_errors"]
            + counts["upstream_errors"]
            + counts["internal_errors"],
        }
