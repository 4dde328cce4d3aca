"""Domain value objects shared by the pricing, caching and upstream layers."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any


class TravelMode(str, Enum):
    DRIVING = "driving"
    TAXI = "taxi"
    TRANSIT = "transit"
    WALKING = "walking"
    BICYCLING = "bicycling"
    EBIKE = "ebike"


class PowerType(str, Enum):
    FUEL = "fuel"
    HYBRID = "hybrid"
    ELECTRIC = "electric"


class CongestionRange(str, Enum):
    LOW = "low"
    MID = "mid"
    HIGH = "high"
    NONE = "none"


class ResultStatus(str, Enum):
    OK = "ok"
    FAIL = "fail"


@dataclass(frozen=True)
class RouteQuery:
    """One validated route request.

    Coordinates are kept in canonical ``"lng,lat"`` form (six decimals) so that
    equivalent spellings of the same point share a cache entry.
    """

    origin: str
    destination: str
    mode: TravelMode
    power_type: PowerType = PowerType.FUEL
    congestion_range: CongestionRange = CongestionRange.NONE
    has_congestion_quota: bool = False
    session_id: str | None = None

    def cache_key(self) -> str:
        # No session_id: sessions share cached answers.
        return "|".join(
            (
                self.origin,
                self.destination,
                self.mode.value,
                self.power_type.value,
                self.congestion_range.value,
                "quota" if self.has_congestion_quota else "no_quota",
            )
        )


@dataclass(frozen=True)
class RawRouteSummary:
    distance_meters: float
    duration_seconds: float
    fare_amount: float | None = None
    toll_amount: float | None = None
    segment_count: int | None = None
    walking_distance_meters: float | None = None


@dataclass(frozen=True)
class RouteResult:
    status: ResultStatus
    message: str
    mode: TravelMode
    distance_km: float = 0.0
    duration_minutes: int = 0
    cost: float = 0.0
    cost_without_congestion: float = 0.0
    congestion_unit_price: float = 0.0
    carbon_grams: int = 0
    calories: int = 0
    available: bool = False
    toll_cost: float = 0.0
    congestion_base_price: float = 0.0
    # Unrounded inputs for repricing congestion on a shared cache entry.
    exact_distance_km: float = field(default=0.0, repr=False)
    exact_cost_without_congestion: float = field(default=0.0, repr=False)

    @classmethod
    def unavailable(cls, mode: TravelMode, message: str) -> "RouteResult":
        return cls(status=ResultStatus.OK, message=message, mode=mode, available=False)

    def route_info(self) -> dict[str, Any]:
        data = asdict(self)
        del data["exact_distance_km"], data["exact_cost_without_congestion"]
        data["status"] = self.status.value
        data["mode"] = self.mode.value
        return data
