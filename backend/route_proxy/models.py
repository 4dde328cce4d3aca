from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field

from .domain import RouteResult
from .errors import normalize_reason_code


class RouteInfo(BaseModel):
    status: Literal["ok", "fail"]
    message: str
    mode: str
    distance_km: float = Field(..., ge=0)
    duration_minutes: int = Field(..., ge=0)
    cost: float = Field(..., ge=0)
    cost_without_congestion: float = Field(..., ge=0)
    congestion_unit_price: float = Field(..., ge=0)
    carbon_grams: int = Field(..., ge=0)
    calories: int = Field(..., ge=0)
    available: bool
    toll_cost: float = Field(default=0.0, ge=0)
    congestion_base_price: float = Field(default=0.0, ge=0)

    @classmethod
    def from_result(cls, result: RouteResult) -> "RouteInfo":
        return cls(**result.route_info())


class RouteEnvelope(BaseModel):
    """Wire format of every /api/route answer, success or failure.

    ``status`` follows the provider convention: "1" ok, "0" failure.
    """

    status: Literal["1", "0"]
    info: str
    type: str = ""
    route_info: RouteInfo | None = None
    reason_code: str | None = None

    @classmethod
    def ok(cls, result: RouteResult) -> "RouteEnvelope":
        return cls(
            status="1",
            info=result.message,
            type=result.mode.value,
            route_info=RouteInfo.from_result(result),
        )

    @classmethod
    def fail(cls, info: str, *, reason_code: str, mode: str | None = None) -> "RouteEnvelope":
        return cls(
            status="0",
            info=info,
            type=mode or "",
            reason_code=normalize_reason_code(reason_code),
        )

    def to_payload(self) -> dict[str, Any]:
        data = self.model_dump()
        if data["reason_code"] is None:
            data.pop("reason_code")
        return data


class CacheStatsResponse(BaseModel):
    size: int
    hits: int
    misses: int
    evictions: int
    expirations: int
    ttl_s: int
    max_entries: int


class CacheClearResponse(BaseModel):
    cleared: int
    sessions_cleared: int = 0


class StatusResponse(BaseModel):
    service: str
    status: Literal["running"] = "running"
    traffic: dict[str, Any]
    cache: CacheStatsResponse
    sessions: dict[str, int]
    upstream: dict[str, Any]
