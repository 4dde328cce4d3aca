from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_out_dir() -> str:
    # Keep runtime artifacts (logs) in backend/out by default.
    return str(Path(__file__).resolve().parents[1] / "out")


DrivingCostMethod = Literal["fuel_depreciation", "per_km"]


class Settings(BaseSettings):
    """Validated settings (env-driven), keeping pricing constants out of code."""

    model_config = SettingsConfigDict(
        # Support both "repo root/.env" and "backend/.env" (local dev)
        env_file=(".env", "../.env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    app_name: str = Field(default="Route Cost Proxy", alias="APP_NAME")
    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=3000, ge=1, le=65535, alias="PORT")
    out_dir: str = Field(default_factory=_default_out_dir, alias="OUT_DIR")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    cors_allow_origins: str = Field(default="*", alias="CORS_ALLOW_ORIGINS")

    # Upstream directions provider
    amap_api_key: str = Field(default="", alias="AMAP_API_KEY")
    amap_base_url: str = Field(default="https://restapi.amap.com", alias="AMAP_BASE_URL")
    transit_city_code: str = Field(default="010", alias="TRANSIT_CITY_CODE")
    upstream_timeout_s: float = Field(default=10.0, gt=0.0, le=120.0, alias="UPSTREAM_TIMEOUT_S")
    upstream_max_retries: int = Field(default=2, ge=0, le=10, alias="UPSTREAM_MAX_RETRIES")
    upstream_retry_delay_s: float = Field(default=1.0, ge=0.0, le=30.0, alias="UPSTREAM_RETRY_DELAY_S")
    debug_upstream_enabled: bool = Field(default=True, alias="DEBUG_UPSTREAM_ENABLED")

    # In-memory stores
    route_cache_ttl_s: int = Field(default=300, ge=0, alias="ROUTE_CACHE_TTL_S")
    route_cache_max_entries: int = Field(default=4096, ge=1, alias="ROUTE_CACHE_MAX_ENTRIES")
    session_ttl_s: int = Field(default=1800, ge=0, alias="SESSION_TTL_S")
    session_max_records: int = Field(default=16384, ge=1, alias="SESSION_MAX_RECORDS")
    sweep_interval_s: float = Field(default=60.0, gt=0.0, alias="SWEEP_INTERVAL_S")

    # Private car running costs
    driving_cost_method: DrivingCostMethod = Field(
        default="fuel_depreciation", alias="DRIVING_COST_METHOD"
    )
    fuel_price_per_l: float = Field(default=7.79, ge=0.0, alias="FUEL_PRICE_PER_L")
    fuel_consumption_l_per_100km: float = Field(
        default=8.0, ge=0.0, alias="FUEL_CONSUMPTION_L_PER_100KM"
    )
    hybrid_consumption_l_per_100km: float = Field(
        default=4.5, ge=0.0, alias="HYBRID_CONSUMPTION_L_PER_100KM"
    )
    electric_consumption_kwh_per_100km: float = Field(
        default=15.0, ge=0.0, alias="ELECTRIC_CONSUMPTION_KWH_PER_100KM"
    )
    electricity_price_per_kwh: float = Field(default=0.6, ge=0.0, alias="ELECTRICITY_PRICE_PER_KWH")
    depreciation_per_km: float = Field(default=0.5, ge=0.0, alias="DEPRECIATION_PER_KM")
    operation_cost_per_km_fuel: float = Field(default=1.1, ge=0.0, alias="OPERATION_COST_PER_KM_FUEL")
    operation_cost_per_km_hybrid: float = Field(
        default=0.8, ge=0.0, alias="OPERATION_COST_PER_KM_HYBRID"
    )
    operation_cost_per_km_electric: float = Field(
        default=0.5, ge=0.0, alias="OPERATION_COST_PER_KM_ELECTRIC"
    )

    # Congestion pricing: tier edges low=(b0,b1], mid=(b1,b2], high=(b2,b3]
    # Env value is a JSON array, e.g. CONGESTION_TIER_BOUNDS=[0,0.5,1.0,1.5]
    congestion_tier_bounds: tuple[float, float, float, float] = Field(
        default=(0.0, 0.5, 1.0, 1.5), alias="CONGESTION_TIER_BOUNDS"
    )
    congestion_multiplier_fuel: float = Field(default=1.0, ge=0.0, alias="CONGESTION_MULTIPLIER_FUEL")
    congestion_multiplier_hybrid: float = Field(
        default=0.7, ge=0.0, alias="CONGESTION_MULTIPLIER_HYBRID"
    )
    congestion_multiplier_electric: float = Field(
        default=0.5, ge=0.0, alias="CONGESTION_MULTIPLIER_ELECTRIC"
    )

    # Per-mode constants
    taxi_fare_adjustment_factor: float = Field(
        default=0.7, gt=0.0, le=1.0, alias="TAXI_FARE_ADJUSTMENT_FACTOR"
    )
    transit_default_fare: float = Field(default=3.0, ge=0.0, alias="TRANSIT_DEFAULT_FARE")
    bicycle_wear_cost_per_km: float = Field(default=0.0, ge=0.0, alias="BICYCLE_WEAR_COST_PER_KM")
    ebike_speed_factor: float = Field(default=0.6, gt=0.0, le=1.0, alias="EBIKE_SPEED_FACTOR")
    ebike_cost_per_km: float = Field(default=0.1, ge=0.0, alias="EBIKE_COST_PER_KM")
    ebike_calories_per_km: float = Field(default=0.0, ge=0.0, alias="EBIKE_CALORIES_PER_KM")

    @model_validator(mode="after")
    def _check_pricing_ordering(self) -> "Settings":
        bounds = self.congestion_tier_bounds
        if bounds[0] < 0.0:
            raise ValueError("congestion tier bounds must be non-negative")
        if any(lo >= hi for lo, hi in zip(bounds, bounds[1:])):
            raise ValueError("congestion tier bounds must be strictly increasing")
        if self.driving_cost_method == "per_km" and not (
            self.operation_cost_per_km_fuel
            > self.operation_cost_per_km_hybrid
            > self.operation_cost_per_km_electric
        ):
            raise ValueError("per-km operation costs must satisfy fuel > hybrid > electric")
        return self


settings = Settings()
