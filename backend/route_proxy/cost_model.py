"""Per-mode cost, emissions and calorie model.

Pure functions only. The congestion baseline is passed in by the caller (it
comes from the session pricing store) so results are deterministic for a
given summary, query and baseline.

Rounding happens once, when the ``RouteResult`` is built; intermediate sums
keep full precision.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, replace

from .domain import (
    PowerType,
    RawRouteSummary,
    ResultStatus,
    RouteQuery,
    RouteResult,
    TravelMode,
)
from .settings import Settings

MONEY_DECIMALS = 2
DISTANCE_DECIMALS = 2

# Emission and energy factors per km travelled.
CAR_CARBON_G_PER_KM = 171.0
TRANSIT_CARBON_G_PER_KM = 30.0
EBIKE_CARBON_G_PER_KM = 5.0
WALKING_KCAL_PER_KM = 65.0
CYCLING_KCAL_PER_KM = 40.0


@dataclass(frozen=True)
class CostParameters:
    driving_cost_method: str = "fuel_depreciation"
    fuel_price_per_l: float = 7.79
    fuel_consumption_l_per_100km: float = 8.0
    hybrid_consumption_l_per_100km: float = 4.5
    electric_consumption_kwh_per_100km: float = 15.0
    electricity_price_per_kwh: float = 0.6
    depreciation_per_km: float = 0.5
    operation_cost_per_km_fuel: float = 1.1
    operation_cost_per_km_hybrid: float = 0.8
    operation_cost_per_km_electric: float = 0.5
    congestion_multiplier_fuel: float = 1.0
    congestion_multiplier_hybrid: float = 0.7
    congestion_multiplier_electric: float = 0.5
    taxi_fare_adjustment_factor: float = 0.7
    transit_default_fare: float = 3.0
    bicycle_wear_cost_per_km: float = 0.0
    ebike_speed_factor: float = 0.6
    ebike_cost_per_km: float = 0.1
    ebike_calories_per_km: float = 0.0

    @classmethod
    def from_settings(cls, s: Settings) -> "CostParameters":
        return cls(
            driving_cost_method=s.driving_cost_method,
            fuel_price_per_l=s.fuel_price_per_l,
            fuel_consumption_l_per_100km=s.fuel_consumption_l_per_100km,
            hybrid_consumption_l_per_100km=s.hybrid_consumption_l_per_100km,
            electric_consumption_kwh_per_100km=s.electric_consumption_kwh_per_100km,
            electricity_price_per_kwh=s.electricity_price_per_kwh,
            depreciation_per_km=s.depreciation_per_km,
            operation_cost_per_km_fuel=s.operation_cost_per_km_fuel,
            operation_cost_per_km_hybrid=s.operation_cost_per_km_hybrid,
            operation_cost_per_km_electric=s.operation_cost_per_km_electric,
            congestion_multiplier_fuel=s.congestion_multiplier_fuel,
            congestion_multiplier_hybrid=s.congestion_multiplier_hybrid,
            congestion_multiplier_electric=s.congestion_multiplier_electric,
            taxi_fare_adjustment_factor=s.taxi_fare_adjustment_factor,
            transit_default_fare=s.transit_default_fare,
            bicycle_wear_cost_per_km=s.bicycle_wear_cost_per_km,
            ebike_speed_factor=s.ebike_speed_factor,
            ebike_cost_per_km=s.ebike_cost_per_km,
            ebike_calories_per_km=s.ebike_calories_per_km,
        )


DEFAULT_COST_PARAMETERS = CostParameters()


def _money(value: float) -> float:
    return round(float(value), MONEY_DECIMALS)


def _km(value: float) -> float:
    return round(float(value), DISTANCE_DECIMALS)


def _minutes(duration_s: float) -> int:
    return int(round(duration_s / 60.0))


def _usable(summary: RawRouteSummary) -> bool:
    d = summary.distance_meters
    t = summary.duration_seconds
    return math.isfinite(d) and math.isfinite(t) and d > 0 and t > 0


def congestion_multiplier(power_type: PowerType, params: CostParameters) -> float:
    multipliers = {
        PowerType.FUEL: params.congestion_multiplier_fuel,
        PowerType.HYBRID: params.congestion_multiplier_hybrid,
        PowerType.ELECTRIC: params.congestion_multiplier_electric,
    }
    return multipliers[power_type]


def energy_cost_per_km(power_type: PowerType, params: CostParameters) -> float:
    per_100km = {
        PowerType.FUEL: params.fuel_consumption_l_per_100km * params.fuel_price_per_l,
        PowerType.HYBRID: params.hybrid_consumption_l_per_100km * params.fuel_price_per_l,
        PowerType.ELECTRIC: params.electric_consumption_kwh_per_100km * params.electricity_price_per_kwh,
    }
    return per_100km[power_type] / 100.0


def operation_cost(distance_km: float, power_type: PowerType, params: CostParameters) -> float:
    """Running cost of a private car over ``distance_km``.

    ``fuel_depreciation`` prices energy use plus a flat depreciation rate;
    ``per_km`` uses a single all-in rate per power train.
    """
    if params.driving_cost_method == "per_km":
        rates = {
            PowerType.FUEL: params.operation_cost_per_km_fuel,
            PowerType.HYBRID: params.operation_cost_per_km_hybrid,
            PowerType.ELECTRIC: params.operation_cost_per_km_electric,
        }
        return distance_km * rates[power_type]

    energy = distance_km * energy_cost_per_km(power_type, params)
    return energy + distance_km * params.depreciation_per_km


def _congestion(
    distance_km: float, unit_price: float, *, has_quota: bool
) -> float:
    return 0.0 if has_quota else distance_km * unit_price


def congestion_unit_price(query: RouteQuery, base_price: float, params: CostParameters) -> float:
    # Ride-hail fleet is priced as hybrid regardless of the requested power train.
    power_type = PowerType.HYBRID if query.mode is TravelMode.TAXI else query.power_type
    return base_price * congestion_multiplier(power_type, params)


def _priced(
    query: RouteQuery,
    summary: RawRouteSummary,
    base_price: float,
    base_cost: float,
    params: CostParameters,
) -> RouteResult:
    km = summary.distance_meters / 1000.0
    unit = congestion_unit_price(query, base_price, params)
    congestion = _congestion(km, unit, has_quota=query.has_congestion_quota)
    return RouteResult(
        status=ResultStatus.OK,
        message="OK",
        mode=query.mode,
        distance_km=_km(km),
        duration_minutes=_minutes(summary.duration_seconds),
        cost=_money(base_cost + congestion),
        cost_without_congestion=_money(base_cost),
        congestion_unit_price=_money(unit),
        carbon_grams=round(km * CAR_CARBON_G_PER_KM),
        calories=0,
        available=True,
        toll_cost=_money(summary.toll_amount or 0.0),
        congestion_base_price=base_price,
        exact_distance_km=km,
        exact_cost_without_congestion=base_cost,
    )


def _driving(
    query: RouteQuery, summary: RawRouteSummary, base_price: float, params: CostParameters
) -> RouteResult:
    km = summary.distance_meters / 1000.0
    return _priced(query, summary, base_price, operation_cost(km, query.power_type, params), params)


def _taxi(
    query: RouteQuery, summary: RawRouteSummary, base_price: float, params: CostParameters
) -> RouteResult:
    fare = summary.fare_amount
    if fare is None or not math.isfinite(fare) or fare <= 0:
        return RouteResult.unavailable(query.mode, "Ride-hail fare not reported for this route")
    return _priced(query, summary, base_price, fare * params.taxi_fare_adjustment_factor, params)


def reprice_congestion(
    result: RouteResult,
    query: RouteQuery,
    base_price: float,
    params: CostParameters = DEFAULT_COST_PARAMETERS,
) -> RouteResult:
    """Return ``result`` with its congestion fields recomputed for ``base_price``.

    Distance, duration, emissions and the congestion-free cost are kept, so a
    cached answer can be served to another session at that session's price.
    """
    if not result.available or result.congestion_base_price == base_price:
        return result
    unit = congestion_unit_price(query, base_price, params)
    congestion = _congestion(result.exact_distance_km, unit, has_quota=query.has_congestion_quota)
    return replace(
        result,
        cost=_money(result.exact_cost_without_congestion + congestion),
        congestion_unit_price=_money(unit),
        congestion_base_price=base_price,
    )


def _transit(query: RouteQuery, summary: RawRouteSummary, params: CostParameters) -> RouteResult:
    km = summary.distance_meters / 1000.0
    fare = summary.fare_amount
    cost = fare if fare is not None and math.isfinite(fare) and fare > 0 else params.transit_default_fare
    minutes = _minutes(summary.duration_seconds)
    if minutes <= 0 or _money(cost) <= 0:
        return RouteResult.unavailable(query.mode, "Transit itinerary incomplete")

    walking_km = max(summary.walking_distance_meters or 0.0, 0.0) / 1000.0
    return RouteResult(
        status=ResultStatus.OK,
        message="OK",
        mode=query.mode,
        distance_km=_km(km),
        duration_minutes=minutes,
        cost=_money(cost),
        cost_without_congestion=_money(cost),
        carbon_grams=round(km * TRANSIT_CARBON_G_PER_KM),
        calories=round(walking_km * WALKING_KCAL_PER_KM),
        available=True,
    )


def _walking(query: RouteQuery, summary: RawRouteSummary) -> RouteResult:
    km = summary.distance_meters / 1000.0
    return RouteResult(
        status=ResultStatus.OK,
        message="OK",
        mode=query.mode,
        distance_km=_km(km),
        duration_minutes=_minutes(summary.duration_seconds),
        calories=round(km * WALKING_KCAL_PER_KM),
        available=True,
    )


def _bicycling(query: RouteQuery, summary: RawRouteSummary, params: CostParameters) -> RouteResult:
    km = summary.distance_meters / 1000.0
    cost = km * params.bicycle_wear_cost_per_km
    return RouteResult(
        status=ResultStatus.OK,
        message="OK",
        mode=query.mode,
        distance_km=_km(km),
        duration_minutes=_minutes(summary.duration_seconds),
        cost=_money(cost),
        cost_without_congestion=_money(cost),
        calories=round(km * CYCLING_KCAL_PER_KM),
        available=True,
    )


def ebike_duration_minutes(duration_s: float, speed_factor: float) -> int:
    # Rounded to 6 places first so 20 * 0.6 lands on 12, not 13.
    return math.ceil(round(duration_s / 60.0 * speed_factor, 6))


def _ebike(query: RouteQuery, summary: RawRouteSummary, params: CostParameters) -> RouteResult:
    km = summary.distance_meters / 1000.0
    cost = km * params.ebike_cost_per_km
    return RouteResult(
        status=ResultStatus.OK,
        message="OK",
        mode=query.mode,
        distance_km=_km(km),
        duration_minutes=ebike_duration_minutes(summary.duration_seconds, params.ebike_speed_factor),
        cost=_money(cost),
        cost_without_congestion=_money(cost),
        carbon_grams=round(km * EBIKE_CARBON_G_PER_KM),
        calories=round(km * params.ebike_calories_per_km),
        available=True,
    )


def compute_route_result(
    query: RouteQuery,
    summary: RawRouteSummary | None,
    *,
    congestion_base_price: float = 0.0,
    params: CostParameters = DEFAULT_COST_PARAMETERS,
) -> RouteResult:
    """Turn an upstream summary into the normalized result for ``query.mode``.

    A missing or unusable summary is a legitimate "no route" outcome and comes
    back as ``available=False`` with zeroed numbers; this function never raises
    on upstream data.
    """
    if summary is None or not _usable(summary):
        return RouteResult.unavailable(query.mode, f"No usable {query.mode.value} route returned")

    base = max(float(congestion_base_price), 0.0)
    mode = query.mode
    if mode is TravelMode.DRIVING:
        return _driving(query, summary, base, params)
    if mode is TravelMode.TAXI:
        return _taxi(query, summary, base, params)
    if mode is TravelMode.TRANSIT:
        return _transit(query, summary, params)
    if mode is TravelMode.WALKING:
        return _walking(query, summary)
    if mode is TravelMode.BICYCLING:
        return _bicycling(query, summary, params)
    if mode is TravelMode.EBIKE:
        return _ebike(query, summary, params)
    raise ValueError(f"unsupported travel mode: {mode!r}")
