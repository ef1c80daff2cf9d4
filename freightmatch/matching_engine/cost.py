"""
Trip cost estimation: fuel, driver, maintenance and tolls.

All money is ``Decimal`` quantised to cents with ROUND_HALF_UP.
Distances come in as floats (they are estimates) and are converted
once at the boundary.
"""

from __future__ import annotations

import logging
import math
from dataclasses import asdict, dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from freightmatch.matching_engine.config import DEFAULT_CONFIG, MatchingConfig, type_key, bracket_value
from freightmatch.matching_engine.distance import DistanceEstimator, Point
from freightmatch.matching_engine.errors import InvalidInput, UndefinedCostPerMile

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")
ZERO = Decimal("0")


def _money(value: Decimal) -> Decimal:
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


def _decimal(value, name: str) -> Decimal:
    """Convert *value* to a finite, non-negative Decimal or raise InvalidInput."""
    try:
        result = Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidInput(f"{name} must be a number, got {value!r}")
    if not result.is_finite() or result < 0:
        raise InvalidInput(f"{name} must be a non-negative number, got {value!r}")
    return result


@dataclass(frozen=True)
class CostBreakdown:
    distance_miles: Decimal
    driving_hours: Decimal
    vehicle_type: str
    fuel_price_per_gallon: Decimal
    driver_rate_per_mile: Decimal
    fuel_cost: Decimal
    driver_cost: Decimal
    maintenance_cost: Decimal
    toll_cost: Decimal
    total_operational_cost: Decimal
    profit_margin_percentage: Decimal
    profit_margin_amount: Decimal
    total_cost_with_margin: Decimal

    def cost_per_mile(self) -> Decimal:
        """Marked-up cost per mile; undefined for a zero-distance trip."""
        if self.distance_miles == 0:
            raise UndefinedCostPerMile("cost per mile is undefined for zero distance")
        return _money(self.total_cost_with_margin / self.distance_miles)

    def to_dict(self) -> dict:
        data = asdict(self)
        try:
            data["cost_per_mile"] = self.cost_per_mile()
        except UndefinedCostPerMile:
            pass
        return data


@dataclass(frozen=True)
class RevenueEstimate:
    gross_revenue: Decimal
    deadhead_miles: float
    estimated_costs: Decimal | None = None
    net_revenue: Decimal | None = None
    profit_margin: Decimal | None = None
    rate_per_mile: Decimal | None = None
    market_rate_per_mile: Decimal | None = None
    market_comparison: str | None = None

    def to_dict(self) -> dict:
        return {k: v for k, v in asdict(self).items() if v is not None}


class CostEstimator:
    """Operational cost model for a single trip."""

    def __init__(self, config: MatchingConfig | None = None, distance: DistanceEstimator | None = None):
        self.config = config or DEFAULT_CONFIG
        self.distance = distance or DistanceEstimator(config=self.config)

    def estimate(
        self,
        distance_miles,
        vehicle_type=None,
        fuel_price_per_gallon=None,
        driver_rate_per_mile=None,
    ) -> CostBreakdown:
        """
        Estimate the cost of driving *distance_miles* with *vehicle_type*.

        Unknown vehicle types fall back to the dry-van tables.  Raises
        InvalidInput for negative or non-numeric inputs.
        """
        cfg = self.config
        miles = _decimal(distance_miles, "distance_miles")
        fuel_price = _decimal(
            cfg.default_fuel_price if fuel_price_per_gallon is None else fuel_price_per_gallon,
            "fuel_price_per_gallon",
        )
        driver_rate = _decimal(
            cfg.default_driver_rate if driver_rate_per_mile is None else driver_rate_per_mile,
            "driver_rate_per_mile",
        )
        vtype = type_key(vehicle_type) or cfg.default_vehicle_type

        hours = miles / Decimal(str(cfg.average_speed_mph))

        fuel_cost = _money(miles / Decimal(str(cfg.fuel_mpg(vtype))) * fuel_price)
        driver_cost = _money(miles * driver_rate + self._overnight_allowance(hours))
        maintenance_cost = _money(miles * cfg.maintenance_rate(vtype))
        toll_cost = _money(miles * bracket_value(cfg.toll_brackets, float(miles)))

        operational = fuel_cost + driver_cost + maintenance_cost + toll_cost
        margin_amount = _money(operational * cfg.profit_margin)

        return CostBreakdown(
            distance_miles=miles,
            driving_hours=hours.quantize(CENTS, rounding=ROUND_HALF_UP),
            vehicle_type=vtype,
            fuel_price_per_gallon=fuel_price,
            driver_rate_per_mile=driver_rate,
            fuel_cost=fuel_cost,
            driver_cost=driver_cost,
            maintenance_cost=maintenance_cost,
            toll_cost=toll_cost,
            total_operational_cost=operational,
            profit_margin_percentage=(cfg.profit_margin * 100).quantize(Decimal("0.1")),
            profit_margin_amount=margin_amount,
            total_cost_with_margin=_money(operational * (1 + cfg.profit_margin)),
        )

    def _overnight_allowance(self, driving_hours: Decimal) -> Decimal:
        """One allowance per started rest block beyond the first driving shift."""
        cfg = self.config
        threshold = Decimal(str(cfg.overnight_threshold_hours))
        if driving_hours <= threshold:
            return ZERO
        nights = math.ceil((driving_hours - threshold) / Decimal(str(cfg.overnight_block_hours)))
        return cfg.overnight_allowance * nights

    def estimate_route(
        self,
        origin: Point | None,
        destination: Point | None,
        vehicle_type=None,
        fuel_price_per_gallon=None,
        driver_rate_per_mile=None,
    ) -> CostBreakdown:
        """Cost of the estimated road distance between two points."""
        route = self.distance.route(origin, destination)
        return self.estimate(route.miles, vehicle_type, fuel_price_per_gallon, driver_rate_per_mile)

    def estimate_revenue(
        self,
        gross_revenue,
        haul_miles: float | None,
        deadhead_miles: float | None = None,
        vehicle_type=None,
    ) -> RevenueEstimate:
        """
        Net revenue a carrier can expect from a load.

        Costs cover haul plus deadhead miles at operational cost (no
        markup).  Without a haul distance only the gross is reported.
        """
        gross = _decimal(gross_revenue, "gross_revenue")
        deadhead = float(deadhead_miles or 0.0)
        if not haul_miles:
            return RevenueEstimate(gross_revenue=gross, deadhead_miles=deadhead)

        breakdown = self.estimate(float(haul_miles) + deadhead, vehicle_type)
        costs = breakdown.total_operational_cost
        net = gross - costs
        margin = _money(net / gross * 100) if gross > 0 else ZERO

        rate_per_mile = _money(gross / Decimal(str(haul_miles)))
        market = self.config.market_rate_per_mile
        diff_pct = (rate_per_mile - market) / market * 100
        if diff_pct >= 10:
            comparison = "above_market"
        elif diff_pct >= -10:
            comparison = "market_rate"
        else:
            comparison = "below_market"

        return RevenueEstimate(
            gross_revenue=gross,
            deadhead_miles=deadhead,
            estimated_costs=costs,
            net_revenue=net,
            profit_margin=margin,
            rate_per_mile=rate_per_mile,
            market_rate_per_mile=market,
            market_comparison=comparison,
        )
