"""
Matching engine configuration.

All tunables (cost tables, bonus thresholds, rating buckets) live in a
single frozen ``MatchingConfig`` that is injected into the estimators and
the scoring engine.  ``DEFAULT_CONFIG`` holds the stock values;
``MatchingConfig.from_settings`` layers environment overrides on top.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from decimal import Decimal
from types import MappingProxyType
from typing import Mapping

# Miles per gallon by equipment type
FUEL_EFFICIENCY_MPG: Mapping[str, float] = MappingProxyType({
    "dry_van": 6.0,
    "refrigerated": 5.5,   # reefer unit burns extra fuel
    "flatbed": 6.2,
    "step_deck": 5.8,
    "lowboy": 4.5,         # heavy haul
    "tanker": 5.5,
    "container": 6.1,
    "car_carrier": 5.0,
    "specialized": 5.0,
})

# Maintenance cost per mile by equipment type
MAINTENANCE_RATE_PER_MILE: Mapping[str, Decimal] = MappingProxyType({
    "dry_van": Decimal("0.15"),
    "refrigerated": Decimal("0.18"),
    "flatbed": Decimal("0.16"),
    "step_deck": Decimal("0.17"),
    "lowboy": Decimal("0.25"),
    "tanker": Decimal("0.20"),
    "container": Decimal("0.15"),
    "car_carrier": Decimal("0.22"),
    "specialized": Decimal("0.25"),
})

# Bracket tables: (inclusive upper bound in miles, value).  Scanned in
# order; the first bracket whose bound is >= the distance wins, so a
# shared boundary belongs to the lower bracket.  ``None`` = unbounded.
TOLL_RATE_BRACKETS: tuple[tuple[float | None, Decimal], ...] = (
    (100.0, Decimal("0")),
    (300.0, Decimal("0.15")),
    (600.0, Decimal("0.12")),
    (None, Decimal("0.10")),
)

ROAD_CIRCUITY_BRACKETS: tuple[tuple[float | None, float], ...] = (
    (50.0, 1.4),
    (200.0, 1.3),
    (500.0, 1.25),
    (None, 1.2),
)

PICKUP_PROXIMITY_BRACKETS: tuple[tuple[float | None, int], ...] = (
    (50.0, 20),
    (100.0, 15),
    (200.0, 10),
    (300.0, 5),
    (None, 0),
)

# Bonus tiers: (threshold, points), highest first.
ON_TIME_BONUS_TIERS: tuple[tuple[float, int], ...] = ((95.0, 20), (90.0, 10))   # strictly greater
RATING_BONUS_TIERS: tuple[tuple[float, int], ...] = ((4.5, 15), (4.0, 8))       # greater or equal


def bracket_value(brackets, miles: float):
    """Return the value of the first bracket whose upper bound covers *miles*."""
    for upper, value in brackets:
        if upper is None or miles <= upper:
            return value
    raise ValueError("bracket table has no unbounded tail")


@dataclass(frozen=True)
class MatchingConfig:
    """Immutable engine configuration."""

    # Cost model
    profit_margin: Decimal = Decimal("0.20")
    average_speed_mph: float = 55.0
    default_vehicle_type: str = "dry_van"
    default_fuel_price: Decimal = Decimal("4.50")
    default_driver_rate: Decimal = Decimal("0.55")
    overnight_threshold_hours: float = 10.0
    overnight_block_hours: float = 10.0
    overnight_allowance: Decimal = Decimal("150")
    fuel_efficiency: Mapping[str, float] = field(default_factory=lambda: FUEL_EFFICIENCY_MPG)
    maintenance_rates: Mapping[str, Decimal] = field(default_factory=lambda: MAINTENANCE_RATE_PER_MILE)
    toll_brackets: tuple = TOLL_RATE_BRACKETS
    road_circuity_brackets: tuple = ROAD_CIRCUITY_BRACKETS
    market_rate_per_mile: Decimal = Decimal("2.50")

    # Bonuses
    on_time_tiers: tuple = ON_TIME_BONUS_TIERS
    rating_tiers: tuple = RATING_BONUS_TIERS
    relationship_bonus_per_match: int = 5
    relationship_bonus_cap: int = 25
    specialization_bonus: int = 10
    availability_bonus: int = 5

    # Compatibility rating buckets (points)
    equipment_points: int = 25
    origin_region_points: int = 15
    destination_region_points: int = 5
    special_requirement_points: int = 5       # per requirement, plus one base award
    capacity_full_points: int = 15
    capacity_partial_points: int = 10
    capacity_headroom: float = 1.2
    proximity_brackets: tuple = PICKUP_PROXIMITY_BRACKETS
    proximity_max_points: int = 20
    proximity_unknown_points: int = 10

    # Ranking / committing
    carrier_result_limit: int = 10
    auto_match_top_n: int = 5
    default_per_page: int = 25
    scoring_concurrency: int = 16

    @property
    def max_bonus(self) -> int:
        """Largest bonus total a single candidate can earn."""
        return (
            self.on_time_tiers[0][1]
            + self.rating_tiers[0][1]
            + self.relationship_bonus_cap
            + self.specialization_bonus
            + self.availability_bonus
        )

    def fuel_mpg(self, vehicle_type) -> float:
        key = type_key(vehicle_type)
        return self.fuel_efficiency.get(key, self.fuel_efficiency[self.default_vehicle_type])

    def maintenance_rate(self, vehicle_type) -> Decimal:
        key = type_key(vehicle_type)
        return self.maintenance_rates.get(key, self.maintenance_rates[self.default_vehicle_type])

    @classmethod
    def from_settings(cls, settings=None) -> "MatchingConfig":
        """Build a config with overrides taken from application settings."""
        if settings is None:
            from freightmatch.config import settings
        return replace(
            DEFAULT_CONFIG,
            average_speed_mph=settings.MATCHING_AVERAGE_SPEED_MPH,
            default_fuel_price=Decimal(str(settings.MATCHING_FUEL_PRICE_PER_GALLON)),
            default_driver_rate=Decimal(str(settings.MATCHING_DRIVER_RATE_PER_MILE)),
            carrier_result_limit=settings.MATCHING_CARRIER_RESULT_LIMIT,
            auto_match_top_n=settings.MATCHING_AUTO_MATCH_TOP_N,
            scoring_concurrency=settings.MATCHING_SCORING_CONCURRENCY,
        )


def type_key(vehicle_type) -> str:
    """Normalise an equipment enum or plain string to its table key."""
    if vehicle_type is None:
        return ""
    return str(getattr(vehicle_type, "value", vehicle_type)).lower()


DEFAULT_CONFIG = MatchingConfig()
