"""
Match scoring.

Final score = base score + bonuses.  The base score is a pluggable
pairwise rule; bonuses reward carrier track record and fit.  The
compatibility rating is a separate 0-100 figure for display and does
not feed into the final score.

Only candidates that already passed the hard compatibility stages are
scored.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable

from freightmatch.matching_engine.config import DEFAULT_CONFIG, MatchingConfig, bracket_value, type_key
from freightmatch.matching_engine.errors import InvalidInput
from freightmatch.models.carrier import Carrier
from freightmatch.models.load import Load

logger = logging.getLogger(__name__)

BaseScoreFn = Callable[[Load, Carrier, "float | None"], float]


@dataclass(frozen=True)
class ScoredResult:
    total_score: float
    base_score: float
    bonus_breakdown: dict[str, int] = field(default_factory=dict)
    compatibility_rating: float = 0.0

    @property
    def bonus_points(self) -> int:
        return sum(self.bonus_breakdown.values())


def default_base_score(load: Load, carrier: Carrier, distance_to_pickup: float | None) -> float:
    """
    Pairwise compatibility: proximity, equipment, lanes, rating, on-time.

    The proximity term is dropped when the pickup distance is unknown.
    """
    score = 0.0
    if distance_to_pickup is not None:
        score += max(100.0 - distance_to_pickup, 0.0)
    if type_key(load.equipment_type) in carrier.equipment_list:
        score += 50
    if carrier.serves_region(load.origin_region):
        score += 30
    if carrier.serves_region(load.destination_region):
        score += 20
    score += float(carrier.average_rating or 0) * 10
    score += float(carrier.on_time_percentage or 0) * 0.5
    return score


class ScoringEngine:
    """Computes ``ScoredResult`` for a (load, carrier) pair."""

    def __init__(self, config: MatchingConfig | None = None, base_score_fn: BaseScoreFn | None = None):
        self.config = config or DEFAULT_CONFIG
        self.base_score_fn = base_score_fn or default_base_score

    def score(
        self,
        load: Load,
        carrier: Carrier,
        distance_to_pickup: float | None = None,
        prior_accepted: int = 0,
    ) -> ScoredResult:
        """
        Score *carrier* for *load*.

        Args:
            distance_to_pickup: Deadhead miles, or None when unknown.
            prior_accepted: Accepted matches between this carrier and
                the load's shipper.
        """
        if distance_to_pickup is not None and distance_to_pickup < 0:
            raise InvalidInput(f"distance_to_pickup must be non-negative, got {distance_to_pickup}")
        if prior_accepted < 0:
            raise InvalidInput(f"prior_accepted must be non-negative, got {prior_accepted}")

        base = float(self.base_score_fn(load, carrier, distance_to_pickup))
        if base < 0:
            raise InvalidInput(f"Base score must be non-negative, got {base}")

        bonuses = self.bonuses(load, carrier, prior_accepted)
        return ScoredResult(
            total_score=round(base + sum(bonuses.values()), 2),
            base_score=round(base, 2),
            bonus_breakdown=bonuses,
            compatibility_rating=self.compatibility_rating(load, carrier, distance_to_pickup),
        )

    # ------------------------------------------------------------------
    # Bonuses
    # ------------------------------------------------------------------

    def bonuses(self, load: Load, carrier: Carrier, prior_accepted: int = 0) -> dict[str, int]:
        cfg = self.config
        on_time = float(carrier.on_time_percentage or 0)
        rating = float(carrier.average_rating or 0)

        on_time_bonus = next((pts for floor, pts in cfg.on_time_tiers if on_time > floor), 0)
        rating_bonus = next((pts for floor, pts in cfg.rating_tiers if rating >= floor), 0)
        relationship_bonus = min(prior_accepted * cfg.relationship_bonus_per_match, cfg.relationship_bonus_cap)

        equipment = carrier.equipment_list
        specialised = len(equipment) == 1 and equipment[0] == type_key(load.equipment_type)

        return {
            "on_time_bonus": on_time_bonus,
            "rating_bonus": rating_bonus,
            "relationship_bonus": relationship_bonus,
            "specialization_bonus": cfg.specialization_bonus if specialised else 0,
            "availability_bonus": cfg.availability_bonus if (carrier.available_capacity or 0) > 0 else 0,
        }

    # ------------------------------------------------------------------
    # Compatibility rating
    # ------------------------------------------------------------------

    def compatibility_rating(self, load: Load, carrier: Carrier, distance_to_pickup: float | None) -> float:
        """Achieved over attainable bucket points, as a 0-100 percentage."""
        cfg = self.config
        achieved = 0
        possible = 0

        # Equipment
        possible += cfg.equipment_points
        if type_key(load.equipment_type) in carrier.equipment_list:
            achieved += cfg.equipment_points

        # Service area
        possible += cfg.origin_region_points + cfg.destination_region_points
        if carrier.serves_region(load.origin_region):
            achieved += cfg.origin_region_points
        if carrier.serves_region(load.destination_region):
            achieved += cfg.destination_region_points

        # Special requirements: one award per requirement met (or not
        # required) plus a base award
        per_req = cfg.special_requirement_points
        possible += per_req * 4
        drivers = carrier.active_drivers
        vehicles = carrier.active_vehicles
        met = (
            not load.is_hazmat or any(d.is_hazmat_certified for d in drivers),
            not load.temperature_controlled or any(v.is_temperature_controlled for v in vehicles),
            not load.is_team_driver or any(d.is_team_driver for d in drivers),
        )
        achieved += per_req * (sum(met) + 1)

        # Capacity headroom
        possible += cfg.capacity_full_points
        if load.weight is None:
            achieved += cfg.capacity_full_points
        else:
            weight = float(load.weight)
            capacity = float(carrier.max_vehicle_capacity)
            if capacity >= weight * cfg.capacity_headroom:
                achieved += cfg.capacity_full_points
            elif capacity >= weight:
                achieved += cfg.capacity_partial_points

        # Pickup proximity
        possible += cfg.proximity_max_points
        if distance_to_pickup is None:
            achieved += cfg.proximity_unknown_points
        else:
            achieved += bracket_value(cfg.proximity_brackets, distance_to_pickup)

        if possible == 0:
            return 0.0
        return round(achieved / possible * 100, 2)
