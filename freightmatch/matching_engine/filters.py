"""
Compatibility filtering: admit/reject only, never ranks.

Hard stages are pure ``(load, carrier) -> bool`` predicates applied in
``HARD_STAGES`` order; the same stages serve both directions.  Soft
stages come from the caller's search options and run after the hard
stages with the same contract.
"""

from __future__ import annotations

import logging
from typing import Callable, Iterable

from freightmatch.matching_engine.config import type_key
from freightmatch.matching_engine.distance import DistanceEstimator
from freightmatch.matching_engine.errors import LocationUnavailable
from freightmatch.models.carrier import SAFETY_SCORES, Carrier
from freightmatch.models.load import Load
from freightmatch.schemas.matching import CarrierSearchOptions, LoadSearchOptions

logger = logging.getLogger(__name__)

Stage = Callable[[Load, Carrier], bool]


# ---------------------------------------------------------------------------
# Hard stages
# ---------------------------------------------------------------------------


def equipment_stage(load: Load, carrier: Carrier) -> bool:
    """Carrier operates an active vehicle of the load's equipment type."""
    wanted = type_key(load.equipment_type)
    return any(type_key(v.equipment_type) == wanted for v in carrier.active_vehicles)


def service_area_stage(load: Load, carrier: Carrier) -> bool:
    """Carrier serves the load's origin region (or everywhere)."""
    return carrier.serves_region(load.origin_region)


def hazmat_stage(load: Load, carrier: Carrier) -> bool:
    if not load.is_hazmat:
        return True
    return any(d.is_hazmat_certified for d in carrier.active_drivers)


def team_driver_stage(load: Load, carrier: Carrier) -> bool:
    if not load.is_team_driver:
        return True
    return any(d.is_team_driver for d in carrier.active_drivers)


def weight_stage(load: Load, carrier: Carrier) -> bool:
    if load.weight is None:
        return True
    return any(v.capacity_weight >= load.weight for v in carrier.active_vehicles)


HARD_STAGES: tuple[tuple[str, Stage], ...] = (
    ("equipment", equipment_stage),
    ("service_area", service_area_stage),
    ("hazmat", hazmat_stage),
    ("team_driver", team_driver_stage),
    ("weight", weight_stage),
)


def passes_hard_stages(load: Load, carrier: Carrier) -> bool:
    return all(stage(load, carrier) for _, stage in HARD_STAGES)


# ---------------------------------------------------------------------------
# Distance helpers
# ---------------------------------------------------------------------------


def pickup_distance(estimator: DistanceEstimator, load: Load, carrier: Carrier) -> float | None:
    """Deadhead miles from the carrier to the load's pickup, or None if unknown."""
    try:
        return estimator.distance(carrier.current_location, load.pickup_point)
    except LocationUnavailable:
        return None


def within_radius(subject_point, distance_to_pickup: float | None, max_distance: float | None) -> bool:
    """
    Radius stage shared by both directions.

    Skipped when no radius is requested or the subject's own location
    is unknown.  A candidate with an unknown distance cannot be shown
    to be inside the radius and is rejected.
    """
    if max_distance is None or subject_point is None:
        return True
    if distance_to_pickup is None:
        return False
    return distance_to_pickup <= max_distance


# ---------------------------------------------------------------------------
# Filter
# ---------------------------------------------------------------------------


class CompatibilityFilter:
    """Reduces a candidate pool to the candidates that satisfy every stage."""

    def __init__(self, distance: DistanceEstimator | None = None):
        self.distance = distance or DistanceEstimator()

    # -- hard --------------------------------------------------------------

    def filter_carriers(self, load: Load, pool: Iterable[Carrier]) -> list[Carrier]:
        """Carriers that can legally haul *load*; pool order is kept."""
        survivors = list(pool)
        for name, stage in HARD_STAGES:
            survivors = [c for c in survivors if stage(load, c)]
            logger.debug("Load %s: %d carriers after %s stage", load.id, len(survivors), name)
        return survivors

    def filter_loads(self, carrier: Carrier, pool: Iterable[Load]) -> list[Load]:
        """Loads *carrier* can legally haul; pool order is kept."""
        survivors = list(pool)
        for name, stage in HARD_STAGES:
            survivors = [ld for ld in survivors if stage(ld, carrier)]
            logger.debug("Carrier %s: %d loads after %s stage", carrier.id, len(survivors), name)
        return survivors

    # -- soft --------------------------------------------------------------

    def admits_carrier(
        self,
        load: Load,
        carrier: Carrier,
        options: CarrierSearchOptions,
        distance_to_pickup: float | None,
    ) -> bool:
        if options.verified_only and not carrier.is_verified:
            return False
        if options.min_safety_rating is not None:
            if carrier.safety_score < SAFETY_SCORES[options.min_safety_rating]:
                return False
        return within_radius(load.pickup_point, distance_to_pickup, options.max_distance_to_pickup)

    def admits_load(
        self,
        carrier: Carrier,
        load: Load,
        options: LoadSearchOptions,
        distance_to_pickup: float | None,
    ) -> bool:
        if options.equipment_type is not None and type_key(load.equipment_type) != type_key(options.equipment_type):
            return False
        if options.origin_region and (load.origin_region or "").upper() != options.origin_region.upper():
            return False
        if options.destination_region and (load.destination_region or "").upper() != options.destination_region.upper():
            return False
        if options.pickup_date_from and load.pickup_date < options.pickup_date_from:
            return False
        if options.pickup_date_to and load.pickup_date > options.pickup_date_to:
            return False
        if options.min_rate is not None and load.total_rate < options.min_rate:
            return False
        if options.max_rate is not None and load.total_rate > options.max_rate:
            return False
        if options.expedited is not None and bool(load.is_expedited) != options.expedited:
            return False
        if options.temperature_controlled is not None and bool(load.temperature_controlled) != options.temperature_controlled:
            return False
        if options.search and not _matches_text(load, options.search):
            return False
        return within_radius(carrier.current_location, distance_to_pickup, options.max_distance_to_pickup)

    def apply_carrier_options(
        self,
        load: Load,
        pool: Iterable[Carrier],
        options: CarrierSearchOptions,
    ) -> list[Carrier]:
        return [
            c for c in pool
            if self.admits_carrier(load, c, options, self._distance_if_needed(load, c, options))
        ]

    def apply_load_options(
        self,
        carrier: Carrier,
        pool: Iterable[Load],
        options: LoadSearchOptions,
    ) -> list[Load]:
        return [
            ld for ld in pool
            if self.admits_load(carrier, ld, options, self._distance_if_needed(ld, carrier, options))
        ]

    def _distance_if_needed(self, load: Load, carrier: Carrier, options) -> float | None:
        if options.max_distance_to_pickup is None:
            return None
        return pickup_distance(self.distance, load, carrier)


def _matches_text(load: Load, term: str) -> bool:
    """Case-insensitive substring match over commodity and cities."""
    needle = term.strip().lower()
    if not needle:
        return True
    haystack = (load.commodity, load.origin_city, load.destination_city)
    return any(needle in (field or "").lower() for field in haystack)
