"""
Distance estimation between geographic points.

Points are ``(latitude, longitude)`` pairs.  The default provider uses
geopy's geodesic distance; any object with a ``miles(a, b)`` method can
stand in (a routing service, a cached lookup, a test double).

Provider calls may be slow, so every call goes through a process-wide
semaphore capped at ``MATCHING_MAX_DISTANCE_CALLS``.
"""

from __future__ import annotations

import math
import threading
from dataclasses import dataclass
from typing import Protocol, Sequence

from geopy.distance import geodesic

from freightmatch.config import settings
from freightmatch.matching_engine.config import DEFAULT_CONFIG, MatchingConfig, bracket_value
from freightmatch.matching_engine.errors import InvalidInput, LocationUnavailable

KM_PER_MILE = 1.60934
MILES_PER_DEGREE_LAT = 68.7   # lower bound, keeps the box conservative

Point = Sequence[float]

_in_flight = threading.BoundedSemaphore(settings.MATCHING_MAX_DISTANCE_CALLS)


class DistanceProvider(Protocol):
    def miles(self, a: Point, b: Point) -> float:
        """Distance in miles between two validated points."""
        ...


class GeodesicDistanceProvider:
    """Great-circle (WGS-84 geodesic) distance via geopy."""

    def miles(self, a: Point, b: Point) -> float:
        return geodesic(tuple(a), tuple(b)).miles


@dataclass(frozen=True)
class RouteEstimate:
    straight_line_miles: float
    miles: float              # estimated road miles
    kilometers: float
    driving_hours: float


def validate_point(point, label: str = "point") -> tuple[float, float]:
    """Return *point* as a float pair or raise InvalidInput."""
    try:
        lat, lon = point
        lat, lon = float(lat), float(lon)
    except (TypeError, ValueError):
        raise InvalidInput(f"Invalid {label} coordinates: {point!r}")
    if not (-90.0 <= lat <= 90.0) or not (-180.0 <= lon <= 180.0):
        raise InvalidInput(f"Invalid {label} coordinates: {point!r}")
    return lat, lon


class DistanceEstimator:
    """Distance and travel-time estimates over a pluggable provider."""

    def __init__(self, provider: DistanceProvider | None = None, config: MatchingConfig | None = None):
        self.provider = provider or GeodesicDistanceProvider()
        self.config = config or DEFAULT_CONFIG

    def distance(self, a: Point | None, b: Point | None) -> float:
        """
        Distance in miles between *a* and *b*.

        Raises LocationUnavailable if either point is missing; callers
        must treat that as "unknown", never as zero.
        """
        if a is None or b is None:
            raise LocationUnavailable("distance requires two known points")
        a = validate_point(a, "origin")
        b = validate_point(b, "destination")
        with _in_flight:
            miles = self.provider.miles(a, b)
        if miles < 0:
            raise InvalidInput(f"Provider returned negative distance: {miles}")
        return float(miles)

    def estimate_travel_hours(self, miles: float) -> float:
        """Driving hours at the configured average speed."""
        if miles < 0:
            raise InvalidInput(f"Distance must be non-negative, got {miles}")
        return miles / self.config.average_speed_mph

    def route(self, a: Point | None, b: Point | None) -> RouteEstimate:
        """Road-distance estimate: straight line scaled by a circuity factor."""
        straight = self.distance(a, b)
        road = straight * bracket_value(self.config.road_circuity_brackets, straight)
        return RouteEstimate(
            straight_line_miles=round(straight, 2),
            miles=round(road, 2),
            kilometers=round(road * KM_PER_MILE, 2),
            driving_hours=round(self.estimate_travel_hours(road), 2),
        )


def bounding_box(point: Point, radius_miles: float) -> tuple[float, float, float, float]:
    """
    Return ``(min_lat, max_lat, min_lon, max_lon)`` enclosing a circle.

    Used to pre-filter candidates in SQL before exact distances are
    computed.  Degrees are sized with a conservative miles-per-degree
    figure so the box is never smaller than the circle at freight-scale
    radii.  Antimeridian wrap is not handled.
    """
    if radius_miles < 0:
        raise InvalidInput(f"Radius must be non-negative, got {radius_miles}")
    lat, lon = validate_point(point)
    d_lat = radius_miles / MILES_PER_DEGREE_LAT
    min_lat, max_lat = max(lat - d_lat, -90.0), min(lat + d_lat, 90.0)

    cos_lat = math.cos(math.radians(lat))
    if cos_lat < 1e-6 or min_lat == -90.0 or max_lat == 90.0:
        # circle reaches a pole: every longitude is in range
        return min_lat, max_lat, -180.0, 180.0
    d_lon = radius_miles / (MILES_PER_DEGREE_LAT * cos_lat)
    if d_lon >= 180.0:
        return min_lat, max_lat, -180.0, 180.0
    return min_lat, max_lat, max(lon - d_lon, -180.0), min(lon + d_lon, 180.0)
