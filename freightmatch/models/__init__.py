"""SQLAlchemy ORM models for FreightMatch."""

from freightmatch.models.load import EquipmentType, Load, LoadStatus
from freightmatch.models.carrier import Carrier, Driver, SafetyRating, Vehicle
from freightmatch.models.match import Match, MatchEvent, MatchStatus

__all__ = [
    "Load", "LoadStatus", "EquipmentType",
    "Carrier", "Vehicle", "Driver", "SafetyRating",
    "Match", "MatchStatus", "MatchEvent",
]
