"""
Pydantic schemas for matching requests.

Search options replace loosely-typed option maps: every soft filter is a
named, typed, optional field, and ``None`` means "not applied".
"""

from datetime import date
from decimal import Decimal

from pydantic import BaseModel, Field

from freightmatch.models.carrier import SafetyRating
from freightmatch.models.load import EquipmentType


class _PageOptions(BaseModel):
    page: int = Field(default=1, ge=1)
    per_page: int = Field(default=25, ge=1, le=500)
    deadline_seconds: float | None = Field(default=None, gt=0)


class CarrierSearchOptions(_PageOptions):
    """Soft filters and paging for "carriers for a load"."""
    max_distance_to_pickup: float | None = Field(default=None, ge=0)
    min_safety_rating: SafetyRating | None = None
    verified_only: bool = False
    limit: int | None = Field(default=10, ge=1)


class LoadSearchOptions(_PageOptions):
    """Soft filters and paging for "loads for a carrier"."""
    equipment_type: EquipmentType | None = None
    origin_region: str | None = None
    destination_region: str | None = None
    pickup_date_from: date | None = None
    pickup_date_to: date | None = None
    min_rate: Decimal | None = Field(default=None, ge=0)
    max_rate: Decimal | None = Field(default=None, ge=0)
    max_distance_to_pickup: float | None = Field(default=None, ge=0)
    expedited: bool | None = None
    temperature_controlled: bool | None = None
    search: str | None = None
    limit: int | None = Field(default=None, ge=1)


class Pagination(BaseModel):
    current_page: int = 1
    per_page: int = 25
    total_count: int = 0
    total_pages: int = 0
    has_next_page: bool = False
    has_previous_page: bool = False
