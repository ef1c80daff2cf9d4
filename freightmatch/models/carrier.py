"""
Carrier model: a transport provider with its vehicles and drivers.

Equipment types and service areas are stored as JSON lists.  The
service-area list may contain the ``ALL`` wildcard.  Vehicles and
drivers are eager-loaded (selectin) because the matching engine reads
them for every candidate.
"""

import enum
import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Numeric,
    String,
    Enum as SAEnum,
    event,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from freightmatch.database import Base
from freightmatch.matching_engine.config import type_key
from freightmatch.models.load import EquipmentType

ALL_REGIONS = "ALL"


class SafetyRating(str, enum.Enum):
    SATISFACTORY = "satisfactory"
    CONDITIONAL = "conditional"
    UNSATISFACTORY = "unsatisfactory"
    NOT_RATED = "not_rated"


SAFETY_SCORES: dict[SafetyRating, int] = {
    SafetyRating.SATISFACTORY: 100,
    SafetyRating.CONDITIONAL: 70,
    SafetyRating.UNSATISFACTORY: 30,
    SafetyRating.NOT_RATED: 50,
}


class Carrier(Base):
    __tablename__ = "carriers"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4,
    )
    company_name: Mapped[str] = mapped_column(String(100), nullable=False)

    equipment_types: Mapped[list] = mapped_column(JSON, default=list)
    service_areas: Mapped[list] = mapped_column(JSON, default=list)

    safety_rating: Mapped[SafetyRating] = mapped_column(
        SAEnum(SafetyRating, name="safetyrating"),
        default=SafetyRating.NOT_RATED,
    )
    average_rating: Mapped[Decimal] = mapped_column(Numeric(3, 2), default=Decimal("0"))
    on_time_percentage: Mapped[Decimal] = mapped_column(Numeric(5, 2), default=Decimal("0"))

    is_verified: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)

    latitude: Mapped[Decimal | None] = mapped_column(Numeric(10, 6))
    longitude: Mapped[Decimal | None] = mapped_column(Numeric(10, 6))
    available_capacity: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0"))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )

    vehicles = relationship(
        "Vehicle", back_populates="carrier", lazy="selectin", cascade="all, delete-orphan",
    )
    drivers = relationship(
        "Driver", back_populates="carrier", lazy="selectin", cascade="all, delete-orphan",
    )

    # ------------------------------------------------------------------
    # Derived attributes
    # ------------------------------------------------------------------

    @property
    def current_location(self) -> tuple[float, float] | None:
        if self.latitude is None or self.longitude is None:
            return None
        return float(self.latitude), float(self.longitude)

    @property
    def equipment_list(self) -> list[str]:
        return [type_key(e) for e in (self.equipment_types or [])]

    @property
    def service_area_list(self) -> list[str]:
        return [str(a).upper() for a in (self.service_areas or [])]

    @property
    def active_vehicles(self) -> list["Vehicle"]:
        return [v for v in self.vehicles if v.is_active]

    @property
    def active_drivers(self) -> list["Driver"]:
        return [d for d in self.drivers if d.is_active]

    @property
    def max_vehicle_capacity(self) -> Decimal:
        return max((v.capacity_weight for v in self.active_vehicles), default=Decimal("0"))

    @property
    def safety_score(self) -> int:
        return SAFETY_SCORES.get(self.safety_rating, SAFETY_SCORES[SafetyRating.NOT_RATED])

    def serves_region(self, region: str | None) -> bool:
        if not region:
            return False
        areas = self.service_area_list
        if ALL_REGIONS in areas:
            return True
        return region.upper() in areas

    def __repr__(self) -> str:
        return f"<Carrier {self.company_name} verified={self.is_verified}>"


class Vehicle(Base):
    __tablename__ = "vehicles"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4,
    )
    carrier_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("carriers.id"), index=True, nullable=False,
    )
    equipment_type: Mapped[EquipmentType] = mapped_column(
        SAEnum(EquipmentType, name="equipmenttype"), nullable=False,
    )
    capacity_weight: Mapped[Decimal] = mapped_column(Numeric(8, 2), nullable=False)
    is_temperature_controlled: Mapped[bool] = mapped_column(Boolean, default=False)
    is_hazmat_capable: Mapped[bool] = mapped_column(Boolean, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    carrier = relationship("Carrier", back_populates="vehicles")

    def __repr__(self) -> str:
        return f"<Vehicle {self.equipment_type.value if self.equipment_type else 'N/A'} {self.capacity_weight}lb>"


class Driver(Base):
    __tablename__ = "drivers"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4,
    )
    carrier_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("carriers.id"), index=True, nullable=False,
    )
    full_name: Mapped[str | None] = mapped_column(String(100))
    is_hazmat_certified: Mapped[bool] = mapped_column(Boolean, default=False)
    is_team_driver: Mapped[bool] = mapped_column(Boolean, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    carrier = relationship("Carrier", back_populates="drivers")

    def __repr__(self) -> str:
        return f"<Driver {self.full_name} active={self.is_active}>"


# ---------------------------------------------------------------------------
# Auto-set Python-side defaults on construction
# ---------------------------------------------------------------------------


@event.listens_for(Carrier, "init")
def _set_carrier_defaults(target, args, kwargs):
    if "id" not in kwargs:
        target.id = uuid.uuid4()
    if "equipment_types" not in kwargs:
        target.equipment_types = []
    if "service_areas" not in kwargs:
        target.service_areas = []
    if "safety_rating" not in kwargs:
        target.safety_rating = SafetyRating.NOT_RATED
    if "average_rating" not in kwargs:
        target.average_rating = Decimal("0")
    if "on_time_percentage" not in kwargs:
        target.on_time_percentage = Decimal("0")
    if "is_verified" not in kwargs:
        target.is_verified = False
    if "is_active" not in kwargs:
        target.is_active = True
    if "available_capacity" not in kwargs:
        target.available_capacity = Decimal("0")
    if "created_at" not in kwargs:
        target.created_at = datetime.now(timezone.utc)


@event.listens_for(Vehicle, "init")
def _set_vehicle_defaults(target, args, kwargs):
    if "id" not in kwargs:
        target.id = uuid.uuid4()
    if "is_temperature_controlled" not in kwargs:
        target.is_temperature_controlled = False
    if "is_hazmat_capable" not in kwargs:
        target.is_hazmat_capable = False
    if "is_active" not in kwargs:
        target.is_active = True


@event.listens_for(Driver, "init")
def _set_driver_defaults(target, args, kwargs):
    if "id" not in kwargs:
        target.id = uuid.uuid4()
    if "is_hazmat_certified" not in kwargs:
        target.is_hazmat_certified = False
    if "is_team_driver" not in kwargs:
        target.is_team_driver = False
    if "is_active" not in kwargs:
        target.is_active = True
