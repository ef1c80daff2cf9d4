"""
Load model: a shipment posted by a shipper that needs a carrier.

- Origin/destination carry both a region code (state) and coordinates
- Total rate = line-haul rate + fuel surcharge + accessorial charges
- 5-state lifecycle with validated transitions; ``completed`` is final
"""

import enum
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Numeric,
    String,
    Enum as SAEnum,
    event,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from freightmatch.database import Base
from freightmatch.matching_engine.errors import InvalidTransition

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class EquipmentType(str, enum.Enum):
    DRY_VAN = "dry_van"
    REFRIGERATED = "refrigerated"
    FLATBED = "flatbed"
    STEP_DECK = "step_deck"
    LOWBOY = "lowboy"
    TANKER = "tanker"
    CONTAINER = "container"
    CAR_CARRIER = "car_carrier"
    SPECIALIZED = "specialized"


class LoadStatus(str, enum.Enum):
    POSTED = "posted"
    MATCHED = "matched"
    BOOKED = "booked"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# ---------------------------------------------------------------------------
# Status transition map
# ---------------------------------------------------------------------------

LOAD_TRANSITIONS: dict[LoadStatus, set[LoadStatus]] = {
    LoadStatus.POSTED: {
        LoadStatus.MATCHED,
        LoadStatus.BOOKED,
        LoadStatus.CANCELLED,
    },
    LoadStatus.MATCHED: {
        LoadStatus.POSTED,
        LoadStatus.BOOKED,
        LoadStatus.CANCELLED,
    },
    LoadStatus.BOOKED: {
        LoadStatus.COMPLETED,
        LoadStatus.CANCELLED,
    },
    LoadStatus.COMPLETED: set(),
    LoadStatus.CANCELLED: set(),
}


# ---------------------------------------------------------------------------
# Model
# ---------------------------------------------------------------------------


class Load(Base):
    __tablename__ = "loads"
    __table_args__ = (
        CheckConstraint("weight IS NULL OR (weight > 0 AND weight <= 80000)", name="ck_loads_weight"),
        CheckConstraint("rate > 0", name="ck_loads_rate_positive"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4,
    )
    shipper_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), index=True, nullable=False,
    )
    reference_number: Mapped[str | None] = mapped_column(String(32))
    commodity: Mapped[str] = mapped_column(String(200), nullable=False)

    equipment_type: Mapped[EquipmentType] = mapped_column(
        SAEnum(EquipmentType, name="equipmenttype"), nullable=False,
    )

    # Origin
    origin_city: Mapped[str | None] = mapped_column(String(100))
    origin_region: Mapped[str] = mapped_column(String(8), index=True, nullable=False)
    origin_latitude: Mapped[Decimal | None] = mapped_column(Numeric(10, 6))
    origin_longitude: Mapped[Decimal | None] = mapped_column(Numeric(10, 6))

    # Destination
    destination_city: Mapped[str | None] = mapped_column(String(100))
    destination_region: Mapped[str] = mapped_column(String(8), nullable=False)
    destination_latitude: Mapped[Decimal | None] = mapped_column(Numeric(10, 6))
    destination_longitude: Mapped[Decimal | None] = mapped_column(Numeric(10, 6))

    estimated_distance_miles: Mapped[Decimal | None] = mapped_column(Numeric(10, 2))
    weight: Mapped[Decimal | None] = mapped_column(Numeric(8, 2))  # pounds

    # Schedule
    pickup_date: Mapped[date] = mapped_column(Date, nullable=False)
    delivery_date: Mapped[date] = mapped_column(Date, nullable=False)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    # Pricing
    rate: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    fuel_surcharge: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0"))
    accessorial_charges: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0"))
    total_rate: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)

    # Special requirements
    is_hazmat: Mapped[bool] = mapped_column(Boolean, default=False)
    is_team_driver: Mapped[bool] = mapped_column(Boolean, default=False)
    temperature_controlled: Mapped[bool] = mapped_column(Boolean, default=False)
    is_expedited: Mapped[bool] = mapped_column(Boolean, default=False)

    status: Mapped[LoadStatus] = mapped_column(
        SAEnum(LoadStatus, name="loadstatus"),
        default=LoadStatus.POSTED,
        index=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # ------------------------------------------------------------------
    # Derived attributes
    # ------------------------------------------------------------------

    @property
    def pickup_point(self) -> tuple[float, float] | None:
        if self.origin_latitude is None or self.origin_longitude is None:
            return None
        return float(self.origin_latitude), float(self.origin_longitude)

    @property
    def delivery_point(self) -> tuple[float, float] | None:
        if self.destination_latitude is None or self.destination_longitude is None:
            return None
        return float(self.destination_latitude), float(self.destination_longitude)

    @property
    def is_expired(self) -> bool:
        return self.expires_at is not None and self.expires_at < datetime.now(timezone.utc)

    @property
    def available_for_matching(self) -> bool:
        """Posted, not expired, and the pickup date has not passed."""
        if self.status != LoadStatus.POSTED or self.is_expired:
            return False
        if self.pickup_date is None:
            return True
        return self.pickup_date >= datetime.now(timezone.utc).date()

    @property
    def special_requirements(self) -> list[str]:
        requirements = []
        if self.is_hazmat:
            requirements.append("Hazmat")
        if self.is_expedited:
            requirements.append("Expedited")
        if self.is_team_driver:
            requirements.append("Team Driver Required")
        if self.temperature_controlled:
            requirements.append("Temperature Controlled")
        return requirements

    # ------------------------------------------------------------------
    # Status transition validation
    # ------------------------------------------------------------------

    @staticmethod
    def is_valid_transition(from_status: LoadStatus, to_status: LoadStatus) -> bool:
        """Check whether a status transition is allowed."""
        return to_status in LOAD_TRANSITIONS.get(from_status, set())

    def transition_to(self, new_status: LoadStatus) -> None:
        """
        Transition to *new_status* if the move is valid.

        Raises InvalidTransition otherwise; a completed load never changes.
        """
        if not self.is_valid_transition(self.status, new_status):
            raise InvalidTransition(
                f"Invalid load transition: {self.status.value} -> {new_status.value}"
            )
        self.status = new_status
        self.updated_at = datetime.now(timezone.utc)

    def __repr__(self) -> str:
        return (
            f"<Load {self.reference_number or self.id} "
            f"{self.origin_region}->{self.destination_region} "
            f"status={self.status.value if self.status else 'N/A'}>"
        )


# ---------------------------------------------------------------------------
# Auto-set Python-side defaults on construction
# ---------------------------------------------------------------------------


@event.listens_for(Load, "init")
def _set_load_defaults(target, args, kwargs):
    if "id" not in kwargs:
        target.id = uuid.uuid4()
    if "status" not in kwargs:
        target.status = LoadStatus.POSTED
    for flag in ("is_hazmat", "is_team_driver", "temperature_controlled", "is_expedited"):
        if flag not in kwargs:
            setattr(target, flag, False)
    if "fuel_surcharge" not in kwargs:
        target.fuel_surcharge = Decimal("0")
    if "accessorial_charges" not in kwargs:
        target.accessorial_charges = Decimal("0")
    if "total_rate" not in kwargs and kwargs.get("rate") is not None:
        target.total_rate = (
            Decimal(str(kwargs["rate"]))
            + Decimal(str(kwargs.get("fuel_surcharge") or "0"))
            + Decimal(str(kwargs.get("accessorial_charges") or "0"))
        )
    if "created_at" not in kwargs:
        target.created_at = datetime.now(timezone.utc)
    if "updated_at" not in kwargs:
        target.updated_at = datetime.now(timezone.utc)
