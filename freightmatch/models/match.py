"""
Match record model: a proposed pairing of one load with one carrier.

The matching engine creates matches in ``pending`` and moves them to
``offered``.  Accept/reject/expire are fired by other actors.  All
moves go through ``MATCH_TRANSITIONS``; status is never assigned
directly.  The (load_id, carrier_id) unique constraint is the
storage-level duplicate guard.
"""

import enum
import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    DateTime,
    ForeignKey,
    Numeric,
    Text,
    UniqueConstraint,
    Enum as SAEnum,
    event,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from freightmatch.database import Base
from freightmatch.matching_engine.errors import InvalidTransition


class MatchStatus(str, enum.Enum):
    PENDING = "pending"
    OFFERED = "offered"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    EXPIRED = "expired"


class MatchEvent(str, enum.Enum):
    MAKE_OFFER = "make_offer"
    ACCEPT = "accept"
    REJECT = "reject"
    EXPIRE = "expire"


# ---------------------------------------------------------------------------
# State machine: status -> {event: next status}
# ---------------------------------------------------------------------------

MATCH_TRANSITIONS: dict[MatchStatus, dict[MatchEvent, MatchStatus]] = {
    MatchStatus.PENDING: {
        MatchEvent.MAKE_OFFER: MatchStatus.OFFERED,
    },
    MatchStatus.OFFERED: {
        MatchEvent.ACCEPT: MatchStatus.ACCEPTED,
        MatchEvent.REJECT: MatchStatus.REJECTED,
        MatchEvent.EXPIRE: MatchStatus.EXPIRED,
    },
    MatchStatus.ACCEPTED: {},
    MatchStatus.REJECTED: {},
    MatchStatus.EXPIRED: {},
}

_missing = set(MatchStatus) - set(MATCH_TRANSITIONS)
if _missing:
    raise RuntimeError(f"MATCH_TRANSITIONS has no entry for: {sorted(s.value for s in _missing)}")

# Timestamp column stamped when a status is entered
_STATUS_TIMESTAMPS: dict[MatchStatus, str] = {
    MatchStatus.OFFERED: "matched_at",
    MatchStatus.ACCEPTED: "accepted_at",
    MatchStatus.REJECTED: "rejected_at",
    MatchStatus.EXPIRED: "expired_at",
}


class Match(Base):
    __tablename__ = "matches"
    __table_args__ = (
        UniqueConstraint("load_id", "carrier_id", name="uq_matches_load_carrier"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4,
    )
    load_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("loads.id"), index=True, nullable=False,
    )
    carrier_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("carriers.id"), index=True, nullable=False,
    )

    match_score: Mapped[Decimal] = mapped_column(Numeric(8, 2), nullable=False)
    rate_offered: Mapped[Decimal | None] = mapped_column(Numeric(10, 2))
    estimated_pickup_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    estimated_delivery_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    distance_to_pickup: Mapped[Decimal | None] = mapped_column(Numeric(10, 2))

    status: Mapped[MatchStatus] = mapped_column(
        SAEnum(MatchStatus, name="matchstatus"),
        default=MatchStatus.PENDING,
    )
    notes: Mapped[str | None] = mapped_column(Text)

    matched_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    accepted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    rejected_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    expired_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )

    # Relationships
    load = relationship("Load")
    carrier = relationship("Carrier")

    # ------------------------------------------------------------------
    # Guarded transitions
    # ------------------------------------------------------------------

    def may(self, match_event: MatchEvent) -> bool:
        """Return True if *match_event* is allowed from the current status."""
        return match_event in MATCH_TRANSITIONS[self.status]

    def fire(self, match_event: MatchEvent) -> MatchStatus:
        """
        Apply *match_event* and return the new status.

        Raises InvalidTransition when the current status does not
        accept the event.  Stamps the lifecycle timestamp for the
        status being entered.
        """
        allowed = MATCH_TRANSITIONS[self.status]
        if match_event not in allowed:
            raise InvalidTransition(
                f"Match {self.id}: cannot {match_event.value} from {self.status.value}"
            )
        new_status = allowed[match_event]
        self.status = new_status

        stamp = _STATUS_TIMESTAMPS.get(new_status)
        if stamp:
            setattr(self, stamp, datetime.now(timezone.utc))
        return new_status

    def __repr__(self) -> str:
        return (
            f"<Match load={self.load_id} carrier={self.carrier_id} "
            f"score={self.match_score} "
            f"({self.status.value if self.status else 'N/A'})>"
        )


@event.listens_for(Match, "init")
def _set_match_defaults(target, args, kwargs):
    if "id" not in kwargs:
        target.id = uuid.uuid4()
    if "status" not in kwargs:
        target.status = MatchStatus.PENDING
    if "created_at" not in kwargs:
        target.created_at = datetime.now(timezone.utc)
