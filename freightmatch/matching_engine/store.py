"""
Collaborator interfaces for the matching engine and their SQL adapters.

- ``CandidateStore``: read side, carriers/loads eligible for matching
- ``MatchRepository``: write side, idempotent match creation + guarded transitions
- ``JobQueue``: fire-and-forget async work submission

The SQL adapters work on a caller-supplied ``AsyncSession``; the caller
owns the session lifetime.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterable, Protocol

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from freightmatch.matching_engine.distance import Point, bounding_box
from freightmatch.matching_engine.errors import CandidateStoreFailure, ConstraintViolation
from freightmatch.models.carrier import Carrier
from freightmatch.models.load import Load, LoadStatus
from freightmatch.models.match import Match, MatchEvent, MatchStatus

logger = logging.getLogger(__name__)

UNIQUE_PAIR_CONSTRAINT = "uq_matches_load_carrier"


# ---------------------------------------------------------------------------
# Protocols
# ---------------------------------------------------------------------------


class CandidateStore(Protocol):
    async def active_verified_carriers(
        self, near: Point | None = None, radius_miles: float | None = None,
    ) -> list[Carrier]: ...

    async def available_loads(
        self, near: Point | None = None, radius_miles: float | None = None,
    ) -> list[Load]: ...

    async def accepted_match_counts(
        self, carrier_ids: Iterable[uuid.UUID], shipper_ids: Iterable[uuid.UUID],
    ) -> dict[tuple[uuid.UUID, uuid.UUID], int]: ...


class MatchRepository(Protocol):
    async def exists(self, load_id: uuid.UUID, carrier_id: uuid.UUID) -> bool: ...

    async def create(self, draft: "MatchDraft") -> Match: ...

    async def guarded_transition(self, match: Match, match_event: MatchEvent) -> Match: ...


class JobQueue(Protocol):
    def enqueue(self, job_kind: str, payload: dict) -> None: ...


@dataclass(frozen=True)
class MatchDraft:
    """Everything needed to insert a new ``pending`` match."""
    load_id: uuid.UUID
    carrier_id: uuid.UUID
    match_score: Decimal
    rate_offered: Decimal | None
    estimated_pickup_time: datetime | None
    estimated_delivery_time: datetime | None
    distance_to_pickup: Decimal | None
    notes: str | None = None

    def to_model(self) -> Match:
        return Match(status=MatchStatus.PENDING, **asdict(self))


# ---------------------------------------------------------------------------
# SQL adapters
# ---------------------------------------------------------------------------


class SqlCandidateStore:
    """
    Candidate reads over async SQLAlchemy.

    Results are ordered by primary key so ranking ties resolve the same
    way on every run.  When ``near`` and ``radius_miles`` are given, a
    bounding box on the stored coordinates trims the pool in SQL; rows
    without coordinates fall outside the box.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def active_verified_carriers(self, near=None, radius_miles=None) -> list[Carrier]:
        stmt = (
            select(Carrier)
            .where(Carrier.is_active.is_(True), Carrier.is_verified.is_(True))
            .order_by(Carrier.id)
        )
        if near is not None and radius_miles is not None:
            min_lat, max_lat, min_lon, max_lon = bounding_box(near, radius_miles)
            stmt = stmt.where(
                Carrier.latitude.between(min_lat, max_lat),
                Carrier.longitude.between(min_lon, max_lon),
            )
        return await self._fetch(stmt, "carriers")

    async def available_loads(self, near=None, radius_miles=None) -> list[Load]:
        now = datetime.now(timezone.utc)
        stmt = (
            select(Load)
            .where(
                Load.status == LoadStatus.POSTED,
                or_(Load.expires_at.is_(None), Load.expires_at > now),
                Load.pickup_date >= now.date(),
            )
            .order_by(Load.id)
        )
        if near is not None and radius_miles is not None:
            min_lat, max_lat, min_lon, max_lon = bounding_box(near, radius_miles)
            stmt = stmt.where(
                Load.origin_latitude.between(min_lat, max_lat),
                Load.origin_longitude.between(min_lon, max_lon),
            )
        return await self._fetch(stmt, "loads")

    async def accepted_match_counts(self, carrier_ids, shipper_ids) -> dict[tuple[uuid.UUID, uuid.UUID], int]:
        carrier_ids = list(carrier_ids)
        shipper_ids = list(shipper_ids)
        if not carrier_ids or not shipper_ids:
            return {}

        stmt = (
            select(Match.carrier_id, Load.shipper_id, func.count(Match.id))
            .join(Load, Match.load_id == Load.id)
            .where(
                Match.status == MatchStatus.ACCEPTED,
                Match.carrier_id.in_(carrier_ids),
                Load.shipper_id.in_(shipper_ids),
            )
            .group_by(Match.carrier_id, Load.shipper_id)
        )
        try:
            result = await self.session.execute(stmt)
        except SQLAlchemyError as exc:
            logger.exception("Accepted-match count query failed")
            raise CandidateStoreFailure(f"Could not count accepted matches: {exc}") from exc
        return {(carrier_id, shipper_id): count for carrier_id, shipper_id, count in result.all()}

    async def _fetch(self, stmt, label: str) -> list:
        try:
            result = await self.session.execute(stmt)
        except SQLAlchemyError as exc:
            logger.exception("Candidate query for %s failed", label)
            raise CandidateStoreFailure(f"Could not load {label}: {exc}") from exc
        return list(result.scalars().unique().all())


class SqlMatchRepository:
    """
    Match writes over async SQLAlchemy.

    Each write is flushed inside a SAVEPOINT and then committed.  A
    failed flush rolls back only that savepoint, so the load and carrier
    instances the caller still holds are never expired.  A violation of
    the unique (load, carrier) constraint is reported as
    ``ConstraintViolation``.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def exists(self, load_id, carrier_id) -> bool:
        result = await self.session.execute(
            select(Match.id)
            .where(Match.load_id == load_id, Match.carrier_id == carrier_id)
            .limit(1)
        )
        return result.scalar_one_or_none() is not None

    async def create(self, draft: MatchDraft) -> Match:
        match = draft.to_model()
        try:
            async with self.session.begin_nested():
                self.session.add(match)
        except IntegrityError as exc:
            if UNIQUE_PAIR_CONSTRAINT in str(exc.orig):
                raise ConstraintViolation(draft.load_id, draft.carrier_id) from exc
            raise
        await self._commit()
        return match

    async def guarded_transition(self, match: Match, match_event: MatchEvent) -> Match:
        """Fire *match_event* on *match* and persist; InvalidTransition leaves it untouched."""
        async with self.session.begin_nested():
            match.fire(match_event)
        await self._commit()
        return match

    async def _commit(self) -> None:
        try:
            await self.session.commit()
        except SQLAlchemyError:
            await self.session.rollback()
            raise
