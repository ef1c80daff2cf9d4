"""
Matching engine facade.

Wires the ranking service and match committer to a database session
per request.  This is what a request layer or a Celery task calls:

    find_carriers_for_load  ranked carriers for a load (read-only)
    find_loads_for_carrier  ranked loads for a carrier (read-only)
    auto_match              create and offer matches for a load's top carriers
    run_auto_match          ``auto_match`` under a per-load Redis lock
"""

from __future__ import annotations

import logging
import uuid

from redis.exceptions import LockError

from freightmatch.config import settings
from freightmatch.matching_engine.committer import AutoMatchResult, MatchCommitter
from freightmatch.matching_engine.config import MatchingConfig
from freightmatch.matching_engine.distance import DistanceEstimator, DistanceProvider
from freightmatch.matching_engine.ranking import RankingResult, RankingService
from freightmatch.matching_engine.store import JobQueue, SqlCandidateStore, SqlMatchRepository
from freightmatch.models.carrier import Carrier
from freightmatch.models.load import Load
from freightmatch.schemas.matching import CarrierSearchOptions, LoadSearchOptions, Pagination

logger = logging.getLogger(__name__)

LOCK_KEY_TEMPLATE = "automatch:lock:{load_id}"


class MatchingEngine:
    """Entry point for ranking and auto-matching."""

    def __init__(
        self,
        session_factory=None,
        job_queue: JobQueue | None = None,
        redis=None,
        distance_provider: DistanceProvider | None = None,
        config: MatchingConfig | None = None,
    ):
        """
        Args:
            session_factory: Async session factory for DB access
                             (defaults to ``freightmatch.database.async_session``).
            job_queue: Where notifications are enqueued
                       (defaults to the Celery-backed queue).
            redis: Redis client for per-load locks
                   (defaults to ``freightmatch.redis_client.redis``).
            distance_provider: Distance backend (defaults to geodesic).
            config: Engine configuration (defaults to settings overrides).
        """
        self._session_factory = session_factory
        self._job_queue = job_queue
        self._redis = redis
        self.config = config or MatchingConfig.from_settings()
        self.distance = DistanceEstimator(provider=distance_provider, config=self.config)

    @property
    def session_factory(self):
        if self._session_factory is not None:
            return self._session_factory
        from freightmatch.database import async_session
        return async_session

    @property
    def job_queue(self) -> JobQueue:
        if self._job_queue is not None:
            return self._job_queue
        from freightmatch.tasks.queue import celery_job_queue
        return celery_job_queue

    @property
    def redis(self):
        if self._redis is not None:
            return self._redis
        from freightmatch.redis_client import redis
        return redis

    def ranking_service(self, session) -> RankingService:
        return RankingService(
            store=SqlCandidateStore(session),
            distance=self.distance,
            config=self.config,
        )

    # ── Ranking ──────────────────────────────────────────────────────────

    async def find_carriers_for_load(
        self, load_id: uuid.UUID, options: CarrierSearchOptions | None = None,
    ) -> RankingResult:
        async with self.session_factory() as session:
            load = await session.get(Load, load_id)
            if load is None:
                return _not_found("Load", load_id, options or CarrierSearchOptions())
            return await self.ranking_service(session).find_carriers_for_load(load, options)

    async def find_loads_for_carrier(
        self, carrier_id: uuid.UUID, options: LoadSearchOptions | None = None,
    ) -> RankingResult:
        async with self.session_factory() as session:
            carrier = await session.get(Carrier, carrier_id)
            if carrier is None:
                return _not_found("Carrier", carrier_id, options or LoadSearchOptions())
            return await self.ranking_service(session).find_loads_for_carrier(carrier, options)

    # ── Auto-match ───────────────────────────────────────────────────────

    async def auto_match(
        self,
        load_id: uuid.UUID,
        top_n: int | None = None,
        options: CarrierSearchOptions | None = None,
    ) -> AutoMatchResult:
        async with self.session_factory() as session:
            load = await session.get(Load, load_id)
            if load is None:
                return AutoMatchResult(load_id=load_id, success=False, errors=[f"Load {load_id} not found"])
            committer = MatchCommitter(
                ranking=self.ranking_service(session),
                repository=SqlMatchRepository(session),
                job_queue=self.job_queue,
                distance=self.distance,
                config=self.config,
            )
            return await committer.auto_match(load, top_n=top_n, options=options)

    async def run_auto_match(self, load_id: uuid.UUID, top_n: int | None = None) -> dict:
        """
        Run ``auto_match`` while holding the load's Redis lock.

        Returns ``{"skipped": True}`` if another worker holds the lock.
        """
        lock = self.redis.lock(
            LOCK_KEY_TEMPLATE.format(load_id=load_id),
            timeout=settings.MATCHING_LOCK_TIMEOUT_SECONDS,
            blocking=False,
        )
        if not await lock.acquire():
            logger.warning("Auto-match for load %s skipped: lock held by another worker", load_id)
            return {"skipped": True, "load_id": str(load_id)}

        try:
            result = await self.auto_match(load_id, top_n=top_n)
            return result.to_dict()
        finally:
            try:
                await lock.release()
            except LockError:
                logger.warning("Lock release for load %s failed (may have auto-expired)", load_id)


def _not_found(kind: str, entity_id, options) -> RankingResult:
    return RankingResult(
        success=False,
        results=[],
        pagination=Pagination(current_page=options.page, per_page=options.per_page),
        errors=[f"{kind} {entity_id} not found"],
    )


# Module-level singleton (uses default session factory, queue and redis)
matching_engine = MatchingEngine()
