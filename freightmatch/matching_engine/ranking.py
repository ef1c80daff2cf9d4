"""
Ranking: filter, score, sort, cap, paginate.

Works in both directions:

    carriers for a load   subject = Load,    candidates = Carriers
    loads for a carrier   subject = Carrier, candidates = Loads

Per-candidate work (distance lookup, soft filters, scoring, cost) fans
out to worker threads under a per-request semaphore.  An optional
deadline bounds the whole phase; when it fires, unfinished candidates
are dropped and the result is flagged ``incomplete``.

The sort is stable and the pool arrives in a deterministic order, so
equal scores always rank the same way.
"""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass, field
from typing import Sequence

from freightmatch.matching_engine.config import DEFAULT_CONFIG, MatchingConfig
from freightmatch.matching_engine.cost import CostBreakdown, CostEstimator, RevenueEstimate
from freightmatch.matching_engine.distance import DistanceEstimator
from freightmatch.matching_engine.errors import CandidateStoreFailure, LocationUnavailable, MatchingError
from freightmatch.matching_engine.filters import CompatibilityFilter, pickup_distance
from freightmatch.matching_engine.scoring import ScoredResult, ScoringEngine
from freightmatch.matching_engine.store import CandidateStore
from freightmatch.models.carrier import Carrier
from freightmatch.models.load import Load
from freightmatch.schemas.matching import CarrierSearchOptions, LoadSearchOptions, Pagination

logger = logging.getLogger(__name__)


@dataclass
class ScoredCandidate:
    candidate: Carrier | Load
    score: float
    result: ScoredResult
    distance_to_pickup: float | None = None
    cost_estimate: CostBreakdown | None = None
    revenue_estimate: RevenueEstimate | None = None

    def to_dict(self) -> dict:
        data = {
            "id": str(self.candidate.id),
            "score": self.score,
            "base_score": self.result.base_score,
            "bonus_breakdown": self.result.bonus_breakdown,
            "compatibility_rating": self.result.compatibility_rating,
            "distance_to_pickup": None if self.distance_to_pickup is None else round(self.distance_to_pickup, 2),
            "cost_estimate": self.cost_estimate.to_dict() if self.cost_estimate else None,
        }
        if self.revenue_estimate is not None:
            data["revenue_estimate"] = self.revenue_estimate.to_dict()
        return data


@dataclass
class RankingResult:
    success: bool
    results: list[ScoredCandidate]
    pagination: Pagination
    total_found: int = 0
    incomplete: bool = False
    errors: list[str] = field(default_factory=list)
    search_criteria: dict = field(default_factory=dict)
    # Full ranking after the cap, before pagination
    ranked: list[ScoredCandidate] = field(default_factory=list, repr=False)

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "results": [r.to_dict() for r in self.results],
            "pagination": self.pagination.model_dump(),
            "total_found": self.total_found,
            "incomplete": self.incomplete,
            "errors": self.errors,
            "search_criteria": self.search_criteria,
        }


def paginate(items: Sequence, page: int, per_page: int) -> tuple[list, Pagination]:
    """Slice a 1-indexed page out of *items*."""
    total = len(items)
    total_pages = math.ceil(total / per_page) if total else 0
    start = (page - 1) * per_page
    return list(items[start:start + per_page]), Pagination(
        current_page=page,
        per_page=per_page,
        total_count=total,
        total_pages=total_pages,
        has_next_page=page < total_pages,
        has_previous_page=page > 1,
    )


def haul_miles(estimator: DistanceEstimator, load: Load) -> float | None:
    """Loaded miles for *load*: the posted figure, else a road estimate."""
    if load.estimated_distance_miles:
        return float(load.estimated_distance_miles)
    try:
        return estimator.route(load.pickup_point, load.delivery_point).miles
    except LocationUnavailable:
        return None


class RankingService:
    """Ranks candidates for a load or a carrier."""

    def __init__(
        self,
        store: CandidateStore | None = None,
        scoring: ScoringEngine | None = None,
        distance: DistanceEstimator | None = None,
        cost: CostEstimator | None = None,
        config: MatchingConfig | None = None,
    ):
        self.config = config or DEFAULT_CONFIG
        self.store = store
        self.distance = distance or DistanceEstimator(config=self.config)
        self.scoring = scoring or ScoringEngine(config=self.config)
        self.cost = cost or CostEstimator(config=self.config, distance=self.distance)
        self.filter = CompatibilityFilter(distance=self.distance)

    # ── Store-backed entry points ────────────────────────────────────────

    async def find_carriers_for_load(
        self, load: Load, options: CarrierSearchOptions | None = None,
    ) -> RankingResult:
        options = options or self.default_options(for_load=True)
        near = load.pickup_point if options.max_distance_to_pickup is not None else None
        try:
            pool = await self.store.active_verified_carriers(
                near=near, radius_miles=options.max_distance_to_pickup if near else None,
            )
        except CandidateStoreFailure as exc:
            logger.error("Carrier search for load %s failed: %s", load.id, exc)
            return self._failure(load, options, str(exc))
        return await self.rank(load, pool, options)

    async def find_loads_for_carrier(
        self, carrier: Carrier, options: LoadSearchOptions | None = None,
    ) -> RankingResult:
        options = options or self.default_options(for_load=False)
        near = carrier.current_location if options.max_distance_to_pickup is not None else None
        try:
            pool = await self.store.available_loads(
                near=near, radius_miles=options.max_distance_to_pickup if near else None,
            )
        except CandidateStoreFailure as exc:
            logger.error("Load search for carrier %s failed: %s", carrier.id, exc)
            return self._failure(carrier, options, str(exc))
        return await self.rank(carrier, pool, options)

    # ── Core pipeline ────────────────────────────────────────────────────

    async def rank(self, subject: Load | Carrier, candidates: Sequence, options=None) -> RankingResult:
        """
        Filter, score, sort, cap and paginate an explicit candidate pool.

        *subject* is a Load (ranking carriers) or a Carrier (ranking loads).
        """
        for_load = isinstance(subject, Load)
        if options is None:
            options = self.default_options(for_load)

        if for_load:
            survivors = self.filter.filter_carriers(subject, candidates)
        else:
            survivors = self.filter.filter_loads(subject, candidates)

        try:
            prior = await self._prior_accepted(subject, survivors, for_load)
        except CandidateStoreFailure as exc:
            logger.error("Ranking for %s failed: %s", subject.id, exc)
            return self._failure(subject, options, str(exc))

        scored, errors, incomplete = await self._score_all(subject, survivors, options, prior, for_load)

        ranked = sorted(scored, key=lambda s: -s.score)
        total_found = len(ranked)
        if options.limit is not None:
            ranked = ranked[:options.limit]

        page_items, pagination = paginate(ranked, options.page, options.per_page)
        if incomplete:
            logger.warning(
                "Ranking for %s hit its deadline: %d of %d candidates scored",
                subject.id, len(scored), len(survivors),
            )

        return RankingResult(
            success=True,
            results=page_items,
            pagination=pagination,
            total_found=total_found,
            incomplete=incomplete,
            errors=errors,
            search_criteria=self._criteria(subject, options),
            ranked=ranked,
        )

    async def _score_all(self, subject, survivors, options, prior, for_load):
        """Fan out per-candidate work; returns (scored in pool order, errors, incomplete)."""
        if not survivors:
            return [], [], False

        semaphore = asyncio.Semaphore(self.config.scoring_concurrency)
        evaluate = self._evaluate_carrier if for_load else self._evaluate_load

        async def worker(candidate):
            async with semaphore:
                return await asyncio.to_thread(evaluate, subject, candidate, options, prior)

        tasks = [asyncio.create_task(worker(c)) for c in survivors]
        done, pending = await asyncio.wait(tasks, timeout=options.deadline_seconds)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        scored: list[ScoredCandidate] = []
        errors: list[str] = []
        for candidate, task in zip(survivors, tasks):
            if task not in done:
                continue
            exc = task.exception()
            if exc is None:
                if task.result() is not None:
                    scored.append(task.result())
            elif isinstance(exc, MatchingError):
                logger.warning("Skipping candidate %s: %s", candidate.id, exc)
                errors.append(f"{candidate.id}: {exc}")
            else:
                raise exc
        return scored, errors, bool(pending)

    def _evaluate_carrier(self, load: Load, carrier: Carrier, options, prior) -> ScoredCandidate | None:
        deadhead = pickup_distance(self.distance, load, carrier)
        if not self.filter.admits_carrier(load, carrier, options, deadhead):
            return None
        result = self.scoring.score(load, carrier, deadhead, prior.get((carrier.id, load.shipper_id), 0))
        haul = haul_miles(self.distance, load)
        cost = None
        if haul is not None:
            cost = self.cost.estimate(haul + (deadhead or 0.0), load.equipment_type)
        return ScoredCandidate(
            candidate=carrier,
            score=result.total_score,
            result=result,
            distance_to_pickup=deadhead,
            cost_estimate=cost,
        )

    def _evaluate_load(self, carrier: Carrier, load: Load, options, prior) -> ScoredCandidate | None:
        deadhead = pickup_distance(self.distance, load, carrier)
        if not self.filter.admits_load(carrier, load, options, deadhead):
            return None
        result = self.scoring.score(load, carrier, deadhead, prior.get((carrier.id, load.shipper_id), 0))
        haul = haul_miles(self.distance, load)
        cost = None
        if haul is not None:
            cost = self.cost.estimate(haul + (deadhead or 0.0), load.equipment_type)
        revenue = self.cost.estimate_revenue(load.total_rate, haul, deadhead, load.equipment_type)
        return ScoredCandidate(
            candidate=load,
            score=result.total_score,
            result=result,
            distance_to_pickup=deadhead,
            cost_estimate=cost,
            revenue_estimate=revenue,
        )

    # ── Helpers ──────────────────────────────────────────────────────────

    def default_options(self, for_load: bool):
        if for_load:
            return CarrierSearchOptions(
                limit=self.config.carrier_result_limit,
                per_page=self.config.default_per_page,
            )
        return LoadSearchOptions(per_page=self.config.default_per_page)

    async def _prior_accepted(self, subject, survivors, for_load) -> dict:
        if self.store is None or not survivors:
            return {}
        if for_load:
            carrier_ids, shipper_ids = [c.id for c in survivors], [subject.shipper_id]
        else:
            carrier_ids, shipper_ids = [subject.id], list({ld.shipper_id for ld in survivors})
        return await self.store.accepted_match_counts(carrier_ids, shipper_ids)

    @staticmethod
    def _criteria(subject, options) -> dict:
        criteria = options.model_dump(mode="json", exclude_none=True)
        key = "load_id" if isinstance(subject, Load) else "carrier_id"
        criteria[key] = str(subject.id)
        return criteria

    def _failure(self, subject, options, message: str) -> RankingResult:
        return RankingResult(
            success=False,
            results=[],
            pagination=Pagination(current_page=options.page, per_page=options.per_page),
            errors=[message],
            search_criteria=self._criteria(subject, options),
        )
