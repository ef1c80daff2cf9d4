"""
Auto-match: turn the top-ranked carriers for a load into offered matches.

Per candidate, in rank order:

1. Skip if a match for (load, carrier) already exists.
2. Insert a ``pending`` match.  The repository's unique constraint is
   the real guard; a violation there is the same skip as step 1.
3. Fire ``make_offer`` through the state machine if its guard allows.
4. Enqueue a carrier notification.

One candidate failing never stops the batch; every outcome is itemised
in the returned ``AutoMatchResult``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, time, timedelta, timezone
from decimal import Decimal

from freightmatch.matching_engine.config import DEFAULT_CONFIG, MatchingConfig
from freightmatch.matching_engine.distance import DistanceEstimator
from freightmatch.matching_engine.errors import ConstraintViolation, InvalidInput, InvalidTransition
from freightmatch.matching_engine.ranking import RankingService, ScoredCandidate, haul_miles
from freightmatch.matching_engine.store import JobQueue, MatchDraft, MatchRepository
from freightmatch.models.load import Load
from freightmatch.models.match import Match, MatchEvent
from freightmatch.schemas.matching import CarrierSearchOptions

logger = logging.getLogger(__name__)

SKIP_ALREADY_MATCHED = "already_matched"
SKIP_TRANSITION_REJECTED = "transition_rejected"
SKIP_LOAD_UNAVAILABLE = "load_unavailable"

NOTIFY_CARRIER = "notify_carrier"


@dataclass
class AutoMatchResult:
    load_id: object
    success: bool = True
    created: list[Match] = field(default_factory=list)
    skipped: list[dict] = field(default_factory=list)
    failed: list[dict] = field(default_factory=list)
    ranking_incomplete: bool = False
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "load_id": str(self.load_id),
            "success": self.success,
            "matches_created": [str(m.id) for m in self.created],
            "total_matches": len(self.created),
            "skipped": self.skipped,
            "failed": self.failed,
            "ranking_incomplete": self.ranking_incomplete,
            "errors": self.errors,
        }


def _start_of_day(day) -> datetime:
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


class MatchCommitter:
    """Creates and offers matches for a load's best carriers."""

    def __init__(
        self,
        ranking: RankingService,
        repository: MatchRepository,
        job_queue: JobQueue | None = None,
        distance: DistanceEstimator | None = None,
        config: MatchingConfig | None = None,
    ):
        self.ranking = ranking
        self.repository = repository
        self.job_queue = job_queue
        self.config = config or DEFAULT_CONFIG
        self.distance = distance or ranking.distance

    async def auto_match(
        self,
        load: Load,
        top_n: int | None = None,
        options: CarrierSearchOptions | None = None,
    ) -> AutoMatchResult:
        if top_n is None:
            top_n = self.config.auto_match_top_n
        if top_n < 0:
            raise InvalidInput(f"top_n must be non-negative, got {top_n}")
        result = AutoMatchResult(load_id=load.id)

        if not load.available_for_matching:
            logger.info("Load %s is not available for matching; auto-match skipped", load.id)
            result.skipped.append({"carrier_id": None, "reason": SKIP_LOAD_UNAVAILABLE})
            return result

        ranking = await self.ranking.find_carriers_for_load(load, self.ranking_options(top_n, options))
        if not ranking.success:
            result.success = False
            result.errors.extend(ranking.errors)
            return result
        result.ranking_incomplete = ranking.incomplete
        result.errors.extend(ranking.errors)

        # Drafts are built before any write: a failed write may expire ORM state.
        drafts = [self.build_draft(load, candidate) for candidate in ranking.ranked[:top_n]]
        for draft in drafts:
            await self._commit_draft(draft, result)

        logger.info(
            "Auto-match for load %s: %d created, %d skipped, %d failed",
            result.load_id, len(result.created), len(result.skipped), len(result.failed),
        )
        return result

    def ranking_options(self, top_n: int, options: CarrierSearchOptions | None) -> CarrierSearchOptions:
        """Search options whose result cap never falls below *top_n*."""
        if options is None:
            return CarrierSearchOptions(
                limit=max(top_n, self.config.carrier_result_limit),
                per_page=self.config.default_per_page,
            )
        if options.limit is not None and options.limit < top_n:
            return options.model_copy(update={"limit": top_n})
        return options

    async def _commit_draft(self, draft: MatchDraft, result: AutoMatchResult) -> None:
        load_id, carrier_id = draft.load_id, draft.carrier_id
        try:
            if await self.repository.exists(load_id, carrier_id):
                result.skipped.append({"carrier_id": str(carrier_id), "reason": SKIP_ALREADY_MATCHED})
                return
            match = await self.repository.create(draft)
        except ConstraintViolation:
            logger.info("Match for load %s / carrier %s already exists", load_id, carrier_id)
            result.skipped.append({"carrier_id": str(carrier_id), "reason": SKIP_ALREADY_MATCHED})
            return
        except Exception as exc:
            logger.exception("Failed to create match for load %s / carrier %s", load_id, carrier_id)
            result.failed.append({"carrier_id": str(carrier_id), "error": str(exc)})
            return

        match_id = match.id
        if match.may(MatchEvent.MAKE_OFFER):
            try:
                await self.repository.guarded_transition(match, MatchEvent.MAKE_OFFER)
            except InvalidTransition as exc:
                logger.warning("Offer rejected for match %s: %s", match_id, exc)
                result.skipped.append({"carrier_id": str(carrier_id), "reason": SKIP_TRANSITION_REJECTED})
                return
            except Exception as exc:
                logger.exception("Failed to offer match %s", match_id)
                result.failed.append({"carrier_id": str(carrier_id), "error": str(exc)})
                return
            self._notify(match_id)

        result.created.append(match)

    def _notify(self, match_id) -> None:
        if self.job_queue is None:
            return
        self.job_queue.enqueue(NOTIFY_CARRIER, {"match_id": str(match_id)})

    # ── Draft construction ───────────────────────────────────────────────

    def build_draft(self, load: Load, candidate: ScoredCandidate) -> MatchDraft:
        score = Decimal(str(round(candidate.score, 2)))
        deadhead = candidate.distance_to_pickup
        pickup_at = self.estimate_pickup_time(load, deadhead)
        return MatchDraft(
            load_id=load.id,
            carrier_id=candidate.candidate.id,
            match_score=score,
            rate_offered=load.total_rate,
            estimated_pickup_time=pickup_at,
            estimated_delivery_time=self.estimate_delivery_time(load, pickup_at),
            distance_to_pickup=None if deadhead is None else Decimal(str(round(deadhead, 2))),
            notes=f"Auto-matched based on compatibility score: {score}",
        )

    def estimate_pickup_time(self, load: Load, deadhead_miles: float | None, now: datetime | None = None) -> datetime:
        """Arrival after the deadhead drive, never before the start of the pickup day."""
        target = _start_of_day(load.pickup_date)
        if deadhead_miles is None:
            return target
        now = now or datetime.now(timezone.utc)
        arrival = now + timedelta(hours=self.distance.estimate_travel_hours(deadhead_miles))
        return max(arrival, target)

    def estimate_delivery_time(self, load: Load, pickup_at: datetime) -> datetime:
        target = _start_of_day(load.delivery_date)
        miles = haul_miles(self.distance, load)
        if miles is None:
            return target
        arrival = pickup_at + timedelta(hours=self.distance.estimate_travel_hours(miles))
        return max(arrival, target)
