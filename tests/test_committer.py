"""Tests for auto-match: idempotent match creation, offers and notifications."""

import asyncio
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from freightmatch.matching_engine.committer import (
    NOTIFY_CARRIER,
    SKIP_ALREADY_MATCHED,
    SKIP_LOAD_UNAVAILABLE,
    SKIP_TRANSITION_REJECTED,
    MatchCommitter,
)
from freightmatch.matching_engine.errors import ConstraintViolation, InvalidInput, InvalidTransition
from freightmatch.matching_engine.ranking import RankingService
from freightmatch.matching_engine.store import MatchDraft
from freightmatch.models.load import LoadStatus
from freightmatch.models.match import MatchEvent, MatchStatus
from freightmatch.schemas.matching import CarrierSearchOptions


@pytest.fixture
def pool(make_carrier):
    """Seven eligible carriers, best last."""
    return [make_carrier(company_name=f"C{i}", on_time_percentage=Decimal(50 + i)) for i in range(7)]


@pytest.fixture
def committer_for(stub_distance, make_store, match_repo, job_queue):
    def factory(carriers, repository=None, queue=job_queue, **store_kwargs):
        store = make_store(carriers=carriers, **store_kwargs)
        ranking = RankingService(store=store, distance=stub_distance)
        return MatchCommitter(ranking, repository or match_repo, queue)
    return factory


def _repo_mock(create_side_effect=None, transition_side_effect=None):
    repo = AsyncMock()
    repo.exists = AsyncMock(return_value=False)

    async def create(draft):
        if create_side_effect is not None:
            raise create_side_effect
        return draft.to_model()

    async def transition(match, match_event):
        if transition_side_effect is not None:
            raise transition_side_effect
        match.fire(match_event)
        return match

    repo.create = AsyncMock(side_effect=create)
    repo.guarded_transition = AsyncMock(side_effect=transition)
    return repo


# ===========================================================================
# Happy path
# ===========================================================================


class TestAutoMatch:
    @pytest.mark.asyncio
    async def test_creates_and_offers_top_five(self, committer_for, make_load, pool, match_repo, job_queue):
        load = make_load()
        result = await committer_for(pool).auto_match(load)

        assert result.success
        assert [m.carrier_id for m in result.created] == [c.id for c in reversed(pool[2:])]
        assert all(m.status == MatchStatus.OFFERED for m in result.created)
        assert all(m.matched_at is not None for m in result.created)
        assert len(match_repo.rows) == 5
        assert result.skipped == [] and result.failed == []

        assert job_queue.enqueue.call_count == 5
        kinds = {call.args[0] for call in job_queue.enqueue.call_args_list}
        assert kinds == {NOTIFY_CARRIER}
        first_payload = job_queue.enqueue.call_args_list[0].args[1]
        assert first_payload == {"match_id": str(result.created[0].id)}

    @pytest.mark.asyncio
    async def test_top_n_override(self, committer_for, make_load, pool):
        result = await committer_for(pool).auto_match(make_load(), top_n=2)
        assert len(result.created) == 2

    @pytest.mark.asyncio
    async def test_top_n_above_result_limit(self, committer_for, make_load, make_carrier, match_repo):
        carriers = [make_carrier(company_name=f"C{i}") for i in range(15)]
        result = await committer_for(carriers).auto_match(make_load(), top_n=12)
        assert len(result.created) == 12
        assert len(match_repo.rows) == 12

    @pytest.mark.asyncio
    async def test_supplied_limit_raised_to_top_n(self, committer_for, make_load, pool):
        options = CarrierSearchOptions(limit=3)
        result = await committer_for(pool).auto_match(make_load(), top_n=6, options=options)
        assert len(result.created) == 6
        assert options.limit == 3

    @pytest.mark.asyncio
    async def test_top_n_zero_creates_nothing(self, committer_for, make_load, pool, match_repo, job_queue):
        result = await committer_for(pool).auto_match(make_load(), top_n=0)
        assert result.success
        assert result.created == []
        assert match_repo.rows == {}
        job_queue.enqueue.assert_not_called()

    @pytest.mark.asyncio
    async def test_negative_top_n_rejected(self, committer_for, make_load, pool):
        with pytest.raises(InvalidInput):
            await committer_for(pool).auto_match(make_load(), top_n=-1)

    @pytest.mark.asyncio
    async def test_fewer_candidates_than_top_n(self, committer_for, make_load, make_carrier):
        result = await committer_for([make_carrier()]).auto_match(make_load())
        assert len(result.created) == 1

    @pytest.mark.asyncio
    async def test_no_queue_still_offers(self, committer_for, make_load, pool):
        result = await committer_for(pool, queue=None).auto_match(make_load(), top_n=1)
        assert result.created[0].status == MatchStatus.OFFERED

    @pytest.mark.asyncio
    async def test_to_dict(self, committer_for, make_load, pool):
        load = make_load()
        data = (await committer_for(pool).auto_match(load, top_n=3)).to_dict()
        assert data["load_id"] == str(load.id)
        assert data["total_matches"] == 3
        assert len(data["matches_created"]) == 3
        assert data["ranking_incomplete"] is False


# ===========================================================================
# Skips and failures
# ===========================================================================


class TestSkipsAndFailures:
    @pytest.mark.asyncio
    async def test_existing_match_skipped(self, committer_for, make_load, pool, match_repo, job_queue):
        load = make_load()
        best = pool[-1]
        existing = MatchDraft(load.id, best.id, Decimal("1"), None, None, None, None).to_model()
        match_repo.rows[(load.id, best.id)] = existing

        result = await committer_for(pool).auto_match(load)

        assert result.skipped == [{"carrier_id": str(best.id), "reason": SKIP_ALREADY_MATCHED}]
        assert len(result.created) == 4
        assert match_repo.rows[(load.id, best.id)] is existing
        assert job_queue.enqueue.call_count == 4

    @pytest.mark.asyncio
    async def test_constraint_violation_is_a_skip(self, committer_for, make_load, make_carrier, job_queue):
        carrier = make_carrier()
        repo = _repo_mock(create_side_effect=ConstraintViolation("load", carrier.id))
        result = await committer_for([carrier], repository=repo).auto_match(make_load())

        assert result.success
        assert result.created == []
        assert result.skipped[0]["reason"] == SKIP_ALREADY_MATCHED
        job_queue.enqueue.assert_not_called()

    @pytest.mark.asyncio
    async def test_storage_error_recorded_batch_continues(self, committer_for, make_load, pool):
        calls = {"n": 0}
        repo = _repo_mock()
        original = repo.create.side_effect

        async def flaky_create(draft):
            calls["n"] += 1
            if calls["n"] == 1:
                raise RuntimeError("connection reset")
            return await original(draft)

        repo.create.side_effect = flaky_create
        result = await committer_for(pool, repository=repo).auto_match(make_load())

        assert len(result.failed) == 1
        assert result.failed[0]["error"] == "connection reset"
        assert result.failed[0]["carrier_id"] == str(pool[-1].id)
        assert len(result.created) == 4

    @pytest.mark.asyncio
    async def test_rejected_transition(self, committer_for, make_load, make_carrier, job_queue):
        repo = _repo_mock(transition_side_effect=InvalidTransition("already offered"))
        result = await committer_for([make_carrier()], repository=repo).auto_match(make_load())

        assert result.created == []
        assert result.skipped[0]["reason"] == SKIP_TRANSITION_REJECTED
        job_queue.enqueue.assert_not_called()

    @pytest.mark.asyncio
    async def test_transition_storage_error_is_a_failure(self, committer_for, make_load, make_carrier):
        repo = _repo_mock(transition_side_effect=RuntimeError("deadlock"))
        result = await committer_for([make_carrier()], repository=repo).auto_match(make_load())
        assert result.failed[0]["error"] == "deadlock"

    @pytest.mark.asyncio
    async def test_guard_closed_records_without_offer(self, committer_for, make_load, make_carrier, job_queue):
        repo = _repo_mock()

        async def create_offered(draft):
            match = draft.to_model()
            match.fire(MatchEvent.MAKE_OFFER)
            return match

        repo.create.side_effect = create_offered
        result = await committer_for([make_carrier()], repository=repo).auto_match(make_load())

        assert len(result.created) == 1
        repo.guarded_transition.assert_not_called()
        job_queue.enqueue.assert_not_called()

    @pytest.mark.asyncio
    async def test_unavailable_load(self, committer_for, make_load, pool, match_repo):
        committer = committer_for(pool)
        result = await committer.auto_match(make_load(status=LoadStatus.BOOKED))

        assert result.success
        assert result.skipped == [{"carrier_id": None, "reason": SKIP_LOAD_UNAVAILABLE}]
        assert committer.ranking.store.calls == []
        assert match_repo.rows == {}

    @pytest.mark.asyncio
    async def test_expired_load(self, committer_for, make_load, pool):
        load = make_load(expires_at=datetime.now(timezone.utc) - timedelta(minutes=1))
        result = await committer_for(pool).auto_match(load)
        assert result.skipped[0]["reason"] == SKIP_LOAD_UNAVAILABLE

    @pytest.mark.asyncio
    async def test_ranking_failure(self, committer_for, make_load, pool, match_repo):
        result = await committer_for(pool, fail=True).auto_match(make_load())
        assert not result.success
        assert "connection refused" in result.errors[0]
        assert match_repo.rows == {}


# ===========================================================================
# Concurrency
# ===========================================================================


class TestConcurrentAutoMatch:
    @pytest.mark.asyncio
    async def test_no_duplicate_matches(self, committer_for, make_load, pool, match_repo):
        """Concurrent runs for the same load never insert a pair twice."""
        load = make_load()
        committer = committer_for(pool)

        results = await asyncio.gather(*(committer.auto_match(load) for _ in range(4)))

        assert len(match_repo.rows) == 5
        assert sum(len(r.created) for r in results) == 5
        assert sum(len(r.skipped) for r in results) == 15
        assert all(s["reason"] == SKIP_ALREADY_MATCHED for r in results for s in r.skipped)
        created_ids = [m.id for r in results for m in r.created]
        assert len(set(created_ids)) == 5


# ===========================================================================
# Draft construction
# ===========================================================================


class TestDraft:
    @pytest.mark.asyncio
    async def test_draft_fields(self, committer_for, make_load, make_carrier):
        load = make_load(fuel_surcharge=Decimal("120"))
        carrier = make_carrier()
        committer = committer_for([carrier])
        ranking = await committer.ranking.find_carriers_for_load(load)
        candidate = ranking.ranked[0]

        draft = committer.build_draft(load, candidate)

        assert draft.load_id == load.id
        assert draft.carrier_id == carrier.id
        assert draft.match_score == Decimal(str(candidate.score))
        assert draft.rate_offered == Decimal("1620.00")
        assert draft.distance_to_pickup == Decimal("30")
        assert str(draft.match_score) in draft.notes
        assert draft.to_model().status == MatchStatus.PENDING

    def test_pickup_not_before_pickup_day(self, committer_for, make_load):
        committer = committer_for([])
        load = make_load()
        pickup_day = datetime.combine(load.pickup_date, datetime.min.time(), tzinfo=timezone.utc)
        assert committer.estimate_pickup_time(load, 30) == pickup_day
        assert committer.estimate_pickup_time(load, None) == pickup_day

    def test_pickup_after_long_deadhead(self, committer_for, make_load):
        committer = committer_for([])
        load = make_load(pickup_date=date(2030, 1, 1), delivery_date=date(2030, 1, 5))
        now = datetime(2030, 1, 1, 6, 0, tzinfo=timezone.utc)
        assert committer.estimate_pickup_time(load, 110, now=now) == datetime(2030, 1, 1, 8, 0, tzinfo=timezone.utc)

    def test_delivery_not_before_delivery_day(self, committer_for, make_load):
        committer = committer_for([])
        load = make_load(pickup_date=date(2030, 1, 1), delivery_date=date(2030, 1, 3))
        pickup = datetime(2030, 1, 1, 8, 0, tzinfo=timezone.utc)
        assert committer.estimate_delivery_time(load, pickup) == datetime(2030, 1, 3, tzinfo=timezone.utc)

    def test_long_haul_delivery_after_drive(self, committer_for, make_load):
        committer = committer_for([])
        load = make_load(
            pickup_date=date(2030, 1, 1),
            delivery_date=date(2030, 1, 2),
            estimated_distance_miles=Decimal("2200"),
        )
        pickup = datetime(2030, 1, 1, 8, 0, tzinfo=timezone.utc)
        assert committer.estimate_delivery_time(load, pickup) == pickup + timedelta(hours=40)
