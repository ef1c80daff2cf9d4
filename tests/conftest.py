"""
Shared test fixtures for FreightMatch.

Provides model factories, a stub distance provider, and in-memory
doubles for the candidate store, match repository and job queue so the
engine can be exercised without PostgreSQL, Redis or Celery.
"""

import asyncio
import uuid
from datetime import date, timedelta
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from freightmatch.matching_engine.distance import DistanceEstimator
from freightmatch.matching_engine.errors import CandidateStoreFailure, ConstraintViolation
from freightmatch.models.carrier import Carrier, Driver, SafetyRating, Vehicle
from freightmatch.models.load import EquipmentType, Load
from freightmatch.models.match import Match

DALLAS = (Decimal("32.776700"), Decimal("-96.797000"))
HOUSTON = (Decimal("29.760400"), Decimal("-95.369800"))


# --- Model factories ---


def _make_vehicle(**overrides) -> Vehicle:
    defaults = {
        "equipment_type": EquipmentType.DRY_VAN,
        "capacity_weight": Decimal("45000"),
    }
    defaults.update(overrides)
    return Vehicle(**defaults)


def _make_driver(**overrides) -> Driver:
    defaults = {"full_name": "Dale Rivers"}
    defaults.update(overrides)
    return Driver(**defaults)


def _make_carrier(vehicles=None, drivers=None, **overrides) -> Carrier:
    """Verified Dallas dry-van carrier serving TX, with one truck and one driver."""
    defaults = {
        "company_name": "Lone Star Freight",
        "equipment_types": ["dry_van"],
        "service_areas": ["TX"],
        "safety_rating": SafetyRating.SATISFACTORY,
        "average_rating": Decimal("3.50"),
        "on_time_percentage": Decimal("85.00"),
        "is_verified": True,
        "latitude": DALLAS[0],
        "longitude": DALLAS[1],
        "available_capacity": Decimal("20000"),
    }
    defaults.update(overrides)
    carrier = Carrier(**defaults)
    carrier.vehicles = [_make_vehicle()] if vehicles is None else vehicles
    carrier.drivers = [_make_driver()] if drivers is None else drivers
    return carrier


def _make_load(**overrides) -> Load:
    """Posted Dallas -> Houston dry-van load picking up in two days."""
    today = date.today()
    defaults = {
        "shipper_id": uuid.uuid4(),
        "reference_number": "FM-1001",
        "commodity": "Paper goods",
        "equipment_type": EquipmentType.DRY_VAN,
        "origin_city": "Dallas",
        "origin_region": "TX",
        "origin_latitude": DALLAS[0],
        "origin_longitude": DALLAS[1],
        "destination_city": "Houston",
        "destination_region": "TX",
        "destination_latitude": HOUSTON[0],
        "destination_longitude": HOUSTON[1],
        "estimated_distance_miles": Decimal("240"),
        "weight": Decimal("10000"),
        "pickup_date": today + timedelta(days=2),
        "delivery_date": today + timedelta(days=3),
        "rate": Decimal("1500.00"),
    }
    defaults.update(overrides)
    return Load(**defaults)


@pytest.fixture
def make_vehicle():
    return _make_vehicle


@pytest.fixture
def make_driver():
    return _make_driver


@pytest.fixture
def make_carrier():
    """Factory fixture for creating Carrier instances."""
    return _make_carrier


@pytest.fixture
def make_load():
    """Factory fixture for creating Load instances."""
    return _make_load


# --- Distance ---


class StubDistanceProvider:
    """
    Deterministic distances keyed by the first point.

    ``by_origin`` maps a ``(lat, lon)`` float pair to miles; anything
    else gets ``default``.
    """

    def __init__(self, default: float = 30.0, by_origin: dict | None = None):
        self.default = default
        self.by_origin = by_origin or {}
        self.calls = 0

    def miles(self, a, b) -> float:
        self.calls += 1
        return self.by_origin.get(tuple(a), self.default)


@pytest.fixture
def stub_provider():
    return StubDistanceProvider()


@pytest.fixture
def stub_distance(stub_provider):
    """DistanceEstimator backed by the stub provider (30 miles everywhere)."""
    return DistanceEstimator(provider=stub_provider)


@pytest.fixture
def make_distance():
    """Factory for estimators over a fresh stub provider."""
    def factory(default: float = 30.0, by_origin: dict | None = None) -> DistanceEstimator:
        return DistanceEstimator(provider=StubDistanceProvider(default, by_origin))
    return factory


# --- In-memory collaborators ---


class InMemoryCandidateStore:
    def __init__(self, carriers=(), loads=(), accepted=None, fail: bool = False):
        self.carriers = list(carriers)
        self.loads = list(loads)
        self.accepted = dict(accepted or {})
        self.fail = fail
        self.calls: list[tuple] = []

    async def active_verified_carriers(self, near=None, radius_miles=None):
        self.calls.append(("carriers", near, radius_miles))
        if self.fail:
            raise CandidateStoreFailure("Could not load carriers: connection refused")
        return [c for c in self.carriers if c.is_active and c.is_verified]

    async def available_loads(self, near=None, radius_miles=None):
        self.calls.append(("loads", near, radius_miles))
        if self.fail:
            raise CandidateStoreFailure("Could not load loads: connection refused")
        return [ld for ld in self.loads if ld.available_for_matching]

    async def accepted_match_counts(self, carrier_ids, shipper_ids):
        carrier_ids, shipper_ids = set(carrier_ids), set(shipper_ids)
        return {
            key: count for key, count in self.accepted.items()
            if key[0] in carrier_ids and key[1] in shipper_ids
        }


class InMemoryMatchRepository:
    """
    Match storage with a unique (load, carrier) key.

    ``create`` yields to the event loop before inserting so concurrent
    callers interleave between ``exists`` and the insert; the key check
    and insert themselves run without a yield, like a unique constraint.
    """

    def __init__(self):
        self.rows: dict[tuple, Match] = {}
        self.transitions: list = []

    async def exists(self, load_id, carrier_id) -> bool:
        await asyncio.sleep(0)
        return (load_id, carrier_id) in self.rows

    async def create(self, draft) -> Match:
        await asyncio.sleep(0)
        key = (draft.load_id, draft.carrier_id)
        if key in self.rows:
            raise ConstraintViolation(*key)
        match = draft.to_model()
        self.rows[key] = match
        return match

    async def guarded_transition(self, match, match_event):
        match.fire(match_event)
        self.transitions.append((match.id, match_event))
        return match


@pytest.fixture
def make_store():
    return InMemoryCandidateStore


@pytest.fixture
def match_repo():
    return InMemoryMatchRepository()


@pytest.fixture
def job_queue():
    queue = MagicMock()
    queue.enqueue = MagicMock()
    return queue


# --- Mock Database Session ---


@pytest.fixture
def mock_db():
    """AsyncMock database session."""
    db = AsyncMock()

    mock_result = MagicMock()
    mock_result.scalar_one_or_none = MagicMock(return_value=None)
    db.execute = AsyncMock(return_value=mock_result)
    db.add = MagicMock()
    db.commit = AsyncMock()
    db.rollback = AsyncMock()
    return db

