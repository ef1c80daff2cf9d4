"""Tests for the Load and Carrier models: derived fields, availability, status transitions."""

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest

from freightmatch.matching_engine.errors import InvalidTransition
from freightmatch.models.carrier import SafetyRating
from freightmatch.models.load import LOAD_TRANSITIONS, EquipmentType, LoadStatus


# ---------------------------------------------------------------------------
# Load
# ---------------------------------------------------------------------------


class TestLoadCreation:
    def test_defaults(self, make_load):
        load = make_load()
        assert load.id is not None
        assert load.status == LoadStatus.POSTED
        assert load.is_hazmat is False
        assert load.fuel_surcharge == Decimal("0")
        assert load.total_rate == Decimal("1500.00")

    def test_total_rate_includes_surcharges(self, make_load):
        load = make_load(fuel_surcharge=Decimal("150.25"), accessorial_charges=Decimal("75"))
        assert load.total_rate == Decimal("1725.25")

    def test_points(self, make_load):
        load = make_load()
        assert load.pickup_point == (32.7767, -96.797)
        assert load.delivery_point == (29.7604, -95.3698)
        assert make_load(origin_latitude=None).pickup_point is None

    def test_special_requirements(self, make_load):
        load = make_load(is_hazmat=True, temperature_controlled=True)
        assert load.special_requirements == ["Hazmat", "Temperature Controlled"]
        assert make_load().special_requirements == []


class TestLoadAvailability:
    def test_posted_future_load_available(self, make_load):
        assert make_load().available_for_matching

    def test_pickup_today_available(self, make_load):
        assert make_load(pickup_date=datetime.now(timezone.utc).date()).available_for_matching

    def test_past_pickup_unavailable(self, make_load):
        assert not make_load(pickup_date=date.today() - timedelta(days=2)).available_for_matching

    def test_expired_unavailable(self, make_load):
        load = make_load(expires_at=datetime.now(timezone.utc) - timedelta(seconds=1))
        assert load.is_expired
        assert not load.available_for_matching

    @pytest.mark.parametrize("status", [LoadStatus.MATCHED, LoadStatus.BOOKED, LoadStatus.CANCELLED])
    def test_non_posted_unavailable(self, make_load, status):
        assert not make_load(status=status).available_for_matching


class TestLoadTransitions:
    def test_valid_transition(self, make_load):
        load = make_load()
        load.transition_to(LoadStatus.BOOKED)
        assert load.status == LoadStatus.BOOKED

    def test_completed_is_final(self, make_load):
        load = make_load(status=LoadStatus.BOOKED)
        load.transition_to(LoadStatus.COMPLETED)
        for target in LoadStatus:
            with pytest.raises(InvalidTransition):
                load.transition_to(target)

    def test_invalid_transition_leaves_status(self, make_load):
        load = make_load()
        with pytest.raises(InvalidTransition):
            load.transition_to(LoadStatus.COMPLETED)
        assert load.status == LoadStatus.POSTED

    def test_every_status_mapped(self):
        assert set(LOAD_TRANSITIONS) == set(LoadStatus)


# ---------------------------------------------------------------------------
# Carrier
# ---------------------------------------------------------------------------


class TestCarrier:
    def test_equipment_list_normalised(self, make_carrier):
        carrier = make_carrier(equipment_types=["Dry_Van", EquipmentType.FLATBED])
        assert carrier.equipment_list == ["dry_van", "flatbed"]

    def test_serves_region(self, make_carrier):
        carrier = make_carrier(service_areas=["tx", "ok"])
        assert carrier.serves_region("TX")
        assert carrier.serves_region("ok")
        assert not carrier.serves_region("CA")
        assert not carrier.serves_region(None)

    def test_all_wildcard(self, make_carrier):
        assert make_carrier(service_areas=["ALL"]).serves_region("AK")

    def test_max_capacity_ignores_inactive(self, make_carrier, make_vehicle):
        carrier = make_carrier(vehicles=[
            make_vehicle(capacity_weight=Decimal("48000"), is_active=False),
            make_vehicle(capacity_weight=Decimal("26000")),
        ])
        assert carrier.max_vehicle_capacity == Decimal("26000")
        assert make_carrier(vehicles=[]).max_vehicle_capacity == Decimal("0")

    def test_safety_score(self, make_carrier):
        assert make_carrier(safety_rating=SafetyRating.CONDITIONAL).safety_score == 70
        assert make_carrier(safety_rating=SafetyRating.NOT_RATED).safety_score == 50

    def test_location_unknown(self, make_carrier):
        assert make_carrier(longitude=None).current_location is None
        assert make_carrier().current_location == (32.7767, -96.797)
