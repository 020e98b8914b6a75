"""Unit tests for the hunt-plan matcher.

Plans and loads are SimpleNamespace stand-ins; the matcher only reads
attributes.
"""

from datetime import date, datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from load_hunter.services.hunt_matcher import (
    REASON_DATE,
    REASON_MATCHED,
    REASON_NO_GEOGRAPHY,
    REASON_NOT_NEW,
    REASON_OUT_OF_RADIUS,
    REASON_STALE,
    REASON_TENANT_MISMATCH,
    REASON_VEHICLE_TYPE,
    REASON_ZIP,
    evaluate_match,
    matches,
    parse_pickup_radius,
)
from load_hunter.services.vehicle_types import VehicleTypeCanonicalizer

NOW = datetime(2025, 12, 19, 15, 0, tzinfo=timezone.utc)


def _make_plan(**kwargs):
    """Create a simple namespace that acts like a hunt plan."""
    defaults = {
        "id": "plan-1",
        "tenant_id": "tenant-a",
        "enabled": True,
        "vehicle_sizes": [],
        "zip_code": None,
        "pickup_radius": None,
        "hunt_lat": None,
        "hunt_lng": None,
        "available_date": None,
    }
    defaults.update(kwargs)
    return SimpleNamespace(**defaults)


def _make_load(**kwargs):
    """Create a simple namespace that acts like a load email."""
    defaults = {
        "id": "load-1",
        "tenant_id": "tenant-a",
        "status": "new",
        "received_at": NOW - timedelta(minutes=5),
        "expires_at": None,
        "pickup_date": None,
        "load_type": None,
        "origin_zip": None,
        "origin_lat": None,
        "origin_lng": None,
    }
    defaults.update(kwargs)
    return SimpleNamespace(**defaults)


# ---------------------------------------------------------------------------
# Geography
# ---------------------------------------------------------------------------


class TestGeography:

    def test_zip_fallback_without_coordinates(self):
        """Pickup zip 90210, radius unset, origin zip 90210 -> match."""
        plan = _make_plan(zip_code="90210")
        load = _make_load(origin_zip="90210")
        result = evaluate_match(plan, load, NOW)
        assert result.matched
        assert result.reason == REASON_MATCHED
        assert result.distance_miles is None

    def test_zip_mismatch(self):
        result = evaluate_match(_make_plan(zip_code="90210"), _make_load(origin_zip="10001"), NOW)
        assert not result.matched
        assert result.reason == REASON_ZIP

    def test_within_radius(self):
        plan = _make_plan(hunt_lat=34.0, hunt_lng=-118.0, pickup_radius="50")
        load = _make_load(origin_lat=34.3, origin_lng=-118.2)
        result = evaluate_match(plan, load, NOW)
        assert result.matched
        assert 20 < result.distance_miles < 30

    def test_outside_radius(self):
        plan = _make_plan(hunt_lat=34.0, hunt_lng=-118.0, pickup_radius="50")
        load = _make_load(origin_lat=36.0, origin_lng=-120.0)
        result = evaluate_match(plan, load, NOW)
        assert not result.matched
        assert result.reason == REASON_OUT_OF_RADIUS
        assert result.distance_miles > 150

    def test_coordinates_take_precedence_over_zip(self):
        plan = _make_plan(hunt_lat=34.0, hunt_lng=-118.0, pickup_radius="50", zip_code="90210")
        load = _make_load(origin_lat=36.0, origin_lng=-120.0, origin_zip="90210")
        assert not matches(plan, load, NOW)

    def test_default_radius_when_unset(self):
        plan = _make_plan(hunt_lat=34.0, hunt_lng=-118.0)
        # ~69 miles north: inside the 100 mile default
        load = _make_load(origin_lat=35.0, origin_lng=-118.0)
        assert matches(plan, load, NOW)

    def test_partial_coordinates_fall_back_to_zip(self):
        plan = _make_plan(hunt_lat=34.0, hunt_lng=None, zip_code="90210")
        load = _make_load(origin_lat=34.0, origin_lng=-118.0, origin_zip="90210")
        result = evaluate_match(plan, load, NOW)
        assert result.matched
        assert result.distance_miles is None

    def test_no_geography_never_matches(self):
        result = evaluate_match(_make_plan(), _make_load(), NOW)
        assert not result.matched
        assert result.reason == REASON_NO_GEOGRAPHY

    def test_plan_zip_without_load_origin(self):
        result = evaluate_match(_make_plan(zip_code="90210"), _make_load(), NOW)
        assert result.reason == REASON_NO_GEOGRAPHY


class TestParsePickupRadius:

    @pytest.mark.parametrize("raw,expected", [
        ("50", 50.0),
        ("75 mi", 75.0),
        (" 120 ", 120.0),
        (25, 25.0),
        ("12.5", 12.5),
        (None, 100.0),
        ("", 100.0),
        ("anywhere", 100.0),
        ("0", 100.0),
        (-10, 100.0),
    ])
    def test_parse(self, raw, expected):
        assert parse_pickup_radius(raw) == expected

    def test_custom_default(self):
        assert parse_pickup_radius(None, default=250) == 250.0


# ---------------------------------------------------------------------------
# Eligibility
# ---------------------------------------------------------------------------


class TestEligibility:

    @pytest.mark.parametrize("status", ["reviewed", "assigned", "archived"])
    def test_load_must_be_new(self, status):
        plan = _make_plan(zip_code="90210")
        load = _make_load(origin_zip="90210", status=status)
        assert evaluate_match(plan, load, NOW).reason == REASON_NOT_NEW

    def test_stale_load_excluded(self):
        plan = _make_plan(zip_code="90210")
        load = _make_load(origin_zip="90210", received_at=NOW - timedelta(minutes=40))
        assert evaluate_match(plan, load, NOW, window="30m").reason == REASON_STALE

    def test_stale_load_included_in_wider_window(self):
        plan = _make_plan(zip_code="90210")
        load = _make_load(origin_zip="90210", received_at=NOW - timedelta(minutes=40))
        assert matches(plan, load, NOW, window="6h")

    def test_old_load_with_expiration_is_eligible(self):
        plan = _make_plan(zip_code="90210")
        load = _make_load(
            origin_zip="90210",
            received_at=NOW - timedelta(hours=5),
            expires_at=NOW + timedelta(hours=1),
        )
        assert matches(plan, load, NOW)

    def test_cross_tenant_pair_never_matches(self):
        plan = _make_plan(zip_code="90210")
        load = _make_load(origin_zip="90210", tenant_id="tenant-b")
        assert evaluate_match(plan, load, NOW).reason == REASON_TENANT_MISMATCH


# ---------------------------------------------------------------------------
# Date
# ---------------------------------------------------------------------------


class TestDate:

    def test_same_day(self):
        plan = _make_plan(zip_code="90210", available_date=date(2025, 12, 19))
        load = _make_load(origin_zip="90210", pickup_date="2025-12-19 08:00 CST")
        assert matches(plan, load, NOW)

    def test_different_day(self):
        plan = _make_plan(zip_code="90210", available_date=date(2025, 12, 19))
        load = _make_load(origin_zip="90210", pickup_date="12/20/25")
        assert evaluate_match(plan, load, NOW).reason == REASON_DATE

    def test_date_only_string_not_shifted(self):
        plan = _make_plan(zip_code="90210", available_date="2025-12-19")
        load = _make_load(origin_zip="90210", pickup_date="2025-12-19")
        assert matches(plan, load, NOW)

    def test_offset_timestamp_compared_in_utc(self):
        # 22:00 in New York on the 19th is already the 20th in UTC
        plan = _make_plan(zip_code="90210", available_date=date(2025, 12, 20))
        load = _make_load(origin_zip="90210", pickup_date="2025-12-19T22:00:00-05:00")
        assert matches(plan, load, NOW)

    def test_unparsable_pickup_date_is_no_match(self):
        plan = _make_plan(zip_code="90210", available_date=date(2025, 12, 19))
        load = _make_load(origin_zip="90210", pickup_date="ASAP")
        assert evaluate_match(plan, load, NOW).reason == REASON_DATE

    def test_missing_side_skips_rule(self):
        plan = _make_plan(zip_code="90210", available_date=None)
        load = _make_load(origin_zip="90210", pickup_date="ASAP")
        assert matches(plan, load, NOW)


# ---------------------------------------------------------------------------
# Vehicle type
# ---------------------------------------------------------------------------


class TestVehicleType:

    @pytest.fixture
    def canonicalizer(self):
        return VehicleTypeCanonicalizer({"sprinter van": "SPRINTER"})

    def test_mapped_type_matches(self, canonicalizer):
        plan = _make_plan(zip_code="90210", vehicle_sizes=["SPRINTER"])
        load = _make_load(origin_zip="90210", load_type="sprinter van")
        assert matches(plan, load, NOW, canonicalizer=canonicalizer)

    def test_unmapped_type_does_not_match(self, canonicalizer):
        plan = _make_plan(zip_code="90210", vehicle_sizes=["SPRINTER"])
        load = _make_load(origin_zip="90210", load_type="box truck")
        result = evaluate_match(plan, load, NOW, canonicalizer=canonicalizer)
        assert result.reason == REASON_VEHICLE_TYPE

    def test_comparison_is_case_insensitive(self, canonicalizer):
        plan = _make_plan(zip_code="90210", vehicle_sizes=["cargo van", "Sprinter"])
        load = _make_load(origin_zip="90210", load_type="SPRINTER VAN")
        assert matches(plan, load, NOW, canonicalizer=canonicalizer)

    def test_vehicle_type_falls_back_to_vehicle_type_field(self, canonicalizer):
        plan = _make_plan(zip_code="90210", vehicle_sizes=["SPRINTER"])
        load = _make_load(origin_zip="90210", load_type=None, vehicle_type="Sprinter Van")
        assert matches(plan, load, NOW, canonicalizer=canonicalizer)

    def test_plan_without_sizes_accepts_any_type(self):
        plan = _make_plan(zip_code="90210", vehicle_sizes=[])
        load = _make_load(origin_zip="90210", load_type="box truck")
        assert matches(plan, load, NOW)

    def test_load_without_type_passes(self):
        plan = _make_plan(zip_code="90210", vehicle_sizes=["SPRINTER"])
        load = _make_load(origin_zip="90210", load_type=None)
        assert matches(plan, load, NOW)

    def test_sizes_stored_as_json_string(self, canonicalizer):
        plan = _make_plan(zip_code="90210", vehicle_sizes='["SPRINTER"]')
        load = _make_load(origin_zip="90210", load_type="sprinter van")
        assert matches(plan, load, NOW, canonicalizer=canonicalizer)


class TestRuleOrder:

    def test_eligibility_checked_before_geography(self):
        plan = _make_plan()
        load = _make_load(status="archived")
        assert evaluate_match(plan, load, NOW).reason == REASON_NOT_NEW

    def test_date_checked_before_vehicle_type(self):
        plan = _make_plan(
            zip_code="90210",
            available_date=date(2025, 12, 19),
            vehicle_sizes=["FLATBED"],
        )
        load = _make_load(origin_zip="90210", pickup_date="2025-12-21", load_type="sprinter")
        assert evaluate_match(plan, load, NOW).reason == REASON_DATE

    def test_result_is_truthy_only_when_matched(self):
        assert not evaluate_match(_make_plan(), _make_load(), NOW)
        assert evaluate_match(_make_plan(zip_code="1"), _make_load(origin_zip="1"), NOW)
