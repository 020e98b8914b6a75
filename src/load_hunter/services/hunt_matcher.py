"""Hunt-plan matcher.

Pure-function module. NO database access, NO persistence.

Decides whether one load email satisfies one hunt plan. Rules are
conjunctive and evaluated in a fixed order, short-circuiting on the first
failure:

    1. Eligibility: load status is ``new`` and it passes the time window
    2. Date: same calendar day (only when both sides have a date)
    3. Vehicle type: canonical load type equals one of the plan's sizes
       (only when both sides carry a type)
    4. Geography: haversine distance within the pickup radius, else
       exact origin-zip match; mandatory

Plans and loads are read through attributes so ORM rows and lightweight
stand-ins both work.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from load_hunter.domain.enums import EmailTimeWindow, LoadStatus
from load_hunter.services.geo import has_coordinates, haversine_miles
from load_hunter.services.time_window import is_load_current, to_calendar_date
from load_hunter.services.vehicle_types import VehicleTypeCanonicalizer, parse_vehicle_sizes

DEFAULT_PICKUP_RADIUS_MILES = 100

_LEADING_NUMBER = re.compile(r"^\s*(\d+(?:\.\d+)?)")

# Reasons reported alongside a negative result
REASON_MATCHED = "matched"
REASON_TENANT_MISMATCH = "tenant_mismatch"
REASON_NOT_NEW = "load_not_new"
REASON_STALE = "load_stale"
REASON_DATE = "date_mismatch"
REASON_VEHICLE_TYPE = "vehicle_type_mismatch"
REASON_OUT_OF_RADIUS = "out_of_radius"
REASON_ZIP = "zip_mismatch"
REASON_NO_GEOGRAPHY = "no_geography"


@dataclass(frozen=True)
class MatchResult:
    matched: bool
    reason: str
    distance_miles: Optional[float] = None

    def __bool__(self) -> bool:
        return self.matched


def parse_pickup_radius(raw, default: int = DEFAULT_PICKUP_RADIUS_MILES) -> float:
    """Read a free-text radius ("50", "75 mi", 120) as miles.

    Empty, unparsable or non-positive values give *default*.
    """
    if raw is None:
        return float(default)
    if isinstance(raw, (int, float)):
        return float(raw) if raw > 0 else float(default)
    match = _LEADING_NUMBER.match(str(raw))
    if not match:
        return float(default)
    value = float(match.group(1))
    return value if value > 0 else float(default)


def _posted_type(load) -> Optional[str]:
    posted = getattr(load, "posted_type", None)
    if posted:
        return posted
    return getattr(load, "load_type", None) or getattr(load, "vehicle_type", None)


def _dates_match(plan, load) -> bool:
    plan_date = getattr(plan, "available_date", None)
    load_date = getattr(load, "pickup_date", None)
    if not plan_date or not load_date:
        return True
    plan_day = to_calendar_date(plan_date)
    load_day = to_calendar_date(load_date)
    if plan_day is None or load_day is None:
        return False
    return plan_day == load_day


def _vehicle_type_matches(plan, load, canonicalizer: VehicleTypeCanonicalizer) -> bool:
    sizes = parse_vehicle_sizes(getattr(plan, "vehicle_sizes", None))
    posted = _posted_type(load)
    if not sizes or not posted:
        return True
    canonical = canonicalizer.canonicalize(posted).upper()
    return any(size.strip().upper() == canonical for size in sizes)


def _check_geography(plan, load, default_radius: int) -> MatchResult:
    hunt_lat = getattr(plan, "hunt_lat", None)
    hunt_lng = getattr(plan, "hunt_lng", None)
    origin_lat = getattr(load, "origin_lat", None)
    origin_lng = getattr(load, "origin_lng", None)

    if has_coordinates(hunt_lat, hunt_lng) and has_coordinates(origin_lat, origin_lng):
        distance = haversine_miles(hunt_lat, hunt_lng, origin_lat, origin_lng)
        radius = parse_pickup_radius(getattr(plan, "pickup_radius", None), default_radius)
        if distance <= radius:
            return MatchResult(True, REASON_MATCHED, distance)
        return MatchResult(False, REASON_OUT_OF_RADIUS, distance)

    plan_zip = (getattr(plan, "zip_code", None) or "").strip()
    origin_zip = (getattr(load, "origin_zip", None) or "").strip()
    if plan_zip and origin_zip:
        if plan_zip == origin_zip:
            return MatchResult(True, REASON_MATCHED)
        return MatchResult(False, REASON_ZIP)

    return MatchResult(False, REASON_NO_GEOGRAPHY)


def evaluate_match(
    plan,
    load,
    now: datetime,
    *,
    canonicalizer: Optional[VehicleTypeCanonicalizer] = None,
    window: EmailTimeWindow | str = EmailTimeWindow.THIRTY_MINUTES,
    session_start: Optional[datetime] = None,
    default_radius: int = DEFAULT_PICKUP_RADIUS_MILES,
) -> MatchResult:
    """Evaluate *load* against *plan* and say why it did or did not match."""
    plan_tenant = getattr(plan, "tenant_id", None)
    load_tenant = getattr(load, "tenant_id", None)
    if plan_tenant and load_tenant and plan_tenant != load_tenant:
        return MatchResult(False, REASON_TENANT_MISMATCH)

    # 1. Eligibility
    if getattr(load, "status", None) != LoadStatus.NEW.value:
        return MatchResult(False, REASON_NOT_NEW)
    if not is_load_current(
        getattr(load, "received_at", None),
        getattr(load, "expires_at", None),
        window,
        now,
        session_start,
    ):
        return MatchResult(False, REASON_STALE)

    # 2. Date
    if not _dates_match(plan, load):
        return MatchResult(False, REASON_DATE)

    # 3. Vehicle type
    if not _vehicle_type_matches(plan, load, canonicalizer or VehicleTypeCanonicalizer()):
        return MatchResult(False, REASON_VEHICLE_TYPE)

    # 4. Geography
    return _check_geography(plan, load, default_radius)


def matches(plan, load, now: datetime, **kwargs) -> bool:
    """Boolean form of :func:`evaluate_match`."""
    return evaluate_match(plan, load, now, **kwargs).matched
