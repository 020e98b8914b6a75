"""Shared test infrastructure for the Load Hunter test suite.

Provides:
- db_session: async SQLite in-memory session with all tables created
- make_hunt_plan / make_load_email / make_match / make_mapping: row factories
- now: a fixed "current instant" shared by time-dependent tests
"""

import uuid
from datetime import date, datetime, timedelta, timezone

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

# Import Base first, then models to register all tables
from load_hunter.infra.database import Base, build_engine, init_db

import load_hunter.domain.models  # noqa: F401

from load_hunter.domain.enums import HuntPlanStatus, LoadStatus, MatchStatus
from load_hunter.domain.models import HuntPlan, LoadEmail, LoadHuntMatch, VehicleTypeMapping

TENANT_A = "tenant-a"
TENANT_B = "tenant-b"

# 2025-12-19 15:00 UTC is 10:00 in New York (EST)
FIXED_NOW = datetime(2025, 12, 19, 15, 0, tzinfo=timezone.utc)


@pytest.fixture
def now():
    return FIXED_NOW


# ---------------------------------------------------------------------------
# Database session fixture
# ---------------------------------------------------------------------------

@pytest.fixture
async def db_session():
    """Async SQLite in-memory session with all tables created.

    Creates a fresh engine + tables for each test, yields a session,
    then rolls back and tears down.
    """
    engine = build_engine("sqlite+aiosqlite://")
    await init_db(engine)

    session_factory = async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False,
    )

    async with session_factory() as session:
        yield session
        await session.rollback()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


# ---------------------------------------------------------------------------
# Row factories
# ---------------------------------------------------------------------------

@pytest.fixture
def make_hunt_plan(db_session):
    """Factory that creates a HuntPlan row.

    Usage:
        plan = await make_hunt_plan(zip_code="90210", vehicle_sizes=["SPRINTER"])
    """
    async def _factory(
        tenant_id: str = TENANT_A,
        plan_name: str = "Sprinter LA",
        vehicle_id: str | None = None,
        enabled: bool = True,
        status: str = HuntPlanStatus.ACTIVE.value,
        vehicle_sizes: list | None = None,
        zip_code: str | None = "90210",
        pickup_radius: str | None = None,
        hunt_lat: float | None = None,
        hunt_lng: float | None = None,
        available_date: date | None = None,
        created_at: datetime | None = None,
    ) -> HuntPlan:
        plan = HuntPlan(
            id=str(uuid.uuid4()),
            tenant_id=tenant_id,
            vehicle_id=vehicle_id or str(uuid.uuid4()),
            plan_name=plan_name,
            enabled=enabled,
            status=status,
            vehicle_sizes=vehicle_sizes or [],
            zip_code=zip_code,
            pickup_radius=pickup_radius,
            hunt_lat=hunt_lat,
            hunt_lng=hunt_lng,
            available_date=available_date,
            created_at=created_at or FIXED_NOW,
        )
        db_session.add(plan)
        await db_session.flush()
        return plan

    return _factory


@pytest.fixture
def make_load_email(db_session):
    """Factory that creates a LoadEmail row, received 5 minutes before FIXED_NOW."""
    async def _factory(
        tenant_id: str = TENANT_A,
        received_at: datetime | None = None,
        expires_at: datetime | None = None,
        status: str = LoadStatus.NEW.value,
        origin_zip: str | None = "90210",
        origin_lat: float | None = None,
        origin_lng: float | None = None,
        load_type: str | None = None,
        pickup_date: str | None = None,
        parsed_data: dict | None = None,
    ) -> LoadEmail:
        load = LoadEmail(
            id=str(uuid.uuid4()),
            tenant_id=tenant_id,
            load_id=f"ORD-{uuid.uuid4().hex[:6]}",
            subject="Load offer",
            received_at=received_at or FIXED_NOW - timedelta(minutes=5),
            expires_at=expires_at,
            status=status,
            origin_city="Beverly Hills",
            origin_state="CA",
            origin_zip=origin_zip,
            origin_lat=origin_lat,
            origin_lng=origin_lng,
            load_type=load_type,
            pickup_date=pickup_date,
            parsed_data=parsed_data or {},
        )
        db_session.add(load)
        await db_session.flush()
        return load

    return _factory


@pytest.fixture
def make_match(db_session):
    """Factory that creates a LoadHuntMatch row for an existing plan and load."""
    async def _factory(
        plan: HuntPlan,
        load: LoadEmail,
        match_status: str = MatchStatus.ACTIVE.value,
        matched_at: datetime | None = None,
        updated_at: datetime | None = None,
        tenant_id: str | None = None,
    ) -> LoadHuntMatch:
        stamp = matched_at or FIXED_NOW - timedelta(minutes=1)
        match = LoadHuntMatch(
            id=str(uuid.uuid4()),
            tenant_id=tenant_id or plan.tenant_id,
            hunt_plan_id=plan.id,
            load_email_id=load.id,
            vehicle_id=plan.vehicle_id,
            distance_miles=None,
            match_status=match_status,
            is_active=match_status in (
                MatchStatus.ACTIVE.value,
                MatchStatus.UNDECIDED.value,
                MatchStatus.WAITLIST.value,
            ),
            matched_at=stamp,
            created_at=stamp,
            updated_at=updated_at or stamp,
        )
        db_session.add(match)
        await db_session.flush()
        return match

    return _factory


@pytest.fixture
def make_mapping(db_session):
    """Factory that creates a VehicleTypeMapping row."""
    async def _factory(
        original_value: str,
        mapped_to: str | None,
        tenant_id: str = TENANT_A,
    ) -> VehicleTypeMapping:
        mapping = VehicleTypeMapping(
            id=str(uuid.uuid4()),
            tenant_id=tenant_id,
            type_category="vehicle",
            original_value=original_value,
            mapped_to=mapped_to,
        )
        db_session.add(mapping)
        await db_session.flush()
        return mapping

    return _factory
