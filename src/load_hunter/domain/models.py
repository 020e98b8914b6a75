"""SQLAlchemy ORM models for Load Hunter.

All models use SQLite-compatible types:
- String(36) for UUID primary keys
- JSON for structured data (no JSONB)
- DateTime for timestamps; naive values read back from SQLite are UTC

Every table carries ``tenant_id``. Queries in the lifecycle store always
filter on it.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    JSON,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from load_hunter.domain.enums import HuntPlanStatus, LoadStatus, MatchStatus
from load_hunter.infra.database import Base


def _uuid() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Load candidates (parsed load emails)
# ---------------------------------------------------------------------------


class LoadEmail(Base):
    """One parsed freight-load posting, produced by the ingestion pipeline."""

    __tablename__ = "load_emails"

    id = Column(String(36), primary_key=True, default=_uuid)
    tenant_id = Column(String(36), nullable=False, index=True)
    load_id = Column(String(100))  # loadboard order number
    from_email = Column(String(255))
    subject = Column(String(500))
    received_at = Column(DateTime(timezone=True), nullable=False, index=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    status = Column(String(20), nullable=False, default=LoadStatus.NEW.value)

    origin_city = Column(String(100))
    origin_state = Column(String(50))
    origin_zip = Column(String(20))
    origin_lat = Column(Float)
    origin_lng = Column(Float)
    destination_city = Column(String(100))
    destination_state = Column(String(50))
    destination_zip = Column(String(20))

    load_type = Column(String(100))
    vehicle_type = Column(String(100))
    pickup_date = Column(String(50))  # raw parser output, e.g. "2025-12-19 08:00 CST"
    weight = Column(String(50))
    parsed_data = Column(JSON, default=dict)

    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    matches = relationship("LoadHuntMatch", back_populates="load_email")

    @property
    def posted_type(self):
        """Label used for vehicle-type matching."""
        return self.load_type or self.vehicle_type


# ---------------------------------------------------------------------------
# Hunt plans
# ---------------------------------------------------------------------------


class HuntPlan(Base):
    """A dispatcher's saved search for one vehicle."""

    __tablename__ = "hunt_plans"

    id = Column(String(36), primary_key=True, default=_uuid)
    tenant_id = Column(String(36), nullable=False, index=True)
    vehicle_id = Column(String(36), nullable=False, index=True)
    plan_name = Column(String(255), nullable=False)
    enabled = Column(Boolean, nullable=False, default=True)
    status = Column(String(20), nullable=False, default=HuntPlanStatus.ACTIVE.value, index=True)

    vehicle_sizes = Column(JSON, default=list)
    zip_code = Column(String(20))
    pickup_radius = Column(String(20))  # free text miles, e.g. "50"
    hunt_lat = Column(Float)
    hunt_lng = Column(Float)
    destination_zip = Column(String(20))
    destination_radius = Column(String(20))
    available_date = Column(Date)
    available_time = Column(String(10))
    load_capacity = Column(String(50))
    notes = Column(Text)

    created_by = Column(String(36))
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    last_modified = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    matches = relationship("LoadHuntMatch", back_populates="hunt_plan")


# ---------------------------------------------------------------------------
# Match records
# ---------------------------------------------------------------------------


class LoadHuntMatch(Base):
    """Outcome of matching one load email against one hunt plan."""

    __tablename__ = "load_hunt_matches"
    __table_args__ = (
        UniqueConstraint("hunt_plan_id", "load_email_id", name="uq_match_plan_load"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    tenant_id = Column(String(36), nullable=False, index=True)
    hunt_plan_id = Column(String(36), ForeignKey("hunt_plans.id"), nullable=False, index=True)
    load_email_id = Column(String(36), ForeignKey("load_emails.id"), nullable=False, index=True)
    vehicle_id = Column(String(36), nullable=False)
    distance_miles = Column(Float)
    match_status = Column(String(20), nullable=False, default=MatchStatus.ACTIVE.value, index=True)
    is_active = Column(Boolean, nullable=False, default=True)
    matched_at = Column(DateTime(timezone=True), default=_utcnow)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    hunt_plan = relationship("HuntPlan", back_populates="matches")
    load_email = relationship("LoadEmail", back_populates="matches")


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class VehicleTypeMapping(Base):
    """Tenant-maintained mapping from a loadboard vehicle label to a canonical one."""

    __tablename__ = "vehicle_type_mappings"
    __table_args__ = (
        UniqueConstraint("tenant_id", "original_value", name="uq_vehicle_type_original"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    tenant_id = Column(String(36), nullable=False, index=True)
    type_category = Column(String(50))
    original_value = Column(String(100), nullable=False)
    mapped_to = Column(String(100))
    created_at = Column(DateTime(timezone=True), default=_utcnow)
