"""Pydantic v2 schemas for API request/response validation."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict

from load_hunter.domain.enums import EmailTimeWindow, MatchStatus


# ---------------------------------------------------------------------------
# Match counts
# ---------------------------------------------------------------------------


class PlanMatchCount(BaseModel):
    """Per-plan result of one aggregation pass."""

    model_config = ConfigDict(from_attributes=True)

    hunt_plan_id: str
    vehicle_id: str | None = None
    plan_name: str | None = None
    enabled: bool
    vehicle_types: str = ""
    match_count: int = 0
    load_ids: list[str] = []
    distances: dict[str, float | None] = {}
    statuses: dict[str, str] = {}


class MatchCountsResponse(BaseModel):
    tenant_id: str
    window: EmailTimeWindow
    computed_at: datetime
    business_day_start: datetime | None = None
    total_matches: int
    plans: list[PlanMatchCount]
    # True when a read failed after retries and last known-good rows were used
    degraded: bool = False
    advisories: list[str] = []


# ---------------------------------------------------------------------------
# Match records
# ---------------------------------------------------------------------------


class LoadSummary(BaseModel):
    """Load fields shown next to a match."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    load_id: str | None = None
    subject: str | None = None
    received_at: datetime | None = None
    expires_at: datetime | None = None
    origin_city: str | None = None
    origin_state: str | None = None
    origin_zip: str | None = None
    destination_city: str | None = None
    destination_state: str | None = None
    load_type: str | None = None
    vehicle_type: str | None = None
    pickup_date: str | None = None
    weight: str | None = None


class MatchResponse(BaseModel):
    """Schema for match record responses."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    tenant_id: str
    hunt_plan_id: str
    load_email_id: str
    vehicle_id: str
    distance_miles: float | None = None
    match_status: MatchStatus
    is_active: bool
    matched_at: datetime | None = None
    updated_at: datetime | None = None


class MatchDetailResponse(MatchResponse):
    load_email: LoadSummary | None = None


class MatchBucketsResponse(BaseModel):
    """Matches partitioned by lifecycle status."""

    tenant_id: str
    business_day_start: datetime
    buckets: dict[str, list[MatchDetailResponse]]
    counts: dict[str, int]


class MatchCreate(BaseModel):
    """Record an active match for a (hunt plan, load) pair the matcher accepts."""

    hunt_plan_id: str
    load_email_id: str
    window: EmailTimeWindow = EmailTimeWindow.THIRTY_MINUTES
    session_start: datetime | None = None


class MatchStatusUpdate(BaseModel):
    """User-initiated lifecycle transition."""

    status: MatchStatus


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class VehicleTypesResponse(BaseModel):
    tenant_id: str
    canonical_types: list[str]
    uses_default_vocabulary: bool


class ExpirySweepResponse(BaseModel):
    checked: int
    expired: int
    by_status: dict[str, int] = {}
    by_tenant: dict[str, int] = {}
