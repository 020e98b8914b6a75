"""Load Hunter API routes.

Per-plan match counts, status buckets, match recording and user-initiated
status transitions. The tenant arrives in the ``X-Tenant-ID`` header; every
read and write below is scoped to it.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from load_hunter.app.config import get_settings
from load_hunter.domain.enums import EmailTimeWindow, HuntPlanStatus
from load_hunter.domain.schemas import (
    ExpirySweepResponse,
    MatchBucketsResponse,
    MatchCountsResponse,
    MatchCreate,
    MatchDetailResponse,
    MatchResponse,
    MatchStatusUpdate,
    PlanMatchCount,
    VehicleTypesResponse,
)
from load_hunter.infra.database import get_db
from load_hunter.services.hunt_matcher import evaluate_match
from load_hunter.services.lifecycle_store import (
    LifecycleStore,
    MatchNotFoundError,
    TenantScopeError,
)
from load_hunter.services.match_aggregator import MatchAggregator
from load_hunter.services.match_expiry import expire_stale_matches
from load_hunter.services.match_transitions import InvalidTransitionError
from load_hunter.services.realtime import notifier
from load_hunter.services.resource_fetcher import ResourceFetcher
from load_hunter.services.time_window import business_day_start

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/load-hunter", tags=["load-hunter"])

# Shared across requests so a failed read can fall back to the last good rows
counts_fetcher = ResourceFetcher()


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


async def get_tenant_id(x_tenant_id: Optional[str] = Header(default=None)) -> str:
    """Resolve the calling tenant from the ``X-Tenant-ID`` header."""
    if not x_tenant_id or not x_tenant_id.strip():
        raise HTTPException(status_code=400, detail="X-Tenant-ID header is required")
    return x_tenant_id.strip()


def get_store(db: AsyncSession = Depends(get_db)) -> LifecycleStore:
    return LifecycleStore(db, notifier=notifier)


def get_aggregator() -> MatchAggregator:
    return MatchAggregator(fetcher=counts_fetcher)


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.get("/counts", response_model=MatchCountsResponse)
async def get_match_counts(
    window: EmailTimeWindow = Query(default=EmailTimeWindow.THIRTY_MINUTES),
    session_start: Optional[datetime] = Query(default=None),
    tenant_id: str = Depends(get_tenant_id),
    store: LifecycleStore = Depends(get_store),
    aggregator: MatchAggregator = Depends(get_aggregator),
):
    """Per-plan match counts for the tenant's live hunt plans."""
    result = await aggregator.run_for_tenant(
        store, tenant_id, window=window, session_start=session_start
    )
    return MatchCountsResponse(
        tenant_id=tenant_id,
        window=result.window,
        computed_at=result.computed_at,
        business_day_start=result.business_day_start,
        total_matches=result.total_matches,
        plans=[PlanMatchCount.model_validate(summary) for summary in result.plans],
        degraded=result.degraded,
        advisories=[advisory.message for advisory in result.advisories],
    )


@router.get("/matches", response_model=MatchBucketsResponse)
async def get_match_buckets(
    tenant_id: str = Depends(get_tenant_id),
    store: LifecycleStore = Depends(get_store),
):
    """Matches partitioned by status; decided buckets cover today (Eastern) only."""
    day_start = business_day_start(datetime.now(timezone.utc), get_settings().business_timezone)
    buckets = await store.fetch_match_buckets(tenant_id, day_start)
    return MatchBucketsResponse(
        tenant_id=tenant_id,
        business_day_start=day_start,
        buckets={
            status: [MatchDetailResponse.model_validate(match) for match in rows]
            for status, rows in buckets.items()
        },
        counts={status: len(rows) for status, rows in buckets.items()},
    )


@router.post("/matches", response_model=MatchResponse)
async def record_match(
    body: MatchCreate,
    tenant_id: str = Depends(get_tenant_id),
    store: LifecycleStore = Depends(get_store),
):
    """Record an active match for a plan/load pair (idempotent per pair).

    The pair is re-evaluated by the matcher first; only a pair the counts
    would surface can become an active match, and the stored distance is
    the one the matcher computed.
    """
    plan = await store.get_hunt_plan(tenant_id, body.hunt_plan_id)
    if plan is None or plan.status != HuntPlanStatus.ACTIVE.value:
        raise HTTPException(status_code=404, detail="Hunt plan not found")
    load = await store.get_load_email(tenant_id, body.load_email_id)
    if load is None:
        raise HTTPException(status_code=404, detail="Load not found")

    if not plan.enabled:
        raise HTTPException(status_code=409, detail="Hunt plan is disabled")

    canonicalizer = await store.load_canonicalizer(tenant_id)
    outcome = evaluate_match(
        plan,
        load,
        datetime.now(timezone.utc),
        canonicalizer=canonicalizer,
        window=body.window,
        session_start=body.session_start,
        default_radius=get_settings().default_pickup_radius_miles,
    )
    if not outcome.matched:
        raise HTTPException(
            status_code=409, detail=f"Load does not match hunt plan: {outcome.reason}"
        )

    try:
        match = await store.record_match(plan, load, outcome.distance_miles)
    except TenantScopeError as exc:
        logger.warning("Refused cross-tenant match: %s", exc)
        raise HTTPException(status_code=404, detail="Load not found")
    return MatchResponse.model_validate(match)


@router.post("/matches/{match_id}/status", response_model=MatchResponse)
async def update_match_status(
    match_id: str,
    body: MatchStatusUpdate,
    tenant_id: str = Depends(get_tenant_id),
    store: LifecycleStore = Depends(get_store),
):
    """Skip, bid, book, waitlist or park a match."""
    try:
        match = await store.transition_status(tenant_id, match_id, body.status)
    except MatchNotFoundError:
        raise HTTPException(status_code=404, detail="Match not found")
    except InvalidTransitionError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    return MatchResponse.model_validate(match)


@router.get("/vehicle-types", response_model=VehicleTypesResponse)
async def get_vehicle_types(
    tenant_id: str = Depends(get_tenant_id),
    store: LifecycleStore = Depends(get_store),
):
    """Canonical vehicle vocabulary for the tenant."""
    canonicalizer = await store.load_canonicalizer(tenant_id)
    return VehicleTypesResponse(
        tenant_id=tenant_id,
        canonical_types=canonicalizer.canonical_types(),
        uses_default_vocabulary=not canonicalizer.has_mappings,
    )


@router.post("/expiry/run", response_model=ExpirySweepResponse)
async def run_expiry_sweep(
    tenant_id: str = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db),
):
    """Run the expiry sweep now for the calling tenant."""
    sweep = await expire_stale_matches(db, tenant_id=tenant_id, notifier=notifier)
    return ExpirySweepResponse(
        checked=sweep.checked,
        expired=sweep.expired,
        by_status=sweep.by_status,
        by_tenant=sweep.by_tenant,
    )
