"""Match lifecycle store: tenant-scoped reads and writes over SQLAlchemy.

Every query filters on ``tenant_id`` and every returned row is re-checked
against it; a row of another tenant is dropped with a warning and never
reaches the caller.

Reads may be fanned out with ``asyncio.gather`` by the aggregator. An
``AsyncSession`` does not allow concurrent statements, so executions on the
shared session are serialized behind a lock.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional, Union

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from load_hunter.domain.enums import (
    ChangeEventType,
    HuntPlanStatus,
    MatchStatus,
    WatchedResource,
)
from load_hunter.domain.models import HuntPlan, LoadEmail, LoadHuntMatch, VehicleTypeMapping
from load_hunter.services.match_transitions import coerce_status, stays_active, validate_transition
from load_hunter.services.realtime import ChangeNotifier
from load_hunter.services.time_window import ensure_utc
from load_hunter.services.vehicle_types import VehicleTypeCanonicalizer

logger = logging.getLogger(__name__)

DEFAULT_LOAD_LIMIT = 5000

# Bucket order, and whether the bucket is boxed to the current business day
MATCH_BUCKETS: tuple[tuple[MatchStatus, bool], ...] = (
    (MatchStatus.ACTIVE, False),
    (MatchStatus.SKIPPED, True),
    (MatchStatus.BID, True),
    (MatchStatus.UNDECIDED, False),
    (MatchStatus.WAITLIST, False),
    (MatchStatus.BOOKED, True),
    (MatchStatus.EXPIRED, True),
)


class MatchNotFoundError(Exception):
    """Raised when a match does not exist for the requesting tenant."""

    def __init__(self, match_id: str, tenant_id: str):
        self.match_id = match_id
        self.tenant_id = tenant_id
        super().__init__(f"Match {match_id} not found for tenant {tenant_id}")


class TenantScopeError(Exception):
    """Raised when a write would mix records of different tenants."""


def match_to_dict(match: LoadHuntMatch) -> dict:
    """Plain-dict view of a match, used as change-event payload."""

    def _iso(value: Optional[datetime]) -> Optional[str]:
        return ensure_utc(value).isoformat() if value else None

    return {
        "id": match.id,
        "tenant_id": match.tenant_id,
        "hunt_plan_id": match.hunt_plan_id,
        "load_email_id": match.load_email_id,
        "vehicle_id": match.vehicle_id,
        "distance_miles": match.distance_miles,
        "match_status": match.match_status,
        "is_active": match.is_active,
        "matched_at": _iso(match.matched_at),
        "updated_at": _iso(match.updated_at),
    }


class LifecycleStore:
    """Reads and writes hunt plans, load candidates, mappings and matches."""

    def __init__(self, session: AsyncSession, notifier: Optional[ChangeNotifier] = None):
        self.session = session
        self.notifier = notifier
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _scalars(self, stmt) -> list:
        async with self._lock:
            result = await self.session.execute(stmt)
            return list(result.scalars().all())

    @staticmethod
    def _scoped(rows: list, tenant_id: str, resource: WatchedResource) -> list:
        kept = []
        for row in rows:
            if row.tenant_id != tenant_id:
                logger.warning(
                    "Dropping %s row %s of tenant %s from tenant %s read",
                    resource.value,
                    row.id,
                    row.tenant_id,
                    tenant_id,
                )
                continue
            kept.append(row)
        return kept

    async def _publish(
        self,
        tenant_id: str,
        event_type: ChangeEventType,
        new: Optional[dict] = None,
        old: Optional[dict] = None,
    ) -> None:
        if self.notifier is None:
            return
        await self.notifier.publish_change(
            tenant_id, WatchedResource.LOAD_HUNT_MATCHES, event_type, new=new, old=old
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def fetch_hunt_plans(self, tenant_id: str, enabled_only: bool = False) -> list[HuntPlan]:
        """Live (non-deleted) hunt plans of a tenant, newest first."""
        stmt = select(HuntPlan).where(
            HuntPlan.tenant_id == tenant_id,
            HuntPlan.status == HuntPlanStatus.ACTIVE.value,
        )
        if enabled_only:
            stmt = stmt.where(HuntPlan.enabled.is_(True))
        stmt = stmt.order_by(HuntPlan.created_at.desc())
        rows = await self._scalars(stmt)
        return self._scoped(rows, tenant_id, WatchedResource.HUNT_PLANS)

    async def fetch_load_candidates(
        self,
        tenant_id: str,
        received_after: Optional[datetime] = None,
        *,
        status: Optional[str] = None,
        limit: int = DEFAULT_LOAD_LIMIT,
    ) -> list[LoadEmail]:
        """Load emails of a tenant, newest first.

        ``received_after`` bounds loads without an expiration only; loads
        carrying ``expires_at`` are returned regardless of age.
        """
        stmt = select(LoadEmail).where(LoadEmail.tenant_id == tenant_id)
        if received_after is not None:
            stmt = stmt.where(
                or_(
                    LoadEmail.received_at > ensure_utc(received_after),
                    LoadEmail.expires_at.is_not(None),
                )
            )
        if status is not None:
            stmt = stmt.where(LoadEmail.status == status)
        stmt = stmt.order_by(LoadEmail.received_at.desc()).limit(limit)
        rows = await self._scalars(stmt)
        return self._scoped(rows, tenant_id, WatchedResource.LOAD_EMAILS)

    async def fetch_vehicle_type_mappings(self, tenant_id: str) -> list[VehicleTypeMapping]:
        stmt = select(VehicleTypeMapping).where(VehicleTypeMapping.tenant_id == tenant_id)
        rows = await self._scalars(stmt)
        return self._scoped(rows, tenant_id, WatchedResource.VEHICLE_TYPE_MAPPINGS)

    async def load_canonicalizer(self, tenant_id: str) -> VehicleTypeCanonicalizer:
        """Canonicalizer built from the tenant's mapping rows."""
        rows = await self.fetch_vehicle_type_mappings(tenant_id)
        return VehicleTypeCanonicalizer.from_rows(rows)

    async def fetch_matches(
        self,
        tenant_id: str,
        status: Union[MatchStatus, str],
        since: Optional[datetime] = None,
    ) -> list[LoadHuntMatch]:
        """Matches of one status, most recently updated first."""
        status = coerce_status(status)
        stmt = (
            select(LoadHuntMatch)
            .options(
                selectinload(LoadHuntMatch.load_email),
                selectinload(LoadHuntMatch.hunt_plan),
            )
            .where(
                LoadHuntMatch.tenant_id == tenant_id,
                LoadHuntMatch.match_status == status.value,
            )
        )
        if since is not None:
            stmt = stmt.where(LoadHuntMatch.updated_at >= ensure_utc(since))
        stmt = stmt.order_by(LoadHuntMatch.updated_at.desc())
        rows = await self._scalars(stmt)
        return self._scoped(rows, tenant_id, WatchedResource.LOAD_HUNT_MATCHES)

    async def fetch_match_buckets(
        self,
        tenant_id: str,
        business_day_start: datetime,
    ) -> dict[str, list[LoadHuntMatch]]:
        """All seven status buckets; skipped/bid/booked/expired since *business_day_start*."""
        results = await asyncio.gather(
            *(
                self.fetch_matches(tenant_id, status, business_day_start if boxed else None)
                for status, boxed in MATCH_BUCKETS
            )
        )
        return {status.value: rows for (status, _), rows in zip(MATCH_BUCKETS, results)}

    async def get_match(self, tenant_id: str, match_id: str) -> LoadHuntMatch:
        """One match of *tenant_id*. Another tenant's match is reported as missing."""
        async with self._lock:
            match = await self.session.get(LoadHuntMatch, match_id)
        if match is None:
            raise MatchNotFoundError(match_id, tenant_id)
        if match.tenant_id != tenant_id:
            logger.warning(
                "Tenant %s attempted to access match %s of tenant %s",
                tenant_id,
                match_id,
                match.tenant_id,
            )
            raise MatchNotFoundError(match_id, tenant_id)
        return match

    async def get_hunt_plan(self, tenant_id: str, plan_id: str) -> Optional[HuntPlan]:
        async with self._lock:
            plan = await self.session.get(HuntPlan, plan_id)
        if plan is None or plan.tenant_id != tenant_id:
            return None
        return plan

    async def get_load_email(self, tenant_id: str, load_email_id: str) -> Optional[LoadEmail]:
        async with self._lock:
            load = await self.session.get(LoadEmail, load_email_id)
        if load is None or load.tenant_id != tenant_id:
            return None
        return load

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def _find_match(self, hunt_plan_id: str, load_email_id: str) -> Optional[LoadHuntMatch]:
        rows = await self._scalars(
            select(LoadHuntMatch).where(
                LoadHuntMatch.hunt_plan_id == hunt_plan_id,
                LoadHuntMatch.load_email_id == load_email_id,
            )
        )
        return rows[0] if rows else None

    async def record_match(
        self,
        plan: HuntPlan,
        load: LoadEmail,
        distance_miles: Optional[float] = None,
        *,
        now: Optional[datetime] = None,
    ) -> LoadHuntMatch:
        """Create the ``active`` match for (plan, load), or return the existing one."""
        if plan.tenant_id != load.tenant_id:
            raise TenantScopeError(
                f"Hunt plan {plan.id} (tenant {plan.tenant_id}) cannot match "
                f"load {load.id} (tenant {load.tenant_id})"
            )

        plan_id, load_id = plan.id, load.id

        existing = await self._find_match(plan_id, load_id)
        if existing is not None:
            logger.debug("Match already recorded: plan=%s load=%s", plan.id, load.id)
            return existing

        now = ensure_utc(now) if now else datetime.now(timezone.utc)
        match = LoadHuntMatch(
            tenant_id=plan.tenant_id,
            hunt_plan_id=plan.id,
            load_email_id=load.id,
            vehicle_id=plan.vehicle_id,
            distance_miles=distance_miles,
            match_status=MatchStatus.ACTIVE.value,
            is_active=True,
            matched_at=now,
            created_at=now,
            updated_at=now,
        )
        try:
            async with self._lock:
                self.session.add(match)
                await self.session.commit()
        except IntegrityError:
            # Lost a race with a concurrent writer for the same pair
            async with self._lock:
                await self.session.rollback()
            existing = await self._find_match(plan_id, load_id)
            if existing is None:
                raise
            return existing

        logger.info(
            "Match recorded: tenant=%s plan=%s load=%s distance=%s",
            match.tenant_id,
            plan.id,
            load.id,
            distance_miles,
        )
        await self._publish(match.tenant_id, ChangeEventType.INSERT, new=match_to_dict(match))
        return match

    async def transition_status(
        self,
        tenant_id: str,
        match_id: str,
        new_status: Union[MatchStatus, str],
        *,
        now: Optional[datetime] = None,
    ) -> LoadHuntMatch:
        """Move a match to *new_status* and publish the update.

        Raises MatchNotFoundError for unknown or foreign matches and
        InvalidTransitionError for moves the lifecycle does not allow.
        """
        match = await self.get_match(tenant_id, match_id)
        target = coerce_status(new_status)
        validate_transition(match.match_status, target)

        old = match_to_dict(match)
        match.match_status = target.value
        match.is_active = stays_active(target)
        match.updated_at = ensure_utc(now) if now else datetime.now(timezone.utc)
        async with self._lock:
            await self.session.commit()

        logger.info(
            "Match %s: %s -> %s (tenant=%s)", match.id, old["match_status"], target.value, tenant_id
        )
        await self._publish(tenant_id, ChangeEventType.UPDATE, new=match_to_dict(match), old=old)
        return match
