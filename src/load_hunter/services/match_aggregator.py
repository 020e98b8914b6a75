"""Match Aggregator - evaluates every hunt plan of a tenant against its loads.

Produces per-plan match counts plus the matching load ids, joined with the
lifecycle status of any match record already stored for the pair. The
aggregator never persists anything and never raises for bad row data: a
pair whose evaluation fails is logged and counted as no match. Reads that
keep failing degrade the pass to the last known-good rows.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, Optional

from load_hunter.app.config import Settings, get_settings
from load_hunter.domain.enums import EmailTimeWindow, LoadStatus, WatchedResource
from load_hunter.services.hunt_matcher import evaluate_match
from load_hunter.services.lifecycle_store import MATCH_BUCKETS
from load_hunter.services.resource_fetcher import Advisory, ResourceFetcher
from load_hunter.services.time_window import business_day_start, coerce_window, window_cutoff
from load_hunter.services.vehicle_types import VehicleTypeCanonicalizer, parse_vehicle_sizes

logger = logging.getLogger(__name__)


@dataclass
class PlanMatchSummary:
    """Matching outcome for one hunt plan."""

    hunt_plan_id: str
    vehicle_id: Optional[str]
    plan_name: Optional[str]
    enabled: bool
    vehicle_types: str = ""
    match_count: int = 0
    load_ids: list[str] = field(default_factory=list)
    distances: dict[str, Optional[float]] = field(default_factory=dict)
    # load_email_id -> lifecycle status, for pairs with a stored match
    statuses: dict[str, str] = field(default_factory=dict)

    def add(self, load_id: str, distance_miles: Optional[float], status: Optional[str]) -> None:
        self.load_ids.append(load_id)
        self.distances[load_id] = distance_miles
        if status is not None:
            self.statuses[load_id] = status
        self.match_count += 1


@dataclass
class AggregationResult:
    """Output of one aggregation pass for a tenant."""

    tenant_id: Optional[str]
    computed_at: datetime
    window: EmailTimeWindow
    plans: list[PlanMatchSummary] = field(default_factory=list)
    business_day_start: Optional[datetime] = None
    buckets: dict[str, list] = field(default_factory=dict)
    evaluation_errors: int = 0
    # Reads that failed after retries; their last known-good values were used
    advisories: list[Advisory] = field(default_factory=list)

    @property
    def degraded(self) -> bool:
        return bool(self.advisories)

    @property
    def counts(self) -> dict[str, int]:
        return {summary.hunt_plan_id: summary.match_count for summary in self.plans}

    @property
    def total_matches(self) -> int:
        return sum(summary.match_count for summary in self.plans)

    def summary_for(self, hunt_plan_id: str) -> Optional[PlanMatchSummary]:
        for summary in self.plans:
            if summary.hunt_plan_id == hunt_plan_id:
                return summary
        return None


def _status_index(existing_matches: Iterable) -> dict[tuple[str, str], str]:
    index: dict[tuple[str, str], str] = {}
    for match in existing_matches or ():
        index[(match.hunt_plan_id, match.load_email_id)] = match.match_status
    return index


class MatchAggregator:
    """Runs the matcher across every (plan, load) pair of a tenant."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        fetcher: Optional[ResourceFetcher] = None,
    ):
        self.settings = settings or get_settings()
        self.fetcher = fetcher or ResourceFetcher()

    def aggregate(
        self,
        plans: Iterable,
        loads: Iterable,
        existing_matches: Iterable = (),
        now: Optional[datetime] = None,
        *,
        tenant_id: Optional[str] = None,
        canonicalizer: Optional[VehicleTypeCanonicalizer] = None,
        window: Optional[EmailTimeWindow | str] = None,
        session_start: Optional[datetime] = None,
    ) -> AggregationResult:
        """Evaluate all *plans* against all *loads*.

        Disabled plans count 0 and are not evaluated. When *tenant_id* is
        given, plans and loads of any other tenant are skipped.
        """
        now = now or datetime.now(timezone.utc)
        window = coerce_window(window or self.settings.default_time_window)
        canonicalizer = canonicalizer or VehicleTypeCanonicalizer()
        statuses = _status_index(existing_matches)
        loads = list(loads)

        if tenant_id is not None:
            foreign_loads = [load for load in loads if load.tenant_id != tenant_id]
            if foreign_loads:
                logger.warning(
                    "Skipping %d loads outside tenant %s", len(foreign_loads), tenant_id
                )
            loads = [load for load in loads if load.tenant_id == tenant_id]

        result = AggregationResult(tenant_id=tenant_id, computed_at=now, window=window)

        for plan in plans:
            if tenant_id is not None and plan.tenant_id != tenant_id:
                logger.warning(
                    "Skipping hunt plan %s of tenant %s in pass for tenant %s",
                    plan.id,
                    plan.tenant_id,
                    tenant_id,
                )
                continue

            summary = PlanMatchSummary(
                hunt_plan_id=plan.id,
                vehicle_id=getattr(plan, "vehicle_id", None),
                plan_name=getattr(plan, "plan_name", None),
                enabled=bool(plan.enabled),
                vehicle_types=canonicalizer.display_types(
                    parse_vehicle_sizes(getattr(plan, "vehicle_sizes", None))
                ),
            )
            result.plans.append(summary)
            if not plan.enabled:
                continue

            for load in loads:
                try:
                    outcome = evaluate_match(
                        plan,
                        load,
                        now,
                        canonicalizer=canonicalizer,
                        window=window,
                        session_start=session_start,
                        default_radius=self.settings.default_pickup_radius_miles,
                    )
                except Exception:
                    result.evaluation_errors += 1
                    logger.warning(
                        "Match evaluation failed: plan=%s load=%s",
                        plan.id,
                        getattr(load, "id", None),
                        exc_info=True,
                    )
                    continue
                if outcome.matched:
                    summary.add(load.id, outcome.distance_miles, statuses.get((plan.id, load.id)))

        logger.debug(
            "Aggregated %d plans x %d loads for tenant %s: %d matches",
            len(result.plans),
            len(loads),
            tenant_id,
            result.total_matches,
        )
        return result

    async def run_for_tenant(
        self,
        store,
        tenant_id: str,
        *,
        now: Optional[datetime] = None,
        window: Optional[EmailTimeWindow | str] = None,
        session_start: Optional[datetime] = None,
    ) -> AggregationResult:
        """Read everything a pass needs concurrently, then aggregate.

        Each read goes through the fetcher, so transient failures are
        retried with backoff. A read that still fails leaves its last
        known-good value in place (or an empty one) and the pass carries
        the advisory instead of raising.
        """
        now = now or datetime.now(timezone.utc)
        window = coerce_window(window or self.settings.default_time_window)
        # Computed once and reused by every time-boxed bucket
        day_start = business_day_start(now, self.settings.business_timezone)
        cutoff = window_cutoff(window, now, session_start)

        reads = {
            (tenant_id, WatchedResource.HUNT_PLANS.value): (
                lambda: store.fetch_hunt_plans(tenant_id)
            ),
            (tenant_id, WatchedResource.LOAD_EMAILS.value, window.value): (
                lambda: store.fetch_load_candidates(
                    tenant_id,
                    cutoff,
                    status=LoadStatus.NEW.value,
                    limit=self.settings.load_fetch_limit,
                )
            ),
            (tenant_id, WatchedResource.VEHICLE_TYPE_MAPPINGS.value): (
                lambda: store.fetch_vehicle_type_mappings(tenant_id)
            ),
            (tenant_id, WatchedResource.LOAD_HUNT_MATCHES.value): (
                lambda: store.fetch_match_buckets(tenant_id, day_start)
            ),
        }
        await asyncio.gather(
            *(self.fetcher.fetch(key, loader, supersede=False) for key, loader in reads.items())
        )
        plans_key, loads_key, mappings_key, buckets_key = reads

        advisories = []
        for key in reads:
            if self.fetcher.slot(key).error is not None:
                advisories.extend(self.fetcher.advisories_for(key)[-1:])

        plans = self.fetcher.value(plans_key, default=[])
        loads = self.fetcher.value(loads_key, default=[])
        mappings = self.fetcher.value(mappings_key, default=[])
        buckets = self.fetcher.value(buckets_key, default=None) or {
            status.value: [] for status, _boxed in MATCH_BUCKETS
        }

        canonicalizer = VehicleTypeCanonicalizer.from_rows(mappings)
        existing = [match for rows in buckets.values() for match in rows]
        result = self.aggregate(
            plans,
            loads,
            existing,
            now,
            tenant_id=tenant_id,
            canonicalizer=canonicalizer,
            window=window,
            session_start=session_start,
        )
        result.business_day_start = day_start
        result.buckets = buckets
        result.advisories = advisories
        if advisories:
            logger.warning(
                "Load hunter pass for tenant %s degraded: %s",
                tenant_id,
                "; ".join(advisory.message for advisory in advisories),
            )
        logger.info(
            "Load hunter pass: tenant=%s plans=%d loads=%d matches=%d",
            tenant_id,
            len(plans),
            len(loads),
            result.total_matches,
        )
        return result
