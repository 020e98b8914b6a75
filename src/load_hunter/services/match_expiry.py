"""Background job: move matches whose load has expired to ``expired``."""

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from load_hunter.app.config import get_settings
from load_hunter.domain.enums import ChangeEventType, MatchStatus, WatchedResource
from load_hunter.domain.models import LoadHuntMatch
from load_hunter.services.realtime import ChangeNotifier
from load_hunter.services.time_window import ensure_utc

logger = logging.getLogger(__name__)

# Statuses still waiting on a dispatcher decision
EXPIRABLE_STATUSES = (MatchStatus.ACTIVE.value, MatchStatus.UNDECIDED.value)

BATCH_SIZE = 100


@dataclass
class ExpirySweepResult:
    checked: int = 0
    expired: int = 0
    by_status: dict[str, int] = field(default_factory=dict)
    by_tenant: dict[str, int] = field(default_factory=dict)


def _parse_timestamp(value) -> Optional[datetime]:
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, str) and value.strip():
        try:
            return ensure_utc(datetime.fromisoformat(value.strip().replace("Z", "+00:00")))
        except ValueError:
            return None
    return None


def load_deadline(match: LoadHuntMatch, fallback: timedelta) -> Optional[datetime]:
    """When *match* stops being actionable.

    The load's ``expires_at`` wins, then an ``expires_at`` inside its
    parsed data, then ``matched_at`` plus *fallback*.
    """
    load = match.load_email
    if load is not None:
        deadline = _parse_timestamp(load.expires_at)
        if deadline is None:
            deadline = _parse_timestamp((load.parsed_data or {}).get("expires_at"))
        if deadline is not None:
            return deadline
    if match.matched_at is None:
        return None
    return ensure_utc(match.matched_at) + fallback


async def expire_stale_matches(
    db: AsyncSession,
    now: Optional[datetime] = None,
    *,
    tenant_id: Optional[str] = None,
    notifier: Optional[ChangeNotifier] = None,
) -> ExpirySweepResult:
    """Expire active/undecided matches whose deadline has passed."""
    now = ensure_utc(now) if now else datetime.now(timezone.utc)
    fallback = timedelta(hours=get_settings().match_expiry_fallback_hours)

    stmt = (
        select(LoadHuntMatch)
        .options(selectinload(LoadHuntMatch.load_email))
        .where(LoadHuntMatch.match_status.in_(EXPIRABLE_STATUSES))
    )
    if tenant_id:
        stmt = stmt.where(LoadHuntMatch.tenant_id == tenant_id)
    result = await db.execute(stmt)
    matches = result.scalars().all()

    sweep = ExpirySweepResult(checked=len(matches))
    if not matches:
        return sweep

    expired = []
    for match in matches:
        deadline = load_deadline(match, fallback)
        if deadline is not None and now > deadline:
            expired.append(match)
            logger.debug("Match %s expired at %s", match.id, deadline.isoformat())

    if not expired:
        return sweep

    by_status = Counter(match.match_status for match in expired)
    by_tenant = Counter(match.tenant_id or "unknown" for match in expired)
    events = [(match.tenant_id, match.id, match.match_status) for match in expired]

    for start in range(0, len(expired), BATCH_SIZE):
        batch_ids = [match.id for match in expired[start:start + BATCH_SIZE]]
        await db.execute(
            update(LoadHuntMatch)
            .where(LoadHuntMatch.id.in_(batch_ids))
            .values(
                match_status=MatchStatus.EXPIRED.value,
                is_active=False,
                updated_at=now,
            )
            .execution_options(synchronize_session="fetch")
        )
    await db.commit()

    sweep.expired = len(expired)
    sweep.by_status = dict(by_status)
    sweep.by_tenant = dict(by_tenant)
    logger.info(
        "Expired %d of %d matches (by status %s, by tenant %s)",
        sweep.expired,
        sweep.checked,
        sweep.by_status,
        sweep.by_tenant,
    )

    if notifier is not None:
        for match_tenant, match_id, old_status in events:
            await notifier.publish_change(
                match_tenant,
                WatchedResource.LOAD_HUNT_MATCHES,
                ChangeEventType.UPDATE,
                new={"id": match_id, "match_status": MatchStatus.EXPIRED.value},
                old={"id": match_id, "match_status": old_status},
            )
    return sweep
