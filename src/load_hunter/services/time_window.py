"""Time-window filter and calendar helpers.

Decides whether a load email is still current, and provides the timezone
helpers shared by the matcher and the lifecycle store. Everything here is
pure; ``now`` is always supplied by the caller.
"""

from __future__ import annotations

import re
from datetime import date, datetime, time, timezone
from typing import Optional, Union
from zoneinfo import ZoneInfo

from load_hunter.domain.enums import EmailTimeWindow

DEFAULT_BUSINESS_TIMEZONE = "America/New_York"

_ISO_DATE_PREFIX = re.compile(r"^(\d{4})-(\d{2})-(\d{2})")
_US_DATE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{2}|\d{4})\b")


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes; convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def coerce_window(window: Union[EmailTimeWindow, str, None]) -> EmailTimeWindow:
    """Accept an enum member or its string value; unknown values fall back to 30m."""
    if isinstance(window, EmailTimeWindow):
        return window
    try:
        return EmailTimeWindow(window)
    except ValueError:
        return EmailTimeWindow.THIRTY_MINUTES


def window_cutoff(
    window: Union[EmailTimeWindow, str],
    now: datetime,
    session_start: Optional[datetime] = None,
) -> datetime:
    """Return the instant before which un-expiring loads are stale.

    The ``session`` window is anchored at *session_start*; without one it
    falls back to the 30 minute window.
    """
    window = coerce_window(window)
    now = ensure_utc(now)
    if window is EmailTimeWindow.SESSION:
        if session_start is not None:
            return ensure_utc(session_start)
        window = EmailTimeWindow.THIRTY_MINUTES
    return now - window.duration


def is_load_current(
    received_at: Optional[datetime],
    expires_at: Optional[datetime],
    window: Union[EmailTimeWindow, str],
    now: datetime,
    session_start: Optional[datetime] = None,
) -> bool:
    """Whether a load is still eligible for matching.

    A load with an explicit expiration is never excluded for staleness;
    the expiry sweep handles it. A load without one is excluded once it was
    received at or before the window cutoff.
    """
    if expires_at is not None:
        return True
    if received_at is None:
        return False
    return ensure_utc(received_at) > window_cutoff(window, now, session_start)


# ---------------------------------------------------------------------------
# Calendar helpers
# ---------------------------------------------------------------------------


def to_calendar_date(value) -> Optional[date]:
    """Reduce a date-like value to explicit (year, month, day) components.

    Policy, applied the same way on both sides of a comparison:
      * ``date`` values and date-only strings are read as written
        ("2025-12-19", "2025-12-19 08:00 CST", "12/19/25");
      * timestamps carrying a UTC offset are converted to UTC first;
      * naive timestamps are treated as UTC.
    Returns ``None`` for anything unparsable.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return ensure_utc(value).date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        return None

    cleaned = value.strip()
    if not cleaned:
        return None

    # Full ISO timestamp with an explicit offset: normalise to UTC.
    if "T" in cleaned or cleaned.endswith("Z") or re.search(r"[+-]\d{2}:\d{2}$", cleaned):
        try:
            parsed = datetime.fromisoformat(cleaned.replace("Z", "+00:00"))
        except ValueError:
            parsed = None
        if parsed is not None:
            return ensure_utc(parsed).date()

    iso = _ISO_DATE_PREFIX.match(cleaned)
    if iso:
        year, month, day = (int(part) for part in iso.groups())
        try:
            return date(year, month, day)
        except ValueError:
            return None

    us = _US_DATE.match(cleaned)
    if us:
        month, day, year = us.groups()
        year_num = int(year)
        if len(year) == 2:
            year_num += 2000
        try:
            return date(year_num, int(month), int(day))
        except ValueError:
            return None

    return None


def business_day_start(now: datetime, tz_name: str = DEFAULT_BUSINESS_TIMEZONE) -> datetime:
    """Midnight of *now*'s calendar day in *tz_name*, returned in UTC.

    DST is handled by zoneinfo, so the offset is -4 or -5 for Eastern
    depending on the date.
    """
    tz = ZoneInfo(tz_name)
    local_now = ensure_utc(now).astimezone(tz)
    local_midnight = datetime.combine(local_now.date(), time.min, tzinfo=tz)
    return local_midnight.astimezone(timezone.utc)
