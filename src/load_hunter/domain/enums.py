"""Domain enumerations for Load Hunter.

All enums use the (str, Enum) pattern to ensure JSON serialization compatibility.
"""

from datetime import timedelta
from enum import Enum
from typing import Optional


class LoadStatus(str, Enum):
    """Processing status of a parsed load email."""

    NEW = "new"
    REVIEWED = "reviewed"
    ASSIGNED = "assigned"
    ARCHIVED = "archived"


class HuntPlanStatus(str, Enum):
    """Logical lifecycle of a hunt plan (soft delete)."""

    ACTIVE = "active"
    DELETED = "deleted"


class MatchStatus(str, Enum):
    """Lifecycle status of a match between a hunt plan and a load."""

    ACTIVE = "active"
    SKIPPED = "skipped"
    BID = "bid"
    UNDECIDED = "undecided"
    WAITLIST = "waitlist"
    BOOKED = "booked"
    EXPIRED = "expired"


class EmailTimeWindow(str, Enum):
    """Rolling freshness window applied to loads without an expiration."""

    THIRTY_MINUTES = "30m"
    SIX_HOURS = "6h"
    TWENTY_FOUR_HOURS = "24h"
    SESSION = "session"

    @property
    def duration(self) -> Optional[timedelta]:
        """Window length, or None for the session-anchored window."""
        return _WINDOW_DURATIONS.get(self)


_WINDOW_DURATIONS: dict[EmailTimeWindow, timedelta] = {
    EmailTimeWindow.THIRTY_MINUTES: timedelta(minutes=30),
    EmailTimeWindow.SIX_HOURS: timedelta(hours=6),
    EmailTimeWindow.TWENTY_FOUR_HOURS: timedelta(hours=24),
}


class ChangeEventType(str, Enum):
    """Kind of row change delivered by the change notifier."""

    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


class WatchedResource(str, Enum):
    """Logical resources the core reads or subscribes to."""

    HUNT_PLANS = "hunt_plans"
    LOAD_EMAILS = "load_emails"
    VEHICLE_TYPE_MAPPINGS = "vehicle_type_mappings"
    LOAD_HUNT_MATCHES = "load_hunt_matches"
