"""Match status transitions: validates one-directional lifecycle moves.

Transitions are business events triggered by a dispatcher (skip, bid,
book, waitlist, undecided) or by the expiry sweep (expired). Nothing moves
a match back to ``active``.
"""

from typing import Union

from load_hunter.domain.enums import MatchStatus


class InvalidTransitionError(Exception):
    """Raised when a match status transition is not allowed."""

    def __init__(
        self,
        current_status: MatchStatus,
        target_status: MatchStatus,
        reason: str,
    ):
        self.current_status = current_status
        self.target_status = target_status
        self.reason = reason
        super().__init__(
            f"Invalid transition from {current_status.value} to {target_status.value}: {reason}"
        )


# ---------------------------------------------------------------------------
# Transition map: from_status -> set of allowed targets
# ---------------------------------------------------------------------------

M = MatchStatus

TRANSITION_MAP: dict[MatchStatus, frozenset[MatchStatus]] = {
    M.ACTIVE: frozenset({M.SKIPPED, M.BID, M.UNDECIDED, M.WAITLIST, M.BOOKED, M.EXPIRED}),
    M.UNDECIDED: frozenset({M.SKIPPED, M.BID, M.WAITLIST, M.BOOKED, M.EXPIRED}),
    M.WAITLIST: frozenset({M.BID, M.BOOKED, M.SKIPPED, M.EXPIRED}),
    M.BID: frozenset({M.BOOKED, M.EXPIRED}),
}

TERMINAL_STATUSES = frozenset({M.SKIPPED, M.BOOKED, M.EXPIRED})

# Statuses that keep a match on the dispatcher's live board
LIVE_STATUSES = frozenset({M.ACTIVE, M.UNDECIDED, M.WAITLIST})


def coerce_status(value: Union[MatchStatus, str]) -> MatchStatus:
    if isinstance(value, MatchStatus):
        return value
    return MatchStatus(value)


def validate_transition(
    current_status: Union[MatchStatus, str],
    target_status: Union[MatchStatus, str],
) -> bool:
    """Return True if the transition is valid. Raise InvalidTransitionError if not."""
    current = coerce_status(current_status)
    target = coerce_status(target_status)

    if current in TERMINAL_STATUSES:
        raise InvalidTransitionError(current, target, f"{current.value} is terminal")

    allowed_targets = TRANSITION_MAP.get(current)
    if not allowed_targets:
        raise InvalidTransitionError(
            current, target, f"No transitions allowed from {current.value}"
        )
    if target not in allowed_targets:
        raise InvalidTransitionError(
            current,
            target,
            f"Transition from {current.value} to {target.value} is not allowed",
        )
    return True


def get_allowed_transitions(current_status: Union[MatchStatus, str]) -> list[MatchStatus]:
    """Valid next statuses, in declaration order."""
    allowed = TRANSITION_MAP.get(coerce_status(current_status), frozenset())
    return [status for status in MatchStatus if status in allowed]


def stays_active(status: Union[MatchStatus, str]) -> bool:
    """Whether a match in *status* keeps ``is_active`` set."""
    return coerce_status(status) in LIVE_STATUSES
