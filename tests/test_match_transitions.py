"""Unit tests for match status transitions."""

import pytest

from load_hunter.domain.enums import MatchStatus
from load_hunter.services.match_transitions import (
    TERMINAL_STATUSES,
    TRANSITION_MAP,
    InvalidTransitionError,
    get_allowed_transitions,
    stays_active,
    validate_transition,
)

M = MatchStatus


class TestValidTransitions:
    """Every transition defined in TRANSITION_MAP should succeed."""

    @pytest.mark.parametrize(
        "from_status,to_status",
        [
            (src, dst)
            for src, targets in TRANSITION_MAP.items()
            for dst in sorted(targets, key=lambda s: s.value)
        ],
    )
    def test_allowed(self, from_status, to_status):
        assert validate_transition(from_status, to_status) is True

    def test_accepts_string_values(self):
        assert validate_transition("active", "bid") is True


class TestInvalidTransitions:

    @pytest.mark.parametrize("terminal", sorted(TERMINAL_STATUSES, key=lambda s: s.value))
    @pytest.mark.parametrize("target", list(MatchStatus))
    def test_terminal_statuses_never_move(self, terminal, target):
        with pytest.raises(InvalidTransitionError) as exc_info:
            validate_transition(terminal, target)
        assert exc_info.value.current_status == terminal
        assert "terminal" in exc_info.value.reason

    @pytest.mark.parametrize("from_status,to_status", [
        (M.BID, M.SKIPPED),
        (M.BID, M.WAITLIST),
        (M.WAITLIST, M.UNDECIDED),
        (M.UNDECIDED, M.ACTIVE),
        (M.ACTIVE, M.ACTIVE),
    ])
    def test_not_in_map(self, from_status, to_status):
        with pytest.raises(InvalidTransitionError) as exc_info:
            validate_transition(from_status, to_status)
        assert exc_info.value.target_status == to_status
        assert "not allowed" in str(exc_info.value)

    def test_nothing_returns_to_active(self):
        for targets in TRANSITION_MAP.values():
            assert M.ACTIVE not in targets

    def test_unknown_status_value(self):
        with pytest.raises(ValueError):
            validate_transition("active", "archived")


class TestHelpers:

    def test_allowed_from_active(self):
        assert get_allowed_transitions("active") == [
            M.SKIPPED, M.BID, M.UNDECIDED, M.WAITLIST, M.BOOKED, M.EXPIRED,
        ]

    def test_allowed_from_terminal_is_empty(self):
        assert get_allowed_transitions(M.BOOKED) == []

    @pytest.mark.parametrize("status,expected", [
        (M.ACTIVE, True),
        (M.UNDECIDED, True),
        (M.WAITLIST, True),
        (M.BID, False),
        (M.SKIPPED, False),
        (M.BOOKED, False),
        (M.EXPIRED, False),
    ])
    def test_stays_active(self, status, expected):
        assert stays_active(status) is expected
