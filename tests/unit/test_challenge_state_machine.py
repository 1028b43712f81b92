"""Challenge status transitions and settlement result normalization."""

from __future__ import annotations

import pytest

from streakbet.challenges.errors import InvalidTransition
from streakbet.challenges.lifecycle import CHALLENGE_TRANSITIONS, validate_transition
from streakbet.challenges.settlement import normalize_result


class TestChallengeStateMachine:
    def test_all_statuses_defined(self):
        assert set(CHALLENGE_TRANSITIONS) == {"active", "completed", "expired", "cancelled"}

    @pytest.mark.parametrize("target", ["completed", "expired", "cancelled"])
    def test_active_exits(self, target):
        validate_transition("active", target)

    def test_expired_can_be_reset(self):
        validate_transition("expired", "active")

    @pytest.mark.parametrize("status", ["completed", "cancelled"])
    def test_terminal_statuses(self, status):
        assert CHALLENGE_TRANSITIONS[status] == []
        with pytest.raises(InvalidTransition, match="Invalid transition"):
            validate_transition(status, "active")

    def test_expired_cannot_complete(self):
        with pytest.raises(InvalidTransition):
            validate_transition("expired", "completed")

    def test_unknown_status_rejected(self):
        with pytest.raises(InvalidTransition):
            validate_transition("paused", "active")


class TestNormalizeResult:
    @pytest.mark.parametrize(("raw", "expected"), [("won", "won"), ("LOST", "lost"), (" push ", "push")])
    def test_passthrough(self, raw, expected):
        assert normalize_result(raw) == expected

    def test_void_counts_as_push(self):
        assert normalize_result("void") == "push"

    @pytest.mark.parametrize("raw", ["pending", "", "cashout"])
    def test_unknown_rejected(self, raw):
        with pytest.raises(ValueError, match="Invalid settlement result"):
            normalize_result(raw)
