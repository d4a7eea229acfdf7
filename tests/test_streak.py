"""Tests for the streak state machine.

These tests verify the transitions advance() makes for each classified
visit, including:
- Accrual while the same site type repeats
- Reset on untracked sites and on site type switches
- Firing exactly once at the threshold, then restarting from zero
- Snooze credits swallowing threshold crossings
"""

import pytest

from streakd.streak import StreakState, advance


def visit(state, site_id, threshold):
    result = advance(state, site_id, threshold)
    return result.next_state, result


class TestIdle:
    """Tests starting from the Idle state."""

    def test_default_state_is_idle(self):
        state = StreakState()
        assert state.is_idle
        assert state.consecutive_count == 0
        assert state.last_site_type is None

    def test_untracked_visit_stays_idle(self):
        result = advance(StreakState(), None, 5)
        assert result.next_state == StreakState()
        assert not result.fired

    def test_first_match_starts_streak(self):
        result = advance(StreakState(), "tiktok", 5)
        assert result.next_state.consecutive_count == 1
        assert result.next_state.last_site_type == "tiktok"
        assert not result.fired


class TestStreaking:
    """Tests for transitions while a streak is running."""

    def test_accrual(self):
        """Three visits to the same type below threshold just count up."""
        state = StreakState()
        for expected in (1, 2, 3):
            state, result = visit(state, "A", 5)
            assert state.consecutive_count == expected
            assert state.last_site_type == "A"
            assert not result.fired

    def test_type_switch_restarts_at_one(self):
        state = StreakState(consecutive_count=4, last_site_type="A")
        state, result = visit(state, "B", 10)
        assert state.consecutive_count == 1
        assert state.last_site_type == "B"
        assert not result.fired

    def test_untracked_visit_resets_to_idle(self):
        state = StreakState(consecutive_count=4, last_site_type="A")
        state, result = visit(state, None, 10)
        assert state.is_idle
        assert state.consecutive_count == 0
        assert not result.fired

    def test_type_equality_is_by_id(self):
        state = StreakState(consecutive_count=1, last_site_type="youtube_shorts")
        state, _ = visit(state, "youtube_shorts", 10)
        assert state.consecutive_count == 2


class TestThreshold:
    """Tests for threshold crossings."""

    def test_fires_on_threshold_and_resets(self):
        state = StreakState()
        state, first = visit(state, "A", 3)
        state, second = visit(state, "A", 3)
        state, third = visit(state, "A", 3)

        assert not first.fired
        assert not second.fired
        assert third.fired
        assert state == StreakState()

    def test_next_visit_starts_fresh_streak(self):
        state = StreakState()
        for _ in range(3):
            state, _ = visit(state, "A", 3)
        state, result = visit(state, "A", 3)
        assert state.consecutive_count == 1
        assert not result.fired

    def test_threshold_one_fires_every_match(self):
        state = StreakState()
        for _ in range(3):
            state, result = visit(state, "A", 1)
            assert result.fired
            assert state.is_idle

    @pytest.mark.parametrize("threshold", [0, -1, -100])
    def test_non_positive_threshold_acts_as_one(self, threshold):
        result = advance(StreakState(), "A", threshold)
        assert result.fired
        assert result.next_state.is_idle

    def test_count_above_threshold_fires(self):
        """A stored count already past a lowered threshold fires on the next visit."""
        state = StreakState(consecutive_count=8, last_site_type="A")
        result = advance(state, "A", 5)
        assert result.fired
        assert result.next_state.is_idle

    def test_untracked_never_fires(self):
        state = StreakState(consecutive_count=9, last_site_type="A")
        assert not advance(state, None, 1).fired


class TestSnooze:
    """Tests for snooze credits."""

    def test_credit_swallows_crossing(self):
        state = StreakState(consecutive_count=2, last_site_type="A", snooze_remaining=3)
        result = advance(state, "A", 3)
        assert not result.fired
        assert result.snoozed
        assert result.next_state == StreakState(snooze_remaining=2)

    def test_credits_run_out(self):
        state = StreakState(snooze_remaining=1)
        state, first = visit(state, "A", 1)
        state, second = visit(state, "A", 1)
        assert first.snoozed and not first.fired
        assert second.fired and not second.snoozed
        assert state.snooze_remaining == 0

    def test_credits_not_used_below_threshold(self):
        state = StreakState(snooze_remaining=2)
        state, _ = visit(state, "A", 5)
        state, _ = visit(state, None, 5)
        assert state.snooze_remaining == 2

    def test_idle_keeps_snooze(self):
        state = StreakState(consecutive_count=3, last_site_type="A", snooze_remaining=4)
        assert state.idle() == StreakState(snooze_remaining=4)
