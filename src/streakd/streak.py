"""
Streak tracking for streakd.

A streak is a run of consecutive visits classified to the same site type.
The tracker is a two-state machine:

    Idle       last_site_type is None, consecutive_count == 0
    Streaking  last_site_type == X,    consecutive_count >= 1

Reaching the threshold fires once and drops straight back to Idle, so the
next matching visit starts a fresh streak at 1.
"""

from dataclasses import dataclass, replace
from typing import Optional


@dataclass(frozen=True)
class StreakState:
    """Persistent streak counters."""
    consecutive_count: int = 0
    last_site_type: Optional[str] = None
    snooze_remaining: int = 0  # threshold crossings still to swallow

    @property
    def is_idle(self) -> bool:
        return self.last_site_type is None

    def idle(self) -> "StreakState":
        """Same state with the streak cleared (snooze credits kept)."""
        return replace(self, consecutive_count=0, last_site_type=None)


@dataclass(frozen=True)
class StreakResult:
    """Outcome of one advance() step."""
    next_state: StreakState
    fired: bool = False
    snoozed: bool = False  # threshold crossed but swallowed by a snooze credit


def advance(state: StreakState, site_id: Optional[str], threshold: int) -> StreakResult:
    """
    Feed one classified visit into the streak.

    Args:
        state: Current streak state
        site_id: Matched rule id, or None for an untracked site
        threshold: Visits in a row needed to fire (values < 1 act as 1)

    Returns:
        StreakResult with the next state and whether to interrupt.
    """
    threshold = max(1, threshold)

    if site_id is None:
        # Any untracked visit breaks the streak
        return StreakResult(next_state=state.idle())

    if state.last_site_type == site_id:
        state = replace(state, consecutive_count=state.consecutive_count + 1)
    else:
        state = replace(state, consecutive_count=1, last_site_type=site_id)

    if state.consecutive_count < threshold:
        return StreakResult(next_state=state)

    if state.snooze_remaining > 0:
        state = replace(state, snooze_remaining=state.snooze_remaining - 1)
        return StreakResult(next_state=state.idle(), snoozed=True)

    return StreakResult(next_state=state.idle(), fired=True)
