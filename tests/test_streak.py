"""
Tests for the Streak Ledger.

Decision table: days since last activity {0, 1, 2, >2} × freezes {0, 1, 2}.

Scenarios:
  A) last activity yesterday, streak 6 → 7 with the 100-point milestone bonus
  B) last activity 2 days ago, no freezes → reset to 1
"""
from datetime import date, timedelta

import pytest

from app.models.patient import PatientStatus
from app.services.streak import (
    MAX_STREAK_FREEZES,
    STREAK_MILESTONE_BONUS,
    StreakOutcome,
    StreakState,
    decide_streak,
    reset_monthly_freezes,
    update_streak,
)

TODAY = date(2026, 10, 14)


def _state(days_ago, current=5, longest=5, freezes=2, used=0) -> StreakState:
    last = TODAY - timedelta(days=days_ago) if days_ago is not None else None
    return StreakState(
        current_streak=current,
        longest_streak=longest,
        last_activity_date=last,
        streak_freezes=freezes,
        freezes_used_this_month=used,
    )


class TestDecisionTable:
    @pytest.mark.parametrize("freezes", [0, 1, 2])
    def test_same_day_unchanged(self, freezes):
        d = decide_streak(_state(0, freezes=freezes), TODAY)
        assert d.outcome == StreakOutcome.unchanged
        assert d.current_streak == 5
        assert d.streak_freezes == freezes
        assert d.bonus_points == 0

    @pytest.mark.parametrize("freezes", [0, 1, 2])
    def test_next_day_increments(self, freezes):
        d = decide_streak(_state(1, freezes=freezes), TODAY)
        assert d.outcome == StreakOutcome.incremented
        assert d.current_streak == 6
        assert d.streak_freezes == freezes
        assert d.state.last_activity_date == TODAY

    @pytest.mark.parametrize("freezes", [1, 2])
    def test_one_missed_day_consumes_freeze(self, freezes):
        d = decide_streak(_state(2, freezes=freezes, used=0), TODAY)
        assert d.outcome == StreakOutcome.frozen
        assert d.current_streak == 5
        assert d.streak_freezes == freezes - 1
        assert d.state.freezes_used_this_month == 1
        assert d.state.last_activity_date == TODAY

    def test_one_missed_day_without_freeze_resets(self):
        d = decide_streak(_state(2, freezes=0), TODAY)
        assert d.outcome == StreakOutcome.reset
        assert d.current_streak == 1
        assert d.streak_freezes == 0

    @pytest.mark.parametrize("freezes", [0, 1, 2])
    @pytest.mark.parametrize("days", [3, 10])
    def test_long_gap_resets(self, days, freezes):
        d = decide_streak(_state(days, freezes=freezes), TODAY)
        assert d.outcome == StreakOutcome.reset
        assert d.current_streak == 1
        assert d.streak_freezes == freezes

    def test_first_activity_starts_at_one(self):
        d = decide_streak(_state(None, current=0, longest=0), TODAY)
        assert d.outcome == StreakOutcome.reset
        assert d.current_streak == 1
        assert d.longest_streak == 1

    def test_out_of_order_date_is_unchanged(self):
        d = decide_streak(_state(-1), TODAY)
        assert d.outcome == StreakOutcome.unchanged
        assert d.current_streak == 5


class TestLongestAndBonus:
    def test_scenario_a_milestone_bonus(self):
        d = decide_streak(_state(1, current=6, longest=6), TODAY)
        assert d.current_streak == 7
        assert d.bonus_points == 100
        assert d.longest_streak == 7

    def test_scenario_b_reset_without_freezes(self):
        d = decide_streak(_state(2, current=12, longest=12, freezes=0), TODAY)
        assert d.outcome == StreakOutcome.reset
        assert d.current_streak == 1
        assert d.longest_streak == 12

    @pytest.mark.parametrize("milestone,bonus", sorted(STREAK_MILESTONE_BONUS.items()))
    def test_every_milestone(self, milestone, bonus):
        d = decide_streak(_state(1, current=milestone - 1, longest=milestone - 1), TODAY)
        assert d.bonus_points == bonus

    def test_no_bonus_past_milestone(self):
        d = decide_streak(_state(1, current=7, longest=7), TODAY)
        assert d.current_streak == 8
        assert d.bonus_points == 0

    def test_freeze_does_not_pay_bonus(self):
        d = decide_streak(_state(2, current=7, longest=7, freezes=1), TODAY)
        assert d.outcome == StreakOutcome.frozen
        assert d.bonus_points == 0

    def test_longest_never_decreases(self):
        d = decide_streak(_state(5, current=3, longest=40), TODAY)
        assert d.current_streak == 1
        assert d.longest_streak == 40


class TestPatientRow:
    def test_update_streak_writes_row(self, make_patient):
        p = make_patient(current_streak=6, longest_streak=6, last_activity_date=TODAY - timedelta(days=1))
        d = update_streak(p, TODAY)
        assert d.bonus_points == 100
        assert p.current_streak == 7
        assert p.longest_streak == 7
        assert p.last_activity_date == TODAY

    def test_reset_monthly_freezes_skips_pending(self, db, make_patient):
        active = make_patient(streak_freezes=0, freezes_used_this_month=2)
        pending = make_patient(status=PatientStatus.pending, streak_freezes=0, freezes_used_this_month=2)

        count = reset_monthly_freezes(db)

        assert count == 1
        db.refresh(active)
        db.refresh(pending)
        assert active.streak_freezes == MAX_STREAK_FREEZES
        assert active.freezes_used_this_month == 0
        assert pending.streak_freezes == 0
