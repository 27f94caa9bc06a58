"""
Tests for the daily check-in state machine.

Pure: step plan, reply parsing per step, advance monotonicity, points.
DB:   start, invalid reply (scenario C), compare-and-swap, completion.
"""
from datetime import date, timedelta

import pytest

from app.core.errors import (
    CheckinAlreadyStartedError,
    CheckinNotAvailableError,
    CheckinReplyError,
)
from app.models.checkin import CheckinRecord, CheckinState
from app.models.health_metric import HealthMetric
from app.models.patient import PlanTier
from app.models.protocol import PatientProtocol
from app.models.scheduled_message import ScheduledMessage
from app.services.checkin import (
    BASE_STEPS,
    ReplyOutcome,
    Step,
    _compare_and_swap,
    advance,
    build_step_plan,
    calculate_points,
    checkin_summary,
    get_active_checkin,
    handle_checkin_reply,
    parse_reply,
    points_by_perspective,
    start_checkin,
    start_daily_checkins,
)
from tests.conftest import NOW, TODAY, WEIGH_DAY, FakeSender

ALL_ANSWERS = ["👍", "A", "🅱️", "C", "sim", "👍", "😊"]


# ---------------------------------------------------------------------------
# Step plan
# ---------------------------------------------------------------------------

class TestStepPlan:
    def test_regular_day(self):
        assert build_step_plan(TODAY, PlanTier.premium) == BASE_STEPS
        assert BASE_STEPS[0] == Step.HYDRATION

    @pytest.mark.parametrize("plan", [PlanTier.premium, PlanTier.vip])
    def test_weigh_day_adds_weight(self, plan):
        steps = build_step_plan(WEIGH_DAY, plan)
        assert steps[-1] == Step.WEIGHT
        assert steps[:-1] == BASE_STEPS

    def test_protocol_weigh_day(self):
        monday = date(2026, 10, 12)
        assert build_step_plan(monday, "vip", weigh_day=0)[-1] == Step.WEIGHT
        assert Step.WEIGHT not in build_step_plan(WEIGH_DAY, "vip", weigh_day=0)

    def test_freemium_has_no_checkins(self):
        with pytest.raises(CheckinNotAvailableError):
            build_step_plan(TODAY, PlanTier.freemium)


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

class TestParseReply:
    @pytest.mark.parametrize(
        "reply,value",
        [("👍", "yes"), ("sim", "yes"), ("Sim!", "yes"), ("🤏", "almost"), ("quase", "almost"),
         ("quase sim", "almost"), ("👎", "no"), ("não", "no"), ("nao", "no")],
    )
    def test_hydration(self, reply, value):
        assert parse_reply(Step.HYDRATION, reply, {})["hydration"] == value

    @pytest.mark.parametrize("reply", ["talvez", "", "bebi pouco?? nao sei, sim", "🍕"])
    def test_hydration_invalid(self, reply):
        with pytest.raises(CheckinReplyError) as exc:
            parse_reply(Step.HYDRATION, reply, {})
        assert exc.value.step == Step.HYDRATION
        assert "👍" in exc.value.hint

    @pytest.mark.parametrize(
        "reply,value",
        [("A", "A"), ("a", "A"), ("🅰️", "A"), ("100%", "A"), ("B", "B"), ("adaptei", "B"),
         ("🅱️", "B"), ("C", "C"), ("fugi", "C"), ("🅲", "C")],
    )
    def test_meals(self, reply, value):
        assert parse_reply(Step.LUNCH, reply, {})["lunch"] == value

    @pytest.mark.parametrize(
        "reply,value",
        [("Fugi a dieta", "C"), ("A maior parte sim, 100%", "A"), ("Adaptei a receita", "B"), ("A", "A")],
    )
    def test_meal_sentences(self, reply, value):
        assert parse_reply(Step.DINNER, reply, {})["dinner"] == value

    def test_meal_ambiguous_is_invalid(self):
        with pytest.raises(CheckinReplyError):
            parse_reply(Step.BREAKFAST, "A ou B", {})

    @pytest.mark.parametrize(
        "step,reply,value",
        [(Step.ACTIVITY, "não fiz", "no"), (Step.ACTIVITY, "Não pratiquei hoje", "no"),
         (Step.ACTIVITY, "fiz sim", "yes"), (Step.ACTIVITY, "pratiquei", "yes"),
         (Step.HYDRATION, "não bebi", "no"), (Step.HYDRATION, "bebi", "yes"),
         (Step.SNACKS, "nao", "no")],
    )
    def test_negation_wins_over_echoed_verb(self, step, reply, value):
        key = "hydration" if step == Step.HYDRATION else step
        assert parse_reply(step, reply, {})[key] == value

    @pytest.mark.parametrize("step", [Step.SNACKS, Step.ACTIVITY])
    def test_yes_no_steps_reject_almost(self, step):
        with pytest.raises(CheckinReplyError):
            parse_reply(step, "quase", {})

    @pytest.mark.parametrize(
        "reply,value",
        [("😢", 1), ("ruim", 2), ("😐", 3), ("ok", 3), ("estou bem", 4), ("😄", 5), ("ótimo", 5), ("4", 4)],
    )
    def test_wellbeing(self, reply, value):
        assert parse_reply(Step.WELLBEING, reply, {})["wellbeing"] == value

    @pytest.mark.parametrize("reply,value", [("85", 85.0), ("85kg", 85.0), ("72,5 kg", 72.5), ("300", 300.0)])
    def test_weight(self, reply, value):
        assert parse_reply(Step.WEIGHT, reply, {})["weight"] == value

    @pytest.mark.parametrize("reply", ["29", "301", "peso", "8", "1000", "3000", "1.000"])
    def test_weight_out_of_range(self, reply):
        with pytest.raises(CheckinReplyError):
            parse_reply(Step.WEIGHT, reply, {})

    def test_input_data_not_mutated(self):
        data = {"hydration": "yes"}
        updated = parse_reply(Step.BREAKFAST, "A", data)
        assert data == {"hydration": "yes"}
        assert updated == {"hydration": "yes", "breakfast": "A"}


class TestAdvance:
    def test_moves_forward_one_step(self):
        nxt, data = advance(BASE_STEPS, Step.HYDRATION, "👍", {})
        assert nxt == Step.BREAKFAST
        assert data == {"hydration": "yes"}

    def test_last_step_completes(self):
        nxt, _ = advance(BASE_STEPS, Step.WELLBEING, "😊", {})
        assert nxt == Step.COMPLETE

    def test_invalid_reply_raises(self):
        with pytest.raises(CheckinReplyError):
            advance(BASE_STEPS, Step.HYDRATION, "talvez", {})

    def test_full_walk_is_monotonic(self):
        step, data, seen = BASE_STEPS[0], {}, []
        for answer in ALL_ANSWERS:
            seen.append(step)
            step, data = advance(BASE_STEPS, step, answer, data)
        assert step == Step.COMPLETE
        assert tuple(seen) == BASE_STEPS


class TestPoints:
    def test_perfect_day(self):
        data = {"hydration": "yes", "breakfast": "A", "lunch": "A", "dinner": "A",
                "snacks": "yes", "activity": "yes", "wellbeing": 5, "weight": 80.0}
        assert calculate_points(data) == 15 + 60 + 10 + 30 + 10 + 20

    def test_shares_by_perspective(self):
        data = {"hydration": "almost", "breakfast": "A", "lunch": "B", "dinner": "C",
                "snacks": "no", "activity": "no", "wellbeing": 3}
        assert points_by_perspective(data) == {
            "hydration": 10,
            "nutrition": 40,
            "movement": 0,
            "wellbeing": 0,
        }
        assert calculate_points(data) == 50

    def test_summary_mentions_total(self):
        text = checkin_summary({"hydration": "yes", "wellbeing": 4}, 25)
        assert text.startswith("✅ *Check-in completo!*")
        assert "+25 pontos" in text


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------

def _state(db, patient_id, day=TODAY) -> CheckinState:
    db.expire_all()
    return db.query(CheckinState).filter_by(patient_id=patient_id, day=day).one()


class TestStartCheckin:
    def test_start_creates_state_and_prompts(self, db, make_patient, sender):
        p = make_patient()
        state = start_checkin(db, sender, p, TODAY, NOW)

        assert state.step == Step.HYDRATION
        assert state.steps == list(BASE_STEPS)
        assert len(sender.sent) == 1
        assert "Oi Maria!" in sender.texts[0]
        prompt = db.query(ScheduledMessage).one()
        assert prompt.is_gamification is True
        assert prompt.source == "checkin"

    def test_one_per_day(self, db, make_patient, sender):
        p = make_patient()
        start_checkin(db, sender, p, TODAY, NOW)
        with pytest.raises(CheckinAlreadyStartedError):
            start_checkin(db, sender, p, TODAY, NOW)

    def test_freemium_rejected(self, db, make_patient, sender):
        p = make_patient(plan=PlanTier.freemium)
        with pytest.raises(CheckinNotAvailableError):
            start_checkin(db, sender, p, TODAY, NOW)
        assert db.query(CheckinState).count() == 0

    def test_protocol_weigh_day_used(self, db, make_patient, sender):
        p = make_patient()
        db.add(PatientProtocol(patient_id=p.id, protocol_name="Protocolo 90", duration_days=90,
                               weigh_day=TODAY.weekday()))
        db.commit()
        state = start_checkin(db, sender, p, TODAY, NOW)
        assert state.steps[-1] == Step.WEIGHT

    def test_start_daily_checkins(self, db, make_patient, sender):
        make_patient()
        make_patient(plan=PlanTier.vip)
        make_patient(plan=PlanTier.freemium)
        already = make_patient()
        start_checkin(db, sender, already, TODAY, NOW)

        run = start_daily_checkins(db, sender, TODAY, NOW)

        assert run.started == 2
        assert run.skipped == 1
        assert run.failed == 0


class TestHandleReply:
    def test_scenario_c_invalid_reply_reprompts(self, db, make_patient, sender):
        p = make_patient()
        start_checkin(db, sender, p, TODAY, NOW)

        result = handle_checkin_reply(db, sender, p, "talvez", TODAY, NOW)

        assert result.outcome == ReplyOutcome.INVALID
        state = _state(db, p.id)
        assert state.step == Step.HYDRATION
        assert state.data == {}
        assert "Use os emojis: 👍 🤏 👎" in sender.texts[-1]
        db.refresh(p)
        assert p.total_points == 0

    def test_valid_reply_advances(self, db, make_patient, sender):
        p = make_patient()
        start_checkin(db, sender, p, TODAY, NOW)

        result = handle_checkin_reply(db, sender, p, "👍", TODAY, NOW)

        assert result.outcome == ReplyOutcome.ADVANCED
        state = _state(db, p.id)
        assert state.step == Step.BREAKFAST
        assert state.data == {"hydration": "yes"}
        assert "Café da manhã" in sender.texts[-1]

    def test_stale_step_loses_race(self, db, make_patient, sender):
        p = make_patient()
        start_checkin(db, sender, p, TODAY, NOW)
        # Another worker already moved the row past hydration
        db.query(CheckinState).update({CheckinState.step: Step.BREAKFAST})
        db.commit()

        state = _state(db, p.id)
        won = _compare_and_swap(
            db, state, Step.HYDRATION, {CheckinState.step: Step.BREAKFAST, CheckinState.data: {"hydration": "no"}}
        )
        db.commit()

        assert won is False
        assert _state(db, p.id).data == {}

    def test_no_active_checkin(self, db, make_patient, sender):
        p = make_patient()
        result = handle_checkin_reply(db, sender, p, "👍", TODAY, NOW)
        assert result.outcome == ReplyOutcome.NO_ACTIVE

    def test_yesterdays_checkin_still_active(self, db, make_patient, sender):
        p = make_patient()
        start_checkin(db, sender, p, TODAY - timedelta(days=1), NOW - timedelta(days=1))
        assert get_active_checkin(db, p.id, TODAY) is not None
        assert get_active_checkin(db, p.id, TODAY + timedelta(days=1)) is None

    def test_completion_awards_points(self, db, make_patient, sender):
        p = make_patient()
        start_checkin(db, sender, p, TODAY, NOW)

        for answer in ALL_ANSWERS:
            result = handle_checkin_reply(db, sender, p, answer, TODAY, NOW)

        # 15 hydration + 20 + 15 + 5 meals + 10 snacks + 30 activity + 10 wellbeing
        assert result.outcome == ReplyOutcome.COMPLETED
        assert result.points_earned == 105
        state = _state(db, p.id)
        assert state.step == Step.COMPLETE
        assert state.points_earned == 105
        assert state.completed_at is not None

        record = db.query(CheckinRecord).one()
        assert record.breakfast == "A"
        assert record.lunch == "B"
        assert record.dinner == "C"
        assert record.points_earned == 105

        db.refresh(p)
        # first activity day + hydration weekly goal (75) not reached
        assert p.total_points == 105
        assert p.current_streak == 1
        assert p.weekly_progress["nutrition"]["current"] == 50
        assert p.weekly_progress["movement"]["current"] == 30
        assert sender.texts[-1].startswith("✅ *Check-in completo!*")

    def test_reply_after_completion_is_not_applied(self, db, make_patient, sender):
        p = make_patient()
        start_checkin(db, sender, p, TODAY, NOW)
        for answer in ALL_ANSWERS:
            handle_checkin_reply(db, sender, p, answer, TODAY, NOW)

        again = handle_checkin_reply(db, sender, p, "😊", TODAY, NOW)

        assert again.outcome == ReplyOutcome.NO_ACTIVE
        db.refresh(p)
        assert p.total_points == 105
        assert db.query(CheckinRecord).count() == 1

    def test_weigh_in_records_metric(self, db, make_patient, sender):
        p = make_patient()
        start_checkin(db, sender, p, WEIGH_DAY, NOW)
        for answer in ALL_ANSWERS + ["82,4"]:
            result = handle_checkin_reply(db, sender, p, answer, WEIGH_DAY, NOW)

        assert result.outcome == ReplyOutcome.COMPLETED
        assert result.points_earned == 125
        metric = db.query(HealthMetric).one()
        assert float(metric.weight_kg) == pytest.approx(82.4)
        db.refresh(p)
        assert p.weekly_progress["discipline"]["is_complete"] is True

    def test_channel_failure_does_not_block(self, db, make_patient):
        p = make_patient()
        down = FakeSender(ok=False)
        start_checkin(db, down, p, TODAY, NOW)

        result = handle_checkin_reply(db, down, p, "👍", TODAY, NOW)

        assert result.outcome == ReplyOutcome.ADVANCED
        assert _state(db, p.id).step == Step.BREAKFAST
