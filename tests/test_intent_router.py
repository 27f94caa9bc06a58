"""
Tests for the Message Intent Router.

Routing precedence, classifier fail-safe, and the end-to-end effects of
each route: escalation, social ack, check-in replies, conversation.
"""
import pytest

from app.clients.classifier import Classification, Intent
from app.clients.replies import ReplyAction, ReplyDecision
from app.models.attention_request import AttentionRequest
from app.models.checkin import CheckinState
from app.models.message import Message, MessageSender
from app.models.patient import Patient, PatientStatus, PlanTier
from app.services import handlers
from app.services.checkin import Step, start_checkin
from app.services.intent_router import (
    FALLBACK_CONFIDENCE,
    InboundMessage,
    Route,
    classify,
    handle_inbound_message,
    normalize_phone,
    resolve_route,
)
from tests.conftest import NOW, TODAY, FakeClassifier


# ---------------------------------------------------------------------------
# Pure routing
# ---------------------------------------------------------------------------

class TestResolveRoute:
    @pytest.mark.parametrize("active", [True, False])
    def test_emergency_always_escalates(self, active):
        assert resolve_route(Intent.emergency, active) == Route.escalate

    @pytest.mark.parametrize("active", [True, False])
    def test_social(self, active):
        assert resolve_route(Intent.social, active) == Route.social

    def test_checkin_response_needs_active_checkin(self):
        assert resolve_route(Intent.checkin_response, True) == Route.checkin
        assert resolve_route(Intent.checkin_response, False) == Route.conversation

    @pytest.mark.parametrize("intent", [Intent.question, Intent.off_topic])
    def test_other_intents_go_to_conversation(self, intent):
        assert resolve_route(intent, True) == Route.conversation


class TestClassify:
    def test_passes_through(self):
        result = classify(FakeClassifier(Intent.social, 0.8), "oi", None)
        assert result.intent == Intent.social
        assert result.confidence == 0.8

    def test_failure_becomes_question(self):
        result = classify(FakeClassifier(error=RuntimeError("timeout")), "oi", None)
        assert result.intent == Intent.question
        assert result.confidence == FALLBACK_CONFIDENCE

    def test_out_of_range_confidence_becomes_question(self):
        class Broken:
            def classify(self, text, context):
                return Classification(intent=Intent.social, confidence=7.0, reason="")

        assert classify(Broken(), "oi", None).intent == Intent.question


@pytest.mark.parametrize("raw,expected", [
    ("whatsapp:+5511988880001", "+5511988880001"),
    (" +55 11 98888 0001 ", "+5511988880001"),
    ("+5511988880001", "+5511988880001"),
])
def test_normalize_phone(raw, expected):
    assert normalize_phone(raw) == expected


# ---------------------------------------------------------------------------
# handle_inbound_message
# ---------------------------------------------------------------------------

def _inbound(patient, text, external_id=None):
    return InboundMessage(phone_number=patient.phone_number, text=text, external_id=external_id)


class TestHandleInbound:
    def test_records_message_and_last_message(self, db, make_patient, services):
        p = make_patient()
        result = handle_inbound_message(db, services, _inbound(p, "Posso comer banana?", "SM1"), NOW)

        assert result.success is True
        assert result.route == Route.conversation
        db.refresh(p)
        assert p.last_message == "Posso comer banana?"
        msg = db.query(Message).filter_by(sender=MessageSender.patient).one()
        assert msg.external_id == "SM1"

    def test_duplicate_delivery_ignored(self, db, make_patient, services, sender, replies):
        p = make_patient()
        handle_inbound_message(db, services, _inbound(p, "Oi", "SM1"), NOW)
        again = handle_inbound_message(db, services, _inbound(p, "Oi", "SM1"), NOW)

        assert again.success is True
        assert again.duplicate is True
        assert db.query(Message).filter_by(sender=MessageSender.patient).count() == 1
        assert len(replies.calls) == 1
        assert len(sender.sent) == 1

    def test_social(self, db, make_patient, services, classifier, sender):
        classifier.intent = Intent.social
        p = make_patient()
        result = handle_inbound_message(db, services, _inbound(p, "Bom dia!"), NOW)
        assert result.route == Route.social
        assert sender.texts == [handlers.SOCIAL_ACK]

    def test_emergency_escalates(self, db, make_patient, services, classifier, sender, replies):
        classifier.intent = Intent.emergency
        p = make_patient()
        result = handle_inbound_message(db, services, _inbound(p, "Estou com dor no peito"), NOW)

        assert result.route == Route.escalate
        request = db.query(AttentionRequest).one()
        assert request.priority == 1
        assert request.reason == "Emergência Detectada"
        assert request.trigger_message == "Estou com dor no peito"
        db.refresh(p)
        assert p.needs_attention is True
        assert replies.calls == ["Estou com dor no peito"]
        assert replies.emergency_flags == [True]
        assert sender.texts == ["Resposta de teste"]

    def test_emergency_reply_failure_sends_canned_alert(self, db, make_patient, services, classifier, sender, replies):
        classifier.intent = Intent.emergency
        replies.error = RuntimeError("model unavailable")
        p = make_patient()
        result = handle_inbound_message(db, services, _inbound(p, "Desmaiei agora há pouco"), NOW)

        assert result.success is True
        assert result.route == Route.escalate
        assert db.query(AttentionRequest).one().priority == 1
        assert handlers.EMERGENCY_ALERT in sender.texts[0]
        assert handlers.EMERGENCY_STAY_CALM in sender.texts[0]

    def test_emergency_escalates_even_when_model_would_just_reply(self, db, make_patient, services, classifier, replies):
        classifier.intent = Intent.emergency
        replies.decision = ReplyDecision(action=ReplyAction.reply, reply="Procure o pronto-socorro agora.")
        p = make_patient()
        handle_inbound_message(db, services, _inbound(p, "Minha glicemia está 40"), NOW)

        assert db.query(AttentionRequest).count() == 1

    def test_emergency_mid_checkin_does_not_advance(self, db, make_patient, services, classifier, sender):
        p = make_patient()
        start_checkin(db, sender, p, TODAY, NOW)
        classifier.intent = Intent.emergency

        result = handle_inbound_message(db, services, _inbound(p, "sim, mas estou passando mal"), NOW)

        assert result.route == Route.escalate
        state = db.query(CheckinState).one()
        db.refresh(state)
        assert state.step == Step.HYDRATION
        assert db.query(AttentionRequest).count() == 1

    def test_checkin_response_advances(self, db, make_patient, services, classifier, sender):
        p = make_patient()
        start_checkin(db, sender, p, TODAY, NOW)
        classifier.intent = Intent.checkin_response

        result = handle_inbound_message(db, services, _inbound(p, "👍"), NOW)

        assert result.route == Route.checkin
        state = db.query(CheckinState).one()
        db.refresh(state)
        assert state.step == Step.BREAKFAST
        assert state.data["hydration"] == "yes"
        context = classifier.calls[-1][1]
        assert context.has_active_checkin is True

    def test_checkin_response_without_checkin_is_conversation(self, db, make_patient, services, classifier, replies):
        classifier.intent = Intent.checkin_response
        p = make_patient()
        result = handle_inbound_message(db, services, _inbound(p, "sim"), NOW)

        assert result.route == Route.conversation
        assert replies.calls == ["sim"]
        assert classifier.calls[-1][1].has_active_checkin is False

    def test_classifier_failure_still_answers(self, db, make_patient, services, classifier, replies, sender):
        classifier.error = RuntimeError("model unavailable")
        p = make_patient()
        result = handle_inbound_message(db, services, _inbound(p, "Qual o horário da consulta?"), NOW)

        assert result.success is True
        assert result.intent == Intent.question
        assert result.route == Route.conversation
        assert sender.texts == ["Resposta de teste"]

    def test_reply_generator_failure_sends_apology(self, db, make_patient, services, replies, sender):
        replies.error = RuntimeError("boom")
        p = make_patient()
        result = handle_inbound_message(db, services, _inbound(p, "Tenho uma dúvida"), NOW)

        assert result.success is True
        assert sender.texts == [handlers.GENERIC_ERROR]

    def test_reply_escalation_creates_attention_request(self, db, make_patient, services, replies, sender):
        replies.decision = ReplyDecision(
            action=ReplyAction.escalate,
            reply="Vou chamar a equipe para te ajudar.",
            reason="Dúvida sobre medicação",
            summary="Paciente pergunta sobre dosagem",
            priority=2,
        )
        p = make_patient()
        handle_inbound_message(db, services, _inbound(p, "Posso dobrar a dose?"), NOW)

        request = db.query(AttentionRequest).one()
        assert request.reason == "Dúvida sobre medicação"
        assert request.priority == 2
        assert sender.texts == ["Vou chamar a equipe para te ajudar."]

    def test_channel_failure_does_not_fail_handling(self, db, make_patient, services, sender):
        sender.ok = False
        p = make_patient()
        result = handle_inbound_message(db, services, _inbound(p, "Oi?"), NOW)
        assert result.success is True


class TestRegistration:
    def test_unknown_contact_registered(self, db, services, classifier, sender):
        inbound = InboundMessage(
            phone_number="whatsapp:+5511977770000", text="Oi, quero participar",
            external_id="SM9", profile_name="João Lima",
        )
        result = handle_inbound_message(db, services, inbound, NOW)

        assert result.success is True
        assert result.route == Route.registration
        patient = db.query(Patient).one()
        assert patient.phone_number == "+5511977770000"
        assert patient.full_name == "João Lima"
        assert patient.status == PatientStatus.pending
        assert patient.plan == PlanTier.freemium
        assert classifier.calls == []
        assert "Olá João!" in sender.texts[0]

    def test_unknown_contact_without_profile_name(self, db, services):
        inbound = InboundMessage(phone_number="+5511977770001", text="Oi")
        handle_inbound_message(db, services, inbound, NOW)
        assert db.query(Patient).one().full_name == "Novo Contato"

    def test_second_message_is_handled_normally(self, db, services, classifier):
        inbound = InboundMessage(phone_number="+5511977770002", text="Oi", external_id="A1")
        handle_inbound_message(db, services, inbound, NOW)
        result = handle_inbound_message(
            db, services, InboundMessage(phone_number="+5511977770002", text="Tudo bem?", external_id="A2"), NOW
        )
        assert result.route == Route.conversation
        assert db.query(Patient).count() == 1
