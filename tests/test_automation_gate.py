from datetime import date, datetime, timezone
from unittest.mock import patch

import pytest
from helpers import RecordingGateway, ScriptedProvider, add_recipient, add_slot_rule, text_completion, tool_completion

from atende.models import Appointment, AutomationConfig, KnowledgeDocument, Message, PendingTrigger
from atende.services.automation_gate import (
    AutomationGate,
    GateDecision,
    force_human_takeover,
    is_within_business_hours,
    matches_keyword,
    reactivate_automation,
)
from atende.services.conversation_service import (
    append_message,
    get_conversation,
    get_or_create_conversation,
    get_or_create_session,
    get_session,
)
from atende.services.llm import UpstreamUnavailableError
from atende.services.notification_service import NotificationService
from atende.services.reply_generator import ReplyGenerator

CUSTOMER = "5511999990000"
MONDAY_NOON = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)
SUNDAY_NOON = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)


def _inbound(db, tenant, text, counterpart=CUSTOMER):
    conversation = get_or_create_conversation(db, tenant.id, counterpart, contact_name="Maria")
    append_message(db, conversation, direction="inbound", author="customer", content=text)
    get_or_create_session(db, tenant.id, counterpart)
    db.commit()
    return conversation


def _automation_messages(db, conversation):
    return [
        m.content
        for m in db.query(Message)
        .filter(Message.conversation_id == conversation.id, Message.author == "automation")
        .order_by(Message.seq)
    ]


@pytest.fixture
def gateway():
    return RecordingGateway()


@pytest.fixture
def make_gate(db_session, gateway):
    def _make(*completions):
        provider = ScriptedProvider(*completions)
        gate = AutomationGate(db_session, ReplyGenerator(provider, max_iterations=3), NotificationService(db_session, gateway))
        gate.provider = provider
        return gate

    return _make


class TestBusinessHours:
    def _config(self, **overrides):
        values = dict(
            business_hours_start="08:00",
            business_hours_end="18:00",
            business_days=[1, 2, 3, 4, 5],
            timezone="America/Sao_Paulo",
        )
        values.update(overrides)
        return AutomationConfig(**values)

    def test_weekday_inside_window(self):
        # 12:00 UTC is 09:00 in São Paulo
        assert is_within_business_hours(self._config(), MONDAY_NOON)

    def test_before_opening_in_tenant_timezone(self):
        assert not is_within_business_hours(self._config(), datetime(2026, 10, 19, 10, 0, tzinfo=timezone.utc))

    def test_sunday_is_closed(self):
        assert not is_within_business_hours(self._config(), SUNDAY_NOON)

    def test_end_minute_is_inside(self):
        # 21:00 UTC is 18:00 in São Paulo
        assert is_within_business_hours(self._config(), datetime(2026, 10, 19, 21, 0, tzinfo=timezone.utc))
        assert not is_within_business_hours(self._config(), datetime(2026, 10, 19, 21, 1, tzinfo=timezone.utc))

    def test_sunday_can_be_a_business_day(self):
        assert is_within_business_hours(self._config(business_days=[0]), SUNDAY_NOON)

    def test_unknown_timezone_falls_back(self):
        assert is_within_business_hours(self._config(timezone="Mars/Olympus"), MONDAY_NOON)


class TestMatchesKeyword:
    def test_case_insensitive_substring(self):
        assert matches_keyword("Quero um ORÇAMENTO, por favor", ["orçamento"])

    def test_no_match(self):
        assert not matches_keyword("bom dia", ["orçamento"])

    def test_empty_keywords_match_everything(self):
        assert matches_keyword("bom dia", [])
        assert matches_keyword("bom dia", [" "])


class TestEvaluate:
    def test_replies_and_counts(self, db_session, tenant, make_gate):
        conversation = _inbound(db_session, tenant, "Oi")
        gate = make_gate(text_completion("Olá, Maria! Como posso ajudar?"))

        outcome = gate.evaluate(tenant.id, CUSTOMER, now=MONDAY_NOON)

        assert outcome.decision == GateDecision.REPLIED
        assert outcome.outbound_text == "Olá, Maria! Como posso ajudar?"
        assert outcome.instance_name == "clinica-sorriso"
        assert outcome.should_deliver is True
        session = get_session(db_session, tenant.id, CUSTOMER)
        assert session.status == "active"
        assert session.replies_since_human == 1
        assert _automation_messages(db_session, conversation) == ["Olá, Maria! Como posso ajudar?"]

    def test_aggregates_burst(self, db_session, tenant, make_gate):
        _inbound(db_session, tenant, "Oi")
        _inbound(db_session, tenant, "queria saber o preço")
        gate = make_gate(text_completion("Claro!"))

        gate.evaluate(tenant.id, CUSTOMER, now=MONDAY_NOON)

        assert gate.provider.calls[0][-1] == {"role": "user", "content": "Oi\nqueria saber o preço"}

    def test_prompt_includes_ready_knowledge(self, db_session, tenant, make_gate):
        db_session.add_all(
            [
                KnowledgeDocument(
                    tenant_id=tenant.id, file_name="precos.pdf", content_text="Limpeza custa R$ 150.", status="ready"
                ),
                KnowledgeDocument(
                    tenant_id=tenant.id, file_name="rascunho.pdf", content_text="Clareamento grátis.", status="processing"
                ),
            ]
        )
        _inbound(db_session, tenant, "Quanto custa a limpeza?")
        gate = make_gate(text_completion("A limpeza custa R$ 150."))

        gate.evaluate(tenant.id, CUSTOMER, now=MONDAY_NOON)

        system_prompt = gate.provider.calls[0][0]["content"]
        assert "Use a seguinte base de conhecimento para responder:\n\nLimpeza custa R$ 150." in system_prompt
        assert "Clareamento" not in system_prompt

    def test_disabled_tenant(self, db_session, tenant, config, make_gate):
        config.enabled = False
        db_session.commit()
        _inbound(db_session, tenant, "Oi")

        outcome = make_gate().evaluate(tenant.id, CUSTOMER, now=MONDAY_NOON)

        assert outcome.decision == GateDecision.DISABLED
        assert outcome.outbound_text is None

    def test_human_takeover_silences_automation(self, db_session, tenant, make_gate):
        _inbound(db_session, tenant, "Oi")
        force_human_takeover(db_session, tenant.id, CUSTOMER)
        db_session.commit()

        outcome = make_gate().evaluate(tenant.id, CUSTOMER, now=MONDAY_NOON)

        assert outcome.decision == GateDecision.HANDED_OFF
        assert outcome.should_deliver is False

    def test_reactivation_resumes_automation(self, db_session, tenant, make_gate):
        _inbound(db_session, tenant, "Oi")
        force_human_takeover(db_session, tenant.id, CUSTOMER)
        reactivate_automation(db_session, tenant.id, CUSTOMER)
        db_session.commit()

        outcome = make_gate(text_completion("Olá!")).evaluate(tenant.id, CUSTOMER, now=MONDAY_NOON)

        assert outcome.decision == GateDecision.REPLIED
        assert get_conversation(db_session, tenant.id, CUSTOMER).automation_enabled is True


class TestQuotaHandoff:
    def test_handoff_happens_once(self, db_session, tenant, config, gateway, make_gate):
        config.max_messages_without_human = 2
        db_session.commit()
        add_recipient(db_session, tenant, address="5511900000001")
        gate = make_gate(text_completion("Resposta 1"), text_completion("Resposta 2"))

        decisions = []
        for text in ("Oi", "Tudo bem?", "Ainda está aí?", "Alô?"):
            _inbound(db_session, tenant, text)
            decisions.append(gate.evaluate(tenant.id, CUSTOMER, now=MONDAY_NOON))

        assert [o.decision for o in decisions] == [
            GateDecision.REPLIED,
            GateDecision.REPLIED,
            GateDecision.HANDOFF,
            GateDecision.HANDED_OFF,
        ]
        assert decisions[2].outbound_text == "Vou chamar um atendente para continuar."
        assert decisions[3].outbound_text is None

        session = get_session(db_session, tenant.id, CUSTOMER)
        assert session.status == "handed_off"
        assert session.handed_off_at is not None
        assert get_conversation(db_session, tenant.id, CUSTOMER).automation_enabled is False

        assert len(gateway.sent) == 1
        instance_name, address, text = gateway.sent[0]
        assert (instance_name, address) == ("clinica-sorriso", "5511900000001")
        assert "Transferência de Atendimento" in text
        assert CUSTOMER in text
        assert "Maria" in text

    def test_handoff_without_message(self, db_session, tenant, config, make_gate):
        config.max_messages_without_human = 1
        config.handoff_message = None
        db_session.commit()
        conversation = _inbound(db_session, tenant, "Oi")
        get_session(db_session, tenant.id, CUSTOMER).replies_since_human = 1
        db_session.commit()

        outcome = make_gate().evaluate(tenant.id, CUSTOMER, now=MONDAY_NOON)

        assert outcome.decision == GateDecision.HANDOFF
        assert outcome.outbound_text is None
        assert _automation_messages(db_session, conversation) == []


class TestKeywordActivation:
    def test_activates_only_on_keyword(self, db_session, tenant, config, make_gate):
        config.keyword_activation_enabled = True
        config.trigger_keywords = ["orçamento"]
        db_session.commit()
        gate = make_gate(text_completion("Claro! Qual serviço?"), text_completion("Perfeito."))

        _inbound(db_session, tenant, "bom dia")
        first = gate.evaluate(tenant.id, CUSTOMER, now=MONDAY_NOON)

        assert first.decision == GateDecision.NOT_ACTIVATED
        assert first.outbound_text is None
        assert get_session(db_session, tenant.id, CUSTOMER).status == "inactive"
        assert gate.provider.calls == []

        _inbound(db_session, tenant, "quero um orçamento")
        second = gate.evaluate(tenant.id, CUSTOMER, now=MONDAY_NOON)

        assert second.decision == GateDecision.REPLIED
        assert get_session(db_session, tenant.id, CUSTOMER).status == "active"

        _inbound(db_session, tenant, "de clareamento")
        third = gate.evaluate(tenant.id, CUSTOMER, now=MONDAY_NOON)

        assert third.decision == GateDecision.REPLIED


class TestOutOfHours:
    def test_sunday_sends_notice_once(self, db_session, tenant, config, make_gate):
        config.business_days = [1, 2, 3, 4, 5]
        config.business_hours_start = "08:00"
        config.business_hours_end = "18:00"
        db_session.commit()
        conversation = _inbound(db_session, tenant, "Oi, estão abertos?")
        gate = make_gate()

        first = gate.evaluate(tenant.id, CUSTOMER, now=SUNDAY_NOON)
        _inbound(db_session, tenant, "?")
        second = gate.evaluate(tenant.id, CUSTOMER, now=SUNDAY_NOON)

        assert first.decision == GateDecision.OUT_OF_HOURS
        assert first.outbound_text == "Estamos fora do horário de atendimento."
        assert second.decision == GateDecision.OUT_OF_HOURS
        assert second.outbound_text is None
        assert _automation_messages(db_session, conversation) == ["Estamos fora do horário de atendimento."]
        assert get_session(db_session, tenant.id, CUSTOMER).replies_since_human == 0
        assert db_session.query(PendingTrigger).count() == 0
        assert gate.provider.calls == []


class TestUpstreamFailure:
    @patch("atende.services.automation_gate.alert_error")
    def test_rolls_back_the_firing(self, mock_alert, db_session, tenant, make_gate):
        add_slot_rule(db_session, tenant, 2)
        conversation = _inbound(db_session, tenant, "Quero marcar terça às 10h")
        gate = make_gate(
            tool_completion("create_appointment", date="2026-10-20", time="10:00", title="Consulta"),
            UpstreamUnavailableError("timeout"),
        )

        outcome = gate.evaluate(tenant.id, CUSTOMER, now=MONDAY_NOON)

        assert outcome.decision == GateDecision.UPSTREAM_FAILED
        assert outcome.should_deliver is False
        assert db_session.query(Appointment).count() == 0
        assert _automation_messages(db_session, conversation) == []
        assert get_session(db_session, tenant.id, CUSTOMER).replies_since_human == 0
        mock_alert.assert_called_once()


class TestBookingNotification:
    def test_new_booking_notifies_subscribed_recipients(self, db_session, tenant, gateway, make_gate):
        add_slot_rule(db_session, tenant, 2)
        add_recipient(db_session, tenant, address="5511900000001")
        add_recipient(db_session, tenant, address="5511900000002", bookings=False)
        _inbound(db_session, tenant, "Quero marcar terça às 10h")
        gate = make_gate(
            tool_completion("create_appointment", date="2026-10-20", time="10:00", title="Consulta"),
            text_completion("Agendamento confirmado para terça, 20/10 às 10:00!"),
        )

        outcome = gate.evaluate(tenant.id, CUSTOMER, now=MONDAY_NOON)

        assert outcome.reply.booked is True
        [appointment] = db_session.query(Appointment).all()
        assert appointment.appointment_date == date(2026, 10, 20)
        assert appointment.contact_name == "Maria"
        assert [address for _, address, _ in gateway.sent] == ["5511900000001"]
        assert "Novo Agendamento" in gateway.sent[0][2]
        assert "terça-feira, 20 de outubro" in gateway.sent[0][2]
