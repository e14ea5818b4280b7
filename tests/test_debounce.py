import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, Mock, patch

import pytest

from atende.models import PendingTrigger
from atende.services.automation_gate import GateDecision, GateOutcome
from atende.services.debounce_service import DebounceScheduler, claim_trigger, due_trigger_keys, schedule_trigger
from atende.services.timeutils import as_utc, utcnow

CUSTOMER = "5511999990000"
T0 = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


def _rows(db):
    return db.query(PendingTrigger).all()


def _replied(tenant_id, counterpart, text="Olá!"):
    return GateOutcome(
        decision=GateDecision.REPLIED,
        tenant_id=tenant_id,
        counterpart=counterpart,
        instance_name="clinica-sorriso",
        outbound_text=text,
    )


class TestScheduleTrigger:
    def test_one_row_per_conversation(self, db_session, tenant):
        schedule_trigger(db_session, tenant.id, CUSTOMER, 5, now=T0)
        fire_at = schedule_trigger(db_session, tenant.id, CUSTOMER, 5, now=T0 + timedelta(seconds=3))
        db_session.commit()

        [row] = _rows(db_session)
        assert fire_at == T0 + timedelta(seconds=8)
        assert as_utc(row.scheduled_at) == fire_at
        assert row.processed is False

    def test_separate_conversations(self, db_session, tenant):
        schedule_trigger(db_session, tenant.id, CUSTOMER, 5, now=T0)
        schedule_trigger(db_session, tenant.id, "5511988887777", 5, now=T0)
        db_session.commit()

        assert len(_rows(db_session)) == 2

    def test_rearm_after_processing(self, db_session, tenant):
        schedule_trigger(db_session, tenant.id, CUSTOMER, 5, now=T0)
        db_session.commit()
        assert claim_trigger(db_session, tenant.id, CUSTOMER, now=T0 + timedelta(seconds=5)) is True

        schedule_trigger(db_session, tenant.id, CUSTOMER, 5, now=T0 + timedelta(seconds=60))
        db_session.commit()

        [row] = _rows(db_session)
        db_session.refresh(row)
        assert row.processed is False


class TestClaimTrigger:
    def test_claims_once(self, db_session, tenant):
        schedule_trigger(db_session, tenant.id, CUSTOMER, 5, now=T0)
        db_session.commit()
        due = T0 + timedelta(seconds=5)

        assert claim_trigger(db_session, tenant.id, CUSTOMER, now=due) is True
        assert claim_trigger(db_session, tenant.id, CUSTOMER, now=due) is False

    def test_rearmed_for_later(self, db_session, tenant):
        schedule_trigger(db_session, tenant.id, CUSTOMER, 5, now=T0)
        db_session.commit()

        assert claim_trigger(db_session, tenant.id, CUSTOMER, now=T0 + timedelta(seconds=4)) is False
        [row] = _rows(db_session)
        assert row.processed is False

    def test_tolerance(self, db_session, tenant):
        schedule_trigger(db_session, tenant.id, CUSTOMER, 5, now=T0)
        db_session.commit()

        claimed = claim_trigger(
            db_session,
            tenant.id,
            CUSTOMER,
            now=T0 + timedelta(seconds=4, milliseconds=600),
            tolerance=timedelta(milliseconds=500),
        )

        assert claimed is True

    def test_missing_row(self, db_session, tenant):
        assert claim_trigger(db_session, tenant.id, CUSTOMER, now=T0) is False

    def test_message_during_delay_moves_the_firing(self, db_session, tenant):
        schedule_trigger(db_session, tenant.id, CUSTOMER, 5, now=T0)
        db_session.commit()
        schedule_trigger(db_session, tenant.id, CUSTOMER, 5, now=T0 + timedelta(seconds=4))
        db_session.commit()

        # The first timer goes off at T0+5 and finds the row re-armed.
        assert claim_trigger(db_session, tenant.id, CUSTOMER, now=T0 + timedelta(seconds=5)) is False
        assert claim_trigger(db_session, tenant.id, CUSTOMER, now=T0 + timedelta(seconds=9)) is True


class TestDueTriggerKeys:
    def test_only_due_unprocessed(self, db_session, tenant):
        schedule_trigger(db_session, tenant.id, "5511900000001", 5, now=T0)
        schedule_trigger(db_session, tenant.id, "5511900000002", 1, now=T0)
        schedule_trigger(db_session, tenant.id, "5511900000003", 60, now=T0)
        db_session.commit()

        keys = due_trigger_keys(db_session, now=T0 + timedelta(seconds=10))

        assert keys == [(tenant.id, "5511900000002"), (tenant.id, "5511900000001")]


class TestDebounceScheduler:
    @pytest.fixture
    def gate(self):
        return Mock()

    @pytest.fixture
    def scheduler(self, session_factory, gate):
        return DebounceScheduler(session_factory=session_factory, gate_factory=lambda db: gate, pacer=Mock())

    def _due(self, db, tenant, counterpart=CUSTOMER):
        schedule_trigger(db, tenant.id, counterpart, 1, now=utcnow() - timedelta(seconds=10))
        db.commit()

    def test_fire_runs_gate_once_and_delivers(self, db_session, tenant, gate, scheduler):
        self._due(db_session, tenant)
        gate.evaluate.return_value = _replied(tenant.id, CUSTOMER)

        first = asyncio.run(scheduler.fire(tenant.id, CUSTOMER))
        second = asyncio.run(scheduler.fire(tenant.id, CUSTOMER))

        assert first.decision == GateDecision.REPLIED
        assert second is None
        gate.evaluate.assert_called_once_with(tenant.id, CUSTOMER)
        scheduler.pacer.schedule.assert_called_once_with("clinica-sorriso", CUSTOMER, "Olá!")

    def test_nothing_delivered_without_text(self, db_session, tenant, gate, scheduler):
        self._due(db_session, tenant)
        gate.evaluate.return_value = GateOutcome(
            decision=GateDecision.HANDED_OFF,
            tenant_id=tenant.id,
            counterpart=CUSTOMER,
            instance_name="clinica-sorriso",
        )

        asyncio.run(scheduler.fire(tenant.id, CUSTOMER))

        scheduler.pacer.schedule.assert_not_called()

    @patch("atende.services.debounce_service.alert_error")
    def test_gate_error_is_not_retried(self, mock_alert, db_session, tenant, gate, scheduler):
        self._due(db_session, tenant)
        gate.evaluate.side_effect = RuntimeError("boom")

        assert asyncio.run(scheduler.fire(tenant.id, CUSTOMER)) is None
        assert asyncio.run(scheduler.fire(tenant.id, CUSTOMER)) is None

        gate.evaluate.assert_called_once()
        mock_alert.assert_called_once_with(
            "Trigger firing failed", {"error": "boom"}, tenant_id=tenant.id, counterpart=CUSTOMER
        )
        [row] = _rows(db_session)
        assert row.processed is True

    def test_sweep_fires_due_triggers(self, db_session, tenant, gate, scheduler):
        self._due(db_session, tenant, "5511900000001")
        self._due(db_session, tenant, "5511900000002")
        schedule_trigger(db_session, tenant.id, "5511900000003", 600)
        db_session.commit()
        gate.evaluate.side_effect = lambda tenant_id, counterpart: _replied(tenant_id, counterpart)

        fired = asyncio.run(scheduler.sweep())

        assert fired == 2
        assert {c.args[1] for c in gate.evaluate.call_args_list} == {"5511900000001", "5511900000002"}

    def test_zero_delay_runs_gate_immediately(self, tenant, gate, scheduler):
        gate.evaluate.return_value = _replied(tenant.id, CUSTOMER)

        outcome = asyncio.run(scheduler.on_inbound(tenant.id, CUSTOMER, 0))

        assert outcome.decision == GateDecision.REPLIED
        scheduler.pacer.schedule.assert_called_once()

    def test_rearming_replaces_the_timer(self, tenant, scheduler):
        scheduler.fire = AsyncMock(return_value=None)

        async def scenario():
            await scheduler.on_inbound(tenant.id, CUSTOMER, 0.05)
            await asyncio.sleep(0.02)
            await scheduler.on_inbound(tenant.id, CUSTOMER, 0.05)
            await asyncio.sleep(0.2)

        asyncio.run(scenario())

        scheduler.fire.assert_awaited_once_with(tenant.id, CUSTOMER)
