"""Per-conversation debounce backed by the pending_triggers table.

The table is the source of truth: a timer armed in this process is only a
hint to look at the row. Whoever fires (the armed timer, the periodic sweeper
or another instance) must win the compare-and-set claim before doing any work,
so one burst reaches the gate at most once.
"""

import asyncio
import uuid
from datetime import datetime, timedelta
from typing import Callable, Optional
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from atende.config import settings
from atende.database import SessionLocal
from atende.logging_config import get_logger
from atende.models import PendingTrigger
from atende.services.alert_service import alert_error
from atende.services.automation_gate import AutomationGate, GateOutcome, build_gate
from atende.services.delivery_pacer import DeliveryPacer
from atende.services.gateway_service import get_gateway
from atende.services.timeutils import as_utc, utcnow

logger = get_logger("debounce_service")

_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def schedule_trigger(
    db: Session,
    tenant_id: UUID,
    counterpart: str,
    delay_seconds: float,
    now: Optional[datetime] = None,
) -> datetime:
    """Upsert the key's row to fire at now + delay. Returns the fire time.

    Runs in the caller's transaction; the caller commits.
    """
    now = now or utcnow()
    fire_at = now + timedelta(seconds=delay_seconds)

    dialect = db.get_bind().dialect.name
    insert = _INSERTS.get(dialect)
    if insert is None:
        raise RuntimeError(f"Unsupported database dialect for trigger upsert: {dialect}")

    stmt = (
        insert(PendingTrigger)
        .values(
            id=uuid.uuid4(),
            tenant_id=tenant_id,
            counterpart=counterpart,
            scheduled_at=fire_at,
            processed=False,
            created_at=now,
            updated_at=now,
        )
        .on_conflict_do_update(
            index_elements=["tenant_id", "counterpart"],
            set_={"scheduled_at": fire_at, "processed": False, "updated_at": now},
        )
    )
    db.execute(stmt)
    return fire_at


def claim_trigger(
    db: Session,
    tenant_id: UUID,
    counterpart: str,
    now: Optional[datetime] = None,
    tolerance: Optional[timedelta] = None,
) -> bool:
    """Atomically mark the key's row processed if it is due. Commits the claim.

    False when there is no row, it was already processed, it was re-armed
    for later, or another firing claimed it first.
    """
    now = now or utcnow()
    if tolerance is None:
        tolerance = timedelta(milliseconds=settings.debounce_tolerance_ms)

    row = (
        db.query(PendingTrigger)
        .filter(PendingTrigger.tenant_id == tenant_id, PendingTrigger.counterpart == counterpart)
        .first()
    )
    if row is None or row.processed:
        db.rollback()
        return False

    if as_utc(row.scheduled_at) > now + tolerance:
        db.rollback()
        logger.debug(f"Trigger re-armed for later: counterpart={counterpart}")
        return False

    result = db.execute(
        update(PendingTrigger)
        .where(
            PendingTrigger.id == row.id,
            PendingTrigger.processed.is_(False),
            PendingTrigger.scheduled_at == row.scheduled_at,
        )
        .values(processed=True, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    db.commit()

    claimed = result.rowcount == 1
    if not claimed:
        logger.info(f"Trigger claim lost: counterpart={counterpart}")
    return claimed


def due_trigger_keys(db: Session, now: Optional[datetime] = None, limit: int = 20) -> list[tuple[UUID, str]]:
    """Unprocessed keys whose fire time has passed, oldest first."""
    now = now or utcnow()
    rows = (
        db.query(PendingTrigger.tenant_id, PendingTrigger.counterpart)
        .filter(PendingTrigger.processed.is_(False), PendingTrigger.scheduled_at <= now)
        .order_by(PendingTrigger.scheduled_at)
        .limit(limit)
        .all()
    )
    return [(row.tenant_id, row.counterpart) for row in rows]


class DebounceScheduler:
    """Arms in-process timers and fires the gate through the claim protocol."""

    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        gate_factory: Callable[[Session], AutomationGate] = build_gate,
        pacer: Optional[DeliveryPacer] = None,
    ):
        self.session_factory = session_factory
        self.gate_factory = gate_factory
        self.pacer = pacer or DeliveryPacer(get_gateway())
        self._timers: dict[tuple[UUID, str], asyncio.TimerHandle] = {}

    async def on_inbound(self, tenant_id: UUID, counterpart: str, delay_seconds: float) -> Optional[GateOutcome]:
        """React to an inbound message whose trigger row (if any) is already committed."""
        if delay_seconds <= 0:
            return await self.run_now(tenant_id, counterpart)
        self.arm(tenant_id, counterpart, delay_seconds)
        return None

    def arm(self, tenant_id: UUID, counterpart: str, delay_seconds: float) -> None:
        key = (tenant_id, counterpart)
        previous = self._timers.pop(key, None)
        if previous is not None:
            previous.cancel()

        loop = asyncio.get_running_loop()
        self._timers[key] = loop.call_later(delay_seconds, self._spawn_fire, tenant_id, counterpart)

    def _spawn_fire(self, tenant_id: UUID, counterpart: str) -> None:
        self._timers.pop((tenant_id, counterpart), None)
        asyncio.get_running_loop().create_task(self.fire(tenant_id, counterpart))

    async def fire(self, tenant_id: UUID, counterpart: str) -> Optional[GateOutcome]:
        """Claim the key's trigger and, if won, run the gate and deliver its text."""
        try:
            outcome = await asyncio.to_thread(self._claim_and_evaluate, tenant_id, counterpart)
        except Exception as e:
            logger.error(
                "Trigger firing failed",
                extra={"context": {"tenant_id": str(tenant_id), "counterpart": counterpart, "error": str(e)}},
                exc_info=True,
            )
            alert_error("Trigger firing failed", {"error": str(e)}, tenant_id=tenant_id, counterpart=counterpart)
            return None

        self._deliver(outcome)
        return outcome

    async def run_now(self, tenant_id: UUID, counterpart: str) -> Optional[GateOutcome]:
        """Zero-delay path: no trigger row, no claim."""
        try:
            outcome = await asyncio.to_thread(self._evaluate, tenant_id, counterpart)
        except Exception as e:
            logger.error(
                "Immediate gate run failed",
                extra={"context": {"tenant_id": str(tenant_id), "counterpart": counterpart, "error": str(e)}},
                exc_info=True,
            )
            alert_error("Immediate gate run failed", {"error": str(e)}, tenant_id=tenant_id, counterpart=counterpart)
            return None

        self._deliver(outcome)
        return outcome

    async def sweep(self, now: Optional[datetime] = None, limit: Optional[int] = None) -> int:
        """Fire every due trigger. Returns how many firings ran the gate."""
        keys = await asyncio.to_thread(self._due_keys, now, limit or settings.sweeper_batch_limit)
        fired = 0
        for tenant_id, counterpart in keys:
            if await self.fire(tenant_id, counterpart) is not None:
                fired += 1
        return fired

    def _deliver(self, outcome: Optional[GateOutcome]) -> None:
        if outcome is not None and outcome.should_deliver:
            self.pacer.schedule(outcome.instance_name, outcome.counterpart, outcome.outbound_text)

    def _due_keys(self, now: Optional[datetime], limit: int) -> list[tuple[UUID, str]]:
        db = self.session_factory()
        try:
            return due_trigger_keys(db, now, limit)
        finally:
            db.close()

    def _claim_and_evaluate(self, tenant_id: UUID, counterpart: str) -> Optional[GateOutcome]:
        db = self.session_factory()
        try:
            if not claim_trigger(db, tenant_id, counterpart):
                return None
            return self.gate_factory(db).evaluate(tenant_id, counterpart)
        finally:
            db.close()

    def _evaluate(self, tenant_id: UUID, counterpart: str) -> GateOutcome:
        db = self.session_factory()
        try:
            return self.gate_factory(db).evaluate(tenant_id, counterpart)
        finally:
            db.close()


_scheduler: Optional[DebounceScheduler] = None


def get_scheduler() -> DebounceScheduler:
    global _scheduler
    if _scheduler is None:
        _scheduler = DebounceScheduler()
    return _scheduler
