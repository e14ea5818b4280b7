"""Appointment availability and booking.

Capacity is enforced by seat ordinals: every non-cancelled appointment holds a
``slot_ordinal`` in ``[0, capacity)`` and the unique constraint on
(tenant, date, time, slot_ordinal) means two writers can never take the same
seat. Losing that race surfaces as an ``IntegrityError`` inside a savepoint,
after which the next free seat is tried.
"""

from datetime import date, datetime, time, timedelta
from typing import Optional
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from atende.logging_config import get_logger
from atende.models import Appointment, AppointmentSlotRule
from atende.services.result import Result
from atende.services.timeutils import utcnow

logger = get_logger("slot_engine")

STATUS_SCHEDULED = "scheduled"
STATUS_CONFIRMED = "confirmed"
STATUS_COMPLETED = "completed"
STATUS_CANCELLED = "cancelled"
VALID_STATUSES = {STATUS_SCHEDULED, STATUS_CONFIRMED, STATUS_COMPLETED, STATUS_CANCELLED}

CONFIRMED_TAG = "confirmado"
DEFAULT_SLOT_MINUTES = 30
DEFAULT_CAPACITY = 1
LIST_LIMIT = 10

WEEKDAYS_PT = ["segunda-feira", "terça-feira", "quarta-feira", "quinta-feira", "sexta-feira", "sábado", "domingo"]
MONTHS_PT = [
    "janeiro", "fevereiro", "março", "abril", "maio", "junho",
    "julho", "agosto", "setembro", "outubro", "novembro", "dezembro",
]


def weekday_number(value: date) -> int:
    """0 = Sunday ... 6 = Saturday, the numbering stored in slot rules."""
    return (value.weekday() + 1) % 7


def format_date_pt(value: date) -> str:
    """``segunda-feira, 03 de março``"""
    return f"{WEEKDAYS_PT[value.weekday()]}, {value.day:02d} de {MONTHS_PT[value.month - 1]}"


def format_time(value: time) -> str:
    return value.strftime("%H:%M")


def format_slot(start: time, capacity: int, taken: int) -> str:
    if capacity <= 1:
        return format_time(start)
    remaining = capacity - taken
    return f"{format_time(start)} ({remaining} vaga{'s' if remaining > 1 else ''})"


def generate_slot_times(rule: AppointmentSlotRule) -> list[time]:
    """Candidate start times: every `slot_duration` minutes while the slot fits in the window."""
    step = timedelta(minutes=rule.slot_duration_minutes or DEFAULT_SLOT_MINUTES)
    anchor = date(2000, 1, 1)
    current = datetime.combine(anchor, rule.start_time)
    end = datetime.combine(anchor, rule.end_time)

    times = []
    while current + step <= end:
        times.append(current.time())
        current += step
    return times


def serialize_appointment(appointment: Appointment) -> dict:
    return {
        "id": str(appointment.id),
        "date": appointment.appointment_date.isoformat(),
        "time": format_time(appointment.appointment_time),
        "title": appointment.title,
        "status": appointment.status,
        "tags": list(appointment.tags or []),
        "confirmed_by_customer": bool(appointment.confirmed_by_customer),
    }


class AppointmentService:
    """Slot engine bound to one tenant and one database session.

    Mutations are flushed, never committed; the caller owns the transaction.
    Appointments created here are collected in `created` so the caller can
    notify recipients once the transaction is committed.
    """

    def __init__(self, db: Session, tenant_id: UUID):
        self.db = db
        self.tenant_id = tenant_id
        self.created: list[Appointment] = []

    def _rules_for(self, target: date) -> list[AppointmentSlotRule]:
        return (
            self.db.query(AppointmentSlotRule)
            .filter(
                AppointmentSlotRule.tenant_id == self.tenant_id,
                AppointmentSlotRule.day_of_week == weekday_number(target),
                AppointmentSlotRule.is_active.is_(True),
            )
            .order_by(AppointmentSlotRule.start_time)
            .all()
        )

    def _active_at(self, target: date, at: Optional[time] = None):
        query = self.db.query(Appointment).filter(
            Appointment.tenant_id == self.tenant_id,
            Appointment.appointment_date == target,
            Appointment.status != STATUS_CANCELLED,
        )
        if at is not None:
            query = query.filter(Appointment.appointment_time == at)
        return query

    def capacity_for(self, target: date) -> int:
        """Seats per slot for the weekday of `target`.

        Uses the first active rule of the weekday (by start time), not the rule
        whose window contains the requested time.
        """
        rules = self._rules_for(target)
        if not rules:
            return DEFAULT_CAPACITY

        capacity = rules[0].max_appointments_per_slot or DEFAULT_CAPACITY
        others = {rule.max_appointments_per_slot or DEFAULT_CAPACITY for rule in rules[1:]}
        if others - {capacity}:
            logger.warning(
                "Slot rules for the same weekday disagree on capacity; using the first rule",
                extra={
                    "context": {
                        "tenant_id": str(self.tenant_id),
                        "weekday": weekday_number(target),
                        "capacity": capacity,
                        "other_capacities": sorted(others),
                    }
                },
            )
        return capacity

    def check_availability(self, target: date) -> Result[dict]:
        rules = self._rules_for(target)
        if not rules:
            return Result.success(
                {"date": target.isoformat(), "available_slots": []},
                message="Nenhum horário disponível neste dia.",
            )

        taken_by_time: dict[time, int] = {}
        for appointment in self._active_at(target).all():
            taken_by_time[appointment.appointment_time] = taken_by_time.get(appointment.appointment_time, 0) + 1

        available = []
        for rule in rules:
            capacity = rule.max_appointments_per_slot or DEFAULT_CAPACITY
            for start in generate_slot_times(rule):
                taken = taken_by_time.get(start, 0)
                if taken < capacity:
                    available.append(format_slot(start, capacity, taken))

        if not available:
            message = "Todos os horários estão ocupados neste dia."
        else:
            message = f"Horários disponíveis para {format_date_pt(target)}: {', '.join(available)}"
        return Result.success({"date": target.isoformat(), "available_slots": available}, message=message)

    def create_appointment(
        self,
        counterpart: str,
        appointment_date: date,
        appointment_time: time,
        title: str,
        description: Optional[str] = None,
        contact_name: Optional[str] = None,
        duration_minutes: int = DEFAULT_SLOT_MINUTES,
    ) -> Result[dict]:
        if not counterpart or not title:
            return Result.failure("Missing required fields", "invalid_arguments",
                                  message="Dados insuficientes para criar o agendamento.")

        capacity = self.capacity_for(appointment_date)
        full_message = (
            f"Todas as {capacity} vagas para este horário já estão ocupadas. Por favor, escolha outro horário."
            if capacity > 1
            else "Este horário já está ocupado. Por favor, escolha outro horário."
        )

        for _ in range(capacity):
            existing = self._active_at(appointment_date, appointment_time).all()
            if len(existing) >= capacity:
                break

            taken = {row.slot_ordinal for row in existing}
            ordinal = min(set(range(capacity)) - taken)
            now = utcnow()
            appointment = Appointment(
                tenant_id=self.tenant_id,
                counterpart=counterpart,
                contact_name=contact_name,
                title=title,
                description=description,
                appointment_date=appointment_date,
                appointment_time=appointment_time,
                duration_minutes=duration_minutes,
                status=STATUS_SCHEDULED,
                tags=[],
                slot_ordinal=ordinal,
                created_at=now,
                updated_at=now,
            )
            try:
                with self.db.begin_nested():
                    self.db.add(appointment)
                    self.db.flush()
            except IntegrityError:
                logger.info(
                    "Lost race for appointment seat, retrying",
                    extra={"context": {"date": appointment_date.isoformat(), "time": format_time(appointment_time), "ordinal": ordinal}},
                )
                continue

            self.created.append(appointment)
            logger.info(
                "Appointment created",
                extra={"context": {"tenant_id": str(self.tenant_id), "appointment_id": str(appointment.id), "ordinal": ordinal}},
            )
            return Result.success(
                {"appointment": serialize_appointment(appointment)},
                message=(
                    f"Agendamento confirmado! {title} marcado para "
                    f"{format_date_pt(appointment_date)} às {format_time(appointment_time)}."
                ),
            )

        return Result.failure("Slot capacity exceeded", "capacity_exceeded", message=full_message)

    def cancel_appointment(
        self,
        appointment_id: Optional[UUID] = None,
        counterpart: Optional[str] = None,
        appointment_date: Optional[date] = None,
        appointment_time: Optional[time] = None,
    ) -> Result[dict]:
        if not appointment_id and not (counterpart and appointment_date and appointment_time):
            return Result.failure("Missing appointment identifier", "invalid_arguments",
                                  message="Informe a data e o horário do agendamento a cancelar.")

        query = self.db.query(Appointment).filter(
            Appointment.tenant_id == self.tenant_id,
            Appointment.status != STATUS_CANCELLED,
        )
        if appointment_id:
            query = query.filter(Appointment.id == appointment_id)
        else:
            query = query.filter(
                Appointment.counterpart == counterpart,
                Appointment.appointment_date == appointment_date,
                Appointment.appointment_time == appointment_time,
            )

        rows = query.all()
        if not rows:
            return Result.failure("Appointment not found", "not_found",
                                  message="Agendamento não encontrado ou já foi cancelado.")

        now = utcnow()
        for row in rows:
            self._cancel(row, now)
        self.db.flush()
        return Result.success({"cancelled": len(rows)}, message="Agendamento cancelado com sucesso.")

    def _cancel(self, appointment: Appointment, now: datetime) -> None:
        appointment.status = STATUS_CANCELLED
        appointment.slot_ordinal = None  # frees the seat
        appointment.updated_at = now

    def update_status(self, appointment_id: UUID, status: str) -> Result[dict]:
        if status not in VALID_STATUSES:
            return Result.failure(f"Invalid status: {status}", "invalid_status")

        appointment = (
            self.db.query(Appointment)
            .filter(Appointment.tenant_id == self.tenant_id, Appointment.id == appointment_id)
            .first()
        )
        if not appointment:
            return Result.failure("Appointment not found", "not_found", message="Agendamento não encontrado.")

        if appointment.status == STATUS_CANCELLED and status != STATUS_CANCELLED:
            # Its seat may already belong to someone else.
            return Result.failure("Cancelled appointments cannot be reopened", "invalid_state")

        now = utcnow()
        if status == STATUS_CANCELLED:
            self._cancel(appointment, now)
        else:
            appointment.status = status
            appointment.updated_at = now
        self.db.flush()
        return Result.success({"appointment": serialize_appointment(appointment)},
                              message=f"Status atualizado para {status}.")

    def list_appointments(
        self,
        counterpart: Optional[str] = None,
        from_date: Optional[date] = None,
        limit: int = LIST_LIMIT,
    ) -> Result[dict]:
        query = self.db.query(Appointment).filter(
            Appointment.tenant_id == self.tenant_id,
            Appointment.status != STATUS_CANCELLED,
        )
        if counterpart:
            query = query.filter(Appointment.counterpart == counterpart)
        if from_date:
            query = query.filter(Appointment.appointment_date >= from_date)

        rows = query.order_by(Appointment.appointment_date, Appointment.appointment_time).limit(limit).all()
        message = f"Encontrados {len(rows)} agendamentos." if rows else "Nenhum agendamento encontrado."
        return Result.success({"appointments": [serialize_appointment(row) for row in rows]}, message=message)

    def confirm_appointment(
        self,
        counterpart: Optional[str] = None,
        appointment_id: Optional[UUID] = None,
    ) -> Result[dict]:
        """Confirm the counterpart's next scheduled appointment (or the given one)."""
        query = self.db.query(Appointment).filter(
            Appointment.tenant_id == self.tenant_id,
            Appointment.status == STATUS_SCHEDULED,
        )
        if counterpart:
            query = query.filter(Appointment.counterpart == counterpart)
        if appointment_id:
            query = query.filter(Appointment.id == appointment_id)

        appointment = query.order_by(Appointment.appointment_date, Appointment.appointment_time).first()
        if not appointment:
            return Result.failure("No scheduled appointment", "not_found",
                                  message="Nenhum agendamento pendente encontrado para confirmar.")

        tags = list(appointment.tags or [])
        if CONFIRMED_TAG not in tags:
            tags.append(CONFIRMED_TAG)

        appointment.status = STATUS_CONFIRMED
        appointment.confirmed_by_customer = True
        appointment.tags = tags
        appointment.updated_at = utcnow()
        self.db.flush()

        return Result.success(
            {"appointment": serialize_appointment(appointment)},
            message=(
                f"Presença confirmada para {appointment.title} em "
                f"{format_date_pt(appointment.appointment_date)} às {format_time(appointment.appointment_time)}."
            ),
        )

    def update_appointment_tags(
        self,
        appointment_id: UUID,
        tags: list[str],
        action: str = "add",
        counterpart: Optional[str] = None,
    ) -> Result[dict]:
        if action not in ("add", "remove"):
            return Result.failure(f"Invalid tag action: {action}", "invalid_arguments")

        query = self.db.query(Appointment).filter(
            Appointment.tenant_id == self.tenant_id,
            Appointment.id == appointment_id,
        )
        if counterpart:
            query = query.filter(Appointment.counterpart == counterpart)
        appointment = query.first()
        if not appointment:
            return Result.failure("Appointment not found", "not_found", message="Agendamento não encontrado.")

        current = list(appointment.tags or [])
        if action == "remove":
            current = [tag for tag in current if tag not in tags]
        else:
            for tag in tags:
                if tag not in current:
                    current.append(tag)

        appointment.tags = current
        appointment.updated_at = utcnow()
        self.db.flush()
        return Result.success({"tags": current}, message=f"Tags atualizadas: {', '.join(current)}")
