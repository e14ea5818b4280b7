"""Side-channel alerts to the tenant's registered recipients."""

from datetime import date, datetime, time
from typing import Optional
from uuid import UUID

from sqlalchemy.orm import Session

from atende.logging_config import get_logger
from atende.models import NotificationRecipient
from atende.services.gateway_service import WhatsAppGateway, get_instance_name
from atende.services.slot_engine import format_date_pt
from atende.services.timeutils import utcnow

logger = get_logger("notification_service")

KIND_NEW_BOOKING = "new_booking"
KIND_HANDOFF = "handoff"


def format_new_booking_message(
    contact_name: Optional[str],
    address: str,
    title: str,
    appointment_date: date,
    appointment_time: time,
) -> str:
    return (
        "📅 *Novo Agendamento*\n\n"
        f"👤 *Cliente:* {contact_name or 'Desconhecido'}\n"
        f"📱 *Telefone:* {address}\n"
        f"📋 *Serviço:* {title}\n"
        f"🗓️ *Data:* {format_date_pt(appointment_date)}\n"
        f"⏰ *Horário:* {appointment_time.strftime('%H:%M')}"
    )


def format_handoff_message(contact_name: Optional[str], address: str, at: datetime) -> str:
    return (
        "🔔 *Transferência de Atendimento*\n\n"
        "Um cliente precisa de atendimento humano.\n\n"
        f"👤 *Nome:* {contact_name or 'Desconhecido'}\n"
        f"📱 *Telefone:* {address}\n"
        f"⏰ *Horário:* {at.strftime('%H:%M')}"
    )


FORMATTERS = {
    KIND_NEW_BOOKING: format_new_booking_message,
    KIND_HANDOFF: format_handoff_message,
}


class NotificationService:
    def __init__(self, db: Session, gateway: WhatsAppGateway):
        self.db = db
        self.gateway = gateway

    def _recipients(self, tenant_id: UUID, kind: str) -> list[NotificationRecipient]:
        query = self.db.query(NotificationRecipient).filter(NotificationRecipient.tenant_id == tenant_id)
        if kind == KIND_NEW_BOOKING:
            query = query.filter(NotificationRecipient.notify_bookings.is_(True))
        else:
            query = query.filter(NotificationRecipient.notify_handoffs.is_(True))
        return query.all()

    def notify(self, tenant_id: UUID, kind: str, **details) -> int:
        """Format the `kind` message and send it to every subscribed recipient.

        Returns the number of recipients the gateway accepted. Delivery
        failures are logged by the gateway and never raised.
        """
        formatter = FORMATTERS.get(kind)
        if formatter is None:
            raise ValueError(f"Unknown notification kind: {kind}")

        recipients = self._recipients(tenant_id, kind)
        if not recipients:
            return 0

        text = formatter(**details)
        instance_name = get_instance_name(self.db, tenant_id)
        delivered = 0
        for recipient in recipients:
            if self.gateway.send_text(instance_name, recipient.address, text):
                delivered += 1

        logger.info(
            "Notification fan-out",
            extra={"context": {"tenant_id": str(tenant_id), "kind": kind, "recipients": len(recipients), "delivered": delivered}},
        )
        return delivered

    def notify_new_booking(self, tenant_id: UUID, appointment) -> int:
        return self.notify(
            tenant_id,
            KIND_NEW_BOOKING,
            contact_name=appointment.contact_name,
            address=appointment.counterpart,
            title=appointment.title,
            appointment_date=appointment.appointment_date,
            appointment_time=appointment.appointment_time,
        )

    def notify_handoff(self, tenant_id: UUID, contact_name: Optional[str], address: str, at: Optional[datetime] = None) -> int:
        return self.notify(tenant_id, KIND_HANDOFF, contact_name=contact_name, address=address, at=at or utcnow())
