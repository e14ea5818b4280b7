import uuid

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Text, Uuid

from atende.database import Base


class NotificationRecipient(Base):
    __tablename__ = "notification_recipients"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid, ForeignKey("tenants.id"), nullable=False)
    address = Column(Text, nullable=False)
    name = Column(Text)
    notify_bookings = Column(Boolean, nullable=False, default=True)
    notify_handoffs = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True))
