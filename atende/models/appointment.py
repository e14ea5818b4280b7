import uuid

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Text,
    Time,
    UniqueConstraint,
    Uuid,
)

from atende.database import Base
from atende.models.types import JSONType


class AppointmentSlotRule(Base):
    __tablename__ = "appointment_slot_rules"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid, ForeignKey("tenants.id"), nullable=False)
    day_of_week = Column(Integer, nullable=False)  # 0 = Sunday
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    slot_duration_minutes = Column(Integer, default=30)
    max_appointments_per_slot = Column(Integer, default=1)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True))
    updated_at = Column(DateTime(timezone=True))


class Appointment(Base):
    __tablename__ = "appointments"
    # One seat per ordinal: the last free seat can only be taken once.
    __table_args__ = (
        UniqueConstraint(
            "tenant_id",
            "appointment_date",
            "appointment_time",
            "slot_ordinal",
            name="uq_appointments_slot_seat",
        ),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid, ForeignKey("tenants.id"), nullable=False)
    counterpart = Column(Text, nullable=False)
    contact_name = Column(Text)
    title = Column(Text, nullable=False)
    description = Column(Text)
    appointment_date = Column(Date, nullable=False)
    appointment_time = Column(Time, nullable=False)
    duration_minutes = Column(Integer, nullable=False, default=30)
    status = Column(Text, nullable=False, default="scheduled")  # scheduled, confirmed, completed, cancelled
    tags = Column(JSONType, nullable=False, default=list)
    reminder_sent = Column(Boolean, nullable=False, default=False)
    confirmed_by_customer = Column(Boolean, nullable=False, default=False)
    slot_ordinal = Column(Integer)  # NULL once cancelled
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True))
