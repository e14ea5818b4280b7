import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Integer, Text, UniqueConstraint, Uuid

from atende.database import Base


class AutomationSession(Base):
    __tablename__ = "automation_sessions"
    __table_args__ = (UniqueConstraint("tenant_id", "counterpart", name="uq_automation_sessions_key"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid, ForeignKey("tenants.id"), nullable=False)
    counterpart = Column(Text, nullable=False)
    status = Column(Text, nullable=False, default="inactive")  # inactive, active, handed_off
    replies_since_human = Column(Integer, nullable=False, default=0)
    last_human_reply_at = Column(DateTime(timezone=True))
    handed_off_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True))
    updated_at = Column(DateTime(timezone=True))
