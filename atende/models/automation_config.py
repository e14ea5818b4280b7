import uuid

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, Text, Uuid
from sqlalchemy.orm import relationship

from atende.database import Base
from atende.models.types import JSONType


class AutomationConfig(Base):
    __tablename__ = "automation_configs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid, ForeignKey("tenants.id"), nullable=False, unique=True)
    enabled = Column(Boolean, nullable=False, default=False)
    agent_name = Column(Text)
    custom_prompt = Column(Text)

    business_hours_start = Column(Text, default="08:00")
    business_hours_end = Column(Text, default="18:00")
    business_days = Column(JSONType, nullable=False, default=lambda: [1, 2, 3, 4, 5])  # 0 = Sunday
    timezone = Column(Text, nullable=False, default="America/Sao_Paulo")
    out_of_hours_message = Column(Text)

    max_messages_without_human = Column(Integer, default=10)
    handoff_message = Column(Text)

    keyword_activation_enabled = Column(Boolean, nullable=False, default=False)
    trigger_keywords = Column(JSONType, nullable=False, default=list)
    response_delay_seconds = Column(Integer)

    reminder_enabled = Column(Boolean, nullable=False, default=False)
    reminder_hours_before = Column(Integer, default=2)
    reminder_message_template = Column(Text)

    created_at = Column(DateTime(timezone=True))
    updated_at = Column(DateTime(timezone=True))

    tenant = relationship("Tenant", back_populates="automation_config")
