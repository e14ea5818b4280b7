import uuid

from sqlalchemy import Column, DateTime, Text, Uuid
from sqlalchemy.orm import relationship

from atende.database import Base


class Tenant(Base):
    __tablename__ = "tenants"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(Text, nullable=False)
    instance_name = Column(Text, unique=True)
    connection_status = Column(Text, nullable=False, default="disconnected")  # disconnected, qr_ready, connected
    phone_number = Column(Text)
    profile_name = Column(Text)
    qr_code = Column(Text)
    created_at = Column(DateTime(timezone=True))
    updated_at = Column(DateTime(timezone=True))

    automation_config = relationship("AutomationConfig", back_populates="tenant", uselist=False)
