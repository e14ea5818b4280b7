import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Integer, Text, Uuid
from sqlalchemy.sql import func

from atende.database import Base


class KnowledgeDocument(Base):
    """Tenant reference text used when answering. Ingestion happens elsewhere."""

    __tablename__ = "knowledge_documents"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid, ForeignKey("tenants.id"), nullable=False)
    file_name = Column(Text, nullable=False)
    file_size = Column(Integer)
    content_text = Column(Text)
    status = Column(Text, nullable=False, default="processing")  # processing, ready, error
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
