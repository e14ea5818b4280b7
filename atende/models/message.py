import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Integer, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship

from atende.database import Base


class Message(Base):
    __tablename__ = "messages"
    __table_args__ = (UniqueConstraint("conversation_id", "seq", name="uq_messages_conversation_seq"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    conversation_id = Column(Uuid, ForeignKey("conversations.id"), nullable=False)
    tenant_id = Column(Uuid, nullable=False)
    external_id = Column(Text)
    seq = Column(Integer, nullable=False, default=0)  # position in the conversation log
    direction = Column(Text, nullable=False)  # inbound, outbound
    author = Column(Text, nullable=False)  # customer, operator, automation
    content = Column(Text, nullable=False)
    media_kind = Column(Text, nullable=False, default="text")  # text, audio, image, document, sticker
    created_at = Column(DateTime(timezone=True), nullable=False)

    conversation = relationship("Conversation", back_populates="messages")
