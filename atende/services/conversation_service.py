from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from atende.models import AutomationConfig, AutomationSession, Conversation, Message
from atende.services.state_machine import AutomationStatus
from atende.services.timeutils import utcnow

AUTHOR_CUSTOMER = "customer"
AUTHOR_OPERATOR = "operator"
AUTHOR_AUTOMATION = "automation"


def get_automation_config(db: Session, tenant_id: UUID) -> Optional[AutomationConfig]:
    return db.query(AutomationConfig).filter(AutomationConfig.tenant_id == tenant_id).first()


def get_conversation(db: Session, tenant_id: UUID, counterpart: str) -> Optional[Conversation]:
    return (
        db.query(Conversation)
        .filter(Conversation.tenant_id == tenant_id, Conversation.counterpart == counterpart)
        .first()
    )


def get_or_create_conversation(
    db: Session,
    tenant_id: UUID,
    counterpart: str,
    contact_name: Optional[str] = None,
) -> Conversation:
    """Find the conversation for (tenant, counterpart) or create it."""
    conversation = get_conversation(db, tenant_id, counterpart)

    if not conversation:
        now = utcnow()
        conversation = Conversation(
            tenant_id=tenant_id,
            counterpart=counterpart,
            contact_name=contact_name,
            automation_enabled=True,
            created_at=now,
            updated_at=now,
        )
        db.add(conversation)
        db.flush()
    elif contact_name:
        conversation.contact_name = contact_name

    return conversation


def get_session(db: Session, tenant_id: UUID, counterpart: str) -> Optional[AutomationSession]:
    return (
        db.query(AutomationSession)
        .filter(AutomationSession.tenant_id == tenant_id, AutomationSession.counterpart == counterpart)
        .first()
    )


def get_or_create_session(db: Session, tenant_id: UUID, counterpart: str) -> AutomationSession:
    """Find the automation session for (tenant, counterpart) or create an inactive one."""
    session = get_session(db, tenant_id, counterpart)

    if not session:
        now = utcnow()
        session = AutomationSession(
            tenant_id=tenant_id,
            counterpart=counterpart,
            status=AutomationStatus.INACTIVE.value,
            replies_since_human=0,
            created_at=now,
            updated_at=now,
        )
        db.add(session)
        db.flush()

    return session


def append_message(
    db: Session,
    conversation: Conversation,
    *,
    direction: str,
    author: str,
    content: str,
    media_kind: str = "text",
    external_id: Optional[str] = None,
    created_at: Optional[datetime] = None,
) -> Message:
    """Append to the conversation log. Messages are never edited or removed."""
    # Row lock on the conversation serializes concurrent appends (no-op on SQLite).
    db.query(Conversation.id).filter(Conversation.id == conversation.id).with_for_update().scalar()
    last_seq = db.query(func.max(Message.seq)).filter(Message.conversation_id == conversation.id).scalar()
    now = created_at or utcnow()

    message = Message(
        conversation_id=conversation.id,
        tenant_id=conversation.tenant_id,
        external_id=external_id,
        seq=(last_seq or 0) + 1,
        direction=direction,
        author=author,
        content=content,
        media_kind=media_kind,
        created_at=now,
    )
    db.add(message)

    conversation.last_message_at = now
    conversation.updated_at = now
    db.flush()
    return message


def has_external_id(db: Session, conversation: Conversation, external_id: Optional[str]) -> bool:
    if not external_id:
        return False
    return (
        db.query(Message.id)
        .filter(Message.conversation_id == conversation.id, Message.external_id == external_id)
        .first()
        is not None
    )


def get_recent_messages(db: Session, conversation: Conversation, limit: int = 10) -> list[Message]:
    """Last `limit` messages in log order."""
    rows = (
        db.query(Message)
        .filter(Message.conversation_id == conversation.id)
        .order_by(Message.seq.desc())
        .limit(limit)
        .all()
    )
    return list(reversed(rows))


def aggregate_recent_inbound(db: Session, conversation: Conversation, limit: int = 5) -> str:
    """Join the last customer messages into one text for the burst."""
    rows = (
        db.query(Message)
        .filter(Message.conversation_id == conversation.id, Message.author == AUTHOR_CUSTOMER)
        .order_by(Message.seq.desc())
        .limit(limit)
        .all()
    )
    return "\n".join(row.content for row in reversed(rows) if row.content)
