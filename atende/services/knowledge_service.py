from typing import Optional
from uuid import UUID

from sqlalchemy.orm import Session

from atende.config import settings
from atende.logging_config import get_logger
from atende.models import KnowledgeDocument

logger = get_logger("knowledge_service")

DOCUMENT_SEPARATOR = "\n\n---\n\n"
STATUS_READY = "ready"


def load_knowledge_base(db: Session, tenant_id: UUID, max_chars: Optional[int] = None) -> str:
    """Text of the tenant's ready documents, joined and cut to `max_chars`."""
    limit = max_chars if max_chars is not None else settings.knowledge_max_chars
    documents = (
        db.query(KnowledgeDocument)
        .filter(KnowledgeDocument.tenant_id == tenant_id, KnowledgeDocument.status == STATUS_READY)
        .order_by(KnowledgeDocument.created_at)
        .all()
    )
    text = DOCUMENT_SEPARATOR.join(d.content_text for d in documents if d.content_text)
    if len(text) > limit:
        logger.info(
            "Knowledge base truncated",
            extra={"context": {"tenant_id": str(tenant_id), "chars": len(text), "limit": limit}},
        )
    return text[:limit]
