"""Endpoints used by human operators (dashboard)."""

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from atende.database import get_db
from atende.logging_config import get_logger
from atende.models import Tenant
from atende.schemas.operator import OperatorSendRequest, OperatorSendResponse, ReactivateRequest, ReactivateResponse
from atende.services.automation_gate import force_human_takeover, reactivate_automation
from atende.services.conversation_service import AUTHOR_OPERATOR, append_message, get_or_create_conversation, get_session
from atende.services.gateway_service import get_gateway
from atende.services.state_machine import InvalidTransitionError

logger = get_logger("operator")

router = APIRouter(prefix="/operator", tags=["operator"])


def _get_tenant(db: Session, tenant_id) -> Tenant:
    tenant = db.query(Tenant).filter(Tenant.id == tenant_id).first()
    if not tenant:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Tenant not found")
    return tenant


@router.post("/send", response_model=OperatorSendResponse)
def operator_send(request: OperatorSendRequest, db: Session = Depends(get_db)):
    """Send a human message. Automation for the conversation is switched off."""
    tenant = _get_tenant(db, request.tenant_id)

    if not get_gateway().send_text(tenant.instance_name, request.counterpart, request.text):
        return OperatorSendResponse(success=False, message="Message not sent")

    conversation = get_or_create_conversation(db, tenant.id, request.counterpart)
    message = append_message(db, conversation, direction="outbound", author=AUTHOR_OPERATOR, content=request.text)
    force_human_takeover(db, tenant.id, request.counterpart)
    db.commit()

    logger.info(f"Operator message sent: tenant={tenant.id}, counterpart={request.counterpart}")
    return OperatorSendResponse(success=True, message="Message sent", message_id=message.id)


@router.post("/reactivate", response_model=ReactivateResponse)
def operator_reactivate(request: ReactivateRequest, db: Session = Depends(get_db)):
    """Hand the conversation back to automation."""
    tenant = _get_tenant(db, request.tenant_id)

    try:
        reactivate_automation(db, tenant.id, request.counterpart)
    except InvalidTransitionError as e:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    db.commit()

    session = get_session(db, tenant.id, request.counterpart)
    return ReactivateResponse(success=True, status=session.status)
