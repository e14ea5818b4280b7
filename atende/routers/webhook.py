import asyncio

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from atende.database import get_db
from atende.logging_config import get_logger
from atende.schemas.webhook import GatewayEvent, WebhookResponse
from atende.services.debounce_service import get_scheduler
from atende.services.intake_service import IntakeAction, IntakeService

logger = get_logger("webhook")

router = APIRouter()


@router.post("/webhook/whatsapp", response_model=WebhookResponse)
async def handle_gateway_event(payload: GatewayEvent, db: Session = Depends(get_db)):
    """Gateway push callback: messages, connection changes and QR codes."""
    if not payload.instance:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No instance name")

    logger.info(f"Gateway event received: event={payload.event}, instance={payload.instance}")

    # Store writes and media extraction block, so they run off the event loop.
    results = await asyncio.to_thread(IntakeService(db).handle_event, payload)

    scheduler = get_scheduler()
    for result in results:
        if result.action == IntakeAction.SCHEDULED:
            scheduler.arm(result.tenant_id, result.counterpart, result.delay_seconds)
        elif result.action == IntakeAction.IMMEDIATE:
            await scheduler.run_now(result.tenant_id, result.counterpart)
        elif result.action == IntakeAction.OUT_OF_HOURS and result.outbound_text and result.instance_name:
            scheduler.pacer.schedule(result.instance_name, result.counterpart, result.outbound_text)

    return WebhookResponse(ok=True, processed=len(results))
