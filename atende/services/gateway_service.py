"""Messaging gateway client (Evolution API)."""

from typing import Optional
from uuid import UUID

import httpx
from sqlalchemy.orm import Session

from atende.config import settings
from atende.logging_config import get_logger
from atende.models import Tenant
from atende.services.alert_service import alert_critical

logger = get_logger("gateway_service")


class WhatsAppGateway:
    """Sends text through the tenant's gateway instance.

    Failures are logged, alerted and reported as ``False``; they never raise.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
    ):
        self.base_url = (base_url or settings.evolution_api_url or "").rstrip("/")
        self.api_key = api_key or settings.evolution_api_key
        self.timeout_seconds = timeout_seconds or settings.gateway_timeout_seconds

    def send_text(self, instance_name: Optional[str], address: str, text: str) -> bool:
        if not self.base_url or not self.api_key:
            logger.error("Gateway is not configured (EVOLUTION_API_URL / EVOLUTION_API_KEY)")
            alert_critical(
                "WhatsApp send failed", {"instance": instance_name, "error": "gateway_not_configured"}, counterpart=address
            )
            return False

        if not instance_name or not text:
            logger.warning(f"send_text: missing instance_name={instance_name} or text")
            return False

        try:
            with httpx.Client(timeout=self.timeout_seconds) as client:
                response = client.post(
                    f"{self.base_url}/message/sendText/{instance_name}",
                    headers={"apikey": self.api_key, "Content-Type": "application/json"},
                    json={"number": address, "text": text},
                )
        except httpx.HTTPError as e:
            logger.error(f"Error sending WhatsApp message: {e}")
            alert_critical("WhatsApp send failed", {"instance": instance_name, "error": str(e)}, counterpart=address)
            return False

        if response.status_code >= 300:
            logger.error(
                "Gateway rejected message",
                extra={"context": {"address": address, "status": response.status_code, "body": response.text[:200]}},
            )
            return False

        logger.info(f"Delivered via gateway: address={address}, instance={instance_name}")
        return True


def get_instance_name(db: Session, tenant_id: UUID) -> Optional[str]:
    """Gateway instance bound to the tenant."""
    tenant = db.query(Tenant).filter(Tenant.id == tenant_id).first()
    return tenant.instance_name if tenant else None


_gateway: Optional[WhatsAppGateway] = None


def get_gateway() -> WhatsAppGateway:
    global _gateway
    if _gateway is None:
        _gateway = WhatsAppGateway()
    return _gateway
