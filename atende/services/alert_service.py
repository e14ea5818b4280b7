"""Operational alerts sent to the on-call Telegram chat.

Alerts carry the same tenant/counterpart context as the JSON logs so an
on-call message can be matched to its log lines.
"""

from typing import Any, Optional
from uuid import UUID

import httpx

from atende.config import settings
from atende.logging_config import get_logger

logger = get_logger("alert_service")

TELEGRAM_API_URL = "https://api.telegram.org"
LEVEL_EMOJI = {"INFO": "ℹ️", "WARNING": "⚠️", "ERROR": "❌", "CRITICAL": "🔥"}


def build_context(
    context: Optional[dict] = None,
    tenant_id: Optional[UUID] = None,
    counterpart: Optional[str] = None,
    **extra: Any,
) -> dict:
    """Merge conversation identifiers into an alert context, identifiers first."""
    merged: dict = {}
    if tenant_id is not None:
        merged["tenant_id"] = str(tenant_id)
    if counterpart:
        merged["counterpart"] = counterpart
    merged.update(context or {})
    merged.update({k: v for k, v in extra.items() if v is not None})
    return merged


def format_alert(level: str, message: str, context: Optional[dict] = None) -> str:
    text = f"{LEVEL_EMOJI.get(level, '📢')} *{level}*\n\n{message}"
    if context:
        context_str = "\n".join(f"  {k}: {v}" for k, v in context.items())
        text += f"\n\n```\n{context_str}\n```"
    return text


def send_alert(level: str, message: str, context: Optional[dict] = None) -> bool:
    """Send alert to Telegram. Returns True if it was delivered."""
    if not settings.alert_bot_token or not settings.alert_chat_id:
        logger.warning(f"Alert not configured: {level} - {message}", extra={"context": context or {}})
        return False

    try:
        with httpx.Client(timeout=10) as client:
            response = client.post(
                f"{TELEGRAM_API_URL}/bot{settings.alert_bot_token}/sendMessage",
                json={
                    "chat_id": settings.alert_chat_id,
                    "text": format_alert(level, message, context),
                    "parse_mode": "Markdown",
                },
            )
    except httpx.HTTPError as e:
        logger.error(f"Failed to send alert: {e}", extra={"context": context or {}})
        return False

    if response.status_code != 200:
        logger.error(f"Alert rejected by Telegram: {response.status_code}", extra={"context": context or {}})
        return False
    return True


def alert_error(
    message: str, context: Optional[dict] = None, *, tenant_id: Optional[UUID] = None, counterpart: Optional[str] = None
) -> bool:
    return send_alert("ERROR", message, build_context(context, tenant_id, counterpart))


def alert_critical(
    message: str, context: Optional[dict] = None, *, tenant_id: Optional[UUID] = None, counterpart: Optional[str] = None
) -> bool:
    return send_alert("CRITICAL", message, build_context(context, tenant_id, counterpart))


def alert_warning(
    message: str, context: Optional[dict] = None, *, tenant_id: Optional[UUID] = None, counterpart: Optional[str] = None
) -> bool:
    return send_alert("WARNING", message, build_context(context, tenant_id, counterpart))
