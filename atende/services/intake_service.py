"""Normalizes gateway push events and feeds the debounce scheduler."""

from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Any, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from atende.config import settings
from atende.logging_config import conversation_logger, get_logger
from atende.models import Message, Tenant
from atende.schemas.webhook import GatewayEvent
from atende.services.automation_gate import force_human_takeover, is_within_business_hours, out_of_hours_reply
from atende.services.conversation_service import (
    AUTHOR_AUTOMATION,
    AUTHOR_CUSTOMER,
    AUTHOR_OPERATOR,
    append_message,
    get_automation_config,
    get_or_create_conversation,
    get_or_create_session,
    has_external_id,
)
from atende.services.debounce_service import schedule_trigger
from atende.services.delivery_pacer import split_message
from atende.services.media_service import MediaExtractor
from atende.services.timeutils import as_utc, utcnow

logger = get_logger("intake_service")

USER_JID_SUFFIX = "@s.whatsapp.net"
GROUP_JID_SUFFIX = "@g.us"

AUDIO_FALLBACK = "[Áudio não transcrito]"
TEXT_FALLBACK = "[Mídia]"

ECHO_WINDOW = timedelta(minutes=10)
ECHO_LOOKBACK_MESSAGES = 5

CONNECTION_EVENTS = {"connection.update", "CONNECTION_UPDATE"}
QRCODE_EVENTS = {"qrcode.updated", "QRCODE_UPDATED"}
MESSAGE_EVENTS = {"messages.upsert", "MESSAGES_UPSERT"}


class IntakeAction(str, Enum):
    IGNORED = "ignored"
    DUPLICATE = "duplicate"
    OPERATOR_LOGGED = "operator_logged"
    RECORDED = "recorded"
    OUT_OF_HOURS = "out_of_hours"
    SCHEDULED = "scheduled"
    IMMEDIATE = "immediate"


@dataclass
class InboundMessage:
    counterpart: str
    content: str
    media_kind: str
    from_me: bool
    contact_name: Optional[str] = None
    external_id: Optional[str] = None


@dataclass
class IntakeResult:
    action: IntakeAction
    tenant_id: UUID
    counterpart: str
    instance_name: Optional[str] = None
    delay_seconds: float = 0
    outbound_text: Optional[str] = None


def counterpart_from_jid(remote_jid: Optional[str]) -> Optional[str]:
    """Phone address for one-to-one chats; None for groups and missing JIDs."""
    if not remote_jid or GROUP_JID_SUFFIX in remote_jid:
        return None
    return remote_jid.replace(USER_JID_SUFFIX, "")


def format_media_text(label: str, caption: str, extracted: Optional[str]) -> str:
    """Combine caption and extracted text. `extracted` is None when extraction failed."""
    if extracted is None:
        return f"[{label}] {caption}" if caption else f"[{label} não processado]"
    if caption and extracted:
        return f"[{label}] {caption}\n\nConteúdo extraído:\n{extracted}"
    if extracted:
        return f"[{label}] Conteúdo extraído:\n{extracted}"
    if caption:
        return f"[{label}] {caption}"
    return f"[{label} sem texto identificável]"


def classify_message(raw: dict, instance_name: str, extractor: MediaExtractor) -> Optional[InboundMessage]:
    """Normalize one `messages.upsert` entry. None for entries that are skipped."""
    key = raw.get("key") or {}
    counterpart = counterpart_from_jid(key.get("remoteJid"))
    if not counterpart:
        return None

    body = raw.get("message") or {}
    media_ref = {"instance": instance_name, "message_key": key}

    if body.get("audioMessage"):
        media_kind = "audio"
        transcript = extractor.extract({**media_ref, "media_kind": "audio"})
        content = transcript or AUDIO_FALLBACK
    elif body.get("imageMessage") or body.get("stickerMessage") or body.get("documentMessage"):
        if body.get("stickerMessage"):
            media_kind = "sticker"
        elif body.get("imageMessage"):
            media_kind = "image"
        else:
            media_kind = "document"
        label = "Documento" if media_kind == "document" else "Imagem"
        caption = (
            (body.get("imageMessage") or {}).get("caption")
            or (body.get("documentMessage") or {}).get("caption")
            or ""
        ).strip()
        extracted = extractor.extract({**media_ref, "media_kind": media_kind})
        content = format_media_text(label, caption, extracted)
    else:
        media_kind = "text"
        content = body.get("conversation") or (body.get("extendedTextMessage") or {}).get("text") or TEXT_FALLBACK

    return InboundMessage(
        counterpart=counterpart,
        content=content,
        media_kind=media_kind,
        from_me=key.get("fromMe") is True,
        contact_name=raw.get("pushName") or None,
        external_id=key.get("id"),
    )


def _message_entries(data: Any) -> list[dict]:
    if isinstance(data, dict) and isinstance(data.get("messages"), list):
        return [m for m in data["messages"] if isinstance(m, dict)]
    if isinstance(data, dict):
        return [data]
    return []


class IntakeService:
    """Applies one gateway event to the store and says what should happen next.

    Each message is committed before the next one is handled. Timers are
    armed by the caller from the returned results, after the commit.
    """

    def __init__(self, db: Session, extractor: Optional[MediaExtractor] = None):
        self.db = db
        self.extractor = extractor or MediaExtractor()

    def find_tenant(self, instance_name: str) -> Optional[Tenant]:
        return self.db.query(Tenant).filter(Tenant.instance_name == instance_name).first()

    def handle_event(self, event: GatewayEvent) -> list[IntakeResult]:
        tenant = self.find_tenant(event.instance)
        if not tenant:
            logger.info(f"Instance not found: {event.instance}")
            return []

        data = event.data if isinstance(event.data, dict) else {}
        if event.event in QRCODE_EVENTS:
            self._update_qrcode(tenant, data)
            return []
        if event.event in CONNECTION_EVENTS:
            self._update_connection(tenant, data)
            return []
        if event.event in MESSAGE_EVENTS:
            results = []
            for raw in _message_entries(event.data):
                message = classify_message(raw, tenant.instance_name, self.extractor)
                if message is None:
                    continue
                results.append(self.handle_message(tenant, message))
            return results

        logger.debug(f"Ignoring gateway event: {event.event}")
        return []

    def _update_qrcode(self, tenant: Tenant, data: dict) -> None:
        qrcode = data.get("qrcode")
        tenant.qr_code = (qrcode.get("base64") if isinstance(qrcode, dict) else None) or data.get("base64")
        tenant.connection_status = "qr_ready"
        tenant.updated_at = utcnow()
        self.db.commit()
        logger.info(f"QR code updated for tenant {tenant.id}")

    def _update_connection(self, tenant: Tenant, data: dict) -> None:
        state = data.get("state") or data.get("status")
        if state in ("open", "connected"):
            tenant.connection_status = "connected"
            tenant.qr_code = None
            tenant.profile_name = data.get("pushName") or None
            wid = data.get("wid")
            tenant.phone_number = wid.split("@")[0] if wid and not data.get("pushName") else None
        elif state in ("close", "disconnected"):
            tenant.connection_status = "disconnected"
            tenant.qr_code = None
        else:
            return
        tenant.updated_at = utcnow()
        self.db.commit()
        logger.info(f"Connection {tenant.connection_status} for tenant {tenant.id}")

    def handle_message(self, tenant: Tenant, message: InboundMessage) -> IntakeResult:
        log = conversation_logger("intake_service", tenant.id, message.counterpart)
        result = IntakeResult(
            action=IntakeAction.RECORDED,
            tenant_id=tenant.id,
            counterpart=message.counterpart,
            instance_name=tenant.instance_name,
        )
        now = utcnow()

        conversation = get_or_create_conversation(
            self.db,
            tenant.id,
            message.counterpart,
            contact_name=None if message.from_me else message.contact_name,
        )
        if has_external_id(self.db, conversation, message.external_id):
            self.db.rollback()
            log.info("Duplicate delivery ignored", context={"external_id": message.external_id})
            result.action = IntakeAction.DUPLICATE
            return result

        if message.from_me:
            if self._is_own_echo(conversation.id, message.content, now):
                self.db.rollback()
                result.action = IntakeAction.IGNORED
                return result
            append_message(
                self.db,
                conversation,
                direction="outbound",
                author=AUTHOR_OPERATOR,
                content=message.content,
                media_kind=message.media_kind,
                external_id=message.external_id,
                created_at=now,
            )
            force_human_takeover(self.db, tenant.id, message.counterpart, now)
            self.db.commit()
            result.action = IntakeAction.OPERATOR_LOGGED
            return result

        append_message(
            self.db,
            conversation,
            direction="inbound",
            author=AUTHOR_CUSTOMER,
            content=message.content,
            media_kind=message.media_kind,
            external_id=message.external_id,
            created_at=now,
        )
        get_or_create_session(self.db, tenant.id, message.counterpart)

        config = get_automation_config(self.db, tenant.id)
        if not config or not config.enabled:
            self.db.commit()
            log.info("Message recorded, automation disabled")
            return result

        if not is_within_business_hours(config, now):
            result.action = IntakeAction.OUT_OF_HOURS
            result.outbound_text = out_of_hours_reply(self.db, conversation, config)
            self.db.commit()
            log.info("Message outside business hours", context={"sent": result.outbound_text is not None})
            return result

        delay = config.response_delay_seconds
        if delay is None:
            delay = settings.default_reply_delay_seconds
        result.delay_seconds = max(delay, 0)

        if result.delay_seconds > 0:
            fire_at = schedule_trigger(self.db, tenant.id, message.counterpart, result.delay_seconds, now)
            result.action = IntakeAction.SCHEDULED
            log.info("Reply scheduled", context={"fire_at": fire_at.isoformat()})
        else:
            result.action = IntakeAction.IMMEDIATE
        self.db.commit()
        return result

    def _is_own_echo(self, conversation_id: UUID, content: str, now) -> bool:
        """Our own sends come back as fromMe events; they are already in the log.

        Only an exact match with a part we delivered counts. Anything else is a
        human typing on the phone and must hand the conversation over.
        """
        text = (content or "").strip()
        if not text:
            return False
        recent = (
            self.db.query(Message)
            .filter(
                Message.conversation_id == conversation_id,
                Message.direction == "outbound",
                Message.author.in_([AUTHOR_AUTOMATION, AUTHOR_OPERATOR]),
            )
            .order_by(Message.seq.desc())
            .limit(ECHO_LOOKBACK_MESSAGES)
            .all()
        )
        for sent in recent:
            if now - as_utc(sent.created_at) > ECHO_WINDOW:
                continue
            delivered = (sent.content or "").strip()
            if text == delivered or text in split_message(delivered):
                return True
        return False
