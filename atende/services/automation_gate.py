"""Per-conversation policy deciding whether automation answers a burst."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID

from sqlalchemy.orm import Session

from atende.config import settings
from atende.logging_config import conversation_logger
from atende.models import AutomationConfig, Conversation, Message
from atende.services.alert_service import alert_error
from atende.services.conversation_service import (
    AUTHOR_AUTOMATION,
    aggregate_recent_inbound,
    append_message,
    get_automation_config,
    get_or_create_conversation,
    get_or_create_session,
    get_recent_messages,
)
from atende.services.gateway_service import get_gateway, get_instance_name
from atende.services.knowledge_service import load_knowledge_base
from atende.services.llm import UpstreamUnavailableError
from atende.services.notification_service import NotificationService
from atende.services.reply_generator import ReplyGenerator, ReplyOutcome, get_llm_provider
from atende.services.slot_engine import AppointmentService
from atende.services.state_machine import (
    AutomationStatus,
    activate_by_default,
    activate_by_keyword,
    hand_off,
    reactivate,
)
from atende.services.timeutils import to_local, utcnow

DEFAULT_BUSINESS_DAYS = [1, 2, 3, 4, 5]  # 0 = Sunday
DEFAULT_HOURS_START = "08:00"
DEFAULT_HOURS_END = "18:00"
DEFAULT_MAX_MESSAGES_WITHOUT_HUMAN = 10


class GateDecision(str, Enum):
    DISABLED = "disabled"
    OUT_OF_HOURS = "out_of_hours"
    HANDED_OFF = "handed_off"
    HANDOFF = "handoff"
    NOT_ACTIVATED = "not_activated"
    REPLIED = "replied"
    UPSTREAM_FAILED = "upstream_failed"


@dataclass
class GateOutcome:
    decision: GateDecision
    tenant_id: UUID
    counterpart: str
    instance_name: Optional[str] = None
    outbound_text: Optional[str] = None
    reply: Optional[ReplyOutcome] = None

    @property
    def should_deliver(self) -> bool:
        return bool(self.outbound_text and self.instance_name)


def _minutes(value: Optional[str], default: str) -> int:
    try:
        hours, minutes = (value or default).split(":")[:2]
        return int(hours) * 60 + int(minutes)
    except ValueError:
        hours, minutes = default.split(":")
        return int(hours) * 60 + int(minutes)


def is_within_business_hours(config: AutomationConfig, now: datetime) -> bool:
    """Business days use 0 = Sunday; the end minute is still inside the window."""
    local = to_local(now, config.timezone)
    weekday = (local.weekday() + 1) % 7
    days = DEFAULT_BUSINESS_DAYS if config.business_days is None else config.business_days
    current = local.hour * 60 + local.minute

    if weekday not in days:
        return False
    start = _minutes(config.business_hours_start, DEFAULT_HOURS_START)
    end = _minutes(config.business_hours_end, DEFAULT_HOURS_END)
    return start <= current <= end


def matches_keyword(text: str, keywords: Optional[list]) -> bool:
    """Case-insensitive substring match. An empty keyword list matches everything."""
    keywords = [k for k in (keywords or []) if k and k.strip()]
    if not keywords:
        return True
    lowered = (text or "").lower()
    return any(keyword.strip().lower() in lowered for keyword in keywords)


def out_of_hours_reply(db: Session, conversation: Conversation, config: AutomationConfig) -> Optional[str]:
    """Log and return the out-of-hours text, unless it is already the last thing sent."""
    text = (config.out_of_hours_message or "").strip()
    if not text:
        return None

    previous = (
        db.query(Message)
        .filter(Message.conversation_id == conversation.id, Message.direction == "outbound")
        .order_by(Message.seq.desc())
        .first()
    )
    if previous is not None and previous.author == AUTHOR_AUTOMATION and previous.content == text:
        return None

    append_message(db, conversation, direction="outbound", author=AUTHOR_AUTOMATION, content=text)
    return text


def force_human_takeover(db: Session, tenant_id: UUID, counterpart: str, now: Optional[datetime] = None) -> None:
    """A human operator spoke: automation stops for this conversation until reactivated."""
    now = now or utcnow()
    session = get_or_create_session(db, tenant_id, counterpart)
    conversation = get_or_create_conversation(db, tenant_id, counterpart)

    session.status = hand_off(AutomationStatus(session.status)).value
    session.replies_since_human = 0
    session.last_human_reply_at = now
    session.handed_off_at = session.handed_off_at or now
    session.updated_at = now
    conversation.automation_enabled = False
    conversation.updated_at = now
    db.flush()

    conversation_logger("automation_gate", tenant_id, counterpart).info("Automation forced off by human operator")


def reactivate_automation(db: Session, tenant_id: UUID, counterpart: str, now: Optional[datetime] = None) -> None:
    """Explicit human action turning automation back on."""
    now = now or utcnow()
    session = get_or_create_session(db, tenant_id, counterpart)
    conversation = get_or_create_conversation(db, tenant_id, counterpart)

    session.status = reactivate(AutomationStatus(session.status)).value
    session.replies_since_human = 0
    session.handed_off_at = None
    session.updated_at = now
    conversation.automation_enabled = True
    conversation.updated_at = now
    db.flush()

    conversation_logger("automation_gate", tenant_id, counterpart).info("Automation reactivated by human")


class AutomationGate:
    """Runs the ordered policy for one firing and commits its writes.

    Sending is left to the caller: the text to deliver is returned in
    `GateOutcome.outbound_text`. Notifications go out after the commit.
    """

    def __init__(self, db: Session, generator: ReplyGenerator, notifications: Optional[NotificationService] = None):
        self.db = db
        self.generator = generator
        self.notifications = notifications

    def evaluate(self, tenant_id: UUID, counterpart: str, now: Optional[datetime] = None) -> GateOutcome:
        now = now or utcnow()
        log = conversation_logger("automation_gate", tenant_id, counterpart)
        outcome = GateOutcome(
            decision=GateDecision.DISABLED,
            tenant_id=tenant_id,
            counterpart=counterpart,
            instance_name=get_instance_name(self.db, tenant_id),
        )

        config = get_automation_config(self.db, tenant_id)
        if not config or not config.enabled:
            log.info("Automation disabled for tenant")
            return outcome

        conversation = get_or_create_conversation(self.db, tenant_id, counterpart)

        if not is_within_business_hours(config, now):
            outcome.decision = GateDecision.OUT_OF_HOURS
            outcome.outbound_text = out_of_hours_reply(self.db, conversation, config)
            self.db.commit()
            log.info("Outside business hours", context={"sent": outcome.outbound_text is not None})
            return outcome

        session = get_or_create_session(self.db, tenant_id, counterpart)
        status = AutomationStatus(session.status)
        if status == AutomationStatus.HANDED_OFF or not conversation.automation_enabled:
            outcome.decision = GateDecision.HANDED_OFF
            self.db.commit()
            log.info("Conversation is with a human, skipping")
            return outcome

        limit = config.max_messages_without_human or DEFAULT_MAX_MESSAGES_WITHOUT_HUMAN
        if session.replies_since_human >= limit:
            return self._hand_off(outcome, config, conversation, session, now)

        latest_text = aggregate_recent_inbound(self.db, conversation)
        if config.keyword_activation_enabled and status == AutomationStatus.INACTIVE:
            if not matches_keyword(latest_text, config.trigger_keywords):
                outcome.decision = GateDecision.NOT_ACTIVATED
                self.db.commit()
                log.info("No trigger keyword, automation stays inactive")
                return outcome
            session.status = activate_by_keyword(status).value
            log.info("Automation activated by keyword")

        service = AppointmentService(self.db, tenant_id)
        try:
            reply = self.generator.generate(
                config=config,
                history=get_recent_messages(self.db, conversation, limit=settings.history_limit),
                latest_text=latest_text,
                service=service,
                counterpart=counterpart,
                contact_name=conversation.contact_name,
                now_local=to_local(now, config.timezone),
                knowledge=load_knowledge_base(self.db, tenant_id),
            )
        except UpstreamUnavailableError as e:
            self.db.rollback()
            outcome.decision = GateDecision.UPSTREAM_FAILED
            log.error("Completion service unavailable, firing aborted", context={"error": str(e)})
            alert_error("Completion service unavailable", {"error": str(e)}, tenant_id=tenant_id, counterpart=counterpart)
            return outcome

        append_message(self.db, conversation, direction="outbound", author=AUTHOR_AUTOMATION, content=reply.text)
        session.status = activate_by_default(AutomationStatus(session.status)).value
        session.replies_since_human = (session.replies_since_human or 0) + 1
        session.updated_at = now
        self.db.commit()

        outcome.decision = GateDecision.REPLIED
        outcome.outbound_text = reply.text
        outcome.reply = reply
        log.info(
            "Automated reply produced",
            context={"replies_since_human": session.replies_since_human, "completions": reply.completions, "fallback": reply.fallback},
        )

        if self.notifications:
            for appointment in service.created:
                self.notifications.notify_new_booking(tenant_id, appointment)
        return outcome

    def _hand_off(self, outcome, config, conversation, session, now) -> GateOutcome:
        log = conversation_logger("automation_gate", outcome.tenant_id, outcome.counterpart)

        text = (config.handoff_message or "").strip() or None
        if text:
            append_message(self.db, conversation, direction="outbound", author=AUTHOR_AUTOMATION, content=text)

        session.status = hand_off(AutomationStatus(session.status)).value
        session.handed_off_at = now
        session.updated_at = now
        conversation.automation_enabled = False
        conversation.updated_at = now
        self.db.commit()

        outcome.decision = GateDecision.HANDOFF
        outcome.outbound_text = text
        log.info("Quota reached, conversation handed off", context={"replies_since_human": session.replies_since_human})

        if self.notifications:
            self.notifications.notify_handoff(
                outcome.tenant_id,
                conversation.contact_name,
                outcome.counterpart,
                at=to_local(now, config.timezone),
            )
        return outcome


def build_gate(db: Session) -> AutomationGate:
    gateway = get_gateway()
    return AutomationGate(db, ReplyGenerator(get_llm_provider()), NotificationService(db, gateway))
