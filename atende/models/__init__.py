from atende.models.appointment import Appointment, AppointmentSlotRule
from atende.models.automation_config import AutomationConfig
from atende.models.automation_session import AutomationSession
from atende.models.conversation import Conversation
from atende.models.knowledge_document import KnowledgeDocument
from atende.models.message import Message
from atende.models.notification_recipient import NotificationRecipient
from atende.models.pending_trigger import PendingTrigger
from atende.models.tenant import Tenant

__all__ = [
    "Tenant",
    "AutomationConfig",
    "Conversation",
    "Message",
    "KnowledgeDocument",
    "AutomationSession",
    "PendingTrigger",
    "AppointmentSlotRule",
    "Appointment",
    "NotificationRecipient",
]
