from atende.services.automation_gate import (
    AutomationGate,
    GateDecision,
    GateOutcome,
    force_human_takeover,
    reactivate_automation,
)
from atende.services.conversation_service import (
    append_message,
    get_or_create_conversation,
    get_or_create_session,
)
from atende.services.debounce_service import (
    DebounceScheduler,
    claim_trigger,
    due_trigger_keys,
    schedule_trigger,
)
from atende.services.state_machine import (
    AutomationStatus,
    InvalidTransitionError,
    can_transition,
    transition,
)
