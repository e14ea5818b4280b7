from enum import Enum


class AutomationStatus(str, Enum):
    INACTIVE = "inactive"
    ACTIVE = "active"
    HANDED_OFF = "handed_off"


# handed_off only leaves through an explicit human reactivation, never a keyword.
VALID_TRANSITIONS = {
    AutomationStatus.INACTIVE: [AutomationStatus.ACTIVE, AutomationStatus.HANDED_OFF],
    AutomationStatus.ACTIVE: [AutomationStatus.HANDED_OFF],
    AutomationStatus.HANDED_OFF: [AutomationStatus.ACTIVE],
}


class InvalidTransitionError(Exception):
    def __init__(self, from_state: AutomationStatus, to_state: AutomationStatus):
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(f"Invalid transition: {from_state.value} -> {to_state.value}")


def can_transition(from_state: AutomationStatus, to_state: AutomationStatus) -> bool:
    """Check if transition is valid."""
    allowed = VALID_TRANSITIONS.get(from_state, [])
    return to_state in allowed


def transition(from_state: AutomationStatus, to_state: AutomationStatus) -> AutomationStatus:
    """Perform state transition. Raises InvalidTransitionError if not allowed."""
    if not can_transition(from_state, to_state):
        raise InvalidTransitionError(from_state, to_state)
    return to_state


def activate_by_keyword(current_state: AutomationStatus) -> AutomationStatus:
    """Keyword match on a never-activated conversation."""
    if current_state != AutomationStatus.INACTIVE:
        raise InvalidTransitionError(current_state, AutomationStatus.ACTIVE)
    return transition(current_state, AutomationStatus.ACTIVE)


def activate_by_default(current_state: AutomationStatus) -> AutomationStatus:
    """Default-on policy: first automated reply marks the session active."""
    if current_state == AutomationStatus.ACTIVE:
        return current_state
    if current_state != AutomationStatus.INACTIVE:
        raise InvalidTransitionError(current_state, AutomationStatus.ACTIVE)
    return transition(current_state, AutomationStatus.ACTIVE)


def hand_off(current_state: AutomationStatus) -> AutomationStatus:
    """Quota exceeded or human takeover. Idempotent once handed off."""
    if current_state == AutomationStatus.HANDED_OFF:
        return current_state
    return transition(current_state, AutomationStatus.HANDED_OFF)


def reactivate(current_state: AutomationStatus) -> AutomationStatus:
    """Explicit human reactivation."""
    if current_state == AutomationStatus.ACTIVE:
        return current_state
    return transition(current_state, AutomationStatus.ACTIVE)
