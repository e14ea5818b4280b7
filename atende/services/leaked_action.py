"""Recovery of action calls the model wrote as text instead of a tool call."""

import re
from datetime import date
from typing import Optional

from atende.logging_config import get_logger
from atende.services.actions import (
    ACTION_NAMES,
    Action,
    ActionArgumentError,
    CreateAppointment,
    parse_action,
    parse_date,
    parse_time,
)

logger = get_logger("leaked_action")

_NAMES = "|".join(ACTION_NAMES)

LEAK_PATTERNS = [
    re.compile(r"print\s*\(", re.IGNORECASE),
    re.compile(r"default_api\.", re.IGNORECASE),
    re.compile(rf"\b({_NAMES})\s*\(", re.IGNORECASE),
    re.compile(r"\w+_api\.\w+\s*\(", re.IGNORECASE),
    re.compile(r"```[\s\S]*```"),
]

CALL_RE = re.compile(rf"({_NAMES})\s*\(\s*([^)]*)\)", re.IGNORECASE)
ARG_RE = re.compile(r"""(\w+)\s*=\s*['"]?([^'",)]+)['"]?""")
LIST_ARG_RE = re.compile(r"""(\w+)\s*=\s*\[([^\]]*)\]""")

BOOKING_CLAIM_PATTERNS = [
    re.compile(r"agendamento\s*(confirmado|criado|marcado|realizado|feito)", re.IGNORECASE),
    re.compile(r"confirmad[oa].*agendamento", re.IGNORECASE),
    re.compile(r"marcad[oa]\s+para", re.IGNORECASE),
]

ISO_DATE_IN_TEXT = re.compile(r"\b(\d{4}-\d{2}-\d{2})\b")
BR_DATE_IN_TEXT = re.compile(r"\b(\d{1,2}/\d{1,2}(?:/\d{2,4})?)\b")
TIME_IN_TEXT = re.compile(r"\b(\d{1,2}(?::\d{2}|h\d{2}))\b", re.IGNORECASE)

RECONSTRUCTED_TITLE = "Agendamento"


def contains_leaked_syntax(text: str) -> bool:
    """True when the text carries code, tool names or print-like calls."""
    return any(pattern.search(text or "") for pattern in LEAK_PATTERNS)


def _extract_arguments(raw: str) -> dict:
    arguments: dict = {}
    for key, values in LIST_ARG_RE.findall(raw):
        arguments[key] = [value.strip().strip("'\"") for value in values.split(",") if value.strip()]
    for key, value in ARG_RE.findall(raw):
        arguments.setdefault(key, value.strip())
    return arguments


def parse_leaked_action(text: str, today: Optional[date] = None) -> Optional[Action]:
    """Extract ``name(key=value, ...)`` from free text as a typed action.

    Returns None when nothing recognizable is found or the arguments do not parse.
    """
    match = CALL_RE.search(text or "")
    if not match:
        return None

    name = match.group(1).lower()
    arguments = _extract_arguments(match.group(2))
    try:
        return parse_action(name, arguments, today)
    except ActionArgumentError as e:
        logger.info(f"Leaked {name} call with unusable arguments: {e}")
        return None


def claims_booking(text: str) -> bool:
    """True when the text tells the customer an appointment was booked."""
    return any(pattern.search(text or "") for pattern in BOOKING_CLAIM_PATTERNS)


def reconstruct_booking(text: str, today: Optional[date] = None) -> Optional[CreateAppointment]:
    """Rebuild a create call from the first date and time mentioned in the text."""
    date_match = ISO_DATE_IN_TEXT.search(text or "") or BR_DATE_IN_TEXT.search(text or "")
    time_match = TIME_IN_TEXT.search(text or "")
    if not date_match or not time_match:
        return None

    try:
        return CreateAppointment(
            date=parse_date(date_match.group(1), today),
            time=parse_time(time_match.group(1)),
            title=RECONSTRUCTED_TITLE,
        )
    except ActionArgumentError:
        return None
