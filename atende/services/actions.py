"""Actions the reply generator may perform on behalf of the customer."""

import re
from dataclasses import asdict, dataclass
from datetime import date, time
from typing import Any, Callable, Optional, Union
from uuid import UUID

from atende.services.result import Result
from atende.services.slot_engine import AppointmentService

TAG_ACTIONS = ("add", "remove")


class ActionArgumentError(ValueError):
    """Arguments for an action are missing or cannot be parsed."""


@dataclass(frozen=True)
class CheckAvailability:
    date: date


@dataclass(frozen=True)
class CreateAppointment:
    date: date
    time: time
    title: str
    description: Optional[str] = None


@dataclass(frozen=True)
class CancelAppointment:
    date: date
    time: time


@dataclass(frozen=True)
class ListAppointments:
    from_date: Optional[date] = None


@dataclass(frozen=True)
class ConfirmAppointment:
    appointment_id: Optional[UUID] = None


@dataclass(frozen=True)
class UpdateAppointmentTags:
    appointment_id: UUID
    tags: tuple[str, ...]
    action: str = "add"


Action = Union[
    CheckAvailability,
    CreateAppointment,
    CancelAppointment,
    ListAppointments,
    ConfirmAppointment,
    UpdateAppointmentTags,
]

ISO_DATE_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$")
BR_DATE_RE = re.compile(r"^(\d{1,2})/(\d{1,2})(?:/(\d{2,4}))?$")
TIME_RE = re.compile(r"^(\d{1,2})(?:[:h](\d{2})?)?(?::\d{2})?$", re.IGNORECASE)


def parse_date(value: Any, today: Optional[date] = None) -> date:
    """Accepts ``YYYY-MM-DD``, ``DD/MM/YYYY`` and ``DD/MM`` (next occurrence)."""
    if isinstance(value, date):
        return value
    text = str(value or "").strip()

    try:
        match = ISO_DATE_RE.match(text)
        if match:
            return date(int(match.group(1)), int(match.group(2)), int(match.group(3)))

        match = BR_DATE_RE.match(text)
        if match:
            day, month, year = int(match.group(1)), int(match.group(2)), match.group(3)
            if year:
                return date(int(year) + (2000 if len(year) == 2 else 0), month, day)
            today = today or date.today()
            candidate = date(today.year, month, day)
            if candidate < today:
                candidate = date(today.year + 1, month, day)
            return candidate
    except ValueError as e:
        raise ActionArgumentError(f"Invalid date: {text}") from e

    raise ActionArgumentError(f"Invalid date: {text!r}")


def parse_time(value: Any) -> time:
    """Accepts ``HH:MM``, ``HH:MM:SS``, ``14h`` and ``14h30``."""
    if isinstance(value, time):
        return value
    text = str(value or "").strip()
    match = TIME_RE.match(text)
    if not match:
        raise ActionArgumentError(f"Invalid time: {text!r}")
    try:
        return time(int(match.group(1)), int(match.group(2) or 0))
    except ValueError as e:
        raise ActionArgumentError(f"Invalid time: {text}") from e


def parse_uuid(value: Any) -> UUID:
    try:
        return value if isinstance(value, UUID) else UUID(str(value).strip())
    except (TypeError, ValueError) as e:
        raise ActionArgumentError(f"Invalid appointment id: {value!r}") from e


def _required(arguments: dict, key: str) -> Any:
    value = arguments.get(key)
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ActionArgumentError(f"Missing argument: {key}")
    return value


def _parse_tags(value: Any) -> tuple[str, ...]:
    if isinstance(value, str):
        value = [part for part in re.split(r"[,;]", value)]
    if not isinstance(value, (list, tuple)):
        raise ActionArgumentError("tags must be a list")
    tags = []
    for tag in value:
        tag = str(tag).strip()
        if tag and tag not in tags:
            tags.append(tag)
    if not tags:
        raise ActionArgumentError("Missing argument: tags")
    return tuple(tags)


def _build_check(arguments: dict, today: Optional[date]) -> Action:
    return CheckAvailability(date=parse_date(_required(arguments, "date"), today))


def _build_create(arguments: dict, today: Optional[date]) -> Action:
    description = arguments.get("description")
    return CreateAppointment(
        date=parse_date(_required(arguments, "date"), today),
        time=parse_time(_required(arguments, "time")),
        title=str(_required(arguments, "title")).strip(),
        description=str(description).strip() if description else None,
    )


def _build_cancel(arguments: dict, today: Optional[date]) -> Action:
    return CancelAppointment(
        date=parse_date(_required(arguments, "date"), today),
        time=parse_time(_required(arguments, "time")),
    )


def _build_list(arguments: dict, today: Optional[date]) -> Action:
    value = arguments.get("date")
    return ListAppointments(from_date=parse_date(value, today) if value else None)


def _build_confirm(arguments: dict, today: Optional[date]) -> Action:
    value = arguments.get("appointmentId") or arguments.get("appointment_id")
    return ConfirmAppointment(appointment_id=parse_uuid(value) if value else None)


def _build_tags(arguments: dict, today: Optional[date]) -> Action:
    action = str(arguments.get("action") or "add").strip().lower()
    if action not in TAG_ACTIONS:
        raise ActionArgumentError(f"Invalid tag action: {action}")
    appointment_id = arguments.get("appointmentId") or arguments.get("appointment_id")
    return UpdateAppointmentTags(
        appointment_id=parse_uuid(_required({"appointmentId": appointment_id}, "appointmentId")),
        tags=_parse_tags(_required(arguments, "tags")),
        action=action,
    )


ACTION_BUILDERS: dict[str, Callable[[dict, Optional[date]], Action]] = {
    "check_available_slots": _build_check,
    "create_appointment": _build_create,
    "cancel_appointment": _build_cancel,
    "list_appointments": _build_list,
    "confirm_appointment": _build_confirm,
    "update_appointment_tags": _build_tags,
}

ACTION_NAMES = tuple(ACTION_BUILDERS)


def parse_action(name: str, arguments: Optional[dict], today: Optional[date] = None) -> Action:
    """Build a typed action from a tool name and its raw arguments."""
    builder = ACTION_BUILDERS.get((name or "").strip())
    if builder is None:
        raise ActionArgumentError(f"Unknown action: {name!r}")
    if arguments is None:
        raise ActionArgumentError(f"Unparseable arguments for {name}")
    return builder(arguments, today)


@dataclass
class ActionContext:
    """Who the action is performed for."""

    service: AppointmentService
    counterpart: str
    contact_name: Optional[str] = None


def _run_check(action: CheckAvailability, ctx: ActionContext) -> Result:
    return ctx.service.check_availability(action.date)


def _run_create(action: CreateAppointment, ctx: ActionContext) -> Result:
    return ctx.service.create_appointment(
        counterpart=ctx.counterpart,
        appointment_date=action.date,
        appointment_time=action.time,
        title=action.title,
        description=action.description,
        contact_name=ctx.contact_name,
    )


def _run_cancel(action: CancelAppointment, ctx: ActionContext) -> Result:
    return ctx.service.cancel_appointment(
        counterpart=ctx.counterpart,
        appointment_date=action.date,
        appointment_time=action.time,
    )


def _run_list(action: ListAppointments, ctx: ActionContext) -> Result:
    return ctx.service.list_appointments(counterpart=ctx.counterpart, from_date=action.from_date)


def _run_confirm(action: ConfirmAppointment, ctx: ActionContext) -> Result:
    return ctx.service.confirm_appointment(counterpart=ctx.counterpart, appointment_id=action.appointment_id)


def _run_tags(action: UpdateAppointmentTags, ctx: ActionContext) -> Result:
    return ctx.service.update_appointment_tags(
        appointment_id=action.appointment_id,
        tags=list(action.tags),
        action=action.action,
        counterpart=ctx.counterpart,
    )


ACTION_HANDLERS: dict[type, Callable[[Any, ActionContext], Result]] = {
    CheckAvailability: _run_check,
    CreateAppointment: _run_create,
    CancelAppointment: _run_cancel,
    ListAppointments: _run_list,
    ConfirmAppointment: _run_confirm,
    UpdateAppointmentTags: _run_tags,
}


def execute_action(action: Action, ctx: ActionContext) -> Result:
    return ACTION_HANDLERS[type(action)](action, ctx)


def _function(name: str, description: str, properties: dict, required: list[str]) -> dict:
    return {
        "type": "function",
        "function": {
            "name": name,
            "description": description,
            "parameters": {"type": "object", "properties": properties, "required": required},
        },
    }


TOOL_SCHEMAS = [
    _function(
        "check_available_slots",
        "Verifica horários disponíveis para agendamento em uma data específica. "
        "Use quando o cliente perguntar sobre disponibilidade ou quiser agendar.",
        {"date": {"type": "string", "description": "Data para verificar disponibilidade no formato YYYY-MM-DD"}},
        ["date"],
    ),
    _function(
        "create_appointment",
        "Cria um novo agendamento após confirmar data, horário e serviço com o cliente.",
        {
            "date": {"type": "string", "description": "Data do agendamento no formato YYYY-MM-DD"},
            "time": {"type": "string", "description": "Horário do agendamento no formato HH:MM"},
            "title": {"type": "string", "description": "Tipo de serviço ou título do agendamento"},
            "description": {"type": "string", "description": "Detalhes adicionais ou observações"},
        },
        ["date", "time", "title"],
    ),
    _function(
        "cancel_appointment",
        "Cancela um agendamento existente do cliente.",
        {
            "date": {"type": "string", "description": "Data do agendamento a cancelar no formato YYYY-MM-DD"},
            "time": {"type": "string", "description": "Horário do agendamento a cancelar no formato HH:MM"},
        },
        ["date", "time"],
    ),
    _function(
        "list_appointments",
        "Lista os agendamentos do cliente.",
        {"date": {"type": "string", "description": "Data opcional para filtrar agendamentos no formato YYYY-MM-DD"}},
        [],
    ),
    _function(
        "confirm_appointment",
        "Confirma a presença do cliente em um agendamento. Use quando o cliente disser que confirma, "
        "que vai comparecer, responder SIM a um lembrete, etc.",
        {},
        [],
    ),
    _function(
        "update_appointment_tags",
        "Adiciona ou remove tags de um agendamento (ex: realizado, no-show, reagendado).",
        {
            "appointmentId": {"type": "string", "description": "ID do agendamento"},
            "tags": {"type": "array", "items": {"type": "string"}, "description": "Tags para adicionar ou remover"},
            "action": {"type": "string", "description": "Ação: 'add' para adicionar ou 'remove' para remover tags"},
        },
        ["appointmentId", "tags"],
    ),
]


TOOL_NAMES: dict[type, str] = {
    CheckAvailability: "check_available_slots",
    CreateAppointment: "create_appointment",
    CancelAppointment: "cancel_appointment",
    ListAppointments: "list_appointments",
    ConfirmAppointment: "confirm_appointment",
    UpdateAppointmentTags: "update_appointment_tags",
}


def describe_action(action: Action) -> tuple[str, dict]:
    """Tool name and JSON-ready arguments, as the model would have sent them."""
    arguments: dict = {}
    for key, value in asdict(action).items():
        if value is None:
            continue
        if isinstance(value, time):
            value = value.strftime("%H:%M")
        elif isinstance(value, (date, UUID)):
            value = str(value)
        elif isinstance(value, tuple):
            value = list(value)
        arguments[key] = value
    if "from_date" in arguments:
        arguments["date"] = arguments.pop("from_date")
    if "appointment_id" in arguments:
        arguments["appointmentId"] = arguments.pop("appointment_id")
    return TOOL_NAMES[type(action)], arguments
