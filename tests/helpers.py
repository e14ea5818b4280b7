import json
from datetime import time

from atende.models import AppointmentSlotRule, NotificationRecipient
from atende.services.llm import Completion, LLMProvider, ToolCall


def add_slot_rule(db, tenant, day_of_week, start="09:00", end="12:00", duration=30, capacity=1):
    hours, minutes = start.split(":")
    end_hours, end_minutes = end.split(":")
    rule = AppointmentSlotRule(
        tenant_id=tenant.id,
        day_of_week=day_of_week,
        start_time=time(int(hours), int(minutes)),
        end_time=time(int(end_hours), int(end_minutes)),
        slot_duration_minutes=duration,
        max_appointments_per_slot=capacity,
        is_active=True,
    )
    db.add(rule)
    db.commit()
    return rule


def add_recipient(db, tenant, address="5511900000001", bookings=True, handoffs=True):
    recipient = NotificationRecipient(
        tenant_id=tenant.id,
        address=address,
        name="Recepção",
        notify_bookings=bookings,
        notify_handoffs=handoffs,
    )
    db.add(recipient)
    db.commit()
    return recipient


def text_completion(text):
    return Completion(text=text)


def tool_completion(name, call_id=None, **arguments):
    return Completion(
        tool_call=ToolCall(
            id=call_id or f"call_{name}",
            name=name,
            arguments=arguments,
            raw_arguments=json.dumps(arguments),
        )
    )


class ScriptedProvider(LLMProvider):
    """Returns the scripted completions in order and records every request."""

    def __init__(self, *completions):
        self.completions = list(completions)
        self.calls = []

    def complete(self, messages, tools=None, model=None, temperature=0.7, max_tokens=1000):
        self.calls.append([dict(m) for m in messages])
        if not self.completions:
            raise AssertionError("Unexpected completion request")
        item = self.completions.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


class RecordingGateway:
    def __init__(self, ok=True):
        self.ok = ok
        self.sent = []

    def send_text(self, instance_name, address, text):
        self.sent.append((instance_name, address, text))
        return self.ok
