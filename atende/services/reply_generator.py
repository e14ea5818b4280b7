"""Tool-augmented reply generation.

One call to `ReplyGenerator.generate` runs a bounded completion loop: tool
calls are executed against the slot engine and fed back to the model, text
that leaks action syntax is either recovered as an action or answered with a
single corrective instruction, and a clean text becomes the reply. Before the
reply is returned, a booking claim is checked against what actually happened
in the loop.
"""

import json
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Optional

from atende.config import settings
from atende.logging_config import get_logger
from atende.models import AutomationConfig, Message
from atende.services.actions import (
    TOOL_SCHEMAS,
    Action,
    ActionArgumentError,
    ActionContext,
    describe_action,
    execute_action,
    parse_action,
)
from atende.services.conversation_service import AUTHOR_CUSTOMER
from atende.services.leaked_action import claims_booking, contains_leaked_syntax, parse_leaked_action, reconstruct_booking
from atende.services.llm import LLMProvider, OpenAIProvider
from atende.services.result import Result
from atende.services.slot_engine import MONTHS_PT, WEEKDAYS_PT, AppointmentService

logger = get_logger("reply_generator")

CORRECTIVE_INSTRUCTION = (
    "Responda APENAS em linguagem natural para o cliente. NÃO use código, funções print(), "
    "ou sintaxe de programação. Use as ferramentas disponibilizadas pelo sistema."
)
GENERIC_APOLOGY = (
    "Desculpe, não consegui processar sua mensagem agora. "
    "Pode repetir, por favor? Se preferir, um atendente pode continuar a conversa."
)
BOOKING_NOT_CONFIRMED = (
    "Desculpe, ainda não consegui registrar o seu agendamento. "
    "Pode me confirmar a data e o horário desejados?"
)
BOOKING_FAILED = "Desculpe, não consegui concluir o agendamento. {reason}"
KNOWLEDGE_HEADER = "Use a seguinte base de conhecimento para responder:"

SYSTEM_PROMPT_TEMPLATE = """Você é {agent_name} de atendimento via WhatsApp.

{instructions}

IMPORTANTE - AGENDAMENTOS:
Você tem acesso a ferramentas para gerenciar agendamentos. Quando o cliente:
- Perguntar sobre disponibilidade ou horários: Use check_available_slots
- Quiser marcar/agendar algo: Primeiro verifique disponibilidade, depois use create_appointment
- Quiser cancelar um agendamento: Use cancel_appointment
- Quiser ver seus agendamentos: Use list_appointments
- Confirmar presença (responder "sim", "confirmo", "vou sim", etc.): Use confirm_appointment

Hoje é {today_long} ({today_iso}).
Ao mencionar datas, converta para o formato YYYY-MM-DD para as funções.

REGRAS CRÍTICAS - NUNCA VIOLE:
- NUNCA escreva código, print(), default_api ou sintaxe de função no texto
- Use APENAS as ferramentas disponibilizadas pelo sistema através de function calling
- NUNCA diga que um agendamento foi criado ou confirmado sem antes ter chamado create_appointment e recebido success: true
- Se o cliente confirmou data, horário e serviço, chame create_appointment imediatamente

Regras adicionais:
- Responda sempre em português brasileiro, de forma natural e objetiva
- Nunca invente informações; se não souber, diga que vai verificar com a equipe
- Separe a resposta em parágrafos curtos com uma linha em branco entre eles"""


def format_long_date(value: date) -> str:
    return f"{WEEKDAYS_PT[value.weekday()]}, {value.day:02d} de {MONTHS_PT[value.month - 1]} de {value.year}"


def build_system_prompt(config: AutomationConfig, today: date, knowledge: str = "") -> str:
    instructions = (config.custom_prompt or "Seja cordial, profissional e prestativo.").strip()
    if knowledge:
        instructions += f"\n\n{KNOWLEDGE_HEADER}\n\n{knowledge}"
    return SYSTEM_PROMPT_TEMPLATE.format(
        agent_name=config.agent_name or "um assistente virtual",
        instructions=instructions,
        today_long=format_long_date(today),
        today_iso=today.isoformat(),
    )


def build_history(history: list[Message]) -> list[dict]:
    """Map the log to chat roles, leaving out the burst being answered."""
    messages = list(history)
    while messages and messages[-1].author == AUTHOR_CUSTOMER:
        messages.pop()
    return [
        {"role": "user" if m.author == AUTHOR_CUSTOMER else "assistant", "content": m.content}
        for m in messages
        if m.content
    ]


@dataclass
class ExecutedAction:
    name: str
    ok: bool
    error_code: Optional[str] = None
    message: Optional[str] = None


@dataclass
class ReplyOutcome:
    text: str
    completions: int = 0
    actions: list[ExecutedAction] = field(default_factory=list)
    corrected: bool = False
    fallback: bool = False

    @property
    def booked(self) -> bool:
        return any(a.name == "create_appointment" and a.ok for a in self.actions)


class ReplyGenerator:
    def __init__(self, provider: LLMProvider, max_iterations: Optional[int] = None, model: Optional[str] = None):
        self.provider = provider
        self.max_iterations = max_iterations or settings.reply_max_iterations
        self.model = model

    def _execute(self, action: Action, ctx: ActionContext, outcome: ReplyOutcome) -> Result:
        name, _ = describe_action(action)
        result = execute_action(action, ctx)
        outcome.actions.append(ExecutedAction(name=name, ok=result.ok, error_code=result.error_code, message=result.message))
        logger.info(
            "Action executed",
            extra={"context": {"action": name, "ok": result.ok, "error_code": result.error_code, "counterpart": ctx.counterpart}},
        )
        return result

    def generate(
        self,
        *,
        config: AutomationConfig,
        history: list[Message],
        latest_text: str,
        service: AppointmentService,
        counterpart: str,
        contact_name: Optional[str] = None,
        now_local: Optional[datetime] = None,
        knowledge: str = "",
    ) -> ReplyOutcome:
        """Produce the reply for `latest_text`.

        Raises UpstreamUnavailableError when the completion service fails;
        everything else ends in a customer-facing text.
        """
        today = (now_local or datetime.now()).date()
        ctx = ActionContext(service=service, counterpart=counterpart, contact_name=contact_name)
        outcome = ReplyOutcome(text="")

        messages = [{"role": "system", "content": build_system_prompt(config, today, knowledge)}]
        messages.extend(build_history(history))
        messages.append({"role": "user", "content": latest_text})

        reply = None
        while outcome.completions < self.max_iterations:
            completion = self.provider.complete(messages, tools=TOOL_SCHEMAS, model=self.model)
            outcome.completions += 1

            if completion.tool_call:
                call = completion.tool_call
                messages.append(
                    {
                        "role": "assistant",
                        "content": completion.text or None,
                        "tool_calls": [
                            {
                                "id": call.id,
                                "type": "function",
                                "function": {"name": call.name, "arguments": call.raw_arguments or "{}"},
                            }
                        ],
                    }
                )
                try:
                    action = parse_action(call.name, call.arguments, today)
                    payload = self._execute(action, ctx, outcome).as_tool_payload()
                except ActionArgumentError as e:
                    logger.info(f"Rejected tool call {call.name}: {e}")
                    outcome.actions.append(ExecutedAction(name=call.name, ok=False, error_code="invalid_arguments"))
                    payload = {"success": False, "error_code": "invalid_arguments", "message": str(e)}
                messages.append({"role": "tool", "tool_call_id": call.id, "content": json.dumps(payload, ensure_ascii=False)})
                continue

            text = (completion.text or "").strip()
            if text and not contains_leaked_syntax(text):
                reply = text
                break

            action = parse_leaked_action(text, today) if text else None
            if action is not None:
                name, arguments = describe_action(action)
                call_id = f"recovered_{outcome.completions}"
                logger.warning(f"Recovered leaked action from text: {name}")
                result = self._execute(action, ctx, outcome)
                messages.append(
                    {
                        "role": "assistant",
                        "content": None,
                        "tool_calls": [
                            {
                                "id": call_id,
                                "type": "function",
                                "function": {"name": name, "arguments": json.dumps(arguments, ensure_ascii=False)},
                            }
                        ],
                    }
                )
                messages.append(
                    {"role": "tool", "tool_call_id": call_id, "content": json.dumps(result.as_tool_payload(), ensure_ascii=False)}
                )
                continue

            if outcome.corrected:
                logger.warning("Model output still malformed after corrective instruction")
                break

            logger.warning("Malformed model output, sending corrective instruction", extra={"context": {"text": text[:200]}})
            outcome.corrected = True
            if text:
                messages.append({"role": "assistant", "content": text})
            messages.append({"role": "user", "content": CORRECTIVE_INSTRUCTION})

        if reply is None:
            outcome.fallback = True
            outcome.text = GENERIC_APOLOGY
            booked = [a for a in outcome.actions if a.name == "create_appointment" and a.ok]
            if booked:
                # The booking exists; tell the customer instead of apologising.
                outcome.text = booked[-1].message or GENERIC_APOLOGY
            logger.warning(
                "Reply loop ended without a usable answer",
                extra={"context": {"completions": outcome.completions, "actions": [a.name for a in outcome.actions]}},
            )
            return outcome

        outcome.text = self._verify_booking_claim(reply, ctx, outcome, today)
        return outcome

    def _verify_booking_claim(self, reply: str, ctx: ActionContext, outcome: ReplyOutcome, today: date) -> str:
        """Make sure a booking is only announced when it exists."""
        if not claims_booking(reply):
            return reply

        # A confirmed existing appointment is also announced as "confirmado".
        confirmed = any(a.name == "confirm_appointment" and a.ok for a in outcome.actions)
        if outcome.booked or confirmed:
            return reply

        booking = reconstruct_booking(reply, today)
        if booking is None:
            logger.warning("Reply claims a booking that was never made and cannot be reconstructed")
            return BOOKING_NOT_CONFIRMED

        logger.warning(
            "Reply claims a booking that was never made, creating it",
            extra={"context": {"date": booking.date.isoformat(), "time": booking.time.strftime("%H:%M")}},
        )
        result = self._execute(booking, ctx, outcome)
        if result.ok:
            return reply
        return BOOKING_FAILED.format(reason=result.message or "")


_llm_provider = None


def get_llm_provider() -> OpenAIProvider:
    """Get or create the shared completion provider."""
    global _llm_provider
    if _llm_provider is None:
        _llm_provider = OpenAIProvider(
            api_key=settings.openai_api_key or "",
            default_model=settings.openai_model,
            timeout_seconds=settings.completion_timeout_seconds,
        )
    return _llm_provider
