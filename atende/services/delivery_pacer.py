"""Human-paced delivery of outbound text."""

import asyncio
import random
import re
from typing import Awaitable, Callable, Optional

from atende.logging_config import get_logger
from atende.services.gateway_service import WhatsAppGateway

logger = get_logger("delivery_pacer")

SHORT_MESSAGE_CHARS = 150
PARAGRAPH_MERGE_CHARS = 250
MIN_PART_CHARS = 60
SENTENCE_SPLIT_CHARS = 300
SENTENCE_CHUNK_CHARS = 280
MAX_PARTS = 5

SECONDS_PER_CHAR = 0.025
MIN_DELAY_SECONDS = 1.0
MAX_DELAY_SECONDS = 4.0
MAX_JITTER_SECONDS = 0.8

PARAGRAPH_RE = re.compile(r"\n\s*\n+")
SENTENCE_RE = re.compile(r"(?<=[.!?])\s+")


def _fold_small(parts: list[str], sep: str) -> list[str]:
    """Parts shorter than MIN_PART_CHARS join their neighbour."""
    folded: list[str] = []
    carry = ""
    for part in parts:
        if carry:
            part = carry + sep + part
            carry = ""
        if len(part) >= MIN_PART_CHARS:
            folded.append(part)
        elif folded:
            folded[-1] += sep + part
        else:
            carry = part
    if carry:
        folded.append(carry)
    return folded


def _cap(parts: list[str], sep: str) -> list[str]:
    """At most MAX_PARTS; the overflow goes into the last one."""
    if len(parts) <= MAX_PARTS:
        return parts
    return parts[: MAX_PARTS - 1] + [sep.join(parts[MAX_PARTS - 1:])]


def split_message(text: str) -> list[str]:
    text = (text or "").strip()
    if not text:
        return []
    if len(text) < SHORT_MESSAGE_CHARS:
        return [text]

    paragraphs = [p.strip() for p in PARAGRAPH_RE.split(text) if p.strip()]
    if len(paragraphs) > 1:
        merged: list[str] = []
        buffer = ""
        for paragraph in paragraphs:
            if buffer and len(buffer) + len(paragraph) < PARAGRAPH_MERGE_CHARS:
                buffer += "\n\n" + paragraph
            else:
                if buffer:
                    merged.append(buffer)
                buffer = paragraph
        if buffer:
            merged.append(buffer)
        return _cap(_fold_small(merged, "\n\n"), "\n\n")

    if len(text) > SENTENCE_SPLIT_CHARS:
        sentences = [s.strip() for s in SENTENCE_RE.split(text) if s.strip()]
        if len(sentences) > 1:
            chunks: list[str] = []
            current = ""
            for sentence in sentences:
                if current and len(current) + len(sentence) > SENTENCE_CHUNK_CHARS:
                    chunks.append(current)
                    current = sentence
                else:
                    current = f"{current} {sentence}" if current else sentence
            if current:
                chunks.append(current)
            return _cap(_fold_small(chunks, " "), " ")

    return [text]


def typing_delay(previous_part: str, jitter: Callable[[], float] = random.random) -> float:
    """Seconds to wait before the next part, from the length of the one just sent."""
    base = min(max(len(previous_part) * SECONDS_PER_CHAR, MIN_DELAY_SECONDS), MAX_DELAY_SECONDS)
    return base + jitter() * MAX_JITTER_SECONDS


class DeliveryPacer:
    """Sends reply parts in order, one asyncio task per conversation.

    A new delivery for a conversation waits for the previous one, so parts of
    consecutive replies never interleave. Sleeping only delays that
    conversation.
    """

    def __init__(
        self,
        gateway: WhatsAppGateway,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        jitter: Callable[[], float] = random.random,
    ):
        self.gateway = gateway
        self._sleep = sleep
        self._jitter = jitter
        self._tasks: dict[tuple[Optional[str], str], asyncio.Task] = {}

    async def deliver(self, instance_name: Optional[str], address: str, text: str) -> int:
        """Send all parts of `text`. Returns how many were accepted by the gateway."""
        parts = split_message(text)
        sent = 0
        for index, part in enumerate(parts):
            if index > 0:
                await self._sleep(typing_delay(parts[index - 1], self._jitter))
            ok = await asyncio.to_thread(self.gateway.send_text, instance_name, address, part)
            if not ok:
                logger.error(
                    "Delivery interrupted",
                    extra={"context": {"address": address, "part": index + 1, "parts": len(parts)}},
                )
                break
            sent += 1

        logger.info(f"Delivered {sent}/{len(parts)} parts to {address}")
        return sent

    def schedule(self, instance_name: Optional[str], address: str, text: str) -> asyncio.Task:
        """Queue a delivery behind any delivery still running for the same conversation."""
        key = (instance_name, address)
        previous = self._tasks.get(key)

        async def run() -> int:
            if previous is not None and not previous.done():
                await asyncio.gather(previous, return_exceptions=True)
            return await self.deliver(instance_name, address, text)

        task = asyncio.get_running_loop().create_task(run())
        self._tasks[key] = task
        task.add_done_callback(lambda done: self._forget(key, done))
        return task

    def _forget(self, key, task: asyncio.Task) -> None:
        if self._tasks.get(key) is task:
            del self._tasks[key]
        if not task.cancelled() and task.exception() is not None:
            logger.error("Delivery task failed", extra={"context": {"address": key[1], "error": str(task.exception())}})
