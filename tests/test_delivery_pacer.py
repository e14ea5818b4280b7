import asyncio

import pytest
from helpers import RecordingGateway

from atende.services.delivery_pacer import MAX_PARTS, DeliveryPacer, split_message, typing_delay

FIRST = "A" * 99 + "."
SECOND = "B" * 397 + "."
TWO_PARAGRAPHS = f"{FIRST}\n\n{SECOND}"


def _sentence(n, size=90):
    return f"Frase {n} " + "x" * (size - len(f"Frase {n} ") - 1) + "."


class TestSplitMessage:
    def test_short_text_is_one_part(self):
        assert split_message("Olá! Tudo bem?") == ["Olá! Tudo bem?"]

    def test_empty(self):
        assert split_message("   ") == []

    def test_two_long_paragraphs(self):
        assert len(TWO_PARAGRAPHS) == 500
        assert split_message(TWO_PARAGRAPHS) == [FIRST, SECOND]

    def test_short_paragraphs_are_merged(self):
        text = "Olá, Maria!\n\n" + "C" * 150 + "\n\nAté logo!"

        assert split_message(text) == [text]

    def test_long_single_paragraph_splits_on_sentences(self):
        text = " ".join(_sentence(i) for i in range(6))

        parts = split_message(text)

        assert len(parts) == 2
        assert all(len(part) <= 280 for part in parts)
        assert " ".join(parts) == text

    def test_part_limit(self):
        paragraphs = [chr(ord("a") + i) * 200 for i in range(8)]

        parts = split_message("\n\n".join(paragraphs))

        assert len(parts) == MAX_PARTS
        assert parts[:4] == paragraphs[:4]
        assert parts[4] == "\n\n".join(paragraphs[4:])


class TestTypingDelay:
    def test_proportional_to_length(self):
        assert typing_delay("x" * 100, jitter=lambda: 0) == pytest.approx(2.5)

    def test_minimum(self):
        assert typing_delay("ok", jitter=lambda: 0) == pytest.approx(1.0)

    def test_maximum(self):
        assert typing_delay("x" * 1000, jitter=lambda: 0) == pytest.approx(4.0)

    def test_jitter(self):
        assert typing_delay("x" * 100, jitter=lambda: 1) == pytest.approx(3.3)


class TestDeliveryPacer:
    def _pacer(self, gateway):
        delays = []

        async def fake_sleep(seconds):
            delays.append(seconds)
            await asyncio.sleep(0)

        return DeliveryPacer(gateway, sleep=fake_sleep, jitter=lambda: 0), delays

    def test_sends_parts_in_order_with_typing_delay(self):
        gateway = RecordingGateway()
        pacer, delays = self._pacer(gateway)

        sent = asyncio.run(pacer.deliver("clinica-sorriso", "5511999990000", TWO_PARAGRAPHS))

        assert sent == 2
        assert [text for _, _, text in gateway.sent] == [FIRST, SECOND]
        assert delays == [pytest.approx(2.5)]

    def test_stops_at_first_failure(self):
        gateway = RecordingGateway(ok=False)
        pacer, delays = self._pacer(gateway)

        sent = asyncio.run(pacer.deliver("clinica-sorriso", "5511999990000", TWO_PARAGRAPHS))

        assert sent == 0
        assert len(gateway.sent) == 1
        assert delays == []

    def test_deliveries_to_one_conversation_do_not_interleave(self):
        gateway = RecordingGateway()
        pacer, _ = self._pacer(gateway)

        async def scenario():
            first = pacer.schedule("clinica-sorriso", "5511999990000", TWO_PARAGRAPHS)
            second = pacer.schedule("clinica-sorriso", "5511999990000", "Mais alguma dúvida?")
            return await asyncio.gather(first, second)

        results = asyncio.run(scenario())

        assert results == [2, 1]
        assert [text for _, _, text in gateway.sent] == [FIRST, SECOND, "Mais alguma dúvida?"]
