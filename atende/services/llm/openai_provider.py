import json
from typing import List, Optional

import httpx

from atende.logging_config import get_logger
from atende.services.llm.base import Completion, LLMProvider, ToolCall, UpstreamUnavailableError

logger = get_logger("llm.openai")


class OpenAIProvider(LLMProvider):
    """OpenAI chat completions with function tools."""

    def __init__(self, api_key: str, default_model: str = "gpt-4o-mini", timeout_seconds: float = 45.0):
        self.api_key = api_key
        self.default_model = default_model
        self.timeout_seconds = timeout_seconds
        self.base_url = "https://api.openai.com/v1/chat/completions"

    def complete(
        self,
        messages: List[dict],
        tools: Optional[List[dict]] = None,
        model: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: int = 1000,
    ) -> Completion:
        model = model or self.default_model

        payload = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
            "max_completion_tokens": max_tokens,
        }
        if tools:
            payload["tools"] = tools
            payload["tool_choice"] = "auto"

        logger.debug(f"OpenAI request: model={model}, messages_count={len(messages)}, tools={len(tools or [])}")

        try:
            with httpx.Client(timeout=self.timeout_seconds) as client:
                response = client.post(
                    self.base_url,
                    headers={
                        "Authorization": f"Bearer {self.api_key}",
                        "Content-Type": "application/json",
                    },
                    json=payload,
                )
        except httpx.HTTPError as e:
            logger.error(f"OpenAI transport error: {e}")
            raise UpstreamUnavailableError(f"OpenAI unreachable: {e}") from e

        logger.debug(f"OpenAI response status: {response.status_code}")

        if response.status_code != 200:
            logger.error(f"OpenAI error: {response.text}")
            raise UpstreamUnavailableError(f"OpenAI API error: {response.status_code} - {response.text[:200]}")

        data = response.json()
        return self._parse(data, model)

    def _parse(self, data: dict, model: str) -> Completion:
        choices = data.get("choices") or []
        message = choices[0].get("message", {}) if choices else {}

        tool_call = None
        tool_calls = message.get("tool_calls") or []
        if tool_calls:
            if len(tool_calls) > 1:
                logger.info(f"OpenAI returned {len(tool_calls)} tool calls, executing the first")
            call = tool_calls[0]
            function = call.get("function", {})
            raw_arguments = function.get("arguments") or "{}"
            try:
                arguments = json.loads(raw_arguments)
            except json.JSONDecodeError:
                logger.warning(f"Unparseable tool arguments for {function.get('name')}: {raw_arguments[:200]}")
                arguments = None
            if arguments is not None and not isinstance(arguments, dict):
                arguments = None
            tool_call = ToolCall(
                id=call.get("id", ""),
                name=function.get("name", ""),
                arguments=arguments,
                raw_arguments=raw_arguments,
            )

        content = message.get("content") or ""
        logger.debug(f"OpenAI content: {content[:100] if content else 'EMPTY'}")

        return Completion(
            text=content,
            tool_call=tool_call,
            model=data.get("model", model),
            usage=data.get("usage"),
        )
