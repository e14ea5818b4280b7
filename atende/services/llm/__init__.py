from atende.services.llm.base import Completion, LLMProvider, ToolCall, UpstreamUnavailableError
from atende.services.llm.openai_provider import OpenAIProvider

__all__ = ["Completion", "LLMProvider", "OpenAIProvider", "ToolCall", "UpstreamUnavailableError"]
