from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Optional


class UpstreamUnavailableError(Exception):
    """Completion service unreachable, timed out or answered with an error status."""


@dataclass
class ToolCall:
    id: str
    name: str
    arguments: Optional[dict] = None  # None when the model sent unparseable JSON
    raw_arguments: str = ""


@dataclass
class Completion:
    text: str = ""
    tool_call: Optional[ToolCall] = None
    model: str = ""
    usage: Optional[dict] = field(default=None, repr=False)

    @property
    def is_tool_call(self) -> bool:
        return self.tool_call is not None


class LLMProvider(ABC):
    """Abstract base class for completion providers."""

    @abstractmethod
    def complete(
        self,
        messages: List[dict],
        tools: Optional[List[dict]] = None,
        model: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: int = 1000,
    ) -> Completion:
        """Return either a tool invocation or free text."""
        pass
