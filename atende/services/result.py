from dataclasses import dataclass
from typing import Any, Generic, Optional, TypeVar

T = TypeVar("T")


@dataclass
class Result(Generic[T]):
    ok: bool
    value: Optional[T] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    message: Optional[str] = None  # customer-facing text, pt-BR

    @staticmethod
    def success(value: T, message: Optional[str] = None) -> "Result[T]":
        return Result(ok=True, value=value, message=message)

    @staticmethod
    def failure(error: str, code: str = "unknown", message: Optional[str] = None) -> "Result[T]":
        return Result(ok=False, error=error, error_code=code, message=message or error)

    def unwrap_or(self, default: T) -> T:
        return self.value if self.ok else default

    def as_tool_payload(self) -> dict[str, Any]:
        """Structured result handed back to the completion service."""
        payload: dict[str, Any] = {"success": self.ok, "message": self.message}
        if not self.ok:
            payload["error_code"] = self.error_code
        elif isinstance(self.value, dict):
            payload.update(self.value)
        return payload
