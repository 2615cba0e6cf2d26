"""
Error Handling module.

Defines the error kinds raised or returned by the assistant core and the
result object handed back to callers (CLI, HTTP layer).
"""
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Optional, List, Dict, Any


class ErrorKind(Enum):
    """Typed failure categories returned to callers."""
    CONFIG_INVALID = "config_invalid"
    BUDGET_EXCEEDED = "budget_exceeded"
    UPSTREAM_ERROR = "upstream_error"
    PERSISTENCE_ERROR = "persistence_error"
    UNKNOWN_MODE = "unknown_mode"


class AssistantError(Exception):
    """Base exception for all assistant errors."""
    kind: ErrorKind = ErrorKind.UPSTREAM_ERROR


class ConfigInvalid(AssistantError):
    """Raised at start-up when credentials or parameters are invalid."""
    kind = ErrorKind.CONFIG_INVALID

    def __init__(self, problems: List[str]):
        self.problems = list(problems)
        super().__init__("Invalid configuration:\n" + "\n".join(f"- {p}" for p in self.problems))


class BudgetExceeded(AssistantError):
    """Raised when a request is denied because the budget is spent."""
    kind = ErrorKind.BUDGET_EXCEEDED

    def __init__(self, current_cost: float, budget_limit: float):
        self.current_cost = current_cost
        self.budget_limit = budget_limit
        super().__init__(
            f"Budget exceeded: ${current_cost:.4f} used of ${budget_limit:.2f}"
        )


class UpstreamError(AssistantError):
    """Raised when the remote model call fails."""
    kind = ErrorKind.UPSTREAM_ERROR


class PersistenceError(AssistantError):
    """Raised when a snapshot cannot be written or read."""
    kind = ErrorKind.PERSISTENCE_ERROR


class UnknownMode(AssistantError):
    """Raised when switching to a preset mode that does not exist."""
    kind = ErrorKind.UNKNOWN_MODE

    def __init__(self, mode: str, available: List[str]):
        self.mode = mode
        self.available = list(available)
        super().__init__(
            f"Unknown mode: {mode}. Available modes: {', '.join(self.available)}"
        )


@dataclass(frozen=True)
class Usage:
    """Token usage reported by the upstream model for one call."""
    input_tokens: int
    output_tokens: int

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def to_dict(self) -> Dict[str, int]:
        return {
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "total_tokens": self.total_tokens
        }


@dataclass
class ChatResult:
    """Outcome of a chat request."""
    success: bool
    content: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    from_cache: bool = False
    usage: Optional[Usage] = None
    model: Optional[str] = None
    stop_reason: Optional[str] = None
    request_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def failure(cls, error: AssistantError) -> "ChatResult":
        """Build a failure result from an assistant error."""
        return cls(success=False, error=str(error), error_kind=error.kind)

    def to_dict(self) -> Dict[str, Any]:
        """Convert result to a JSON-friendly dictionary."""
        data = asdict(self)
        data["error_kind"] = self.error_kind.value if self.error_kind else None
        data["usage"] = self.usage.to_dict() if self.usage else None
        return data
