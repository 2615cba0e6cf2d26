"""
Clever Assistant: a budget-aware chat client core with conversation
history, response caching and preset modes.
"""

from .agents.error_handling import (
    AssistantError,
    BudgetExceeded,
    ChatResult,
    ConfigInvalid,
    ErrorKind,
    PersistenceError,
    UnknownMode,
    UpstreamError,
    Usage
)
from .agents.presets import AssistantMode, get_preset
from .agents.llm_client import LLMClient, CompletionResult, StreamEvent
from .agents.chatbot import ConversationContext
from .agents.orchestrator import (
    CleverAssistant,
    RequestPipeline,
    SessionRegistry,
    create_assistant
)
from .utils.config import AssistantConfig, load_config, setup_logging
from .utils.cache import ResponseCache
from .utils.cost_controller import CostController

__version__ = "1.0.0"

__all__ = [
    "AssistantError",
    "BudgetExceeded",
    "ChatResult",
    "ConfigInvalid",
    "ErrorKind",
    "PersistenceError",
    "UnknownMode",
    "UpstreamError",
    "Usage",
    "AssistantMode",
    "get_preset",
    "LLMClient",
    "CompletionResult",
    "StreamEvent",
    "ConversationContext",
    "CleverAssistant",
    "RequestPipeline",
    "SessionRegistry",
    "create_assistant",
    "AssistantConfig",
    "load_config",
    "setup_logging",
    "ResponseCache",
    "CostController",
]
