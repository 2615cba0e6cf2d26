"""
Preset assistant modes.

Each mode bundles a system prompt with sampling parameters. The set is
closed: unknown ids are rejected with the list of valid ones.
"""
from enum import Enum
from typing import Dict, Any, List

from .error_handling import UnknownMode


class AssistantMode(Enum):
    """Available assistant presets."""
    CODING = (
        "coding",
        "Coding Assistant",
        "You are a professional programming assistant fluent in many languages. "
        "Help the user understand code, debug problems and write new features. "
        "Provide clear, commented code examples.",
        0.3,
        1500,
    )
    LEARNING = (
        "learning",
        "Learning Assistant",
        "You are a friendly learning assistant who explains complex concepts in "
        "simple terms. Use examples, analogies and a step-by-step approach.",
        0.7,
        1000,
    )
    WRITING = (
        "writing",
        "Writing Assistant",
        "You are a professional writing assistant. Help the user improve the "
        "grammar, structure and style of their text with constructive feedback.",
        0.8,
        1200,
    )
    TRANSLATOR = (
        "translator",
        "Translation Assistant",
        "You are a professional translator between Chinese and English. Provide "
        "accurate, natural translations and explain context when needed.",
        0.2,
        800,
    )

    def __init__(
        self,
        mode_id: str,
        display_name: str,
        system_prompt: str,
        temperature: float,
        max_tokens: int
    ):
        self.mode_id = mode_id
        self.display_name = display_name
        self.system_prompt = system_prompt
        self.temperature = temperature
        self.max_tokens = max_tokens

    @classmethod
    def ids(cls) -> List[str]:
        return [mode.mode_id for mode in cls]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.mode_id,
            "name": self.display_name,
            "system_prompt": self.system_prompt,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens
        }


def get_preset(mode_id: str) -> AssistantMode:
    """
    Look up a preset by id.

    Raises:
        UnknownMode: If no preset has this id.
    """
    for mode in AssistantMode:
        if mode.mode_id == mode_id:
            return mode
    raise UnknownMode(mode_id, AssistantMode.ids())
