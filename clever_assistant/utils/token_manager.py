"""
Token Manager module.

Provides pre-flight token counting for outbound prompts so a request's
cost can be projected before it is sent.
"""
import logging
from typing import Optional, Dict, Iterable

import tiktoken

logger = logging.getLogger(__name__)


class TokenManager:
    """
    Counts tokens for prompts and conversation histories.

    Uses tiktoken's cl100k_base encoding as an approximation for every
    model; exact counts come from the upstream usage figures after a call.
    """

    ENCODING_NAME = "cl100k_base"

    # Per-message framing overhead (role markers, separators)
    TOKENS_PER_MESSAGE = 4

    # Model context limits
    MODEL_LIMITS = {
        "gemini-pro": 32000,
        "gemini-1.5-pro": 128000,
        "gemini-1.5-flash": 128000,
        "gemini-2.0-flash": 128000,
        "llama3.2:1b": 8192,
    }

    def __init__(self, default_model: str = "gemini-1.5-flash"):
        """
        Initialize token manager.

        Args:
            default_model: Default model for context limits.
        """
        self.default_model = default_model
        self._encoder = None

    @property
    def encoder(self):
        """The tiktoken encoder, created on first use."""
        if self._encoder is None:
            self._encoder = tiktoken.get_encoding(self.ENCODING_NAME)
            logger.info(f"Token manager initialized with tiktoken ({self.ENCODING_NAME})")
        return self._encoder

    def count_tokens(self, text: str) -> int:
        """
        Count tokens in text.

        Args:
            text: Text to count tokens for.

        Returns:
            Token count.
        """
        if not text:
            return 0
        return len(self.encoder.encode(text))

    def count_messages(
        self,
        messages: Iterable[Dict[str, str]],
        system_prompt: Optional[str] = None
    ) -> int:
        """
        Count tokens for a role/content message list plus system prompt.

        Args:
            messages: Dicts with "role" and "content" keys.
            system_prompt: Optional system prompt sent with the messages.

        Returns:
            Estimated prompt token count.
        """
        total = 0
        if system_prompt:
            total += self.count_tokens(system_prompt) + self.TOKENS_PER_MESSAGE
        for message in messages:
            total += self.count_tokens(message.get("content", "")) + self.TOKENS_PER_MESSAGE
        return total

    def get_model_limit(self, model: Optional[str] = None) -> int:
        """Context window of a model in tokens (32000 when unknown)."""
        model = model or self.default_model
        return self.MODEL_LIMITS.get(model, 32000)

