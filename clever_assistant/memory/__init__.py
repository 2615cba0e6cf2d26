"""
Memory module for conversation management.

Provides the ordered message history of a session and its
JSON snapshot / text transcript storage.
"""

from .conversation_memory import (
    Message,
    ConversationHistory,
    ConversationStore,
    format_transcript
)

__all__ = [
    "Message",
    "ConversationHistory",
    "ConversationStore",
    "format_transcript",
]
