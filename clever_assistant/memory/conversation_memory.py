"""
Conversation Memory module.

Implements the ordered message history of a conversation and its durable
JSON snapshot / plain-text transcript on disk.
"""
import json
import logging
import os
import time
from datetime import datetime
from typing import List, Dict, Optional, Any, Iterator, Callable
from dataclasses import dataclass, field

from ..agents.error_handling import PersistenceError

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = 1
ROLES = ("user", "assistant")


@dataclass(frozen=True)
class Message:
    """Represents a single message in conversation history."""
    role: str  # 'user' or 'assistant'
    content: str
    created_at: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        """Convert message to dictionary."""
        return {
            "role": self.role,
            "content": self.content,
            "created_at": self.created_at
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Message":
        """Create message from dictionary."""
        role = data["role"]
        if role not in ROLES:
            raise ValueError(f"Invalid message role: {role}")
        return cls(
            role=role,
            content=data["content"],
            created_at=float(data.get("created_at", time.time()))
        )


def check_turn_order(messages: List[Message]) -> None:
    """
    Require complete user/assistant rounds starting with a user turn.

    Raises:
        ValueError: If the roles do not alternate or a round is incomplete.
    """
    for index, message in enumerate(messages):
        expected = ROLES[index % 2]
        if message.role != expected:
            raise ValueError(f"Message {index} has role {message.role}, expected {expected}")
    if len(messages) % 2:
        raise ValueError("Conversation ends with an unanswered user message")


class ConversationHistory:
    """
    Ordered, append-only sequence of messages.

    Messages are never reordered or mutated; the only removals are the
    rollback of the last message, trimming of old rounds and clearing.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._messages: List[Message] = []
        self._clock = clock

    def append(self, role: str, content: str) -> Message:
        """
        Append a message.

        Args:
            role: 'user' or 'assistant'.
            content: Message text.

        Returns:
            The created Message.

        Raises:
            ValueError: If the role is unknown.
        """
        if role not in ROLES:
            raise ValueError(f"Invalid message role: {role}")
        message = Message(role=role, content=content, created_at=self._clock())
        self._messages.append(message)
        logger.debug(f"Added {role} message: {content[:50]}")
        return message

    def pop_last(self) -> Optional[Message]:
        """Remove and return the newest message, if any."""
        if not self._messages:
            return None
        return self._messages.pop()

    def trim(self, max_rounds: int) -> int:
        """
        Keep only the last ``max_rounds`` user/assistant rounds.

        Returns:
            Number of messages removed.
        """
        max_messages = max(max_rounds, 0) * 2
        if len(self._messages) <= max_messages:
            return 0
        removed = len(self._messages) - max_messages
        self._messages = self._messages[removed:]
        logger.warning(f"History trimmed: kept the last {max_rounds} rounds")
        return removed

    def clear(self) -> None:
        self._messages = []

    def replace(self, messages: List[Message]) -> None:
        """Swap in a whole history (used when loading a snapshot)."""
        self._messages = list(messages)

    @property
    def messages(self) -> List[Message]:
        return list(self._messages)

    @property
    def rounds(self) -> int:
        return len(self._messages) // 2

    def to_api_messages(self) -> List[Dict[str, str]]:
        """Role/content pairs in chronological order, for the remote call."""
        return [{"role": m.role, "content": m.content} for m in self._messages]

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[Message]:
        return iter(list(self._messages))


class ConversationStore:
    """
    File storage for conversation snapshots and transcripts.

    Snapshots are versioned JSON documents named
    ``conversation-<session_id>.json`` inside the data directory.
    """

    def __init__(self, data_dir: str = "./data"):
        """
        Initialize conversation store.

        Args:
            data_dir: Directory holding snapshots and transcripts.
        """
        self.data_dir = data_dir

    def path_for(self, filename: str) -> str:
        return os.path.join(self.data_dir, filename)

    def save_snapshot(
        self,
        session_id: str,
        system_prompt: Optional[str],
        model: str,
        messages: List[Message],
        filename: Optional[str] = None
    ) -> str:
        """
        Write a conversation snapshot.

        Returns:
            Path of the written file.

        Raises:
            PersistenceError: If the file cannot be written.
        """
        filename = filename or f"conversation-{session_id}.json"
        filepath = self.path_for(filename)
        data = {
            "version": SNAPSHOT_VERSION,
            "session_id": session_id,
            "system_prompt": system_prompt,
            "model": model,
            "saved_at": datetime.now().isoformat(),
            "messages": [m.to_dict() for m in messages]
        }

        try:
            os.makedirs(self.data_dir, exist_ok=True)
            with open(filepath, "w", encoding="utf-8") as f:
                json.dump(data, f, ensure_ascii=False, indent=2)
        except OSError as e:
            raise PersistenceError(f"Failed to save conversation to {filepath}: {e}") from e

        logger.info(f"Conversation saved to {filepath}")
        return filepath

    def load_snapshot(self, filename: str) -> Dict[str, Any]:
        """
        Read a conversation snapshot.

        Returns:
            Dict with session_id, system_prompt, model and messages
            (as Message objects).

        Raises:
            PersistenceError: If the file is missing, unreadable or malformed.
        """
        filepath = self.path_for(filename)
        try:
            with open(filepath, "r", encoding="utf-8") as f:
                data = json.load(f)
            version = data.get("version", SNAPSHOT_VERSION)
            if version != SNAPSHOT_VERSION:
                raise PersistenceError(f"Unsupported conversation snapshot version: {version}")
            snapshot = {
                "session_id": data["session_id"],
                "system_prompt": data.get("system_prompt"),
                "model": data["model"],
                "messages": [Message.from_dict(m) for m in data.get("messages", [])]
            }
            check_turn_order(snapshot["messages"])
        except PersistenceError:
            raise
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
            raise PersistenceError(f"Failed to load conversation from {filepath}: {e}") from e

        logger.info(f"Conversation loaded from {filepath}")
        return snapshot

    def export_to_text(
        self,
        session_id: str,
        system_prompt: Optional[str],
        model: str,
        messages: List[Message],
        filename: Optional[str] = None
    ) -> str:
        """
        Write a human-readable transcript, oldest message first.

        Returns:
            Path of the written file.

        Raises:
            PersistenceError: If the file cannot be written.
        """
        filename = filename or f"conversation-{session_id}.txt"
        filepath = self.path_for(filename)
        text = format_transcript(session_id, system_prompt, model, messages)

        try:
            os.makedirs(self.data_dir, exist_ok=True)
            with open(filepath, "w", encoding="utf-8") as f:
                f.write(text)
        except OSError as e:
            raise PersistenceError(f"Failed to export conversation to {filepath}: {e}") from e

        logger.info(f"Conversation exported to {filepath}")
        return filepath

    def list_saved(self) -> List[Dict[str, Any]]:
        """List saved conversation snapshots with size and modification time."""
        if not os.path.isdir(self.data_dir):
            return []

        saved = []
        try:
            for name in sorted(os.listdir(self.data_dir)):
                if not (name.startswith("conversation-") and name.endswith(".json")):
                    continue
                stat = os.stat(self.path_for(name))
                saved.append({
                    "filename": name,
                    "size": stat.st_size,
                    "modified": datetime.fromtimestamp(stat.st_mtime).isoformat()
                })
        except OSError as e:
            logger.error(f"Failed to list saved conversations: {e}")
            return []
        return saved


def format_transcript(
    session_id: str,
    system_prompt: Optional[str],
    model: str,
    messages: List[Message]
) -> str:
    """Render a conversation as plain text with per-message timestamps."""
    rule = "=" * 60
    lines = [
        rule,
        f"Conversation - {session_id}",
        f"Model: {model}",
        f"System prompt: {system_prompt or 'none'}",
        f"Exported: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}",
        rule,
        ""
    ]
    for message in messages:
        stamp = datetime.fromtimestamp(message.created_at).strftime("%Y-%m-%d %H:%M:%S")
        label = "User" if message.role == "user" else "Assistant"
        lines.append(f"[{stamp}] {label}")
        lines.append(message.content)
        lines.append("")
    return "\n".join(lines)
