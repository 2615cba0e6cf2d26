"""
Chatbot Agent module.

Provides the conversation context of one chat session: message history,
system prompt and sampling parameters, plus the blocking and streaming
chat operations that keep the history consistent on failure.
"""
import logging
import time
import uuid
from typing import Optional, Dict, Any, List, Generator

from .error_handling import ChatResult, Usage, UpstreamError, PersistenceError
from .llm_client import LLMClient, StreamEvent
from ..memory.conversation_memory import ConversationHistory, ConversationStore, Message
from ..utils.config import AssistantConfig

logger = logging.getLogger(__name__)

OVERRIDE_KEYS = ("model", "max_tokens", "temperature")


def generate_session_id() -> str:
    """Generate a session id of the form ``session-<ms>-<random>``."""
    return f"session-{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}"


class ConversationContext:
    """
    Conversation state for one session.

    The history alternates user/assistant turns starting with a user turn:
    a failed or cancelled call removes the user turn it added, and no
    assistant turn is ever appended for it.
    """

    def __init__(
        self,
        config: AssistantConfig,
        client: Optional[LLMClient] = None,
        store: Optional[ConversationStore] = None,
        session_id: Optional[str] = None,
        system_prompt: Optional[str] = None,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None
    ):
        """
        Initialize the conversation context.

        Args:
            config: Assistant configuration.
            client: Remote chat client, defaults to an LLMClient for config.
            store: Snapshot storage, defaults to one over config.data_dir.
            session_id: Optional session id (generated if omitted).
            system_prompt: Optional system prompt.
            model: Model name override. Defaults to config.default_model.
            temperature: Sampling temperature. Defaults to config value.
            max_tokens: Output token cap. Defaults to config value.
        """
        self.config = config
        self.client = client or LLMClient(config)
        self.store = store or ConversationStore(config.data_dir)
        self.session_id = session_id or generate_session_id()
        self.system_prompt = system_prompt
        self.model = model or config.default_model
        self.temperature = config.default_temperature if temperature is None else temperature
        self.max_tokens = max_tokens or config.default_max_tokens
        self.history = ConversationHistory()

        logger.info(f"ConversationContext initialized: session={self.session_id}, "
                   f"model={self.model}")

    def set_system_prompt(self, prompt: Optional[str]) -> None:
        """Set the system prompt."""
        self.system_prompt = prompt
        logger.info(f"System prompt set: {(prompt or '')[:50]}")

    def add_message(self, role: str, content: str) -> Message:
        """Append a message to the history and return it."""
        return self.history.append(role, content)

    def resolve_params(self, overrides: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Effective request parameters, overrides taking precedence.

        Only ``model``, ``max_tokens`` and ``temperature`` can be
        overridden; ``None`` values keep the stored defaults.
        """
        overrides = overrides or {}
        params = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
            "system_prompt": self.system_prompt
        }
        for key in OVERRIDE_KEYS:
            if overrides.get(key) is not None:
                params[key] = overrides[key]
        return params

    def chat(self, text: str, overrides: Optional[Dict[str, Any]] = None) -> ChatResult:
        """
        Send a user message and wait for the reply.

        Args:
            text: The user's message.
            overrides: Optional model/max_tokens/temperature overrides.

        Returns:
            ChatResult; on failure the user turn has been rolled back.
        """
        params = self.resolve_params(overrides)
        self.add_message("user", text)

        try:
            completion = self.client.send(messages=self.history.to_api_messages(), **params)
        except Exception as e:
            self.history.pop_last()
            error = e if isinstance(e, UpstreamError) else UpstreamError(str(e))
            logger.error(f"Error generating response: {error}")
            return ChatResult.failure(error)

        self.add_message("assistant", completion.text)
        logger.debug(f"Generated response for message: {text[:50]}")

        return ChatResult(
            success=True,
            content=completion.text,
            usage=Usage(completion.input_tokens, completion.output_tokens),
            model=completion.model or params["model"],
            stop_reason=completion.stop_reason
        )

    def chat_stream(
        self,
        text: str,
        overrides: Optional[Dict[str, Any]] = None
    ) -> Generator[StreamEvent, None, ChatResult]:
        """
        Send a user message and stream the reply.

        Yields every client event in order, then exactly one terminal
        ``done`` event (carrying the ChatResult) or ``error`` event. The
        final ChatResult is also the generator's return value.

        Closing the generator before the terminal event cancels the
        request: the user turn is removed and no assistant turn is added.
        """
        params = self.resolve_params(overrides)
        self.add_message("user", text)

        parts: List[str] = []
        input_tokens = 0
        output_tokens = 0
        model = params["model"]
        stop_reason = None

        try:
            for event in self.client.stream(messages=self.history.to_api_messages(), **params):
                if event.kind == "delta":
                    parts.append(event.text)
                elif event.kind == "usage":
                    input_tokens += event.input_tokens
                    output_tokens += event.output_tokens
                elif event.kind == "start" and event.model:
                    model = event.model
                elif event.kind == "stop":
                    stop_reason = event.stop_reason
                yield event
        except GeneratorExit:
            self.history.pop_last()
            logger.warning(f"Stream cancelled by consumer: session={self.session_id}")
            raise
        except Exception as e:
            self.history.pop_last()
            error = e if isinstance(e, UpstreamError) else UpstreamError(str(e))
            logger.error(f"Error streaming response: {error}")
            result = ChatResult.failure(error)
            yield StreamEvent(kind="error", error=str(error), result=result)
            return result

        content = "".join(parts)
        self.add_message("assistant", content)

        result = ChatResult(
            success=True,
            content=content,
            usage=Usage(input_tokens, output_tokens),
            model=model,
            stop_reason=stop_reason
        )
        yield StreamEvent(kind="done", result=result)
        return result

    def trim_history(self, max_rounds: int = 5) -> int:
        """Keep only the most recent ``max_rounds`` rounds; returns messages removed."""
        return self.history.trim(max_rounds)

    def clear_history(self) -> None:
        self.history.clear()
        logger.info(f"Conversation history cleared: session={self.session_id}")

    def get_summary(self) -> Dict[str, Any]:
        """Get a summary of the conversation state."""
        return {
            "session_id": self.session_id,
            "message_count": len(self.history),
            "rounds": self.history.rounds,
            "model": self.model,
            "has_system_prompt": bool(self.system_prompt)
        }

    def save(self, filename: Optional[str] = None) -> Optional[str]:
        """
        Save the conversation snapshot.

        Returns:
            The written path, or None if saving failed.
        """
        try:
            return self.store.save_snapshot(
                self.session_id, self.system_prompt, self.model,
                self.history.messages, filename
            )
        except PersistenceError as e:
            logger.error(str(e))
            return None

    def load(self, filename: str) -> bool:
        """
        Replace the session state with a saved snapshot.

        Returns:
            True on success; on failure the current state is left untouched.
        """
        try:
            snapshot = self.store.load_snapshot(filename)
        except PersistenceError as e:
            logger.error(str(e))
            return False

        self.session_id = snapshot["session_id"]
        self.system_prompt = snapshot["system_prompt"]
        self.model = snapshot["model"]
        self.history.replace(snapshot["messages"])
        return True

    def export_to_text(self, filename: Optional[str] = None) -> Optional[str]:
        """Write a readable transcript; returns the path or None on failure."""
        try:
            return self.store.export_to_text(
                self.session_id, self.system_prompt, self.model,
                self.history.messages, filename
            )
        except PersistenceError as e:
            logger.error(str(e))
            return None

    def list_saved_conversations(self) -> List[Dict[str, Any]]:
        return self.store.list_saved()
