"""
LLM Client module.

Wraps the LangChain chat models behind a small blocking/streaming
interface that reports text and token usage.
"""
import logging
import threading
from collections import OrderedDict
from dataclasses import dataclass
from typing import Optional, List, Dict, Any, Iterator, Tuple

from langchain_google_genai import ChatGoogleGenerativeAI
from langchain_ollama import ChatOllama
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage

from .error_handling import ChatResult, UpstreamError
from ..utils.config import AssistantConfig

logger = logging.getLogger(__name__)

MAX_CACHED_MODELS = 8


@dataclass
class CompletionResult:
    """Text and usage returned by one blocking call."""
    text: str
    input_tokens: int
    output_tokens: int
    stop_reason: Optional[str] = None
    model: Optional[str] = None


@dataclass(frozen=True)
class StreamEvent:
    """
    One event of a streamed response.

    Kinds, in order: ``start``, any number of ``delta`` and ``usage``,
    ``stop``. Consumers above the client additionally see one terminal
    ``done`` (carrying the final ChatResult) or ``error`` event.
    Usage events carry increments that the consumer sums.
    """
    kind: str
    text: str = ""
    input_tokens: int = 0
    output_tokens: int = 0
    stop_reason: Optional[str] = None
    model: Optional[str] = None
    error: Optional[str] = None
    result: Optional[ChatResult] = None

    @property
    def is_terminal(self) -> bool:
        return self.kind in ("done", "error")

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"type": self.kind}
        if self.kind == "delta":
            data["content"] = self.text
        elif self.kind == "usage":
            data["input_tokens"] = self.input_tokens
            data["output_tokens"] = self.output_tokens
        elif self.kind == "start":
            data["model"] = self.model
        elif self.kind == "stop":
            data["stop_reason"] = self.stop_reason
        elif self.kind == "error":
            data["error"] = self.error
        if self.result is not None:
            data["result"] = self.result.to_dict()
        return data


def _content_text(content: Any) -> str:
    """Flatten a LangChain message content (str or list of parts) to text."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for part in content:
            if isinstance(part, str):
                parts.append(part)
            elif isinstance(part, dict) and part.get("type") == "text":
                parts.append(part.get("text", ""))
        return "".join(parts)
    return str(content) if content else ""


def _usage(message: BaseMessage) -> Tuple[int, int]:
    usage = getattr(message, "usage_metadata", None) or {}
    return int(usage.get("input_tokens", 0)), int(usage.get("output_tokens", 0))


def _stop_reason(metadata: Dict[str, Any]) -> Optional[str]:
    # Gemini reports finish_reason, Ollama done_reason
    reason = metadata.get("finish_reason") or metadata.get("done_reason")
    return str(reason) if reason else None


class LLMClient:
    """
    Remote chat-completion client.

    Uses Google's Gemini models, or a local Ollama model when
    ``use_local`` is set in the configuration. A chat model is built per
    distinct (model, temperature, max_tokens) combination and reused;
    only the ``max_models`` most recently used are kept.
    """

    def __init__(self, config: AssistantConfig, max_models: int = MAX_CACHED_MODELS):
        """
        Initialize the client.

        Args:
            config: Assistant configuration (credentials and endpoints).
            max_models: How many built chat models to keep.
        """
        self.config = config
        self.max_models = max_models
        self._models: OrderedDict[Tuple[str, Optional[float], int], Any] = OrderedDict()
        self._models_lock = threading.Lock()

        logger.info(f"LLMClient initialized: "
                   f"{'local ' + config.ollama_base_url if config.use_local else 'Gemini API'}")

    def _create_chat_model(self, model: str, temperature: Optional[float], max_tokens: int):
        if self.config.use_local:
            logger.info(f"Using local LLM: {model}")
            return ChatOllama(
                model=model,
                base_url=self.config.ollama_base_url,
                temperature=temperature,
                num_predict=max_tokens
            )
        return ChatGoogleGenerativeAI(
            model=model,
            google_api_key=self.config.google_api_key,
            temperature=temperature,
            max_output_tokens=max_tokens
        )

    def get_chat_model(self, model: str, temperature: Optional[float], max_tokens: int):
        """Return the (cached) LangChain chat model for these settings."""
        cache_key = (model, temperature, max_tokens)
        with self._models_lock:
            if cache_key in self._models:
                self._models.move_to_end(cache_key)
                return self._models[cache_key]

            chat_model = self._create_chat_model(model, temperature, max_tokens)
            self._models[cache_key] = chat_model
            while len(self._models) > self.max_models:
                dropped, _ = self._models.popitem(last=False)
                logger.debug(f"Chat model dropped: {dropped}")
            return chat_model

    @staticmethod
    def build_messages(
        messages: List[Dict[str, str]],
        system_prompt: Optional[str] = None
    ) -> List[BaseMessage]:
        """Convert role/content dicts to LangChain messages."""
        converted: List[BaseMessage] = []
        if system_prompt:
            converted.append(SystemMessage(content=system_prompt))
        for message in messages:
            if message["role"] == "user":
                converted.append(HumanMessage(content=message["content"]))
            else:
                converted.append(AIMessage(content=message["content"]))
        return converted

    def send(
        self,
        messages: List[Dict[str, str]],
        model: str,
        max_tokens: int,
        temperature: Optional[float] = None,
        system_prompt: Optional[str] = None
    ) -> CompletionResult:
        """
        Issue a blocking chat call.

        Args:
            messages: Conversation so far, oldest first, ending with the user turn.
            model: Model name.
            max_tokens: Output token cap.
            temperature: Sampling temperature.
            system_prompt: Optional system prompt.

        Returns:
            CompletionResult with text and usage.

        Raises:
            UpstreamError: If the remote call fails.
        """
        try:
            llm = self.get_chat_model(model, temperature, max_tokens)
            response = llm.invoke(self.build_messages(messages, system_prompt))
        except Exception as e:
            raise UpstreamError(str(e) or e.__class__.__name__) from e

        input_tokens, output_tokens = _usage(response)
        metadata = getattr(response, "response_metadata", None) or {}

        return CompletionResult(
            text=_content_text(response.content),
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            stop_reason=_stop_reason(metadata),
            model=metadata.get("model_name") or metadata.get("model") or model
        )

    def stream(
        self,
        messages: List[Dict[str, str]],
        model: str,
        max_tokens: int,
        temperature: Optional[float] = None,
        system_prompt: Optional[str] = None
    ) -> Iterator[StreamEvent]:
        """
        Issue a streaming chat call.

        Yields:
            ``start``, then ``delta``/``usage`` events as chunks arrive,
            then ``stop``.

        Raises:
            UpstreamError: If the remote call fails at any point.
        """
        yield StreamEvent(kind="start", model=model)

        stop_reason = None
        try:
            llm = self.get_chat_model(model, temperature, max_tokens)
            for chunk in llm.stream(self.build_messages(messages, system_prompt)):
                text = _content_text(chunk.content)
                if text:
                    yield StreamEvent(kind="delta", text=text)

                input_tokens, output_tokens = _usage(chunk)
                if input_tokens or output_tokens:
                    yield StreamEvent(
                        kind="usage",
                        input_tokens=input_tokens,
                        output_tokens=output_tokens
                    )

                metadata = getattr(chunk, "response_metadata", None) or {}
                stop_reason = _stop_reason(metadata) or stop_reason
        except Exception as e:
            raise UpstreamError(str(e) or e.__class__.__name__) from e

        yield StreamEvent(kind="stop", stop_reason=stop_reason)
