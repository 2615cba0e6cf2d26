"""
Orchestrator module.

Wires the response cache, cost controller and conversation context around
a single outbound model call, and exposes the assistant facade and the
session registry used by the CLI and any network-facing layer.

Request flow: Key Derive → Cache Check → Budget Gate → Remote Call →
Record and Cache.
"""
import logging
import threading
from typing import Optional, Dict, Any, List, Iterator

from .chatbot import ConversationContext
from .error_handling import BudgetExceeded, ChatResult
from .llm_client import LLMClient, StreamEvent
from .presets import AssistantMode, get_preset
from ..utils.cache import ResponseCache
from ..utils.config import AssistantConfig
from ..utils.cost_controller import CostController, CostEstimate
from ..utils.token_manager import TokenManager

logger = logging.getLogger(__name__)


class RequestPipeline:
    """
    Runs one request through cache, budget gate and remote call.

    A cache hit never touches the cost controller or the remote model but
    still appends both turns to the conversation. A request denied by the
    budget gate mutates nothing.
    """

    def __init__(
        self,
        context: ConversationContext,
        cost_controller: CostController,
        cache: ResponseCache,
        token_manager: Optional[TokenManager] = None
    ):
        self.context = context
        self.cost_controller = cost_controller
        self.cache = cache
        self.token_manager = token_manager or TokenManager(context.model)

    def _prepare(self, text: str, overrides: Optional[Dict[str, Any]]):
        overrides = dict(overrides or {})
        use_cache = not overrides.pop("disable_cache", False)
        params = self.context.resolve_params(overrides)
        key = ResponseCache.derive_key(
            text,
            params["model"],
            params["max_tokens"],
            params["temperature"],
            params["system_prompt"]
        )
        return overrides, use_cache, params, key

    def _cached_result(self, key: str, params: Dict[str, Any]) -> Optional[ChatResult]:
        cached = self.cache.get(key)
        if cached is None:
            return None
        return ChatResult(
            success=True,
            content=cached,
            from_cache=True,
            model=params["model"],
            metadata={"cache_key": key}
        )

    def _commit_cached(self, text: str, result: ChatResult) -> None:
        self.context.add_message("user", text)
        self.context.add_message("assistant", result.content)

    def _budget_denial(self) -> Optional[ChatResult]:
        status = self.cost_controller.check_budget()
        if not status.is_over_budget:
            return None
        error = BudgetExceeded(status.current_cost, status.budget_limit)
        logger.warning(f"Request denied: {error}")
        return ChatResult.failure(error)

    def _record_and_cache(
        self,
        result: ChatResult,
        key: str,
        params: Dict[str, Any],
        use_cache: bool
    ) -> None:
        usage = result.usage
        record = self.cost_controller.record_call(
            usage.input_tokens if usage else 0,
            usage.output_tokens if usage else 0,
            params["model"]
        )
        result.request_id = record.request_id
        result.metadata["cost"] = record.cost
        if use_cache:
            self.cache.set(key, result.content)

    def send_message(self, text: str, overrides: Optional[Dict[str, Any]] = None) -> ChatResult:
        """
        Send a message through the full request pipeline.

        Args:
            text: The user's message.
            overrides: Optional model/max_tokens/temperature overrides and
                ``disable_cache`` to bypass the cache for this request.

        Returns:
            ChatResult. Budget denials and upstream failures are returned,
            not raised.
        """
        overrides, use_cache, params, key = self._prepare(text, overrides)

        if use_cache:
            cached = self._cached_result(key, params)
            if cached is not None:
                self._commit_cached(text, cached)
                return cached

        denial = self._budget_denial()
        if denial is not None:
            return denial

        result = self.context.chat(text, overrides)
        if result.success:
            self._record_and_cache(result, key, params, use_cache)
        return result

    def stream_message(
        self,
        text: str,
        overrides: Optional[Dict[str, Any]] = None
    ) -> Iterator[StreamEvent]:
        """
        Streaming variant of send_message.

        Yields:
            StreamEvents ending in one terminal ``done`` or ``error`` event.
            A cache hit yields a single ``delta`` then ``done``; a budget
            denial yields only ``error``. Cost and cache are updated before
            ``done`` is delivered. Closing the iterator early cancels the
            request without committing an assistant turn.
        """
        overrides, use_cache, params, key = self._prepare(text, overrides)

        if use_cache:
            cached = self._cached_result(key, params)
            if cached is not None:
                yield StreamEvent(kind="delta", text=cached.content)
                self._commit_cached(text, cached)
                yield StreamEvent(kind="done", result=cached)
                return

        denial = self._budget_denial()
        if denial is not None:
            yield StreamEvent(kind="error", error=denial.error, result=denial)
            return

        events = self.context.chat_stream(text, overrides)
        try:
            for event in events:
                if event.kind == "done":
                    self._record_and_cache(event.result, key, params, use_cache)
                yield event
        finally:
            events.close()

    def estimate_request(
        self,
        text: str,
        overrides: Optional[Dict[str, Any]] = None
    ) -> CostEstimate:
        """
        Project the cost of sending ``text`` without sending it.

        The prompt (system prompt, history and new message) is counted with
        the token manager; ``max_tokens`` is the output estimate. The
        estimate is flagged when prompt plus output would not fit the
        model's context window.
        """
        overrides = dict(overrides or {})
        overrides.pop("disable_cache", None)
        params = self.context.resolve_params(overrides)
        messages = self.context.history.to_api_messages() + [{"role": "user", "content": text}]
        input_tokens = self.token_manager.count_messages(messages, params["system_prompt"])
        estimate = self.cost_controller.estimate(
            input_tokens,
            params["max_tokens"],
            params["model"],
            context_limit=self.token_manager.get_model_limit(params["model"])
        )
        if estimate.exceeds_context_window:
            logger.warning(f"Request of {estimate.estimated_total_tokens} tokens exceeds "
                           f"the {estimate.context_limit} token context of {params['model']}")
        return estimate


class CleverAssistant:
    """
    Assistant facade for one session.

    Owns a conversation context and a cost controller, uses a (possibly
    shared) response cache, and applies preset modes.
    """

    def __init__(
        self,
        config: AssistantConfig,
        client: Optional[LLMClient] = None,
        cache: Optional[ResponseCache] = None,
        mode: Optional[str] = None,
        session_id: Optional[str] = None,
        token_manager: Optional[TokenManager] = None
    ):
        """
        Initialize the assistant.

        Args:
            config: Assistant configuration.
            client: Remote chat client (defaults to an LLMClient).
            cache: Shared response cache. When None a private one is built
                from config and owned by this assistant.
            mode: Initial preset id (defaults to config.default_mode).
            session_id: Optional session id.
            token_manager: Optional token manager for estimates.

        Raises:
            UnknownMode: If the initial mode does not exist.
        """
        self.config = config
        self.context = ConversationContext(config, client=client, session_id=session_id)
        self.cost_controller = CostController(config)
        self.owns_cache = cache is None
        self.cache = cache if cache is not None else ResponseCache.from_config(config)
        self.pipeline = RequestPipeline(self.context, self.cost_controller, self.cache, token_manager)

        self.current_mode = get_preset(mode or config.default_mode)
        self._apply_preset(self.current_mode)

    @property
    def session_id(self) -> str:
        return self.context.session_id

    def _apply_preset(self, preset: AssistantMode) -> None:
        self.context.set_system_prompt(preset.system_prompt)
        self.context.temperature = preset.temperature
        self.context.max_tokens = preset.max_tokens
        self.current_mode = preset
        logger.info(f"Mode applied: {preset.display_name}")

    def send_message(self, text: str, overrides: Optional[Dict[str, Any]] = None) -> ChatResult:
        """Send a message; see RequestPipeline.send_message."""
        return self.pipeline.send_message(text, overrides)

    def stream_message(
        self,
        text: str,
        overrides: Optional[Dict[str, Any]] = None
    ) -> Iterator[StreamEvent]:
        """Stream a message; see RequestPipeline.stream_message."""
        return self.pipeline.stream_message(text, overrides)

    def estimate_request(self, text: str, overrides: Optional[Dict[str, Any]] = None) -> CostEstimate:
        return self.pipeline.estimate_request(text, overrides)

    def get_available_modes(self) -> List[Dict[str, Any]]:
        return [mode.to_dict() for mode in AssistantMode]

    def get_status(self) -> Dict[str, Any]:
        """Get a read-only status snapshot."""
        return {
            "mode": self.current_mode.mode_id,
            "mode_name": self.current_mode.display_name,
            "conversation": self.context.get_summary(),
            "tokens": self.cost_controller.get_summary(),
            "budget": self.cost_controller.check_budget().to_dict(),
            "cache": self.cache.get_stats()
        }

    def get_detailed_report(self) -> Dict[str, Any]:
        """Get the full report: conversation, tokens, cache and modes."""
        return {
            "conversation": self.context.get_summary(),
            "tokens": self.cost_controller.get_report(),
            "cache": self.cache.get_stats(),
            "available_modes": self.get_available_modes()
        }

    def switch_mode(self, mode_id: str) -> AssistantMode:
        """
        Switch to another preset mode.

        The current conversation is saved, then the history is cleared and
        the preset applied.

        Raises:
            UnknownMode: If the mode does not exist; nothing is changed.
        """
        preset = get_preset(mode_id)
        self.context.save()
        self.context.clear_history()
        self._apply_preset(preset)
        return preset

    def clear_history(self) -> None:
        self.context.clear_history()

    def reset(self) -> None:
        """
        Clear the history and the cost ledger.

        The cache is cleared only when this assistant owns it; a shared
        cache is reset through SessionRegistry.clear_cache.
        """
        self.context.clear_history()
        self.cost_controller.reset()
        if self.owns_cache:
            self.cache.clear()
        logger.info(f"Session reset: {self.session_id}")

    def save(self) -> Dict[str, Optional[str]]:
        """
        Save the conversation snapshot and export the call records.

        Returns:
            Paths of the written files (None where writing failed).
        """
        return {
            "conversation": self.context.save(),
            "tokens": self.cost_controller.export_to_csv()
        }

    def get_help(self) -> Dict[str, Any]:
        return {
            "commands": [
                {"command": "/help", "description": "Show this help"},
                {"command": "/status", "description": "Show the current status"},
                {"command": "/mode", "description": "List available modes"},
                {"command": "/mode <name>", "description": "Switch mode"},
                {"command": "/clear", "description": "Clear the conversation history"},
                {"command": "/save", "description": "Save the conversation"},
                {"command": "/report", "description": "Show the detailed report"},
                {"command": "/reset", "description": "Reset the session"},
                {"command": "/quit", "description": "Exit"}
            ],
            "modes": self.get_available_modes()
        }


class SessionRegistry:
    """
    Holds one assistant per session, all sharing a single response cache.

    Each session gets its own conversation context and cost controller.
    Registry access is guarded by a lock; the shared cache serializes its
    own operations.
    """

    def __init__(
        self,
        config: AssistantConfig,
        client: Optional[LLMClient] = None,
        cache: Optional[ResponseCache] = None
    ):
        self.config = config
        self.client = client
        self.cache = cache if cache is not None else ResponseCache.from_config(config)
        self._sessions: Dict[str, CleverAssistant] = {}
        self._lock = threading.Lock()

    def get_or_create(self, session_id: Optional[str] = None, mode: Optional[str] = None) -> CleverAssistant:
        """
        Return the assistant for a session, creating it if needed.

        Args:
            session_id: Session id; a new one is generated when omitted.
            mode: Preset id for a newly created session.
        """
        with self._lock:
            if session_id and session_id in self._sessions:
                return self._sessions[session_id]

            assistant = CleverAssistant(
                self.config,
                client=self.client,
                cache=self.cache,
                mode=mode,
                session_id=session_id
            )
            self._sessions[assistant.session_id] = assistant
            logger.info(f"Session created: {assistant.session_id}")
            return assistant

    def get(self, session_id: str) -> Optional[CleverAssistant]:
        with self._lock:
            return self._sessions.get(session_id)

    def remove(self, session_id: str) -> bool:
        with self._lock:
            if session_id not in self._sessions:
                return False
            del self._sessions[session_id]
        logger.info(f"Session removed: {session_id}")
        return True

    def list_sessions(self) -> List[str]:
        with self._lock:
            return list(self._sessions.keys())

    def clear_cache(self) -> None:
        """Clear the cache shared by every session."""
        self.cache.clear()
        logger.info(f"Shared cache cleared for {len(self)} sessions")

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)


def create_assistant(
    config: AssistantConfig,
    mode: Optional[str] = None,
    client: Optional[LLMClient] = None
) -> CleverAssistant:
    """Create an assistant with its own cache built from the config."""
    return CleverAssistant(config, client=client, mode=mode)
