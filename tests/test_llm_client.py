"""
Unit tests for the LLM client.

LangChain chat models are patched; responses are real langchain_core
message objects so metadata handling is exercised.
"""
import pytest
import os
from unittest.mock import patch, MagicMock
from langchain_core.messages import AIMessage, AIMessageChunk, HumanMessage, SystemMessage

os.environ["GOOGLE_API_KEY"] = "test_api_key"


MESSAGES = [{"role": "user", "content": "Hello"}]


class TestBuildMessages:
    """Tests for message conversion."""

    def test_roles_are_mapped(self):
        from clever_assistant.agents.llm_client import LLMClient

        converted = LLMClient.build_messages(
            [{"role": "user", "content": "q"}, {"role": "assistant", "content": "a"}],
            system_prompt="Be nice"
        )
        assert isinstance(converted[0], SystemMessage)
        assert isinstance(converted[1], HumanMessage)
        assert isinstance(converted[2], AIMessage)
        assert converted[2].content == "a"

    def test_no_system_prompt(self):
        from clever_assistant.agents.llm_client import LLMClient

        converted = LLMClient.build_messages(MESSAGES)
        assert len(converted) == 1


class TestModelCreation:
    """Tests for chat model construction."""

    @patch("clever_assistant.agents.llm_client.ChatGoogleGenerativeAI")
    def test_gemini_model(self, mock_gemini, config):
        from clever_assistant.agents.llm_client import LLMClient

        client = LLMClient(config)
        client.get_chat_model("gemini-1.5-flash", 0.3, 500)

        mock_gemini.assert_called_once_with(
            model="gemini-1.5-flash",
            google_api_key="test_api_key",
            temperature=0.3,
            max_output_tokens=500
        )

    @patch("clever_assistant.agents.llm_client.ChatOllama")
    def test_local_model(self, mock_ollama, make_config):
        from clever_assistant.agents.llm_client import LLMClient

        config = make_config(use_local=True, default_model="llama3.2:1b")
        LLMClient(config).get_chat_model("llama3.2:1b", 0.7, 256)

        mock_ollama.assert_called_once_with(
            model="llama3.2:1b",
            base_url="http://localhost:11434",
            temperature=0.7,
            num_predict=256
        )

    @patch("clever_assistant.agents.llm_client.ChatGoogleGenerativeAI")
    def test_models_are_reused(self, mock_gemini, config):
        from clever_assistant.agents.llm_client import LLMClient

        client = LLMClient(config)
        client.get_chat_model("gemini-1.5-flash", 0.3, 500)
        client.get_chat_model("gemini-1.5-flash", 0.3, 500)
        client.get_chat_model("gemini-1.5-flash", 0.9, 500)

        assert mock_gemini.call_count == 2

    @patch("clever_assistant.agents.llm_client.ChatGoogleGenerativeAI")
    def test_model_pool_is_bounded(self, mock_gemini, config):
        """Only the most recently used models are kept."""
        from clever_assistant.agents.llm_client import LLMClient

        client = LLMClient(config, max_models=2)
        client.get_chat_model("gemini-1.5-flash", 0.1, 500)
        client.get_chat_model("gemini-1.5-flash", 0.2, 500)
        client.get_chat_model("gemini-1.5-flash", 0.1, 500)
        client.get_chat_model("gemini-1.5-flash", 0.3, 500)

        assert len(client._models) == 2
        assert list(client._models) == [
            ("gemini-1.5-flash", 0.1, 500),
            ("gemini-1.5-flash", 0.3, 500),
        ]

        client.get_chat_model("gemini-1.5-flash", 0.2, 500)
        assert mock_gemini.call_count == 4


class TestSend:
    """Tests for the blocking call."""

    @patch("clever_assistant.agents.llm_client.ChatGoogleGenerativeAI")
    def test_send_reports_usage(self, mock_gemini, config):
        from clever_assistant.agents.llm_client import LLMClient

        mock_gemini.return_value.invoke.return_value = AIMessage(
            content="Hi there",
            usage_metadata={"input_tokens": 11, "output_tokens": 4, "total_tokens": 15},
            response_metadata={"finish_reason": "STOP", "model_name": "gemini-1.5-flash"}
        )

        result = LLMClient(config).send(MESSAGES, "gemini-1.5-flash", 100, 0.5, "Be nice")

        assert result.text == "Hi there"
        assert result.input_tokens == 11
        assert result.output_tokens == 4
        assert result.stop_reason == "STOP"
        assert result.model == "gemini-1.5-flash"

        sent = mock_gemini.return_value.invoke.call_args.args[0]
        assert isinstance(sent[0], SystemMessage)
        assert sent[1].content == "Hello"

    @patch("clever_assistant.agents.llm_client.ChatGoogleGenerativeAI")
    def test_send_list_content(self, mock_gemini, config):
        """List-of-parts content is flattened to text."""
        from clever_assistant.agents.llm_client import LLMClient

        mock_gemini.return_value.invoke.return_value = AIMessage(
            content=[{"type": "text", "text": "Hi "}, "there"]
        )
        result = LLMClient(config).send(MESSAGES, "gemini-1.5-flash", 100)

        assert result.text == "Hi there"
        assert result.input_tokens == 0

    @patch("clever_assistant.agents.llm_client.ChatGoogleGenerativeAI")
    def test_send_wraps_errors(self, mock_gemini, config):
        from clever_assistant.agents.llm_client import LLMClient
        from clever_assistant.agents.error_handling import UpstreamError

        mock_gemini.return_value.invoke.side_effect = RuntimeError("quota exceeded")

        with pytest.raises(UpstreamError) as excinfo:
            LLMClient(config).send(MESSAGES, "gemini-1.5-flash", 100)
        assert "quota exceeded" in str(excinfo.value)


class TestStream:
    """Tests for the streaming call."""

    @patch("clever_assistant.agents.llm_client.ChatGoogleGenerativeAI")
    def test_stream_events(self, mock_gemini, config):
        from clever_assistant.agents.llm_client import LLMClient

        mock_gemini.return_value.stream.return_value = iter([
            AIMessageChunk(content="Hel",
                           usage_metadata={"input_tokens": 9, "output_tokens": 0, "total_tokens": 9}),
            AIMessageChunk(content=""),
            AIMessageChunk(content="lo",
                           usage_metadata={"input_tokens": 0, "output_tokens": 2, "total_tokens": 2},
                           response_metadata={"finish_reason": "STOP"}),
        ])

        events = list(LLMClient(config).stream(MESSAGES, "gemini-1.5-flash", 100))

        assert [e.kind for e in events] == ["start", "delta", "usage", "delta", "usage", "stop"]
        assert events[0].model == "gemini-1.5-flash"
        assert sum(e.input_tokens for e in events) == 9
        assert sum(e.output_tokens for e in events) == 2
        assert events[-1].stop_reason == "STOP"

    @patch("clever_assistant.agents.llm_client.ChatGoogleGenerativeAI")
    def test_stream_error_mid_way(self, mock_gemini, config):
        from clever_assistant.agents.llm_client import LLMClient
        from clever_assistant.agents.error_handling import UpstreamError

        def broken(_messages):
            yield AIMessageChunk(content="par")
            raise ConnectionError("reset by peer")

        mock_gemini.return_value.stream.side_effect = broken
        stream = LLMClient(config).stream(MESSAGES, "gemini-1.5-flash", 100)

        assert next(stream).kind == "start"
        assert next(stream).text == "par"
        with pytest.raises(UpstreamError):
            next(stream)


class TestStreamEvent:
    """Tests for StreamEvent."""

    def test_terminal_kinds(self):
        from clever_assistant.agents.llm_client import StreamEvent

        assert StreamEvent(kind="done").is_terminal is True
        assert StreamEvent(kind="error", error="x").is_terminal is True
        assert StreamEvent(kind="delta", text="x").is_terminal is False

    def test_to_dict(self):
        from clever_assistant.agents.llm_client import StreamEvent

        assert StreamEvent(kind="delta", text="x").to_dict() == {"type": "delta", "content": "x"}
        assert StreamEvent(kind="error", error="boom").to_dict() == {"type": "error", "error": "boom"}
