"""
Pytest configuration and fixtures for Clever Assistant tests.

Provides a configuration factory, a controllable clock and a mock remote
chat client so tests never make real API calls.
"""
import os
import pytest
from unittest.mock import MagicMock


# Mock the GOOGLE_API_KEY for testing
os.environ["GOOGLE_API_KEY"] = "test_api_key_for_testing"


class FakeClock:
    """Callable clock whose time only moves when told to."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def fake_clock():
    """A clock frozen at a fixed instant."""
    return FakeClock()


@pytest.fixture
def make_config(tmp_path):
    """Factory for AssistantConfig objects writing under tmp_path."""
    from clever_assistant.utils.config import AssistantConfig

    def _make(**overrides):
        values = {
            "google_api_key": "test_api_key",
            "data_dir": str(tmp_path / "data"),
            "cache_persist": False,
        }
        values.update(overrides)
        return AssistantConfig(**values)

    return _make


@pytest.fixture
def config(make_config):
    """Default test configuration (memory-only cache)."""
    return make_config()


@pytest.fixture
def completion():
    """Factory for CompletionResult objects."""
    from clever_assistant.agents.llm_client import CompletionResult

    def _make(text="This is a mocked LLM response.", input_tokens=100, output_tokens=50):
        return CompletionResult(
            text=text,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            stop_reason="STOP",
            model="gemini-1.5-flash"
        )

    return _make


@pytest.fixture
def stream_events():
    """Factory for a successful client event sequence."""
    from clever_assistant.agents.llm_client import StreamEvent

    def _make(chunks=("Hello", ", ", "world"), input_tokens=12, output_tokens=3):
        events = [StreamEvent(kind="start", model="gemini-1.5-flash")]
        events.append(StreamEvent(kind="usage", input_tokens=input_tokens))
        events.extend(StreamEvent(kind="delta", text=chunk) for chunk in chunks)
        events.append(StreamEvent(kind="usage", output_tokens=output_tokens))
        events.append(StreamEvent(kind="stop", stop_reason="STOP"))
        return events

    return _make


@pytest.fixture
def mock_client(completion, stream_events):
    """Mock remote chat client with predictable responses."""
    client = MagicMock()
    client.send.return_value = completion()
    client.stream.side_effect = lambda **kwargs: iter(stream_events())
    return client
