"""Tests for the OpenAI-compatible AI client."""

from __future__ import annotations

from dataclasses import dataclass
from types import SimpleNamespace
from typing import Any, Iterable

import httpx
import pytest

from flowstate.ai.client import AIClient, ApproxByteCounter, ClientSettings
from flowstate.ai.errors import ErrorKind, GeneratorError, GeneratorUnavailableError


@dataclass
class _FakeEvent:
    """Simple structure emulating ChatCompletionStreamEvent attributes."""

    type: str
    delta: str | None = None
    content: str | None = None
    refusal: str | None = None


class _FakeStream:
    def __init__(self, events: Iterable[_FakeEvent]):
        self._iterator = iter(list(events))

    def __aiter__(self) -> "_FakeStream":
        return self

    async def __anext__(self) -> _FakeEvent:
        try:
            return next(self._iterator)
        except StopIteration as exc:
            raise StopAsyncIteration from exc


class _FakeStreamContext:
    def __init__(self, events: Iterable[_FakeEvent], error: Exception | None = None):
        self._events = list(events)
        self._error = error

    async def __aenter__(self) -> _FakeStream:
        if self._error is not None:
            raise self._error
        return _FakeStream(self._events)

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        return False


class _FakeCompletions:
    def __init__(self, events: Iterable[_FakeEvent], *, failures: Iterable[Exception] = ()):
        self._events = list(events)
        self._failures = list(failures)
        self.calls: list[dict[str, Any]] = []

    def stream(self, **kwargs: Any) -> _FakeStreamContext:
        self.calls.append(kwargs)
        error = self._failures.pop(0) if self._failures else None
        return _FakeStreamContext(self._events, error)


def _settings(**overrides: Any) -> ClientSettings:
    options: dict[str, Any] = {
        "base_url": "https://api.example.test/v1",
        "api_key": "sk-test",
        "model": "gpt-test",
        "retry_min_seconds": 0.0,
        "retry_max_seconds": 0.0,
    }
    options.update(overrides)
    return ClientSettings(**options)


def _client(completions: _FakeCompletions, **overrides: Any) -> AIClient:
    fake_openai = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    return AIClient(_settings(**overrides), client=fake_openai, token_counter=ApproxByteCounter())  # type: ignore[arg-type]


@pytest.mark.asyncio
async def test_complete_joins_streamed_deltas() -> None:
    completions = _FakeCompletions(
        [_FakeEvent("content.delta", delta="Hello"), _FakeEvent("content.delta", delta=", world")]
    )
    client = _client(completions)

    text = await client.complete([{"role": "user", "content": "hi"}])

    assert text == "Hello, world"


@pytest.mark.asyncio
async def test_complete_prefers_final_content_event() -> None:
    completions = _FakeCompletions(
        [_FakeEvent("content.delta", delta="partial"), _FakeEvent("content.done", content="complete answer")]
    )
    client = _client(completions)

    assert await client.complete([{"role": "user", "content": "hi"}]) == "complete answer"


@pytest.mark.asyncio
async def test_payload_includes_model_options_and_merged_metadata() -> None:
    completions = _FakeCompletions([_FakeEvent("content.done", content="{}")])
    client = _client(completions, metadata={"app": "flowstate"})

    await client.complete(
        [{"role": "user", "content": "hi"}],
        model="gpt-draft",
        response_format={"type": "json_object"},
        temperature=0.2,
        max_tokens=50,
        metadata={"operation": "analyze"},
        extra_params={"web_search_options": {}},
    )

    call = completions.calls[0]
    assert call["model"] == "gpt-draft"
    assert call["messages"] == [{"role": "user", "content": "hi"}]
    assert call["metadata"] == {"app": "flowstate", "operation": "analyze"}
    assert call["response_format"] == {"type": "json_object"}
    assert call["temperature"] == 0.2
    assert call["max_tokens"] == 50
    assert call["web_search_options"] == {}


@pytest.mark.asyncio
async def test_default_model_is_used_when_not_overridden() -> None:
    completions = _FakeCompletions([_FakeEvent("content.done", content="ok")])
    client = _client(completions)

    await client.complete([{"role": "user", "content": "hi"}])

    assert completions.calls[0]["model"] == "gpt-test"
    assert "metadata" not in completions.calls[0]


@pytest.mark.asyncio
async def test_refusal_raises_bad_request() -> None:
    completions = _FakeCompletions([_FakeEvent("refusal.done", refusal="Not allowed")])
    client = _client(completions)

    with pytest.raises(GeneratorError) as excinfo:
        await client.complete([{"role": "user", "content": "hi"}])

    assert excinfo.value.kind == ErrorKind.BAD_REQUEST
    assert len(completions.calls) == 1


@pytest.mark.asyncio
async def test_transport_errors_are_retried_then_succeed() -> None:
    request = httpx.Request("POST", "https://api.example.test/v1/chat/completions")
    completions = _FakeCompletions(
        [_FakeEvent("content.done", content="recovered")],
        failures=[httpx.ConnectError("refused", request=request)],
    )
    client = _client(completions, max_retries=3)

    assert await client.complete([{"role": "user", "content": "hi"}]) == "recovered"
    assert len(completions.calls) == 2


@pytest.mark.asyncio
async def test_transport_errors_surface_after_max_attempts() -> None:
    request = httpx.Request("POST", "https://api.example.test/v1/chat/completions")
    completions = _FakeCompletions(
        [],
        failures=[httpx.ReadTimeout("slow", request=request) for _ in range(2)],
    )
    client = _client(completions, max_retries=2)

    with pytest.raises(GeneratorError) as excinfo:
        await client.complete([{"role": "user", "content": "hi"}])

    assert excinfo.value.kind == ErrorKind.TIMEOUT
    assert len(completions.calls) == 2


@pytest.mark.asyncio
async def test_missing_api_key_fails_without_network() -> None:
    client = AIClient(_settings(api_key=""), token_counter=ApproxByteCounter())

    assert client.configured is False
    with pytest.raises(GeneratorUnavailableError):
        await client.complete([{"role": "user", "content": "hi"}])


@pytest.mark.asyncio
async def test_empty_message_list_is_rejected() -> None:
    client = _client(_FakeCompletions([]))

    with pytest.raises(ValueError):
        await client.complete([])


def test_byte_counter_counts_and_truncates() -> None:
    counter = ApproxByteCounter(bytes_per_token=4)

    assert counter.count("") == 0
    assert counter.count("abcdefgh") == 2
    assert counter.truncate("abcdefghijkl", 2) == "abcdefgh"
    assert counter.truncate("short", 10) == "short"
    assert counter.truncate("anything", 0) == ""


def test_client_token_helpers_use_injected_counter() -> None:
    client = _client(_FakeCompletions([]))

    assert client.count_tokens("abcd" * 10) == 10
    assert client.truncate("abcd" * 10, 3) == "abcd" * 3


@pytest.mark.asyncio
async def test_aclose_tolerates_clients_without_close() -> None:
    client = _client(_FakeCompletions([]))
    await client.aclose()
