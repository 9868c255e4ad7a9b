"""Async client for OpenAI-compatible chat completion endpoints."""

from __future__ import annotations

import inspect
import json
import logging
import math
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Protocol

import httpx
import tiktoken
from openai import APIError, AsyncOpenAI
from openai.types.chat import ChatCompletionMessageParam

from .errors import ErrorKind, GeneratorError, GeneratorUnavailableError, classify_exception
from .retry import exponential_backoff, with_retry

__all__ = [
    "AIClient",
    "ApproxByteCounter",
    "ClientSettings",
    "TiktokenCounter",
    "TokenCounter",
]

LOGGER = logging.getLogger(__name__)
_DEFAULT_BYTES_PER_TOKEN = 4
_FALLBACK_ENCODING = "cl100k_base"


class TokenCounter(Protocol):
    def count(self, text: str) -> int:
        ...

    def truncate(self, text: str, max_tokens: int) -> str:
        ...


class ApproxByteCounter:
    """Deterministic counter that estimates tokens from UTF-8 byte length."""

    def __init__(self, *, bytes_per_token: int = _DEFAULT_BYTES_PER_TOKEN) -> None:
        self._bytes_per_token = max(1, int(bytes_per_token))

    def count(self, text: str) -> int:
        if not text:
            return 0
        return max(1, math.ceil(len(text.encode("utf-8", errors="ignore")) / self._bytes_per_token))

    def truncate(self, text: str, max_tokens: int) -> str:
        if max_tokens <= 0:
            return ""
        if self.count(text) <= max_tokens:
            return text
        budget = max_tokens * self._bytes_per_token
        return text.encode("utf-8", errors="ignore")[:budget].decode("utf-8", errors="ignore")


class TiktokenCounter:
    """Token counter backed by tiktoken's encoding for ``model_name``."""

    def __init__(self, model_name: str) -> None:
        if not model_name:
            raise ValueError("model_name is required for TiktokenCounter")
        self.model_name = model_name
        try:
            self._encoding = tiktoken.encoding_for_model(model_name)
        except KeyError:
            LOGGER.debug("No tiktoken mapping for %s; using %s", model_name, _FALLBACK_ENCODING)
            self._encoding = tiktoken.get_encoding(_FALLBACK_ENCODING)

    def count(self, text: str) -> int:
        if not text:
            return 0
        return len(self._encoding.encode(text, disallowed_special=()))

    def truncate(self, text: str, max_tokens: int) -> str:
        if max_tokens <= 0:
            return ""
        tokens = self._encoding.encode(text, disallowed_special=())
        if len(tokens) <= max_tokens:
            return text
        return self._encoding.decode(tokens[:max_tokens])


@dataclass(slots=True)
class ClientSettings:
    """Subset of settings required to configure the AI client."""

    base_url: str
    api_key: str
    model: str
    organization: str | None = None
    request_timeout: float | None = 90.0
    max_retries: int = 3
    retry_min_seconds: float = 1.0
    retry_max_seconds: float = 8.0
    default_headers: Mapping[str, str] | None = None
    metadata: Mapping[str, str] | None = None
    debug_logging: bool = False


class AIClient:
    """Collects streamed chat completions with retry and token helpers.

    The underlying ``AsyncOpenAI`` client is only built when an API key is
    configured; calls made without one raise
    :class:`~flowstate.ai.errors.GeneratorUnavailableError` without touching
    the network.
    """

    def __init__(
        self,
        settings: ClientSettings,
        *,
        client: AsyncOpenAI | None = None,
        token_counter: TokenCounter | None = None,
    ) -> None:
        self._settings = settings
        self._client = client if client is not None else self._build_client(settings)
        self._token_counter = token_counter
        self._backoff = exponential_backoff(settings.retry_min_seconds, settings.retry_max_seconds)

    @property
    def settings(self) -> ClientSettings:
        return self._settings

    @property
    def configured(self) -> bool:
        return self._client is not None

    async def complete(
        self,
        messages: Iterable[Mapping[str, Any] | ChatCompletionMessageParam],
        *,
        model: str | None = None,
        response_format: Mapping[str, Any] | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        metadata: Mapping[str, str] | None = None,
        extra_params: Mapping[str, Any] | None = None,
    ) -> str:
        """Return the full text of a streamed completion.

        Rate limits, timeouts and 5xx responses are retried with exponential
        backoff; every other failure propagates as a ``GeneratorError``.
        """

        client = self._require_client()
        payload = self._build_chat_payload(
            messages=self._coerce_messages(messages),
            model=model,
            response_format=response_format,
            temperature=temperature,
            max_tokens=max_tokens,
            metadata=metadata,
            extra_params=extra_params,
        )
        LOGGER.debug(
            "Starting streamed chat completion via %s with %s message(s)",
            payload["model"],
            len(payload["messages"]),
        )
        if self._settings.debug_logging:
            self._log_prompt_payload(payload)

        async def _attempt() -> str:
            try:
                return await self._collect(client, payload)
            except GeneratorError:
                raise
            except (APIError, httpx.HTTPError) as exc:
                raise classify_exception(exc) from exc

        return await with_retry(
            _attempt,
            max_attempts=self._settings.max_retries,
            is_retryable=lambda exc: isinstance(exc, GeneratorError) and exc.retryable,
            backoff=self._backoff,
        )

    def count_tokens(self, text: str) -> int:
        return self.get_token_counter().count(text)

    def truncate(self, text: str, max_tokens: int) -> str:
        """Return the longest prefix of ``text`` within ``max_tokens``."""

        return self.get_token_counter().truncate(text, max_tokens)

    def get_token_counter(self) -> TokenCounter:
        if self._token_counter is None:
            self._token_counter = self._build_token_counter(self._settings.model)
        return self._token_counter

    async def aclose(self) -> None:
        """Close the underlying OpenAI client to release network resources."""

        close = getattr(self._client, "close", None)
        if close is None:
            return
        result = close()
        if inspect.isawaitable(result):
            await result

    async def _collect(self, client: AsyncOpenAI, payload: Dict[str, Any]) -> str:
        parts: List[str] = []
        final: str | None = None
        async with client.chat.completions.stream(**payload) as stream:
            async for event in stream:
                event_type = getattr(event, "type", None)
                if event_type == "content.delta":
                    delta = getattr(event, "delta", None)
                    if delta:
                        parts.append(str(delta))
                elif event_type == "content.done":
                    content = getattr(event, "content", None)
                    if content is not None:
                        final = str(content)
                elif event_type == "refusal.done":
                    refusal = getattr(event, "refusal", None) or "request refused"
                    raise GeneratorError(f"The model declined: {refusal}", kind=ErrorKind.BAD_REQUEST)
        return final if final is not None else "".join(parts)

    def _require_client(self) -> AsyncOpenAI:
        if self._client is None:
            LOGGER.error("Model API key missing from configuration")
            raise GeneratorUnavailableError()
        return self._client

    def _build_client(self, settings: ClientSettings) -> AsyncOpenAI | None:
        if not (settings.api_key or "").strip():
            return None
        headers = dict(settings.default_headers) if settings.default_headers else None
        return AsyncOpenAI(
            api_key=settings.api_key,
            base_url=settings.base_url,
            organization=settings.organization,
            timeout=settings.request_timeout,
            max_retries=0,
            default_headers=headers,
        )

    def _build_token_counter(self, model_name: str) -> TokenCounter:
        try:
            return TiktokenCounter(model_name)
        except (ValueError, OSError) as exc:
            LOGGER.warning("tiktoken encoding unavailable for %s (%s); estimating from bytes", model_name, exc)
            return ApproxByteCounter()

    def _coerce_messages(
        self, messages: Iterable[Mapping[str, Any] | ChatCompletionMessageParam]
    ) -> List[Dict[str, Any]]:
        normalized = [dict(message) for message in messages]
        if not normalized:
            raise ValueError("At least one message is required to start a chat")
        return normalized

    def _build_chat_payload(
        self,
        *,
        messages: List[Dict[str, Any]],
        model: str | None,
        response_format: Mapping[str, Any] | None,
        temperature: float | None,
        max_tokens: int | None,
        metadata: Mapping[str, str] | None,
        extra_params: Mapping[str, Any] | None,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": model or self._settings.model,
            "messages": messages,
        }
        merged_metadata = self._merge_metadata(metadata)
        if merged_metadata:
            payload["metadata"] = merged_metadata
        if response_format is not None:
            payload["response_format"] = dict(response_format)
        if temperature is not None:
            payload["temperature"] = temperature
        if max_tokens is not None:
            payload["max_tokens"] = max_tokens
        if extra_params:
            payload.update(extra_params)
        return payload

    def _merge_metadata(self, runtime_metadata: Mapping[str, str] | None) -> Dict[str, str] | None:
        combined: Dict[str, str] = {}
        if self._settings.metadata:
            combined.update(self._settings.metadata)
        if runtime_metadata:
            combined.update(runtime_metadata)
        return combined or None

    def _log_prompt_payload(self, payload: Mapping[str, Any]) -> None:
        try:
            serialized = json.dumps(payload, ensure_ascii=False, indent=2)
        except (TypeError, ValueError):
            LOGGER.debug("AI prompt payload (unserializable): %s", payload)
        else:
            LOGGER.debug("AI prompt payload:\n%s", serialized)
