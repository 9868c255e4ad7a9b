"""Structured failures raised at the text-generation boundary."""

from __future__ import annotations

import httpx
from openai import (
    APIConnectionError,
    APIStatusError,
    APITimeoutError,
    AuthenticationError,
    BadRequestError,
    PermissionDeniedError,
    RateLimitError,
)

__all__ = [
    "ErrorKind",
    "GeneratorError",
    "GeneratorUnavailableError",
    "MalformedOutputError",
    "TransientGeneratorError",
    "classify_exception",
    "is_retryable",
]


class ErrorKind:
    """Machine-readable failure categories."""

    AUTH = "auth"
    RATE_LIMIT = "rate_limit"
    UNAVAILABLE = "unavailable"
    TIMEOUT = "timeout"
    BAD_REQUEST = "bad_request"
    MALFORMED = "malformed"
    UNKNOWN = "unknown"


_RETRYABLE_KINDS = frozenset({ErrorKind.RATE_LIMIT, ErrorKind.UNAVAILABLE, ErrorKind.TIMEOUT})
_UNAVAILABLE_STATUS = frozenset({500, 502, 503, 504})


class GeneratorError(RuntimeError):
    """Base class for generator failures.

    Attributes:
        kind: One of the :class:`ErrorKind` values.
        retryable: Whether a later attempt may succeed.
    """

    default_kind = ErrorKind.UNKNOWN

    def __init__(self, message: str, *, kind: str | None = None, retryable: bool | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.kind = kind or self.default_kind
        self.retryable = self.kind in _RETRYABLE_KINDS if retryable is None else retryable

    def __str__(self) -> str:
        return f"[{self.kind}] {self.message}"


class GeneratorUnavailableError(GeneratorError):
    """Missing credentials or a rejected configuration; never retried."""

    default_kind = ErrorKind.AUTH

    def __init__(self, message: str = "API key missing. Please check your configuration.", **kwargs) -> None:
        kwargs.setdefault("retryable", False)
        super().__init__(message, **kwargs)


class TransientGeneratorError(GeneratorError):
    """Rate limit or temporary outage; safe to retry with backoff."""

    default_kind = ErrorKind.UNAVAILABLE

    def __init__(self, message: str = "The model is temporarily unavailable. Please try again.", **kwargs) -> None:
        kwargs.setdefault("retryable", True)
        super().__init__(message, **kwargs)


class MalformedOutputError(GeneratorError):
    """The model answered, but not in the requested structure."""

    default_kind = ErrorKind.MALFORMED

    def __init__(self, message: str = "The model returned an invalid response.", *, payload: str | None = None) -> None:
        super().__init__(message, retryable=False)
        self.payload = payload


def classify_exception(exc: BaseException) -> GeneratorError:
    """Translate an SDK or transport exception into a :class:`GeneratorError`."""

    if isinstance(exc, GeneratorError):
        return exc
    if isinstance(exc, (AuthenticationError, PermissionDeniedError)):
        return GeneratorUnavailableError(f"Model credentials were rejected: {exc}", kind=ErrorKind.AUTH)
    if isinstance(exc, RateLimitError):
        return TransientGeneratorError(f"Rate limited by the model provider: {exc}", kind=ErrorKind.RATE_LIMIT)
    if isinstance(exc, BadRequestError):
        return GeneratorError(f"The model rejected the request: {exc}", kind=ErrorKind.BAD_REQUEST)
    if isinstance(exc, APIStatusError):
        if exc.status_code in _UNAVAILABLE_STATUS:
            return TransientGeneratorError(f"Model provider unavailable ({exc.status_code})", kind=ErrorKind.UNAVAILABLE)
        return GeneratorError(f"Model request failed ({exc.status_code}): {exc}")
    # APITimeoutError subclasses APIConnectionError.
    if isinstance(exc, (APITimeoutError, httpx.TimeoutException)):
        return TransientGeneratorError(f"Model request timed out: {exc}", kind=ErrorKind.TIMEOUT)
    if isinstance(exc, (APIConnectionError, httpx.TransportError)):
        return TransientGeneratorError(f"Could not reach the model provider: {exc}", kind=ErrorKind.UNAVAILABLE)
    return GeneratorError(str(exc) or exc.__class__.__name__)


def is_retryable(exc: BaseException) -> bool:
    return classify_exception(exc).retryable
