"""Generic retry combinator for async model calls."""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)
from tenacity.wait import wait_base

from .errors import is_retryable as _default_is_retryable

__all__ = ["DEFAULT_MAX_ATTEMPTS", "exponential_backoff", "with_retry"]

LOGGER = logging.getLogger(__name__)
DEFAULT_MAX_ATTEMPTS = 3

T = TypeVar("T")


def exponential_backoff(min_seconds: float = 1.0, max_seconds: float = 8.0) -> wait_base:
    """Delays of ``min_seconds * 2**n`` capped at ``max_seconds``."""

    return wait_exponential(multiplier=max(0.0, min_seconds), max=max(min_seconds, max_seconds))


def _log_retry(state: RetryCallState) -> None:
    outcome = state.outcome
    error = outcome.exception() if outcome is not None else None
    delay = state.next_action.sleep if state.next_action is not None else 0.0
    LOGGER.warning(
        "Model request failed (attempt %s), retrying in %.1fs: %s",
        state.attempt_number,
        delay,
        error,
    )


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    is_retryable: Callable[[BaseException], bool] | None = None,
    backoff: wait_base | None = None,
) -> T:
    """Run ``operation`` until it succeeds, fails permanently, or attempts run out.

    ``is_retryable`` decides per exception; anything it rejects propagates
    immediately. The last exception is re-raised once attempts are exhausted.
    """

    predicate = is_retryable or _default_is_retryable
    retrying = AsyncRetrying(
        reraise=True,
        stop=stop_after_attempt(max(1, max_attempts)),
        wait=backoff if backoff is not None else exponential_backoff(),
        retry=retry_if_exception(predicate),
        before_sleep=_log_retry,
    )
    async for attempt in retrying:
        with attempt:
            result = await operation()
    return result
