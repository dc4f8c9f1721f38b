"""Retry wrapper for provider calls."""

from __future__ import annotations

import logging
import os
from typing import Any, Awaitable, Callable, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception,
    stop_after_attempt,
    wait_random_exponential,
)

from errors import LLMRetryError, MediciniaError

logger = logging.getLogger(__name__)

T = TypeVar("T")

_DEFAULT_MAX_ATTEMPTS = int(os.getenv("MEDICINIA_LLM_MAX_ATTEMPTS", "2"))


def _is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, MediciniaError):
        return exc.retryable
    # SDK / network errors are worth another attempt
    return isinstance(exc, Exception)


async def with_retry(
    func: Callable[..., Awaitable[T]],
    *args: Any,
    max_attempts: int = _DEFAULT_MAX_ATTEMPTS,
    max_wait: float = 8.0,
    **kwargs: Any,
) -> T:
    """Await ``func(*args, **kwargs)``, retrying transient failures.

    Non-retryable MediciniaErrors (configuration problems) propagate
    unchanged. When every attempt fails, LLMRetryError is raised from
    the last underlying error.
    """
    retrying = AsyncRetrying(
        stop=stop_after_attempt(max(1, max_attempts)),
        wait=wait_random_exponential(multiplier=0.5, max=max_wait),
        retry=retry_if_exception(_is_retryable),
        reraise=False,
    )
    try:
        async for attempt in retrying:
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    logger.info(
                        "Retrying %s (attempt %d/%d)",
                        getattr(func, "__name__", "call"),
                        attempt.retry_state.attempt_number,
                        max_attempts,
                    )
                return await func(*args, **kwargs)
    except RetryError as e:
        last = e.last_attempt.exception()
        logger.error(
            "%s failed after %d attempts: %s",
            getattr(func, "__name__", "call"), max_attempts, last,
        )
        raise LLMRetryError(str(last), attempts=max_attempts) from last
    raise AssertionError("unreachable")  # pragma: no cover
