"""Bounded retry with exponential backoff for single provider calls.

Wraps one transcription/summarization/extraction call. Only transient
failures are retried: HTTP 429/500/503 and connection-reset/timeout
signals. Everything else (400, 401, validation errors) propagates on the
first attempt. After the last attempt the original exception is re-raised.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

import httpx
import openai
import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from src.team_admin.config import Settings

logger = structlog.get_logger(__name__)

T = TypeVar("T")

RETRYABLE_STATUS_CODES = frozenset({429, 500, 503})
RETRYABLE_ERROR_CODES = frozenset({"ECONNRESET", "ETIMEDOUT"})

_RETRYABLE_EXCEPTION_TYPES: tuple[type[BaseException], ...] = (
    httpx.ConnectError,
    httpx.TimeoutException,
    httpx.RemoteProtocolError,
    openai.APIConnectionError,  # includes APITimeoutError
    ConnectionResetError,
    TimeoutError,
    asyncio.TimeoutError,
)


@dataclass(frozen=True)
class RetryPolicy:
    """Attempt budget and initial backoff delay (seconds)."""

    max_attempts: int = 3
    initial_delay: float = 2.0

    @classmethod
    def from_settings(cls, settings: Settings) -> RetryPolicy:
        return cls(
            max_attempts=settings.PROVIDER_MAX_ATTEMPTS,
            initial_delay=settings.PROVIDER_INITIAL_DELAY_SECONDS,
        )


def _status_code(exc: BaseException) -> int | None:
    for attr in ("status_code", "status"):
        value = getattr(exc, attr, None)
        if isinstance(value, int):
            return value
    response = getattr(exc, "response", None)
    value = getattr(response, "status_code", None)
    return value if isinstance(value, int) else None


def is_retryable(exc: BaseException) -> bool:
    """Classify an exception as transient (retry) or permanent (raise now).

    Timeout and connection types win over any status code they carry:
    litellm.Timeout reports 408 but is still a timeout.
    """
    if isinstance(exc, _RETRYABLE_EXCEPTION_TYPES):
        return True
    if getattr(exc, "code", None) in RETRYABLE_ERROR_CODES:
        return True
    status_code = _status_code(exc)
    return status_code is not None and status_code in RETRYABLE_STATUS_CODES


def _log_retry(operation: str) -> Callable[[RetryCallState], None]:
    def before_sleep(retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            "provider_call_retry",
            operation=operation,
            attempt=retry_state.attempt_number,
            delay_seconds=retry_state.next_action.sleep if retry_state.next_action else None,
            error_type=type(exc).__name__ if exc else None,
            error=str(exc) if exc else None,
        )

    return before_sleep


async def call_with_backoff(
    fn: Callable[[], Awaitable[T]],
    *,
    operation: str,
    policy: RetryPolicy | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Call ``fn`` with up to ``policy.max_attempts`` attempts.

    The delay before retry n is ``initial_delay * 2 ** (n - 1)``; nothing is
    slept after the final failure.

    Args:
        fn: Zero-argument coroutine factory performing one provider call.
        operation: Name used in retry logs (e.g. "transcribe_segment").
        policy: Attempt budget and initial delay. Defaults to 3 attempts / 2s.
        sleep: Awaitable sleep, injectable for tests.

    Returns:
        The first successful result of ``fn``.

    Raises:
        The last exception raised by ``fn``, unchanged.
    """
    policy = policy or RetryPolicy()
    retrying = AsyncRetrying(
        stop=stop_after_attempt(policy.max_attempts),
        wait=wait_exponential(multiplier=policy.initial_delay, exp_base=2),
        retry=retry_if_exception(is_retryable),
        reraise=True,
        sleep=sleep,
        before_sleep=_log_retry(operation),
    )
    return await retrying(fn)
