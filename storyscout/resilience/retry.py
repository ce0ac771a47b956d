"""Bounded retry with exponential backoff for transient failures."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TypeVar

import openai
import requests
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt, wait_exponential_jitter

from storyscout.errors import ResponseContractError


logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_STATUS_CODES = {408, 409, 429}


def _retryable_status(status: Any) -> bool:
    try:
        code = int(status)
    except (TypeError, ValueError):
        return False
    return code in RETRYABLE_STATUS_CODES or 500 <= code <= 599


def is_retryable_error(exc: BaseException) -> bool:
    """Timeouts, dropped connections, 408/409/429 and 5xx are worth another try."""
    if isinstance(exc, ResponseContractError):
        return False
    if isinstance(exc, (openai.AuthenticationError, openai.PermissionDeniedError, openai.BadRequestError)):
        return False
    if isinstance(exc, (openai.APITimeoutError, openai.APIConnectionError, openai.RateLimitError, openai.InternalServerError)):
        return True
    if isinstance(exc, openai.APIStatusError):
        return _retryable_status(exc.status_code)
    if isinstance(exc, requests.HTTPError):
        return exc.response is not None and _retryable_status(exc.response.status_code)
    if isinstance(exc, (requests.Timeout, requests.ConnectionError)):
        return True
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError, ConnectionError)):
        return True
    return False


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay: float = 2.0
    max_delay: float = 30.0
    is_retryable: Callable[[BaseException], bool] = is_retryable_error

    @classmethod
    def from_settings(cls, settings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.retry_attempts,
            base_delay=settings.retry_base_delay,
            max_delay=settings.retry_max_delay,
        )


def _log_before_sleep(operation: str, max_attempts: int) -> Callable[[RetryCallState], None]:
    def log(state: RetryCallState) -> None:
        exc = state.outcome.exception() if state.outcome else None
        delay = state.next_action.sleep if state.next_action else 0.0
        logger.warning(
            f"{operation} attempt {state.attempt_number}/{max_attempts} failed: {exc}. Retrying in {delay:.1f}s"
        )

    return log


async def execute_with_retry(
    fn: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    operation: str = "operation",
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> T:
    """Await `fn()` up to `policy.max_attempts` times.

    Non-retryable errors are raised on first sight; after the last attempt the
    final error is raised as-is. Results are never cached between calls.
    """
    retrying = AsyncRetrying(
        stop=stop_after_attempt(max(1, policy.max_attempts)),
        wait=wait_exponential_jitter(initial=policy.base_delay, max=policy.max_delay, jitter=policy.base_delay / 2),
        retry=retry_if_exception(policy.is_retryable),
        before_sleep=_log_before_sleep(operation, policy.max_attempts),
        sleep=sleep,
        reraise=True,
    )
    async for attempt in retrying:
        with attempt:
            return await fn()
    raise RuntimeError(f"{operation}: retry loop exited without a result")
