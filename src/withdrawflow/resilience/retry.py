"""
Retry Strategies using Tenacity.

Backoff for read-only collaborator calls (balance fetch, wallet ping, exchange
listing). Quote requests and withdrawal execution are never retried here: the
withdrawal machine owns those retries and their idempotency keys.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from withdrawflow.core.error_codes import is_transport_error
from withdrawflow.core.exceptions import ApiError, NetworkError

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_MAX_WAIT = 8.0


def is_transient_error(exception: BaseException) -> bool:
    """Check if exception is a transient network/infrastructure error."""
    if isinstance(exception, NetworkError):
        return exception.is_rate_limited() or exception.status_code is None or exception.status_code >= 500
    if is_transport_error(exception):
        return True
    if isinstance(exception, ApiError):
        return exception.is_server_error() or exception.status_code == 429
    # Heuristic for errors raised by third-party clients
    msg = str(exception).lower()
    return any(
        x in msg
        for x in [
            "timeout",
            "connection refused",
            "502",
            "503",
            "504",
            "network error",
            "rate limit",
        ]
    )


def _log_before_sleep(retry_state: RetryCallState) -> None:
    outcome = retry_state.outcome
    error = outcome.exception() if outcome is not None else None
    logger.warning(f"Retrying read call (attempt {retry_state.attempt_number}): {error}")


async def execute_with_retry(
    func: Callable[..., Awaitable[Any]],
    *args: Any,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    max_wait: float = DEFAULT_MAX_WAIT,
    **kwargs: Any,
) -> Any:
    """
    Execute an async function, retrying transient errors with exponential backoff.

    Non-transient errors are raised on the first attempt; the last transient
    error is re-raised once `max_attempts` is exhausted.
    """
    async for attempt in AsyncRetrying(
        retry=retry_if_exception(is_transient_error),
        wait=wait_exponential(multiplier=min(0.5, max_wait), max=max_wait),
        stop=stop_after_attempt(max_attempts),
        reraise=True,
        before_sleep=_log_before_sleep,
    ):
        with attempt:
            return await func(*args, **kwargs)
