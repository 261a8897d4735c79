# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""Retry with configurable backoff for transient failures."""
import asyncio
import random
import re
from collections.abc import Awaitable, Callable
from typing import TypeVar

import httpx
from loguru import logger

from openjragent.core.exceptions import AgentError, LLMRateLimitError
from openjragent.core.types import BackoffStrategy, RetryConfig


T = TypeVar("T")

TRANSIENT_EXCEPTIONS: tuple[type[Exception], ...] = (
    asyncio.TimeoutError,
    TimeoutError,
    ConnectionError,
    httpx.TimeoutException,
    httpx.NetworkError,
)

# Substrings of error messages that indicate a transient failure.
TRANSIENT_MARKERS: tuple[str, ...] = (
    "etimedout",
    "econnreset",
    "enotfound",
    "econnrefused",
    "timeout",
    "timed out",
    "rate limit",
    "429",
    "503",
)

_RETRY_AFTER_RE = re.compile(r"retry after (\d+(?:\.\d+)?) seconds?", re.IGNORECASE)


def is_transient_error(error: BaseException) -> bool:
    """Decide whether an error is worth retrying.

    ``AgentError`` instances are trusted to carry their own classification.
    Other exceptions are transient when they are known network or timeout
    types, or when their message mentions a transient condition.

    Args:
        error: The raised exception.

    Returns:
        True if retrying may succeed.
    """
    if isinstance(error, AgentError):
        return error.retryable
    if isinstance(error, TRANSIENT_EXCEPTIONS):
        return True
    message = str(error).lower()
    return any(marker in message for marker in TRANSIENT_MARKERS)


def retry_after_hint(error: BaseException | None) -> float | None:
    """Extract a retry-after hint, in seconds, from an error."""
    if error is None:
        return None
    if isinstance(error, LLMRateLimitError) and error.retry_after is not None:
        return error.retry_after
    if isinstance(error, AgentError):
        hint = error.details.get("retry_after")
        if isinstance(hint, int | float) and not isinstance(hint, bool):
            return float(hint)
    match = _RETRY_AFTER_RE.search(str(error))
    if match:
        return float(match.group(1))
    return None


class RetryManager:
    """Runs operations under a backoff strategy.

    Attributes:
        config: Default retry limits and delays.
    """

    def __init__(self, config: RetryConfig | None = None) -> None:
        self.config = config or RetryConfig()

    def calculate_delay(
        self,
        attempt: int,
        strategy: BackoffStrategy | None = None,
        error: BaseException | None = None,
    ) -> float:
        """Compute the delay before the next attempt.

        Args:
            attempt: Zero-based index of the attempt that just failed.
            strategy: Backoff strategy, ``config.strategy`` when None.
            error: The failure, consulted by the adaptive strategy.

        Returns:
            Delay in seconds.
        """
        cfg = self.config
        strategy = strategy or cfg.strategy
        match strategy:
            case BackoffStrategy.LINEAR:
                return min(cfg.base_delay * (attempt + 1), cfg.max_delay)
            case BackoffStrategy.FIXED:
                return cfg.fixed_delay
            case BackoffStrategy.ADAPTIVE:
                hint = retry_after_hint(error)
                if hint is not None:
                    return min(hint, cfg.max_delay)
        jitter = random.uniform(0, cfg.jitter) if cfg.jitter else 0.0
        return min(cfg.base_delay * 2**attempt + jitter, cfg.max_delay)

    def should_retry(self, error: BaseException, attempt: int, max_retries: int | None = None) -> bool:
        """Whether to retry after ``attempt`` (zero-based) failed with ``error``."""
        limit = self.config.max_retries if max_retries is None else max_retries
        return attempt < limit and is_transient_error(error)

    async def with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        max_retries: int | None = None,
        strategy: BackoffStrategy | None = None,
        operation_name: str = "operation",
    ) -> T:
        """Run ``operation`` until it succeeds or stops being retryable.

        Each attempt fully resolves before the backoff delay and the next
        attempt begin.

        Args:
            operation: Zero-argument callable returning an awaitable.
            max_retries: Override of ``config.max_retries``.
            strategy: Override of ``config.strategy``.
            operation_name: Label used in log output.

        Returns:
            The operation's result.

        Raises:
            Exception: The last error, unchanged, once retrying stops.
        """
        attempt = 0
        while True:
            try:
                return await operation()
            except Exception as error:
                if not self.should_retry(error, attempt, max_retries):
                    raise
                delay = self.calculate_delay(attempt, strategy, error)
                logger.warning(
                    "Retrying after transient failure",
                    operation=operation_name,
                    attempt=attempt + 1,
                    delay=round(delay, 2),
                    error=str(error),
                )
                await asyncio.sleep(delay)
                attempt += 1
