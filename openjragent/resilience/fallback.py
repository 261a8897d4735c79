# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""Higher-order resilience combinators.

``FallbackManager`` offers client and tool fallback chains, timeouts with a
fallback, partial-failure tolerance and named circuit breakers whose state
persists across calls.
"""
import asyncio
import time
from collections.abc import Awaitable, Callable, Sequence
from enum import StrEnum
from typing import TypeVar

from loguru import logger

from openjragent.core.exceptions import CircuitOpenError, OperationTimeoutError, PartialFailureError
from openjragent.core.state import ToolResult
from openjragent.drivers.base import ChatClient, ChatRequest, ChatResponse


T = TypeVar("T")


class CircuitState(StrEnum):
    """State of a circuit breaker."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """Stops calling a failing operation for a cooldown period.

    Opens once ``failure_threshold`` consecutive failures are recorded,
    rejects calls with ``CircuitOpenError`` while open, and lets a single
    trial call through (half-open) after ``reset_timeout`` seconds. A
    successful trial closes the breaker, a failed one re-opens it.

    Attributes:
        name: Breaker name used in logs and errors.
        failure_threshold: Consecutive failures that open the breaker.
        reset_timeout: Seconds to stay open before allowing a trial call.
    """

    def __init__(
        self,
        name: str = "default",
        failure_threshold: int = 5,
        reset_timeout: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
        on_state_change: Callable[[CircuitState, CircuitState], None] | None = None,
    ) -> None:
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be at least 1")
        self.name = name
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self._clock = clock
        self._on_state_change = on_state_change
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._opened_at: float | None = None

    @property
    def state(self) -> CircuitState:
        """Current state, moving from open to half-open once the timeout elapsed."""
        if (
            self._state == CircuitState.OPEN
            and self._opened_at is not None
            and self._clock() - self._opened_at >= self.reset_timeout
        ):
            self._transition(CircuitState.HALF_OPEN)
        return self._state

    @property
    def failure_count(self) -> int:
        """Consecutive failures recorded since the last success."""
        return self._failures

    def _transition(self, new_state: CircuitState) -> None:
        old_state = self._state
        if old_state == new_state:
            return
        self._state = new_state
        logger.info("Circuit breaker state changed", breaker=self.name, from_state=str(old_state), to_state=str(new_state))
        if self._on_state_change is not None:
            self._on_state_change(old_state, new_state)

    def record_success(self) -> None:
        """Reset the failure count and close the breaker."""
        self._failures = 0
        self._opened_at = None
        self._transition(CircuitState.CLOSED)

    def record_failure(self) -> None:
        """Count a failure, opening the breaker when the threshold is reached."""
        self._failures += 1
        if self._state == CircuitState.HALF_OPEN or self._failures >= self.failure_threshold:
            self._opened_at = self._clock()
            self._transition(CircuitState.OPEN)

    def reset(self) -> None:
        """Force the breaker back to closed."""
        self.record_success()

    async def call(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Run ``operation`` through the breaker.

        Raises:
            CircuitOpenError: If the breaker is open.
        """
        if self.state == CircuitState.OPEN:
            raise CircuitOpenError(
                f"Circuit breaker '{self.name}' is open",
                details={"breaker": self.name, "failures": self._failures},
            )
        try:
            result = await operation()
        except Exception:
            self.record_failure()
            raise
        self.record_success()
        return result


class FallbackManager:
    """Resilience combinators with named, persistent circuit breakers."""

    def __init__(self) -> None:
        self._breakers: dict[str, CircuitBreaker] = {}

    async def fallback_llm(self, primary: ChatClient, fallback: ChatClient, request: ChatRequest) -> ChatResponse:
        """Send ``request`` to ``primary``, falling back to ``fallback`` on failure."""
        return await self.fallback_llm_chain([primary, fallback], request)

    async def fallback_llm_chain(self, clients: Sequence[ChatClient], request: ChatRequest) -> ChatResponse:
        """Try clients in order until one answers.

        Raises:
            ValueError: If ``clients`` is empty.
            Exception: The last client's error when every client fails.
        """
        if not clients:
            raise ValueError("At least one client is required")
        last_error: Exception | None = None
        for index, client in enumerate(clients):
            try:
                return await client.chat(request)
            except Exception as e:
                last_error = e
                logger.warning("LLM client failed, trying next", client_index=index, error=str(e))
        assert last_error is not None
        raise last_error

    async def fallback_tool(
        self,
        primary: Callable[[], Awaitable[ToolResult]],
        fallback: Callable[[], Awaitable[ToolResult]],
    ) -> ToolResult:
        """Run ``primary`` and use ``fallback`` if it raises or returns a failed result."""
        try:
            result = await primary()
        except Exception as e:
            logger.warning("Primary tool raised, using fallback", error=str(e))
            return await fallback()
        if result.success:
            return result
        logger.warning("Primary tool failed, using fallback", error=result.error)
        return await fallback()

    async def tolerate_partial_failure(
        self,
        operations: Sequence[Callable[[], Awaitable[T]]],
        min_success_rate: float = 0.5,
    ) -> list[T]:
        """Run independent operations and accept the batch if enough succeed.

        Args:
            operations: Zero-argument callables returning awaitables.
            min_success_rate: Required fraction of successes, between 0 and 1.

        Returns:
            Successful values in the original order.

        Raises:
            ValueError: If ``min_success_rate`` is outside [0, 1].
            PartialFailureError: If the success rate is below the minimum.
        """
        if not 0 <= min_success_rate <= 1:
            raise ValueError("min_success_rate must be between 0 and 1")
        if not operations:
            return []

        outcomes = await asyncio.gather(*(op() for op in operations), return_exceptions=True)
        successes: list[T] = []
        errors: list[BaseException] = []
        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                errors.append(outcome)
            else:
                successes.append(outcome)

        rate = len(successes) / len(operations)
        if rate < min_success_rate:
            summary = "; ".join(str(e) or type(e).__name__ for e in errors)
            raise PartialFailureError(
                f"Too many failures: {len(successes)}/{len(operations)} succeeded "
                f"(required: {min_success_rate:.0%}). Errors: {summary}",
                errors=errors,
            )
        if errors:
            logger.warning("Tolerated partial failure", succeeded=len(successes), failed=len(errors))
        return successes

    async def with_timeout(
        self,
        operation: Callable[[], Awaitable[T]],
        timeout: float,
        fallback: Callable[[], Awaitable[T]] | None = None,
    ) -> T:
        """Bound an operation in time.

        The fallback, when given, is used on timeout and on any other error.
        A ``TimeoutError`` raised by the operation itself is not relabelled.

        Raises:
            OperationTimeoutError: On timeout without a fallback.
        """
        deadline = asyncio.timeout(timeout)
        try:
            async with deadline:
                return await operation()
        except TimeoutError as e:
            if fallback is None:
                if not deadline.expired():
                    raise
                raise OperationTimeoutError(
                    f"Operation timed out after {timeout}s", details={"timeout": timeout}
                ) from e
            if deadline.expired():
                logger.warning("Operation timed out, using fallback", timeout=timeout)
            else:
                logger.warning("Operation failed, using fallback", error=str(e))
            return await fallback()
        except Exception as e:
            if fallback is None:
                raise
            logger.warning("Operation failed, using fallback", error=str(e))
            return await fallback()

    def get_breaker(
        self,
        name: str = "default",
        failure_threshold: int = 5,
        reset_timeout: float = 60.0,
    ) -> CircuitBreaker:
        """Return the named breaker, creating it on first use."""
        breaker = self._breakers.get(name)
        if breaker is None:
            breaker = CircuitBreaker(name, failure_threshold, reset_timeout)
            self._breakers[name] = breaker
        return breaker

    async def with_circuit_breaker(
        self,
        operation: Callable[[], Awaitable[T]],
        name: str = "default",
        failure_threshold: int = 5,
        reset_timeout: float = 60.0,
    ) -> T:
        """Run ``operation`` through the named circuit breaker.

        Raises:
            CircuitOpenError: If the breaker is open.
        """
        return await self.get_breaker(name, failure_threshold, reset_timeout).call(operation)

    def reset_breakers(self) -> None:
        """Forget every breaker."""
        self._breakers.clear()


class FallbackChatClient:
    """Chat client that tries a chain of clients in order.

    Each client sits behind its own circuit breaker, so a provider that keeps
    failing is skipped until its reset timeout has passed.
    """

    def __init__(
        self,
        clients: Sequence[ChatClient],
        manager: FallbackManager | None = None,
        failure_threshold: int = 5,
        reset_timeout: float = 60.0,
    ):
        if not clients:
            raise ValueError("At least one client is required")
        self.clients = tuple(clients)
        self.manager = manager or FallbackManager()
        self._failure_threshold = failure_threshold
        self._reset_timeout = reset_timeout

    async def chat(self, request: ChatRequest) -> ChatResponse:
        guarded = [_BreakerGuardedClient(self, index, client) for index, client in enumerate(self.clients)]
        return await self.manager.fallback_llm_chain(guarded, request)


class _BreakerGuardedClient:
    def __init__(self, owner: FallbackChatClient, index: int, client: ChatClient):
        self._owner = owner
        self._name = f"llm-{index}-{id(client)}"
        self._client = client

    async def chat(self, request: ChatRequest) -> ChatResponse:
        return await self._owner.manager.with_circuit_breaker(
            lambda: self._client.chat(request),
            self._name,
            self._owner._failure_threshold,
            self._owner._reset_timeout,
        )
