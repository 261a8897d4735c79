"""Tests for FallbackManager, CircuitBreaker and FallbackChatClient."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from openjragent.core.exceptions import CircuitOpenError, LLMError, OperationTimeoutError, PartialFailureError
from openjragent.core.state import ChatMessage, MessageRole, ToolResult
from openjragent.drivers.base import ChatRequest, ChatResponse
from openjragent.resilience.fallback import CircuitBreaker, CircuitState, FallbackChatClient, FallbackManager


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def manager() -> FallbackManager:
    return FallbackManager()


@pytest.fixture
def request_() -> ChatRequest:
    return ChatRequest(messages=(ChatMessage(role=MessageRole.USER, content="hi"),))


def _client(*side_effect) -> MagicMock:
    client = MagicMock()
    client.chat = AsyncMock(side_effect=list(side_effect))
    return client


class TestLLMFallback:
    """Tests for client fallback chains."""

    @pytest.mark.asyncio
    async def test_primary_success(self, manager, request_):
        primary = _client(ChatResponse(content="primary"))
        fallback = _client(ChatResponse(content="fallback"))

        response = await manager.fallback_llm(primary, fallback, request_)

        assert response.content == "primary"
        fallback.chat.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_chain_uses_next_client(self, manager, request_):
        clients = [_client(LLMError("down")), _client(LLMError("down")), _client(ChatResponse(content="third"))]
        response = await manager.fallback_llm_chain(clients, request_)
        assert response.content == "third"

    @pytest.mark.asyncio
    async def test_chain_raises_last_error(self, manager, request_):
        last = LLMError("last")
        with pytest.raises(LLMError) as exc_info:
            await manager.fallback_llm_chain([_client(LLMError("first")), _client(last)], request_)
        assert exc_info.value is last

    @pytest.mark.asyncio
    async def test_empty_chain_rejected(self, manager, request_):
        with pytest.raises(ValueError):
            await manager.fallback_llm_chain([], request_)

    @pytest.mark.asyncio
    async def test_fallback_chat_client(self, request_):
        client = FallbackChatClient([_client(LLMError("down")), _client(ChatResponse(content="ok"))])
        response = await client.chat(request_)
        assert response.content == "ok"

    @pytest.mark.asyncio
    async def test_fallback_chat_client_skips_open_breaker(self, request_):
        """A primary that keeps failing is no longer called once its breaker opens."""
        primary = _client(*[LLMError("down")] * 2)
        secondary = _client(*[ChatResponse(content="ok")] * 3)
        client = FallbackChatClient([primary, secondary], failure_threshold=2)

        for _ in range(3):
            assert (await client.chat(request_)).content == "ok"

        assert primary.chat.await_count == 2
        assert secondary.chat.await_count == 3


class TestToolFallback:
    """Tests for fallback_tool."""

    @pytest.mark.asyncio
    async def test_failed_result_uses_fallback(self, manager):
        primary = AsyncMock(return_value=ToolResult(success=False, error="nope"))
        fallback = AsyncMock(return_value=ToolResult(success=True, data="fb"))

        result = await manager.fallback_tool(primary, fallback)

        assert result.data == "fb"

    @pytest.mark.asyncio
    async def test_raising_primary_uses_fallback(self, manager):
        primary = AsyncMock(side_effect=RuntimeError("boom"))
        fallback = AsyncMock(return_value=ToolResult(success=True, data="fb"))
        assert (await manager.fallback_tool(primary, fallback)).success

    @pytest.mark.asyncio
    async def test_successful_primary(self, manager):
        primary = AsyncMock(return_value=ToolResult(success=True, data="p"))
        fallback = AsyncMock()
        assert (await manager.fallback_tool(primary, fallback)).data == "p"
        fallback.assert_not_awaited()


class TestPartialFailure:
    """Tests for tolerate_partial_failure."""

    @staticmethod
    def _ops(successes: int, failures: int):
        ops = [AsyncMock(return_value=i) for i in range(successes)]
        ops += [AsyncMock(side_effect=RuntimeError(f"err{i}")) for i in range(failures)]
        return ops

    @pytest.mark.asyncio
    async def test_three_of_five_passes_at_half(self, manager):
        results = await manager.tolerate_partial_failure(self._ops(3, 2), min_success_rate=0.5)
        assert results == [0, 1, 2]

    @pytest.mark.asyncio
    async def test_three_of_five_fails_at_ninety_percent(self, manager):
        with pytest.raises(PartialFailureError) as exc_info:
            await manager.tolerate_partial_failure(self._ops(3, 2), min_success_rate=0.9)

        message = str(exc_info.value)
        assert "3/5 succeeded" in message
        assert "err0" in message and "err1" in message
        assert len(exc_info.value.errors) == 2

    @pytest.mark.asyncio
    async def test_empty_batch(self, manager):
        assert await manager.tolerate_partial_failure([]) == []

    @pytest.mark.asyncio
    async def test_invalid_rate(self, manager):
        with pytest.raises(ValueError):
            await manager.tolerate_partial_failure(self._ops(1, 0), min_success_rate=1.5)


class TestWithTimeout:
    """Tests for with_timeout."""

    @pytest.mark.asyncio
    async def test_timeout_without_fallback_raises(self, manager):
        async def slow():
            await asyncio.sleep(1)

        with pytest.raises(OperationTimeoutError):
            await manager.with_timeout(slow, timeout=0.01)

    @pytest.mark.asyncio
    async def test_timeout_uses_fallback(self, manager):
        async def slow():
            await asyncio.sleep(1)
            return "slow"

        fallback = AsyncMock(return_value="fast")
        assert await manager.with_timeout(slow, timeout=0.01, fallback=fallback) == "fast"

    @pytest.mark.asyncio
    async def test_error_uses_fallback(self, manager):
        operation = AsyncMock(side_effect=RuntimeError("boom"))
        fallback = AsyncMock(return_value="fb")
        assert await manager.with_timeout(operation, timeout=1, fallback=fallback) == "fb"

    @pytest.mark.asyncio
    async def test_operation_timeout_error_is_not_relabelled(self, manager):
        operation = AsyncMock(side_effect=TimeoutError("upstream socket timed out"))

        with pytest.raises(TimeoutError, match="upstream socket") as exc_info:
            await manager.with_timeout(operation, timeout=5)

        assert not isinstance(exc_info.value, OperationTimeoutError)

    @pytest.mark.asyncio
    async def test_operation_timeout_error_uses_fallback(self, manager):
        operation = AsyncMock(side_effect=TimeoutError("upstream socket timed out"))
        fallback = AsyncMock(return_value="fb")
        assert await manager.with_timeout(operation, timeout=5, fallback=fallback) == "fb"


class TestCircuitBreaker:
    """Tests for CircuitBreaker state transitions."""

    @pytest.mark.asyncio
    async def test_opens_after_threshold_and_half_opens(self):
        clock = FakeClock()
        changes = []
        breaker = CircuitBreaker(
            "llm", failure_threshold=2, reset_timeout=30, clock=clock,
            on_state_change=lambda old, new: changes.append((old, new)),
        )
        failing = AsyncMock(side_effect=RuntimeError("down"))

        for _ in range(2):
            with pytest.raises(RuntimeError):
                await breaker.call(failing)
        assert breaker.state == CircuitState.OPEN

        with pytest.raises(CircuitOpenError):
            await breaker.call(failing)
        assert failing.await_count == 2

        clock.now = 30
        assert breaker.state == CircuitState.HALF_OPEN

        assert await breaker.call(AsyncMock(return_value="ok")) == "ok"
        assert breaker.state == CircuitState.CLOSED
        assert breaker.failure_count == 0
        assert changes == [
            (CircuitState.CLOSED, CircuitState.OPEN),
            (CircuitState.OPEN, CircuitState.HALF_OPEN),
            (CircuitState.HALF_OPEN, CircuitState.CLOSED),
        ]

    @pytest.mark.asyncio
    async def test_failed_trial_reopens(self):
        clock = FakeClock()
        breaker = CircuitBreaker(failure_threshold=1, reset_timeout=10, clock=clock)
        breaker.record_failure()
        clock.now = 10
        assert breaker.state == CircuitState.HALF_OPEN

        with pytest.raises(RuntimeError):
            await breaker.call(AsyncMock(side_effect=RuntimeError("still down")))
        assert breaker.state == CircuitState.OPEN

    @pytest.mark.asyncio
    async def test_manager_breakers_persist_across_calls(self, manager):
        failing = AsyncMock(side_effect=RuntimeError("down"))
        for _ in range(3):
            with pytest.raises(RuntimeError):
                await manager.with_circuit_breaker(failing, "svc", failure_threshold=3)

        with pytest.raises(CircuitOpenError):
            await manager.with_circuit_breaker(failing, "svc", failure_threshold=3)
        assert manager.get_breaker("svc").state == CircuitState.OPEN

        manager.reset_breakers()
        assert manager.get_breaker("svc").state == CircuitState.CLOSED

    def test_invalid_threshold(self):
        with pytest.raises(ValueError):
            CircuitBreaker(failure_threshold=0)
