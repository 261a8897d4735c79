"""Tests for RetryManager and transient error detection."""

from unittest.mock import AsyncMock, patch

import httpx
import pytest
from pydantic import ValidationError

from openjragent.core.exceptions import LLMError, LLMRateLimitError, LLMTimeoutError, ValidationError as AgentValidationError
from openjragent.core.types import BackoffStrategy, RetryConfig
from openjragent.resilience.retry import RetryManager, is_transient_error, retry_after_hint


class TestRetryConfig:
    """Test validation constraints for RetryConfig."""

    def test_default_values(self):
        config = RetryConfig()
        assert config.max_retries == 3
        assert config.base_delay == 1.0
        assert config.max_delay == 60.0
        assert config.strategy == BackoffStrategy.EXPONENTIAL

    def test_max_retries_bounds(self):
        with pytest.raises(ValidationError):
            RetryConfig(max_retries=-1)
        with pytest.raises(ValidationError):
            RetryConfig(max_retries=11)


class TestTransientDetection:
    """Tests for is_transient_error."""

    @pytest.mark.parametrize(
        "error",
        [
            TimeoutError(),
            ConnectionResetError(),
            httpx.ConnectError("refused"),
            RuntimeError("request timed out"),
            RuntimeError("ECONNRESET while reading"),
            LLMTimeoutError("slow"),
            LLMError("busy", status_code=503),
        ],
    )
    def test_transient(self, error):
        assert is_transient_error(error)

    @pytest.mark.parametrize(
        "error",
        [ValueError("bad input"), LLMError("bad request", status_code=400), AgentValidationError("invalid")],
    )
    def test_not_transient(self, error):
        assert not is_transient_error(error)

    def test_retry_after_hint(self):
        assert retry_after_hint(LLMRateLimitError("slow", retry_after=7)) == 7
        assert retry_after_hint(RuntimeError("Please retry after 12 seconds")) == 12
        assert retry_after_hint(RuntimeError("no hint")) is None


class TestCalculateDelay:
    """Tests for backoff strategies."""

    def test_exponential_without_jitter(self):
        manager = RetryManager(RetryConfig(base_delay=1.0, max_delay=60.0, jitter=0.0))
        assert [manager.calculate_delay(n) for n in range(4)] == [1.0, 2.0, 4.0, 8.0]

    def test_exponential_is_capped(self):
        manager = RetryManager(RetryConfig(base_delay=10.0, max_delay=30.0, jitter=0.0))
        assert manager.calculate_delay(5) == 30.0

    def test_exponential_jitter_bounds(self):
        manager = RetryManager(RetryConfig(base_delay=1.0, jitter=1.0))
        for _ in range(20):
            assert 2.0 <= manager.calculate_delay(1) <= 3.0

    def test_linear(self):
        manager = RetryManager(RetryConfig(base_delay=2.0, max_delay=5.0))
        delays = [manager.calculate_delay(n, BackoffStrategy.LINEAR) for n in range(3)]
        assert delays == [2.0, 4.0, 5.0]

    def test_fixed(self):
        manager = RetryManager(RetryConfig(fixed_delay=3.0))
        assert manager.calculate_delay(0, BackoffStrategy.FIXED) == 3.0
        assert manager.calculate_delay(4, BackoffStrategy.FIXED) == 3.0

    def test_adaptive_uses_hint_capped(self):
        manager = RetryManager(RetryConfig(max_delay=10.0, jitter=0.0))
        assert manager.calculate_delay(0, BackoffStrategy.ADAPTIVE, LLMRateLimitError("x", retry_after=4)) == 4.0
        assert manager.calculate_delay(0, BackoffStrategy.ADAPTIVE, LLMRateLimitError("x", retry_after=99)) == 10.0

    def test_adaptive_without_hint_is_exponential(self):
        manager = RetryManager(RetryConfig(base_delay=1.0, jitter=0.0))
        assert manager.calculate_delay(2, BackoffStrategy.ADAPTIVE, RuntimeError("x")) == 4.0


class TestWithRetry:
    """Tests for with_retry."""

    @pytest.mark.asyncio
    async def test_returns_first_success(self):
        operation = AsyncMock(return_value="ok")
        assert await RetryManager().with_retry(operation) == "ok"
        assert operation.await_count == 1

    @pytest.mark.asyncio
    async def test_transient_failures_make_k_plus_one_calls(self):
        """k retries mean k+1 calls before the error surfaces."""
        error = LLMTimeoutError("slow")
        operation = AsyncMock(side_effect=error)
        manager = RetryManager(RetryConfig(max_retries=3, jitter=0.0))

        with patch("openjragent.resilience.retry.asyncio.sleep", new_callable=AsyncMock) as sleep:
            with pytest.raises(LLMTimeoutError) as exc_info:
                await manager.with_retry(operation)

        assert exc_info.value is error
        assert operation.await_count == 4
        assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0, 4.0]

    @pytest.mark.asyncio
    async def test_recovers_after_transient_failure(self):
        operation = AsyncMock(side_effect=[ConnectionError("reset"), "ok"])

        with patch("openjragent.resilience.retry.asyncio.sleep", new_callable=AsyncMock):
            assert await RetryManager().with_retry(operation) == "ok"
        assert operation.await_count == 2

    @pytest.mark.asyncio
    async def test_non_retryable_error_reraised_unchanged(self):
        error = ValueError("bad input")
        operation = AsyncMock(side_effect=error)

        with patch("openjragent.resilience.retry.asyncio.sleep", new_callable=AsyncMock) as sleep:
            with pytest.raises(ValueError) as exc_info:
                await RetryManager().with_retry(operation)

        assert exc_info.value is error
        assert operation.await_count == 1
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_max_retries_override(self):
        operation = AsyncMock(side_effect=TimeoutError())

        with patch("openjragent.resilience.retry.asyncio.sleep", new_callable=AsyncMock):
            with pytest.raises(TimeoutError):
                await RetryManager().with_retry(operation, max_retries=1)
        assert operation.await_count == 2
