"""Tests for the exception taxonomy."""

import pytest

from openjragent.core.exceptions import (
    AgentError,
    CriticalError,
    ErrorCategory,
    LLMError,
    LLMRateLimitError,
    LLMTimeoutError,
    PartialFailureError,
    SecurityError,
    StorageError,
    ToolExecutionError,
)


def test_agent_error_defaults():
    error = AgentError("boom")
    assert str(error) == "boom"
    assert error.code == "UNKNOWN_ERROR"
    assert error.category == ErrorCategory.PERMANENT
    assert not error.recoverable
    assert not error.retryable


@pytest.mark.parametrize(
    ("status_code", "category"),
    [(429, ErrorCategory.TRANSIENT), (503, ErrorCategory.TRANSIENT), (400, ErrorCategory.PERMANENT), (None, ErrorCategory.PERMANENT)],
)
def test_llm_error_category_depends_on_status(status_code, category):
    assert LLMError("failed", status_code=status_code).category == category


def test_transient_subclasses():
    assert LLMTimeoutError("slow").retryable
    rate_limited = LLMRateLimitError("slow down", retry_after=3)
    assert rate_limited.retryable
    assert rate_limited.status_code == 429
    assert rate_limited.details["retry_after"] == 3


def test_recoverable_and_critical_subclasses():
    tool_error = ToolExecutionError("failed", tool_name="shell_exec")
    assert tool_error.recoverable and not tool_error.retryable
    assert tool_error.details == {"tool_name": "shell_exec"}
    assert StorageError("disk").category == ErrorCategory.RECOVERABLE
    assert SecurityError("nope").category == ErrorCategory.CRITICAL
    assert CriticalError("stop").category == ErrorCategory.CRITICAL


def test_explicit_category_overrides_default():
    assert ToolExecutionError("x", category=ErrorCategory.CRITICAL).category == ErrorCategory.CRITICAL


def test_partial_failure_carries_errors():
    errors = [ValueError("a"), RuntimeError("b")]
    error = PartialFailureError("too many", errors)
    assert error.errors == errors
    assert error.details["failures"] == ["a", "b"]


def test_to_dict():
    data = StorageError("disk full", details={"path": "/tmp"}).to_dict()
    assert data == {
        "type": "StorageError",
        "code": "STORAGE_ERROR",
        "message": "disk full",
        "category": "recoverable",
        "details": {"path": "/tmp"},
    }
