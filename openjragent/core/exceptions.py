# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""Custom exceptions for openjragent.

Every exception raised deliberately by the core derives from ``AgentError``,
which carries a machine-readable ``code``, a ``details`` mapping and an
error ``category`` used by the resilience layer to decide how to react.
"""
from enum import StrEnum
from typing import Any


class ErrorCategory(StrEnum):
    """Coarse classification of a failure.

    Attributes:
        TRANSIENT: Timeouts, rate limits, network hiccups. Worth retrying.
        RECOVERABLE: Tool validation or execution failures. Skip or fall back.
        PERMANENT: Logic errors. Fail without retry.
        CRITICAL: Abort the whole run immediately.
    """

    TRANSIENT = "transient"
    RECOVERABLE = "recoverable"
    PERMANENT = "permanent"
    CRITICAL = "critical"


class AgentError(Exception):
    """Base exception for all openjragent errors.

    Attributes:
        message: Human readable description.
        code: Stable machine-readable error code.
        details: Extra structured context.
        category: How the resilience layer should treat this error.
    """

    code = "UNKNOWN_ERROR"
    default_category = ErrorCategory.PERMANENT

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
        category: ErrorCategory | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.details: dict[str, Any] = dict(details or {})
        self.category = category or self.default_category

    @property
    def recoverable(self) -> bool:
        """Whether the run can continue after this error."""
        return self.category in (ErrorCategory.TRANSIENT, ErrorCategory.RECOVERABLE)

    @property
    def retryable(self) -> bool:
        """Whether repeating the same operation may succeed."""
        return self.category == ErrorCategory.TRANSIENT

    def to_dict(self) -> dict[str, Any]:
        """Serialize the error for events and logs."""
        return {
            "type": type(self).__name__,
            "code": self.code,
            "message": self.message,
            "category": str(self.category),
            "details": self.details,
        }


class ConfigurationError(AgentError):
    """Raised when required configuration is missing or invalid."""

    code = "CONFIG_ERROR"


class ValidationError(AgentError):
    """Raised when input to an operation fails validation."""

    code = "VALIDATION_ERROR"
    default_category = ErrorCategory.RECOVERABLE


class ToolExecutionError(AgentError):
    """Raised when a tool cannot be found or fails while executing."""

    code = "TOOL_ERROR"
    default_category = ErrorCategory.RECOVERABLE

    def __init__(
        self,
        message: str,
        tool_name: str | None = None,
        details: dict[str, Any] | None = None,
        category: ErrorCategory | None = None,
    ) -> None:
        merged = dict(details or {})
        if tool_name is not None:
            merged["tool_name"] = tool_name
        super().__init__(message, details=merged, category=category)
        self.tool_name = tool_name


class LLMError(AgentError):
    """Raised when a model provider call fails.

    Status codes 429 and 503 are treated as transient, anything else
    as permanent.
    """

    code = "LLM_ERROR"

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
        category: ErrorCategory | None = None,
    ) -> None:
        merged = dict(details or {})
        if status_code is not None:
            merged["status_code"] = status_code
        if category is None and status_code in (429, 503):
            category = ErrorCategory.TRANSIENT
        super().__init__(message, details=merged, category=category)
        self.status_code = status_code


class LLMTimeoutError(LLMError):
    """Raised when a model call does not answer in time."""

    default_category = ErrorCategory.TRANSIENT


class LLMConnectionError(LLMError):
    """Raised when the provider cannot be reached or drops the connection."""

    default_category = ErrorCategory.TRANSIENT


class LLMRateLimitError(LLMError):
    """Raised when the provider rejects a call due to rate limiting."""

    default_category = ErrorCategory.TRANSIENT

    def __init__(
        self,
        message: str,
        retry_after: float | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        merged = dict(details or {})
        if retry_after is not None:
            merged["retry_after"] = retry_after
        super().__init__(message, status_code=429, details=merged)
        self.retry_after = retry_after


class StorageError(AgentError):
    """Raised when session or state persistence fails."""

    code = "STORAGE_ERROR"
    default_category = ErrorCategory.RECOVERABLE


class SecurityError(AgentError):
    """Raised when a security constraint is violated."""

    code = "SECURITY_ERROR"
    default_category = ErrorCategory.CRITICAL


class CriticalError(AgentError):
    """Raised when the run must be aborted immediately."""

    code = "CRITICAL_ERROR"
    default_category = ErrorCategory.CRITICAL


class PlanningError(AgentError):
    """Raised when no usable plan could be produced."""

    code = "PLANNING_ERROR"


class OperationTimeoutError(AgentError):
    """Raised when a guarded operation exceeds its time budget."""

    code = "TIMEOUT_ERROR"
    default_category = ErrorCategory.TRANSIENT


class CircuitOpenError(AgentError):
    """Raised when a circuit breaker rejects a call while open."""

    code = "CIRCUIT_OPEN"
    default_category = ErrorCategory.TRANSIENT


class PartialFailureError(AgentError):
    """Raised when too few operations in a batch succeeded.

    Attributes:
        errors: The failures collected from the batch, in submission order.
    """

    code = "PARTIAL_FAILURE"

    def __init__(self, message: str, errors: list[BaseException]) -> None:
        super().__init__(message, details={"failures": [str(e) for e in errors]})
        self.errors = errors
