# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""Failure classification and handling policy."""
from enum import StrEnum

from loguru import logger
from pydantic import BaseModel, ConfigDict

from openjragent.core.events import EventEmitter, EventType
from openjragent.core.exceptions import AgentError, ErrorCategory, ToolExecutionError
from openjragent.core.state import AgentPhase
from openjragent.core.types import ErrorHandlingConfig, RetryConfig
from openjragent.resilience.retry import RetryManager, is_transient_error


class ErrorAction(StrEnum):
    """What the caller should do about a failure."""

    RETRY = "retry"
    FALLBACK = "fallback"
    SKIP = "skip"
    FAIL = "fail"
    ABORT = "abort"


class ErrorContext(BaseModel):
    """Where and when a failure happened."""

    model_config = ConfigDict(frozen=True)

    phase: AgentPhase | None = None
    iteration: int = 0
    retry_count: int = 0
    task_id: str | None = None
    operation: str | None = None


class ErrorHandlingResult(BaseModel):
    """Decision returned by ``ErrorHandler.handle``.

    Attributes:
        category: Classification of the failure.
        action: Action the caller should take.
        delay: Seconds to wait before retrying, for ``retry``.
        suggestion: Hint for the user or the next attempt.
        message: The failure message.
    """

    model_config = ConfigDict(frozen=True)

    category: ErrorCategory
    action: ErrorAction
    delay: float | None = None
    suggestion: str | None = None
    message: str


_CRITICAL_BUILTINS: tuple[type[Exception], ...] = (MemoryError, RecursionError)


class ErrorHandler:
    """Classifies failures and maps them to an action.

    Policy:
        transient: retry with backoff up to ``retry.max_retries``, then fail.
        recoverable: tool errors while executing suggest a fallback, others are skipped.
        permanent: fail.
        critical: abort.
    """

    def __init__(
        self,
        retry_config: RetryConfig | None = None,
        config: ErrorHandlingConfig | None = None,
        emitter: EventEmitter | None = None,
    ) -> None:
        self.retry = RetryManager(retry_config)
        self.config = config or ErrorHandlingConfig()
        self.emitter = emitter

    def classify(self, error: BaseException) -> ErrorCategory:
        """Classify a failure.

        Explicit ``AgentError`` categories win, then known critical builtins,
        then transient types and message heuristics. Everything else is
        permanent.
        """
        if isinstance(error, AgentError):
            return error.category
        if isinstance(error, _CRITICAL_BUILTINS):
            return ErrorCategory.CRITICAL
        if is_transient_error(error):
            return ErrorCategory.TRANSIENT
        return ErrorCategory.PERMANENT

    def handle(self, error: BaseException, context: ErrorContext | None = None) -> ErrorHandlingResult:
        """Decide how to react to ``error``.

        Args:
            error: The failure.
            context: Phase, iteration and retry count at the time of failure.

        Returns:
            The chosen action with an optional delay and suggestion.
        """
        context = context or ErrorContext()
        category = self.classify(error)
        message = str(error) or type(error).__name__
        result = self._decide(error, category, context, message)

        logger.warning(
            "Error handled",
            category=str(category),
            action=str(result.action),
            error_type=type(error).__name__,
            error=message,
            phase=str(context.phase) if context.phase else None,
            retry_count=context.retry_count,
        )
        if self.emitter is not None:
            self.emitter.emit(
                EventType.ERROR_OCCURRED,
                {
                    "error": message,
                    "error_type": type(error).__name__,
                    "category": str(category),
                    "action": str(result.action),
                    "phase": str(context.phase) if context.phase else None,
                    "task_id": context.task_id,
                },
            )
        return result

    def _decide(
        self,
        error: BaseException,
        category: ErrorCategory,
        context: ErrorContext,
        message: str,
    ) -> ErrorHandlingResult:
        match category:
            case ErrorCategory.TRANSIENT:
                if self.config.enable_auto_retry and context.retry_count < self.retry.config.max_retries:
                    return ErrorHandlingResult(
                        category=category,
                        action=ErrorAction.RETRY,
                        delay=self.retry.calculate_delay(context.retry_count, error=error),
                        suggestion="Temporary failure, retrying",
                        message=message,
                    )
                return ErrorHandlingResult(
                    category=category,
                    action=ErrorAction.FAIL,
                    suggestion="Retry limit reached, check connectivity or provider status",
                    message=message,
                )
            case ErrorCategory.RECOVERABLE:
                if (
                    isinstance(error, ToolExecutionError)
                    and context.phase == AgentPhase.EXECUTING
                    and self.config.enable_fallback
                ):
                    return ErrorHandlingResult(
                        category=category,
                        action=ErrorAction.FALLBACK,
                        suggestion="Try an alternative tool or approach",
                        message=message,
                    )
                return ErrorHandlingResult(
                    category=category,
                    action=ErrorAction.SKIP,
                    suggestion="Skipping the failed step",
                    message=message,
                )
            case ErrorCategory.CRITICAL:
                return ErrorHandlingResult(
                    category=category,
                    action=ErrorAction.ABORT,
                    suggestion="Critical failure, aborting the run",
                    message=message,
                )
        return ErrorHandlingResult(category=category, action=ErrorAction.FAIL, message=message)
