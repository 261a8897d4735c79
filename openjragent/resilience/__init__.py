"""Retry, error classification, fallback and snapshot utilities."""

from openjragent.resilience.error_handler import ErrorAction, ErrorContext, ErrorHandler
from openjragent.resilience.fallback import CircuitBreaker, FallbackChatClient, FallbackManager
from openjragent.resilience.retry import RetryManager
from openjragent.resilience.snapshot import StateSnapshotManager


__all__ = [
    "CircuitBreaker",
    "ErrorAction",
    "ErrorContext",
    "ErrorHandler",
    "FallbackChatClient",
    "FallbackManager",
    "RetryManager",
    "StateSnapshotManager",
]
