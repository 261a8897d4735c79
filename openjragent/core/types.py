# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""Configuration models shared across the agent core.

All sections have defaults so that an empty settings file yields a usable
configuration. ``Settings`` additionally reads ``OPENJRAGENT_`` prefixed
environment variables, with ``__`` separating nested sections
(e.g. ``OPENJRAGENT_AGENT__MAX_ITERATIONS=5``).
"""
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class BackoffStrategy(StrEnum):
    """Delay strategies understood by the retry manager.

    Attributes:
        EXPONENTIAL: base * 2**attempt plus random jitter, capped.
        LINEAR: base * (attempt + 1), capped.
        FIXED: Constant ``fixed_delay``.
        ADAPTIVE: Honour a retry-after hint, else exponential.
    """

    EXPONENTIAL = "exponential"
    LINEAR = "linear"
    FIXED = "fixed"
    ADAPTIVE = "adaptive"


class RetryConfig(BaseModel):
    """Retry configuration for transient failures.

    Attributes:
        max_retries: Maximum number of retry attempts (0-10).
        base_delay: Base delay in seconds for computed backoff.
        max_delay: Maximum delay cap in seconds.
        fixed_delay: Delay in seconds used by the fixed strategy.
        jitter: Upper bound in seconds of the random jitter added to exponential delays.
        strategy: Backoff strategy to use.
    """

    model_config = ConfigDict(frozen=True)

    max_retries: int = Field(
        default=3, ge=0, le=10, description="Maximum number of retry attempts"
    )
    base_delay: float = Field(
        default=1.0, ge=0.0, le=30.0, description="Base delay in seconds for backoff"
    )
    max_delay: float = Field(
        default=60.0, ge=0.0, le=300.0, description="Maximum delay cap in seconds"
    )
    fixed_delay: float = Field(default=2.0, ge=0.0, le=300.0)
    jitter: float = Field(default=1.0, ge=0.0, le=10.0)
    strategy: BackoffStrategy = BackoffStrategy.EXPONENTIAL


class AgentConfig(BaseModel):
    """Behaviour of the main loop.

    Attributes:
        max_iterations: Hard bound on loop iterations.
        enable_reflection: Run the reflector once all tasks are terminal.
        require_confirmation: Ask the user to confirm each new plan.
        classify_goals: Try a lightweight simple/complex classification first.
        auto_save: Persist the session periodically while running.
        save_interval: Seconds between automatic saves.
        critical_priority_threshold: Tasks with priority at or below this halt the run on failure.
        state_dir: Directory for the final state file written after each run, None to skip it.
    """

    max_iterations: int = Field(default=10, ge=1, le=1000)
    enable_reflection: bool = True
    require_confirmation: bool = True
    classify_goals: bool = True
    auto_save: bool = True
    save_interval: float = Field(default=60.0, gt=0)
    critical_priority_threshold: int = Field(default=2, ge=0)
    state_dir: str | None = "logs"


class LLMConfig(BaseModel):
    """Connection and sampling parameters for one model role."""

    provider: str = "openai"
    model: str = "gpt-4o-mini"
    api_key: SecretStr | None = None
    base_url: str | None = None
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_tokens: int = Field(default=4096, ge=1)
    timeout: float = Field(default=120.0, gt=0)


class LLMSettings(BaseModel):
    """Per-role model configuration."""

    planner: LLMConfig = Field(default_factory=lambda: LLMConfig(temperature=0.7, max_tokens=4096))
    executor: LLMConfig = Field(default_factory=lambda: LLMConfig(temperature=0.3, max_tokens=4096))
    reflector: LLMConfig = Field(default_factory=lambda: LLMConfig(temperature=0.5, max_tokens=2048))


class ToolsConfig(BaseModel):
    """Tool invocation policy.

    Attributes:
        enabled: Names of tools to expose. Empty means every registered tool.
        confirm_dangerous: Require confirmation before running dangerous tools.
        timeout: Per-call timeout in seconds.
        critical_tools: Tools whose failure fails the task that called them.
    """

    enabled: list[str] = Field(default_factory=list)
    confirm_dangerous: bool = True
    timeout: float = Field(default=60.0, gt=0)
    critical_tools: list[str] = Field(default_factory=lambda: ["file_write", "shell_exec"])


class StorageConfig(BaseModel):
    """Session persistence location."""

    session_dir: str = ".workspace/sessions"


class ErrorHandlingConfig(BaseModel):
    """Error handling and snapshot retention policy."""

    enable_auto_retry: bool = True
    enable_fallback: bool = True
    max_snapshots: int = Field(default=10, ge=1)
    max_snapshot_age: float = Field(default=3600.0, gt=0)


class LoggingConfig(BaseModel):
    """Log sink configuration."""

    level: str = "INFO"


class Settings(BaseSettings):
    """Global settings for openjragent."""

    model_config = SettingsConfigDict(
        env_prefix="OPENJRAGENT_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    agent: AgentConfig = Field(default_factory=AgentConfig)
    llm: LLMSettings = Field(default_factory=LLMSettings)
    tools: ToolsConfig = Field(default_factory=ToolsConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    error_handling: ErrorHandlingConfig = Field(default_factory=ErrorHandlingConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
