# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""Model capability contract consumed by the agent core."""
from typing import Any, Protocol

from pydantic import BaseModel, ConfigDict, Field

from openjragent.core.state import ChatMessage, ToolCall


class TokenUsage(BaseModel):
    """Token accounting reported by the provider."""

    model_config = ConfigDict(frozen=True)

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class ChatRequest(BaseModel):
    """A single model round trip.

    Attributes:
        messages: Ordered conversation sent to the model.
        tools: OpenAI-style function schemas the model may call.
        temperature: Sampling temperature, provider default when None.
        max_tokens: Completion length hint, provider default when None.
    """

    model_config = ConfigDict(frozen=True)

    messages: tuple[ChatMessage, ...]
    tools: tuple[dict[str, Any], ...] = ()
    temperature: float | None = None
    max_tokens: int | None = None


class ChatResponse(BaseModel):
    """Model reply.

    Attributes:
        content: Assistant text, possibly empty when only tool calls are returned.
        tool_calls: Tool invocations requested by the model.
        finish_reason: Provider finish reason (e.g. "stop", "tool_calls").
        usage: Token usage for this round trip.
    """

    model_config = ConfigDict(frozen=True)

    content: str = ""
    tool_calls: tuple[ToolCall, ...] = ()
    finish_reason: str | None = None
    usage: TokenUsage = Field(default_factory=TokenUsage)


class ChatClient(Protocol):
    """Interface for interaction with LLMs.

    Implementations raise ``LLMError`` subclasses for provider failures so
    the resilience layer can classify them.
    """

    async def chat(self, request: ChatRequest) -> ChatResponse:
        """Send one request and return the model's reply.

        Args:
            request: Messages, tool schemas and sampling parameters.

        Returns:
            The model response.
        """
        ...
