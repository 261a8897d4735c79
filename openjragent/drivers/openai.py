# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""OpenAI-compatible chat completions client."""
import json
from typing import Any

import httpx
from loguru import logger

from openjragent.core.exceptions import LLMConnectionError, LLMError, LLMRateLimitError, LLMTimeoutError
from openjragent.core.state import ChatMessage, MessageRole, ToolCall
from openjragent.core.types import LLMConfig
from openjragent.drivers.base import ChatRequest, ChatResponse, TokenUsage


DEFAULT_BASE_URL = "https://api.openai.com/v1"


def _message_payload(message: ChatMessage) -> dict[str, Any]:
    payload: dict[str, Any] = {"role": str(message.role), "content": message.content}
    if message.role == MessageRole.ASSISTANT and message.tool_calls:
        payload["tool_calls"] = [
            {
                "id": call.id,
                "type": "function",
                "function": {"name": call.name, "arguments": json.dumps(call.arguments)},
            }
            for call in message.tool_calls
        ]
    if message.role == MessageRole.TOOL and message.tool_call_id:
        payload["tool_call_id"] = message.tool_call_id
    return payload


def _parse_tool_call(raw: dict[str, Any]) -> ToolCall:
    function = raw.get("function") or {}
    arguments = function.get("arguments") or "{}"
    if isinstance(arguments, str):
        try:
            arguments = json.loads(arguments)
        except json.JSONDecodeError:
            logger.warning("Tool call arguments are not valid JSON", tool_name=function.get("name"))
            arguments = {}
    return ToolCall(id=raw.get("id") or function.get("name", ""), name=function.get("name", ""), arguments=arguments)


class OpenAIChatClient:
    """Chat client for OpenAI-compatible ``/chat/completions`` endpoints.

    Args:
        config: Model role configuration.
        client: Optional preconfigured ``httpx.AsyncClient`` (e.g. with a mock transport).
    """

    def __init__(self, config: LLMConfig, client: httpx.AsyncClient | None = None):
        self.config = config
        headers = {}
        if config.api_key is not None:
            headers["Authorization"] = f"Bearer {config.api_key.get_secret_value()}"
        self.client = client or httpx.AsyncClient(
            base_url=config.base_url or DEFAULT_BASE_URL,
            headers=headers,
            timeout=httpx.Timeout(config.timeout),
        )

    async def close(self) -> None:
        """Close HTTP client."""
        await self.client.aclose()

    async def __aenter__(self) -> "OpenAIChatClient":
        """Enter async context manager."""
        return self

    async def __aexit__(self, *_: object) -> None:
        """Exit async context manager and close client."""
        await self.close()

    async def chat(self, request: ChatRequest) -> ChatResponse:
        """Send a chat completion request.

        Raises:
            LLMTimeoutError: If the request times out.
            LLMConnectionError: If the connection fails or is dropped.
            LLMRateLimitError: If the provider answers 429.
            LLMError: For any other transport or HTTP failure.
        """
        body: dict[str, Any] = {
            "model": self.config.model,
            "messages": [_message_payload(m) for m in request.messages],
            "temperature": request.temperature if request.temperature is not None else self.config.temperature,
            "max_tokens": request.max_tokens or self.config.max_tokens,
        }
        if request.tools:
            body["tools"] = list(request.tools)

        try:
            response = await self.client.post("/chat/completions", json=body)
        except httpx.TimeoutException as e:
            raise LLMTimeoutError(f"Request to {self.config.provider} timed out") from e
        except (httpx.NetworkError, httpx.RemoteProtocolError) as e:
            raise LLMConnectionError(f"Connection to {self.config.provider} failed: {e}") from e
        except httpx.HTTPError as e:
            raise LLMError(f"Request to {self.config.provider} failed: {e}") from e

        if response.status_code == 429:
            retry_after = response.headers.get("retry-after")
            raise LLMRateLimitError(
                f"Rate limited by {self.config.provider}",
                retry_after=float(retry_after) if retry_after and retry_after.isdigit() else None,
            )
        if response.status_code >= 400:
            raise LLMError(
                f"{self.config.provider} returned HTTP {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )

        data = response.json()
        choice = (data.get("choices") or [{}])[0]
        message = choice.get("message") or {}
        usage = data.get("usage") or {}
        return ChatResponse(
            content=message.get("content") or "",
            tool_calls=tuple(_parse_tool_call(c) for c in message.get("tool_calls") or []),
            finish_reason=choice.get("finish_reason"),
            usage=TokenUsage(
                prompt_tokens=usage.get("prompt_tokens", 0),
                completion_tokens=usage.get("completion_tokens", 0),
                total_tokens=usage.get("total_tokens", 0),
            ),
        )
