"""Chat client contract, OpenAI-compatible client and factory."""

from openjragent.drivers.base import ChatClient, ChatRequest, ChatResponse, TokenUsage
from openjragent.drivers.factory import create_chat_client


__all__ = [
    "ChatClient",
    "ChatRequest",
    "ChatResponse",
    "TokenUsage",
    "create_chat_client",
]
