# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
from openjragent.core.exceptions import ConfigurationError
from openjragent.core.types import LLMConfig
from openjragent.drivers.openai import DEFAULT_BASE_URL, OpenAIChatClient


# Providers speaking the OpenAI chat completions protocol, with their default endpoints.
PROVIDER_BASE_URLS: dict[str, str] = {
    "openai": DEFAULT_BASE_URL,
    "openrouter": "https://openrouter.ai/api/v1",
    "deepseek": "https://api.deepseek.com/v1",
    "ollama": "http://localhost:11434/v1",
}


def create_chat_client(config: LLMConfig) -> OpenAIChatClient:
    """Create a chat client for a model role.

    Args:
        config: Model role configuration. ``base_url`` overrides the provider default.

    Returns:
        Configured chat client.

    Raises:
        ConfigurationError: If the provider is not supported.
    """
    base_url = PROVIDER_BASE_URLS.get(config.provider)
    if base_url is None:
        raise ConfigurationError(
            f"Unknown LLM provider: {config.provider}. Valid options: {sorted(PROVIDER_BASE_URLS)}",
            details={"provider": config.provider},
        )
    if config.base_url is None:
        config = config.model_copy(update={"base_url": base_url})
    return OpenAIChatClient(config)
