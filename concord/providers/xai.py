"""xAI Grok backend over its OpenAI-compatible API."""

from config.config_loader import ModelConfig
from concord.providers.base import ProviderError
from concord.providers.openai_provider import OpenAIBackend


class XAIBackend(OpenAIBackend):
    """Grok via the openai SDK pointed at the xAI endpoint."""

    def __init__(self, config: ModelConfig) -> None:
        if not config.base_url:
            raise ProviderError(config.name, "base_url is required for xAI backend")
        super().__init__(config)
