"""Anthropic Claude backend using the anthropic SDK with native async."""

import logging
import os
import time

import anthropic as anthropic_sdk

from config.config_loader import ModelConfig
from concord.providers.base import Backend, ProviderError

logger = logging.getLogger(__name__)


class AnthropicBackend(Backend):
    """Claude via the Messages API. The system prompt goes in ``system``."""

    def __init__(self, config: ModelConfig) -> None:
        self._config = config
        api_key = os.environ.get(config.api_key_env or "", "").strip()
        if not api_key:
            raise ProviderError(config.name, f"Missing API key: {config.api_key_env}")
        self._client = anthropic_sdk.AsyncAnthropic(api_key=api_key)

    def name(self) -> str:
        return self._config.name

    def model_string(self) -> str:
        return self._config.model

    async def call(self, prompt: str, system_prompt: str | None = None) -> str:
        start = time.monotonic()
        kwargs = {}
        if system_prompt:
            kwargs["system"] = system_prompt
        try:
            response = await self._client.messages.create(
                model=self._config.model,
                max_tokens=self._config.max_tokens,
                messages=[{"role": "user", "content": prompt}],
                **kwargs,
            )
        except anthropic_sdk.APIError as exc:
            raise ProviderError(self._config.name, f"API call failed: {exc}") from exc

        text_blocks = [b.text for b in response.content or [] if b.type == "text"]
        if not text_blocks:
            raise ProviderError(self._config.name, "No text blocks in response")

        token_count: int | None = None
        if response.usage:
            token_count = response.usage.input_tokens + response.usage.output_tokens
        logger.debug("Anthropic %s: %.2fs, %s tokens", self._config.model, time.monotonic() - start, token_count)

        return "\n".join(text_blocks)
