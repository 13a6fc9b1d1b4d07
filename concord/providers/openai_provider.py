"""OpenAI backend using the openai SDK with native async."""

import logging
import os
import time

from openai import AsyncOpenAI, OpenAIError

from config.config_loader import ModelConfig
from concord.providers.base import Backend, ProviderError

logger = logging.getLogger(__name__)


class OpenAIBackend(Backend):
    """Chat Completions backend. Also serves OpenAI-compatible endpoints via ``base_url``."""

    def __init__(self, config: ModelConfig) -> None:
        self._config = config
        api_key = os.environ.get(config.api_key_env or "", "").strip()
        if not api_key:
            raise ProviderError(config.name, f"Missing API key: {config.api_key_env}")
        self._client = AsyncOpenAI(api_key=api_key, base_url=config.base_url)

    def name(self) -> str:
        return self._config.name

    def model_string(self) -> str:
        return self._config.model

    async def call(self, prompt: str, system_prompt: str | None = None) -> str:
        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        start = time.monotonic()
        try:
            response = await self._client.chat.completions.create(
                model=self._config.model,
                messages=messages,
                max_tokens=self._config.max_tokens,
            )
        except OpenAIError as exc:
            raise ProviderError(self._config.name, f"API call failed: {exc}") from exc

        choice = response.choices[0] if response.choices else None
        if not choice or not choice.message.content:
            raise ProviderError(self._config.name, "Empty response content")

        logger.debug(
            "%s %s: %.2fs, %s tokens",
            self._config.name,
            self._config.model,
            time.monotonic() - start,
            response.usage.total_tokens if response.usage else None,
        )
        return choice.message.content
