"""Gemini backend using the google-genai SDK with native async."""

import logging
import os
import time

from google import genai
from google.genai import errors as genai_errors
from google.genai import types as genai_types

from config.config_loader import ModelConfig
from concord.providers.base import Backend, ProviderError

logger = logging.getLogger(__name__)


class GeminiBackend(Backend):
    """Google Gemini backend. The system prompt becomes ``system_instruction``."""

    def __init__(self, config: ModelConfig) -> None:
        self._config = config
        api_key = os.environ.get(config.api_key_env or "", "").strip()
        if not api_key:
            raise ProviderError(config.name, f"Missing API key: {config.api_key_env}")
        self._client = genai.Client(api_key=api_key)

    def name(self) -> str:
        return self._config.name

    def model_string(self) -> str:
        return self._config.model

    async def call(self, prompt: str, system_prompt: str | None = None) -> str:
        start = time.monotonic()
        try:
            response = await self._client.aio.models.generate_content(
                model=self._config.model,
                contents=prompt,
                config=genai_types.GenerateContentConfig(
                    max_output_tokens=self._config.max_tokens,
                    system_instruction=system_prompt,
                ),
            )
        except genai_errors.APIError as exc:
            raise ProviderError(self._config.name, f"API call failed: {exc}") from exc

        if not response.text:
            raise ProviderError(self._config.name, "Empty response text")

        token_count: int | None = None
        if response.usage_metadata:
            token_count = response.usage_metadata.total_token_count
        logger.debug("Gemini %s: %.2fs, %s tokens", self._config.model, time.monotonic() - start, token_count)

        return response.text
