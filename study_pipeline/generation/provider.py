# FILE: study_pipeline/generation/provider.py
"""
OpenAI-compatible chat completion provider (OpenRouter by default).

Single request/response call: no tools, no streaming. Any SDK failure or an
empty completion becomes ProviderError (provider_failed).
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from openai import AsyncOpenAI, OpenAIError

from study_pipeline.config import DEFAULT_OPENROUTER_API_URL, DEFAULT_PROVIDER_TIMEOUT_S
from study_pipeline.pipeline.errors import ProviderError

logger = logging.getLogger(__name__)

APP_REFERER = "https://heaven.computer"
APP_TITLE = "Heaven Study Sets"

DEFAULT_TEMPERATURE = 0.2
DEFAULT_MAX_TOKENS = 4000


class OpenRouterProvider:
    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_OPENROUTER_API_URL,
        timeout_seconds: float = DEFAULT_PROVIDER_TIMEOUT_S,
        client: Optional[AsyncOpenAI] = None,
    ):
        self._api_key = (api_key or "").strip()
        self._base_url = base_url
        self._timeout_seconds = timeout_seconds
        self._client = client

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            if not self._api_key:
                raise ProviderError("API key is empty after trimming")
            self._client = AsyncOpenAI(
                api_key=self._api_key,
                base_url=self._base_url,
                timeout=self._timeout_seconds,
                # worst_case_locked_seconds counts one attempt per call
                max_retries=0,
            )
        return self._client

    async def complete(
        self,
        system: str,
        user: str,
        *,
        model: str,
        response_format: Optional[Dict[str, Any]] = None,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        temperature: float = DEFAULT_TEMPERATURE,
    ) -> str:
        kwargs: Dict[str, Any] = dict(
            model=model,
            temperature=temperature,
            max_tokens=int(max_tokens),
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            extra_headers={"HTTP-Referer": APP_REFERER, "X-Title": APP_TITLE},
        )
        if response_format:
            kwargs["response_format"] = response_format

        try:
            resp = await self._get_client().chat.completions.create(**kwargs)
        except OpenAIError as e:
            logger.warning(f"[provider] {model} call failed: {e}")
            raise ProviderError(f"LLM API error: {e}")

        content = None
        if resp.choices:
            content = resp.choices[0].message.content
        output = (content or "").strip()
        if not output:
            raise ProviderError("OpenRouter returned empty content")
        return output
