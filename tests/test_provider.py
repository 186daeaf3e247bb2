# FILE: tests/test_provider.py
"""Tests for study_pipeline/generation/provider.py against a mocked OpenAI-compatible endpoint."""

import json

import httpx
import pytest
from openai import AsyncOpenAI

from study_pipeline.generation.prompts import STUDY_SET_RESPONSE_FORMAT
from study_pipeline.generation.provider import OpenRouterProvider
from study_pipeline.pipeline.errors import ProviderError


def completion(content):
    return {
        "id": "cmpl-1",
        "object": "chat.completion",
        "created": 1700000000,
        "model": "test/model",
        "choices": [{"index": 0, "message": {"role": "assistant", "content": content}, "finish_reason": "stop"}],
    }


def make_provider(status, payload, seen=None):
    def handler(request):
        if seen is not None:
            seen.append(request)
        return httpx.Response(status, json=payload)

    client = AsyncOpenAI(
        api_key="sk-test",
        base_url="https://openrouter.test/api/v1",
        max_retries=0,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )
    return OpenRouterProvider("sk-test", client=client)


class TestComplete:
    @pytest.mark.asyncio
    async def test_returns_trimmed_content(self):
        seen = []
        provider = make_provider(200, completion('  {"ok": true}  '), seen)
        output = await provider.complete(
            "system", "user", model="test/model", response_format=STUDY_SET_RESPONSE_FORMAT
        )

        assert output == '{"ok": true}'
        body = json.loads(seen[0].content)
        assert body["model"] == "test/model"
        assert body["messages"][0] == {"role": "system", "content": "system"}
        assert body["response_format"]["json_schema"]["name"] == "study_set"
        assert seen[0].headers["X-Title"] == "Heaven Study Sets"

    @pytest.mark.asyncio
    async def test_empty_content(self):
        provider = make_provider(200, completion(""))
        with pytest.raises(ProviderError) as exc:
            await provider.complete("s", "u", model="m")
        assert exc.value.message == "OpenRouter returned empty content"

    @pytest.mark.asyncio
    async def test_api_error_is_provider_failed(self):
        provider = make_provider(400, {"error": {"message": "bad model"}})
        with pytest.raises(ProviderError) as exc:
            await provider.complete("s", "u", model="m")
        assert exc.value.code == "provider_failed"
        assert exc.value.message.startswith("LLM API error:")

    @pytest.mark.asyncio
    async def test_blank_key_fails_lazily(self):
        provider = OpenRouterProvider("   ")
        with pytest.raises(ProviderError) as exc:
            await provider.complete("s", "u", model="m")
        assert exc.value.message == "API key is empty after trimming"
