"""Unit tests for the OpenAI LLM provider adapter."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import openai
import pytest

from knowledge.providers.llm.openai_provider import OpenAILLMProvider
from knowledge.utils.errors import LLMError, RateLimitError
from tests.conftest import make_settings


def _completion(content: str | None) -> MagicMock:
    response = MagicMock()
    response.choices = [MagicMock(message=MagicMock(content=content))]
    response.usage = MagicMock(total_tokens=12)
    return response


class TestOpenAILLMProvider:
    def test_provider_info(self) -> None:
        provider = OpenAILLMProvider(make_settings())
        assert provider.get_provider_name() == "openai"
        assert provider.is_available() is True
        assert OpenAILLMProvider(make_settings(openai_api_key="")).is_available() is False

    def test_base_url_forwarded(self) -> None:
        with patch("knowledge.providers.llm.openai_provider.openai.AsyncOpenAI") as mock_cls:
            provider = OpenAILLMProvider(make_settings(openai_base_url="http://llm.local/v1"))
        assert mock_cls.call_args.kwargs["base_url"] == "http://llm.local/v1"
        assert provider.get_provider_name() == "openai-compatible"

    @pytest.mark.asyncio
    async def test_complete(self) -> None:
        client = AsyncMock()
        client.chat.completions.create = AsyncMock(return_value=_completion('["a"]'))
        provider = OpenAILLMProvider(make_settings(openai_text_model="gpt-test"), client=client)

        result = await provider.complete("system", "user", temperature=0.0, max_tokens=50)

        assert result == '["a"]'
        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "gpt-test"
        assert kwargs["messages"][0] == {"role": "system", "content": "system"}
        assert kwargs["temperature"] == 0.0
        assert kwargs["max_tokens"] == 50

    @pytest.mark.asyncio
    async def test_empty_response(self) -> None:
        client = AsyncMock()
        client.chat.completions.create = AsyncMock(return_value=_completion(None))
        with pytest.raises(LLMError, match="empty response"):
            await OpenAILLMProvider(make_settings(), client=client).complete("s", "u")

    @pytest.mark.asyncio
    async def test_rate_limit(self) -> None:
        response = httpx.Response(
            429, request=httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
        )
        client = AsyncMock()
        client.chat.completions.create = AsyncMock(
            side_effect=openai.RateLimitError(message="slow down", response=response, body=None)
        )
        with pytest.raises(RateLimitError):
            await OpenAILLMProvider(make_settings(), client=client).complete("s", "u")

    @pytest.mark.asyncio
    async def test_api_error(self) -> None:
        client = AsyncMock()
        client.chat.completions.create = AsyncMock(
            side_effect=openai.APIError(message="boom", request=MagicMock(), body=None)
        )
        with pytest.raises(LLMError, match="API error"):
            await OpenAILLMProvider(make_settings(), client=client).complete("s", "u")
