"""Tests for the OpenAI (ChatGPT) provider."""

from unittest.mock import AsyncMock, patch

import httpx
import pytest

from answerwatch.core.exceptions import ProviderError
from answerwatch.providers.llm_openai import API_URL, OpenAiProvider, _is_reasoning_model

RESPONSE = {
    "model": "gpt-4o-2024-08-06",
    "output": [
        {"type": "web_search_call", "id": "ws_1", "status": "completed"},
        {
            "type": "message",
            "content": [
                {
                    "type": "output_text",
                    "text": "Tailscale is the easiest mesh VPN.",
                    "annotations": [
                        {"type": "url_citation", "url": "https://tailscale.com/kb/1017", "title": "Install"},
                        {"type": "url_citation", "url": "https://tailscale.com/kb/1017", "title": "Install"},
                    ],
                }
            ],
        },
    ],
    "usage": {"input_tokens": 1000, "output_tokens": 500, "total_tokens": 1500},
}


def _response(status: int, data: dict) -> httpx.Response:
    return httpx.Response(status, json=data, request=httpx.Request("POST", API_URL))


def _mock_client(MockClient, *responses):
    mock_client = AsyncMock()
    mock_client.post.side_effect = list(responses)
    mock_client.__aenter__ = AsyncMock(return_value=mock_client)
    mock_client.__aexit__ = AsyncMock(return_value=False)
    MockClient.return_value = mock_client
    return mock_client


@pytest.fixture
def provider():
    p = OpenAiProvider(api_key="sk-test-fake-key", model="gpt-4o", max_retries=2)
    p.retry_delay = 0
    return p


class TestCalculateCost:
    def test_cost_gpt4o(self, provider):
        cost = provider._calculate_cost(input_tokens=1000, output_tokens=500)
        assert cost == round((1000 * 2.50 + 500 * 10.00) / 1_000_000, 6)

    def test_unknown_model_uses_default_pricing(self):
        p = OpenAiProvider(api_key="k", model="gpt-unknown")
        assert p._calculate_cost(1000, 0) == round(1000 * 2.50 / 1_000_000, 6)

    def test_reasoning_models(self):
        assert _is_reasoning_model("gpt-5-mini")
        assert _is_reasoning_model("o3")
        assert not _is_reasoning_model("gpt-4o")


class TestGenerate:
    @pytest.mark.asyncio
    async def test_success_with_annotations(self, provider):
        with patch("answerwatch.providers.base.httpx.AsyncClient") as MockClient:
            mock_client = _mock_client(MockClient, _response(200, RESPONSE))
            result = await provider.generate("Best mesh VPN?")

        assert result.text == "Tailscale is the easiest mesh VPN."
        assert result.model == "gpt-4o-2024-08-06"
        assert result.usage.total_tokens == 1500
        assert [s.url for s in result.sources] == ["https://tailscale.com/kb/1017"]
        assert result.cost_usd > 0

        payload = mock_client.post.call_args.kwargs["json"]
        assert payload["tools"] == [{"type": "web_search_preview", "search_context_size": "high"}]
        assert payload["temperature"] == 0.7

    @pytest.mark.asyncio
    async def test_web_search_disabled(self, provider):
        with patch("answerwatch.providers.base.httpx.AsyncClient") as MockClient:
            mock_client = _mock_client(MockClient, _response(200, RESPONSE))
            await provider.generate("Best mesh VPN?", web_search=False)

        assert "tools" not in mock_client.post.call_args.kwargs["json"]

    @pytest.mark.asyncio
    async def test_reasoning_model_has_no_temperature(self):
        p = OpenAiProvider(api_key="k", model="gpt-5-mini")
        with patch("answerwatch.providers.base.httpx.AsyncClient") as MockClient:
            mock_client = _mock_client(MockClient, _response(200, RESPONSE))
            await p.generate("q")

        assert "temperature" not in mock_client.post.call_args.kwargs["json"]

    @pytest.mark.asyncio
    async def test_text_scan_when_no_annotations(self, provider):
        data = {
            "output": [
                {
                    "type": "message",
                    "content": [
                        {"type": "output_text", "text": "See https://netbird.io/docs and https://example.com/x"}
                    ],
                }
            ],
            "usage": {},
        }
        with patch("answerwatch.providers.base.httpx.AsyncClient") as MockClient:
            _mock_client(MockClient, _response(200, data))
            result = await provider.generate("q")

        assert [s.url for s in result.sources] == ["https://netbird.io/docs"]

    @pytest.mark.asyncio
    async def test_transient_error_retried(self, provider):
        with patch("answerwatch.providers.base.httpx.AsyncClient") as MockClient:
            mock_client = _mock_client(
                MockClient,
                _response(503, {"error": {"message": "overloaded"}}),
                _response(200, RESPONSE),
            )
            result = await provider.generate("q")

        assert result.text.startswith("Tailscale")
        assert mock_client.post.call_count == 2

    @pytest.mark.asyncio
    async def test_retries_exhausted(self, provider):
        with patch("answerwatch.providers.base.httpx.AsyncClient") as MockClient:
            mock_client = _mock_client(MockClient, *[_response(429, {"error": {"message": "rate"}})] * 3)
            with pytest.raises(ProviderError) as exc_info:
                await provider.generate("q")

        assert exc_info.value.status_code == 429
        assert mock_client.post.call_count == 3

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self, provider):
        with patch("answerwatch.providers.base.httpx.AsyncClient") as MockClient:
            mock_client = _mock_client(MockClient, _response(401, {"error": {"message": "bad key"}}))
            with pytest.raises(ProviderError) as exc_info:
                await provider.generate("q")

        assert exc_info.value.status_code == 401
        assert mock_client.post.call_count == 1

    @pytest.mark.asyncio
    async def test_timeout_retried(self, provider):
        with patch("answerwatch.providers.base.httpx.AsyncClient") as MockClient:
            mock_client = _mock_client(MockClient, httpx.ReadTimeout("slow"), _response(200, RESPONSE))
            result = await provider.generate("q")

        assert result.usage.total_tokens == 1500
        assert mock_client.post.call_count == 2
