"""Tests for the chat-completions style providers (Perplexity, xAI) and Anthropic."""

from unittest.mock import AsyncMock, patch

import httpx
import pytest

from answerwatch.providers.llm_anthropic import AnthropicProvider
from answerwatch.providers.llm_perplexity import PerplexityProvider, parse_chat_citations
from answerwatch.providers.llm_xai import XaiProvider


def _chat(content: str, **extra) -> dict:
    return {
        "model": "sonar",
        "choices": [{"message": {"content": content}, "finish_reason": "stop"}],
        "usage": {"prompt_tokens": 40, "completion_tokens": 60, "total_tokens": 100},
        **extra,
    }


def _patch_post(data: dict):
    patcher = patch("answerwatch.providers.base.httpx.AsyncClient")
    MockClient = patcher.start()
    mock_client = AsyncMock()
    mock_client.post.return_value = httpx.Response(200, json=data, request=httpx.Request("POST", "https://x"))
    mock_client.__aenter__ = AsyncMock(return_value=mock_client)
    mock_client.__aexit__ = AsyncMock(return_value=False)
    MockClient.return_value = mock_client
    return patcher, mock_client


class TestParseChatCitations:
    def test_search_results_preferred(self):
        data = {
            "search_results": [{"url": "https://netbird.io", "title": "NetBird"}],
            "citations": ["https://other.com"],
        }
        assert [(s.url, s.title) for s in parse_chat_citations(data)] == [("https://netbird.io", "NetBird")]

    def test_bare_citation_list(self):
        assert [s.url for s in parse_chat_citations({"citations": ["https://a.io", None, ""]})] == ["https://a.io"]

    def test_nothing(self):
        assert parse_chat_citations({}) == []


@pytest.mark.asyncio
async def test_perplexity_native_citations():
    patcher, mock_client = _patch_post(_chat("Use NetBird.", citations=["https://netbird.io/docs"]))
    try:
        result = await PerplexityProvider(api_key="pplx").generate("q")
    finally:
        patcher.stop()

    assert result.text == "Use NetBird."
    assert [s.url for s in result.sources] == ["https://netbird.io/docs"]
    assert result.cost_usd == round((40 * 1.00 + 60 * 1.00) / 1_000_000, 6)
    assert mock_client.post.call_args.kwargs["headers"]["Authorization"] == "Bearer pplx"


@pytest.mark.asyncio
async def test_xai_falls_back_to_text_scan():
    patcher, _ = _patch_post(_chat("Grok says try https://tailscale.com/pricing."))
    try:
        result = await XaiProvider(api_key="xai").generate("q")
    finally:
        patcher.stop()

    assert [s.url for s in result.sources] == ["https://tailscale.com/pricing"]


@pytest.mark.asyncio
async def test_anthropic_messages_api():
    data = {
        "model": "claude-sonnet-4-5",
        "content": [
            {"type": "text", "text": "ZeroTier works well."},
            {"type": "tool_use", "id": "t1"},
        ],
        "usage": {"input_tokens": 30, "output_tokens": 70},
    }
    patcher, mock_client = _patch_post(data)
    try:
        result = await AnthropicProvider(api_key="sk-ant").generate("q")
    finally:
        patcher.stop()

    assert result.text == "ZeroTier works well."
    assert result.usage.total_tokens == 100
    headers = mock_client.post.call_args.kwargs["headers"]
    assert headers["x-api-key"] == "sk-ant"
    assert headers["anthropic-version"] == "2023-06-01"
    assert "tools" not in mock_client.post.call_args.kwargs["json"]
