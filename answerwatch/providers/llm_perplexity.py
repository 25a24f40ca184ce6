"""Perplexity provider (OpenAI-compatible chat completions with native citations)."""

import logging

from answerwatch.analysis.types import CitedSource
from answerwatch.providers.base import DEFAULT_TEMPERATURE, BaseProvider, ProviderResponse, TokenUsage

logger = logging.getLogger(__name__)

# Pricing per 1M tokens
MODEL_PRICING = {
    "sonar": {"input": 1.00, "output": 1.00},
    "sonar-pro": {"input": 3.00, "output": 15.00},
    "sonar-reasoning": {"input": 1.00, "output": 5.00},
    "sonar-reasoning-pro": {"input": 2.00, "output": 8.00},
}

DEFAULT_MODEL = "sonar"
API_URL = "https://api.perplexity.ai/chat/completions"


def parse_chat_citations(data: dict) -> list[CitedSource]:
    """search_results carry titles; the older citations list is bare URLs."""
    native = [
        CitedSource(url=r["url"], title=r.get("title"))
        for r in data.get("search_results", []) or []
        if isinstance(r, dict) and r.get("url")
    ]
    if native:
        return native
    return [CitedSource(url=url) for url in data.get("citations", []) or [] if isinstance(url, str) and url]


class PerplexityProvider(BaseProvider):
    """Query Perplexity Sonar models. Search is always on for this provider."""

    provider = "perplexity"
    API_URL = API_URL
    DEFAULT_MODEL = DEFAULT_MODEL
    MODEL_PRICING = MODEL_PRICING

    async def _generate_once(self, prompt: str, *, web_search: bool) -> ProviderResponse:
        payload = {
            "model": self.model,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": DEFAULT_TEMPERATURE,
        }
        data = await self._post(
            self.API_URL,
            payload,
            {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"},
        )

        text = data["choices"][0]["message"]["content"] or ""
        usage = data.get("usage") or {}
        return self._build_response(
            text,
            data.get("model"),
            TokenUsage(
                prompt_tokens=usage.get("prompt_tokens", 0),
                completion_tokens=usage.get("completion_tokens", 0),
                total_tokens=usage.get("total_tokens", 0),
            ),
            native=parse_chat_citations(data),
        )
