"""Anthropic (Claude) provider via the Messages API."""

import logging

from answerwatch.analysis.types import CitedSource
from answerwatch.providers.base import DEFAULT_TEMPERATURE, BaseProvider, ProviderResponse, TokenUsage

logger = logging.getLogger(__name__)

# Pricing per 1M tokens
MODEL_PRICING = {
    "claude-opus-4-1": {"input": 15.00, "output": 75.00},
    "claude-sonnet-4-5": {"input": 3.00, "output": 15.00},
    "claude-sonnet-4-0": {"input": 3.00, "output": 15.00},
    "claude-haiku-4-5": {"input": 1.00, "output": 5.00},
    "claude-3-5-haiku-latest": {"input": 0.80, "output": 4.00},
}

DEFAULT_MODEL = "claude-sonnet-4-5"
API_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_VERSION = "2023-06-01"
MAX_TOKENS = 4096


class AnthropicProvider(BaseProvider):
    """Query Claude models. No hosted tools are enabled for this provider."""

    provider = "anthropic"
    API_URL = API_URL
    DEFAULT_MODEL = DEFAULT_MODEL
    MODEL_PRICING = MODEL_PRICING

    async def _generate_once(self, prompt: str, *, web_search: bool) -> ProviderResponse:
        payload = {
            "model": self.model,
            "max_tokens": MAX_TOKENS,
            "temperature": DEFAULT_TEMPERATURE,
            "messages": [{"role": "user", "content": prompt}],
        }
        data = await self._post(
            self.API_URL,
            payload,
            {
                "x-api-key": self.api_key,
                "anthropic-version": ANTHROPIC_VERSION,
                "Content-Type": "application/json",
            },
        )

        parts: list[str] = []
        annotations: list[CitedSource] = []
        for block in data.get("content", []):
            if block.get("type") != "text":
                continue
            parts.append(block.get("text", ""))
            for citation in block.get("citations", []) or []:
                if citation.get("url"):
                    annotations.append(CitedSource(url=citation["url"], title=citation.get("title")))

        usage = data.get("usage") or {}
        return self._build_response(
            "".join(parts),
            data.get("model"),
            TokenUsage(
                prompt_tokens=usage.get("input_tokens", 0),
                completion_tokens=usage.get("output_tokens", 0),
            ),
            annotations=annotations,
        )
