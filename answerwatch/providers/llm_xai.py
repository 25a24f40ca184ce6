"""xAI (Grok) provider via the OpenAI-compatible chat completions endpoint."""

import logging

from answerwatch.providers.base import DEFAULT_TEMPERATURE, BaseProvider, ProviderResponse, TokenUsage
from answerwatch.providers.llm_perplexity import parse_chat_citations

logger = logging.getLogger(__name__)

# Pricing per 1M tokens
MODEL_PRICING = {
    "grok-4": {"input": 3.00, "output": 15.00},
    "grok-4-fast": {"input": 0.20, "output": 0.50},
    "grok-3": {"input": 3.00, "output": 15.00},
    "grok-3-mini": {"input": 0.30, "output": 0.50},
}

DEFAULT_MODEL = "grok-4"
API_URL = "https://api.x.ai/v1/chat/completions"


class XaiProvider(BaseProvider):
    provider = "xai"
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
