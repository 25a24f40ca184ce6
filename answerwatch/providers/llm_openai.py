"""OpenAI (ChatGPT) provider via the Responses API with web search."""

import logging

from answerwatch.analysis.types import CitedSource
from answerwatch.providers.base import DEFAULT_TEMPERATURE, BaseProvider, ProviderResponse, TokenUsage

logger = logging.getLogger(__name__)

# Pricing per 1M tokens
MODEL_PRICING = {
    "gpt-5": {"input": 1.25, "output": 10.00},
    "gpt-5-mini": {"input": 0.25, "output": 2.00},
    "gpt-4.1": {"input": 2.00, "output": 8.00},
    "gpt-4.1-mini": {"input": 0.40, "output": 1.60},
    "gpt-4o": {"input": 2.50, "output": 10.00},
    "gpt-4o-mini": {"input": 0.15, "output": 0.60},
}

DEFAULT_MODEL = "gpt-4o"
API_URL = "https://api.openai.com/v1/responses"

# Reasoning models reject temperature
_REASONING_MODEL_PREFIXES = ("gpt-5", "o1", "o3", "o4")


def _is_reasoning_model(model: str) -> bool:
    """Check if a model is a reasoning model (GPT-5 / o-series)."""
    return any(model.startswith(p) for p in _REASONING_MODEL_PREFIXES)


class OpenAiProvider(BaseProvider):
    """Query ChatGPT models with the hosted web search tool enabled."""

    provider = "openai"
    API_URL = API_URL
    DEFAULT_MODEL = DEFAULT_MODEL
    MODEL_PRICING = MODEL_PRICING
    supports_web_search = True

    async def _generate_once(self, prompt: str, *, web_search: bool) -> ProviderResponse:
        payload: dict = {"model": self.model, "input": prompt}
        if not _is_reasoning_model(self.model):
            payload["temperature"] = DEFAULT_TEMPERATURE
        if web_search:
            payload["tools"] = [{"type": "web_search_preview", "search_context_size": "high"}]

        data = await self._post(
            self.API_URL,
            payload,
            {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"},
        )

        # output[] mixes web_search_call items with message items;
        # only message/output_text parts carry the answer and its url_citation annotations.
        parts: list[str] = []
        annotations: list[CitedSource] = []
        for item in data.get("output", []):
            if item.get("type") != "message":
                continue
            for content in item.get("content", []):
                if content.get("type") != "output_text":
                    continue
                parts.append(content.get("text", ""))
                for ann in content.get("annotations", []) or []:
                    if ann.get("type") == "url_citation" and ann.get("url"):
                        annotations.append(CitedSource(url=ann["url"], title=ann.get("title")))
        text = "".join(parts) or data.get("output_text", "")

        usage = data.get("usage") or {}
        return self._build_response(
            text,
            data.get("model"),
            TokenUsage(
                prompt_tokens=usage.get("input_tokens", 0),
                completion_tokens=usage.get("output_tokens", 0),
                total_tokens=usage.get("total_tokens", 0),
            ),
            annotations=annotations,
        )
