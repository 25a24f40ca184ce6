"""Google Gemini provider via generateContent with Google Search grounding."""

import logging

from answerwatch.analysis.types import CitedSource
from answerwatch.providers.base import DEFAULT_TEMPERATURE, BaseProvider, ProviderResponse, TokenUsage

logger = logging.getLogger(__name__)

# Pricing per 1M tokens
MODEL_PRICING = {
    "gemini-2.5-pro": {"input": 1.25, "output": 10.00},
    "gemini-2.5-flash": {"input": 0.30, "output": 2.50},
    "gemini-2.5-flash-lite": {"input": 0.10, "output": 0.40},
    "gemini-2.0-flash": {"input": 0.10, "output": 0.40},
}

DEFAULT_MODEL = "gemini-2.5-flash"
API_URL = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"


class GeminiProvider(BaseProvider):
    """Query Gemini with the google_search tool; grounding chunks are native citations."""

    provider = "google"
    API_URL = API_URL
    DEFAULT_MODEL = DEFAULT_MODEL
    MODEL_PRICING = MODEL_PRICING
    supports_web_search = True

    async def _generate_once(self, prompt: str, *, web_search: bool) -> ProviderResponse:
        payload: dict = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {"temperature": DEFAULT_TEMPERATURE},
        }
        if web_search:
            payload["tools"] = [{"google_search": {}}]

        data = await self._post(
            self.API_URL.format(model=self.model),
            payload,
            {"x-goog-api-key": self.api_key, "Content-Type": "application/json"},
        )

        candidate = data["candidates"][0]
        text = "".join(part.get("text", "") for part in candidate.get("content", {}).get("parts", []))

        native: list[CitedSource] = []
        grounding = candidate.get("groundingMetadata") or {}
        for chunk in grounding.get("groundingChunks", []) or []:
            web = chunk.get("web") or {}
            if web.get("uri"):
                native.append(CitedSource(url=web["uri"], title=web.get("title")))

        usage = data.get("usageMetadata") or {}
        return self._build_response(
            text,
            data.get("modelVersion"),
            TokenUsage(
                prompt_tokens=usage.get("promptTokenCount", 0),
                completion_tokens=usage.get("candidatesTokenCount", 0),
                total_tokens=usage.get("totalTokenCount", 0),
            ),
            native=native,
        )
