"""Base class for AI answer providers.

Each provider module declares its endpoint, default model and per-1M-token
pricing, builds its own payload and parses its own response shape. This base
holds what they share: the HTTP call, the transient-error retry loop, cost
estimation and the citation priority rule.
"""

import asyncio
import logging
import random
from abc import ABC, abstractmethod
from dataclasses import dataclass, field

import httpx

from answerwatch.analysis.source_extractor import scan_text_urls
from answerwatch.analysis.types import CitedSource
from answerwatch.core.config import settings
from answerwatch.core.exceptions import ProviderError

logger = logging.getLogger(__name__)

TRANSIENT_STATUS_CODES = frozenset({429, 500, 502, 503, 504, 529})

DEFAULT_TEMPERATURE = 0.7


@dataclass
class TokenUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def __post_init__(self):
        if not self.total_tokens:
            self.total_tokens = self.prompt_tokens + self.completion_tokens


@dataclass
class ProviderResponse:
    """Answer text plus usage and any citations the provider surfaced."""

    text: str
    model: str
    usage: TokenUsage = field(default_factory=TokenUsage)
    sources: list[CitedSource] = field(default_factory=list)
    cost_usd: float = 0.0


def is_transient_error(exc: Exception) -> bool:
    """Timeouts, connection failures and 429/5xx are worth another attempt."""
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code in TRANSIENT_STATUS_CODES
    return isinstance(exc, (httpx.TimeoutException, httpx.TransportError))


def discover_sources(
    native: list[CitedSource],
    annotations: list[CitedSource],
    text: str,
) -> list[CitedSource]:
    """Native citation objects win, then inline annotations, then a text scan."""
    for candidates in (native, annotations):
        unique = _dedupe(candidates)
        if unique:
            return unique
    return scan_text_urls(text)


def _dedupe(sources: list[CitedSource]) -> list[CitedSource]:
    seen: set[str] = set()
    unique = []
    for source in sources:
        if source.url and source.url not in seen:
            seen.add(source.url)
            unique.append(source)
    return unique


class BaseProvider(ABC):
    """Send one prompt to one provider/model and normalize the answer."""

    provider: str = "unknown"
    API_URL: str = ""
    DEFAULT_MODEL: str = ""
    MODEL_PRICING: dict[str, dict[str, float]] = {}
    supports_web_search: bool = False

    retry_delay: float = 1.0  # seconds, multiplied by the attempt number

    def __init__(
        self,
        api_key: str,
        model: str | None = None,
        *,
        timeout: float | None = None,
        max_retries: int | None = None,
    ):
        self.api_key = api_key
        self.model = model or self.DEFAULT_MODEL
        self.timeout = timeout if timeout is not None else settings.provider_timeout_seconds
        self.max_retries = max_retries if max_retries is not None else settings.provider_max_retries

    async def generate(self, prompt: str, *, web_search: bool = True) -> ProviderResponse:
        """Query the provider, retrying transient failures ``max_retries`` times."""
        use_tools = web_search and self.supports_web_search
        for attempt in range(self.max_retries + 1):
            try:
                return await self._generate_once(prompt, web_search=use_tools)
            except (httpx.HTTPStatusError, httpx.TimeoutException, httpx.TransportError) as e:
                status = e.response.status_code if isinstance(e, httpx.HTTPStatusError) else None
                if is_transient_error(e) and attempt < self.max_retries:
                    base_delay = self.retry_delay * (attempt + 1)
                    delay = random.uniform(base_delay * 0.7, base_delay * 1.3)
                    logger.warning(
                        "%s: transient error (attempt %d/%d), retrying in %.1fs: %s",
                        self.provider,
                        attempt + 1,
                        self.max_retries + 1,
                        delay,
                        e,
                    )
                    await asyncio.sleep(delay)
                    continue
                raise ProviderError(self.provider, str(e) or type(e).__name__, status_code=status) from e
            except (KeyError, IndexError, TypeError, ValueError) as e:
                raise ProviderError(self.provider, f"malformed response: {e!r}") from e
        raise ProviderError(self.provider, "max retries exhausted")

    @abstractmethod
    async def _generate_once(self, prompt: str, *, web_search: bool) -> ProviderResponse:
        """One HTTP round-trip. Raise httpx errors as-is."""

    async def _post(self, url: str, payload: dict, headers: dict[str, str]) -> dict:
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            resp = await client.post(url, json=payload, headers=headers)
            if resp.status_code >= 400:
                try:
                    error_body = resp.json()
                    error = error_body.get("error", {})
                    error_msg = error.get("message", resp.text[:500]) if isinstance(error, dict) else str(error)
                except Exception:
                    error_msg = resp.text[:500]
                logger.error(
                    "%s API %d for model=%s: %s",
                    self.provider,
                    resp.status_code,
                    self.model,
                    error_msg,
                )
            resp.raise_for_status()
            return resp.json()

    def _build_response(
        self,
        text: str,
        model: str | None,
        usage: TokenUsage,
        *,
        native: list[CitedSource] | None = None,
        annotations: list[CitedSource] | None = None,
    ) -> ProviderResponse:
        return ProviderResponse(
            text=text,
            model=model or self.model,
            usage=usage,
            sources=discover_sources(native or [], annotations or [], text),
            cost_usd=self._calculate_cost(usage.prompt_tokens, usage.completion_tokens),
        )

    def _calculate_cost(self, input_tokens: int, output_tokens: int) -> float:
        """Calculate cost in USD based on model pricing."""
        if not self.MODEL_PRICING:
            return 0.0
        pricing = self.MODEL_PRICING.get(self.model, self.MODEL_PRICING[self.DEFAULT_MODEL])
        cost = (input_tokens * pricing["input"] + output_tokens * pricing["output"]) / 1_000_000
        return round(cost, 6)
