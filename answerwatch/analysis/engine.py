"""Analysis Engine: one structured-extraction call per execution, text-verified.

A cheap model (GPT-4o-mini by default) receives the answer, the tracked brand
and competitors, and every candidate URL with whatever page metadata was
fetched. It returns one flat JSON object (see schemas.CombinedAnalysis)
covering rankings, brand and per-competitor sentiment, and source categories.

The model output is then reconciled against the raw answer text:
  - brand / competitor presence comes from the Brand Matcher, not the model
  - sentiment fields for a brand that is not in the text are dropped
  - sources whose URL and domain were never candidates are dropped

Each run is a small state machine:

    ATTEMPTING(n) --ok--> SUCCEEDED
    ATTEMPTING(n) --error, n <= max_retries--> ATTEMPTING(n+1)
    ATTEMPTING(n) --error, n > max_retries--> FALLBACK_USED

FALLBACK_USED degrades to a pure substring-match result instead of raising,
so an execution always ends with at least minimal mention data.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

import httpx

from answerwatch.analysis.brand_matcher import BrandMatcher
from answerwatch.analysis.schemas import AnalyzedSource, CombinedAnalysis
from answerwatch.analysis.source_extractor import extract_domain
from answerwatch.analysis.types import (
    ExecutionSourceData,
    PageMetadata,
    SourceCandidate,
    SourceCategory,
    TrackedCompetitor,
)
from answerwatch.core.config import settings
from answerwatch.core.exceptions import AnalysisUnavailableError
from answerwatch.core.metrics import ANALYSIS_OUTCOMES
from answerwatch.providers.base import TokenUsage

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Analysis model client
# ---------------------------------------------------------------------------

ANALYSIS_API_URL = "https://api.openai.com/v1/chat/completions"
ANALYSIS_TEMPERATURE = 0.2
ANALYSIS_TIMEOUT = 60  # seconds

# Pricing per 1M tokens
ANALYSIS_MODEL_PRICING = {
    "gpt-4o-mini": {"input": 0.15, "output": 0.60},
    "gpt-4.1-mini": {"input": 0.40, "output": 1.60},
    "gpt-4.1-nano": {"input": 0.10, "output": 0.40},
}

FALLBACK_ERROR = "Analysis failed (using text fallback)"
FALLBACK_CONFIDENCE = 30
FALLBACK_CONFIDENCE_WITH_COMPETITORS = 60

_SYSTEM_PROMPT = (
    "You analyze AI assistant answers for brand visibility monitoring. "
    "Output ONLY one valid JSON object, no markdown, no explanation."
)

# Called once per analysis-model request: (usage, cost_usd, duration_ms, success, error)
UsageCallback = Callable[[TokenUsage, float, int, bool, "str | None"], Awaitable[None]]


class AnalysisClient(Protocol):
    async def complete(self, prompt: str) -> str:
        """Return the raw JSON text produced for *prompt*."""
        ...


def analysis_cost(model: str, usage: TokenUsage) -> float:
    pricing = ANALYSIS_MODEL_PRICING.get(model, ANALYSIS_MODEL_PRICING["gpt-4o-mini"])
    cost = (usage.prompt_tokens * pricing["input"] + usage.completion_tokens * pricing["output"]) / 1_000_000
    return round(cost, 6)


class OpenAiAnalysisClient:
    """Chat-completions client for the analysis model in JSON mode."""

    def __init__(self, api_key: str, model: str | None = None, *, on_usage: UsageCallback | None = None):
        self.api_key = api_key
        self.model = model or settings.analysis_model
        self._on_usage = on_usage

    async def complete(self, prompt: str) -> str:
        if not self.api_key:
            raise AnalysisUnavailableError("No OpenAI API key available for combined analysis")

        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": _SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            "temperature": ANALYSIS_TEMPERATURE,
            "response_format": {"type": "json_object"},
        }

        start = time.perf_counter()
        try:
            async with httpx.AsyncClient(timeout=ANALYSIS_TIMEOUT) as client:
                resp = await client.post(
                    ANALYSIS_API_URL,
                    json=payload,
                    headers={
                        "Authorization": f"Bearer {self.api_key}",
                        "Content-Type": "application/json",
                    },
                )
                resp.raise_for_status()
                data = resp.json()
            content = data["choices"][0]["message"]["content"] or ""
        except Exception as e:
            await self._report(TokenUsage(), start, success=False, error=str(e))
            raise

        usage = data.get("usage") or {}
        await self._report(
            TokenUsage(
                prompt_tokens=usage.get("prompt_tokens", 0),
                completion_tokens=usage.get("completion_tokens", 0),
                total_tokens=usage.get("total_tokens", 0),
            ),
            start,
            success=True,
        )
        return content

    async def _report(self, usage: TokenUsage, start: float, *, success: bool, error: str | None = None) -> None:
        if self._on_usage is None:
            return
        duration_ms = int((time.perf_counter() - start) * 1000)
        await self._on_usage(usage, analysis_cost(self.model, usage), duration_ms, success, error)


# ---------------------------------------------------------------------------
# Prompt + parsing
# ---------------------------------------------------------------------------

_JSON_FENCE = re.compile(r"```(?:json)?\s*(\{.*\})\s*```", re.DOTALL)


def parse_analysis_json(raw: str) -> CombinedAnalysis:
    """Validate the model's JSON, tolerating a markdown code fence around it."""
    match = _JSON_FENCE.search(raw)
    if match:
        raw = match.group(1)
    return CombinedAnalysis.model_validate_json(raw)


def _hostname(website: str | None) -> str:
    return extract_domain(website) if website else ""


def build_analysis_prompt(
    business_name: str,
    business_website: str | None,
    competitors: list[TrackedCompetitor],
    answer_text: str,
    candidates: list[SourceCandidate],
    metadata: dict[str, PageMetadata],
    *,
    max_chars: int | None = None,
) -> str:
    max_chars = max_chars or settings.analysis_max_chars
    answer = answer_text if len(answer_text) <= max_chars else answer_text[:max_chars] + "...[truncated]"

    url_lines = []
    for c in candidates:
        meta = metadata.get(c.url)
        parts = [f"URL: {c.url}"]
        title = c.title or (meta.title if meta else None)
        if title:
            parts.append(f"Title: {title}")
        if meta and meta.description:
            parts.append(f"Description: {meta.description[:150]}")
        if meta and meta.h1 and meta.h1 != meta.title:
            parts.append(f"H1: {meta.h1}")
        if c.owner is not None:
            parts.append(f"Owner hint: {c.owner.value}")
        url_lines.append(" | ".join(parts))

    business_domain = _hostname(business_website) or "unknown"
    competitor_names = ", ".join(c.name for c in competitors) or "none"
    competitor_domains = [(c.name, _hostname(c.website)) for c in competitors if c.website]
    competitor_domain_list = ", ".join(f"{name}: {domain}" for name, domain in competitor_domains if domain) or "none"
    bare_competitor_domains = ", ".join(domain for _, domain in competitor_domains if domain) or "none"
    urls_block = "\n".join(url_lines) or "none"

    return f"""Analyze this AI response for brand mentions and categorize its sources.

Response to analyze:
{answer}

Brand to check: {business_name}
Brand website domain: {business_domain}
Competitors to check: {competitor_names}
Competitor domains: {competitor_domain_list}
URLs found (with page titles/descriptions when available):
{urls_block}

Return a JSON object with these keys:
rankings, brandMentioned, brandPosition, brandSentiment, brandSentimentScore, brandContext,
competitors, competitorSentiments, overallSentiment, sentimentScore, confidence, sources.

INSTRUCTIONS:
1. rankings: every company or product the response recommends, as
   {{"position": n, "company": "...", "reason": "...", "sentiment": "positive|neutral|negative", "sentimentScore": 0-100}}.
2. brandMentioned: true only if "{business_name}" appears in the response (case-insensitive).
   brandPosition: its position in the rankings, or null.
   brandSentiment / brandSentimentScore: "positive" (75-100) recommended or praised,
   "neutral" (40-74) mentioned without a strong opinion, "negative" (0-39) criticized or not recommended.
   brandContext: a short phrase such as "recommended as top choice" or "mentioned as alternative option".
3. competitors: every name from this list that appears in the response: {competitor_names}.
   Match case-insensitively; "Cloudflare Access" counts as "Cloudflare".
   competitorSentiments: for each competitor mentioned,
   {{"name": "...", "sentiment": "positive|neutral|negative", "sentimentScore": 0-100, "context": "..."}}.
4. sources: categorize ONLY the URLs listed above. Never invent URLs. If the list says "none", return [].
   Each source is {{"domain": "...", "url": "...", "type": "...", "pageType": "...", "associatedBrands": [...]}}.
   type:
     "You" - domain matches or contains "{business_domain}"
     "Competitor" - domain matches a competitor domain: {bare_competitor_domains}
     "Editorial" - news sites, blogs, review sites, tech publications
     "Reference" - Wikipedia, documentation, knowledge bases
     "UGC" - Reddit, YouTube, forums, Stack Overflow, Quora, communities
     "Corporate" - company sites that are neither the brand nor a competitor
     "Institutional" - .gov, .edu, research institutions, NGOs
     "Other" - none of the above
   pageType (read the URL path AND the title):
     "Alternative" - /alternatives, "alternatives to X"
     "Comparison" - /vs, /compare, "X vs Y", "compared to"
     "Listicle" - "10 Best", "Top 5", /best-, /top-
     "How-To Guide" - "How to", "Guide to", /how-to/, /guide/, /tutorial/
     "Discussion" - reddit, stackoverflow, quora, /r/, /questions/, /forum/, /community/
     "Product Page" - /product/, /pricing/, /features/, /solutions/ on the product's own site
     "Homepage" - path is "/" or empty
     "Profile" - /about/, /team/, /company/
     "Category Page" - /category/, /topics/, /tags/, /collections/
     "Article" - blog posts, news, general informational pages
     "Other" - only if nothing else fits
   associatedBrands: brands ("{business_name}" or competitors) mentioned in the same sentence or
   paragraph where the source is cited; [] if the source supports no particular brand.
5. overallSentiment: "positive|neutral|negative"; sentimentScore: 0-100 (50 is neutral);
   confidence: 0-100, how sure you are about this analysis.
"""


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class AnalysisState(str, Enum):
    ATTEMPTING = "attempting"
    SUCCEEDED = "succeeded"
    FALLBACK_USED = "fallback_used"


@dataclass
class MentionAnalysis:
    """Text-verified outcome of one combined analysis run."""

    brand_mentions: int
    competitors_mentioned: list[str]
    details: dict
    confidence: float
    sources: list[AnalyzedSource] = field(default_factory=list)
    state: AnalysisState = AnalysisState.SUCCEEDED
    attempts: int = 1

    @property
    def fallback_used(self) -> bool:
        return self.state is AnalysisState.FALLBACK_USED


class AnalysisEngine:
    def __init__(
        self,
        matcher: BrandMatcher | None = None,
        *,
        backoff_seconds: float | None = None,
        max_chars: int | None = None,
    ):
        self.matcher = matcher or BrandMatcher()
        self.backoff_seconds = backoff_seconds if backoff_seconds is not None else settings.analysis_backoff_seconds
        self.max_chars = max_chars or settings.analysis_max_chars

    async def analyze_combined(
        self,
        business_name: str,
        business_website: str | None,
        competitors: list[TrackedCompetitor],
        answer_text: str,
        candidates: list[SourceCandidate],
        metadata: dict[str, PageMetadata],
        *,
        client: AnalysisClient | None,
        max_retries: int | None = None,
    ) -> MentionAnalysis:
        """Run the combined analysis with retries, falling back to text matching."""
        max_retries = settings.analysis_max_retries if max_retries is None else max_retries
        prompt = build_analysis_prompt(
            business_name,
            business_website,
            competitors,
            answer_text,
            candidates,
            metadata,
            max_chars=self.max_chars,
        )

        state = AnalysisState.ATTEMPTING
        attempt = 0
        parsed: CombinedAnalysis | None = None
        last_error: Exception | None = None

        while state is AnalysisState.ATTEMPTING:
            attempt += 1
            try:
                if client is None:
                    raise AnalysisUnavailableError("No analysis client configured")
                parsed = parse_analysis_json(await client.complete(prompt))
                state = AnalysisState.SUCCEEDED
            except Exception as e:
                last_error = e
                logger.warning("Combined analysis attempt %d/%d failed: %s", attempt, max_retries + 1, e)
                if attempt > max_retries or isinstance(e, AnalysisUnavailableError):
                    state = AnalysisState.FALLBACK_USED
                else:
                    await asyncio.sleep(self.backoff_seconds * attempt)

        ANALYSIS_OUTCOMES.labels(state=state.value).inc()

        if state is AnalysisState.SUCCEEDED:
            result = self.reconcile(business_name, competitors, answer_text, candidates, parsed)
        else:
            logger.warning("Using text-based fallback after %d attempt(s): %s", attempt, last_error)
            result = self.text_fallback(business_name, competitors, answer_text, last_error)
        result.attempts = attempt
        return result

    def _verified_competitors(self, competitors: list[TrackedCompetitor], answer_text: str) -> list[str]:
        return [c.name for c in competitors if self.matcher.text_contains_brand(answer_text, c.name)]

    def reconcile(
        self,
        business_name: str,
        competitors: list[TrackedCompetitor],
        answer_text: str,
        candidates: list[SourceCandidate],
        analysis: CombinedAnalysis,
    ) -> MentionAnalysis:
        """Correct the model's claims against the raw answer text, both ways."""
        actually_mentioned = self.matcher.text_contains_brand(answer_text, business_name)
        if analysis.brand_mentioned and not actually_mentioned:
            logger.warning("Hallucination corrected: model claimed %r but it is not in the answer", business_name)
        elif actually_mentioned and not analysis.brand_mentioned:
            logger.info("Missed mention corrected: %r found in the answer by text search", business_name)

        tracked_names = [c.name for c in competitors]
        verified = self._verified_competitors(competitors, answer_text)
        claimed = {
            match
            for name in analysis.competitors
            if (match := self.matcher.find_matching_tracked_competitor(name, tracked_names)) is not None
        }
        for name in verified:
            if name not in claimed:
                logger.info(
                    "Competitor %r found via text search (variations: %s) but missed by the model",
                    name,
                    ", ".join(self.matcher.get_brand_variations(name)),
                )
        for name in claimed - set(verified):
            logger.warning("Hallucination corrected: model claimed competitor %r but it is not in the answer", name)

        competitor_sentiments = []
        for cs in analysis.competitor_sentiments:
            match = self.matcher.find_matching_tracked_competitor(cs.name, verified)
            if match is not None:
                competitor_sentiments.append({**cs.model_dump(by_alias=True, exclude_none=True), "name": match})

        details = {
            "rankings": [r.model_dump(by_alias=True, exclude_none=True) for r in analysis.rankings],
            "brandMentioned": actually_mentioned,
            "brandPosition": analysis.brand_position if actually_mentioned else None,
            "brandSentiment": analysis.brand_sentiment if actually_mentioned else None,
            "brandSentimentScore": analysis.brand_sentiment_score if actually_mentioned else None,
            "brandContext": analysis.brand_context if actually_mentioned else None,
            "overallSentiment": analysis.overall_sentiment,
            "sentimentScore": analysis.sentiment_score,
            "confidence": analysis.confidence,
            "competitorSentiments": competitor_sentiments,
        }

        return MentionAnalysis(
            brand_mentions=1 if actually_mentioned else 0,
            competitors_mentioned=verified,
            details=details,
            confidence=analysis.confidence,
            sources=filter_sources(analysis.sources, candidates),
            state=AnalysisState.SUCCEEDED,
        )

    def text_fallback(
        self,
        business_name: str,
        competitors: list[TrackedCompetitor],
        answer_text: str,
        error: Exception | None,
    ) -> MentionAnalysis:
        """Presence-only result from string matching. No sentiment, no sources."""
        mentioned = self.matcher.text_contains_brand(answer_text, business_name)
        verified = self._verified_competitors(competitors, answer_text)
        return MentionAnalysis(
            brand_mentions=1 if mentioned else 0,
            competitors_mentioned=verified,
            details={
                "error": FALLBACK_ERROR,
                "details": str(error) if error is not None else "",
                "fallbackUsed": True,
            },
            confidence=FALLBACK_CONFIDENCE_WITH_COMPETITORS if verified else FALLBACK_CONFIDENCE,
            sources=[],
            state=AnalysisState.FALLBACK_USED,
        )


def filter_sources(sources: list[AnalyzedSource], candidates: list[SourceCandidate]) -> list[AnalyzedSource]:
    """Keep only sources whose URL or domain was actually offered to the model."""
    candidate_urls = {c.url.lower() for c in candidates}
    candidate_domains = {c.domain.lower() for c in candidates}
    valid = []
    for source in sources:
        if not source.url or not source.url.strip():
            continue
        if source.url.lower() in candidate_urls or source.domain.lower() in candidate_domains:
            valid.append(source)
        else:
            logger.info("Dropped invented source %s", source.url)
    return valid


def categorize_sources(
    candidates: list[SourceCandidate],
    analysis: MentionAnalysis,
    known_brands: list[str] | None = None,
) -> list[ExecutionSourceData]:
    """Persistable sources: one per candidate URL, categorized by the model where it could."""
    domain_types: dict[str, str] = {}
    page_types: dict[str, str] = {}
    brands_by_url: dict[str, list[str]] = {}
    for source in analysis.sources:
        domain_types[source.domain.lower()] = source.type
        if source.url:
            page_types[source.url] = source.page_type or "Other"
            if source.associated_brands:
                brands_by_url[source.url] = list(source.associated_brands)

    known = {b.lower() for b in known_brands} if known_brands else None
    result = []
    for c in candidates:
        category = domain_types.get(c.domain.lower())
        if category is None:
            category = c.owner.value if c.owner is not None else SourceCategory.OTHER.value
        brands = brands_by_url.get(c.url, [])
        if known is not None:
            brands = [b for b in brands if b.lower() in known]
        result.append(
            ExecutionSourceData(
                domain=c.domain,
                url=c.url,
                category=category,
                page_type=page_types.get(c.url, "Other"),
                citations=c.citations,
                associated_brands=brands,
            )
        )
    return result
