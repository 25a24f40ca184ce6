"""Structured output schema of the combined analysis call.

Kept flat on purpose: small models follow a flat JSON object far more reliably
than nested wrappers. Field aliases match the camelCase keys the prompt asks for.

Validation is lenient per field. An off-taxonomy category or page type becomes
"Other", scores are clamped to 0-100, an unknown sentiment reads as neutral and
list items that cannot be salvaged are dropped, so one sloppy field never
costs the whole analysis.
"""

from __future__ import annotations

import logging
from typing import Annotated, Any, Literal

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, ValidationError, field_validator

from answerwatch.analysis.types import PageType, SourceCategory

logger = logging.getLogger(__name__)

_CATEGORIES = {c.value.lower(): c.value for c in SourceCategory}
_PAGE_TYPES = {p.value.lower(): p.value for p in PageType}
_SENTIMENTS = ("positive", "neutral", "negative")


def _to_sentiment(value):
    if value is None:
        return None
    if isinstance(value, str) and value.strip().lower() in _SENTIMENTS:
        return value.strip().lower()
    return "neutral"


def _one_of(known: dict[str, str]):
    def _coerce(value):
        if isinstance(value, str):
            return known.get(value.strip().lower(), "Other")
        return "Other"

    return _coerce


def _clamped_score(value):
    if value is None or isinstance(value, bool):
        return None
    try:
        score = float(value)
    except (TypeError, ValueError):
        return None
    return min(max(score, 0.0), 100.0)


def _optional_int(value):
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


SentimentValue = Annotated[Literal["positive", "neutral", "negative"], BeforeValidator(_to_sentiment)]

CategoryValue = Annotated[
    Literal["You", "Competitor", "Corporate", "Reference", "Editorial", "UGC", "Institutional", "Other"],
    BeforeValidator(_one_of(_CATEGORIES)),
]

PageTypeValue = Annotated[
    Literal[
        "Article",
        "Alternative",
        "Comparison",
        "How-To Guide",
        "Listicle",
        "Product Page",
        "Discussion",
        "Homepage",
        "Profile",
        "Category Page",
        "Other",
    ],
    BeforeValidator(_one_of(_PAGE_TYPES)),
]

Score = Annotated[float | None, BeforeValidator(_clamped_score)]
Position = Annotated[int | None, BeforeValidator(_optional_int)]


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class Ranking(_CamelModel):
    position: Position = None
    company: str
    reason: str | None = None
    sentiment: SentimentValue | None = None
    sentiment_score: Score = Field(default=None, alias="sentimentScore")


class CompetitorSentiment(_CamelModel):
    name: str
    sentiment: SentimentValue = "neutral"
    sentiment_score: Score = Field(default=None, alias="sentimentScore")
    context: str | None = None


class AnalyzedSource(_CamelModel):
    domain: str
    url: str | None = None
    type: CategoryValue = "Other"
    page_type: PageTypeValue = Field(default="Other", alias="pageType")
    associated_brands: list[str] = Field(default_factory=list, alias="associatedBrands")

    @field_validator("associated_brands", mode="before")
    @classmethod
    def _brand_names_only(cls, value):
        if not isinstance(value, list):
            return []
        return [b for b in value if isinstance(b, str) and b.strip()]


def _salvage(model: type[BaseModel], items: Any, field_name: str) -> list:
    """Validate list items one by one and drop those that cannot be read."""
    if not isinstance(items, list):
        return []
    kept = []
    for item in items:
        try:
            kept.append(model.model_validate(item))
        except ValidationError as e:
            logger.info("Dropped unreadable %s item %r: %s", field_name, item, e.errors()[0]["msg"])
    return kept


class CombinedAnalysis(_CamelModel):
    rankings: list[Ranking] = Field(default_factory=list)

    brand_mentioned: bool = Field(alias="brandMentioned")
    brand_position: Position = Field(default=None, alias="brandPosition")
    brand_sentiment: SentimentValue | None = Field(default=None, alias="brandSentiment")
    brand_sentiment_score: Score = Field(default=None, alias="brandSentimentScore")
    brand_context: str | None = Field(default=None, alias="brandContext")

    competitors: list[str] = Field(default_factory=list)
    competitor_sentiments: list[CompetitorSentiment] = Field(default_factory=list, alias="competitorSentiments")

    overall_sentiment: SentimentValue = Field(default="neutral", alias="overallSentiment")
    sentiment_score: Score = Field(default=50, alias="sentimentScore")
    confidence: Score = Field(default=80)

    sources: list[AnalyzedSource] = Field(default_factory=list)

    @field_validator("rankings", mode="before")
    @classmethod
    def _readable_rankings(cls, value):
        return _salvage(Ranking, value, "ranking")

    @field_validator("competitor_sentiments", mode="before")
    @classmethod
    def _readable_competitor_sentiments(cls, value):
        return _salvage(CompetitorSentiment, value, "competitor sentiment")

    @field_validator("sources", mode="before")
    @classmethod
    def _readable_sources(cls, value):
        return _salvage(AnalyzedSource, value, "source")

    @field_validator("competitors", mode="before")
    @classmethod
    def _competitor_names_only(cls, value):
        if not isinstance(value, list):
            return []
        return [c for c in value if isinstance(c, str) and c.strip()]

    @field_validator("overall_sentiment", mode="before")
    @classmethod
    def _overall_defaults_neutral(cls, value):
        return "neutral" if value is None else value

    @field_validator("sentiment_score", mode="after")
    @classmethod
    def _sentiment_score_default(cls, value):
        return 50.0 if value is None else value

    @field_validator("confidence", mode="after")
    @classmethod
    def _confidence_default(cls, value):
        return 80.0 if value is None else value
