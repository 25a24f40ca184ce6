"""Core types and DTOs shared by the extraction and analysis stages."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class SourceCategory(str, Enum):
    """Who owns or produces the cited domain."""

    YOU = "You"  # The tracked business's own site
    COMPETITOR = "Competitor"
    CORPORATE = "Corporate"  # Some other company's site
    REFERENCE = "Reference"  # Wikipedia, documentation, knowledge bases
    EDITORIAL = "Editorial"  # News, blogs, review sites
    UGC = "UGC"  # Reddit, forums, Q&A, video
    INSTITUTIONAL = "Institutional"  # .gov, .edu, NGOs
    OTHER = "Other"


class PageType(str, Enum):
    """What kind of page the cited URL is."""

    ARTICLE = "Article"
    ALTERNATIVE = "Alternative"
    COMPARISON = "Comparison"
    HOW_TO_GUIDE = "How-To Guide"
    LISTICLE = "Listicle"
    PRODUCT_PAGE = "Product Page"
    DISCUSSION = "Discussion"
    HOMEPAGE = "Homepage"
    PROFILE = "Profile"
    CATEGORY_PAGE = "Category Page"
    OTHER = "Other"


class Sentiment(str, Enum):
    POSITIVE = "positive"
    NEUTRAL = "neutral"
    NEGATIVE = "negative"


# ---------------------------------------------------------------------------
# Data containers
# ---------------------------------------------------------------------------


@dataclass
class CitedSource:
    """A citation surfaced by a provider (native object, annotation or text scan)."""

    url: str
    title: str | None = None


@dataclass
class SourceCandidate:
    """A deduplicated URL found in an answer, with how often it was cited."""

    url: str
    domain: str
    title: str | None = None
    citations: int = 1
    owner: SourceCategory | None = None  # You / Competitor when the domain heuristic matches


@dataclass
class PageMetadata:
    """Title, meta description and first heading of a fetched page."""

    title: str | None = None
    description: str | None = None
    h1: str | None = None


@dataclass
class TrackedCompetitor:
    name: str
    website: str | None = None


@dataclass
class ExecutionSourceData:
    """A categorized citation ready to be persisted for an execution."""

    domain: str
    url: str
    category: str = SourceCategory.OTHER.value
    page_type: str = PageType.OTHER.value
    citations: int = 1
    associated_brands: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        data = {
            "domain": self.domain,
            "url": self.url,
            "type": self.category,
            "pageType": self.page_type,
            "citations": self.citations,
        }
        if self.associated_brands:
            data["associatedBrands"] = list(self.associated_brands)
        return data
