"""Source Extractor: turn an answer and its provider citations into URL candidates.

Discovery paths, in order:
  1. A structured "## Sources" section (numbered, bulleted or markdown-link lines)
  2. Literal http(s) URLs in the body outside that section
  3. Bare domains with a common TLD ("tailscale.com")
  4. Provider-native citations passed in by the caller

Placeholder domains that models use as generic illustrations are dropped on
every path. The output is deduplicated by URL in first-seen order, and each
candidate records how many times its URL was cited across all paths.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from urllib.parse import urlparse

from answerwatch.analysis.types import CitedSource, SourceCandidate, SourceCategory, TrackedCompetitor

logger = logging.getLogger(__name__)

PLACEHOLDER_DOMAINS: frozenset[str] = frozenset(
    {
        "example.com",
        "example.org",
        "example.net",
        "yourcompany.com",
        "yourdomain.com",
        "yoursite.com",
        "company.com",
        "domain.com",
        "website.com",
        "mycompany.com",
        "mydomain.com",
        "mysite.com",
        "acme.com",
        "test.com",
        "demo.com",
        "placeholder.com",
        "sample.com",
        "foo.com",
        "bar.com",
    }
)

# Gemini grounding chunks point at a redirect host; the real domain is the title
_GROUNDING_REDIRECT_HOSTS = ("vertexaisearch.cloud.google.com",)

# ---------------------------------------------------------------------------
# Patterns
# ---------------------------------------------------------------------------

_SOURCES_SECTION = re.compile(r"##\s*Sources?\s*\n([\s\S]*?)(?:\n##|\n\n\n|$)", re.IGNORECASE)
_SOURCES_TAIL = re.compile(r"##\s*Sources?\s*\n[\s\S]*$", re.IGNORECASE)

_STRUCTURED_PATTERNS = (
    re.compile(r"\d+\.\s*\[([^\]]+)\]\s*-\s*(https?://[^\s`]+)"),  # 1. [Name] - URL
    re.compile(r"\d+\.\s*([^-\n]+?)\s*-\s*(https?://[^\s`]+)"),  # 1. Name - URL
    re.compile(r"-\s*\[([^\]]+)\]\((https?://[^)`]+)\)"),  # - [Name](URL)
    re.compile(r"-\s*([^:\n]+?):\s*(https?://[^\s`]+)"),  # - Name: URL
)

_URL_PATTERN = re.compile(r"https?://(?:www\.)?[a-zA-Z0-9-]+(?:\.[a-zA-Z0-9-]+)+(?:/[^\s)`]*)?")

_BARE_DOMAIN_PATTERN = re.compile(
    r"(?:^|[\s(])(?:www\.)?([a-zA-Z0-9-]+\.(?:com|org|net|io|dev|ai|co|app|tech|cloud))\b",
    re.MULTILINE,
)

_TRAILING_PUNCTUATION = re.compile(r"[.,;:!?)\]`]+$")


# ---------------------------------------------------------------------------
# Domain helpers
# ---------------------------------------------------------------------------


def extract_domain(url: str) -> str:
    """Hostname of *url*, lowercased, without a leading "www."."""
    try:
        parsed = urlparse(url if "://" in url else f"https://{url}")
        domain = parsed.hostname or ""
    except ValueError:
        return ""
    if domain.startswith("www."):
        domain = domain[4:]
    return domain.lower()


def is_placeholder_domain(domain: str) -> bool:
    clean = domain.lower()
    if clean.startswith("www."):
        clean = clean[4:]
    return any(clean == p or clean.endswith("." + p) for p in PLACEHOLDER_DOMAINS)


def _clean_url(raw: str) -> str:
    return _TRAILING_PUNCTUATION.sub("", raw.strip())


def _candidate(url: str, title: str | None = None) -> tuple[str, str, str | None] | None:
    domain = extract_domain(url)
    if not domain or "." not in domain or is_placeholder_domain(domain):
        return None
    return url, domain, title


# ---------------------------------------------------------------------------
# Text scanning
# ---------------------------------------------------------------------------


def _scan_sources_section(text: str) -> list[tuple[str, str, str | None]]:
    match = _SOURCES_SECTION.search(text)
    if not match:
        return []
    section = match.group(1)
    found = []
    for pattern in _STRUCTURED_PATTERNS:
        for m in pattern.finditer(section):
            name = m.group(1).strip() if m.group(1) else None
            url = _clean_url(m.group(2) or "")
            if not url:
                continue
            entry = _candidate(url, name)
            if entry:
                found.append(entry)
    return found


def _scan_body(text: str) -> list[tuple[str, str, str | None]]:
    body = _SOURCES_TAIL.sub("", text)
    found = []
    for m in _URL_PATTERN.finditer(body):
        entry = _candidate(_clean_url(m.group(0)))
        if entry:
            found.append(entry)
    for m in _BARE_DOMAIN_PATTERN.finditer(body):
        domain = m.group(1).lower()
        if domain.startswith("www."):
            domain = domain[4:]
        if is_placeholder_domain(domain):
            continue
        found.append((f"https://{domain}", domain, None))
    return found


def scan_text_urls(text: str) -> list[CitedSource]:
    """Literal URLs in *text*, placeholders excluded, first occurrence wins.

    This is the providers' last-resort citation source when a response has
    neither native citation objects nor inline annotations.
    """
    seen: set[str] = set()
    sources: list[CitedSource] = []
    for m in _URL_PATTERN.finditer(text or ""):
        url = _clean_url(m.group(0))
        if url in seen or _candidate(url) is None:
            continue
        seen.add(url)
        sources.append(CitedSource(url=url))
    return sources


def _native_entries(native_sources: Iterable[CitedSource]) -> list[tuple[str, str, str | None]]:
    found = []
    for source in native_sources:
        if not source.url:
            continue
        domain = extract_domain(source.url)
        if domain in _GROUNDING_REDIRECT_HOSTS and source.title and "." in source.title:
            domain = extract_domain(source.title)
        if not domain or is_placeholder_domain(domain):
            continue
        found.append((source.url, domain, source.title))
    return found


def extract_candidates(
    text: str,
    native_sources: Iterable[CitedSource] = (),
    *,
    business_website: str | None = None,
    competitors: Iterable[TrackedCompetitor] = (),
) -> list[SourceCandidate]:
    """Collect, count and deduplicate every URL cited by an answer."""
    entries = _scan_sources_section(text or "") + _scan_body(text or "") + _native_entries(native_sources)

    by_url: dict[str, SourceCandidate] = {}
    for url, domain, title in entries:
        existing = by_url.get(url)
        if existing is not None:
            existing.citations += 1
            if not existing.title and title:
                existing.title = title
            continue
        by_url[url] = SourceCandidate(url=url, domain=domain, title=title)

    candidates = list(by_url.values())
    if business_website or competitors:
        for candidate in candidates:
            candidate.owner = classify_owner(candidate.domain, business_website, competitors)
    return candidates


# ---------------------------------------------------------------------------
# Owned-domain heuristic
# ---------------------------------------------------------------------------


def classify_owner(
    domain: str,
    business_website: str | None,
    competitors: Iterable[TrackedCompetitor] = (),
) -> SourceCategory | None:
    """You / Competitor when *domain* equals or contains the owner's hostname.

    Plain substring match: subdomains of the owner match, and so does any
    unrelated host that happens to contain the owner's hostname.
    """
    domain = domain.lower()
    business_domain = extract_domain(business_website) if business_website else ""
    if business_domain and business_domain in domain:
        return SourceCategory.YOU
    for competitor in competitors:
        if not competitor.website:
            continue
        competitor_domain = extract_domain(competitor.website)
        if competitor_domain and competitor_domain in domain:
            return SourceCategory.COMPETITOR
    return None
