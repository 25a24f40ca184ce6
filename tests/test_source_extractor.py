"""Tests for citation candidate extraction."""

from answerwatch.analysis.source_extractor import (
    classify_owner,
    extract_candidates,
    extract_domain,
    is_placeholder_domain,
    scan_text_urls,
)
from answerwatch.analysis.types import CitedSource, SourceCategory, TrackedCompetitor


class TestDomainHelpers:
    def test_extract_domain_strips_www(self):
        assert extract_domain("https://www.Tailscale.com/kb/1017") == "tailscale.com"

    def test_extract_domain_without_scheme(self):
        assert extract_domain("netbird.io") == "netbird.io"

    def test_placeholder_exact_and_subdomain(self):
        assert is_placeholder_domain("example.com")
        assert is_placeholder_domain("www.yourcompany.com")
        assert is_placeholder_domain("docs.example.org")
        assert not is_placeholder_domain("tailscale.com")


class TestScanTextUrls:
    def test_placeholders_excluded(self):
        text = "See https://example.com/setup and https://tailscale.com/kb."
        assert [s.url for s in scan_text_urls(text)] == ["https://tailscale.com/kb"]

    def test_trailing_punctuation_stripped(self):
        sources = scan_text_urls("Docs (https://netbird.io/docs).")
        assert sources[0].url == "https://netbird.io/docs"

    def test_first_occurrence_wins(self):
        text = "https://a.io/x then https://a.io/x again"
        assert len(scan_text_urls(text)) == 1


class TestExtractCandidates:
    def test_sources_section_and_body(self):
        text = (
            "Tailscale is simple (https://tailscale.com/pricing).\n\n"
            "## Sources\n"
            "1. [Tailscale Docs] - https://tailscale.com/kb/1017\n"
            "- [NetBird](https://netbird.io/)\n"
        )
        candidates = extract_candidates(text)
        urls = [c.url for c in candidates]
        assert "https://tailscale.com/kb/1017" in urls
        assert "https://netbird.io/" in urls
        assert "https://tailscale.com/pricing" in urls
        titled = next(c for c in candidates if c.url == "https://tailscale.com/kb/1017")
        assert titled.title == "Tailscale Docs"

    def test_bare_domains(self):
        candidates = extract_candidates("Compare zerotier.com with netbird.io today")
        assert {c.domain for c in candidates} == {"zerotier.com", "netbird.io"}
        assert all(c.url.startswith("https://") for c in candidates)

    def test_citation_count_across_paths(self):
        text = "Read https://tailscale.com/blog/x and again https://tailscale.com/blog/x"
        native = [CitedSource(url="https://tailscale.com/blog/x", title="Blog")]
        [candidate] = [c for c in extract_candidates(text, native) if c.url == "https://tailscale.com/blog/x"]
        assert candidate.citations == 3
        assert candidate.title == "Blog"

    def test_native_sources_appended(self):
        native = [CitedSource(url="https://reddit.com/r/selfhosted/1", title="thread")]
        candidates = extract_candidates("No links here", native)
        assert [c.domain for c in candidates] == ["reddit.com"]

    def test_grounding_redirect_uses_title_domain(self):
        native = [CitedSource(url="https://vertexaisearch.cloud.google.com/grounding-api-redirect/abc", title="netbird.io")]
        [candidate] = extract_candidates("", native)
        assert candidate.domain == "netbird.io"

    def test_placeholders_dropped_everywhere(self):
        text = "## Sources\n1. [Demo] - https://example.com/a\n"
        native = [CitedSource(url="https://yourcompany.com/x")]
        assert extract_candidates(text, native) == []

    def test_owner_classification(self):
        candidates = extract_candidates(
            "https://tailscale.com/kb and https://docs.netbird.io/how and https://en.wikipedia.org/wiki/VPN",
            business_website="https://www.tailscale.com",
            competitors=[TrackedCompetitor("Netbird", "https://netbird.io")],
        )
        owners = {c.domain: c.owner for c in candidates}
        assert owners["tailscale.com"] is SourceCategory.YOU
        assert owners["docs.netbird.io"] is SourceCategory.COMPETITOR
        assert owners["en.wikipedia.org"] is None


class TestClassifyOwner:
    def test_substring_match_is_loose(self):
        # Unrelated hosts that contain the owner's hostname still match
        assert classify_owner("nottailscale.com.evil.net", "tailscale.com") is SourceCategory.YOU

    def test_competitor_without_website_ignored(self):
        assert classify_owner("netbird.io", None, [TrackedCompetitor("Netbird")]) is None
