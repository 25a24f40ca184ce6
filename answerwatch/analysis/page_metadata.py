"""Page Metadata Fetcher: title / meta description / first <h1> for cited URLs.

Fetch layer uses httpx.AsyncClient under a semaphore; parse layer is pure.
Everything here is best-effort: a URL that times out, errors or returns
non-HTML is simply absent from the result map.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable

import httpx
from bs4 import BeautifulSoup

from answerwatch.analysis.types import PageMetadata, SourceCandidate
from answerwatch.core.config import settings

logger = logging.getLogger(__name__)

USER_AGENT = "Mozilla/5.0 (compatible; AnswerWatch/1.0; +https://github.com/answerwatch)"
_MAX_FIELD_LENGTH = 500


# ── Parse layer ──────────────────────────────────────────────────


def _clean(value: str | None) -> str | None:
    if not value:
        return None
    value = " ".join(value.split())
    return value[:_MAX_FIELD_LENGTH] or None


def parse_page_metadata(html: str) -> PageMetadata:
    soup = BeautifulSoup(html, "lxml")

    title = soup.title.get_text() if soup.title else None

    description = None
    meta = soup.find("meta", attrs={"name": lambda v: v and v.lower() == "description"})
    if meta is not None:
        description = meta.get("content")

    h1 = soup.find("h1")
    return PageMetadata(
        title=_clean(title),
        description=_clean(description),
        h1=_clean(h1.get_text()) if h1 is not None else None,
    )


# ── Fetch layer ──────────────────────────────────────────────────


async def fetch_page_metadata(client: httpx.AsyncClient, url: str) -> PageMetadata | None:
    resp = await client.get(url, follow_redirects=True)
    if resp.status_code != 200:
        return None
    if "html" not in resp.headers.get("content-type", "html"):
        return None
    metadata = parse_page_metadata(resp.text)
    if not (metadata.title or metadata.description or metadata.h1):
        return None
    return metadata


async def fetch_many_metadata(
    candidates: Iterable[SourceCandidate],
    *,
    client: httpx.AsyncClient | None = None,
    max_concurrent: int | None = None,
    timeout: float | None = None,
    max_urls: int | None = None,
) -> dict[str, PageMetadata]:
    """Fetch metadata for up to *max_urls* candidates, keyed by URL."""
    max_concurrent = max_concurrent or settings.page_fetch_concurrency
    timeout = timeout if timeout is not None else settings.page_fetch_timeout_seconds
    max_urls = max_urls or settings.page_fetch_max_urls

    urls = [c.url for c in candidates if c.url][:max_urls]
    if not urls:
        return {}

    sem = asyncio.Semaphore(max_concurrent)

    async def _fetch_one(c: httpx.AsyncClient, url: str) -> PageMetadata | None:
        async with sem:
            try:
                return await asyncio.wait_for(fetch_page_metadata(c, url), timeout=timeout)
            except (asyncio.TimeoutError, httpx.HTTPError) as exc:
                logger.debug("No metadata for %s: %s", url, exc)
            except Exception as exc:
                logger.debug("Unexpected error fetching metadata for %s: %s", url, exc)
            return None

    async def _run(c: httpx.AsyncClient) -> list[PageMetadata | None]:
        return await asyncio.gather(*(_fetch_one(c, url) for url in urls))

    if client is not None:
        results = await _run(client)
    else:
        async with httpx.AsyncClient(
            timeout=timeout,
            headers={"User-Agent": USER_AGENT, "Accept": "text/html"},
        ) as own_client:
            results = await _run(own_client)

    metadata = {url: meta for url, meta in zip(urls, results) if meta is not None}
    logger.debug("Page metadata: %d/%d URLs resolved", len(metadata), len(urls))
    return metadata
