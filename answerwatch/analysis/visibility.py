"""Metrics Calculator: binary visibility and share of voice per execution.

Both functions take the text-verified mention data and the business's
currently tracked competitor names. A competitor that was detected but is no
longer tracked contributes nothing, not even to the denominator.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field


@dataclass
class VisibilityMetrics:
    business_visibility: int
    competitor_visibilities: dict[str, int] = field(default_factory=dict)
    share_of_voice: float = 0.0
    competitor_share_of_voice: dict[str, float] = field(default_factory=dict)


def _mention_counts(competitors_mentioned: Iterable[str], tracked: list[str]) -> dict[str, int]:
    mentioned = {name.lower() for name in competitors_mentioned}
    return {name: 1 if name.lower() in mentioned else 0 for name in tracked}


def calculate_visibility(
    brand_mentions: int,
    competitors_mentioned: Iterable[str],
    tracked_competitors: list[str],
) -> tuple[int, dict[str, int]]:
    """1 if the entity was mentioned at all, else 0. Not weighted by count."""
    counts = _mention_counts(competitors_mentioned, tracked_competitors)
    return (1 if brand_mentions > 0 else 0), {name: 1 if n > 0 else 0 for name, n in counts.items()}


def calculate_share_of_voice(
    brand_mentions: int,
    competitors_mentioned: Iterable[str],
    tracked_competitors: list[str],
) -> tuple[float, dict[str, float]]:
    """Percent of all tracked mentions, rounded to one decimal. All zeros when nobody is mentioned."""
    counts = _mention_counts(competitors_mentioned, tracked_competitors)
    brand = max(brand_mentions, 0)
    total = brand + sum(counts.values())
    if total == 0:
        return 0.0, {name: 0.0 for name in counts}
    return (
        round(100 * brand / total, 1),
        {name: round(100 * n / total, 1) for name, n in counts.items()},
    )


def calculate_metrics(
    brand_mentions: int,
    competitors_mentioned: Iterable[str],
    tracked_competitors: list[str],
) -> VisibilityMetrics:
    competitors_mentioned = list(competitors_mentioned)
    visibility, competitor_visibilities = calculate_visibility(
        brand_mentions, competitors_mentioned, tracked_competitors
    )
    sov, competitor_sov = calculate_share_of_voice(brand_mentions, competitors_mentioned, tracked_competitors)
    return VisibilityMetrics(
        business_visibility=visibility,
        competitor_visibilities=competitor_visibilities,
        share_of_voice=sov,
        competitor_share_of_voice=competitor_sov,
    )
