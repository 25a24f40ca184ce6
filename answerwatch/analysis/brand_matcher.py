"""Brand Matcher: name normalization and text-verified mention detection.

The combined analysis model is never trusted on its own about whether a brand
appears in an answer. Every claim is checked against the raw text here using
word-boundary, case-insensitive matching over all known variations of the name.
"""

from __future__ import annotations

import copy
import logging
import re

logger = logging.getLogger(__name__)

# Canonical brand name -> known variations.
BRAND_ALIASES: dict[str, list[str]] = {
    # Network security / zero trust
    "Zscaler": ["Zscaler Private Access", "Zscaler Internet Access", "Zscaler ZPA", "Zscaler ZIA", "ZPA", "ZIA"],
    "Palo Alto Networks": [
        "Palo Alto",
        "Palo Alto Prisma Access",
        "Prisma Access",
        "Prisma Cloud",
        "PAN-OS",
        "PANW",
        "Palo Alto NGFW",
        "Palo Alto Firewall",
    ],
    "Cloudflare": ["Cloudflare Access", "Cloudflare Zero Trust", "Cloudflare WARP", "Cloudflare One", "CF Access"],
    "Tailscale": ["Tailscale VPN"],
    "Netbird": ["NetBird", "Net Bird"],
    "ZeroTier": ["Zero Tier", "ZeroTier One"],
    "Twingate": ["Twin Gate"],
    "Perimeter 81": ["Perimeter81", "P81"],
    # Cloud providers
    "Amazon Web Services": ["AWS", "Amazon AWS", "Amazon Cloud"],
    "Microsoft Azure": ["Azure", "MS Azure"],
    "Google Cloud": ["GCP", "Google Cloud Platform", "Google Cloud Services"],
    # Identity
    "Okta": ["Okta Identity", "Okta SSO"],
    "Microsoft": [
        "Microsoft Entra",
        "Azure AD",
        "Azure Active Directory",
        "Microsoft 365",
        "MS365",
        "Office 365",
        "O365",
    ],
    # Security vendors
    "CrowdStrike": ["Crowd Strike", "CrowdStrike Falcon", "Falcon"],
    "SentinelOne": ["Sentinel One", "S1"],
    "Fortinet": ["FortiGate", "FortiNet", "Forti Gate"],
    "Cisco": ["Cisco AnyConnect", "AnyConnect", "Cisco Umbrella", "Umbrella", "Cisco Duo", "Duo Security"],
    "Check Point": ["CheckPoint", "Check Point Software", "CHKP"],
    "Juniper": ["Juniper Networks", "Juniper SRX", "Mist AI"],
}

# Containment lookups skip aliases shorter than this ("S1", "ZPA", ...)
MIN_CONTAINED_ALIAS_LENGTH = 4


class BrandMatcher:
    """Alias-aware brand comparison and text search.

    Each instance owns its alias table, so ``add_brand_alias`` on one matcher
    never leaks into another.
    """

    def __init__(self, aliases: dict[str, list[str]] | None = None):
        self._aliases: dict[str, list[str]] = copy.deepcopy(aliases if aliases is not None else BRAND_ALIASES)
        self._alias_to_canonical: dict[str, str] = {}
        for canonical, variations in self._aliases.items():
            self._alias_to_canonical[canonical.lower()] = canonical
            for alias in variations:
                self._alias_to_canonical[alias.lower()] = canonical

    def normalize_brand_name(self, brand_name: str) -> str:
        """Return the canonical name for *brand_name*, or the stripped input."""
        lower_name = brand_name.lower().strip()

        canonical = self._alias_to_canonical.get(lower_name)
        if canonical:
            return canonical

        # "Palo Alto Networks Prisma Access" -> "Palo Alto Networks"
        for alias, canonical in self._alias_to_canonical.items():
            if len(alias) < MIN_CONTAINED_ALIAS_LENGTH:
                continue
            if alias in lower_name:
                return canonical

        return brand_name.strip()

    def is_same_brand(self, name1: str, name2: str) -> bool:
        return self.normalize_brand_name(name1).lower() == self.normalize_brand_name(name2).lower()

    def find_matching_tracked_competitor(self, brand_name: str, tracked: list[str]) -> str | None:
        """Return the tracked competitor *brand_name* refers to, if any."""
        normalized = self.normalize_brand_name(brand_name).lower()
        for name in tracked:
            if self.normalize_brand_name(name).lower() == normalized:
                return name
        return None

    def get_brand_variations(self, brand_name: str) -> list[str]:
        """All known names for a brand, canonical name first."""
        canonical = self.normalize_brand_name(brand_name)
        variations = [canonical]
        variations.extend(self._aliases.get(canonical, []))
        # The caller's own spelling always counts as a variation
        stripped = brand_name.strip()
        if stripped and stripped.lower() not in {v.lower() for v in variations}:
            variations.append(stripped)
        return variations

    def text_contains_brand(self, text: str, brand_name: str) -> bool:
        """True if any variation of *brand_name* appears in *text* as a whole word."""
        if not text or not brand_name or not brand_name.strip():
            return False
        for variation in self.get_brand_variations(brand_name):
            pattern = _variation_pattern(variation)
            if pattern.search(text):
                return True
        return False

    def add_brand_alias(self, canonical_name: str, alias: str) -> None:
        variations = self._aliases.setdefault(canonical_name, [])
        if alias not in variations:
            variations.append(alias)
        self._alias_to_canonical.setdefault(canonical_name.lower(), canonical_name)
        self._alias_to_canonical[alias.lower()] = canonical_name


def _variation_pattern(variation: str) -> re.Pattern[str]:
    # \b only anchors next to word characters; names like "C++" or ".NET"
    # need lookarounds instead so they can still match.
    escaped = re.escape(variation)
    start = r"\b" if re.match(r"\w", variation) else r"(?<!\w)"
    end = r"\b" if re.search(r"\w$", variation) else r"(?!\w)"
    return re.compile(f"{start}{escaped}{end}", re.IGNORECASE)


# ---------------------------------------------------------------------------
# Module-level helpers bound to the default alias table
# ---------------------------------------------------------------------------

_default_matcher = BrandMatcher()


def normalize_brand_name(brand_name: str) -> str:
    return _default_matcher.normalize_brand_name(brand_name)


def is_same_brand(name1: str, name2: str) -> bool:
    return _default_matcher.is_same_brand(name1, name2)


def find_matching_tracked_competitor(brand_name: str, tracked: list[str]) -> str | None:
    return _default_matcher.find_matching_tracked_competitor(brand_name, tracked)


def get_brand_variations(brand_name: str) -> list[str]:
    return _default_matcher.get_brand_variations(brand_name)


def text_contains_brand(text: str, brand_name: str) -> bool:
    return _default_matcher.text_contains_brand(text, brand_name)
