"""Per-organization field mapping.

One profile per sanctioning body replaces the copy-pasted upload macros that
only differed in column names, area rules and placement order.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple


@dataclass(frozen=True)
class RankKey:
    """Attribute of an entry used to order qualified runs."""

    attr: str
    descending: bool = False


@dataclass(frozen=True)
class OrganizationProfile:
    name: str
    section_column: str = "section"
    area_counts: Dict[Tuple[str, str], int] = field(default_factory=dict)
    ranking: Tuple[RankKey, ...] = (RankKey("faults"), RankKey("search_seconds"))
    placement_limit: int = 4

    def area_count(self, element: str, level: str, override: Optional[int] = None) -> int:
        if override:
            return int(override)
        key = ((element or "").strip().lower(), (level or "").strip().lower())
        return self.area_counts.get(key, 1)

    def section_value(self, raw: Dict[str, Optional[str]]) -> str:
        value = (raw.get(self.section_column) or "").strip()
        return value or "-"


AKC_SCENT_WORK = OrganizationProfile(
    name="AKC Scent Work",
    area_counts={
        ("interior", "excellent"): 2,
        ("interior", "master"): 3,
        ("handler discrimination", "master"): 2,
    },
    ranking=(RankKey("faults"), RankKey("search_seconds")),
)

UKC_NOSEWORK = OrganizationProfile(
    name="UKC Nosework",
    ranking=(
        RankKey("correct_finds", descending=True),
        RankKey("faults"),
        RankKey("search_seconds"),
    ),
)

# ASCA judges pick one or two areas, so the local area_count column decides.
ASCA_SCENT_DETECTION = OrganizationProfile(
    name="ASCA Scent Detection",
    section_column="division",
    ranking=(RankKey("faults"), RankKey("search_seconds")),
)

PROFILES: Dict[str, OrganizationProfile] = {
    profile.name.lower(): profile
    for profile in (AKC_SCENT_WORK, UKC_NOSEWORK, ASCA_SCENT_DETECTION)
}


def get_profile(organization: str) -> OrganizationProfile:
    key = " ".join((organization or "").split()).lower()
    try:
        return PROFILES[key]
    except KeyError:
        raise ValueError(f"Unsupported organization '{organization}'") from None
