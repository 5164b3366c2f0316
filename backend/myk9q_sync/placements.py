from __future__ import annotations

import math
from typing import Dict, Iterable, List, Tuple

from .models import EntryRow
from .organizations import OrganizationProfile


def _sort_key(entry: EntryRow, profile: OrganizationProfile) -> Tuple[float, ...]:
    values: List[float] = []
    for key in profile.ranking:
        raw = getattr(entry, key.attr, None)
        if raw is None:
            # Missing measurements rank behind every recorded one.
            values.append(math.inf)
            continue
        value = float(raw)
        values.append(-value if key.descending else value)
    return tuple(values)


def compute_placements(entries: Iterable[EntryRow], profile: OrganizationProfile) -> Dict[int, int]:
    """Return ``entry_id -> placement`` for one class.

    Qualified runs are ordered by the profile's ranking keys; exact ties share
    a placement and the next placement is skipped. Only places up to the
    profile's limit are awarded, everyone else gets 0.
    """

    rows = list(entries)
    placements = {row.entry_id: 0 for row in rows}
    qualified = sorted(
        (row for row in rows if row.qualified),
        key=lambda row: (_sort_key(row, profile), row.armband),
    )

    place = 1
    idx = 0
    while idx < len(qualified):
        current = qualified[idx]
        current_key = _sort_key(current, profile)
        tie_group = [current]
        idx += 1
        while idx < len(qualified) and _sort_key(qualified[idx], profile) == current_key:
            tie_group.append(qualified[idx])
            idx += 1
        if place > profile.placement_limit:
            break
        for row in tie_group:
            placements[row.entry_id] = place
        place += len(tie_group)

    return placements
