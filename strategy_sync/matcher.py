"""Title matching between approval sections and persisted sessions.

Matching is a heuristic. An exact normalized match always wins; otherwise a
candidate whose title contains, or is contained in, the wanted title is
accepted. Several candidates can satisfy containment, so ties are broken by
the longest overlap, then by the lowest persisted ``sort_order``, then by
candidate order. The result is therefore stable under re-orderings of
candidates with distinct overlaps or sort orders, but a title that is only a
fragment of several others may still pick a different session than a human
would.
"""

from __future__ import annotations

import re
from typing import AbstractSet, Iterable, Optional

from .models import ExistingSession

_WHITESPACE = re.compile(r"\s+")


def normalize_title(title: str) -> str:
    """Lower-case, collapse whitespace runs and trim."""
    return _WHITESPACE.sub(" ", (title or "").lower()).strip()


def titles_match(left: str, right: str) -> bool:
    return normalize_title(left) == normalize_title(right)


def containment_overlap(wanted: str, candidate: str) -> int:
    """Length of the shared text when one normalized title contains the other.

    Returns 0 when neither contains the other or either title is empty.
    """
    if not wanted or not candidate:
        return 0
    if wanted in candidate:
        return len(wanted)
    if candidate in wanted:
        return len(candidate)
    return 0


def find_best_match(
    title: str,
    candidates: Iterable[ExistingSession],
    used_ids: AbstractSet[str],
) -> Optional[ExistingSession]:
    """Find the session that best denotes ``title`` among unused candidates."""
    wanted = normalize_title(title)
    available = [c for c in candidates if c.id not in used_ids]

    for candidate in available:
        if normalize_title(candidate.title) == wanted:
            return candidate

    best: Optional[ExistingSession] = None
    best_key = None
    for position, candidate in enumerate(available):
        overlap = containment_overlap(wanted, normalize_title(candidate.title))
        if not overlap:
            continue
        key = (-overlap, candidate.sort_order, position)
        if best_key is None or key < best_key:
            best, best_key = candidate, key
    return best
