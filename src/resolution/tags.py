"""Required-tag filtering."""
from __future__ import annotations

from typing import Iterable, Optional


def has_any_required_tag(candidate_tags: Iterable[str], required_tags: Optional[Iterable[str]]) -> bool:
    """Return True when the candidate carries at least one required tag.

    Comparison ignores case. No required tags means no filtering.
    """
    required = {t.lower() for t in (required_tags or ()) if t}
    if not required:
        return True
    return any(t.lower() in required for t in candidate_tags)


def has_all_required_tags(candidate_tags: Iterable[str], required_tags: Iterable[str]) -> bool:
    """Return True when every required tag is present, ignoring case."""
    present = {t.lower() for t in candidate_tags}
    return all(t.lower() in present for t in required_tags if t)
