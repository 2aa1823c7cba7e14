"""Case-insensitive ``*`` glob matching for resource and repository names."""
from __future__ import annotations

import functools
import re
from typing import Pattern

WILDCARD = "*"


def has_wildcard(name: str) -> bool:
    """True when the name contains a ``*`` wildcard."""
    return WILDCARD in name


@functools.lru_cache(maxsize=512)
def _compile(pattern: str) -> Pattern[str]:
    body = ".*".join(re.escape(part) for part in pattern.split(WILDCARD))
    return re.compile(body, re.IGNORECASE | re.DOTALL)


def matches(candidate_name: str, pattern: str) -> bool:
    """Return True when candidate_name matches pattern, ignoring case.

    ``*`` matches any run of characters, including none. Every other
    character is literal.
    """
    return _compile(pattern).fullmatch(candidate_name) is not None

