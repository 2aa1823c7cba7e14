"""Four-part resource versions with an optional prerelease label.

Versions look like ``1.2``, ``1.2.3``, ``1.2.3.4`` or ``1.2.3-beta1``, with
optional ``+metadata`` that takes no part in ordering. Missing numeric parts
are zero. A release orders above every prerelease with the same numeric
core; prerelease labels compare case-insensitively, identifier by
identifier, using semantic_version's precedence rules.
"""
from __future__ import annotations

import functools
import re
from dataclasses import dataclass, field
from typing import Optional, Tuple

import semantic_version

from common.errors import ConstraintParseError

_VERSION_RE = re.compile(
    r"^(\d+)(?:\.(\d+))?(?:\.(\d+))?(?:\.(\d+))?"
    r"(?:-([0-9A-Za-z\-]+(?:\.[0-9A-Za-z\-]+)*))?"
    r"(?:\+([0-9A-Za-z\-]+(?:\.[0-9A-Za-z\-]+)*))?$"
)


@functools.lru_cache(maxsize=2048)
def _label_key(label: str) -> Optional[semantic_version.Version]:
    """Wrap a prerelease label in a semantic_version.Version for comparison."""
    try:
        return semantic_version.Version(
            major=0, minor=0, patch=0, prerelease=tuple(label.lower().split(".")), build=()
        )
    except ValueError:
        # e.g. numeric identifiers with leading zeroes; compared as plain text
        return None


def compare_prerelease(left: str, right: str) -> int:
    """Compare two prerelease labels; an empty label (a release) sorts highest."""
    if left.lower() == right.lower():
        return 0
    if not left:
        return 1
    if not right:
        return -1
    left_key, right_key = _label_key(left), _label_key(right)
    if left_key is not None and right_key is not None:
        return (left_key > right_key) - (left_key < right_key)
    a, b = left.lower(), right.lower()
    return (a > b) - (a < b)


@functools.total_ordering
@dataclass(frozen=True, eq=False)
class ResourceVersion:
    """Parsed version of a resource."""

    major: int
    minor: int = 0
    patch: int = 0
    revision: int = 0
    prerelease: str = ""
    metadata: str = ""
    original: Optional[str] = field(default=None, compare=False, repr=False)

    @classmethod
    def parse(cls, text: Optional[str]) -> "ResourceVersion":
        """Parse a version string.

        Raises:
            ConstraintParseError: when the text is not a valid version.
        """
        if text is None:
            raise ConstraintParseError(text, "no version given")
        stripped = text.strip()
        m = _VERSION_RE.match(stripped)
        if not m:
            raise ConstraintParseError(text, "not a valid version")
        major, minor, patch, revision, prerelease, metadata = m.groups()
        return cls(
            major=int(major),
            minor=int(minor or 0),
            patch=int(patch or 0),
            revision=int(revision or 0),
            prerelease=prerelease or "",
            metadata=metadata or "",
            original=stripped,
        )

    @classmethod
    def try_parse(cls, text: Optional[str]) -> Optional["ResourceVersion"]:
        """Parse a version string, returning None instead of raising."""
        try:
            return cls.parse(text)
        except ConstraintParseError:
            return None

    @property
    def release(self) -> Tuple[int, int, int, int]:
        """Numeric core as a 4-tuple."""
        return (self.major, self.minor, self.patch, self.revision)

    @property
    def is_prerelease(self) -> bool:
        """True when the version carries a prerelease label."""
        return bool(self.prerelease)

    def without_prerelease(self) -> "ResourceVersion":
        """Return the release version sharing this numeric core."""
        return ResourceVersion(*self.release)

    def _cmp(self, other: "ResourceVersion") -> int:
        if self.release != other.release:
            return (self.release > other.release) - (self.release < other.release)
        return compare_prerelease(self.prerelease, other.prerelease)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ResourceVersion):
            return NotImplemented
        return self._cmp(other) == 0

    def __lt__(self, other: "ResourceVersion") -> bool:
        if not isinstance(other, ResourceVersion):
            return NotImplemented
        return self._cmp(other) < 0

    def __hash__(self) -> int:
        return hash((self.release, self.prerelease.lower()))

    def __str__(self) -> str:
        text = f"{self.major}.{self.minor}.{self.patch}"
        if self.revision:
            text += f".{self.revision}"
        if self.prerelease:
            text += f"-{self.prerelease}"
        return text
