"""Version constraint parsing and satisfaction.

Accepted forms:

- empty, None or ``*``: every version
- ``1.2.3``: exactly that version (``[1.2.3]`` is the same thing)
- interval notation: ``[1.0, 2.0)``, ``(1.0,]``, ``(,2.0]``
- trailing wildcard: ``3.*`` is ``[3.0.0, 4.0.0)``, ``3.1.*`` is ``[3.1.0, 3.2.0)``
- comparators: ``>=1.0``, ``>1.0 <2.0``, ``>=1.0, <=1.5``

Dependency declarations use NuGet's convention that a bare version means
"this version or newer"; see parse_dependency_range().
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Tuple

from common.errors import ConstraintParseError
from versioning.version import ResourceVersion

_WILDCARD_RE = re.compile(r"^(\d+(?:\.\d+){0,2})\.\*$")
_COMPARATOR_RE = re.compile(r"(>=|<=|==|=|>|<)\s*([^\s,<>=]+)")


class ConstraintKind(Enum):
    """Shape of a version constraint."""
    ALL = "all"
    EXACT = "exact"
    RANGE = "range"


@dataclass(frozen=True)
class VersionConstraint:
    """Exact version, bounded range, or the match-everything constraint."""

    kind: ConstraintKind
    version: Optional[ResourceVersion] = None
    min_version: Optional[ResourceVersion] = None
    min_inclusive: bool = True
    max_version: Optional[ResourceVersion] = None
    max_inclusive: bool = True
    raw: Optional[str] = None

    @classmethod
    def all(cls, raw: Optional[str] = None) -> "VersionConstraint":
        return cls(ConstraintKind.ALL, raw=raw)

    @classmethod
    def exact(cls, version: ResourceVersion, raw: Optional[str] = None) -> "VersionConstraint":
        return cls(ConstraintKind.EXACT, version=version, raw=raw)

    @classmethod
    def range(
        cls,
        min_version: Optional[ResourceVersion] = None,
        min_inclusive: bool = True,
        max_version: Optional[ResourceVersion] = None,
        max_inclusive: bool = True,
        raw: Optional[str] = None,
    ) -> "VersionConstraint":
        """Build a range, validating that it can contain at least one version.

        Raises:
            ConstraintParseError: when min > max, or the bounds exclude each other.
        """
        if min_version is None and max_version is None:
            raise ConstraintParseError(raw, "a range needs at least one bound")
        if min_version is not None and max_version is not None:
            if min_version > max_version:
                raise ConstraintParseError(raw, f"minimum {min_version} is greater than maximum {max_version}")
            if min_version == max_version and not (min_inclusive and max_inclusive):
                raise ConstraintParseError(raw, "range excludes its only version")
        return cls(
            ConstraintKind.RANGE,
            min_version=min_version,
            min_inclusive=min_inclusive,
            max_version=max_version,
            max_inclusive=max_inclusive,
            raw=raw,
        )

    @property
    def is_all(self) -> bool:
        return self.kind == ConstraintKind.ALL

    @property
    def is_exact(self) -> bool:
        return self.kind == ConstraintKind.EXACT

    @property
    def is_range(self) -> bool:
        """True for a real range, i.e. one that may match several versions."""
        return self.kind == ConstraintKind.RANGE

    @property
    def mentions_prerelease(self) -> bool:
        """True when any bound itself carries a prerelease label."""
        bounds = (self.version, self.min_version, self.max_version)
        return any(b is not None and b.is_prerelease for b in bounds)

    def satisfies(self, version: ResourceVersion) -> bool:
        """Return True when the version falls inside this constraint."""
        if self.kind == ConstraintKind.ALL:
            return True
        if self.kind == ConstraintKind.EXACT:
            return version == self.version
        if self.min_version is not None:
            if self.min_inclusive and version < self.min_version:
                return False
            if not self.min_inclusive and version <= self.min_version:
                return False
        if self.max_version is not None:
            if self.max_inclusive and version > self.max_version:
                return False
            if not self.max_inclusive and version >= self.max_version:
                return False
        return True

    def __str__(self) -> str:
        if self.kind == ConstraintKind.ALL:
            return "*"
        if self.kind == ConstraintKind.EXACT:
            return str(self.version)
        # A missing bound is always open: [1.0, ) and (, 2.0]
        low = "[" if self.min_inclusive and self.min_version is not None else "("
        high = "]" if self.max_inclusive and self.max_version is not None else ")"
        lo = str(self.min_version) if self.min_version is not None else ""
        hi = str(self.max_version) if self.max_version is not None else ""
        return f"{low}{lo}, {hi}{high}"


def parse(text: Optional[str]) -> VersionConstraint:
    """Parse a user-supplied version string.

    Args:
        text: Version text; empty or None means every version.

    Returns:
        The parsed VersionConstraint.

    Raises:
        ConstraintParseError: describing why the text was rejected.
    """
    return _parse(text, bare_as_minimum=False)


def parse_dependency_range(text: Optional[str]) -> VersionConstraint:
    """Parse a dependency's declared range; a bare version is a minimum."""
    return _parse(text, bare_as_minimum=True)


def _parse(text: Optional[str], *, bare_as_minimum: bool) -> VersionConstraint:
    if text is None:
        return VersionConstraint.all()
    s = text.strip()
    if not s or s == "*":
        return VersionConstraint.all(raw=text)
    if s[0] in "[(":
        return _parse_interval(s, text)
    if s[0] in "<>=":
        return _parse_comparators(s, text)
    m = _WILDCARD_RE.match(s)
    if m:
        return _parse_wildcard(m.group(1), text)
    if "*" in s:
        raise ConstraintParseError(text, "wildcards are only allowed as the last version part")
    version = ResourceVersion.parse(s)
    if bare_as_minimum:
        return VersionConstraint.range(min_version=version, min_inclusive=True, raw=text)
    return VersionConstraint.exact(version, raw=text)


def _parse_interval(s: str, raw: str) -> VersionConstraint:
    if len(s) < 3 or s[-1] not in "])":
        raise ConstraintParseError(raw, "interval must end with ']' or ')'")
    min_inclusive = s[0] == "["
    max_inclusive = s[-1] == "]"
    body = s[1:-1]
    if "," not in body:
        # [1.0] pins a single version; (1.0) has no meaning
        if not (min_inclusive and max_inclusive):
            raise ConstraintParseError(raw, "single-version interval must use square brackets")
        return VersionConstraint.exact(ResourceVersion.parse(body), raw=raw)
    parts = body.split(",")
    if len(parts) != 2:
        raise ConstraintParseError(raw, "interval must have exactly two bounds")
    low, high = parts[0].strip(), parts[1].strip()
    if not low and not high:
        raise ConstraintParseError(raw, "interval must have at least one bound")
    min_version = ResourceVersion.parse(low) if low else None
    max_version = ResourceVersion.parse(high) if high else None
    return VersionConstraint.range(
        min_version=min_version,
        min_inclusive=min_inclusive if min_version is not None else True,
        max_version=max_version,
        max_inclusive=max_inclusive if max_version is not None else True,
        raw=raw,
    )


def _parse_wildcard(prefix: str, raw: str) -> VersionConstraint:
    parts = [int(p) for p in prefix.split(".")]
    lower = parts + [0] * (4 - len(parts))
    upper = parts[:-1] + [parts[-1] + 1]
    upper += [0] * (4 - len(upper))
    return VersionConstraint.range(
        min_version=ResourceVersion(*lower),
        min_inclusive=True,
        max_version=ResourceVersion(*upper),
        max_inclusive=False,
        raw=raw,
    )


def _parse_comparators(s: str, raw: str) -> VersionConstraint:
    clauses: List[Tuple[str, str]] = _COMPARATOR_RE.findall(s)
    leftover = _COMPARATOR_RE.sub("", s).replace(",", "").strip()
    if not clauses or leftover:
        raise ConstraintParseError(raw, "expected comparator clauses such as '>=1.0 <2.0'")

    min_version: Optional[ResourceVersion] = None
    min_inclusive = True
    max_version: Optional[ResourceVersion] = None
    max_inclusive = True
    for op, value in clauses:
        version = ResourceVersion.parse(value)
        if op in ("=", "=="):
            if len(clauses) > 1:
                raise ConstraintParseError(raw, "'=' cannot be combined with other comparators")
            return VersionConstraint.exact(version, raw=raw)
        if op in (">", ">="):
            if min_version is not None:
                raise ConstraintParseError(raw, "more than one lower bound")
            min_version, min_inclusive = version, op == ">="
        else:
            if max_version is not None:
                raise ConstraintParseError(raw, "more than one upper bound")
            max_version, max_inclusive = version, op == "<="
    return VersionConstraint.range(min_version, min_inclusive, max_version, max_inclusive, raw=raw)
