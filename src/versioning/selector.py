"""Pick the latest, or every, candidate version satisfying a constraint."""
from __future__ import annotations

import logging
from typing import Iterable, List, Optional, TypeVar

from common.logging_utils import extra_context, is_debug_enabled
from versioning.constraint import VersionConstraint

logger = logging.getLogger(__name__)

C = TypeVar("C")


def _version_of(candidate):
    return candidate.version


def _filter_and_order(
    candidates: Iterable[C], constraint: VersionConstraint, include_prerelease: bool
) -> List[C]:
    """Drop prereleases (unless allowed) and unsatisfying versions, dedupe, sort descending."""
    seen = set()
    kept: List[C] = []
    for candidate in candidates:
        version = _version_of(candidate)
        if version is None:
            continue
        if version.is_prerelease and not include_prerelease:
            continue
        if not constraint.satisfies(version):
            continue
        # First occurrence of a version wins
        if version in seen:
            continue
        seen.add(version)
        kept.append(candidate)
    kept.sort(key=_version_of, reverse=True)
    return kept


def select_latest(
    candidates: Iterable[C], constraint: VersionConstraint, include_prerelease: bool = False
) -> Optional[C]:
    """Return the highest candidate satisfying the constraint, or None.

    Args:
        candidates: Objects exposing a ``version`` attribute (ResourceVersion).
        constraint: Constraint every returned version must satisfy.
        include_prerelease: When False, prerelease versions are never returned.
    """
    ordered = _filter_and_order(candidates, constraint, include_prerelease)
    if is_debug_enabled(logger):
        logger.debug(
            "Selected latest version",
            extra=extra_context(
                event="decision",
                component="selector",
                action="select_latest",
                constraint=str(constraint),
                outcome="found" if ordered else "none",
                count=len(ordered),
            ),
        )
    return ordered[0] if ordered else None


def select_all(
    candidates: Iterable[C], constraint: VersionConstraint, include_prerelease: bool = False
) -> List[C]:
    """Return every satisfying candidate, highest version first."""
    ordered = _filter_and_order(candidates, constraint, include_prerelease)
    if is_debug_enabled(logger):
        logger.debug(
            "Selected all versions",
            extra=extra_context(
                event="decision",
                component="selector",
                action="select_all",
                constraint=str(constraint),
                count=len(ordered),
            ),
        )
    return ordered
