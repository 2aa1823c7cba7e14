"""Repository ordering and dual-catalog (module + script) expansion.

A dual-catalog repository serves modules at its registered URL and
scripts at a separate sub-catalog. When a request may return scripts, a
virtual descriptor for the script catalog is inserted right after its
parent so both are searched in order.
"""
from __future__ import annotations

from dataclasses import replace
from typing import List, Optional, Sequence

from constants import Constants, ResourceKind
from resolution.models import RepositoryDescriptor


def _normalize(url: str) -> str:
    return url.strip().rstrip("/").lower()


def is_dual_catalog(descriptor: RepositoryDescriptor) -> bool:
    """True for a well-known repository that keeps scripts in a sub-catalog."""
    if descriptor.is_script_catalog:
        return False
    return _normalize(descriptor.url) in {_normalize(u) for u in Constants.DUAL_CATALOG_URLS}


def script_catalog_for(descriptor: RepositoryDescriptor) -> RepositoryDescriptor:
    """Virtual descriptor for the script sub-catalog of a dual-catalog repository."""
    return replace(
        descriptor,
        name=f"{descriptor.name}{Constants.SCRIPT_CATALOG_NAME_SUFFIX}",
        url=descriptor.url.rstrip("/") + Constants.SCRIPT_CATALOG_SUFFIX,
        parent=descriptor.name,
    )


def order_repositories(
    repositories: Sequence[RepositoryDescriptor], kind: Optional[ResourceKind] = None
) -> List[RepositoryDescriptor]:
    """Sort by (priority, name) and add script catalogs when scripts are allowed."""
    ordered: List[RepositoryDescriptor] = []
    for descriptor in sorted(repositories, key=RepositoryDescriptor.sort_key):
        ordered.append(descriptor)
        if kind != ResourceKind.MODULE and is_dual_catalog(descriptor):
            ordered.append(script_catalog_for(descriptor))
    return ordered
