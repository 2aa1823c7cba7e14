"""Turn backend RawCandidates into immutable ResourceRecords."""
from __future__ import annotations

from typing import List, Optional, Tuple

from constants import Constants, ResourceKind
from common.errors import ConstraintParseError
from registry.base import RawCandidate
from resolution.models import DependencyRef, RepositoryDescriptor, ResourceIdentity, ResourceRecord
from versioning.constraint import parse_dependency_range


def infer_kind(tags: List[str], descriptor: Optional[RepositoryDescriptor] = None) -> ResourceKind:
    """Scripts are tagged PSScript or come from a script-only catalog."""
    if descriptor is not None and descriptor.is_script_catalog:
        return ResourceKind.SCRIPT
    lowered = {t.lower() for t in tags}
    if Constants.SCRIPT_TAG.lower() in lowered:
        return ResourceKind.SCRIPT
    return ResourceKind.MODULE


def build_record(
    candidate: RawCandidate, descriptor: RepositoryDescriptor
) -> Tuple[ResourceRecord, List[str]]:
    """Build a record; dependencies with unparseable ranges are dropped.

    Returns:
        Tuple of (record, warnings about dropped dependencies).
    """
    warnings: List[str] = []
    dependencies: List[DependencyRef] = []
    for dep_name, range_text in candidate.dependencies:
        try:
            dependencies.append(DependencyRef(dep_name, parse_dependency_range(range_text)))
        except ConstraintParseError as exc:
            warnings.append(
                f"{candidate.name} {candidate.version}: ignoring dependency '{dep_name}': {exc}"
            )

    record = ResourceRecord(
        identity=ResourceIdentity(candidate.name, candidate.version),
        repository_name=descriptor.name,
        kind=candidate.kind or infer_kind(candidate.tags, descriptor),
        tags=tuple(candidate.tags),
        dependencies=tuple(dependencies),
        authors=candidate.authors,
        description=candidate.description,
        project_uri=candidate.project_uri,
        license_uri=candidate.license_uri,
        published=candidate.published,
        metadata=dict(candidate.extra),
    )
    return record, warnings
