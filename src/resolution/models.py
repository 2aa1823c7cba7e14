"""Data models for resource resolution."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from constants import ApiVersion, Constants, ResourceKind
from common.errors import MalformedResponseError, RepositoryError, UnsupportedOperationError
from versioning.constraint import VersionConstraint
from versioning.version import ResourceVersion


@dataclass(frozen=True)
class ResourceIdentity:
    """Name and version of a resource."""
    name: str
    version: ResourceVersion

    @property
    def is_prerelease(self) -> bool:
        return self.version.is_prerelease

    @property
    def prerelease_label(self) -> str:
        return self.version.prerelease

    def key(self) -> Tuple[str, ResourceVersion]:
        """Case-insensitive identity key used for de-duplication."""
        return (self.name.lower(), self.version)

    def __str__(self) -> str:
        return f"{self.name}@{self.version}"


@dataclass(frozen=True)
class DependencyRef:
    """A dependency declared by a resource."""
    name: str
    version_range: VersionConstraint

    def __str__(self) -> str:
        return f"{self.name} {self.version_range}"


@dataclass(frozen=True)
class RepositoryDescriptor:
    """A registered repository, as supplied by the repository store.

    ``parent`` is set on the virtual script catalog synthesized for
    dual-catalog repositories and names the repository it belongs to.
    """
    name: str
    url: str
    priority: int = Constants.DEFAULT_PRIORITY
    api_version: ApiVersion = ApiVersion.V2
    trusted: bool = False
    parent: Optional[str] = None

    @property
    def is_local(self) -> bool:
        return self.api_version == ApiVersion.LOCAL

    @property
    def is_script_catalog(self) -> bool:
        return self.parent is not None

    @property
    def cache_key(self) -> str:
        """Identity used to key per-repository caches."""
        return f"{self.name.lower()}|{self.url}|{self.api_version.value}"

    def sort_key(self) -> Tuple[int, str]:
        return (self.priority, self.name.lower())


@dataclass(frozen=True)
class ResourceRecord:
    """A resolved resource version found in one repository."""
    identity: ResourceIdentity
    repository_name: str
    kind: ResourceKind = ResourceKind.MODULE
    tags: Tuple[str, ...] = ()
    dependencies: Tuple[DependencyRef, ...] = ()
    authors: Optional[str] = None
    description: Optional[str] = None
    project_uri: Optional[str] = None
    license_uri: Optional[str] = None
    published: Optional[datetime] = None
    installed_location: Optional[str] = None
    installed_date: Optional[datetime] = None
    metadata: Dict[str, Any] = field(default_factory=dict, compare=False, hash=False, repr=False)

    @property
    def name(self) -> str:
        return self.identity.name

    @property
    def version(self) -> ResourceVersion:
        return self.identity.version

    def with_install_info(self, location: str, installed: Optional[datetime] = None) -> "ResourceRecord":
        """Return a copy stamped with where and when it was installed."""
        return replace(self, installed_location=location, installed_date=installed or datetime.now())

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to plain JSON-friendly types."""
        return {
            "name": self.name,
            "version": str(self.version),
            "prerelease": self.identity.prerelease_label or None,
            "repository": self.repository_name,
            "type": self.kind.value,
            "tags": list(self.tags),
            "dependencies": [
                {"name": d.name, "versionRange": str(d.version_range)} for d in self.dependencies
            ],
            "author": self.authors,
            "description": self.description,
            "projectUri": self.project_uri,
            "licenseUri": self.license_uri,
            "publishedDate": self.published.isoformat() if self.published else None,
        }


@dataclass
class ResolutionRequest:
    """Inputs for one resolution call.

    Exactly one way of searching is used: by names, by command or DSC
    resource names, or, when neither is given, by tags alone.
    """
    names: List[str] = field(default_factory=list)
    version: Optional[str] = None
    include_prerelease: bool = False
    tags: List[str] = field(default_factory=list)
    kind: Optional[ResourceKind] = None
    include_dependencies: bool = False
    repositories: List[str] = field(default_factory=list)
    commands: List[str] = field(default_factory=list)
    dsc_resources: List[str] = field(default_factory=list)


class DiagnosticKind(Enum):
    """Categories of non-fatal problems reported alongside results."""
    CONSTRAINT_PARSE = "constraint_parse"
    TRANSPORT = "transport"
    MALFORMED_RESPONSE = "malformed_response"
    UNSUPPORTED = "unsupported"
    NOT_FOUND = "not_found"
    TAG_MISMATCH = "tag_mismatch"
    DEPENDENCY_NOT_FOUND = "dependency_not_found"
    SKIPPED_ENTRY = "skipped_entry"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class Diagnostic:
    """Human-readable report of something that went wrong but did not stop resolution."""
    kind: DiagnosticKind
    message: str
    repository: Optional[str] = None
    name: Optional[str] = None

    def __str__(self) -> str:
        where = f" [{self.repository}]" if self.repository else ""
        return f"{self.kind.value}{where}: {self.message}"


def diagnostic_kind_for(exc: RepositoryError) -> DiagnosticKind:
    """Map a repository failure to the diagnostic kind it is reported as."""
    if isinstance(exc, MalformedResponseError):
        return DiagnosticKind.MALFORMED_RESPONSE
    if isinstance(exc, UnsupportedOperationError):
        return DiagnosticKind.UNSUPPORTED
    return DiagnosticKind.TRANSPORT
