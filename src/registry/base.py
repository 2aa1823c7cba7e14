"""Common interface implemented by every repository protocol backend."""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from constants import Constants, ResourceKind
from common.cancellation import CancellationToken
from common.errors import UnsupportedOperationError
from common.logging_utils import extra_context
from resolution.models import RepositoryDescriptor
from versioning.version import ResourceVersion

logger = logging.getLogger(__name__)


@dataclass
class RawCandidate:
    """One version record as returned by a backend, before filtering.

    ``kind`` is set when the backend knows it from where the record came
    from (e.g. a script-only catalog); otherwise it is derived from tags.
    """
    name: str
    version: ResourceVersion
    tags: List[str] = field(default_factory=list)
    dependencies: List[Tuple[str, str]] = field(default_factory=list)
    kind: Optional[ResourceKind] = None
    authors: Optional[str] = None
    description: Optional[str] = None
    project_uri: Optional[str] = None
    license_uri: Optional[str] = None
    published: Optional[datetime] = None
    extra: Dict[str, Any] = field(default_factory=dict)


class RepositoryBackend(ABC):
    """Search capabilities shared by the Local, V2 and V3 backends.

    Search methods raise RepositoryError subclasses on failure. Problems
    that only affect single entries (an unreadable package file, a record
    with a bad version) are not raised; they are collected and handed to
    the caller through take_warnings().
    """

    def __init__(self, descriptor: RepositoryDescriptor):
        self.descriptor = descriptor
        self._warnings: List[str] = []

    @property
    def name(self) -> str:
        return self.descriptor.name

    @abstractmethod
    def search_by_exact_name(
        self,
        name: str,
        include_prerelease: bool = False,
        *,
        kind: Optional[ResourceKind] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> List[RawCandidate]:
        """Return every version of the named resource known to the repository."""

    @abstractmethod
    def search_by_wildcard_name(
        self,
        pattern: str,
        include_prerelease: bool = False,
        *,
        kind: Optional[ResourceKind] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> List[RawCandidate]:
        """Return the latest version of every resource the backend thinks matches.

        Results may include names the pattern does not match; callers
        re-filter with the name matcher.
        """

    @abstractmethod
    def search_by_tags(
        self,
        tags: List[str],
        include_prerelease: bool = False,
        *,
        kind: Optional[ResourceKind] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> List[RawCandidate]:
        """Return the latest version of every resource carrying all of the tags.

        Like wildcard search, results may over-match; callers re-check tags.
        """

    def search_by_command(
        self,
        names: List[str],
        include_prerelease: bool = False,
        *,
        dsc_resource: bool = False,
        cancel: Optional[CancellationToken] = None,
    ) -> List[RawCandidate]:
        """Return modules exporting every named command (or DSC resource).

        Raises:
            UnsupportedOperationError: when the protocol cannot search by command.
        """
        what = "DSC resource" if dsc_resource else "command"
        raise UnsupportedOperationError(
            f"Search by {what} name is not supported by repository '{self.name}'",
            url=self.descriptor.url,
        )

    @staticmethod
    def command_tags(names: List[str], dsc_resource: bool = False) -> List[str]:
        """Map command or DSC resource names to the tags modules publish them under."""
        prefix = Constants.DSC_RESOURCE_TAG_PREFIX if dsc_resource else Constants.COMMAND_TAG_PREFIX
        return [f"{prefix}{name}" for name in names]

    def take_warnings(self) -> List[str]:
        """Return and clear per-entry warnings collected since the last call."""
        warnings, self._warnings = self._warnings, []
        return warnings

    def close(self) -> None:
        """Release any held resources."""

    def _warn(self, message: str) -> None:
        logger.warning(
            message,
            extra=extra_context(event="skipped_entry", component="backend", repository=self.name),
        )
        self._warnings.append(message)
