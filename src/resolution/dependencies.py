"""Recursive dependency resolution against the repository that supplied the parent."""
from __future__ import annotations

import logging
from typing import Callable, Dict, List, Optional, Set, Tuple

from common.cancellation import CancellationToken, check_cancelled
from common.errors import RepositoryError
from common.logging_utils import extra_context, is_debug_enabled
from registry.base import RepositoryBackend
from resolution.models import DiagnosticKind, ResourceRecord, diagnostic_kind_for
from resolution.records import build_record
from versioning.selector import select_latest
from versioning.version import ResourceVersion

logger = logging.getLogger(__name__)

Reporter = Callable[..., object]


class DependencyExpander:
    """Resolves declared dependencies depth-first, once per (name, version).

    Each dependency is resolved to the latest version satisfying its
    declared range, prereleases included. A dependency's own dependencies
    are appended before it. A (name, version) already seen in this
    resolution is neither fetched nor emitted again, which also stops cycles.
    """

    def __init__(self, report: Reporter):
        """Initialize the expander.

        Args:
            report: Called as report(kind, message, repository=..., name=...) for soft failures.
        """
        self._report = report
        self._visited: Set[Tuple[str, ResourceVersion]] = set()
        self._lookups: Dict[Tuple[str, str], Optional[List[ResourceRecord]]] = {}

    def mark_visited(self, record: ResourceRecord) -> None:
        self._visited.add(record.identity.key())

    def expand(
        self,
        resource: ResourceRecord,
        backend: RepositoryBackend,
        cancel: Optional[CancellationToken] = None,
    ) -> List[ResourceRecord]:
        """Return the resolved transitive dependencies of resource.

        Failures are reported, never raised, except cancellation.
        """
        self.mark_visited(resource)
        resolved: List[ResourceRecord] = []
        self._expand_into(resource, backend, cancel, resolved)
        if is_debug_enabled(logger):
            logger.debug(
                "Expanded dependencies",
                extra=extra_context(
                    event="function_exit", component="dependencies", action="expand",
                    target=str(resource.identity), repository=backend.name, count=len(resolved),
                ),
            )
        return resolved

    def _lookup(
        self, name: str, backend: RepositoryBackend, cancel: Optional[CancellationToken]
    ) -> Optional[List[ResourceRecord]]:
        key = (backend.descriptor.cache_key, name.lower())
        if key in self._lookups:
            return self._lookups[key]
        records: Optional[List[ResourceRecord]]
        try:
            candidates = backend.search_by_exact_name(name, include_prerelease=True, cancel=cancel)
            records = []
            for candidate in candidates:
                if candidate.name.lower() != name.lower():
                    continue
                record, warnings = build_record(candidate, backend.descriptor)
                for warning in warnings:
                    self._report(DiagnosticKind.SKIPPED_ENTRY, warning, repository=backend.name, name=name)
                records.append(record)
        except RepositoryError as exc:
            self._report(diagnostic_kind_for(exc), f"Dependency '{name}': {exc}", repository=backend.name, name=name)
            records = None
        for warning in backend.take_warnings():
            self._report(DiagnosticKind.SKIPPED_ENTRY, warning, repository=backend.name, name=name)
        self._lookups[key] = records
        return records

    def _expand_into(
        self,
        parent: ResourceRecord,
        backend: RepositoryBackend,
        cancel: Optional[CancellationToken],
        out: List[ResourceRecord],
    ) -> None:
        for dep in parent.dependencies:
            check_cancelled(cancel)
            records = self._lookup(dep.name, backend, cancel)
            if records is None:
                continue
            chosen = select_latest(records, dep.version_range, include_prerelease=True)
            if chosen is None:
                reason = "could not be found" if not records else f"has no version in range {dep.version_range}"
                self._report(
                    DiagnosticKind.DEPENDENCY_NOT_FOUND,
                    f"Dependency '{dep.name}' of {parent.identity} {reason} in repository '{backend.name}'.",
                    repository=backend.name,
                    name=dep.name,
                )
                continue
            key = chosen.identity.key()
            if key in self._visited:
                continue
            self._visited.add(key)
            self._expand_into(chosen, backend, cancel, out)
            out.append(chosen)
