"""Mutable bookkeeping for one resolution call."""
from __future__ import annotations

import logging
from typing import Dict, List, Optional, Set, Tuple

from common.logging_utils import extra_context
from resolution.matcher import has_wildcard
from resolution.models import Diagnostic, DiagnosticKind, ResourceRecord
from versioning.version import ResourceVersion

logger = logging.getLogger(__name__)

_LOG_LEVELS = {
    DiagnosticKind.MALFORMED_RESPONSE: logging.ERROR,
    DiagnosticKind.CONSTRAINT_PARSE: logging.ERROR,
    DiagnosticKind.CANCELLED: logging.INFO,
}


class ResolutionSession:
    """Tracks which requested names are still unsatisfied.

    Names found while probing a repository are only moved out of the
    pending set when that repository is finished (finish_repository), so
    the pending set never changes while it is being iterated. A wildcard
    name found in a dual-catalog repository stays pending until the
    repository's script catalog has been searched as well.
    """

    def __init__(self, names: List[str]):
        self._pending: Dict[str, str] = {}
        for name in names:
            self._pending.setdefault(name.lower(), name)
        self._found_here: Set[str] = set()
        self._held_for: Dict[str, str] = {}
        self._tag_mismatch: Set[str] = set()
        self._emitted: Set[Tuple[str, ResourceVersion]] = set()
        self.diagnostics: List[Diagnostic] = []

    def pending_names(self) -> List[str]:
        """Snapshot of names still to be searched, in request order."""
        return list(self._pending.values())

    def is_done(self) -> bool:
        return not self._pending

    def mark_found(self, name: str) -> None:
        """Record that name matched in the repository currently being searched."""
        self._found_here.add(name.lower())
        self._tag_mismatch.discard(name.lower())

    def mark_tag_mismatch(self, name: str) -> None:
        self._tag_mismatch.add(name.lower())

    def finish_repository(self, repository: str, script_catalog: Optional[str] = None) -> None:
        """Apply what was found in a repository to the pending set.

        Args:
            repository: Name of the repository just searched.
            script_catalog: Name of its script sub-catalog, when one follows it.
        """
        for key, sibling in list(self._held_for.items()):
            if sibling == repository:
                self._pending.pop(key, None)
                del self._held_for[key]
        for key in self._found_here:
            if key not in self._pending:
                continue
            if script_catalog and has_wildcard(self._pending[key]):
                self._held_for[key] = script_catalog
            else:
                self._pending.pop(key)
        self._found_here = set()

    def claim(self, record: ResourceRecord) -> bool:
        """Return True the first time a (name, version) is seen in this session."""
        key = record.identity.key()
        if key in self._emitted:
            return False
        self._emitted.add(key)
        return True

    def add_diagnostic(
        self,
        kind: DiagnosticKind,
        message: str,
        *,
        repository: Optional[str] = None,
        name: Optional[str] = None,
    ) -> Diagnostic:
        """Record a diagnostic and log it at a level matching its kind."""
        diagnostic = Diagnostic(kind=kind, message=message, repository=repository, name=name)
        self.diagnostics.append(diagnostic)
        logger.log(
            _LOG_LEVELS.get(kind, logging.WARNING),
            "%s",
            diagnostic,
            extra=extra_context(
                event=kind.value, component="session", repository=repository, target=name,
            ),
        )
        return diagnostic

    def report_unsatisfied(self) -> None:
        """Emit NOT_FOUND or TAG_MISMATCH diagnostics for names never satisfied."""
        for key, name in self._pending.items():
            if key in self._tag_mismatch:
                self.add_diagnostic(
                    DiagnosticKind.TAG_MISMATCH,
                    f"Package '{name}' was found but no version carries any of the required tags.",
                    name=name,
                )
            else:
                self.add_diagnostic(
                    DiagnosticKind.NOT_FOUND,
                    f"Package '{name}' could not be found in any registered repositories.",
                    name=name,
                )
