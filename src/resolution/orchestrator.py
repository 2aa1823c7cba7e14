"""Top-level resolution driver.

Walks repositories in priority order and, for every requested name that
is still unsatisfied, runs backend search, name matching, version
selection, tag filtering and (optionally) dependency expansion. Records
are streamed as soon as they are identified; problems are collected as
diagnostics on the returned ResolutionResult instead of being raised.
"""
from __future__ import annotations

import logging
from typing import Callable, Dict, Iterator, List, Optional, Sequence

from constants import ResourceKind
from common.cancellation import CancellationToken
from common.errors import (
    ConstraintParseError,
    InvalidRequestError,
    RepositoryError,
    ResolutionCancelled,
)
from common.logging_utils import extra_context, is_debug_enabled, Timer
from registry.base import RawCandidate, RepositoryBackend
from registry.factory import create_backend
from resolution import catalogs, matcher
from resolution.dependencies import DependencyExpander
from resolution.models import (
    DiagnosticKind,
    RepositoryDescriptor,
    ResolutionRequest,
    ResourceRecord,
    diagnostic_kind_for,
)
from resolution.records import build_record
from resolution.session import ResolutionSession
from resolution.tags import has_all_required_tags, has_any_required_tag
from versioning import constraint as constraint_parser
from versioning.constraint import VersionConstraint
from versioning.selector import select_all, select_latest

logger = logging.getLogger(__name__)

BackendFactory = Callable[[RepositoryDescriptor], RepositoryBackend]


class ResolutionResult:
    """Lazy, single-pass stream of ResourceRecords plus accumulated diagnostics.

    ``diagnostics`` grows while the stream is consumed and is complete once
    iteration has finished.
    """

    def __init__(self, records: Iterator[ResourceRecord], session: ResolutionSession):
        self._records = records
        self._session = session

    def __iter__(self) -> "ResolutionResult":
        return self

    def __next__(self) -> ResourceRecord:
        return next(self._records)

    @property
    def diagnostics(self):
        return list(self._session.diagnostics)

    def unresolved(self) -> List[str]:
        """Names still unsatisfied; meaningful after the stream is exhausted."""
        return self._session.pending_names()

    def close(self) -> None:
        """Stop early; open backends are closed."""
        close = getattr(self._records, "close", None)
        if close is not None:
            close()


class ResolutionOrchestrator:
    """Resolves requests against an ordered set of repositories."""

    def __init__(
        self,
        repositories: Sequence[RepositoryDescriptor],
        backend_factory: Optional[BackendFactory] = None,
    ):
        self.repositories = list(repositories)
        self.backend_factory: BackendFactory = backend_factory or create_backend

    def resolve(
        self, request: ResolutionRequest, cancel: Optional[CancellationToken] = None
    ) -> ResolutionResult:
        """Start resolving a request.

        Args:
            request: Names, version constraint and filters.
            cancel: Optional token; once cancelled no new backend call is made.

        Returns:
            ResolutionResult streaming the matching records.

        Raises:
            InvalidRequestError: when the request names nothing to search for,
                mixes search modes, or no repositories are registered.
        """
        names = self._clean_names(request.names)
        commands = self._clean_names(request.commands)
        dsc_resources = self._clean_names(request.dsc_resources)
        tags = self._clean_names(request.tags)
        if commands and dsc_resources:
            raise InvalidRequestError("Search by command names or by DSC resource names, not both")
        if names and (commands or dsc_resources):
            raise InvalidRequestError("Resource names cannot be combined with command or DSC resource names")
        if not (names or commands or dsc_resources or tags):
            raise InvalidRequestError("At least one resource name, tag, command name or DSC resource name is required")
        if not self.repositories:
            raise InvalidRequestError("No repositories are registered")

        if not names:
            return self._resolve_search(request, tags, commands or dsc_resources, bool(dsc_resources), cancel)

        session = ResolutionSession(names)
        try:
            constraint = constraint_parser.parse(request.version)
        except ConstraintParseError as exc:
            session.add_diagnostic(DiagnosticKind.CONSTRAINT_PARSE, str(exc), name=", ".join(names))
            return ResolutionResult(iter(()), session)

        repositories = self._select_repositories(request, session, request.kind)
        return ResolutionResult(self._run(session, request, constraint, repositories, cancel), session)

    @staticmethod
    def _clean_names(names: Sequence[str]) -> List[str]:
        cleaned: List[str] = []
        seen = set()
        for name in names or []:
            stripped = (name or "").strip()
            if stripped and stripped.lower() not in seen:
                seen.add(stripped.lower())
                cleaned.append(stripped)
        return cleaned

    def _select_repositories(
        self, request: ResolutionRequest, session: ResolutionSession, kind: Optional[ResourceKind]
    ) -> List[RepositoryDescriptor]:
        selected = self.repositories
        if request.repositories:
            selected = []
            for pattern in request.repositories:
                hits = [r for r in self.repositories if matcher.matches(r.name, pattern)]
                if not hits:
                    session.add_diagnostic(
                        DiagnosticKind.NOT_FOUND,
                        f"Repository '{pattern}' is not registered.",
                        repository=pattern,
                    )
                selected.extend(h for h in hits if h not in selected)
        return catalogs.order_repositories(selected, kind)

    def _run(
        self,
        session: ResolutionSession,
        request: ResolutionRequest,
        constraint: VersionConstraint,
        repositories: List[RepositoryDescriptor],
        cancel: Optional[CancellationToken],
    ) -> Iterator[ResourceRecord]:
        expander = DependencyExpander(session.add_diagnostic)
        script_catalogs: Dict[str, str] = {
            r.parent: r.name for r in repositories if r.parent is not None
        }
        with Timer() as t:
            try:
                for descriptor in repositories:
                    if session.is_done():
                        break
                    if cancel is not None:
                        cancel.raise_if_cancelled()
                    try:
                        backend = self.backend_factory(descriptor)
                    except RepositoryError as exc:
                        session.add_diagnostic(diagnostic_kind_for(exc), str(exc), repository=descriptor.name)
                        continue
                    try:
                        for name in session.pending_names():
                            if cancel is not None:
                                cancel.raise_if_cancelled()
                            yield from self._resolve_name(
                                session, expander, backend, name, request, constraint, cancel
                            )
                    finally:
                        backend.close()
                        session.finish_repository(descriptor.name, script_catalogs.get(descriptor.name))
                session.report_unsatisfied()
            except ResolutionCancelled:
                session.add_diagnostic(
                    DiagnosticKind.CANCELLED, "Resolution was cancelled; results are partial."
                )
        if is_debug_enabled(logger):
            logger.debug(
                "Resolution finished",
                extra=extra_context(
                    event="function_exit", component="orchestrator", action="resolve",
                    duration_ms=t.duration_ms(), count=len(session.diagnostics),
                ),
            )

    def _resolve_name(
        self,
        session: ResolutionSession,
        expander: DependencyExpander,
        backend: RepositoryBackend,
        name: str,
        request: ResolutionRequest,
        constraint: VersionConstraint,
        cancel: Optional[CancellationToken],
    ) -> Iterator[ResourceRecord]:
        """Search one name in one repository and stream what is found."""
        all_versions = constraint.is_range or (
            constraint.is_all and (request.version or "").strip() == "*"
        )
        include_prerelease = request.include_prerelease or constraint.mentions_prerelease
        try:
            if matcher.has_wildcard(name):
                selected = self._find_wildcard(
                    session, backend, name, request, constraint, all_versions, include_prerelease, cancel
                )
            else:
                selected = self._find_exact(
                    session, backend, name, request, constraint, all_versions, include_prerelease, cancel
                )
        except RepositoryError as exc:
            session.add_diagnostic(diagnostic_kind_for(exc), str(exc), repository=backend.name, name=name)
            return
        finally:
            for warning in backend.take_warnings():
                session.add_diagnostic(DiagnosticKind.SKIPPED_ENTRY, warning, repository=backend.name, name=name)

        matched = [r for r in selected if has_any_required_tag(r.tags, request.tags)]
        if selected and not matched:
            session.mark_tag_mismatch(name)
            return
        if not matched:
            return

        session.mark_found(name)
        if is_debug_enabled(logger):
            logger.debug(
                "Found resources",
                extra=extra_context(
                    event="decision", component="orchestrator", action="resolve_name",
                    target=name, repository=backend.name, outcome="found", count=len(matched),
                ),
            )
        for record in matched:
            yield from self._emit(session, expander, backend, record, request, cancel)

    def _emit(
        self,
        session: ResolutionSession,
        expander: DependencyExpander,
        backend: RepositoryBackend,
        record: ResourceRecord,
        request: ResolutionRequest,
        cancel: Optional[CancellationToken],
    ) -> Iterator[ResourceRecord]:
        """Yield a record not emitted before, followed by its dependencies when requested."""
        if not session.claim(record):
            return
        yield record
        if request.include_dependencies:
            full = self._complete(session, record, backend, cancel)
            for dependency in expander.expand(full, backend, cancel):
                if session.claim(dependency):
                    yield dependency

    def _resolve_search(
        self,
        request: ResolutionRequest,
        tags: List[str],
        search_names: List[str],
        dsc_resource: bool,
        cancel: Optional[CancellationToken],
    ) -> ResolutionResult:
        """Start a tag-only, command or DSC resource search.

        There are no names to satisfy, so every selected repository is
        searched. Command and DSC resource search only looks at modules.
        """
        session = ResolutionSession([])
        if search_names:
            what = "DSCResourceName" if dsc_resource else "CommandName"
            label = f"{what} '{', '.join(search_names)}'"
            required = RepositoryBackend.command_tags(search_names, dsc_resource) + tags
            kind: Optional[ResourceKind] = ResourceKind.MODULE

            def search(backend: RepositoryBackend) -> List[RawCandidate]:
                return backend.search_by_command(
                    search_names, request.include_prerelease, dsc_resource=dsc_resource, cancel=cancel
                )
        else:
            label = f"Tags '{', '.join(tags)}'"
            required = tags
            kind = request.kind

            def search(backend: RepositoryBackend) -> List[RawCandidate]:
                return backend.search_by_tags(tags, request.include_prerelease, kind=kind, cancel=cancel)

        repositories = self._select_repositories(request, session, kind)
        records = self._run_search(session, request, repositories, search, required, kind, label, cancel)
        return ResolutionResult(records, session)

    def _run_search(
        self,
        session: ResolutionSession,
        request: ResolutionRequest,
        repositories: List[RepositoryDescriptor],
        search: Callable[[RepositoryBackend], List[RawCandidate]],
        required_tags: List[str],
        kind: Optional[ResourceKind],
        label: str,
        cancel: Optional[CancellationToken],
    ) -> Iterator[ResourceRecord]:
        expander = DependencyExpander(session.add_diagnostic)
        found = False
        with Timer() as t:
            try:
                for descriptor in repositories:
                    if cancel is not None:
                        cancel.raise_if_cancelled()
                    try:
                        backend = self.backend_factory(descriptor)
                    except RepositoryError as exc:
                        session.add_diagnostic(diagnostic_kind_for(exc), str(exc), repository=descriptor.name)
                        continue
                    try:
                        try:
                            candidates = search(backend)
                        except RepositoryError as exc:
                            session.add_diagnostic(
                                diagnostic_kind_for(exc), str(exc), repository=descriptor.name, name=label
                            )
                            continue
                        finally:
                            for warning in backend.take_warnings():
                                session.add_diagnostic(
                                    DiagnosticKind.SKIPPED_ENTRY, warning, repository=descriptor.name, name=label
                                )
                        latest = self._latest_tagged(session, backend, candidates, required_tags, kind, request)
                        for record in latest:
                            found = True
                            yield from self._emit(session, expander, backend, record, request, cancel)
                    finally:
                        backend.close()
                if not found:
                    session.add_diagnostic(
                        DiagnosticKind.NOT_FOUND,
                        f"Package with {label} could not be found in any registered repositories.",
                        name=label,
                    )
            except ResolutionCancelled:
                session.add_diagnostic(
                    DiagnosticKind.CANCELLED, "Resolution was cancelled; results are partial."
                )
        if is_debug_enabled(logger):
            logger.debug(
                "Search finished",
                extra=extra_context(
                    event="function_exit", component="orchestrator", action="search",
                    target=label, outcome="found" if found else "not_found",
                    duration_ms=t.duration_ms(), count=len(session.diagnostics),
                ),
            )

    def _latest_tagged(
        self,
        session: ResolutionSession,
        backend: RepositoryBackend,
        candidates: List[RawCandidate],
        required_tags: List[str],
        kind: Optional[ResourceKind],
        request: ResolutionRequest,
    ) -> List[ResourceRecord]:
        """Latest version per name among candidates carrying every required tag."""
        by_name: Dict[str, List[ResourceRecord]] = {}
        for record in self._records(session, backend, candidates, matcher.WILDCARD, kind):
            if has_all_required_tags(record.tags, required_tags):
                by_name.setdefault(record.name.lower(), []).append(record)
        selected: List[ResourceRecord] = []
        for group in by_name.values():
            latest = select_latest(group, VersionConstraint.all(), request.include_prerelease)
            if latest is not None:
                selected.append(latest)
        return selected

    def _records(
        self,
        session: ResolutionSession,
        backend: RepositoryBackend,
        candidates: List[RawCandidate],
        pattern: str,
        kind: Optional[ResourceKind],
    ) -> List[ResourceRecord]:
        """Name-match candidates and build records, applying the kind filter."""
        records: List[ResourceRecord] = []
        for candidate in candidates:
            if not matcher.matches(candidate.name, pattern):
                continue
            record, warnings = build_record(candidate, backend.descriptor)
            for warning in warnings:
                session.add_diagnostic(
                    DiagnosticKind.SKIPPED_ENTRY, warning, repository=backend.name, name=candidate.name
                )
            if kind is not None and record.kind != kind:
                continue
            records.append(record)
        return records

    def _find_exact(
        self, session, backend, name, request, constraint, all_versions, include_prerelease, cancel
    ) -> List[ResourceRecord]:
        candidates = backend.search_by_exact_name(
            name, include_prerelease, kind=request.kind, cancel=cancel
        )
        records = self._records(session, backend, candidates, name, request.kind)
        if all_versions:
            return select_all(records, constraint, include_prerelease)
        latest = select_latest(records, constraint, include_prerelease)
        return [latest] if latest is not None else []

    def _find_wildcard(
        self, session, backend, pattern, request, constraint, all_versions, include_prerelease, cancel
    ) -> List[ResourceRecord]:
        candidates = backend.search_by_wildcard_name(
            pattern, include_prerelease, kind=request.kind, cancel=cancel
        )
        records = self._records(session, backend, candidates, pattern, request.kind)

        # Group by name, keeping the order the backend returned names in
        by_name: Dict[str, List[ResourceRecord]] = {}
        for record in records:
            by_name.setdefault(record.name.lower(), []).append(record)

        selected: List[ResourceRecord] = []
        for group in by_name.values():
            if constraint.is_all and not all_versions:
                latest = select_latest(group, constraint, include_prerelease)
                if latest is not None:
                    selected.append(latest)
                continue
            # Wildcard search only returns the latest version of each name
            try:
                selected.extend(
                    self._find_exact(
                        session, backend, group[0].name, request, constraint, all_versions, include_prerelease, cancel
                    )
                )
            except RepositoryError as exc:
                session.add_diagnostic(
                    diagnostic_kind_for(exc),
                    f"Versions of '{group[0].name}' (matched by '{pattern}') could not be listed: {exc}",
                    repository=backend.name,
                    name=group[0].name,
                )
        return selected

    @staticmethod
    def _complete(
        session: ResolutionSession,
        record: ResourceRecord,
        backend: RepositoryBackend,
        cancel: Optional[CancellationToken],
    ) -> ResourceRecord:
        """Re-fetch a record built from a search hit that lacks dependency data."""
        if not record.metadata.get("partial"):
            return record
        try:
            candidates = backend.search_by_exact_name(record.name, True, cancel=cancel)
        except RepositoryError as exc:
            session.add_diagnostic(
                diagnostic_kind_for(exc),
                f"Could not load full metadata for {record.identity}; dependencies not expanded: {exc}",
                repository=backend.name,
                name=record.name,
            )
            return record
        for candidate in candidates:
            if candidate.name.lower() == record.name.lower() and candidate.version == record.version:
                full, _ = build_record(candidate, backend.descriptor)
                return full
        return record
