"""Tests for repository ordering, dual catalogs, records and session bookkeeping."""

from datetime import datetime

from constants import ApiVersion, Constants, ResourceKind
from common.errors import (
    MalformedResponseError,
    RepositoryError,
    RepositoryTransportError,
    UnsupportedOperationError,
)
from registry.base import RawCandidate
from resolution.catalogs import is_dual_catalog, order_repositories, script_catalog_for
from resolution.models import DiagnosticKind, RepositoryDescriptor, diagnostic_kind_for
from resolution.records import build_record, infer_kind
from resolution.session import ResolutionSession
from versioning.version import ResourceVersion

GALLERY = RepositoryDescriptor(name="PSGallery", url=Constants.PSGALLERY_URL + "/", priority=30)
LOCAL = RepositoryDescriptor(name="Local", url="/srv/packages", priority=10, api_version=ApiVersion.LOCAL)
OTHER = RepositoryDescriptor(name="Other", url="https://other.test/api/v2", priority=30)


class TestCatalogs:
    """Test ordering and script-catalog insertion."""

    def test_dual_catalog_detection(self):
        """Test only the well-known URL is a dual catalog."""
        assert is_dual_catalog(GALLERY)
        assert not is_dual_catalog(OTHER)
        assert not is_dual_catalog(script_catalog_for(GALLERY))

    def test_script_catalog_descriptor(self):
        """Test the synthesized sibling's name, URL and parent."""
        sibling = script_catalog_for(GALLERY)
        assert sibling.name == "PSGallery (scripts)"
        assert sibling.url == Constants.PSGALLERY_URL + "/items/psscript"
        assert sibling.parent == "PSGallery"
        assert sibling.priority == GALLERY.priority

    def test_order_inserts_sibling_after_parent(self):
        """Test ordering by priority then name, with the sibling right after its parent."""
        ordered = order_repositories([OTHER, GALLERY, LOCAL])
        assert [r.name for r in ordered] == ["Local", "Other", "PSGallery", "PSGallery (scripts)"]

    def test_module_kind_has_no_sibling(self):
        """Test module-only requests skip the script catalog."""
        ordered = order_repositories([GALLERY], ResourceKind.MODULE)
        assert [r.name for r in ordered] == ["PSGallery"]
        assert len(order_repositories([GALLERY], ResourceKind.SCRIPT)) == 2


class TestRecords:
    """Test record building."""

    def test_infer_kind(self):
        """Test PSScript tags or a script catalog mean SCRIPT."""
        assert infer_kind(["psscript"]) == ResourceKind.SCRIPT
        assert infer_kind(["PSModule"]) == ResourceKind.MODULE
        assert infer_kind([], script_catalog_for(GALLERY)) == ResourceKind.SCRIPT

    def test_bad_dependency_range_dropped(self):
        """Test dependencies with unparseable ranges are dropped with a warning."""
        candidate = RawCandidate(
            name="Foo",
            version=ResourceVersion.parse("1.0.0"),
            tags=["PSModule"],
            dependencies=[("Good", "[1.0, )"), ("Bad", "[oops")],
            published=datetime(2024, 1, 2, 3, 4, 5),
        )
        record, warnings = build_record(candidate, OTHER)
        assert [d.name for d in record.dependencies] == ["Good"]
        assert len(warnings) == 1 and "Bad" in warnings[0]
        data = record.to_dict()
        assert data["repository"] == "Other"
        assert data["type"] == "module"
        assert data["dependencies"] == [{"name": "Good", "versionRange": "[1.0.0, )"}]
        assert data["publishedDate"] == "2024-01-02T03:04:05"
        assert data["prerelease"] is None

    def test_with_install_info(self):
        """Test install stamping returns a new record."""
        record, _ = build_record(RawCandidate(name="Foo", version=ResourceVersion.parse("1.0")), OTHER)
        stamped = record.with_install_info("/modules/Foo/1.0.0", datetime(2024, 5, 1))
        assert stamped.installed_location == "/modules/Foo/1.0.0"
        assert record.installed_location is None
        assert stamped.identity == record.identity


class TestSession:
    """Test pending-name bookkeeping."""

    def test_exact_name_released_after_repository(self):
        """Test found names leave the pending set only when the repository finishes."""
        session = ResolutionSession(["Foo", "Bar"])
        session.mark_found("foo")
        assert session.pending_names() == ["Foo", "Bar"]
        session.finish_repository("A")
        assert session.pending_names() == ["Bar"]

    def test_wildcard_held_for_script_catalog(self):
        """Test a wildcard found in a dual-catalog parent stays pending for the sibling."""
        session = ResolutionSession(["Foo*", "Exact"])
        session.mark_found("Foo*")
        session.mark_found("Exact")
        session.finish_repository("PSGallery", "PSGallery (scripts)")
        assert session.pending_names() == ["Foo*"]
        session.finish_repository("PSGallery (scripts)")
        assert session.is_done()

    def test_claim_deduplicates(self):
        """Test the same identity is only emitted once."""
        session = ResolutionSession(["Foo"])
        record, _ = build_record(RawCandidate(name="Foo", version=ResourceVersion.parse("1.0")), OTHER)
        other_case, _ = build_record(RawCandidate(name="FOO", version=ResourceVersion.parse("1.0.0")), LOCAL)
        assert session.claim(record)
        assert not session.claim(other_case)

    def test_report_unsatisfied(self):
        """Test NOT_FOUND and TAG_MISMATCH diagnostics."""
        session = ResolutionSession(["Foo", "Bar"])
        session.mark_tag_mismatch("Bar")
        session.report_unsatisfied()
        assert [(d.kind, d.name) for d in session.diagnostics] == [
            (DiagnosticKind.NOT_FOUND, "Foo"),
            (DiagnosticKind.TAG_MISMATCH, "Bar"),
        ]
        assert str(session.diagnostics[0]).startswith("not_found: Package 'Foo'")

    def test_diagnostic_kind_for_errors(self):
        """Test repository errors map to their diagnostic kinds."""
        assert diagnostic_kind_for(MalformedResponseError("bad xml")) == DiagnosticKind.MALFORMED_RESPONSE
        assert diagnostic_kind_for(UnsupportedOperationError("no search")) == DiagnosticKind.UNSUPPORTED
        assert diagnostic_kind_for(RepositoryTransportError("timeout")) == DiagnosticKind.TRANSPORT
        assert diagnostic_kind_for(RepositoryError("other")) == DiagnosticKind.TRANSPORT
