"""Tests for latest/all version selection."""

from types import SimpleNamespace

import pytest

from versioning.constraint import VersionConstraint, parse
from versioning.selector import select_all, select_latest
from versioning.version import ResourceVersion


def make(*texts):
    """Build candidate objects with a version attribute."""
    return [SimpleNamespace(version=ResourceVersion.parse(t), label=t) for t in texts]


class TestSelectLatest:
    """Test select_latest."""

    @pytest.mark.parametrize(
        "low,high",
        [("1.0", "2.0"), ("1.0.0-beta", "1.0.0"), ("1.0.0", "1.0.0.1"), ("0.9", "0.10")],
    )
    def test_higher_of_two_wins(self, low, high):
        """Test the higher version is returned regardless of input order."""
        for candidates in (make(low, high), make(high, low)):
            chosen = select_latest(candidates, VersionConstraint.all(), include_prerelease=True)
            assert chosen.version == ResourceVersion.parse(high)

    def test_prerelease_excluded_by_default(self):
        """Test prereleases are skipped unless requested."""
        candidates = make("1.0.0", "2.0.0-beta")
        assert select_latest(candidates, VersionConstraint.all()).label == "1.0.0"
        assert select_latest(candidates, VersionConstraint.all(), True).label == "2.0.0-beta"

    def test_only_prereleases_without_flag(self):
        """Test nothing is selected when only prereleases exist."""
        assert select_latest(make("1.0.0-alpha"), VersionConstraint.all()) is None

    def test_applies_constraint(self):
        """Test constraint filtering happens before selection."""
        chosen = select_latest(make("1.0", "1.5", "2.0"), parse("[1.0, 2.0)"))
        assert chosen.label == "1.5"

    def test_empty(self):
        """Test empty input."""
        assert select_latest([], VersionConstraint.all()) is None


class TestSelectAll:
    """Test select_all."""

    def test_range_scenario_descending(self):
        """Test the satisfying set comes back highest first."""
        chosen = select_all(make("0.9.0", "1.0.0", "1.5.0", "2.0.0", "2.1.0"), parse("[1.0.0, 2.0.0)"))
        assert [c.label for c in chosen] == ["1.5.0", "1.0.0"]

    def test_duplicate_versions_collapse(self):
        """Test the same version appearing twice is returned once."""
        chosen = select_all(make("1.0", "1.0.0", "2.0"), VersionConstraint.all())
        assert [c.label for c in chosen] == ["2.0", "1.0"]

    def test_release_before_prerelease(self):
        """Test release/prerelease tie-breaking in the ordering."""
        chosen = select_all(make("1.0.0-rc1", "1.0.0", "1.0.0-beta"), VersionConstraint.all(), True)
        assert [c.label for c in chosen] == ["1.0.0", "1.0.0-rc1", "1.0.0-beta"]
