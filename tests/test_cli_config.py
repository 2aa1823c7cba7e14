"""Tests for config loading, overrides and repository registration."""

import argparse
import json
import logging

import pytest

from constants import ApiVersion, Constants
from cli_config import (
    apply_cli_overrides,
    apply_config_overrides,
    apply_env_overrides,
    load_config,
    load_repositories,
)

TUNABLES = (
    "REQUEST_TIMEOUT",
    "HTTP_RETRY_MAX",
    "HTTP_RETRY_BASE_DELAY_SEC",
    "USER_AGENT",
    "V2_PAGE_SIZE",
    "V2_PAGE_FULL_THRESHOLD",
    "V3_SEARCH_PAGE_SIZE",
    "SERVICE_INDEX_CACHE_TTL_SEC",
)


@pytest.fixture(autouse=True)
def restore_constants(monkeypatch):
    """Let monkeypatch restore every tunable the code under test may change."""
    for attr in TUNABLES:
        monkeypatch.setattr(Constants, attr, getattr(Constants, attr))


class TestLoadConfig:
    """Test reading config files."""

    def test_no_path(self):
        """Test no path means an empty config."""
        assert load_config(None) == {}
        assert load_config("  ") == {}

    def test_yaml(self, tmp_path):
        """Test YAML parsing."""
        path = tmp_path / "resfind.yml"
        path.write_text("http:\n  timeout: 5\nrepositories:\n  - name: Local\n    url: /tmp\n")
        cfg = load_config(str(path))
        assert cfg["http"]["timeout"] == 5
        assert cfg["repositories"][0]["name"] == "Local"

    def test_json(self, tmp_path):
        """Test JSON parsing by extension."""
        path = tmp_path / "resfind.json"
        path.write_text(json.dumps({"pagination": {"v2_page_size": 50}}))
        assert load_config(str(path)) == {"pagination": {"v2_page_size": 50}}

    def test_empty_yaml(self, tmp_path):
        """Test an empty file is an empty mapping."""
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert load_config(str(path)) == {}

    @pytest.mark.parametrize("content", ["- just\n- a list\n", "key: [unclosed\n"])
    def test_invalid(self, tmp_path, content):
        """Test non-mapping or unparseable YAML raises ValueError."""
        path = tmp_path / "bad.yml"
        path.write_text(content)
        with pytest.raises(ValueError):
            load_config(str(path))

    def test_missing_file(self, tmp_path):
        """Test a missing file raises OSError."""
        with pytest.raises(OSError):
            load_config(str(tmp_path / "nope.yml"))


class TestOverrides:
    """Test precedence layers applied to Constants."""

    def test_config_sections(self):
        """Test http, pagination and cache sections are coerced and applied."""
        apply_config_overrides({
            "http": {"timeout": "7", "retry_base_delay": 1},
            "pagination": {"v2_page_size": 25},
            "cache": {"service_index_ttl": 60},
        })
        assert Constants.REQUEST_TIMEOUT == 7
        assert Constants.HTTP_RETRY_BASE_DELAY_SEC == 1.0
        assert Constants.V2_PAGE_SIZE == 25
        assert Constants.SERVICE_INDEX_CACHE_TTL_SEC == 60

    def test_invalid_values_ignored(self, caplog):
        """Test bad values and unknown keys are warned about and skipped."""
        before = Constants.REQUEST_TIMEOUT
        with caplog.at_level(logging.WARNING):
            apply_config_overrides({"http": {"timeout": "soon", "colour": "blue"}, "cache": ["x"]})
        assert Constants.REQUEST_TIMEOUT == before
        messages = " ".join(r.getMessage() for r in caplog.records)
        assert "timeout" in messages.lower() or "REQUEST_TIMEOUT" in messages
        assert "http.colour" in messages
        assert "cache" in messages

    def test_env_overrides(self):
        """Test RESFIND_* variables."""
        apply_env_overrides({"RESFIND_REQUEST_TIMEOUT": "12", "RESFIND_V2_PAGE_SIZE": " ", "OTHER": "1"})
        assert Constants.REQUEST_TIMEOUT == 12

    def test_cli_overrides(self):
        """Test --timeout wins."""
        apply_cli_overrides(argparse.Namespace(TIMEOUT=3))
        assert Constants.REQUEST_TIMEOUT == 3
        apply_cli_overrides(argparse.Namespace(TIMEOUT=None))
        assert Constants.REQUEST_TIMEOUT == 3


class TestLoadRepositories:
    """Test repository descriptors from config."""

    def test_defaults_to_gallery(self):
        """Test nothing configured means the PowerShell Gallery."""
        repos = load_repositories({})
        assert [(r.name, r.url, r.api_version) for r in repos] == [
            (Constants.PSGALLERY_NAME, Constants.PSGALLERY_URL, ApiVersion.V2)
        ]

    def test_entries_and_inference(self, tmp_path):
        """Test explicit and inferred protocols."""
        cfg = {
            "repositories": [
                {"name": "Local", "url": str(tmp_path), "priority": 5},
                {"name": "NuGet", "url": "https://api.nuget.org/v3/index.json"},
                {"name": "Feed", "url": "https://feed.test/nuget", "api_version": "V3", "trusted": True},
                {"name": "Gallery", "uri": "https://www.powershellgallery.com/api/v2"},
            ]
        }
        repos = {r.name: r for r in load_repositories(cfg)}
        assert repos["Local"].api_version == ApiVersion.LOCAL
        assert repos["Local"].priority == 5
        assert repos["NuGet"].api_version == ApiVersion.V3
        assert repos["Feed"].api_version == ApiVersion.V3 and repos["Feed"].trusted
        assert repos["Gallery"].api_version == ApiVersion.V2

    @pytest.mark.parametrize(
        "entry",
        [
            {"name": "NoUrl"},
            {"url": "https://x.test"},
            {"name": "Bad", "url": "https://x.test", "priority": 99},
            {"name": "Bad", "url": "https://x.test", "priority": "high"},
            {"name": "Bad", "url": "https://x.test", "api_version": "v9"},
            "not-a-mapping",
        ],
    )
    def test_invalid_entries_skipped(self, entry):
        """Test invalid entries are skipped, leaving the default."""
        repos = load_repositories({"repositories": [entry]})
        assert [r.name for r in repos] == [Constants.PSGALLERY_NAME]

    def test_duplicates_keep_first(self):
        """Test duplicate names keep the first definition."""
        cfg = {"repositories": [
            {"name": "A", "url": "https://a.test/api/v2"},
            {"name": "a", "url": "https://other.test/api/v2"},
        ]}
        repos = load_repositories(cfg)
        assert [r.url for r in repos] == ["https://a.test/api/v2"]

    def test_extra_urls(self, tmp_path):
        """Test ad-hoc URLs are added at top priority."""
        repos = load_repositories({}, [str(tmp_path), "https://feed.test/v3/index.json"])
        assert [(r.name, r.priority, r.api_version) for r in repos] == [
            ("cli1", Constants.MIN_PRIORITY, ApiVersion.LOCAL),
            ("cli2", Constants.MIN_PRIORITY, ApiVersion.V3),
        ]
