"""Tests for the NuGet V3 backend."""

from unittest.mock import MagicMock

import pytest

from constants import ApiVersion, Constants
from common.errors import MalformedResponseError, RepositoryTransportError, UnsupportedOperationError
from registry.v3 import V3Backend, parse_tags, select_resource
from resolution.models import RepositoryDescriptor
from versioning.cache import TTLCache

INDEX_URL = "https://feed.test/v3/index.json"
REG = "https://feed.test/v3/registration/"
SEARCH = "https://feed.test/v3/query"

SERVICE_INDEX = {
    "version": "3.0.0",
    "resources": [
        {"@id": "https://feed.test/v3/registration-old/", "@type": "RegistrationsBaseUrl"},
        {"@id": "https://feed.test/v3/registration-semver1/", "@type": "RegistrationsBaseUrl/3.0.0-beta"},
        {"@id": REG, "@type": "RegistrationsBaseUrl/3.6.0"},
        {"@id": SEARCH, "@type": ["SearchQueryService/3.5.0"]},
    ],
}


def leaf(version, listed=None, tags=None, deps=None, name="Foo"):
    entry = {"id": name, "version": version, "authors": ["A", "B"], "description": "d"}
    if listed is not None:
        entry["listed"] = listed
    if tags is not None:
        entry["tags"] = tags
    if deps is not None:
        entry["dependencyGroups"] = [{"dependencies": deps}]
    return {"catalogEntry": entry}


def make_backend(routes, cache=None):
    """Backend whose HTTP client answers from a URL -> JSON mapping (missing means 404)."""
    http = MagicMock()
    http.get_json.side_effect = lambda url, **kwargs: routes.get(url)
    descriptor = RepositoryDescriptor(name="Feed", url=INDEX_URL, api_version=ApiVersion.V3)
    return V3Backend(descriptor, http=http, cache=cache if cache is not None else TTLCache()), http


class TestSelectResource:
    """Test service index resource selection."""

    def test_highest_versioned_type_wins(self):
        """Test the newest versioned resource is chosen and unversioned ones ignored."""
        assert select_resource(SERVICE_INDEX, "RegistrationsBaseUrl") == REG
        assert select_resource(SERVICE_INDEX, "SearchQueryService") == SEARCH

    def test_missing_family(self):
        """Test no match returns None."""
        assert select_resource({"resources": []}, "SearchQueryService") is None
        unversioned = {"resources": [{"@id": "x", "@type": "SearchQueryService"}]}
        assert select_resource(unversioned, "SearchQueryService") is None

    def test_parse_tags(self):
        """Test list and string tag forms."""
        assert parse_tags(["a", " b ", ""]) == ["a", "b"]
        assert parse_tags("a b") == ["a", "b"]
        assert parse_tags(None) == []


class TestExactSearch:
    """Test registration lookups."""

    def test_inlined_pages(self):
        """Test versions from inlined registration pages."""
        routes = {
            INDEX_URL: SERVICE_INDEX,
            REG + "foo/index.json": {
                "items": [
                    {"items": [leaf("1.0.0", tags=["PSModule"]), leaf("2.0.0", tags="PSModule Net")]},
                ]
            },
        }
        backend, _ = make_backend(routes)
        found = backend.search_by_exact_name("Foo")
        assert [str(c.version) for c in found] == ["1.0.0", "2.0.0"]
        assert found[1].tags == ["PSModule", "Net"]
        assert found[0].authors == "A, B"

    def test_non_inlined_page_fetched(self):
        """Test pages without items are fetched by @id."""
        page_url = REG + "foo/page/1.0.0/3.0.0.json"
        routes = {
            INDEX_URL: SERVICE_INDEX,
            REG + "foo/index.json": {"items": [{"@id": page_url}]},
            page_url: {"items": [leaf("3.0.0")]},
        }
        backend, _ = make_backend(routes)
        assert [str(c.version) for c in backend.search_by_exact_name("FOO")] == ["3.0.0"]

    def test_catalog_entry_url_fetched(self):
        """Test a catalogEntry given as a URL is dereferenced."""
        entry_url = "https://feed.test/v3/catalog/foo.1.0.0.json"
        routes = {
            INDEX_URL: SERVICE_INDEX,
            REG + "foo/index.json": {"items": [{"items": [{"catalogEntry": entry_url}]}]},
            entry_url: {"id": "Foo", "version": "1.0.0"},
        }
        backend, _ = make_backend(routes)
        assert len(backend.search_by_exact_name("Foo")) == 1

    def test_unlisted_and_prerelease_skipped(self):
        """Test listed=false entries and prereleases are dropped."""
        routes = {
            INDEX_URL: SERVICE_INDEX,
            REG + "foo/index.json": {
                "items": [{"items": [leaf("1.0.0"), leaf("2.0.0", listed=False), leaf("3.0.0-beta")]}]
            },
        }
        backend, _ = make_backend(routes)
        assert [str(c.version) for c in backend.search_by_exact_name("Foo")] == ["1.0.0"]
        with_pre = backend.search_by_exact_name("Foo", include_prerelease=True)
        assert [str(c.version) for c in with_pre] == ["1.0.0", "3.0.0-beta"]

    def test_dependencies(self):
        """Test dependency groups are flattened and de-duplicated."""
        deps = [{"id": "Bar", "range": "[2.0.0, )"}, {"id": "bar", "range": "[3.0.0, )"}, {"id": "Baz"}]
        routes = {
            INDEX_URL: SERVICE_INDEX,
            REG + "foo/index.json": {"items": [{"items": [leaf("1.0.0", deps=deps)]}]},
        }
        backend, _ = make_backend(routes)
        assert backend.search_by_exact_name("Foo")[0].dependencies == [("Bar", "[2.0.0, )"), ("Baz", "")]

    def test_unknown_resource_is_empty(self):
        """Test a 404 registration index means no versions."""
        backend, _ = make_backend({INDEX_URL: SERVICE_INDEX})
        assert backend.search_by_exact_name("Missing") == []

    def test_missing_service_index(self):
        """Test a missing service index is a transport error."""
        backend, _ = make_backend({})
        with pytest.raises(RepositoryTransportError) as exc_info:
            backend.search_by_exact_name("Foo")
        assert exc_info.value.status_code == 404

    @pytest.mark.parametrize("index", [{"version": "3.0.0"}, ["not", "a", "dict"]])
    def test_malformed_service_index(self, index):
        """Test a service index without resources."""
        backend, _ = make_backend({INDEX_URL: index})
        with pytest.raises(MalformedResponseError):
            backend.search_by_exact_name("Foo")

    def test_malformed_entry(self):
        """Test a catalog entry without a version."""
        routes = {
            INDEX_URL: SERVICE_INDEX,
            REG + "foo/index.json": {"items": [{"items": [{"catalogEntry": {"id": "Foo"}}]}]},
        }
        backend, _ = make_backend(routes)
        with pytest.raises(MalformedResponseError):
            backend.search_by_exact_name("Foo")

    def test_service_index_cached(self):
        """Test the service index is fetched once across lookups."""
        routes = {INDEX_URL: SERVICE_INDEX}
        cache = TTLCache()
        backend, http = make_backend(routes, cache=cache)
        backend.search_by_exact_name("A")
        backend.search_by_exact_name("B")
        index_calls = [c for c in http.get_json.call_args_list if c.args[0] == INDEX_URL]
        assert len(index_calls) == 1

        other, other_http = make_backend(routes, cache=cache)
        other.search_by_exact_name("C")
        assert all(c.args[0] != INDEX_URL for c in other_http.get_json.call_args_list)


class TestWildcardSearch:
    """Test search-service queries."""

    def test_search_marks_partial(self):
        """Test hits are returned as partial candidates."""
        routes = {
            INDEX_URL: SERVICE_INDEX,
            f"{SEARCH}?q=Foo&prerelease=false&semVerLevel=2.0.0&skip=0&take=100": {
                "totalHits": 2,
                "data": [
                    {"id": "FooBar", "version": "1.0.0", "tags": ["PSModule"]},
                    {"id": "OtherFoo", "version": "2.0.0"},
                ],
            },
        }
        backend, _ = make_backend(routes)
        found = backend.search_by_wildcard_name("Foo*")
        assert [c.name for c in found] == ["FooBar", "OtherFoo"]
        assert all(c.extra["partial"] for c in found)

    def test_find_all_unsupported(self):
        """Test a bare '*' cannot be served."""
        backend, _ = make_backend({INDEX_URL: SERVICE_INDEX})
        with pytest.raises(UnsupportedOperationError):
            backend.search_by_wildcard_name("*")

    def test_no_search_service(self):
        """Test feeds without a search service reject wildcards."""
        index = {"resources": [{"@id": REG, "@type": "RegistrationsBaseUrl/3.6.0"}]}
        backend, _ = make_backend({INDEX_URL: index})
        with pytest.raises(UnsupportedOperationError):
            backend.search_by_wildcard_name("Foo*")

    def test_malformed_search_response(self):
        """Test a search body without data."""
        routes = {
            INDEX_URL: SERVICE_INDEX,
            f"{SEARCH}?q=Foo&prerelease=true&semVerLevel=2.0.0&skip=0&take=100": {"totalHits": 1},
        }
        backend, _ = make_backend(routes)
        with pytest.raises(MalformedResponseError):
            backend.search_by_wildcard_name("*Foo*", include_prerelease=True)

    def test_pages_until_total_hits(self, monkeypatch):
        """Test skip advances by take until totalHits is reached."""
        monkeypatch.setattr(Constants, "V3_SEARCH_PAGE_SIZE", 2)
        base = f"{SEARCH}?q=Foo&prerelease=false&semVerLevel=2.0.0"
        routes = {
            INDEX_URL: SERVICE_INDEX,
            f"{base}&skip=0&take=2": {
                "totalHits": 4,
                "data": [{"id": "FooA", "version": "1.0.0"}, {"id": "FooB", "version": "1.0.0"}],
            },
            f"{base}&skip=2&take=2": {
                "totalHits": 4,
                "data": [{"id": "FooC", "version": "1.0.0"}, {"id": "FooD", "version": "1.0.0"}],
            },
        }
        backend, http = make_backend(routes)
        found = backend.search_by_wildcard_name("Foo*")
        assert [c.name for c in found] == ["FooA", "FooB", "FooC", "FooD"]
        search_urls = [c.args[0] for c in http.get_json.call_args_list if c.args[0].startswith(SEARCH)]
        assert search_urls == [f"{base}&skip=0&take=2", f"{base}&skip=2&take=2"]

    def test_short_page_ends_paging(self, monkeypatch):
        """Test a page smaller than take stops paging even if totalHits is larger."""
        monkeypatch.setattr(Constants, "V3_SEARCH_PAGE_SIZE", 2)
        base = f"{SEARCH}?q=Foo&prerelease=false&semVerLevel=2.0.0"
        routes = {
            INDEX_URL: SERVICE_INDEX,
            f"{base}&skip=0&take=2": {"totalHits": 10, "data": [{"id": "FooA", "version": "1.0.0"}]},
        }
        backend, http = make_backend(routes)
        assert [c.name for c in backend.search_by_wildcard_name("Foo*")] == ["FooA"]
        assert http.get_json.call_count == 2


class TestTagSearch:
    """Test tag and command queries."""

    def test_tags_query(self):
        """Test tags are sent as a tags: query."""
        routes = {
            INDEX_URL: SERVICE_INDEX,
            f"{SEARCH}?q=tags%3AJSON%20Net&prerelease=false&semVerLevel=2.0.0&skip=0&take=100": {
                "totalHits": 1,
                "data": [{"id": "Foo", "version": "1.0.0", "tags": ["JSON", "Net"]}],
            },
        }
        backend, _ = make_backend(routes)
        found = backend.search_by_tags(["JSON", "Net"])
        assert [(c.name, c.tags) for c in found] == [("Foo", ["JSON", "Net"])]

    def test_tags_without_search_service(self):
        """Test tag search needs the search service."""
        index = {"resources": [{"@id": REG, "@type": "RegistrationsBaseUrl/3.6.0"}]}
        backend, _ = make_backend({INDEX_URL: index})
        with pytest.raises(UnsupportedOperationError, match="tag search"):
            backend.search_by_tags(["JSON"])

    def test_command_search_unsupported(self):
        """Test V3 feeds cannot search by command name."""
        backend, http = make_backend({INDEX_URL: SERVICE_INDEX})
        with pytest.raises(UnsupportedOperationError):
            backend.search_by_command(["Get-Foo"])
        http.get_json.assert_not_called()


class TestTTLCache:
    """Test the TTL cache."""

    def test_set_get_and_expiry(self, monkeypatch):
        """Test values expire after their TTL."""
        clock = [1000.0]
        monkeypatch.setattr("versioning.cache.time.time", lambda: clock[0])
        cache = TTLCache(default_ttl=10)
        cache.set("a", 1)
        assert cache.get("a") == 1
        clock[0] += 11
        assert cache.get("a") is None
        assert len(cache) == 0

    def test_evicts_when_full(self):
        """Test the cache stays bounded."""
        cache = TTLCache(max_entries=10)
        for i in range(25):
            cache.set(f"k{i}", i)
        assert len(cache) <= 10
        assert cache.stats()["max_entries"] == 10
