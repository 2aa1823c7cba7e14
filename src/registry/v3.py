"""NuGet V3 (JSON service index + registration) repository backend."""
from __future__ import annotations

import logging
import urllib.parse
from typing import Any, Dict, List, Optional

from constants import Constants, ResourceKind
from common.cancellation import CancellationToken
from common.errors import MalformedResponseError, RepositoryTransportError, UnsupportedOperationError
from common.http_client import HEADERS_JSON, HttpClient
from common.logging_utils import extra_context, is_debug_enabled, safe_url
from registry.base import RawCandidate, RepositoryBackend
from registry.v2 import parse_published
from resolution.models import RepositoryDescriptor
from versioning.cache import TTLCache
from versioning.version import ResourceVersion

logger = logging.getLogger(__name__)

REGISTRATION_FAMILY = "RegistrationsBaseUrl"
SEARCH_FAMILY = "SearchQueryService"


def select_resource(service_index: Dict[str, Any], family: str) -> Optional[str]:
    """Return the @id of the highest-versioned resource of a type family.

    Types look like ``RegistrationsBaseUrl/3.6.0``; an unversioned
    ``RegistrationsBaseUrl`` entry is ignored.

    Args:
        service_index: Parsed service index document.
        family: Resource type prefix, e.g. "RegistrationsBaseUrl".

    Returns:
        The resource URL, or None when no versioned resource of that family exists.
    """
    best_version: Optional[ResourceVersion] = None
    best_id: Optional[str] = None
    for resource in service_index.get("resources") or []:
        if not isinstance(resource, dict):
            continue
        types = resource.get("@type")
        for res_type in types if isinstance(types, list) else [types]:
            if not isinstance(res_type, str) or not res_type.startswith(family + "/"):
                continue
            version = ResourceVersion.try_parse(res_type[len(family) + 1:])
            res_id = resource.get("@id")
            if version is None or not res_id:
                continue
            if best_version is None or version > best_version:
                best_version, best_id = version, res_id
    return best_id


def parse_tags(value: Any) -> List[str]:
    """Tags arrive either as a list or as one whitespace-separated string."""
    if isinstance(value, list):
        return [str(t).strip() for t in value if str(t).strip()]
    if isinstance(value, str):
        return value.split()
    return []


def _join_authors(value: Any) -> Optional[str]:
    if isinstance(value, list):
        return ", ".join(str(a) for a in value) or None
    return value or None


class V3Backend(RepositoryBackend):
    """Queries a NuGet V3 feed through its service index."""

    def __init__(
        self,
        descriptor: RepositoryDescriptor,
        http: Optional[HttpClient] = None,
        cache: Optional[TTLCache] = None,
    ):
        super().__init__(descriptor)
        self.http = http or HttpClient(repository=descriptor.name, headers=HEADERS_JSON)
        self.cache = cache if cache is not None else TTLCache(Constants.SERVICE_INDEX_CACHE_TTL_SEC)

    def close(self) -> None:
        self.http.close()

    def _endpoints(self, cancel: Optional[CancellationToken]) -> Dict[str, Optional[str]]:
        """Registration and search URLs from the service index, cached per repository."""
        cache_key = f"{self.descriptor.cache_key}|endpoints"
        cached = self.cache.get(cache_key)
        if cached is not None:
            return cached

        url = self.descriptor.url
        index = self.http.get_json(url, cancel=cancel)
        if index is None:
            raise RepositoryTransportError(
                f"Service index {safe_url(url)} not found", url=url, status_code=404
            )
        if not isinstance(index, dict) or not isinstance(index.get("resources"), list):
            raise MalformedResponseError(
                f"Service index {safe_url(url)} has no 'resources' list", url=url
            )
        endpoints = {
            "registration": select_resource(index, REGISTRATION_FAMILY),
            "search": select_resource(index, SEARCH_FAMILY),
        }
        self.cache.set(cache_key, endpoints, Constants.SERVICE_INDEX_CACHE_TTL_SEC)
        if is_debug_enabled(logger):
            logger.debug(
                "Resolved V3 endpoints",
                extra=extra_context(
                    event="decision", component="v3", action="service_index",
                    target=safe_url(url), repository=self.name,
                    registration=safe_url(endpoints["registration"]), search=safe_url(endpoints["search"]),
                ),
            )
        return endpoints

    def _fetch_object(self, url: str, cancel: Optional[CancellationToken]) -> Dict[str, Any]:
        data = self.http.get_json(url, cancel=cancel)
        if not isinstance(data, dict):
            raise MalformedResponseError(f"Expected a JSON object from {safe_url(url)}", url=url)
        return data

    def _registration_leaves(self, index: Dict[str, Any], url: str, cancel) -> List[Dict[str, Any]]:
        """Collect catalog entries from every registration page, fetching non-inlined pages."""
        pages = index.get("items")
        if not isinstance(pages, list):
            raise MalformedResponseError(f"Registration index {safe_url(url)} has no 'items' list", url=url)
        entries: List[Dict[str, Any]] = []
        for page in pages:
            if not isinstance(page, dict):
                raise MalformedResponseError(f"Registration page in {safe_url(url)} is not an object", url=url)
            leaves = page.get("items")
            if leaves is None:
                page_url = page.get("@id")
                if not page_url:
                    raise MalformedResponseError(
                        f"Registration page in {safe_url(url)} has neither 'items' nor '@id'", url=url
                    )
                leaves = self._fetch_object(page_url, cancel).get("items")
            if not isinstance(leaves, list):
                raise MalformedResponseError(f"Registration page in {safe_url(url)} has no 'items' list", url=url)
            for leaf in leaves:
                entry = leaf.get("catalogEntry") if isinstance(leaf, dict) else None
                if isinstance(entry, str):
                    entry = self._fetch_object(entry, cancel)
                if not isinstance(entry, dict):
                    raise MalformedResponseError(
                        f"Registration leaf in {safe_url(url)} has no 'catalogEntry'", url=url
                    )
                entries.append(entry)
        return entries

    def _entry_to_candidate(self, entry: Dict[str, Any], default_name: str, url: str) -> Optional[RawCandidate]:
        version_text = entry.get("version")
        if not isinstance(version_text, str) or not version_text:
            raise MalformedResponseError(f"Catalog entry in {safe_url(url)} is missing 'version'", url=url)
        version = ResourceVersion.try_parse(version_text)
        name = entry.get("id") or default_name
        if version is None:
            self._warn(f"Skipping {name}: unparseable version '{version_text}'")
            return None

        dependencies = []
        seen = set()
        for group in entry.get("dependencyGroups") or []:
            for dep in (group or {}).get("dependencies") or []:
                dep_id = (dep or {}).get("id")
                if dep_id and dep_id.lower() not in seen:
                    seen.add(dep_id.lower())
                    dependencies.append((dep_id, dep.get("range") or ""))

        return RawCandidate(
            name=name,
            version=version,
            tags=parse_tags(entry.get("tags")),
            dependencies=dependencies,
            authors=_join_authors(entry.get("authors")),
            description=entry.get("description") or None,
            project_uri=entry.get("projectUrl") or None,
            license_uri=entry.get("licenseUrl") or None,
            published=parse_published(entry.get("published")),
        )

    def search_by_exact_name(
        self,
        name: str,
        include_prerelease: bool = False,
        *,
        kind: Optional[ResourceKind] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> List[RawCandidate]:
        base = self._endpoints(cancel).get("registration")
        if not base:
            raise MalformedResponseError(
                f"Service index {safe_url(self.descriptor.url)} has no versioned {REGISTRATION_FAMILY} resource",
                url=self.descriptor.url,
            )
        url = f"{base.rstrip('/')}/{urllib.parse.quote(name.lower(), safe='')}/index.json"
        index = self.http.get_json(url, cancel=cancel)
        if index is None:
            return []
        if not isinstance(index, dict):
            raise MalformedResponseError(f"Registration index {safe_url(url)} is not an object", url=url)

        results: List[RawCandidate] = []
        for entry in self._registration_leaves(index, url, cancel):
            if entry.get("listed") is False:
                continue
            candidate = self._entry_to_candidate(entry, name, url)
            if candidate is None:
                continue
            if candidate.version.is_prerelease and not include_prerelease:
                continue
            results.append(candidate)
        return results

    def search_by_wildcard_name(
        self,
        pattern: str,
        include_prerelease: bool = False,
        *,
        kind: Optional[ResourceKind] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> List[RawCandidate]:
        literals = [part for part in pattern.split("*") if part]
        if not literals:
            raise UnsupportedOperationError(
                f"Listing every resource is not supported by V3 repository '{self.name}'",
                url=self.descriptor.url,
            )
        return self._search(max(literals, key=len), include_prerelease, cancel, "wildcard search")

    def search_by_tags(
        self,
        tags: List[str],
        include_prerelease: bool = False,
        *,
        kind: Optional[ResourceKind] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> List[RawCandidate]:
        return self._search("tags:" + " ".join(tags), include_prerelease, cancel, "tag search")

    def _search(
        self, query: str, include_prerelease: bool, cancel: Optional[CancellationToken], purpose: str
    ) -> List[RawCandidate]:
        """Page through the search service with skip/take until totalHits is reached."""
        search = self._endpoints(cancel).get("search")
        if not search:
            raise UnsupportedOperationError(
                f"Repository '{self.name}' has no {SEARCH_FAMILY} resource; {purpose} is unavailable",
                url=self.descriptor.url,
            )

        term = urllib.parse.quote(query, safe="")
        take = Constants.V3_SEARCH_PAGE_SIZE
        results: List[RawCandidate] = []
        skip = 0
        for _ in range(Constants.V3_MAX_PAGES):
            url = (
                f"{search}?q={term}&prerelease={'true' if include_prerelease else 'false'}"
                f"&semVerLevel=2.0.0&skip={skip}&take={take}"
            )
            data = self.http.get_json(url, cancel=cancel)
            if data is None:
                break
            if not isinstance(data, dict) or not isinstance(data.get("data"), list):
                raise MalformedResponseError(f"Search response from {safe_url(url)} has no 'data' list", url=url)
            page = data["data"]
            for item in page:
                if not isinstance(item, dict) or not item.get("id"):
                    raise MalformedResponseError(f"Search result in {safe_url(url)} is missing 'id'", url=url)
                candidate = self._entry_to_candidate(item, item["id"], url)
                if candidate is None:
                    continue
                if candidate.version.is_prerelease and not include_prerelease:
                    continue
                # Search hits carry no dependency data
                candidate.extra["partial"] = True
                results.append(candidate)
            skip += take
            total = data.get("totalHits")
            if len(page) < take or (isinstance(total, int) and skip >= total):
                break
        else:
            self._warn(f"Stopped paging after {Constants.V3_MAX_PAGES} pages; results may be incomplete")
        return results
