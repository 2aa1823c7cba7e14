"""NuGet V2 (OData / Atom XML) repository backend."""
from __future__ import annotations

import logging
import urllib.parse
import xml.etree.ElementTree as ET
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple

from constants import Constants, ResourceKind
from common.cancellation import CancellationToken
from common.errors import MalformedResponseError
from common.http_client import HEADERS_ATOM, HttpClient
from common.logging_utils import extra_context, is_debug_enabled, safe_url
from registry.base import RawCandidate, RepositoryBackend
from resolution.models import RepositoryDescriptor
from versioning.version import ResourceVersion

logger = logging.getLogger(__name__)

# One parsed Atom <entry>: property name -> text
FeedEntry = Dict[str, str]


def odata_literal(value: str) -> str:
    """Escape a value for use inside a quoted OData string literal in a URL."""
    return urllib.parse.quote(value.replace("'", "''"), safe="")


def name_filter(pattern: str) -> str:
    """Build an OData filter approximating a ``*`` pattern on Id.

    Patterns with more than one literal run fall back to a substring match
    on the longest run; callers re-filter results exactly.
    """
    literals = [part for part in pattern.split("*") if part]
    anchored_start = not pattern.startswith("*")
    anchored_end = not pattern.endswith("*")
    if len(literals) == 1:
        lit = odata_literal(literals[0])
        if anchored_start and not anchored_end:
            return f"startswith(Id,'{lit}')"
        if anchored_end and not anchored_start:
            return f"endswith(Id,'{lit}')"
        if not anchored_start and not anchored_end:
            return f"substringof('{lit}',Id)"
        return f"Id eq '{lit}'"
    if len(literals) == 2 and anchored_start and anchored_end and pattern.count("*") == 1:
        first, last = odata_literal(literals[0]), odata_literal(literals[1])
        return f"startswith(Id,'{first}') and endswith(Id,'{last}')"
    longest = max(literals, key=len)
    return f"substringof('{odata_literal(longest)}',Id)"


def _latest_filter(include_prerelease: bool) -> str:
    return "IsAbsoluteLatestVersion" if include_prerelease else "IsLatestVersion"


def _strip_namespaces(root: ET.Element) -> None:
    for elem in root.iter():
        if isinstance(elem.tag, str) and "}" in elem.tag:
            elem.tag = elem.tag.split("}")[1]


def parse_feed(text: str, url: Optional[str] = None) -> Tuple[List[FeedEntry], Optional[int]]:
    """Parse an OData Atom feed into property dicts plus the m:count total.

    Raises:
        MalformedResponseError: on invalid XML or a root that is not a feed/entry.
    """
    try:
        root = ET.fromstring(text)
    except ET.ParseError as exc:
        raise MalformedResponseError(
            f"Response from {safe_url(url)} is not valid XML", url=url, detail=str(exc)
        ) from exc
    _strip_namespaces(root)
    if root.tag not in ("feed", "entry"):
        raise MalformedResponseError(
            f"Response from {safe_url(url)} is not an OData feed (root element '{root.tag}')", url=url
        )

    total: Optional[int] = None
    count_elem = root.find("count")
    if count_elem is not None and count_elem.text:
        try:
            total = int(count_elem.text.strip())
        except ValueError as exc:
            raise MalformedResponseError(
                f"Response from {safe_url(url)} has a non-numeric count", url=url, detail=count_elem.text
            ) from exc

    entries: List[FeedEntry] = []
    for entry in ([root] if root.tag == "entry" else root.findall("entry")):
        props = entry.find(".//properties")
        if props is None:
            raise MalformedResponseError(
                f"Entry in response from {safe_url(url)} has no properties element", url=url
            )
        values: FeedEntry = {child.tag: (child.text or "") for child in props}
        title = entry.find("title")
        if "Id" not in values and title is not None and title.text:
            values["Id"] = title.text.strip()
        entries.append(values)
    return entries, total


def parse_dependencies(text: str) -> List[Tuple[str, str]]:
    """Parse ``Id:range:framework|Id:range:framework`` into (id, range) pairs."""
    deps: List[Tuple[str, str]] = []
    seen = set()
    for item in (text or "").split("|"):
        parts = item.split(":")
        dep_id = parts[0].strip()
        if not dep_id or dep_id.lower() in seen:
            continue
        seen.add(dep_id.lower())
        deps.append((dep_id, parts[1].strip() if len(parts) > 1 else ""))
    return deps


def parse_published(text: Optional[str]) -> Optional[datetime]:
    if not text:
        return None
    value = text.strip().replace("Z", "+00:00")
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        # Trim fractional seconds longer than Python accepts
        head, _, _ = value.partition(".")
        try:
            return datetime.fromisoformat(head)
        except ValueError:
            return None


class V2Backend(RepositoryBackend):
    """Queries a NuGet V2 OData feed (e.g. the PowerShell Gallery)."""

    def __init__(self, descriptor: RepositoryDescriptor, http: Optional[HttpClient] = None):
        super().__init__(descriptor)
        self.base_url = descriptor.url.rstrip("/")
        self.http = http or HttpClient(repository=descriptor.name, headers=HEADERS_ATOM)

    def close(self) -> None:
        self.http.close()

    def _type_filter(self, kind: Optional[ResourceKind]) -> str:
        if kind is None or self.descriptor.is_script_catalog:
            return ""
        if kind == ResourceKind.SCRIPT:
            return f" and substringof('{Constants.SCRIPT_TAG}', Tags) eq true"
        return f" and substringof('{Constants.SCRIPT_TAG}', Tags) eq false"

    def _paginate(
        self,
        build_url: Callable[[int, int], str],
        page_size: int,
        full_threshold: int,
        cancel: Optional[CancellationToken],
    ) -> List[FeedEntry]:
        """Fetch pages until one comes back below the full-page threshold."""
        entries: List[FeedEntry] = []
        skip = 0
        for page in range(Constants.V2_MAX_PAGES):
            url = build_url(skip, page_size)
            text = self.http.get_text(url, headers=HEADERS_ATOM, cancel=cancel)
            if text is None:
                break
            page_entries, total = parse_feed(text, url)
            entries.extend(page_entries)
            if is_debug_enabled(logger):
                logger.debug(
                    "Fetched V2 page",
                    extra=extra_context(
                        event="page", component="v2", action="paginate", target=safe_url(url),
                        repository=self.name, page=page, count=len(page_entries), total=total,
                    ),
                )
            if len(page_entries) < full_threshold:
                break
            skip += page_size
            if total is not None and skip >= total:
                break
        else:
            self._warn(f"Stopped paging after {Constants.V2_MAX_PAGES} pages; results may be incomplete")
        return entries

    def _to_candidate(self, values: FeedEntry, url: str, *, skip_unlisted: bool) -> Optional[RawCandidate]:
        name = values.get("Id", "").strip()
        version_text = (values.get("NormalizedVersion") or values.get("Version") or "").strip()
        if not name or not version_text:
            raise MalformedResponseError(
                f"Entry in response from {safe_url(url)} is missing Id or Version", url=url
            )
        version = ResourceVersion.try_parse(version_text)
        if version is None:
            self._warn(f"Skipping {name}: unparseable version '{version_text}'")
            return None
        published = parse_published(values.get("Published"))
        if skip_unlisted and published is not None and published.year <= Constants.V2_UNLISTED_MAX_YEAR:
            return None
        return RawCandidate(
            name=name,
            version=version,
            tags=(values.get("Tags") or "").split(),
            dependencies=parse_dependencies(values.get("Dependencies", "")),
            authors=values.get("Authors") or None,
            description=values.get("Description") or None,
            project_uri=values.get("ProjectUrl") or None,
            license_uri=values.get("LicenseUrl") or None,
            published=published,
            extra={"downloadCount": values.get("DownloadCount")} if values.get("DownloadCount") else {},
        )

    def _to_candidates(self, entries: List[FeedEntry], url: str, include_prerelease: bool) -> List[RawCandidate]:
        results: List[RawCandidate] = []
        for values in entries:
            candidate = self._to_candidate(values, url, skip_unlisted=True)
            if candidate is None:
                continue
            if candidate.version.is_prerelease and not include_prerelease:
                continue
            results.append(candidate)
        return results

    def search_by_exact_name(
        self,
        name: str,
        include_prerelease: bool = False,
        *,
        kind: Optional[ResourceKind] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> List[RawCandidate]:
        lit = odata_literal(name)
        conditions = f"Id eq '{lit}'"
        if not include_prerelease:
            conditions += " and IsPrerelease eq false"
        conditions += self._type_filter(kind)

        def build_url(skip: int, top: int) -> str:
            return (
                f"{self.base_url}/FindPackagesById()?id='{lit}'"
                f"&$filter={conditions}"
                f"&$orderby=NormalizedVersion desc&$inlinecount=allpages&$skip={skip}&$top={top}"
            )

        entries = self._paginate(build_url, Constants.V2_PAGE_SIZE, Constants.V2_PAGE_FULL_THRESHOLD, cancel)
        candidates = self._to_candidates(entries, build_url(0, Constants.V2_PAGE_SIZE), include_prerelease)
        return [c for c in candidates if c.name.lower() == name.lower()]

    def search_by_wildcard_name(
        self,
        pattern: str,
        include_prerelease: bool = False,
        *,
        kind: Optional[ResourceKind] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> List[RawCandidate]:
        latest = _latest_filter(include_prerelease)
        if not pattern.strip("*"):
            # Bare '*': list everything using the large find-all pages
            return self._search(f"{latest}{self._type_filter(kind)}", include_prerelease, cancel, find_all=True)
        conditions = f"{name_filter(pattern)}{self._type_filter(kind)} and {latest}"
        return self._search(conditions, include_prerelease, cancel)

    def search_by_tags(
        self,
        tags: List[str],
        include_prerelease: bool = False,
        *,
        kind: Optional[ResourceKind] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> List[RawCandidate]:
        tag_filter = "".join(f" and substringof('{odata_literal(t)}', Tags) eq true" for t in tags)
        conditions = f"{_latest_filter(include_prerelease)}{self._type_filter(kind)}{tag_filter}"
        return self._search(conditions, include_prerelease, cancel, find_all=True)

    def search_by_command(
        self,
        names: List[str],
        include_prerelease: bool = False,
        *,
        dsc_resource: bool = False,
        cancel: Optional[CancellationToken] = None,
    ) -> List[RawCandidate]:
        term = " ".join(f"tag:{tag}" for tag in self.command_tags(names, dsc_resource))
        return self._search(
            _latest_filter(include_prerelease), include_prerelease, cancel,
            find_all=True, search_term=term,
        )

    def _search(
        self,
        conditions: str,
        include_prerelease: bool,
        cancel: Optional[CancellationToken],
        *,
        find_all: bool = False,
        search_term: Optional[str] = None,
    ) -> List[RawCandidate]:
        """Page through Search() for the latest version of each matching resource."""
        prerelease_param = "&includePrerelease=true" if include_prerelease else ""
        term_param = f"&searchTerm='{odata_literal(search_term)}'" if search_term else ""
        if find_all:
            page_size, threshold = Constants.V2_FIND_ALL_PAGE_SIZE, Constants.V2_FIND_ALL_FULL_THRESHOLD
        else:
            page_size, threshold = Constants.V2_PAGE_SIZE, Constants.V2_PAGE_FULL_THRESHOLD

        def build_url(skip: int, top: int) -> str:
            return (
                f"{self.base_url}/Search()?$filter={conditions}{prerelease_param}{term_param}"
                f"&$orderby=Id desc&$inlinecount=allpages&$skip={skip}&$top={top}"
            )

        entries = self._paginate(build_url, page_size, threshold, cancel)
        return self._to_candidates(entries, build_url(0, page_size), include_prerelease)
