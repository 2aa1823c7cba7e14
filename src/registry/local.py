"""Local directory repository: a folder of ``{name}.{version}.nupkg`` archives."""
from __future__ import annotations

import logging
import os
import re
import urllib.parse
import urllib.request
import xml.etree.ElementTree as ET
import zipfile
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from constants import Constants, ResourceKind
from common.cancellation import CancellationToken, check_cancelled
from common.errors import RepositoryTransportError
from common.logging_utils import extra_context, is_debug_enabled
from registry.base import RawCandidate, RepositoryBackend
from resolution import matcher
from resolution.models import RepositoryDescriptor
from versioning.version import ResourceVersion

logger = logging.getLogger(__name__)

# Leftmost ".<digits>..." run that consumes the rest of the stem is the version
_FILE_VERSION_RE = re.compile(r"\.(\d+(?:\.\d+){0,3}(?:-[0-9A-Za-z\-.]+)?)$")


def repository_path(url: str) -> str:
    """Turn a ``file://`` URL or plain path into a filesystem path."""
    if url.lower().startswith("file:"):
        return urllib.request.url2pathname(urllib.parse.urlsplit(url).path)
    return url


def split_package_file_name(file_name: str) -> Optional[Tuple[str, str]]:
    """Split ``Foo.Bar.1.2.0.nupkg`` into ``("Foo.Bar", "1.2.0")``."""
    stem = file_name[: -len(Constants.NUPKG_EXTENSION)] if file_name.lower().endswith(
        Constants.NUPKG_EXTENSION
    ) else file_name
    m = _FILE_VERSION_RE.search(stem)
    if not m or m.start() == 0:
        return None
    return stem[: m.start()], m.group(1)


def _strip_namespaces(root: ET.Element) -> None:
    for elem in root.iter():
        if isinstance(elem.tag, str) and "}" in elem.tag:
            elem.tag = elem.tag.split("}")[1]


def _text(metadata: ET.Element, tag: str) -> Optional[str]:
    elem = metadata.find(tag)
    if elem is not None and elem.text and elem.text.strip():
        return elem.text.strip()
    return None


def read_nuspec(package_path: str) -> Dict[str, object]:
    """Read the metadata block of the nuspec embedded in a package archive.

    Returns:
        Dict with id, version, tags, dependencies, authors, description,
        projectUrl and licenseUrl (absent values are None or empty).

    Raises:
        zipfile.BadZipFile, KeyError, ET.ParseError, OSError
    """
    with zipfile.ZipFile(package_path) as archive:
        nuspec_names = [
            n for n in archive.namelist()
            if n.lower().endswith(Constants.NUSPEC_EXTENSION) and "/" not in n
        ]
        if not nuspec_names:
            raise KeyError("no .nuspec file in package")
        root = ET.fromstring(archive.read(nuspec_names[0]))

    _strip_namespaces(root)
    metadata = root.find("metadata")
    if metadata is None:
        raise KeyError("nuspec has no metadata element")

    dependencies: List[Tuple[str, str]] = []
    seen = set()
    deps_elem = metadata.find("dependencies")
    if deps_elem is not None:
        # Either flat <dependency/> children or per-framework <group> blocks
        for dep in deps_elem.iter("dependency"):
            dep_id = (dep.get("id") or "").strip()
            if dep_id and dep_id.lower() not in seen:
                seen.add(dep_id.lower())
                dependencies.append((dep_id, (dep.get("version") or "").strip()))

    tags_text = _text(metadata, "tags") or ""
    return {
        "id": _text(metadata, "id"),
        "version": _text(metadata, "version"),
        "tags": tags_text.split(),
        "dependencies": dependencies,
        "authors": _text(metadata, "authors"),
        "description": _text(metadata, "description"),
        "projectUrl": _text(metadata, "projectUrl"),
        "licenseUrl": _text(metadata, "licenseUrl"),
    }


class LocalBackend(RepositoryBackend):
    """Reads package archives from a local directory, synchronously."""

    def __init__(self, descriptor: RepositoryDescriptor):
        super().__init__(descriptor)
        self.path = repository_path(descriptor.url)

    def _list_packages(self, cancel: Optional[CancellationToken]) -> List[Tuple[str, ResourceVersion, str]]:
        """Return (name, version, file path) for every parseable archive name."""
        check_cancelled(cancel)
        if not os.path.isdir(self.path):
            raise RepositoryTransportError(
                f"Local repository path '{self.path}' does not exist or is not a directory",
                url=self.descriptor.url,
            )
        entries: List[Tuple[str, ResourceVersion, str]] = []
        for file_name in sorted(os.listdir(self.path)):
            if not file_name.lower().endswith(Constants.NUPKG_EXTENSION):
                continue
            split = split_package_file_name(file_name)
            version = ResourceVersion.try_parse(split[1]) if split else None
            if split is None or version is None:
                self._warn(f"Skipping '{file_name}': cannot determine name and version from file name")
                continue
            entries.append((split[0], version, os.path.join(self.path, file_name)))
        if is_debug_enabled(logger):
            logger.debug(
                "Listed local catalog",
                extra=extra_context(
                    event="list", component="local", action="list_packages",
                    target=self.path, repository=self.name, count=len(entries),
                ),
            )
        return entries

    def _load(self, name: str, version: ResourceVersion, path: str) -> Optional[RawCandidate]:
        try:
            meta = read_nuspec(path)
        except (zipfile.BadZipFile, KeyError, ET.ParseError, OSError) as exc:
            self._warn(f"Skipping '{os.path.basename(path)}': unreadable package ({exc})")
            return None
        nuspec_version = ResourceVersion.try_parse(meta.get("version"))  # type: ignore[arg-type]
        nuspec_id = meta.get("id")
        try:
            published: Optional[datetime] = datetime.fromtimestamp(os.path.getmtime(path))
        except OSError:
            published = None
        return RawCandidate(
            name=nuspec_id if isinstance(nuspec_id, str) and nuspec_id.lower() == name.lower() else name,
            version=nuspec_version or version,
            tags=list(meta.get("tags") or []),  # type: ignore[arg-type]
            dependencies=list(meta.get("dependencies") or []),  # type: ignore[arg-type]
            authors=meta.get("authors"),  # type: ignore[arg-type]
            description=meta.get("description"),  # type: ignore[arg-type]
            project_uri=meta.get("projectUrl"),  # type: ignore[arg-type]
            license_uri=meta.get("licenseUrl"),  # type: ignore[arg-type]
            published=published,
            extra={"path": path},
        )

    def search_by_exact_name(
        self,
        name: str,
        include_prerelease: bool = False,
        *,
        kind: Optional[ResourceKind] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> List[RawCandidate]:
        wanted = name.lower()
        results: List[RawCandidate] = []
        for pkg_name, version, path in self._list_packages(cancel):
            if pkg_name.lower() != wanted:
                continue
            if version.is_prerelease and not include_prerelease:
                continue
            candidate = self._load(pkg_name, version, path)
            if candidate is not None:
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
        latest: Dict[str, Tuple[str, ResourceVersion, str]] = {}
        for pkg_name, version, path in self._list_packages(cancel):
            if not matcher.matches(pkg_name, pattern):
                continue
            if version.is_prerelease and not include_prerelease:
                continue
            key = pkg_name.lower()
            if key not in latest or version > latest[key][1]:
                latest[key] = (pkg_name, version, path)

        results: List[RawCandidate] = []
        for pkg_name, version, path in latest.values():
            candidate = self._load(pkg_name, version, path)
            if candidate is not None:
                results.append(candidate)
        return results

    def search_by_tags(
        self,
        tags: List[str],
        include_prerelease: bool = False,
        *,
        kind: Optional[ResourceKind] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> List[RawCandidate]:
        required = {t.lower() for t in tags if t}
        results: List[RawCandidate] = []
        for candidate in self.search_by_wildcard_name(matcher.WILDCARD, include_prerelease, cancel=cancel):
            if required <= {t.lower() for t in candidate.tags}:
                results.append(candidate)
        return results

    def search_by_command(
        self,
        names: List[str],
        include_prerelease: bool = False,
        *,
        dsc_resource: bool = False,
        cancel: Optional[CancellationToken] = None,
    ) -> List[RawCandidate]:
        return self.search_by_tags(self.command_tags(names, dsc_resource), include_prerelease, cancel=cancel)
