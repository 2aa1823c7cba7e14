"""Configuration loading and runtime overrides for the CLI.

Precedence, lowest to highest: built-in Constants, YAML/JSON config file,
environment variables, CLI flags. Repository descriptors are read from the
``repositories`` section of the config file.
"""

from __future__ import annotations

import json
import logging
import os
from typing import Any, Dict, List, Optional

import yaml

from constants import ApiVersion, Constants
from registry.factory import infer_api_version
from resolution.models import RepositoryDescriptor

logger = logging.getLogger(__name__)

# config section -> key -> Constants attribute
_SECTION_OVERRIDES: Dict[str, Dict[str, str]] = {
    "http": {
        "timeout": "REQUEST_TIMEOUT",
        "retry_max": "HTTP_RETRY_MAX",
        "retry_base_delay": "HTTP_RETRY_BASE_DELAY_SEC",
        "user_agent": "USER_AGENT",
    },
    "pagination": {
        "v2_page_size": "V2_PAGE_SIZE",
        "v2_page_full_threshold": "V2_PAGE_FULL_THRESHOLD",
        "v2_find_all_page_size": "V2_FIND_ALL_PAGE_SIZE",
        "v2_find_all_full_threshold": "V2_FIND_ALL_FULL_THRESHOLD",
        "v2_max_pages": "V2_MAX_PAGES",
        "v3_search_page_size": "V3_SEARCH_PAGE_SIZE",
        "v3_max_pages": "V3_MAX_PAGES",
    },
    "cache": {
        "service_index_ttl": "SERVICE_INDEX_CACHE_TTL_SEC",
    },
}

_ENV_OVERRIDES: Dict[str, str] = {
    "RESFIND_REQUEST_TIMEOUT": "REQUEST_TIMEOUT",
    "RESFIND_HTTP_RETRY_MAX": "HTTP_RETRY_MAX",
    "RESFIND_V2_PAGE_SIZE": "V2_PAGE_SIZE",
}


def load_config(path: Optional[str]) -> Dict[str, Any]:
    """Load a YAML (or JSON) configuration file.

    Args:
        path: File path; None or empty means no config file.

    Returns:
        Parsed mapping, empty when no path was given.

    Raises:
        OSError: when the file cannot be read.
        ValueError: when the file does not contain a mapping or cannot be parsed.
    """
    if not path or not path.strip():
        return {}
    with open(path, "r", encoding="utf-8") as fh:
        try:
            if path.lower().endswith(".json"):
                cfg = json.load(fh) or {}
            else:
                cfg = yaml.safe_load(fh) or {}
        except yaml.YAMLError as exc:
            raise ValueError(f"Invalid YAML in {path}: {exc}") from exc
    if not isinstance(cfg, dict):
        raise ValueError(f"Config file {path} must contain a mapping at the top level")
    return cfg


def _coerce_like(attr: str, value: Any) -> Any:
    """Convert value to the type of the current Constants attribute."""
    current = getattr(Constants, attr)
    if isinstance(current, bool):
        return str(value).strip().lower() in ("1", "true", "yes", "on")
    if isinstance(current, int):
        return int(value)
    if isinstance(current, float):
        return float(value)
    return str(value)


def _set_constant(attr: str, value: Any, source: str) -> None:
    try:
        setattr(Constants, attr, _coerce_like(attr, value))
    except (TypeError, ValueError):
        logger.warning("Ignoring invalid value %r for %s from %s", value, attr, source)


def apply_config_overrides(cfg: Dict[str, Any]) -> None:
    """Apply the http/pagination/cache sections of a config mapping to Constants."""
    for section, keys in _SECTION_OVERRIDES.items():
        values = cfg.get(section)
        if values is None:
            continue
        if not isinstance(values, dict):
            logger.warning("Config section '%s' must be a mapping; ignoring it", section)
            continue
        for key, value in values.items():
            attr = keys.get(key)
            if attr is None:
                logger.warning("Unknown config key '%s.%s'", section, key)
                continue
            _set_constant(attr, value, f"config {section}.{key}")


def apply_env_overrides(environ: Optional[Dict[str, str]] = None) -> None:
    """Apply RESFIND_* environment variables to Constants."""
    env = os.environ if environ is None else environ
    for var, attr in _ENV_OVERRIDES.items():
        value = env.get(var)
        if value is not None and value.strip():
            _set_constant(attr, value.strip(), f"environment {var}")


def apply_cli_overrides(args) -> None:
    """Apply CLI tunables (highest precedence)."""
    if getattr(args, "TIMEOUT", None) is not None:
        _set_constant("REQUEST_TIMEOUT", args.TIMEOUT, "--timeout")


def _descriptor_from_entry(entry: Any, index: int) -> Optional[RepositoryDescriptor]:
    if not isinstance(entry, dict):
        logger.warning("Repository entry #%d is not a mapping; skipping it", index)
        return None
    name = str(entry.get("name") or "").strip()
    url = str(entry.get("url") or entry.get("uri") or "").strip()
    if not name or not url:
        logger.warning("Repository entry #%d needs both 'name' and 'url'; skipping it", index)
        return None

    try:
        priority = int(entry.get("priority", Constants.DEFAULT_PRIORITY))
    except (TypeError, ValueError):
        logger.warning("Repository '%s' has a non-numeric priority; skipping it", name)
        return None
    if not Constants.MIN_PRIORITY <= priority <= Constants.MAX_PRIORITY:
        logger.warning(
            "Repository '%s' priority %d is outside %d..%d; skipping it",
            name, priority, Constants.MIN_PRIORITY, Constants.MAX_PRIORITY,
        )
        return None

    api_text = entry.get("api_version")
    if api_text:
        try:
            api_version = ApiVersion(str(api_text).strip().lower())
        except ValueError:
            logger.warning("Repository '%s' has unknown api_version '%s'; skipping it", name, api_text)
            return None
    else:
        api_version = infer_api_version(url)

    return RepositoryDescriptor(
        name=name,
        url=url,
        priority=priority,
        api_version=api_version,
        trusted=bool(entry.get("trusted", False)),
    )


def load_repositories(cfg: Dict[str, Any], extra_urls: Optional[List[str]] = None) -> List[RepositoryDescriptor]:
    """Build repository descriptors from config plus ad-hoc URLs.

    When nothing is configured the PowerShell Gallery is used.

    Args:
        cfg: Parsed config mapping.
        extra_urls: URLs given with --repository-url; registered at priority 0
            under generated names.
    """
    descriptors: List[RepositoryDescriptor] = []
    seen = set()
    entries = cfg.get("repositories") or []
    if not isinstance(entries, list):
        logger.warning("Config 'repositories' must be a list; ignoring it")
        entries = []
    for index, entry in enumerate(entries, start=1):
        descriptor = _descriptor_from_entry(entry, index)
        if descriptor is None:
            continue
        if descriptor.name.lower() in seen:
            logger.warning("Repository '%s' is defined more than once; keeping the first", descriptor.name)
            continue
        seen.add(descriptor.name.lower())
        descriptors.append(descriptor)

    for index, url in enumerate(extra_urls or [], start=1):
        descriptors.append(
            RepositoryDescriptor(
                name=f"cli{index}",
                url=url,
                priority=Constants.MIN_PRIORITY,
                api_version=infer_api_version(url),
            )
        )

    if not descriptors:
        descriptors.append(
            RepositoryDescriptor(
                name=Constants.PSGALLERY_NAME,
                url=Constants.PSGALLERY_URL,
                priority=Constants.DEFAULT_PRIORITY,
                api_version=ApiVersion.V2,
                trusted=False,
            )
        )
    return descriptors
