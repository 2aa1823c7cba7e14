"""Build the right backend for a repository descriptor."""
from __future__ import annotations

import logging
import os
from typing import Optional

from constants import ApiVersion, Constants
from common.errors import UnsupportedOperationError
from common.logging_utils import extra_context, is_debug_enabled
from registry.base import RepositoryBackend
from registry.local import LocalBackend
from registry.v2 import V2Backend
from registry.v3 import V3Backend
from resolution.models import RepositoryDescriptor
from versioning.cache import TTLCache

logger = logging.getLogger(__name__)

# Service-index lookups shared across resolution calls; keys embed the
# repository name, URL and protocol.
SERVICE_INDEX_CACHE = TTLCache(Constants.SERVICE_INDEX_CACHE_TTL_SEC)


def infer_api_version(url: str) -> ApiVersion:
    """Guess the protocol of a repository URL that was registered without one."""
    lowered = url.strip().lower()
    if lowered.startswith("file:") or os.path.isdir(url):
        return ApiVersion.LOCAL
    if lowered.rstrip("/").endswith("index.json"):
        return ApiVersion.V3
    if lowered.startswith(("http://", "https://")):
        return ApiVersion.V2
    return ApiVersion.LOCAL


def create_backend(
    descriptor: RepositoryDescriptor, cache: Optional[TTLCache] = None
) -> RepositoryBackend:
    """Return a backend instance for the descriptor's protocol.

    Raises:
        UnsupportedOperationError: for a protocol with no backend.
    """
    if is_debug_enabled(logger):
        logger.debug(
            "Creating backend",
            extra=extra_context(
                event="function_entry", component="factory", action="create_backend",
                repository=descriptor.name, api_version=descriptor.api_version.value,
            ),
        )
    if descriptor.api_version == ApiVersion.LOCAL:
        return LocalBackend(descriptor)
    if descriptor.api_version == ApiVersion.V2:
        return V2Backend(descriptor)
    if descriptor.api_version == ApiVersion.V3:
        return V3Backend(descriptor, cache=cache if cache is not None else SERVICE_INDEX_CACHE)
    raise UnsupportedOperationError(
        f"Repository '{descriptor.name}' uses unsupported protocol '{descriptor.api_version}'",
        url=descriptor.url,
    )

