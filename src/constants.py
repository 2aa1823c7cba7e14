"""Constants used in the project."""

from enum import Enum


class ExitCodes(Enum):
    """Exit codes for the program.

    Args:
        Enum (int): Exit codes for the program.
    """

    SUCCESS = 0
    FILE_ERROR = 1
    CONNECTION_ERROR = 2
    EXIT_WARNINGS = 3
    INVALID_REQUEST = 4


class ApiVersion(Enum):
    """Repository protocols understood by the resolver.

    Args:
        Enum (string): Protocol identifier as written in configuration.
    """

    V2 = "v2"
    V3 = "v3"
    LOCAL = "local"


class ResourceKind(Enum):
    """Kinds of resource a repository can publish.

    Args:
        Enum (string): Kind name as accepted on the command line.
    """

    MODULE = "module"
    SCRIPT = "script"


class Constants:  # pylint: disable=too-few-public-methods
    """General constants used in the project.
    Data holder for configuration constants; not intended to provide behavior.
    """

    RESOURCE_KINDS = [
        ResourceKind.MODULE.value,
        ResourceKind.SCRIPT.value,
    ]
    OUTPUT_FORMATS = ["json", "table"]
    LOG_FORMAT = "[%(levelname)s] %(message)s"
    USER_AGENT = "resfind/0.1"
    REQUEST_TIMEOUT = 30  # Timeout in seconds for all HTTP requests
    HTTP_RETRY_MAX = 3
    HTTP_RETRY_BASE_DELAY_SEC = 0.3

    # Well-known repositories
    PSGALLERY_NAME = "PSGallery"
    PSGALLERY_URL = "https://www.powershellgallery.com/api/v2"
    SCRIPT_CATALOG_SUFFIX = "/items/psscript"
    SCRIPT_CATALOG_NAME_SUFFIX = " (scripts)"
    DUAL_CATALOG_URLS = [PSGALLERY_URL]

    # Repository ordering: 0 is highest priority, 50 lowest
    DEFAULT_PRIORITY = 50
    MIN_PRIORITY = 0
    MAX_PRIORITY = 50

    # V2 OData paging. Thresholds are tuned against the PowerShell Gallery
    # and can be overridden through the config file.
    V2_PAGE_SIZE = 100
    V2_PAGE_FULL_THRESHOLD = 100
    V2_FIND_ALL_PAGE_SIZE = 6000
    V2_FIND_ALL_FULL_THRESHOLD = 5990
    V2_MAX_PAGES = 500
    V2_UNLISTED_MAX_YEAR = 1900

    # V3 JSON feeds
    V3_SEARCH_PAGE_SIZE = 100
    V3_MAX_PAGES = 500
    SERVICE_INDEX_CACHE_TTL_SEC = 1800

    # Tags that mark scripts, and commands or DSC resources a module exports
    SCRIPT_TAG = "PSScript"
    COMMAND_TAG_PREFIX = "PSCommand_"
    DSC_RESOURCE_TAG_PREFIX = "PSDscResource_"

    NUPKG_EXTENSION = ".nupkg"
    NUSPEC_EXTENSION = ".nuspec"
