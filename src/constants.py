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
    STRUCTURAL_ERROR = 3


class Stages(Enum):
    """Pipeline stages selectable from the command line.

    Args:
        Enum (string): Stage names accepted by the CLI.
    """

    ANALYZE = "analyze"
    DOWNLOAD = "download"
    MAP_IMPORTS = "map-imports"
    TRANSFORM = "transform"
    EXPORT = "export"
    ALL = "all"


class Constants:  # pylint: disable=too-few-public-methods
    """General constants used in the project.
    Data holder for configuration constants; not intended to provide behavior.
    """

    REGISTRY_URL_NPM = "https://registry.npmjs.org/"
    CDN_ORIGIN = "https://esm.sh"
    STAGES = [stage.value for stage in Stages]
    LOG_FORMAT = "[%(levelname)s] %(message)s"
    LOG_LEVEL_ENV = "ESMIRROR_LOG_LEVEL"
    REQUEST_TIMEOUT = 30  # Timeout in seconds for all HTTP requests

    # Retry policy shared by the registry client and the content fetcher
    HTTP_RETRY_MAX = 3
    HTTP_RETRY_BASE_DELAY_SEC = 1.0
    HTTP_CACHE_TTL_SEC = 300
    FETCH_MAX_CONCURRENCY = 8

    # Version selection window
    SELECT_MAJOR_LINES = 3
    SELECT_MINOR_LINES = 3

    # Files and layout
    CDN_MAPPINGS_FILE = "cdn-mappings.json"
    MIRROR_DIR = "dependencies"
    INDEX_FILE = "index.lookup.json"
    EXPORTS_FILE = "cdn-exports.json"
    MIRROR_IMPORT_PREFIX = "/dependencies/"
    VERSION_PLACEHOLDER = "{version}"
    FILENAME_HASH_LENGTH = 8

    # Environment overrides
    ENV_REGISTRY_URL = "ESMIRROR_REGISTRY_URL"
    ENV_CDN_ORIGIN = "ESMIRROR_CDN_ORIGIN"
    ENV_MAX_CONCURRENCY = "ESMIRROR_MAX_CONCURRENCY"
