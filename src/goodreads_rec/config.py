"""
Configuration for the Goodreads recommender.

Runtime constants come from environment variables with validated defaults.
Shelf and publisher clean-up rules come from a user-supplied JSON file,
loaded with load_config().
"""
import os
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)


class ConfigError(ValueError):
    """Raised for missing or malformed configuration."""


def _get_float_env(key: str, default: float, min_val: float = 0) -> float:
    """
    Safely parse float from environment variable with validation.

    Args:
        key: Environment variable name
        default: Default value if not set or invalid
        min_val: Minimum allowed value

    Returns:
        Validated float value
    """
    try:
        val = float(os.environ.get(key, default))
        if val < min_val:
            logger.warning(f"{key}={val} is below minimum {min_val}, using {min_val}")
            return min_val
        return val
    except ValueError:
        logger.warning(f"Invalid {key}='{os.environ.get(key)}', using default {default}")
        return default


def _get_int_env(key: str, default: int, min_val: int = 1) -> int:
    """
    Safely parse integer from environment variable with validation.

    Args:
        key: Environment variable name
        default: Default value if not set or invalid
        min_val: Minimum allowed value

    Returns:
        Validated integer value
    """
    try:
        val = int(os.environ.get(key, default))
        if val < min_val:
            logger.warning(f"{key}={val} is below minimum {min_val}, using {min_val}")
            return min_val
        return val
    except ValueError:
        logger.warning(f"Invalid {key}='{os.environ.get(key)}', using default {default}")
        return default


# Storage
DATA_DIR = Path(os.environ.get("GOODREADS_REC_DATA_DIR", Path.home() / ".goodreads-rec"))
DB_PATH = Path(os.environ.get("GOODREADS_REC_DB", DATA_DIR / "cache.db"))
CONFIG_PATH = Path(os.environ.get("GOODREADS_REC_CONFIG", DATA_DIR / "config.json"))

# Goodreads API
API_BASE_URL = "https://www.goodreads.com"
REQUEST_SPACING = _get_float_env("GOODREADS_REC_REQUEST_SPACING", 1.0, min_val=0.0)
HTTP_TIMEOUT = 30.0  # seconds
MAX_HTTP_RETRIES = _get_int_env("GOODREADS_REC_MAX_RETRIES", 3, min_val=1)
READ_BOOKS_PAGE_SIZE = 25

# Shelves every reader gets for free; they say nothing about a book
DEFAULT_SHELVES = ("currently-reading", "read", "to-read")

# Search defaults
DEFAULT_SHELF_PERCENTILE = _get_int_env("GOODREADS_REC_SHELF_PERCENTILE", 75, min_val=0)
DEFAULT_RECOMMENDATION_PERCENTILE = 75
DEFAULT_MIN_RATING = 3
DEFAULT_MAX_REVIEWS = 10
DEFAULT_GENRE_PERCENTILE = 95  # per-book shelf cut-off in recommendation reports

CACHE_NAMES = ("data", "response")


@dataclass
class Configuration:
    """User-level rules for cleaning up shelf and publisher names."""
    ignore_shelves: list[str] = field(default_factory=list)
    merge_shelves: dict[str, list[str]] = field(default_factory=dict)
    merge_publishers: dict[str, list[str]] = field(default_factory=dict)
    shelf_percentile: int | None = None


def _require_string_list(value, key: str, path: Path) -> list[str]:
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ConfigError(f"Invalid configuration: {path}\n--\n{key} must be a list of strings")
    return value


def _require_alias_map(value, key: str, path: Path) -> dict[str, list[str]]:
    if not isinstance(value, dict):
        raise ConfigError(f"Invalid configuration: {path}\n--\n{key} must be an object")
    for name, aliases in value.items():
        _require_string_list(aliases, f"{key}.{name}", path)
    return value


def load_config(path: Path | str, allow_missing: bool = False) -> Configuration:
    """
    Load a JSON configuration file.

    Args:
        path: Location of the file
        allow_missing: Return the default configuration when the file is absent

    Raises:
        ConfigError: if the file is missing (and not allowed to be), is not
            valid JSON, or contains unknown or mistyped keys
    """
    path = Path(path)

    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        if allow_missing:
            logger.debug(f"No config file at {path}, using defaults")
            return Configuration()
        raise ConfigError(f"No config file found at path: {path}")

    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Invalid JSON found in configuration: {path}\n--\n{exc}")

    if not isinstance(data, dict):
        raise ConfigError(f"Invalid configuration: {path}\n--\nexpected a JSON object")

    known = {"ignoreShelves", "mergeShelves", "mergePublishers", "shelfPercentile"}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigError(f"Invalid configuration: {path}\n--\nunknown keys: {', '.join(unknown)}")

    config = Configuration()

    if "ignoreShelves" in data:
        config.ignore_shelves = _require_string_list(data["ignoreShelves"], "ignoreShelves", path)
    if "mergeShelves" in data:
        config.merge_shelves = _require_alias_map(data["mergeShelves"], "mergeShelves", path)
    if "mergePublishers" in data:
        config.merge_publishers = _require_alias_map(data["mergePublishers"], "mergePublishers", path)
    if "shelfPercentile" in data:
        value = data["shelfPercentile"]
        if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= 100:
            raise ConfigError(f"Invalid configuration: {path}\n--\nshelfPercentile must be an integer from 0 to 100")
        config.shelf_percentile = value

    return config


def _require_env(name: str, description: str) -> str:
    value = os.environ.get(name)
    if not value:
        raise ConfigError(f"You must provide {description} in the {name} environment variable")
    return value


def get_api_key() -> str:
    """Goodreads developer key."""
    return _require_env("GOODREADS_API_KEY", "your Goodreads API key")


def get_user_id() -> str:
    """Goodreads ID of the user whose books are analysed."""
    return _require_env("GOODREADS_USER_ID", "your Goodreads user ID")
