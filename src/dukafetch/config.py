from dataclasses import dataclass, field, is_dataclass
from pathlib import Path
import sys
import tomllib
from typing import Any, TypeVar

from loguru import logger

from dukafetch.downloader import (
    DEFAULT_CONCURRENCY_LIMIT,
    DEFAULT_MAX_RETRIES,
    DEFAULT_RETRY_DELAY_S,
)
from dukafetch.locator import DEFAULT_BASE_URL
from dukafetch.meta import DEFAULT_META_REFERER, DEFAULT_META_URL

# --- Constants ---
APP_NAME = "dukafetch"
# Use a platform-agnostic user config directory
if sys.platform == "win32":
    CONFIG_DIR = Path.home() / "AppData" / "Roaming" / APP_NAME
else:
    CONFIG_DIR = Path.home() / ".config" / APP_NAME

CONFIG_FILE = CONFIG_DIR / "config.toml"

DEFAULT_CONFIG_TEXT = """\
# Dukafetch configuration file.
# Uncomment and edit any value to override the default.

# [general]
# log_level_console = "INFO"
# log_level_file = "DEBUG"

# [download]
# output_directory = "bi5"
# concurrency_limit = 24
# max_retries = 10
# retry_delay_s = 5.0

# [meta]
# cache_file = "instruments.json"
"""

# --- Dataclass Models for Settings ---
T = TypeVar("T")


@dataclass
class GeneralSettings:
    """Logging settings."""

    log_level_console: str = "INFO"
    log_level_file: str = "DEBUG"
    log_directory: str = str(CONFIG_DIR / "logs")


@dataclass
class DownloadSettings:
    """Settings for fetching and writing tick files."""

    base_url: str = DEFAULT_BASE_URL
    output_directory: str = "bi5"
    concurrency_limit: int = DEFAULT_CONCURRENCY_LIMIT
    max_retries: int = DEFAULT_MAX_RETRIES
    retry_delay_s: float = DEFAULT_RETRY_DELAY_S
    request_timeout_s: float = 30.0


@dataclass
class MetaSettings:
    """Settings for the instrument catalog."""

    url: str = DEFAULT_META_URL
    referer: str = DEFAULT_META_REFERER
    cache_file: str = "instruments.json"
    request_timeout_s: float = 5.0
    retry_count: int = 10


@dataclass
class Settings:
    """Root container for all application settings."""

    general: GeneralSettings = field(default_factory=GeneralSettings)
    download: DownloadSettings = field(default_factory=DownloadSettings)
    meta: MetaSettings = field(default_factory=MetaSettings)


def _update_dataclass(dc_instance: T, data: dict[str, Any]) -> T:
    """Recursively updates a dataclass instance from a dictionary."""
    for f in field_names(dc_instance):
        if f in data:
            field_value = getattr(dc_instance, f)
            if is_dataclass(field_value):
                if isinstance(data[f], dict):
                    _update_dataclass(field_value, data[f])
                else:
                    logger.warning(f"Ignoring non-table value for section '{f}'.")
            else:
                setattr(dc_instance, f, data[f])
    return dc_instance


def field_names(dc_instance: Any) -> list[str]:
    """Helper to get field names from a dataclass instance."""
    return [f.name for f in dc_instance.__dataclass_fields__.values()]


def load_config(path: Path = CONFIG_FILE, *, create: bool = True) -> Settings:
    """Loads settings from a TOML file, merging them with defaults.

    If the config file does not exist and ``create`` is set, a commented
    template is written in its place.

    Args:
        path: The path to the configuration file.
        create: Whether to write a template when the file is missing.

    Returns:
        A populated Settings object.
    """
    settings_obj = Settings()
    logger.debug(f"Loading configuration from '{path}'...")

    if not path.exists():
        if not create:
            return settings_obj
        logger.info(f"Configuration file not found. Creating default at '{path}'.")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(DEFAULT_CONFIG_TEXT, encoding="utf-8")
        except OSError as e:
            logger.error(f"Failed to create default config file: {e}")
        return settings_obj

    try:
        with path.open("rb") as f:
            user_config = tomllib.load(f)
        _update_dataclass(settings_obj, user_config)
        logger.debug("Successfully loaded user configuration.")
    except tomllib.TOMLDecodeError as e:
        logger.error(f"Error decoding TOML from '{path}': {e}")
        logger.warning("Using default settings due to configuration error.")
    except OSError as e:
        logger.error(f"Could not read config file '{path}': {e}")
        logger.warning("Using default settings due to configuration error.")

    return settings_obj
