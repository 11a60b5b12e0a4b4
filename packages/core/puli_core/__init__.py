"""Core installer services for options, environment lookup, and logging."""

from .config import (
    DEFAULT_FILENAME,
    InstallerEnvironment,
    InstallOptions,
    MissingHomeError,
    home_directory,
    is_release_version,
    validate_options,
)
from .logging_setup import configure_logging, get_logger

__all__ = [
    "DEFAULT_FILENAME",
    "InstallOptions",
    "InstallerEnvironment",
    "MissingHomeError",
    "configure_logging",
    "get_logger",
    "home_directory",
    "is_release_version",
    "validate_options",
]
