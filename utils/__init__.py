"""
Utilities Package
=================
Shared helpers for the database lifecycle tooling.

Modules:
    - helpers: Formatting, retry delays, credential masking, paths
    - logger: Colored console and rotating file logging
"""

from .helpers import (
    format_file_size,
    format_duration,
    utc_now,
    filesystem_timestamp,
    slugify_name,
    sanitize_connection_string,
    backoff_delay,
    file_checksum,
    StepTimer,
    ensure_directory,
    get_project_root
)

from .logger import (
    get_logger,
    setup_logging,
    ColoredFormatter,
    JSONFormatter,
    RedactingFilter
)

__version__ = "1.0.0"

__all__ = [
    # Helpers
    "format_file_size",
    "format_duration",
    "utc_now",
    "filesystem_timestamp",
    "slugify_name",
    "sanitize_connection_string",
    "backoff_delay",
    "file_checksum",
    "StepTimer",
    "ensure_directory",
    "get_project_root",

    # Logger
    "get_logger",
    "setup_logging",
    "ColoredFormatter",
    "JSONFormatter",
    "RedactingFilter"
]
