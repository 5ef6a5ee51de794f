"""
Helper Utilities
================
General-purpose helpers shared by the database lifecycle components:
formatting, retry delays, credential masking, checksums and paths.
"""

import re
import time
import hashlib
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Union, Dict, Iterator

from .logger import get_logger

logger = get_logger(__name__)


# ==================== FORMATTING UTILITIES ====================

def format_file_size(bytes_size: Union[int, float]) -> str:
    """
    Format bytes to human-readable size.

    Args:
        bytes_size: Size in bytes

    Returns:
        str: Formatted size (e.g., "1.5 MB")

    Examples:
        >>> format_file_size(1536)
        '1.5 KB'
        >>> format_file_size(1048576)
        '1.0 MB'
    """
    for unit in ['B', 'KB', 'MB', 'GB', 'TB']:
        if bytes_size < 1024.0:
            if unit == 'B':
                return f"{bytes_size:.0f} {unit}"
            return f"{bytes_size:.1f} {unit}"
        bytes_size /= 1024.0

    return f"{bytes_size:.1f} PB"


def format_duration(seconds: Union[int, float]) -> str:
    """
    Format seconds to human-readable duration.

    Args:
        seconds: Duration in seconds

    Returns:
        str: Formatted duration (e.g., "1h 23m 45s")

    Examples:
        >>> format_duration(3665)
        '1h 1m 5s'
        >>> format_duration(0.25)
        '0.25s'
    """
    if seconds < 1:
        return f"{seconds:.2f}s"

    if seconds < 60:
        return f"{int(seconds)}s"

    hours = int(seconds // 3600)
    minutes = int((seconds % 3600) // 60)
    secs = int(seconds % 60)

    parts = []
    if hours > 0:
        parts.append(f"{hours}h")
    if minutes > 0:
        parts.append(f"{minutes}m")
    if secs > 0 or not parts:
        parts.append(f"{secs}s")

    return " ".join(parts)


def utc_now() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def filesystem_timestamp(dt: Optional[datetime] = None) -> str:
    """
    ISO timestamp safe for use in file and directory names.

    Examples:
        >>> filesystem_timestamp(datetime(2024, 1, 2, 3, 4, 5, 678000))
        '2024-01-02T03-04-05-678Z'
    """
    dt = dt or utc_now()
    iso = dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"
    return re.sub(r"[:.]", "-", iso)


# ==================== NAMING UTILITIES ====================

def slugify_name(name: str) -> str:
    """
    Normalize a human name into a file-name component.

    Examples:
        >>> slugify_name("Add User Preferences")
        'add_user_preferences'
    """
    slug = re.sub(r"\s+", "_", name.strip().lower())
    slug = re.sub(r"[^a-z0-9_]", "", slug)
    return slug or "unnamed"


def sanitize_connection_string(uri: str) -> str:
    """
    Mask credentials in a connection URI.

    Args:
        uri: Connection string, possibly carrying user:password@

    Returns:
        str: URI with credentials replaced by ***:***

    Examples:
        >>> sanitize_connection_string("mongodb://admin:s3cret@db:27017")
        'mongodb://***:***@db:27017'
    """
    if not uri:
        return uri
    return re.sub(r"//[^@/]+@", "//***:***@", uri, count=1)


# ==================== RETRY UTILITIES ====================

def backoff_delay(
    base: float,
    attempt: int,
    strategy: str = "fixed",
    cap: Optional[float] = None
) -> float:
    """
    Compute the delay before a retry attempt.

    Args:
        base: Base delay (any unit; result is in the same unit)
        attempt: 1-based attempt number that just failed
        strategy: 'fixed', 'linear' or 'exponential'
        cap: Upper bound for the delay

    Returns:
        float: Delay to wait

    Examples:
        >>> backoff_delay(5, 3, "fixed")
        5
        >>> backoff_delay(5, 3, "linear")
        15
        >>> backoff_delay(5, 3, "exponential")
        20
    """
    attempt = max(1, attempt)
    strategy = getattr(strategy, "value", strategy)

    if strategy == "linear":
        delay = base * attempt
    elif strategy == "exponential":
        delay = base * (2 ** (attempt - 1))
    elif strategy == "fixed":
        delay = base
    else:
        raise ValueError(f"Unknown retry strategy: {strategy}")

    if cap is not None and cap > 0:
        delay = min(delay, cap)

    return delay


# ==================== CHECKSUMS ====================

def file_checksum(path: Union[str, Path]) -> str:
    """
    MD5 hex digest of a file's content.

    Used for drift detection, not for security.
    """
    digest = hashlib.md5()
    with open(path, 'rb') as f:
        for chunk in iter(lambda: f.read(65536), b''):
            digest.update(chunk)
    return digest.hexdigest()


# ==================== TIME TRACKING ====================

class StepTimer:
    """
    Wall-clock durations of named steps, kept in the order they ran.

    Usage:
        timer = StepTimer()
        with timer.step("migrations"):
            ...
        timer.durations  # {"migrations": 0.42}
    """

    def __init__(self):
        self.durations: Dict[str, float] = {}
        self._created = time.perf_counter()

    @contextmanager
    def step(self, name: str) -> Iterator[None]:
        """Time the enclosed block; recorded even when it raises."""
        started = time.perf_counter()
        try:
            yield
        finally:
            self.durations[name] = time.perf_counter() - started

    @property
    def total(self) -> float:
        """Seconds since the timer was created."""
        return time.perf_counter() - self._created

    def slowest(self) -> Optional[str]:
        if not self.durations:
            return None
        return max(self.durations, key=self.durations.get)

    def __str__(self) -> str:
        return ", ".join(f"{name} {format_duration(seconds)}" for name, seconds in self.durations.items())


# ==================== PATH UTILITIES ====================

def ensure_directory(path: Union[str, Path]) -> Path:
    """
    Ensure directory exists, create if not.

    Args:
        path: Directory path

    Returns:
        Path: Path object
    """
    path = Path(path)
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_project_root() -> Path:
    """
    Get project root directory.

    Returns:
        Path: Project root path
    """
    return Path(__file__).parent.parent
