"""Utility functions for pys4."""

import re
from datetime import datetime, timedelta
from typing import Optional

from .exceptions import S4ConfigError

# =============================================================================
# Constants for transfers
# =============================================================================

# Objects strictly larger than this are uploaded in parts (16 MiB)
DEFAULT_MULTIPART_THRESHOLD: int = 16 * 1024 * 1024

# Part size for multipart uploads (8 MiB); S3 requires at least 5 MiB
DEFAULT_PART_SIZE: int = 8 * 1024 * 1024
MIN_PART_SIZE: int = 5 * 1024 * 1024

# S3 caps a multipart upload at 10000 parts
MAX_PART_COUNT: int = 10000

# Worker pools
DEFAULT_WORKERS: int = 4
DEFAULT_PART_WORKERS: int = 4

# Retry configuration for transient errors
DEFAULT_MAX_RETRIES: int = 3
DEFAULT_RETRY_DELAY: float = 0.5  # seconds
DEFAULT_MAX_RETRY_DELAY: float = 8.0  # seconds

# Per-request timeout
DEFAULT_TIMEOUT: float = 30.0  # seconds

# Seconds between watch cycles unless S4_SYNC_WATCH_INTERVAL_SEC is set
DEFAULT_WATCH_INTERVAL: float = 5.0

# Read size when streaming objects
STREAM_CHUNK_SIZE: int = 64 * 1024

# Object metadata field holding the source modification time
MTIME_METADATA_KEY: str = "mtime"

# Modification times closer than this are treated as equal (seconds)
MTIME_TOLERANCE: float = 1.0


# =============================================================================
# Duration parsing
# =============================================================================

_DURATION_UNITS = {
    "s": 1,
    "m": 60,
    "h": 60 * 60,
    "d": 24 * 60 * 60,
    "w": 7 * 24 * 60 * 60,
}

_DURATION_RE = re.compile(r"^(?:\d+[smhdw])+$")
_DURATION_PART_RE = re.compile(r"(\d+)([smhdw])")


def parse_duration(value: str) -> timedelta:
    """Parse a duration string such as ``365d``, ``1d12h`` or ``90m``.

    A bare integer is interpreted as seconds.

    Args:
        value: Duration string

    Returns:
        Parsed duration

    Raises:
        S4ConfigError: If the value cannot be parsed

    Examples:
        >>> parse_duration("365d")
        datetime.timedelta(days=365)
        >>> parse_duration("1h30m")
        datetime.timedelta(seconds=5400)
    """
    text = (value or "").strip().lower()
    if text.isdigit():
        return timedelta(seconds=int(text))
    if not _DURATION_RE.match(text):
        raise S4ConfigError(
            f"Invalid duration '{value}': expected e.g. '30s', '15m', '12h', '365d'"
        )

    seconds = 0
    for amount, unit in _DURATION_PART_RE.findall(text):
        seconds += int(amount) * _DURATION_UNITS[unit]
    return timedelta(seconds=seconds)


# =============================================================================
# Timestamp utilities
# =============================================================================


def to_timestamp(value: Optional[datetime]) -> Optional[float]:
    """Convert a timezone-aware datetime from the S3 API to a Unix timestamp."""
    if value is None:
        return None
    return value.timestamp()


def format_mtime(timestamp: float) -> str:
    """Encode a modification time for the ``mtime`` object metadata field."""
    return f"{timestamp:.6f}"


def parse_mtime(value: Optional[str]) -> Optional[float]:
    """Decode an ``mtime`` metadata value, or None if absent or malformed.

    Examples:
        >>> parse_mtime("1700000000.250000")
        1700000000.25
        >>> parse_mtime("soon") is None
        True
    """
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None


# =============================================================================
# Size formatting utilities
# =============================================================================


def format_size(size_bytes: int) -> str:
    """Format file size in human-readable format.

    Args:
        size_bytes: Size in bytes

    Returns:
        Formatted size string (e.g., "1.5 MB", "256 B")
    """
    if size_bytes < 1024:
        return f"{size_bytes} B"
    elif size_bytes < 1024 * 1024:
        return f"{size_bytes / 1024:.1f} KB"
    elif size_bytes < 1024 * 1024 * 1024:
        return f"{size_bytes / 1024 / 1024:.1f} MB"
    else:
        return f"{size_bytes / 1024 / 1024 / 1024:.1f} GB"


# =============================================================================
# Key helpers
# =============================================================================


def join_key(prefix: str, relative: str) -> str:
    """Join a scope prefix and a relative key with a single slash.

    Examples:
        >>> join_key("photos/", "2024/a.txt")
        'photos/2024/a.txt'
        >>> join_key("", "a.txt")
        'a.txt'
    """
    prefix = prefix.strip("/")
    relative = relative.lstrip("/")
    if not prefix:
        return relative
    if not relative:
        return prefix
    return f"{prefix}/{relative}"


def relative_key(key: str, prefix: str) -> str:
    """Strip a scope prefix from a full object key.

    Keys outside the prefix are returned unchanged.

    Examples:
        >>> relative_key("photos/2024/a.txt", "photos")
        '2024/a.txt'
        >>> relative_key("photos", "photos")
        ''
    """
    normalized = prefix.strip("/")
    if not normalized:
        return key
    if key == normalized:
        return ""
    if key.startswith(normalized + "/"):
        return key[len(normalized) + 1 :]
    return key
