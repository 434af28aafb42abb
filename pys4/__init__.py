"""pys4 - command-line client and sync engine for S3-compatible storage."""

from .api import S3Client
from .exceptions import (
    S4APIError,
    S4AuthenticationError,
    S4ConfigError,
    S4Error,
    S4InvalidResponseError,
    S4ListingError,
    S4NetworkError,
    S4NotFoundError,
    S4RateLimitError,
    S4ServerError,
    S4TransferError,
    S4WatchCycleError,
)
from .utils import format_size, parse_duration

__all__ = [
    "S3Client",
    "S4Error",
    "S4APIError",
    "S4AuthenticationError",
    "S4ConfigError",
    "S4InvalidResponseError",
    "S4ListingError",
    "S4NetworkError",
    "S4NotFoundError",
    "S4RateLimitError",
    "S4ServerError",
    "S4TransferError",
    "S4WatchCycleError",
    "format_size",
    "parse_duration",
]
