"""Exceptions raised by pys4."""

from typing import Optional


class S4Error(Exception):
    """Base exception for all pys4 errors."""

    retryable: bool = False
    """Whether the operation that raised this error may succeed on retry"""


class S4ConfigError(S4Error):
    """Invalid configuration: unknown alias, bad duration, bad flag combination.

    Raised before any listing or transfer starts and never retried.
    """


class S4APIError(S4Error):
    """Error response returned by the object store."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        code: Optional[str] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.code = code


class S4AuthenticationError(S4APIError):
    """Credentials were rejected (401/403)."""


class S4NotFoundError(S4APIError):
    """Bucket or key does not exist (404)."""


class S4RateLimitError(S4APIError):
    """The store asked us to slow down (429 or SlowDown)."""

    retryable = True

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        code: Optional[str] = None,
        retry_after: Optional[float] = None,
    ):
        super().__init__(message, status_code=status_code, code=code)
        self.retry_after = retry_after


class S4ServerError(S4APIError):
    """Server-side failure (5xx)."""

    retryable = True


class S4InvalidResponseError(S4APIError):
    """Response body could not be understood."""


class S4NetworkError(S4Error):
    """Connection failure or timeout."""

    retryable = True


class S4ListingError(S4Error):
    """Enumerating a tree failed after all retries."""


class S4TransferError(S4Error):
    """A single transfer task failed after all retries."""

    def __init__(self, message: str, key: str = ""):
        super().__init__(message)
        self.key = key


class S4WatchCycleError(S4Error):
    """A watch cycle failed; the loop logs it and keeps going."""

    def __init__(self, message: str, cycle: int = 0):
        super().__init__(message)
        self.cycle = cycle

