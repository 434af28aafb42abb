"""Data models shared by the API client and the sync engine."""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional

from .utils import MTIME_TOLERANCE


class Origin(str, Enum):
    """Where an object tree lives."""

    LOCAL = "local"
    REMOTE = "remote"


@dataclass(frozen=True)
class ObjectEntry:
    """One object in a listing, keyed relative to its scope root."""

    key: str
    """Relative key using forward slashes"""

    size: int
    """Size in bytes"""

    last_modified: float
    """Last modification time (Unix timestamp)"""

    origin: Origin
    """Tree the entry was listed from"""

    content_hash: Optional[str] = None
    """Lowercase hex MD5 of the content, when known"""

    @property
    def fingerprint(self) -> tuple[Optional[str], int, float]:
        """Value used to detect content change."""
        return (self.content_hash, self.size, self.last_modified)

    def same_content(self, other: "ObjectEntry") -> bool:
        """Compare fingerprints of two entries for the same key.

        Content hashes win when both sides have one. Otherwise the entries
        are equal when sizes match and modification times agree within
        ``MTIME_TOLERANCE`` seconds, whichever side is newer.
        """
        if self.content_hash and other.content_hash:
            return self.content_hash == other.content_hash
        if self.size != other.size:
            return False
        return abs(self.last_modified - other.last_modified) <= MTIME_TOLERANCE


@dataclass
class ObjectInfo:
    """Metadata of a single remote object as returned by HEAD or a listing."""

    key: str
    size: int
    last_modified: Optional[float] = None
    etag: str = ""
    content_type: Optional[str] = None
    mtime: Optional[float] = None
    """Source modification time stored as object metadata (HEAD only)"""

    @property
    def md5(self) -> Optional[str]:
        """ETag as an MD5 digest, or None for multipart ETags."""
        etag = self.etag.strip('"').lower()
        if not etag or "-" in etag:
            return None
        return etag


@dataclass
class ListPage:
    """One page of a paginated listing."""

    entries: list = field(default_factory=list)
    next_token: Optional[str] = None
    prefixes: list = field(default_factory=list)
    """Common prefixes when listing with a delimiter"""

    @property
    def is_last(self) -> bool:
        return self.next_token is None


@dataclass(frozen=True)
class Scope:
    """Root of an object tree: a local directory or a bucket + prefix."""

    origin: Origin
    root: str
    """Local directory path, or bucket name for remote scopes"""

    prefix: str = ""
    """Key prefix inside the bucket (remote scopes only)"""

    alias: Optional[str] = None
    """Alias name of the endpoint (remote scopes only)"""

    @classmethod
    def local(cls, path) -> "Scope":
        return cls(origin=Origin.LOCAL, root=str(Path(path)))

    @classmethod
    def remote(cls, alias: str, bucket: str, prefix: str = "") -> "Scope":
        return cls(
            origin=Origin.REMOTE,
            root=bucket,
            prefix=prefix.strip("/"),
            alias=alias,
        )

    @property
    def is_local(self) -> bool:
        return self.origin == Origin.LOCAL

    @property
    def path(self) -> Path:
        """Local directory of a local scope."""
        return Path(self.root)

    @property
    def bucket(self) -> str:
        return self.root

    def __str__(self) -> str:
        if self.is_local:
            return self.root
        parts = [self.alias or "", self.root]
        if self.prefix:
            parts.append(self.prefix)
        return "/".join(parts)
