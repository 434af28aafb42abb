"""Sync pair: the source and destination scopes of one sync run."""

from collections.abc import Container
from dataclasses import dataclass
from pathlib import Path

from ..exceptions import S4ConfigError
from ..models import Scope


def parse_target(value: str, aliases: Container[str]) -> Scope:
    """Parse a command-line target.

    ``alias/bucket[/prefix]`` is a remote scope when the first segment is a
    configured alias; anything else is a local path.

    Args:
        value: Target as typed by the user
        aliases: Names of configured aliases

    Returns:
        Local or remote scope

    Raises:
        S4ConfigError: If the target is empty

    Examples:
        >>> parse_target("minio/photos/2024", {"minio"})
        Scope(origin=<Origin.REMOTE: 'remote'>, root='photos', prefix='2024', alias='minio')
        >>> parse_target("./photos", {"minio"}).is_local
        True
    """
    if not value:
        raise S4ConfigError("Target must not be empty")
    parts = value.split("/", 2)
    if parts[0] in aliases:
        bucket = parts[1] if len(parts) > 1 else ""
        prefix = parts[2] if len(parts) > 2 else ""
        return Scope.remote(parts[0], bucket, prefix)
    return Scope.local(Path(value).expanduser())


@dataclass(frozen=True)
class SyncPair:
    """Source and destination of a one-way sync.

    Examples:
        >>> pair = SyncPair.parse("./photos", "minio/backup/photos", {"minio"})
        >>> str(pair)
        'photos -> minio/backup/photos'
    """

    source: Scope
    destination: Scope

    @classmethod
    def parse(cls, source: str, destination: str, aliases: Container[str]) -> "SyncPair":
        pair = cls(parse_target(source, aliases), parse_target(destination, aliases))
        pair.validate()
        return pair

    def validate(self) -> None:
        """Check that both scopes can take part in a sync.

        Raises:
            S4ConfigError: If a scope is unusable
        """
        for role, scope in (("Source", self.source), ("Destination", self.destination)):
            if not scope.is_local and not scope.bucket:
                raise S4ConfigError(f"{role} {scope} must include a bucket")

        if self.source.is_local:
            if not self.source.path.exists():
                raise S4ConfigError(f"Source directory does not exist: {self.source}")
            if not self.source.path.is_dir():
                raise S4ConfigError(f"Source is not a directory: {self.source}")
        if self.destination.is_local and self.destination.path.exists():
            if not self.destination.path.is_dir():
                raise S4ConfigError(f"Destination is not a directory: {self.destination}")

        if self.source == self.destination:
            raise S4ConfigError("Source and destination are the same")

    def __str__(self) -> str:
        return f"{self.source} -> {self.destination}"
