"""Typed sync options, validated once before any listing."""

from dataclasses import dataclass, field
from datetime import timedelta
from typing import Optional

from ..exceptions import S4ConfigError
from ..retry import RetryPolicy
from ..utils import (
    DEFAULT_MULTIPART_THRESHOLD,
    DEFAULT_PART_SIZE,
    DEFAULT_PART_WORKERS,
    DEFAULT_WATCH_INTERVAL,
    DEFAULT_WORKERS,
    MIN_PART_SIZE,
    parse_duration,
)
from .filters import FilterChain


@dataclass(frozen=True)
class SyncOptions:
    """Every flag that affects a sync run."""

    exclude: tuple[str, ...] = ()
    older_than: Optional[timedelta] = None
    newer_than: Optional[timedelta] = None
    remove: bool = False
    dry_run: bool = False
    overwrite: bool = False
    """Accepted for compatibility; differing objects are always replaced"""

    watch: bool = False
    watch_interval: float = DEFAULT_WATCH_INTERVAL
    workers: int = DEFAULT_WORKERS
    part_workers: int = DEFAULT_PART_WORKERS
    part_size: int = DEFAULT_PART_SIZE
    multipart_threshold: int = DEFAULT_MULTIPART_THRESHOLD
    retry: RetryPolicy = field(default_factory=RetryPolicy)

    def __post_init__(self) -> None:
        for pattern in self.exclude:
            if not pattern or not pattern.strip():
                raise S4ConfigError("Exclude pattern must not be empty")
        if self.workers < 1:
            raise S4ConfigError(f"Workers must be at least 1, got {self.workers}")
        if self.part_workers < 1:
            raise S4ConfigError(
                f"Part workers must be at least 1, got {self.part_workers}"
            )
        if self.part_size < MIN_PART_SIZE:
            raise S4ConfigError(
                f"Part size must be at least {MIN_PART_SIZE // (1024 * 1024)} MiB"
            )
        if self.multipart_threshold < 0:
            raise S4ConfigError("Multipart threshold must not be negative")
        if self.watch_interval <= 0:
            raise S4ConfigError("Watch interval must be positive")
        if (
            self.older_than is not None
            and self.newer_than is not None
            and self.older_than > self.newer_than
        ):
            raise S4ConfigError(
                "--older-than is larger than --newer-than; no object can match"
            )

    @classmethod
    def from_cli(
        cls,
        exclude: tuple[str, ...] = (),
        older_than: Optional[str] = None,
        newer_than: Optional[str] = None,
        part_size_mib: Optional[int] = None,
        **kwargs,
    ) -> "SyncOptions":
        """Build options from raw command-line values.

        Args:
            exclude: Glob patterns
            older_than: Duration string such as ``365d``
            newer_than: Duration string
            part_size_mib: Part size in MiB
            **kwargs: Remaining fields, passed through

        Raises:
            S4ConfigError: If a value is invalid
        """
        if part_size_mib is not None:
            if part_size_mib <= 0:
                raise S4ConfigError(f"Part size must be positive, got {part_size_mib}")
            kwargs["part_size"] = part_size_mib * 1024 * 1024
        return cls(
            exclude=tuple(exclude),
            older_than=parse_duration(older_than) if older_than else None,
            newer_than=parse_duration(newer_than) if newer_than else None,
            **kwargs,
        )

    def filter_chain(self) -> FilterChain:
        return FilterChain.from_options(self.exclude, self.older_than, self.newer_than)
