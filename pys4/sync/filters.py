"""Entry filters applied to source listings before planning."""

import logging
import time
from dataclasses import dataclass
from datetime import timedelta
from fnmatch import fnmatchcase
from typing import Optional

from ..exceptions import S4ConfigError
from ..models import ObjectEntry

logger = logging.getLogger(__name__)


class EntryFilter:
    """Base class for predicates over an entry.

    ``accepts`` is called with the instant captured for the current cycle so
    that every entry of one listing is judged against the same clock.
    """

    def accepts(self, entry: ObjectEntry, now: float) -> bool:
        raise NotImplementedError


class ExcludeGlob(EntryFilter):
    """Reject entries whose relative key matches a shell-style pattern.

    ``*`` also matches ``/``, so ``*.tmp`` excludes matching keys at any depth
    while ``a.txt`` only excludes the top-level key.

    Examples:
        >>> f = ExcludeGlob(["*.tmp"])
        >>> f.accepts(entry_for("build/out.tmp"), now=0)
        False
    """

    def __init__(self, patterns: list[str]):
        for pattern in patterns:
            if not pattern or not pattern.strip():
                raise S4ConfigError("Exclude pattern must not be empty")
        self.patterns = list(patterns)

    def matches(self, key: str) -> Optional[str]:
        """Return the first pattern matching ``key``, if any."""
        for pattern in self.patterns:
            if fnmatchcase(key, pattern):
                return pattern
        return None

    def accepts(self, entry: ObjectEntry, now: float) -> bool:
        pattern = self.matches(entry.key)
        if pattern is not None:
            logger.debug(f"Excluding {entry.key} (matches {pattern!r})")
            return False
        return True

    def __repr__(self) -> str:
        return f"ExcludeGlob({self.patterns!r})"


@dataclass(frozen=True)
class OlderThan(EntryFilter):
    """Keep only entries at least ``age`` old."""

    age: timedelta

    def accepts(self, entry: ObjectEntry, now: float) -> bool:
        return now - entry.last_modified >= self.age.total_seconds()


@dataclass(frozen=True)
class NewerThan(EntryFilter):
    """Keep only entries at most ``age`` old."""

    age: timedelta

    def accepts(self, entry: ObjectEntry, now: float) -> bool:
        return now - entry.last_modified <= self.age.total_seconds()


class FilterChain:
    """All configured filters combined with AND.

    An entry is kept only when every filter accepts it. An empty chain
    keeps everything.

    Examples:
        >>> chain = FilterChain([ExcludeGlob(["*.log"]), OlderThan(timedelta(days=1))])
        >>> kept = chain.apply(entries)
    """

    def __init__(self, filters: Optional[list[EntryFilter]] = None):
        self.filters: list[EntryFilter] = list(filters or [])

    @classmethod
    def from_options(
        cls,
        exclude: tuple[str, ...] = (),
        older_than: Optional[timedelta] = None,
        newer_than: Optional[timedelta] = None,
    ) -> "FilterChain":
        """Build a chain from parsed sync options."""
        filters: list[EntryFilter] = []
        if exclude:
            filters.append(ExcludeGlob(list(exclude)))
        if older_than is not None:
            filters.append(OlderThan(older_than))
        if newer_than is not None:
            filters.append(NewerThan(newer_than))
        return cls(filters)

    def __len__(self) -> int:
        return len(self.filters)

    def excludes(self, entry: ObjectEntry, now: Optional[float] = None) -> bool:
        """True if any filter rejects the entry."""
        if now is None:
            now = time.time()
        return not all(f.accepts(entry, now) for f in self.filters)

    def apply(
        self, entries: list[ObjectEntry], now: Optional[float] = None
    ) -> list[ObjectEntry]:
        """Return the entries every filter accepts, keeping their order.

        Args:
            entries: Entries to filter
            now: Reference instant (captured once if omitted)

        Returns:
            Filtered list
        """
        if not self.filters:
            return list(entries)
        if now is None:
            now = time.time()
        kept = [entry for entry in entries if not self.excludes(entry, now)]
        if len(kept) != len(entries):
            logger.debug(f"Filters excluded {len(entries) - len(kept)} of {len(entries)} entries")
        return kept
