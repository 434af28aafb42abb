"""Tree listing for sync operations."""

import logging
import time
from typing import Callable, Optional

from ..exceptions import S4Error, S4ListingError
from ..models import ObjectEntry
from ..retry import RetryPolicy
from ..utils import DEFAULT_MAX_RETRIES
from .operations import ObjectStore

logger = logging.getLogger(__name__)


class ObjectLister:
    """Enumerates a tree into a key-sorted list of entries.

    Remote listings are paginated; each page request goes through the
    retry policy. A listing is all or nothing: if any page fails after
    retries, :class:`S4ListingError` is raised and no entries are returned,
    so a plan is never built from a partial view.

    Examples:
        >>> lister = ObjectLister()
        >>> entries = lister.list(LocalStore(Path("/data")))
        >>> [e.key for e in entries]
        ['a.txt', 'docs/b.txt']
    """

    def __init__(
        self,
        retry: Optional[RetryPolicy] = None,
        on_page: Optional[Callable[[int], None]] = None,
    ):
        """Initialize the lister.

        Args:
            retry: Retry policy for page requests
            on_page: Called with the running entry count after each page
        """
        self.retry = retry or RetryPolicy(max_retries=DEFAULT_MAX_RETRIES)
        self.on_page = on_page

    def list(self, store: ObjectStore) -> list[ObjectEntry]:
        """List every entry under the store's scope, sorted by key.

        Args:
            store: Local or remote store

        Returns:
            Entries in ascending key order, unique by key

        Raises:
            S4ListingError: If a page cannot be fetched
        """
        started = time.monotonic()
        entries: dict[str, ObjectEntry] = {}
        token: Optional[str] = None
        pages = 0

        while True:
            try:
                page = self.retry.call(
                    lambda: store.list_page(token), f"list {store} (page {pages + 1})"
                )
            except S4ListingError:
                raise
            except S4Error as e:
                raise S4ListingError(f"Failed to list {store}: {e}") from e
            pages += 1

            for entry in page.entries:
                if entry.key in entries:
                    logger.warning(f"Duplicate key in listing of {store}: {entry.key}")
                entries[entry.key] = entry
            if self.on_page is not None:
                self.on_page(len(entries))

            if page.is_last:
                break
            if page.next_token == token:
                raise S4ListingError(
                    f"Listing of {store} returned the same continuation token twice"
                )
            token = page.next_token

        result = sorted(entries.values(), key=lambda e: e.key)
        logger.debug(
            f"Listed {len(result)} entries from {store} in {pages} page(s) "
            f"({time.monotonic() - started:.2f}s)"
        )
        return result
