"""Tests for the ObjectLister."""

from unittest.mock import Mock

import pytest

from pys4.exceptions import S4AuthenticationError, S4ListingError, S4NetworkError
from pys4.models import ListPage, ObjectEntry, Origin
from pys4.retry import NO_RETRY, RetryPolicy
from pys4.sync.operations import LocalStore, ObjectStore
from pys4.sync.scanner import ObjectLister


def entry(key: str, size: int = 1) -> ObjectEntry:
    return ObjectEntry(key=key, size=size, last_modified=0.0, origin=Origin.REMOTE)


def fake_store(*pages) -> Mock:
    store = Mock(spec=ObjectStore)
    store.list_page.side_effect = list(pages)
    return store


class TestObjectLister:
    """Tests for listing and pagination."""

    def test_single_page_is_sorted(self):
        store = fake_store(ListPage(entries=[entry("b"), entry("a/z"), entry("a")]))

        result = ObjectLister(retry=NO_RETRY).list(store)

        assert [e.key for e in result] == ["a", "a/z", "b"]
        store.list_page.assert_called_once_with(None)

    def test_follows_continuation_tokens(self):
        store = fake_store(
            ListPage(entries=[entry("c")], next_token="t1"),
            ListPage(entries=[entry("a")], next_token="t2"),
            ListPage(entries=[entry("b")]),
        )

        result = ObjectLister(retry=NO_RETRY).list(store)

        assert [e.key for e in result] == ["a", "b", "c"]
        assert [c.args[0] for c in store.list_page.call_args_list] == [None, "t1", "t2"]

    def test_duplicate_keys_are_collapsed(self):
        """Test that a key repeated across pages appears once."""
        store = fake_store(
            ListPage(entries=[entry("a", 1)], next_token="t1"),
            ListPage(entries=[entry("a", 2)]),
        )

        result = ObjectLister(retry=NO_RETRY).list(store)

        assert len(result) == 1
        assert result[0].size == 2

    def test_repeated_token_fails(self):
        store = fake_store(
            ListPage(entries=[entry("a")], next_token="same"),
            ListPage(entries=[entry("b")], next_token="same"),
        )
        with pytest.raises(S4ListingError, match="same continuation token"):
            ObjectLister(retry=NO_RETRY).list(store)

    def test_on_page_callback(self):
        store = fake_store(
            ListPage(entries=[entry("a"), entry("b")], next_token="t1"),
            ListPage(entries=[entry("c")]),
        )
        on_page = Mock()

        ObjectLister(retry=NO_RETRY, on_page=on_page).list(store)

        assert [c.args[0] for c in on_page.call_args_list] == [2, 3]

    def test_local_tree(self, tmp_path):
        (tmp_path / "b.txt").write_text("b")
        (tmp_path / "a").mkdir()
        (tmp_path / "a" / "c.txt").write_text("c")

        result = ObjectLister().list(LocalStore(tmp_path))

        assert [e.key for e in result] == ["a/c.txt", "b.txt"]


class TestListingFailures:
    """Tests for retry and error wrapping."""

    def test_transient_page_error_is_retried(self):
        store = fake_store(S4NetworkError("reset"), ListPage(entries=[entry("a")]))
        retry = RetryPolicy(max_retries=2, sleep=Mock())

        result = ObjectLister(retry=retry).list(store)

        assert [e.key for e in result] == ["a"]
        assert store.list_page.call_count == 2

    def test_exhausted_retries_raise_listing_error(self):
        store = fake_store(
            ListPage(entries=[entry("a")], next_token="t1"),
            S4NetworkError("down"),
            S4NetworkError("down"),
        )
        retry = RetryPolicy(max_retries=1, sleep=Mock())

        with pytest.raises(S4ListingError, match="down") as exc_info:
            ObjectLister(retry=retry).list(store)
        assert isinstance(exc_info.value.__cause__, S4NetworkError)

    def test_permanent_error_is_not_retried(self):
        store = fake_store(S4AuthenticationError("denied", status_code=403))
        retry = RetryPolicy(max_retries=3, sleep=Mock())

        with pytest.raises(S4ListingError):
            ObjectLister(retry=retry).list(store)
        assert store.list_page.call_count == 1

    def test_listing_error_passes_through(self):
        store = fake_store(S4ListingError("broken tree"))
        with pytest.raises(S4ListingError, match="broken tree"):
            ObjectLister(retry=NO_RETRY).list(store)
