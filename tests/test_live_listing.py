"""
Tests for live (pass-through) profile listing across one or many accounts.
"""
from klaviyo_hub.services.live_listing import (
    DEFAULT_PAGE_SIZE,
    MAX_PAGE_SIZE,
    clamp_page_size,
    list_live_profiles,
)
from klaviyo_hub.utils.composite_cursor import decode_composite_cursor

from fakes import FakeProvider, make_connection, make_item


def _provider():
    return FakeProvider({
        "token-a": [make_item(f"a{i}", email=f"a{i}@x.com") for i in range(5)],
        "token-b": [make_item(f"b{i}", phone=f"+1555000{i}") for i in range(4)],
    })


def _walk(connections, provider, page_size):
    pages = []
    cursor = None
    for _ in range(20):
        page = list_live_profiles(connections, provider, cursor=cursor, page_size=page_size)
        pages.append(page)
        if page.next_cursor is None:
            break
        cursor = page.next_cursor
    return pages


class TestPageSize:

    def test_defaults_and_bounds(self):
        assert clamp_page_size(None) == DEFAULT_PAGE_SIZE
        assert clamp_page_size(0) == DEFAULT_PAGE_SIZE
        assert clamp_page_size(1000) == MAX_PAGE_SIZE
        assert clamp_page_size(-3) == 1
        assert clamp_page_size(10) == 10


class TestSingleAccount:

    def test_pages_with_upstream_cursor(self):
        provider = _provider()
        connections = [make_connection("a")]

        first = list_live_profiles(connections, provider, page_size=2)
        assert [p.klaviyo_id for p in first.data] == ["a0", "a1"]
        assert first.next_cursor == "2"

        second = list_live_profiles(connections, provider, cursor=first.next_cursor, page_size=2)
        assert [p.klaviyo_id for p in second.data] == ["a2", "a3"]

    def test_carries_account_name(self):
        page = list_live_profiles([make_connection("a", account_name="Shop A")], _provider())
        assert {p.account_name for p in page.data} == {"Shop A"}
        assert page.data[0].email == "a0@x.com"

    def test_upstream_failure_returns_empty_page(self):
        provider = _provider()
        provider.rejected_tokens.add("token-a")
        page = list_live_profiles([make_connection("a")], provider)
        assert page.data == []
        assert page.next_cursor is None

    def test_no_connections(self):
        page = list_live_profiles([], _provider())
        assert page.data == []
        assert page.next_cursor is None


class TestMultiAccount:

    def test_walk_yields_every_profile_once(self):
        provider = _provider()
        connections = [make_connection("a"), make_connection("b")]

        pages = _walk(connections, provider, page_size=3)

        ids = [p.klaviyo_id for page in pages for p in page.data]
        assert len(ids) == len(set(ids)) == 9
        assert all(len(page.data) <= 3 for page in pages)
        assert pages[-1].next_cursor is None

    def test_full_page_defers_unvisited_account(self):
        provider = _provider()
        page = list_live_profiles([make_connection("a"), make_connection("b")], provider, page_size=3)

        assert [p.account_id for p in page.data] == ["a", "a", "a"]
        # b was never fetched and has no entry, so it starts from the top next time
        assert decode_composite_cursor(page.next_cursor) == {"cursors": {"a": "3"}}
        assert [call[0] for call in provider.profile_calls] == ["token-a"]

    def test_exhausted_account_is_not_restarted(self):
        provider = _provider()
        connections = [make_connection("a"), make_connection("b")]
        pages = _walk(connections, provider, page_size=4)

        a_calls = [call for call in provider.profile_calls if call[0] == "token-a"]
        assert len(a_calls) == 2
        ids = [p.klaviyo_id for page in pages for p in page.data]
        assert sorted(ids) == sorted([f"a{i}" for i in range(5)] + [f"b{i}" for i in range(4)])

    def test_failing_account_is_skipped(self):
        provider = _provider()
        provider.rejected_tokens.add("token-a")
        page = list_live_profiles([make_connection("a"), make_connection("b")], provider, page_size=10)

        assert [p.klaviyo_id for p in page.data] == ["b0", "b1", "b2", "b3"]
        assert page.next_cursor is None

    def test_garbage_cursor_starts_from_top(self):
        provider = _provider()
        page = list_live_profiles(
            [make_connection("a"), make_connection("b")], provider, cursor="%%%", page_size=2
        )
        assert [p.klaviyo_id for p in page.data] == ["a0", "a1"]
