"""
Contract tests run against both ProfileStore implementations.
"""
from datetime import datetime, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from klaviyo_hub.models.base import init_db
from klaviyo_hub.store.memory import MemoryProfileStore
from klaviyo_hub.store.records import SYNC_IDLE, SYNC_RUNNING
from klaviyo_hub.store.sql import SqlProfileStore
from klaviyo_hub.services.connection_service import disconnect_account

from fakes import make_connection, make_profile


@pytest.fixture(params=["memory", "sql"])
def any_store(request, tmp_path):
    if request.param == "memory":
        return MemoryProfileStore()
    engine = create_engine(f"sqlite:///{tmp_path / 'store.db'}")
    init_db(bind=engine)
    return SqlProfileStore(sessionmaker(bind=engine, autoflush=False))


class TestConnections:

    def test_save_and_get(self, any_store):
        any_store.save_connection(make_connection("a"))
        any_store.save_connection(make_connection("b"))
        assert sorted(c.account_id for c in any_store.get_connections()) == ["a", "b"]
        assert any_store.get_connection("a").access_token == "token-a"
        assert any_store.get_connection("missing") is None

    def test_one_connection_per_account(self, any_store):
        any_store.save_connection(make_connection("a", access_token="first"))
        any_store.save_connection(make_connection("a", access_token="second"))
        connections = any_store.get_connections()
        assert len(connections) == 1
        assert connections[0].access_token == "second"

    def test_update_tokens(self, any_store):
        any_store.save_connection(make_connection("a"))
        expires_at = datetime.utcnow() + timedelta(hours=1)
        any_store.update_connection_tokens("a", access_token="new", refresh_token="r2", expires_at=expires_at)
        saved = any_store.get_connection("a")
        assert saved.access_token == "new"
        assert saved.refresh_token == "r2"
        assert saved.expires_at > datetime.utcnow()

    def test_update_tokens_unknown_account_is_noop(self, any_store):
        any_store.update_connection_tokens("ghost", "t", None, datetime.utcnow())
        assert any_store.get_connections() == []


class TestProfileCache:

    def test_upsert_overwrites_by_key(self, any_store):
        any_store.upsert_profiles([make_profile("a", "p1", email="old@x.com")])
        any_store.upsert_profiles([make_profile("a", "p1", email="new@x.com")])
        profiles = any_store.get_cached_profiles()
        assert len(profiles) == 1
        assert profiles[0].email == "new@x.com"

    def test_same_profile_id_in_two_accounts_is_two_rows(self, any_store):
        any_store.upsert_profiles([make_profile("a", "p1"), make_profile("b", "p1")])
        assert any_store.count_profiles_by_account() == {"a": 1, "b": 1}

    def test_subscriptions_round_trip(self, any_store):
        subs = {"email": {"marketing": {"consent": "SUBSCRIBED", "suppression": []}}}
        any_store.upsert_profiles([make_profile("a", "p1", email="e@x.com", subscriptions=subs)])
        assert any_store.get_cached_profiles()[0].subscriptions == subs

    def test_clear_one_account(self, any_store):
        any_store.upsert_profiles([make_profile("a", "p1"), make_profile("b", "p2")])
        any_store.clear_profiles_for_account("a")
        assert any_store.count_profiles_by_account() == {"b": 1}

    def test_replace_swaps_account_rows(self, any_store):
        any_store.upsert_profiles([make_profile("a", "old"), make_profile("b", "other")])
        any_store.replace_profiles_for_account("a", [
            make_profile("a", "new1"),
            make_profile("a", "new2"),
            make_profile("a", "new2"),
        ])
        ids = sorted(p.klaviyo_id for p in any_store.get_cached_profiles())
        assert ids == ["new1", "new2", "other"]


class TestSyncStatus:

    def test_patch_merges(self, any_store):
        started = datetime.utcnow()
        any_store.set_sync_status("a", state=SYNC_RUNNING, started_at=started, processed=0)
        any_store.set_sync_status("a", processed=50, total=120, last_page_size=50)

        status = any_store.get_sync_status("a")
        assert status.state == SYNC_RUNNING
        assert status.processed == 50
        assert status.total == 120
        assert status.started_at == started

    def test_explicit_none_clears_field(self, any_store):
        any_store.set_sync_status("a", last_error="boom")
        any_store.set_sync_status("a", last_error=None)
        assert any_store.get_sync_status("a").last_error is None

    def test_default_state(self, any_store):
        status = any_store.set_sync_status("a", processed=3)
        assert status.state == SYNC_IDLE
        assert set(any_store.get_all_sync_statuses()) == {"a"}


class TestDisconnect:

    def test_cascade_leaves_other_accounts(self, any_store):
        for account_id in ("a", "b"):
            any_store.save_connection(make_connection(account_id))
            any_store.set_sync_status(account_id, processed=2)
        any_store.upsert_profiles([
            make_profile("a", "p1", email="shared@x.com"),
            make_profile("a", "p2"),
            make_profile("b", "p1", email="shared@x.com"),
        ])

        disconnect_account(any_store, "a")

        assert [c.account_id for c in any_store.get_connections()] == ["b"]
        assert any_store.count_profiles_by_account() == {"b": 1}
        assert any_store.get_sync_status("a") is None
        assert any_store.get_sync_status("b").processed == 2

    def test_disconnect_unknown_account(self, any_store):
        any_store.save_connection(make_connection("a"))
        disconnect_account(any_store, "nope")
        assert len(any_store.get_connections()) == 1
