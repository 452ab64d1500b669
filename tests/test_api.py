"""
HTTP boundary tests.

The store, provider and backfill submitter are swapped through
app.dependency_overrides; the lifespan (database init, scheduler) is not run.
"""
import pytest
from fastapi.testclient import TestClient

from klaviyo_hub.connectors.base import ConfigError
from klaviyo_hub.dependencies import get_backfill_submitter, get_provider, get_store
from klaviyo_hub.main import app
from klaviyo_hub.store.records import DEFAULT_ACCOUNT_NAME

from fakes import FakeProvider, make_connection, make_item, make_profile


class RecordingSubmitter:
    def __init__(self):
        self.calls = []

    def __call__(self, account_ids=None):
        self.calls.append(account_ids)


@pytest.fixture
def provider():
    return FakeProvider({
        "token-a": [make_item(f"a{i}", email=f"a{i}@x.com") for i in range(3)],
        "token-b": [make_item(f"b{i}", email=f"b{i}@x.com") for i in range(2)],
    })


@pytest.fixture
def submitter():
    return RecordingSubmitter()


@pytest.fixture
def client(store, provider, submitter):
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_provider] = lambda: provider
    app.dependency_overrides[get_backfill_submitter] = lambda: submitter
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def cached(store):
    store.save_connection(make_connection("a"))
    store.save_connection(make_connection("b"))
    store.upsert_profiles([
        make_profile("a", "p1", email="shared@x.com",
                     subscriptions={"email": {"marketing": {"consent": "SUBSCRIBED"}}}),
        make_profile("b", "p2", email="Shared@x.com"),
        make_profile("a", "p3", phone="+15550100"),
    ])
    return store


# ────────────────────────────────────────────
# HEALTH
# ────────────────────────────────────────────


class TestHealth:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_status(self, client):
        body = client.get("/status").json()
        assert body["backfill"]["strategy"] == "swap"
        assert body["scheduler"]["running"] is False

    def test_root_lists_endpoints(self, client):
        assert "profiles" in client.get("/").json()["endpoints"]


# ────────────────────────────────────────────
# CACHED PROFILES
# ────────────────────────────────────────────


class TestProfiles:

    def test_list_shape(self, client, cached, submitter):
        body = client.get("/api/profiles").json()

        assert body["total"] == 3
        assert body["links"]["next"] is None
        first = body["data"][0]
        assert first["klaviyo_id"] == "p3"  # no email sorts first
        assert first["subscription_statuses"] == {
            "email_marketing": "n/a",
            "sms_marketing": "never_subscribed",
            "sms_transactional": "never_subscribed",
        }
        assert submitter.calls == []

    def test_overlap_filter(self, client, cached):
        body = client.get("/api/profiles", params={"overlaps_email": "1"}).json()
        assert sorted(row["klaviyo_id"] for row in body["data"]) == ["p1", "p2"]
        assert all(row["overlaps"]["email"] for row in body["data"])
        assert all(row["counts"]["email"] == 2 for row in body["data"])

    def test_consent_filter(self, client, cached):
        body = client.get("/api/profiles", params={"email_marketing": "subscribed"}).json()
        assert [row["klaviyo_id"] for row in body["data"]] == ["p1"]
        assert body["total"] == 1

    def test_pagination(self, client, cached):
        first = client.get("/api/profiles", params={"size": 2}).json()
        assert len(first["data"]) == 2
        assert first["links"]["next"] == "2"

        second = client.get("/api/profiles", params={"size": 2, "cursor": first["links"]["next"]}).json()
        assert len(second["data"]) == 1
        assert second["links"]["next"] is None

    def test_all_ignores_size(self, client, cached):
        body = client.get("/api/profiles", params={"all": "true", "size": 1}).json()
        assert len(body["data"]) == 3
        assert body["links"]["next"] is None

    def test_account_subset(self, client, cached):
        body = client.get("/api/profiles", params={"accounts": "b"}).json()
        assert [row["account_id"] for row in body["data"]] == ["b"]

    def test_multiple_exclusive_filters_rejected(self, client, cached):
        response = client.get("/api/profiles", params={"email_only": "1", "phone_only": "1"})
        assert response.status_code == 400

    def test_cold_cache_schedules_backfill(self, client, store, submitter):
        store.save_connection(make_connection("a"))

        response = client.get("/api/profiles")

        assert response.status_code == 200
        assert response.json()["data"] == []
        assert submitter.calls == [None]

    def test_empty_cache_without_connections(self, client, submitter):
        assert client.get("/api/profiles").json()["total"] == 0
        assert submitter.calls == []

    def test_stats(self, client, cached):
        assert client.get("/api/profiles/stats").json() == {"total": 3, "by_account": {"a": 2, "b": 1}}


# ────────────────────────────────────────────
# CONNECTED ACCOUNTS
# ────────────────────────────────────────────


class TestConnectedAccounts:

    def test_list_resolves_placeholder_name(self, client, store, provider):
        store.save_connection(make_connection("a", account_name=DEFAULT_ACCOUNT_NAME))
        provider.accounts["token-a"] = [
            {"id": "a", "attributes": {"contact_information": {"organization_name": "Acme"}}}
        ]

        body = client.get("/api/connected-accounts").json()

        assert body["data"][0]["account_name"] == "Acme"
        assert body["data"][0]["sync"] == {"state": "idle", "processed": 0}
        assert "accounts_raw" not in body["data"][0]
        assert store.get_connection("a").account_name == "Acme"

    def test_name_lookup_failure_keeps_placeholder(self, client, store, provider):
        store.save_connection(make_connection("a", account_name=DEFAULT_ACCOUNT_NAME))
        provider.account_lookup_error = True
        body = client.get("/api/connected-accounts").json()
        assert body["data"][0]["account_name"] == DEFAULT_ACCOUNT_NAME

    def test_debug_includes_raw_accounts(self, client, store, provider):
        store.save_connection(make_connection("a", account_name=DEFAULT_ACCOUNT_NAME))
        provider.accounts["token-a"] = [{"id": "a", "attributes": {"name": "Shop"}}]
        body = client.get("/api/connected-accounts", params={"debug": "1"}).json()
        assert body["data"][0]["accounts_raw"] == [{"id": "a", "attributes": {"name": "Shop"}}]

    def test_sync_status_reported(self, client, store):
        store.save_connection(make_connection("a"))
        store.set_sync_status("a", state="running", processed=40, total=100)
        sync = client.get("/api/connected-accounts").json()["data"][0]["sync"]
        assert sync["state"] == "running"
        assert sync["processed"] == 40
        assert sync["total"] == 100

    def test_delete(self, client, cached):
        response = client.delete("/api/connected-accounts/a")
        assert response.json() == {"ok": True}
        assert [c.account_id for c in cached.get_connections()] == ["b"]
        assert cached.count_profiles_by_account() == {"b": 1}

    def test_delete_blank_id(self, client):
        assert client.delete("/api/connected-accounts/%20").status_code == 400


# ────────────────────────────────────────────
# SYNC AND LIVE LISTING
# ────────────────────────────────────────────


class TestKlaviyoEndpoints:

    def test_sync_all(self, client, store):
        store.save_connection(make_connection("a"))
        store.save_connection(make_connection("b"))

        body = client.post("/api/klaviyo/sync").json()

        assert sorted((r["account_id"], r["count"]) for r in body["results"]) == [("a", 3), ("b", 2)]
        assert store.count_profiles_by_account() == {"a": 3, "b": 2}

    def test_sync_reports_per_account_errors(self, client, store, provider):
        store.save_connection(make_connection("a", refresh_token=None))
        store.save_connection(make_connection("b"))
        provider.rejected_tokens.add("token-a")

        results = {r["account_id"]: r for r in client.post("/api/klaviyo/sync").json()["results"]}

        assert "error" in results["a"] and "count" not in results["a"]
        assert results["b"]["count"] == 2

    def test_sync_one_account(self, client, store):
        store.save_connection(make_connection("a"))
        store.save_connection(make_connection("b"))
        body = client.post("/api/klaviyo/sync", params={"accountId": "b"}).json()
        assert body["results"] == [{"account_id": "b", "count": 2}]

    def test_sync_unknown_account(self, client, store):
        assert client.post("/api/klaviyo/sync", params={"accountId": "zzz"}).status_code == 404

    def test_live_profiles_single_account(self, client, store):
        store.save_connection(make_connection("a"))
        body = client.get("/api/klaviyo/profiles", params={"accountId": "a", "size": 2}).json()
        assert [p["klaviyo_id"] for p in body["data"]] == ["a0", "a1"]
        assert body["links"]["next"] == "2"

    def test_live_profiles_all_accounts(self, client, store):
        store.save_connection(make_connection("a"))
        store.save_connection(make_connection("b"))
        body = client.get("/api/klaviyo/profiles", params={"size": 10}).json()
        assert len(body["data"]) == 5
        assert body["links"]["next"] is None


# ────────────────────────────────────────────
# OAUTH
# ────────────────────────────────────────────


class TestOAuth:

    def test_authorize_dry_run(self, client):
        body = client.get("/api/auth/klaviyo/authorize", params={"dryRun": "1"}).json()
        assert body["origin"] == "http://testserver"
        assert body["redirect_uri_effective"] == "http://testserver/api/auth/klaviyo/callback"
        assert body["authorize_url"].startswith("https://provider.test/authorize")

    def test_authorize_sets_cookies_and_redirects(self, client):
        response = client.get("/api/auth/klaviyo/authorize", follow_redirects=False)
        assert response.status_code == 307
        assert response.headers["location"].startswith("https://provider.test/authorize")
        cookies = " ".join(response.headers.get_list("set-cookie"))
        assert "kl_state=" in cookies
        assert "kl_verifier=" in cookies
        assert "HttpOnly" in cookies

    def test_authorize_without_client_id(self, client, provider, monkeypatch):
        def broken(*args, **kwargs):
            raise ConfigError("KLAVIYO_CLIENT_ID is not set")

        monkeypatch.setattr(provider, "build_authorize_url", broken)
        assert client.get("/api/auth/klaviyo/authorize").status_code == 500

    def test_callback_provider_error(self, client):
        response = client.get("/api/auth/klaviyo/callback", params={"error": "access_denied"},
                              follow_redirects=False)
        assert response.headers["location"] == "http://testserver/dashboard?error=access_denied"

    def test_callback_missing_params(self, client):
        response = client.get("/api/auth/klaviyo/callback", follow_redirects=False)
        assert response.headers["location"].endswith("error=missing_code_or_state")

    def test_callback_state_mismatch(self, client, store):
        client.cookies.set("kl_state", "expected")
        client.cookies.set("kl_verifier", "verifier")
        response = client.get("/api/auth/klaviyo/callback", params={"code": "abc", "state": "forged"},
                              follow_redirects=False)
        assert response.headers["location"].endswith("error=invalid_state")
        assert store.get_connections() == []

    def test_callback_success(self, client, store, provider, submitter):
        provider.accounts["access-abc"] = [
            {"id": "acc1", "attributes": {"contact_information": {"organization_name": "Acme"}}}
        ]
        client.cookies.set("kl_state", "st")
        client.cookies.set("kl_verifier", "verifier")

        response = client.get("/api/auth/klaviyo/callback", params={"code": "abc", "state": "st"},
                              follow_redirects=False)

        assert response.status_code == 307
        assert response.headers["location"] == "http://testserver/dashboard?connected=acc1"
        assert provider.exchanged == [("abc", "verifier", "http://testserver/api/auth/klaviyo/callback")]
        saved = store.get_connection("acc1")
        assert saved.account_name == "Acme"
        assert saved.refresh_token == "refresh-abc"
        assert submitter.calls == [["acc1"]]
        cookies = " ".join(response.headers.get_list("set-cookie"))
        assert "kl_state=" in cookies and "kl_verifier=" in cookies

    def test_callback_without_account_lookup(self, client, store):
        client.cookies.set("kl_state", "st")
        client.cookies.set("kl_verifier", "verifier")
        response = client.get("/api/auth/klaviyo/callback", params={"code": "zz", "state": "st"},
                              follow_redirects=False)
        assert response.headers["location"].endswith("connected=unknown_account")
        assert store.get_connection("unknown_account").account_name == DEFAULT_ACCOUNT_NAME
