"""
Profile Backfill Service

Full re-pull of every profile in a connected account into the profile
cache, with transparent token refresh and per-account progress tracking.

Two cache strategies:
- swap (default): rows are staged and the account's cache is replaced in one
  write once pagination finishes, so a sync that fails partway leaves the
  previous cache intact.
- clear_first: the account's cache is cleared up front and each page is
  upserted as it arrives. Progress is visible in listings immediately, but a
  failed sync leaves a partial cache.
"""
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from klaviyo_hub.connectors.base import AuthError, BaseProvider, ProfilePage
from klaviyo_hub.store.base import ProfileStore
from klaviyo_hub.store.records import SYNC_IDLE, SYNC_RUNNING, Connection, ProfileRecord
from klaviyo_hub.utils.logger import log

MAX_PAGES = 10000
STRATEGY_SWAP = "swap"
STRATEGY_CLEAR_FIRST = "clear_first"

_locks_guard = threading.Lock()
_account_locks: Dict[str, threading.Lock] = {}


def _account_lock(account_id: str) -> threading.Lock:
    """Process-wide lock serializing backfills of one account"""
    with _locks_guard:
        lock = _account_locks.get(account_id)
        if lock is None:
            lock = _account_locks[account_id] = threading.Lock()
        return lock


@dataclass
class BackfillOutcome:
    """Per-account result of backfill_all: a count or an error, never both"""
    account_id: str
    count: Optional[int] = None
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        if self.error is not None:
            return {"account_id": self.account_id, "error": self.error}
        return {"account_id": self.account_id, "count": self.count}


def profile_from_item(connection: Connection, item: Dict[str, Any]) -> ProfileRecord:
    """Map a raw provider profile resource to a cache row"""
    attrs = item.get("attributes") or {}
    return ProfileRecord(
        account_id=connection.account_id,
        account_name=connection.account_name,
        klaviyo_id=str(item.get("id")),
        external_id=attrs.get("external_id") or None,
        email=attrs.get("email") or None,
        phone=attrs.get("phone_number") or None,
        subscriptions=attrs.get("subscriptions") or None,
    )


class ProfileBackfillService:
    """Drives full-account profile syncs against a provider"""

    def __init__(
        self,
        store: ProfileStore,
        provider: BaseProvider,
        max_pages: int = MAX_PAGES,
        strategy: str = STRATEGY_SWAP
    ):
        if strategy not in (STRATEGY_SWAP, STRATEGY_CLEAR_FIRST):
            raise ValueError(f"Unknown backfill strategy: {strategy}")
        self.store = store
        self.provider = provider
        self.max_pages = max_pages
        self.strategy = strategy

    def _refresh_connection(self, connection: Connection) -> Connection:
        """Exchange the refresh token and persist the new credentials"""
        tokens = self.provider.refresh(connection.refresh_token)
        refresh_token = tokens.refresh_token or connection.refresh_token
        expires_at = datetime.utcnow() + timedelta(seconds=tokens.expires_in or 3600)
        self.store.update_connection_tokens(
            connection.account_id,
            access_token=tokens.access_token,
            refresh_token=refresh_token,
            expires_at=expires_at,
        )
        log.info(f"Refreshed access token for account {connection.account_id}")
        return connection.with_tokens(tokens.access_token, refresh_token, expires_at)

    def _fetch_page(self, connection: Connection, cursor: Optional[str], page_size: int):
        """
        Fetch one page, refreshing the token at most once on a 401

        Returns:
            (page, connection) where connection carries any refreshed tokens
        """
        try:
            page = self.provider.list_profiles(connection.access_token, cursor=cursor, page_size=page_size)
            return page, connection
        except AuthError:
            if not connection.refresh_token:
                raise
            log.warning(f"Access token rejected for account {connection.account_id}, refreshing")
            connection = self._refresh_connection(connection)
            page = self.provider.list_profiles(connection.access_token, cursor=cursor, page_size=page_size)
            return page, connection

    def backfill_account(self, connection: Connection, page_size: int = 100) -> int:
        """
        Re-sync every profile of one account

        Args:
            connection: Account credentials
            page_size: Profiles per provider page

        Returns:
            Number of profiles processed

        Raises:
            AuthError, UpstreamError: unrecoverable provider failures
        """
        account_id = connection.account_id
        with _account_lock(account_id):
            return self._run_backfill(connection, page_size)

    def _run_backfill(self, connection: Connection, page_size: int) -> int:
        account_id = connection.account_id
        sync_start_time = time.time()
        log.info(f"Starting profile backfill for account {account_id} ({self.strategy})")

        self.store.set_sync_status(
            account_id,
            state=SYNC_RUNNING,
            started_at=datetime.utcnow(),
            finished_at=None,
            processed=0,
            total=None,
            last_page_size=None,
            last_error=None,
        )
        if self.strategy == STRATEGY_CLEAR_FIRST:
            self.store.clear_profiles_for_account(account_id)

        staged: List[ProfileRecord] = []
        processed = 0
        cursor: Optional[str] = None

        try:
            for _ in range(self.max_pages):
                page, connection = self._fetch_page(connection, cursor, page_size)
                page = page or ProfilePage()
                if not page.items:
                    break

                rows = [profile_from_item(connection, item) for item in page.items]
                if self.strategy == STRATEGY_CLEAR_FIRST:
                    self.store.upsert_profiles(rows)
                else:
                    staged.extend(rows)
                processed += len(rows)

                self.store.set_sync_status(
                    account_id,
                    state=SYNC_RUNNING,
                    processed=processed,
                    total=page.total,
                    last_page_size=len(rows),
                )

                cursor = page.next_cursor
                if not cursor:
                    break
            else:
                log.warning(
                    f"Backfill for account {account_id} stopped at the {self.max_pages} page cap"
                )

            if self.strategy == STRATEGY_SWAP:
                self.store.replace_profiles_for_account(account_id, staged)

        except Exception as e:
            log.error(f"Profile backfill failed for account {account_id}: {str(e)}")
            self.store.set_sync_status(
                account_id,
                state=SYNC_IDLE,
                processed=processed,
                finished_at=datetime.utcnow(),
                last_error=str(e)[:500],
            )
            raise

        self.store.set_sync_status(
            account_id,
            state=SYNC_IDLE,
            processed=processed,
            finished_at=datetime.utcnow(),
        )
        log.info(
            f"Profile backfill completed for account {account_id}: "
            f"{processed} profiles in {time.time() - sync_start_time:.1f}s"
        )
        return processed

    def backfill_all(self, connections: List[Connection], page_size: int = 100) -> List[BackfillOutcome]:
        """
        Backfill each account in turn

        Never raises; one account's failure is recorded in its outcome and
        the remaining accounts still run.
        """
        results = []
        for connection in connections:
            try:
                count = self.backfill_account(connection, page_size)
                results.append(BackfillOutcome(account_id=connection.account_id, count=count))
            except Exception as e:
                results.append(BackfillOutcome(account_id=connection.account_id, error=str(e)))
        return results
