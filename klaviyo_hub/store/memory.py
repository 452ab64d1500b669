"""In-memory ProfileStore for tests and one-off scripts"""
import threading
from dataclasses import replace
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from klaviyo_hub.store.base import ProfileStore
from klaviyo_hub.store.records import Connection, ProfileRecord, SyncStatus


class MemoryProfileStore(ProfileStore):
    """Dict-backed store; returns copies so callers can't mutate state"""

    def __init__(self):
        self._lock = threading.Lock()
        self._connections: Dict[str, Connection] = {}
        self._profiles: Dict[tuple, ProfileRecord] = {}
        self._statuses: Dict[str, SyncStatus] = {}

    def get_connections(self) -> List[Connection]:
        with self._lock:
            return [replace(c) for c in self._connections.values()]

    def save_connection(self, connection: Connection) -> Connection:
        with self._lock:
            self._connections[connection.account_id] = replace(connection)
        return connection

    def update_connection_tokens(
        self,
        account_id: str,
        access_token: str,
        refresh_token: Optional[str],
        expires_at: datetime
    ) -> None:
        with self._lock:
            existing = self._connections.get(account_id)
            if existing:
                self._connections[account_id] = existing.with_tokens(access_token, refresh_token, expires_at)

    def remove_connection(self, account_id: str) -> None:
        with self._lock:
            self._connections.pop(account_id, None)
            self._statuses.pop(account_id, None)
            self._drop_account_rows(account_id)

    def get_cached_profiles(self) -> List[ProfileRecord]:
        with self._lock:
            return [replace(p) for p in self._profiles.values()]

    def upsert_profiles(self, profiles: Iterable[ProfileRecord]) -> None:
        with self._lock:
            for profile in profiles:
                self._profiles[profile.key] = replace(profile)

    def clear_profiles_for_account(self, account_id: str) -> None:
        with self._lock:
            self._drop_account_rows(account_id)

    def replace_profiles_for_account(self, account_id: str, profiles: Iterable[ProfileRecord]) -> None:
        with self._lock:
            self._drop_account_rows(account_id)
            for profile in profiles:
                self._profiles[profile.key] = replace(profile)

    def _drop_account_rows(self, account_id: str):
        for key in [k for k in self._profiles if k[0] == account_id]:
            del self._profiles[key]

    def get_all_sync_statuses(self) -> Dict[str, SyncStatus]:
        with self._lock:
            return {k: replace(v) for k, v in self._statuses.items()}

    def set_sync_status(self, account_id: str, **patch) -> SyncStatus:
        with self._lock:
            previous = self._statuses.get(account_id) or SyncStatus(account_id=account_id)
            status = previous.merged(**patch)
            self._statuses[account_id] = status
            return replace(status)
