"""
Durable store interface

Everything the hub persists goes through a ProfileStore: connections, the
cross-account profile cache and per-account sync status. Implementations are
injected (see klaviyo_hub.dependencies); nothing reaches for a module-level
instance.
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from klaviyo_hub.store.records import Connection, ProfileRecord, SyncStatus


class ProfileStore(ABC):
    """
    Repository for connections, cached profiles and sync status

    Writes are read-then-write without cross-call transactions. Callers that
    need per-account exclusivity (the backfill engine) serialize themselves.
    """

    # Connections

    @abstractmethod
    def get_connections(self) -> List[Connection]:
        pass

    def get_connection(self, account_id: str) -> Optional[Connection]:
        for connection in self.get_connections():
            if connection.account_id == account_id:
                return connection
        return None

    @abstractmethod
    def save_connection(self, connection: Connection) -> Connection:
        """Insert or replace the connection for connection.account_id"""
        pass

    @abstractmethod
    def update_connection_tokens(
        self,
        account_id: str,
        access_token: str,
        refresh_token: Optional[str],
        expires_at: datetime
    ) -> None:
        pass

    @abstractmethod
    def remove_connection(self, account_id: str) -> None:
        """Delete the connection, its cached profiles and its sync status"""
        pass

    # Profile cache

    @abstractmethod
    def get_cached_profiles(self) -> List[ProfileRecord]:
        pass

    @abstractmethod
    def upsert_profiles(self, profiles: Iterable[ProfileRecord]) -> None:
        pass

    @abstractmethod
    def clear_profiles_for_account(self, account_id: str) -> None:
        pass

    @abstractmethod
    def replace_profiles_for_account(self, account_id: str, profiles: Iterable[ProfileRecord]) -> None:
        """Swap the account's cached rows for `profiles` in one write"""
        pass

    def count_profiles_by_account(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for profile in self.get_cached_profiles():
            counts[profile.account_id] = counts.get(profile.account_id, 0) + 1
        return counts

    # Sync status

    @abstractmethod
    def get_all_sync_statuses(self) -> Dict[str, SyncStatus]:
        pass

    def get_sync_status(self, account_id: str) -> Optional[SyncStatus]:
        return self.get_all_sync_statuses().get(account_id)

    @abstractmethod
    def set_sync_status(self, account_id: str, **patch) -> SyncStatus:
        """Merge `patch` into the account's status and return the result"""
        pass
