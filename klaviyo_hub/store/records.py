"""
Domain records shared by the store, the backfill engine and the query engine
"""
from dataclasses import asdict, dataclass, replace
from datetime import datetime
from typing import Any, Dict, Optional

DEFAULT_ACCOUNT_NAME = "Klaviyo Account"

SYNC_IDLE = "idle"
SYNC_RUNNING = "running"


@dataclass
class Connection:
    """One connected account and its OAuth credentials"""
    account_id: str
    access_token: str
    account_name: Optional[str] = None
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None

    def with_tokens(self, access_token: str, refresh_token: Optional[str], expires_at: datetime) -> "Connection":
        return replace(self, access_token=access_token, refresh_token=refresh_token, expires_at=expires_at)


@dataclass
class ProfileRecord:
    """Cached profile, keyed by (account_id, klaviyo_id)"""
    account_id: str
    klaviyo_id: str
    account_name: Optional[str] = None
    external_id: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    subscriptions: Optional[Dict[str, Any]] = None

    @property
    def key(self) -> tuple:
        return (self.account_id, self.klaviyo_id)


@dataclass
class SyncStatus:
    """Backfill progress for one account, last write wins"""
    account_id: str
    state: str = SYNC_IDLE
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    processed: int = 0
    total: Optional[int] = None
    last_page_size: Optional[int] = None
    last_error: Optional[str] = None

    def merged(self, **patch) -> "SyncStatus":
        """Copy with every key in `patch` overwritten, explicit None included"""
        patch.pop("account_id", None)
        return replace(self, **patch)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
