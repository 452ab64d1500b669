"""SQLAlchemy-backed ProfileStore"""
from contextlib import contextmanager
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session, sessionmaker

from klaviyo_hub.models.klaviyo_data import (
    KlaviyoCachedProfile,
    KlaviyoConnection,
    KlaviyoSyncStatus,
)
from klaviyo_hub.store.base import ProfileStore
from klaviyo_hub.store.records import Connection, ProfileRecord, SyncStatus
from klaviyo_hub.utils.logger import log


def _to_connection(row: KlaviyoConnection) -> Connection:
    return Connection(
        account_id=row.account_id,
        account_name=row.account_name,
        access_token=row.access_token,
        refresh_token=row.refresh_token,
        expires_at=row.expires_at,
    )


def _to_profile(row: KlaviyoCachedProfile) -> ProfileRecord:
    return ProfileRecord(
        account_id=row.account_id,
        klaviyo_id=row.klaviyo_id,
        account_name=row.account_name,
        external_id=row.external_id,
        email=row.email,
        phone=row.phone,
        subscriptions=row.subscriptions,
    )


def _to_status(row: KlaviyoSyncStatus) -> SyncStatus:
    return SyncStatus(
        account_id=row.account_id,
        state=row.state,
        started_at=row.started_at,
        finished_at=row.finished_at,
        processed=row.processed or 0,
        total=row.total,
        last_page_size=row.last_page_size,
        last_error=row.last_error,
    )


def _profile_row(profile: ProfileRecord) -> KlaviyoCachedProfile:
    return KlaviyoCachedProfile(
        account_id=profile.account_id,
        klaviyo_id=profile.klaviyo_id,
        account_name=profile.account_name,
        external_id=profile.external_id,
        email=profile.email,
        phone=profile.phone,
        subscriptions=profile.subscriptions,
        synced_at=datetime.utcnow(),
    )


class SqlProfileStore(ProfileStore):
    """
    Store backed by the klaviyo_* tables

    Each public method is one committed unit of work.
    """

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    @contextmanager
    def _session(self):
        db: Session = self.session_factory()
        try:
            yield db
            db.commit()
        except Exception as e:
            log.error(f"Profile store write failed: {str(e)}")
            db.rollback()
            raise
        finally:
            db.close()

    # Connections

    def get_connections(self) -> List[Connection]:
        with self._session() as db:
            rows = db.query(KlaviyoConnection).order_by(KlaviyoConnection.created_at).all()
            return [_to_connection(r) for r in rows]

    def get_connection(self, account_id: str) -> Optional[Connection]:
        with self._session() as db:
            row = db.get(KlaviyoConnection, account_id)
            return _to_connection(row) if row else None

    def save_connection(self, connection: Connection) -> Connection:
        with self._session() as db:
            row = db.get(KlaviyoConnection, connection.account_id)
            if not row:
                row = KlaviyoConnection(account_id=connection.account_id)
                db.add(row)
            row.account_name = connection.account_name
            row.access_token = connection.access_token
            row.refresh_token = connection.refresh_token
            row.expires_at = connection.expires_at
        return connection

    def update_connection_tokens(
        self,
        account_id: str,
        access_token: str,
        refresh_token: Optional[str],
        expires_at: datetime
    ) -> None:
        with self._session() as db:
            row = db.get(KlaviyoConnection, account_id)
            if not row:
                log.warning(f"Token update for unknown account {account_id}")
                return
            row.access_token = access_token
            row.refresh_token = refresh_token
            row.expires_at = expires_at

    def remove_connection(self, account_id: str) -> None:
        with self._session() as db:
            db.query(KlaviyoCachedProfile).filter(
                KlaviyoCachedProfile.account_id == account_id
            ).delete(synchronize_session=False)
            db.query(KlaviyoSyncStatus).filter(
                KlaviyoSyncStatus.account_id == account_id
            ).delete(synchronize_session=False)
            db.query(KlaviyoConnection).filter(
                KlaviyoConnection.account_id == account_id
            ).delete(synchronize_session=False)

    # Profile cache

    def get_cached_profiles(self) -> List[ProfileRecord]:
        with self._session() as db:
            return [_to_profile(r) for r in db.query(KlaviyoCachedProfile).all()]

    def upsert_profiles(self, profiles: Iterable[ProfileRecord]) -> None:
        latest = {p.key: p for p in profiles}
        with self._session() as db:
            for profile in latest.values():
                db.merge(_profile_row(profile))

    def clear_profiles_for_account(self, account_id: str) -> None:
        with self._session() as db:
            db.query(KlaviyoCachedProfile).filter(
                KlaviyoCachedProfile.account_id == account_id
            ).delete(synchronize_session=False)

    def replace_profiles_for_account(self, account_id: str, profiles: Iterable[ProfileRecord]) -> None:
        with self._session() as db:
            db.query(KlaviyoCachedProfile).filter(
                KlaviyoCachedProfile.account_id == account_id
            ).delete(synchronize_session=False)
            # Same key can appear twice if a provider page repeats a profile
            rows = {p.key: p for p in profiles}
            db.add_all(_profile_row(p) for p in rows.values())

    def count_profiles_by_account(self) -> Dict[str, int]:
        with self._session() as db:
            rows = db.query(
                KlaviyoCachedProfile.account_id, func.count(KlaviyoCachedProfile.klaviyo_id)
            ).group_by(KlaviyoCachedProfile.account_id).all()
            return {account_id: count for account_id, count in rows}

    # Sync status

    def get_all_sync_statuses(self) -> Dict[str, SyncStatus]:
        with self._session() as db:
            return {r.account_id: _to_status(r) for r in db.query(KlaviyoSyncStatus).all()}

    def get_sync_status(self, account_id: str) -> Optional[SyncStatus]:
        with self._session() as db:
            row = db.get(KlaviyoSyncStatus, account_id)
            return _to_status(row) if row else None

    def set_sync_status(self, account_id: str, **patch) -> SyncStatus:
        with self._session() as db:
            row = db.get(KlaviyoSyncStatus, account_id)
            previous = _to_status(row) if row else SyncStatus(account_id=account_id)
            status = previous.merged(**patch)
            if not row:
                row = KlaviyoSyncStatus(account_id=account_id)
                db.add(row)
            row.state = status.state
            row.started_at = status.started_at
            row.finished_at = status.finished_at
            row.processed = status.processed
            row.total = status.total
            row.last_page_size = status.last_page_size
            row.last_error = status.last_error
            return status
