"""
Klaviyo Data Models

Connected accounts, the cross-account profile cache and per-account
backfill progress.
"""
from sqlalchemy import Column, Integer, String, DateTime, JSON, Text
from datetime import datetime

from klaviyo_hub.models.base import Base


class KlaviyoConnection(Base):
    """OAuth credentials for one connected Klaviyo account"""
    __tablename__ = "klaviyo_connections"

    account_id = Column(String, primary_key=True)
    account_name = Column(String, nullable=True)

    # OAuth tokens
    access_token = Column(Text, nullable=False)
    refresh_token = Column(Text, nullable=True)
    expires_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class KlaviyoCachedProfile(Base):
    """
    Denormalized profile row, latest-wins

    Rows from different accounts that share an email/phone/external id stay
    separate; overlap is computed at query time.
    """
    __tablename__ = "klaviyo_cached_profiles"

    account_id = Column(String, primary_key=True)
    klaviyo_id = Column(String, primary_key=True)

    account_name = Column(String, nullable=True)  # Snapshot at sync time
    external_id = Column(String, nullable=True, index=True)
    email = Column(String, nullable=True, index=True)
    phone = Column(String, nullable=True, index=True)

    # Raw subscriptions blob (email.marketing, sms.marketing, sms.transactional)
    subscriptions = Column(JSON, nullable=True)

    synced_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class KlaviyoSyncStatus(Base):
    """Backfill progress for one account"""
    __tablename__ = "klaviyo_sync_status"

    account_id = Column(String, primary_key=True)
    state = Column(String, default="idle", nullable=False)  # idle, running

    started_at = Column(DateTime, nullable=True)
    finished_at = Column(DateTime, nullable=True)

    processed = Column(Integer, default=0)
    total = Column(Integer, nullable=True)  # Upstream-reported total, when available
    last_page_size = Column(Integer, nullable=True)
    last_error = Column(Text, nullable=True)

    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
