"""Persistence for connections, cached profiles and sync status"""

from klaviyo_hub.store.base import ProfileStore
from klaviyo_hub.store.memory import MemoryProfileStore
from klaviyo_hub.store.records import Connection, ProfileRecord, SyncStatus

__all__ = [
    "Connection",
    "MemoryProfileStore",
    "ProfileRecord",
    "ProfileStore",
    "SyncStatus",
]
