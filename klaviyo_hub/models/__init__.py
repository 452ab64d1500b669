"""Database models for Klaviyo Hub"""

from klaviyo_hub.models.klaviyo_data import (
    KlaviyoConnection,
    KlaviyoCachedProfile,
    KlaviyoSyncStatus
)

__all__ = [
    "KlaviyoConnection",
    "KlaviyoCachedProfile",
    "KlaviyoSyncStatus",
]
