"""
Dependency providers

Routers receive the store, the provider and the backfill submitter through
FastAPI's Depends so tests can swap them with app.dependency_overrides.
"""
from klaviyo_hub.config import get_settings
from klaviyo_hub.connectors.base import BaseProvider
from klaviyo_hub.connectors.klaviyo import KlaviyoClient
from klaviyo_hub.services.backfill_service import ProfileBackfillService
from klaviyo_hub.services.profile_service import BackfillSubmitter
from klaviyo_hub.store.base import ProfileStore


def build_store() -> ProfileStore:
    from klaviyo_hub.models.base import SessionLocal
    from klaviyo_hub.store.sql import SqlProfileStore

    return SqlProfileStore(SessionLocal)


def build_provider() -> KlaviyoClient:
    return KlaviyoClient(get_settings())


def build_backfill_service(store: ProfileStore, provider: BaseProvider) -> ProfileBackfillService:
    settings = get_settings()
    return ProfileBackfillService(
        store,
        provider,
        max_pages=settings.backfill_max_pages,
        strategy=settings.backfill_strategy,
    )


def get_store() -> ProfileStore:
    return build_store()


def get_provider() -> BaseProvider:
    return build_provider()


def get_backfill_submitter() -> BackfillSubmitter:
    from klaviyo_hub.scheduler import submit_backfill

    return submit_backfill
