"""
Klaviyo pass-through and sync endpoints
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from klaviyo_hub.config import get_settings
from klaviyo_hub.connectors.base import BaseProvider
from klaviyo_hub.dependencies import build_backfill_service, get_provider, get_store
from klaviyo_hub.services.live_listing import list_live_profiles
from klaviyo_hub.store.base import ProfileStore
from klaviyo_hub.utils.logger import log

router = APIRouter(prefix="/api/klaviyo", tags=["klaviyo"])


# ── Schemas ──────────────────────────────────────────────

class BackfillResult(BaseModel):
    account_id: str
    count: Optional[int] = None
    error: Optional[str] = None


class SyncResponse(BaseModel):
    results: List[BackfillResult]


class LiveProfileOut(BaseModel):
    account_id: str
    account_name: Optional[str] = None
    klaviyo_id: str
    email: Optional[str] = None
    phone: Optional[str] = None


class LiveLinks(BaseModel):
    next: Optional[str] = None


class LiveProfilesResponse(BaseModel):
    data: List[LiveProfileOut]
    links: LiveLinks


# ── Endpoints ────────────────────────────────────────────

@router.post("/sync", response_model=SyncResponse, response_model_exclude_none=True)
def sync_profiles(
    account_id: Optional[str] = Query(None, alias="accountId"),
    store: ProfileStore = Depends(get_store),
    provider: BaseProvider = Depends(get_provider),
):
    """
    Backfill one account (accountId) or all of them, in this request.

    Per-account failures are reported in `results` and do not stop the others.
    """
    connections = store.get_connections()
    if account_id:
        connections = [c for c in connections if c.account_id == account_id]
        if not connections:
            raise HTTPException(status_code=404, detail=f"Unknown account: {account_id}")

    settings = get_settings()
    service = build_backfill_service(store, provider)
    outcomes = service.backfill_all(connections, settings.backfill_page_size)
    log.info(f"Manual sync finished for {len(outcomes)} accounts")
    return {"results": [o.to_dict() for o in outcomes]}


@router.get("/profiles", response_model=LiveProfilesResponse)
def live_profiles(
    account_id: Optional[str] = Query(None, alias="accountId"),
    size: Optional[int] = Query(None),
    cursor: Optional[str] = None,
    store: ProfileStore = Depends(get_store),
    provider: BaseProvider = Depends(get_provider),
):
    """
    Profiles fetched live from Klaviyo, bypassing the cache.

    With several accounts, `links.next` is a composite cursor covering all of them.
    """
    if account_id:
        connection = store.get_connection(account_id)
        connections = [connection] if connection else []
    else:
        connections = store.get_connections()

    page = list_live_profiles(connections, provider, cursor=cursor, page_size=size)
    return LiveProfilesResponse(
        data=[LiveProfileOut(**vars(p)) for p in page.data],
        links=LiveLinks(next=page.next_cursor),
    )
