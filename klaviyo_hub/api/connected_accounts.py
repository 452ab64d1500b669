"""
Connected account endpoints
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from klaviyo_hub.connectors.base import BaseProvider
from klaviyo_hub.dependencies import get_provider, get_store
from klaviyo_hub.services import connection_service
from klaviyo_hub.store.base import ProfileStore
from klaviyo_hub.utils.logger import log

router = APIRouter(prefix="/api/connected-accounts", tags=["connected-accounts"])


# ── Schemas ──────────────────────────────────────────────

class SyncStatusOut(BaseModel):
    state: str
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    processed: int = 0
    total: Optional[int] = None
    last_page_size: Optional[int] = None
    last_error: Optional[str] = None


class ConnectedAccountOut(BaseModel):
    account_id: str
    account_name: str
    sync: SyncStatusOut
    accounts_raw: Optional[List[Dict[str, Any]]] = None


class ConnectedAccountsResponse(BaseModel):
    data: List[ConnectedAccountOut]


class DeleteResponse(BaseModel):
    ok: bool


# ── Endpoints ────────────────────────────────────────────

@router.get("", response_model=ConnectedAccountsResponse, response_model_exclude_none=True)
def list_connected_accounts(
    debug: bool = Query(False, description="Include raw account lookups"),
    store: ProfileStore = Depends(get_store),
    provider: BaseProvider = Depends(get_provider),
):
    """Connected accounts with display name and backfill status."""
    accounts = connection_service.list_connected_accounts(store, provider, debug=debug)
    return {
        "data": [
            ConnectedAccountOut(
                account_id=a.account_id,
                account_name=a.account_name,
                sync=SyncStatusOut(**{k: v for k, v in a.sync.to_dict().items() if k != "account_id"}),
                accounts_raw=a.accounts_raw,
            )
            for a in accounts
        ]
    }


@router.delete("/{account_id}", response_model=DeleteResponse)
def delete_connected_account(account_id: str, store: ProfileStore = Depends(get_store)):
    """Disconnect an account and drop its cached profiles."""
    if not account_id.strip():
        raise HTTPException(status_code=400, detail="account_id required")
    try:
        connection_service.disconnect_account(store, account_id)
    except Exception as e:
        log.error(f"Disconnect error for {account_id}: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))
    return {"ok": True}
