"""
Cross-account profile endpoints (served from the profile cache)
"""
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from klaviyo_hub.dependencies import get_backfill_submitter, get_store
from klaviyo_hub.services.profile_query import (
    MAX_PAGE_SIZE,
    AnnotatedProfile,
    ProfileQuery,
    parse_status_list,
)
from klaviyo_hub.services.profile_service import BackfillSubmitter, list_cached_profiles, profile_stats
from klaviyo_hub.store.base import ProfileStore

router = APIRouter(prefix="/api/profiles", tags=["profiles"])


# ── Schemas ──────────────────────────────────────────────

class IdentifierCountsOut(BaseModel):
    email: int
    external_id: int
    phone: int


class OverlapFlagsOut(BaseModel):
    email: bool
    external_id: bool
    phone: bool


class SubscriptionStatusesOut(BaseModel):
    email_marketing: str
    sms_marketing: str
    sms_transactional: str


class ProfileOut(BaseModel):
    account_id: str
    account_name: Optional[str] = None
    klaviyo_id: str
    external_id: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    subscriptions: Optional[Dict[str, Any]] = None
    counts: IdentifierCountsOut
    overlaps: OverlapFlagsOut
    subscription_statuses: SubscriptionStatusesOut


class PageLinks(BaseModel):
    next: Optional[str] = None


class ProfileListResponse(BaseModel):
    data: List[ProfileOut]
    links: PageLinks
    total: int


class ProfileStatsResponse(BaseModel):
    total: int
    by_account: Dict[str, int]


def _profile_out(row: AnnotatedProfile) -> ProfileOut:
    p = row.profile
    return ProfileOut(
        account_id=p.account_id,
        account_name=p.account_name,
        klaviyo_id=p.klaviyo_id,
        external_id=p.external_id,
        email=p.email,
        phone=p.phone,
        subscriptions=p.subscriptions,
        counts=IdentifierCountsOut(**vars(row.counts)),
        overlaps=OverlapFlagsOut(**vars(row.overlaps)),
        subscription_statuses=SubscriptionStatusesOut(**vars(row.subscription_statuses)),
    )


# ── Endpoints ────────────────────────────────────────────

@router.get("", response_model=ProfileListResponse)
def list_profiles(
    q: str = Query("", description="Search external id, email or phone digits"),
    accounts: str = Query("", description="Comma-separated account ids"),
    external_only: bool = False,
    email_only: bool = False,
    phone_only: bool = False,
    has_ext: bool = False,
    has_email: bool = False,
    has_phone: bool = False,
    overlaps_ext: bool = False,
    overlaps_email: bool = False,
    overlaps_phone: bool = False,
    email_marketing: str = Query("", description="Comma-separated statuses"),
    sms_marketing: str = Query("", description="Comma-separated statuses"),
    sms_transactional: str = Query("", description="Comma-separated statuses"),
    all_rows: bool = Query(False, alias="all", description="Return every matching row"),
    size: Optional[int] = Query(None),
    cursor: Optional[str] = None,
    store: ProfileStore = Depends(get_store),
    submit_backfill: BackfillSubmitter = Depends(get_backfill_submitter),
):
    """
    Filtered, deduplicated view across every connected account.

    Example: GET /api/profiles?overlaps_email=1&email_marketing=subscribed&size=50
    """
    if sum((external_only, email_only, phone_only)) > 1:
        raise HTTPException(
            status_code=400,
            detail="Only one of external_only, email_only, phone_only may be set",
        )

    page_size = None if all_rows else max(1, min(size or MAX_PAGE_SIZE, MAX_PAGE_SIZE))
    query = ProfileQuery(
        q=q,
        accounts=[a for a in accounts.split(",") if a],
        external_only=external_only,
        email_only=email_only,
        phone_only=phone_only,
        has_ext=has_ext,
        has_email=has_email,
        has_phone=has_phone,
        overlaps_ext=overlaps_ext,
        overlaps_email=overlaps_email,
        overlaps_phone=overlaps_phone,
        email_marketing=parse_status_list(email_marketing),
        sms_marketing=parse_status_list(sms_marketing),
        sms_transactional=parse_status_list(sms_transactional),
        size=page_size,
        cursor=cursor,
    )

    result = list_cached_profiles(store, query, submit_backfill=submit_backfill)
    return ProfileListResponse(
        data=[_profile_out(row) for row in result.data],
        links=PageLinks(next=result.next_cursor),
        total=result.total,
    )


@router.get("/stats", response_model=ProfileStatsResponse)
def get_profile_stats(store: ProfileStore = Depends(get_store)):
    """Cached profile counts, overall and per account."""
    return profile_stats(store)
