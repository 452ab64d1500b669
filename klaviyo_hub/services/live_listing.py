"""
Live pass-through profile listing

Pages straight through the provider instead of the cache. Several accounts
are paged together behind one composite cursor.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from klaviyo_hub.connectors.base import BaseProvider
from klaviyo_hub.store.records import Connection
from klaviyo_hub.utils.composite_cursor import (
    decode_composite_cursor,
    next_composite_cursor,
    normalize_single_cursor,
)
from klaviyo_hub.utils.logger import log

DEFAULT_PAGE_SIZE = 25
MAX_PAGE_SIZE = 100


@dataclass
class LiveProfile:
    account_id: str
    account_name: Optional[str]
    klaviyo_id: str
    email: Optional[str] = None
    phone: Optional[str] = None


@dataclass
class LivePage:
    data: List[LiveProfile] = field(default_factory=list)
    next_cursor: Optional[str] = None


def clamp_page_size(size: Optional[int]) -> int:
    if not size:
        return DEFAULT_PAGE_SIZE
    return max(1, min(int(size), MAX_PAGE_SIZE))


def _live_profile(connection: Connection, item: Dict[str, Any]) -> LiveProfile:
    attrs = item.get("attributes") or {}
    return LiveProfile(
        account_id=connection.account_id,
        account_name=connection.account_name,
        klaviyo_id=str(item.get("id")),
        email=attrs.get("email") or None,
        phone=attrs.get("phone_number") or None,
    )


def list_live_profiles(
    connections: List[Connection],
    provider: BaseProvider,
    cursor: Optional[str] = None,
    page_size: Optional[int] = None
) -> LivePage:
    """
    One page of profiles fetched live from the provider

    Provider failures are logged and swallowed: a failing account
    contributes no rows and no next cursor. Never raises.
    """
    size = clamp_page_size(page_size)

    if not connections:
        return LivePage()

    if len(connections) == 1:
        connection = connections[0]
        try:
            page = provider.list_profiles(
                connection.access_token,
                cursor=normalize_single_cursor(cursor, connection.account_id),
                page_size=size,
            )
        except Exception as e:
            log.error(f"Failed to fetch profiles for account {connection.account_id}: {str(e)}")
            return LivePage()
        return LivePage(
            data=[_live_profile(connection, item) for item in page.items],
            next_cursor=page.next_cursor,
        )

    # Entry with null cursor: account exhausted. No entry: not visited yet.
    composite = decode_composite_cursor(cursor)["cursors"]
    per_account_next: Dict[str, Optional[str]] = {}
    unvisited: List[str] = []
    results: List[LiveProfile] = []

    for connection in connections:
        account_id = connection.account_id
        if account_id in composite and not composite[account_id]:
            per_account_next[account_id] = None
            continue

        remaining = size - len(results)
        if remaining <= 0:
            # Page is full; resume this account from where it was
            if account_id in composite:
                per_account_next[account_id] = composite[account_id]
            else:
                unvisited.append(account_id)
            continue

        try:
            page = provider.list_profiles(
                connection.access_token,
                cursor=normalize_single_cursor(composite.get(account_id), account_id),
                page_size=remaining,
            )
        except Exception as e:
            log.error(f"Failed to fetch profiles for account {account_id}: {str(e)}")
            per_account_next[account_id] = None
            continue

        results.extend(_live_profile(connection, item) for item in page.items[:remaining])
        per_account_next[account_id] = page.next_cursor or None

    return LivePage(
        data=results,
        next_cursor=next_composite_cursor(per_account_next, unvisited=unvisited),
    )
