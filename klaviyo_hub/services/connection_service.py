"""Connected account lifecycle: OAuth completion, listing, disconnect"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from klaviyo_hub.connectors.base import BaseProvider
from klaviyo_hub.connectors.klaviyo import account_display_name
from klaviyo_hub.services.profile_service import BackfillSubmitter
from klaviyo_hub.store.base import ProfileStore
from klaviyo_hub.store.records import DEFAULT_ACCOUNT_NAME, Connection, SyncStatus
from klaviyo_hub.utils.logger import log

UNKNOWN_ACCOUNT_ID = "unknown_account"


@dataclass
class ConnectedAccount:
    account_id: str
    account_name: str
    sync: SyncStatus
    accounts_raw: Optional[List[Dict[str, Any]]] = None


def complete_authorization(
    store: ProfileStore,
    provider: BaseProvider,
    code: str,
    code_verifier: str,
    redirect_uri: str,
    submit_backfill: Optional[BackfillSubmitter] = None
) -> Connection:
    """
    Finish the OAuth callback: exchange the code, identify the account,
    persist the connection and schedule its first backfill.
    """
    tokens = provider.exchange_code(code, code_verifier, redirect_uri)
    expires_at = datetime.utcnow() + timedelta(seconds=tokens.expires_in or 3600)

    accounts = provider.list_accounts(tokens.access_token)
    first = accounts[0] if accounts else None
    connection = Connection(
        account_id=str((first or {}).get("id") or UNKNOWN_ACCOUNT_ID),
        account_name=account_display_name(first) or DEFAULT_ACCOUNT_NAME,
        access_token=tokens.access_token,
        refresh_token=tokens.refresh_token,
        expires_at=expires_at,
    )
    store.save_connection(connection)
    log.info(f"Connected Klaviyo account {connection.account_id} ({connection.account_name})")

    if submit_backfill is not None:
        try:
            submit_backfill([connection.account_id])
        except Exception as e:
            log.error(f"Failed to schedule initial backfill for {connection.account_id}: {str(e)}")

    return connection


def list_connected_accounts(
    store: ProfileStore,
    provider: BaseProvider,
    debug: bool = False
) -> List[ConnectedAccount]:
    """
    Connections with display name and sync status

    A missing or placeholder name is looked up again and persisted when
    found; lookup failures keep the stored name.
    """
    accounts = []
    for connection in store.get_connections():
        name = connection.account_name
        accounts_raw = None
        if not name or name == DEFAULT_ACCOUNT_NAME:
            try:
                accounts_raw = provider.list_accounts(connection.access_token)
                fetched = account_display_name(accounts_raw[0] if accounts_raw else None)
                if fetched:
                    name = fetched
                    connection.account_name = fetched
                    store.save_connection(connection)
            except Exception as e:
                log.warning(f"Could not resolve name for account {connection.account_id}: {str(e)}")

        status = store.get_sync_status(connection.account_id) or SyncStatus(account_id=connection.account_id)
        accounts.append(ConnectedAccount(
            account_id=connection.account_id,
            account_name=name or DEFAULT_ACCOUNT_NAME,
            sync=status,
            accounts_raw=accounts_raw if debug else None,
        ))
    return accounts


def disconnect_account(store: ProfileStore, account_id: str) -> None:
    """Remove the connection along with its cached profiles and sync status"""
    store.remove_connection(account_id)
    log.info(f"Disconnected Klaviyo account {account_id}")
