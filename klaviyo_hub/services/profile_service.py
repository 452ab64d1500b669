"""
Cached profile listing and summary stats
"""
from typing import Callable, Dict, List, Optional

from klaviyo_hub.services.profile_query import ProfileQuery, ProfileQueryResult, run_profile_query
from klaviyo_hub.store.base import ProfileStore
from klaviyo_hub.utils.logger import log

# Fire-and-forget backfill submission; None means every connected account
BackfillSubmitter = Callable[[Optional[List[str]]], None]


def list_cached_profiles(
    store: ProfileStore,
    query: ProfileQuery,
    submit_backfill: Optional[BackfillSubmitter] = None
) -> ProfileQueryResult:
    """
    Query the profile cache

    A cold cache with connected accounts schedules a background backfill and
    still answers from what is cached now (possibly nothing). Completion is
    visible only through sync status.
    """
    profiles = store.get_cached_profiles()
    if not profiles and submit_backfill is not None:
        connections = store.get_connections()
        if connections:
            log.info(f"Profile cache empty with {len(connections)} connected accounts, scheduling backfill")
            try:
                submit_backfill(None)
            except Exception as e:
                log.error(f"Failed to schedule cold-start backfill: {str(e)}")
        profiles = store.get_cached_profiles()

    return run_profile_query(profiles, query)


def profile_stats(store: ProfileStore) -> Dict:
    """Cached profile count, overall and per account"""
    by_account = store.count_profiles_by_account()
    return {"total": sum(by_account.values()), "by_account": by_account}
