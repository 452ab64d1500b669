#!/usr/bin/env python3
"""
Profile Backfill Script

Runs a full profile backfill in the foreground, for one account or every
connected account, and prints per-account results.

Usage:
    python scripts/backfill_profiles.py
    python scripts/backfill_profiles.py --account XyZ123 --page-size 50
"""
import argparse
import sys
import time
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from klaviyo_hub.config import get_settings
from klaviyo_hub.dependencies import build_provider, build_store
from klaviyo_hub.models.base import init_db
from klaviyo_hub.services.backfill_service import (
    STRATEGY_CLEAR_FIRST,
    STRATEGY_SWAP,
    ProfileBackfillService,
)


def print_header(text):
    print(f"\n{'='*70}")
    print(f"  {text}")
    print('='*70)


def main() -> int:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Backfill Klaviyo profiles into the local cache")
    parser.add_argument("--account", action="append", dest="accounts", help="Account id (repeatable)")
    parser.add_argument("--page-size", type=int, default=settings.backfill_page_size)
    parser.add_argument("--strategy", choices=[STRATEGY_SWAP, STRATEGY_CLEAR_FIRST], default=settings.backfill_strategy)
    parser.add_argument("--max-pages", type=int, default=settings.backfill_max_pages)
    args = parser.parse_args()

    init_db()
    store = build_store()
    connections = store.get_connections()
    if args.accounts:
        connections = [c for c in connections if c.account_id in set(args.accounts)]

    if not connections:
        print("No matching connected accounts")
        return 1

    print_header(f"Backfilling {len(connections)} account(s)")
    start = time.time()
    service = ProfileBackfillService(
        store,
        build_provider(),
        max_pages=args.max_pages,
        strategy=args.strategy,
    )
    results = service.backfill_all(connections, args.page_size)

    for r in results:
        if r.success:
            print(f"  ✓ {r.account_id}: {r.count} profiles")
        else:
            print(f"  ✗ {r.account_id}: {r.error}")

    print(f"\nDone in {time.time() - start:.1f}s")
    return 0 if all(r.success for r in results) else 2


if __name__ == "__main__":
    sys.exit(main())
