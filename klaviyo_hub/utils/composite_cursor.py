"""
Composite pagination cursor

A single opaque token carrying one upstream cursor per account, for listings
that page through several Klaviyo accounts at once. The token is URL-safe
base64 of compact JSON: `{"cursors": {account_id: cursor_or_null}}`.
It is a continuation token, not a security boundary.
"""
import base64
import binascii
import json
from typing import Dict, Iterable, Mapping, Optional


def _empty() -> Dict[str, Dict[str, Optional[str]]]:
    return {"cursors": {}}


def encode_composite_cursor(state: Mapping) -> str:
    """Encode `{"cursors": {...}}` into an opaque URL-safe token"""
    cursors = dict(state.get("cursors") or {})
    raw = json.dumps({"cursors": cursors}, separators=(",", ":"), sort_keys=True)
    return base64.urlsafe_b64encode(raw.encode("utf-8")).decode("ascii").rstrip("=")


def decode_composite_cursor(token: Optional[str]) -> Dict[str, Dict[str, Optional[str]]]:
    """
    Decode a composite token

    Never raises: missing, truncated, non-base64 or non-JSON input, and
    payloads without a `cursors` object, all decode to `{"cursors": {}}`.
    """
    if not token or not isinstance(token, str):
        return _empty()
    try:
        padded = token + "=" * (-len(token) % 4)
        raw = base64.urlsafe_b64decode(padded.encode("ascii"))
        payload = json.loads(raw.decode("utf-8"))
    except (binascii.Error, ValueError, UnicodeError):
        return _empty()

    if not isinstance(payload, dict) or not isinstance(payload.get("cursors"), dict):
        return _empty()

    cursors = {}
    for account_id, cursor in payload["cursors"].items():
        cursors[str(account_id)] = cursor if isinstance(cursor, str) and cursor else None
    return {"cursors": cursors}


def normalize_single_cursor(token: Optional[str], account_id: str) -> Optional[str]:
    """
    Per-account cursor from either a composite token or a raw upstream cursor

    The composite entry for `account_id` wins; otherwise the input is
    assumed to be the provider's own cursor and passed through.
    """
    if not token:
        return None
    candidate = decode_composite_cursor(token)["cursors"].get(account_id)
    return candidate or token


def next_composite_cursor(
    per_account_next: Mapping[str, Optional[str]],
    unvisited: Iterable[str] = ()
) -> Optional[str]:
    """
    Token for the next page, or None once every account is exhausted

    Accounts in `unvisited` were never fetched and are left out of the map
    so the next page starts them from the beginning.
    """
    if not any(per_account_next.values()) and not list(unvisited):
        return None
    return encode_composite_cursor({"cursors": dict(per_account_next)})
