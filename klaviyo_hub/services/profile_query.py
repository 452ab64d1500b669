"""
Profile Query Engine

Pure filtering, overlap detection, consent derivation, sorting and offset
pagination over the cross-account profile cache. No I/O; missing fields
never raise.

Pipeline order:
1. account subset
2. free-text search (external id, email, phone digits)
3. exclusive identifier filters (*_only)
4. has-identifier filters (has_*)
5. overlap filters (identifier shared by >= 2 accounts in the working set)
6. consent-status filters (after consent derivation)
"""
import re
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set

from klaviyo_hub.store.records import ProfileRecord

MAX_PAGE_SIZE = 100000

STATUS_NA = "n/a"
STATUS_NEVER_SUBSCRIBED = "never_subscribed"
STATUS_SUBSCRIBED = "subscribed"
STATUS_UNSUBSCRIBED = "unsubscribed"
STATUS_SUPPRESSED = "suppressed"
STATUS_BOUNCED = "bounced"

BOUNCE_KEYWORDS = (
    "bounce",
    "hard_bounce",
    "soft_bounce",
    "mailbox_full",
    "invalid",
    "undeliverable",
    "rejected",
    "policy",
    "blocked",
    "spam_block",
)

_NON_DIGITS = re.compile(r"\D+")
_NON_PHONE = re.compile(r"[^+\d]")


# ── Normalization ────────────────────────────────────────

def normalize_email(email: Optional[str]) -> str:
    return (email or "").strip().lower()


def normalize_external_id(external_id: Optional[str]) -> str:
    return (external_id or "").lower()


def normalize_phone(phone: Optional[str]) -> str:
    """Digits with a leading '+' kept; leading zeros dropped when there is no '+'"""
    if not phone:
        return ""
    kept = _NON_PHONE.sub("", str(phone).strip())
    return kept if kept.startswith("+") else kept.lstrip("0")


def phone_digits(phone: Optional[str]) -> str:
    return _NON_DIGITS.sub("", normalize_phone(phone))


# ── Consent derivation ───────────────────────────────────

def normalize_consent(value: Any) -> Optional[str]:
    if not value:
        return None
    v = str(value).lower()
    if v == "subscribed" or "opt_in" in v or v == "true":
        return STATUS_SUBSCRIBED
    if v == "unsubscribed" or "opt_out" in v or v == "false":
        return STATUS_UNSUBSCRIBED
    return v


def classify_email_suppression(reason: Any) -> str:
    """HARD_BOUNCE, INVALID_EMAIL and the like are bounces; anything else is a suppression"""
    r = str(reason or "").lower()
    if any(k in r for k in BOUNCE_KEYWORDS):
        return STATUS_BOUNCED
    return STATUS_SUPPRESSED


def _channel(subscriptions: Dict[str, Any], medium: str, kind: str) -> Dict[str, Any]:
    channel = subscriptions.get(medium)
    value = channel.get(kind) if isinstance(channel, dict) else None
    return value if isinstance(value, dict) else {}


@dataclass
class SubscriptionStatuses:
    email_marketing: str = STATUS_NA
    sms_marketing: str = STATUS_NA
    sms_transactional: str = STATUS_NA


def derive_subscription_statuses(profile: ProfileRecord) -> SubscriptionStatuses:
    """
    Per-channel consent for display and filtering

    Missing identifier wins (no email means email status is n/a); email
    suppression entries override consent.
    """
    subs = profile.subscriptions if isinstance(profile.subscriptions, dict) else {}
    statuses = SubscriptionStatuses()

    if normalize_email(profile.email):
        email_marketing = _channel(subs, "email", "marketing")
        suppression = email_marketing.get("suppression")
        suppression = suppression if isinstance(suppression, list) else []
        if suppression:
            first = suppression[0] if isinstance(suppression[0], dict) else {}
            statuses.email_marketing = classify_email_suppression(first.get("reason"))
        else:
            statuses.email_marketing = normalize_consent(email_marketing.get("consent")) or STATUS_NEVER_SUBSCRIBED

    if normalize_phone(profile.phone):
        statuses.sms_marketing = (
            normalize_consent(_channel(subs, "sms", "marketing").get("consent")) or STATUS_NEVER_SUBSCRIBED
        )
        statuses.sms_transactional = (
            normalize_consent(_channel(subs, "sms", "transactional").get("consent")) or STATUS_NEVER_SUBSCRIBED
        )

    return statuses


# ── Query / result types ─────────────────────────────────

def parse_status_list(value: Optional[str]) -> List[str]:
    """'subscribed, Bounced' -> ['subscribed', 'bounced']"""
    if not value:
        return []
    return [s.strip().lower() for s in value.split(",") if s.strip()]


@dataclass
class ProfileQuery:
    """Filter, sort and page parameters; size=None means unbounded"""
    q: str = ""
    accounts: Sequence[str] = ()
    external_only: bool = False
    email_only: bool = False
    phone_only: bool = False
    has_ext: bool = False
    has_email: bool = False
    has_phone: bool = False
    overlaps_ext: bool = False
    overlaps_email: bool = False
    overlaps_phone: bool = False
    email_marketing: Sequence[str] = ()
    sms_marketing: Sequence[str] = ()
    sms_transactional: Sequence[str] = ()
    size: Optional[int] = MAX_PAGE_SIZE
    cursor: Optional[str] = None

    @property
    def exclusive_filter_count(self) -> int:
        return sum((self.external_only, self.email_only, self.phone_only))


@dataclass
class IdentifierCounts:
    email: int = 0
    external_id: int = 0
    phone: int = 0


@dataclass
class OverlapFlags:
    email: bool = False
    external_id: bool = False
    phone: bool = False


@dataclass
class AnnotatedProfile:
    profile: ProfileRecord
    counts: IdentifierCounts
    overlaps: OverlapFlags
    subscription_statuses: SubscriptionStatuses


@dataclass
class ProfileQueryResult:
    data: List[AnnotatedProfile] = field(default_factory=list)
    next_cursor: Optional[str] = None
    total: int = 0


# ── Pipeline stages ──────────────────────────────────────

def _matches_search(profile: ProfileRecord, q: str, q_digits: str) -> bool:
    ext = (profile.external_id or "").strip().lower()
    email = normalize_email(profile.email)
    digits = phone_digits(profile.phone)
    return (
        (bool(ext) and q in ext)
        or (bool(email) and q in email)
        or (bool(digits) and bool(q_digits) and q_digits in digits)
    )


def _apply_identifier_filters(rows: List[ProfileRecord], query: ProfileQuery) -> List[ProfileRecord]:
    # Exclusive: exactly that identifier and no other
    if query.external_only:
        rows = [r for r in rows if r.external_id and not r.email and not r.phone]
    if query.email_only:
        rows = [r for r in rows if r.email and not r.phone and not r.external_id]
    if query.phone_only:
        rows = [r for r in rows if r.phone and not r.email and not r.external_id]

    # Non-exclusive, intersect
    if query.has_ext:
        rows = [r for r in rows if r.external_id]
    if query.has_email:
        rows = [r for r in rows if normalize_email(r.email)]
    if query.has_phone:
        rows = [r for r in rows if normalize_phone(r.phone)]
    return rows


def overlapping_keys(rows: Iterable[ProfileRecord], normalizer) -> Set[tuple]:
    """
    Keys of rows whose normalized identifier is shared by >= 2 distinct accounts

    Rows with an empty identifier never group.
    """
    groups: Dict[str, List[ProfileRecord]] = defaultdict(list)
    for row in rows:
        value = normalizer(row)
        if value:
            groups[value].append(row)

    marked = set()
    for members in groups.values():
        if len({m.account_id for m in members}) > 1:
            marked.update(m.key for m in members)
    return marked


def _ext_of(row: ProfileRecord) -> str:
    return normalize_external_id(row.external_id)


def _email_of(row: ProfileRecord) -> str:
    return normalize_email(row.email)


def _phone_of(row: ProfileRecord) -> str:
    return normalize_phone(row.phone)


def identifier_counts(rows: Iterable[ProfileRecord]) -> Dict[str, Dict[str, int]]:
    """Rows sharing each normalized identifier value, per identifier kind"""
    counts = {"email": defaultdict(int), "external_id": defaultdict(int), "phone": defaultdict(int)}
    for row in rows:
        for kind, normalizer in (("email", _email_of), ("external_id", _ext_of), ("phone", _phone_of)):
            value = normalizer(row)
            if value:
                counts[kind][value] += 1
    return counts


def _sort_key(row: ProfileRecord):
    # klaviyo_id last so order is total even within one account
    return (normalize_email(row.email), row.account_id or "", row.klaviyo_id or "")


def _page_size(size: Optional[int]) -> Optional[int]:
    # Same clamp as the HTTP boundary: 0 means the maximum, negatives mean 1
    if size is None:
        return None
    return max(1, min(size or MAX_PAGE_SIZE, MAX_PAGE_SIZE))


def _parse_offset(cursor: Optional[str]) -> int:
    if not cursor:
        return 0
    try:
        return max(int(cursor), 0)
    except (TypeError, ValueError):
        return 0


def run_profile_query(profiles: Iterable[ProfileRecord], query: ProfileQuery) -> ProfileQueryResult:
    """
    Filter, annotate, sort and paginate cached profiles

    Args:
        profiles: Full cross-account cache
        query: Filter, sort and page parameters

    Returns:
        One page of annotated rows, the next offset cursor (or None) and the
        size of the fully filtered sequence
    """
    rows = list(profiles)

    if query.accounts:
        wanted = set(query.accounts)
        rows = [r for r in rows if r.account_id in wanted]

    q = (query.q or "").strip().lower()
    if q:
        q_digits = _NON_DIGITS.sub("", q)
        rows = [r for r in rows if _matches_search(r, q, q_digits)]

    rows = _apply_identifier_filters(rows, query)

    # Overlaps are relative to the working set at this point
    overlap_ext = overlapping_keys(rows, _ext_of)
    overlap_email = overlapping_keys(rows, _email_of)
    overlap_phone = overlapping_keys(rows, _phone_of)

    if query.overlaps_ext or query.overlaps_email or query.overlaps_phone:
        rows = [
            r for r in rows
            if (query.overlaps_ext and r.key in overlap_ext)
            or (query.overlaps_email and r.key in overlap_email)
            or (query.overlaps_phone and r.key in overlap_phone)
        ]

    rows.sort(key=_sort_key)

    counts = identifier_counts(rows)
    annotated = []
    for row in rows:
        email, ext, phone = _email_of(row), _ext_of(row), _phone_of(row)
        annotated.append(AnnotatedProfile(
            profile=row,
            counts=IdentifierCounts(
                email=counts["email"][email] if email else 0,
                external_id=counts["external_id"][ext] if ext else 0,
                phone=counts["phone"][phone] if phone else 0,
            ),
            overlaps=OverlapFlags(
                email=row.key in overlap_email,
                external_id=row.key in overlap_ext,
                phone=row.key in overlap_phone,
            ),
            subscription_statuses=derive_subscription_statuses(row),
        ))

    for attr in ("email_marketing", "sms_marketing", "sms_transactional"):
        allowed = {str(s).lower() for s in getattr(query, attr) or ()}
        if allowed:
            annotated = [
                a for a in annotated
                if str(getattr(a.subscription_statuses, attr) or "").lower() in allowed
            ]

    start = _parse_offset(query.cursor)
    size = _page_size(query.size)
    if size is None:
        page = annotated[start:]
    else:
        page = annotated[start:start + size]

    next_index = start + len(page)
    next_cursor = None
    if size is not None and page and len(page) == size and next_index < len(annotated):
        next_cursor = str(next_index)

    return ProfileQueryResult(data=page, next_cursor=next_cursor, total=len(annotated))
