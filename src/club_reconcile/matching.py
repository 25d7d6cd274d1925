from __future__ import annotations

import logging
from typing import Callable, List, Optional, Sequence

from .identity_index import IdentityIndex
from .models import (
    TIER_EMAIL,
    TIER_EXTERNAL_ID,
    TIER_NAME_EXACT,
    TIER_PHONE,
    TIER_TELEGRAM,
    ExternalContact,
    IndexEntry,
    MatchResult,
)
from .normalization import (
    MIN_PHONE_DIGITS,
    is_indexable_phone,
    normalize_email,
    normalize_handle,
    normalize_name,
    normalize_phone,
)

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]

EXACT_CONFIDENCE = 1.0


def _hit(contact: ExternalContact, entry: IndexEntry, tier: str, value: str) -> MatchResult:
    logger.debug("Contact %s matched %s by %s", contact.external_id, entry.profile_id, tier)
    return MatchResult(
        external_id=contact.external_id,
        profile_id=entry.profile_id,
        tier=tier,
        confidence=EXACT_CONFIDENCE,
        profile_name=entry.name,
        matched_value=value,
    )


def match_contact(
    contact: ExternalContact, index: IdentityIndex, min_phone_digits: int = MIN_PHONE_DIGITS
) -> MatchResult:
    """
    Resolve one contact against the index, stopping at the first tier that hits.

    Tiers in order: external id, emails, phones, messaging handle, exact
    normalized name. Emails and phones are tried in the contact's own order.
    """
    external_id = contact.external_id.strip()
    if external_id:
        entry = index.lookup_external_id(external_id)
        if entry is not None:
            return _hit(contact, entry, TIER_EXTERNAL_ID, external_id)

    for email in contact.emails:
        key = normalize_email(email)
        entry = index.lookup_email(key) if key else None
        if entry is not None:
            return _hit(contact, entry, TIER_EMAIL, key)

    for phone in contact.phones:
        key = normalize_phone(phone)
        if not is_indexable_phone(key, min_phone_digits):
            continue
        entry = index.lookup_phone(key)
        if entry is not None:
            return _hit(contact, entry, TIER_PHONE, key)

    handle = normalize_handle(contact.telegram_username)
    if handle:
        entry = index.lookup_telegram(handle)
        if entry is not None:
            return _hit(contact, entry, TIER_TELEGRAM, handle)

    name_key = normalize_name(contact.full_name)
    if name_key:
        entry = index.lookup_name(name_key)
        if entry is not None:
            return _hit(contact, entry, TIER_NAME_EXACT, name_key)

    return MatchResult.unmatched(contact.external_id)


def match_contacts(
    contacts: Sequence[ExternalContact],
    index: IdentityIndex,
    progress: Optional[ProgressCallback] = None,
    progress_every: int = 100,
    min_phone_digits: int = MIN_PHONE_DIGITS,
) -> List[MatchResult]:
    total = len(contacts)
    results: List[MatchResult] = []
    for position, contact in enumerate(contacts, start=1):
        results.append(match_contact(contact, index, min_phone_digits))
        if progress is not None and (position % max(progress_every, 1) == 0 or position == total):
            progress(position, total)
    matched = sum(1 for result in results if result.is_matched)
    logger.info("Matched %d of %d contacts", matched, total)
    return results
