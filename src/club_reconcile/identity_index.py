from __future__ import annotations

import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from .models import IndexEntry, KnownProfile
from .normalization import (
    MIN_PHONE_DIGITS,
    is_indexable_phone,
    normalize_email,
    normalize_handle,
    normalize_name,
    normalize_phone,
)

logger = logging.getLogger(__name__)

KIND_EXTERNAL_ID = "external_id"
KIND_EMAIL = "email"
KIND_PHONE = "phone"
KIND_TELEGRAM = "telegram"
KIND_NAME = "name"


@dataclass(frozen=True)
class IndexCollision:
    kind: str
    key: str
    previous_profile_id: str
    profile_id: str

    def to_dict(self) -> Dict[str, str]:
        return {
            "kind": self.kind,
            "key": self.key,
            "previous_profile_id": self.previous_profile_id,
            "profile_id": self.profile_id,
        }


@dataclass(frozen=True)
class IdentityIndex:
    """
    Read-only lookup tables keyed by canonical identity values.

    Duplicate keys resolve last-writer-wins: the profile inserted later in the
    snapshot owns the key. Each overwrite by a different profile is kept in
    ``collisions``.
    """

    by_external_id: Mapping[str, IndexEntry]
    by_email: Mapping[str, IndexEntry]
    by_phone: Mapping[str, IndexEntry]
    by_telegram: Mapping[str, IndexEntry]
    by_name: Mapping[str, IndexEntry]
    collisions: Tuple[IndexCollision, ...] = ()
    profile_count: int = 0

    def lookup_external_id(self, external_id: str) -> Optional[IndexEntry]:
        return self.by_external_id.get((external_id or "").strip())

    def lookup_email(self, email: str) -> Optional[IndexEntry]:
        return self.by_email.get(normalize_email(email))

    def lookup_phone(self, phone: str) -> Optional[IndexEntry]:
        return self.by_phone.get(normalize_phone(phone))

    def lookup_telegram(self, handle: str) -> Optional[IndexEntry]:
        return self.by_telegram.get(normalize_handle(handle))

    def lookup_name(self, name: str) -> Optional[IndexEntry]:
        return self.by_name.get(normalize_name(name))


class _IndexBuilder:
    def __init__(self) -> None:
        self.tables: Dict[str, Dict[str, IndexEntry]] = {
            KIND_EXTERNAL_ID: {},
            KIND_EMAIL: {},
            KIND_PHONE: {},
            KIND_TELEGRAM: {},
            KIND_NAME: {},
        }
        self.collisions: List[IndexCollision] = []

    def put(self, kind: str, key: str, entry: IndexEntry) -> None:
        if not key:
            return
        table = self.tables[kind]
        previous = table.get(key)
        if previous is not None and previous.profile_id != entry.profile_id:
            self.collisions.append(
                IndexCollision(
                    kind=kind,
                    key=key,
                    previous_profile_id=previous.profile_id,
                    profile_id=entry.profile_id,
                )
            )
            logger.info(
                "Index collision on %s %r: %s replaced by %s",
                kind,
                key,
                previous.profile_id,
                entry.profile_id,
            )
        table[key] = entry


def build_index(
    profiles: Iterable[KnownProfile], min_phone_digits: int = MIN_PHONE_DIGITS
) -> IdentityIndex:
    builder = _IndexBuilder()
    count = 0
    for profile in profiles:
        count += 1
        entry = IndexEntry(profile_id=profile.profile_id, name=profile.full_name)
        builder.put(KIND_EXTERNAL_ID, profile.external_id.strip(), entry)
        for email in profile.all_emails():
            builder.put(KIND_EMAIL, normalize_email(email), entry)
        for phone in profile.all_phones():
            canonical = normalize_phone(phone)
            if is_indexable_phone(canonical, min_phone_digits):
                builder.put(KIND_PHONE, canonical, entry)
        builder.put(KIND_TELEGRAM, normalize_handle(profile.telegram_username), entry)
        builder.put(KIND_NAME, normalize_name(profile.full_name), entry)

    tables = builder.tables
    logger.info(
        "Built identity index from %d profiles (%d emails, %d phones, %d collisions)",
        count,
        len(tables[KIND_EMAIL]),
        len(tables[KIND_PHONE]),
        len(builder.collisions),
    )
    return IdentityIndex(
        by_external_id=MappingProxyType(tables[KIND_EXTERNAL_ID]),
        by_email=MappingProxyType(tables[KIND_EMAIL]),
        by_phone=MappingProxyType(tables[KIND_PHONE]),
        by_telegram=MappingProxyType(tables[KIND_TELEGRAM]),
        by_name=MappingProxyType(tables[KIND_NAME]),
        collisions=tuple(builder.collisions),
        profile_count=count,
    )
