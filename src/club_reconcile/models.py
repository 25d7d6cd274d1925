from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

from .normalization import (
    normalize_email,
    normalize_handle,
    parse_amount,
    parse_timestamp,
    split_multi,
)

TIER_EXTERNAL_ID = "external_id"
TIER_EMAIL = "email"
TIER_PHONE = "phone"
TIER_TELEGRAM = "telegram"
TIER_NAME_EXACT = "name_exact"
TIER_NAME_FUZZY = "name_fuzzy"
TIER_NONE = "none"

MATCH_TIERS = (
    TIER_EXTERNAL_ID,
    TIER_EMAIL,
    TIER_PHONE,
    TIER_TELEGRAM,
    TIER_NAME_EXACT,
    TIER_NAME_FUZZY,
    TIER_NONE,
)

SOURCE_SETTLED = "settled"
SOURCE_QUEUE = "pending_queue"
PAYMENT_SOURCES = (SOURCE_SETTLED, SOURCE_QUEUE)


def _text(payload: Dict[str, Any], *keys: str) -> str:
    for key in keys:
        value = payload.get(key)
        if value is None:
            continue
        text = str(value).strip()
        if text:
            return text
    return ""


def _optional_text(payload: Dict[str, Any], *keys: str) -> Optional[str]:
    return _text(payload, *keys) or None


def _string_tuple(value: Any) -> Tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return tuple(split_multi(value))
    return tuple(str(item).strip() for item in value if item is not None and str(item).strip())


@dataclass(frozen=True)
class ExternalContact:
    external_id: str
    full_name: str
    first_name: str = ""
    last_name: str = ""
    emails: Tuple[str, ...] = ()
    phones: Tuple[str, ...] = ()
    telegram_username: str = ""
    created_at: str = ""
    row_number: int = 0

    @property
    def primary_email(self) -> str:
        return self.emails[0] if self.emails else ""

    @property
    def primary_phone(self) -> str:
        return self.phones[0] if self.phones else ""

    @staticmethod
    def from_mapping(payload: Dict[str, Any]) -> "ExternalContact":
        return ExternalContact(
            external_id=_text(payload, "external_id"),
            full_name=_text(payload, "full_name"),
            first_name=_text(payload, "first_name"),
            last_name=_text(payload, "last_name"),
            emails=_string_tuple(payload.get("emails")),
            phones=_string_tuple(payload.get("phones")),
            telegram_username=normalize_handle(_text(payload, "telegram_username")),
            created_at=_text(payload, "created_at"),
            row_number=int(payload.get("row_number", 0) or 0),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "external_id": self.external_id,
            "full_name": self.full_name,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "emails": "|".join(self.emails),
            "phones": "|".join(self.phones),
            "telegram_username": self.telegram_username,
            "created_at": self.created_at,
            "row_number": self.row_number,
        }


@dataclass(frozen=True)
class KnownProfile:
    profile_id: str
    full_name: str = ""
    email: str = ""
    emails: Tuple[str, ...] = ()
    phone: str = ""
    phones: Tuple[str, ...] = ()
    telegram_username: str = ""
    external_id: str = ""

    def all_emails(self) -> Iterator[str]:
        if self.email:
            yield self.email
        yield from self.emails

    def all_phones(self) -> Iterator[str]:
        if self.phone:
            yield self.phone
        yield from self.phones

    @staticmethod
    def from_mapping(payload: Dict[str, Any]) -> "KnownProfile":
        return KnownProfile(
            profile_id=_text(payload, "profile_id", "id"),
            full_name=_text(payload, "full_name"),
            email=_text(payload, "email"),
            emails=_string_tuple(payload.get("emails")),
            phone=_text(payload, "phone"),
            phones=_string_tuple(payload.get("phones")),
            telegram_username=_text(payload, "telegram_username"),
            external_id=_text(payload, "external_id", "external_id_amo"),
        )

    def to_dict(self) -> Dict[str, str]:
        return {
            "profile_id": self.profile_id,
            "full_name": self.full_name,
            "email": self.email,
            "emails": "|".join(self.emails),
            "phone": self.phone,
            "phones": "|".join(self.phones),
            "telegram_username": self.telegram_username,
            "external_id": self.external_id,
        }


@dataclass(frozen=True)
class IndexEntry:
    profile_id: str
    name: str = ""


@dataclass(frozen=True)
class MatchResult:
    external_id: str
    profile_id: Optional[str]
    tier: str
    confidence: float
    profile_name: str = ""
    matched_value: str = ""

    @property
    def is_matched(self) -> bool:
        return self.profile_id is not None and self.tier != TIER_NONE

    @staticmethod
    def unmatched(external_id: str) -> "MatchResult":
        return MatchResult(external_id=external_id, profile_id=None, tier=TIER_NONE, confidence=0.0)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "external_id": self.external_id,
            "profile_id": self.profile_id or "",
            "profile_name": self.profile_name,
            "tier": self.tier,
            "confidence": self.confidence,
            "matched_value": self.matched_value,
        }


@dataclass(frozen=True)
class MatchCandidate:
    profile_id: str
    profile_name: str
    score: float
    transliterated: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "profile_id": self.profile_id,
            "profile_name": self.profile_name,
            "score": round(self.score, 4),
            "transliterated": self.transliterated,
        }


@dataclass(frozen=True)
class LinkedCard:
    profile_id: str
    last4: str
    brand: str = ""

    @property
    def has_brand(self) -> bool:
        return bool(self.brand.strip())

    @staticmethod
    def from_mapping(payload: Dict[str, Any]) -> "LinkedCard":
        return LinkedCard(
            profile_id=_text(payload, "profile_id"),
            last4=_text(payload, "last4", "card_last4"),
            brand=_text(payload, "brand", "card_brand"),
        )


@dataclass(frozen=True)
class PaymentEvidence:
    source: str
    natural_key: str
    amount: Optional[float] = None
    currency: str = ""
    paid_at: Optional[datetime] = None
    card_last4: str = ""
    card_brand: Optional[str] = None
    order_ref: Optional[str] = None
    record_id: str = ""
    profile_id: Optional[str] = None
    status: str = ""
    transaction_type: str = ""
    created_at: Optional[datetime] = None
    product_name: str = ""
    payer_email: str = ""
    payer_name: str = ""
    description: str = ""
    tracking_id: str = ""

    @property
    def has_brand(self) -> bool:
        return bool((self.card_brand or "").strip())

    @property
    def dedupe_key(self) -> str:
        return self.natural_key.strip().lower()

    @staticmethod
    def from_mapping(payload: Dict[str, Any], source: str) -> "PaymentEvidence":
        record_id = _text(payload, "record_id", "id")
        if source == SOURCE_QUEUE:
            natural_key = _text(payload, "natural_key", "bepaid_uid", "tracking_id") or record_id
            order_ref = _optional_text(payload, "order_ref", "matched_order_id", "processed_order_id")
            profile_id = _optional_text(payload, "profile_id", "matched_profile_id")
        else:
            natural_key = (
                _text(payload, "natural_key", "provider_payment_id", "uid") or record_id
            )
            order_ref = _optional_text(payload, "order_ref", "order_id")
            profile_id = _optional_text(payload, "profile_id")
        first_name = _text(payload, "first_name")
        last_name = _text(payload, "last_name")
        payer_name = _text(payload, "payer_name", "card_holder") or " ".join(
            part for part in (first_name, last_name) if part
        )
        return PaymentEvidence(
            source=source,
            natural_key=natural_key,
            amount=parse_amount(payload.get("amount")),
            currency=_text(payload, "currency"),
            paid_at=parse_timestamp(payload.get("paid_at")),
            card_last4=_text(payload, "card_last4", "last4"),
            card_brand=_optional_text(payload, "card_brand"),
            order_ref=order_ref,
            record_id=record_id,
            profile_id=profile_id,
            status=_text(payload, "status"),
            transaction_type=_text(payload, "transaction_type"),
            created_at=parse_timestamp(_text(payload, "created_at", "created_at_bepaid")),
            product_name=_text(payload, "product_name"),
            payer_email=normalize_email(_text(payload, "payer_email", "email")),
            payer_name=payer_name,
            description=_text(payload, "description"),
            tracking_id=_text(payload, "tracking_id"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source,
            "natural_key": self.natural_key,
            "record_id": self.record_id,
            "profile_id": self.profile_id or "",
            "amount": "" if self.amount is None else self.amount,
            "currency": self.currency,
            "paid_at": self.paid_at.isoformat() if self.paid_at else "",
            "created_at": self.created_at.isoformat() if self.created_at else "",
            "status": self.status,
            "transaction_type": self.transaction_type,
            "card_last4": self.card_last4,
            "card_brand": self.card_brand or "",
            "order_ref": self.order_ref or "",
            "product_name": self.product_name,
            "payer_email": self.payer_email,
            "payer_name": self.payer_name,
            "description": self.description,
            "tracking_id": self.tracking_id,
        }


@dataclass
class MergeStats:
    settled_direct: int = 0
    settled_by_card: int = 0
    queue_direct: int = 0
    queue_by_card: int = 0
    total_unique: int = 0
    queried_at: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "settled_direct": self.settled_direct,
            "settled_by_card": self.settled_by_card,
            "queue_direct": self.queue_direct,
            "queue_by_card": self.queue_by_card,
            "total_unique": self.total_unique,
            "queried_at": self.queried_at,
        }


@dataclass
class MergedPaymentView:
    profile_id: str
    payments: List[PaymentEvidence] = field(default_factory=list)
    sources_ok: List[str] = field(default_factory=list)
    sources_failed: Dict[str, str] = field(default_factory=dict)
    ambiguous_last4: List[str] = field(default_factory=list)
    stats: MergeStats = field(default_factory=MergeStats)

    @property
    def is_complete(self) -> bool:
        return not self.sources_failed and set(PAYMENT_SOURCES) <= set(self.sources_ok)

    def natural_keys(self) -> Sequence[str]:
        return [payment.natural_key for payment in self.payments]
