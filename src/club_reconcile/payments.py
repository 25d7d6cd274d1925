from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

import pandas as pd

from .errors import SourceUnavailableError
from .models import (
    SOURCE_QUEUE,
    SOURCE_SETTLED,
    LinkedCard,
    MergedPaymentView,
    MergeStats,
    PaymentEvidence,
)
from .normalization import brand_variants, frame_records, normalize_brand

logger = logging.getLogger(__name__)

BUCKET_DIRECT = "direct"
BUCKET_BY_CARD = "by_card"

DEFAULT_RESULT_LIMIT = 100
DEFAULT_PER_QUERY_LIMIT = 50
DEFAULT_MAX_WORKERS = 4
DEFAULT_SETTLED_STATUSES: Tuple[str, ...] = ("succeeded", "refunded")
DEFAULT_QUEUE_STATUSES: Tuple[str, ...] = ("completed",)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class EvidenceQuery:
    """
    One lookup against a payment source.

    A query either targets rows tagged with ``profile_id`` or rows carrying
    ``last4``. Card queries narrow further by brand aliases, or to rows without
    any brand when ``brandless`` is set.
    """

    source: str
    bucket: str
    profile_id: Optional[str] = None
    last4: Optional[str] = None
    brands: Tuple[str, ...] = ()
    brandless: bool = False
    limit: int = DEFAULT_PER_QUERY_LIMIT

    def matches(self, evidence: PaymentEvidence) -> bool:
        if self.profile_id is not None:
            return evidence.profile_id == self.profile_id
        if evidence.card_last4 != self.last4:
            return False
        if self.brandless:
            return not evidence.has_brand
        if self.brands:
            return (evidence.card_brand or "").strip().lower() in self.brands
        return True


class EvidenceSource:
    name: str = ""

    def fetch(self, query: EvidenceQuery) -> List[PaymentEvidence]:
        raise NotImplementedError


class InMemoryEvidenceSource(EvidenceSource):
    """Evidence held in memory, limited to rows whose status counts as resolved."""

    def __init__(
        self,
        name: str,
        rows: Iterable[PaymentEvidence],
        statuses: Optional[Sequence[str]] = None,
    ) -> None:
        self.name = name
        allowed = {status.strip().lower() for status in statuses or ()}
        self._rows = [
            row for row in rows if not allowed or row.status.strip().lower() in allowed
        ]

    def fetch(self, query: EvidenceQuery) -> List[PaymentEvidence]:
        hits = [row for row in self._rows if query.matches(row)]
        return sort_by_time(hits)[: query.limit]


class UnavailableSource(EvidenceSource):
    def __init__(self, name: str, reason: str) -> None:
        self.name = name
        self.reason = reason

    def fetch(self, query: EvidenceQuery) -> List[PaymentEvidence]:
        raise SourceUnavailableError(self.name, self.reason)


SourceInput = Union[EvidenceSource, Sequence[PaymentEvidence], None]


def _event_time(evidence: PaymentEvidence) -> Optional[datetime]:
    return evidence.paid_at or evidence.created_at


def sort_by_time(rows: Iterable[PaymentEvidence]) -> List[PaymentEvidence]:
    def key(row: PaymentEvidence) -> Tuple[bool, datetime]:
        moment = _event_time(row)
        return (moment is not None, moment or _EPOCH)

    return sorted(rows, key=key, reverse=True)


def last4_counts(cards: Iterable[LinkedCard]) -> Dict[str, int]:
    distinct = {(card.last4, normalize_brand(card.brand)) for card in cards if card.last4}
    counts: Dict[str, int] = {}
    for last4, _brand in distinct:
        counts[last4] = counts.get(last4, 0) + 1
    return counts


def can_match_by_last4_only(card: LinkedCard, counts: Mapping[str, int]) -> bool:
    """True when no other card of the same profile shares this last4."""
    return counts.get(card.last4, 0) <= 1


def card_queries(
    source: str, card: LinkedCard, counts: Mapping[str, int], limit: int
) -> List[EvidenceQuery]:
    queries: List[EvidenceQuery] = []
    last4_only = can_match_by_last4_only(card, counts)
    if card.has_brand:
        queries.append(
            EvidenceQuery(
                source=source,
                bucket=BUCKET_BY_CARD,
                last4=card.last4,
                brands=brand_variants(card.brand),
                limit=limit,
            )
        )
        if last4_only:
            queries.append(
                EvidenceQuery(
                    source=source, bucket=BUCKET_BY_CARD, last4=card.last4, brandless=True, limit=limit
                )
            )
    elif last4_only:
        queries.append(EvidenceQuery(source=source, bucket=BUCKET_BY_CARD, last4=card.last4, limit=limit))
    else:
        logger.debug("Skipping brandless card %s: last4 shared by several cards", card.last4)
    return queries


def plan_queries(
    profile_id: str,
    cards: Sequence[LinkedCard],
    direct_limit: int = DEFAULT_RESULT_LIMIT,
    per_query_limit: int = DEFAULT_PER_QUERY_LIMIT,
) -> List[EvidenceQuery]:
    counts = last4_counts(cards)
    unique_cards = list(
        {(card.last4, card.brand.strip().lower()): card for card in cards if card.last4}.values()
    )
    plan: List[EvidenceQuery] = []
    for source in (SOURCE_SETTLED, SOURCE_QUEUE):
        plan.append(
            EvidenceQuery(source=source, bucket=BUCKET_DIRECT, profile_id=profile_id, limit=direct_limit)
        )
        for card in unique_cards:
            plan.extend(card_queries(source, card, counts, per_query_limit))
    return plan


def _as_source(name: str, value: SourceInput, statuses: Sequence[str]) -> EvidenceSource:
    if value is None:
        return UnavailableSource(name, "not provided")
    if isinstance(value, EvidenceSource):
        return value
    return InMemoryEvidenceSource(name, value, statuses)


def _run_query(source: EvidenceSource, query: EvidenceQuery) -> List[PaymentEvidence]:
    rows = source.fetch(query)
    logger.debug(
        "%s %s query (last4=%s) returned %d rows", query.source, query.bucket, query.last4, len(rows)
    )
    return rows


def merge_payments(
    profile_id: str,
    linked_cards: Sequence[LinkedCard],
    settled: SourceInput,
    queue: SourceInput,
    limit: int = DEFAULT_RESULT_LIMIT,
    per_query_limit: int = DEFAULT_PER_QUERY_LIMIT,
    settled_statuses: Sequence[str] = DEFAULT_SETTLED_STATUSES,
    queue_statuses: Sequence[str] = DEFAULT_QUEUE_STATUSES,
    order_names: Optional[Mapping[str, str]] = None,
    max_workers: int = DEFAULT_MAX_WORKERS,
) -> MergedPaymentView:
    """
    Gather every piece of payment evidence for one profile from both ledgers.

    All planned queries run concurrently and are joined back in plan order:
    settled direct, settled by card, queue direct, queue by card. Duplicate
    natural keys keep the row seen last in that order. The result is sorted
    newest first (rows without a timestamp last) and cut to ``limit``.
    """
    sources = {
        SOURCE_SETTLED: _as_source(SOURCE_SETTLED, settled, settled_statuses),
        SOURCE_QUEUE: _as_source(SOURCE_QUEUE, queue, queue_statuses),
    }
    plan = plan_queries(profile_id, linked_cards, direct_limit=limit, per_query_limit=per_query_limit)

    with ThreadPoolExecutor(max_workers=max(max_workers, 1)) as executor:
        futures = [executor.submit(_run_query, sources[query.source], query) for query in plan]

    failed: Dict[str, str] = {}
    fetched: List[Tuple[EvidenceQuery, List[PaymentEvidence]]] = []
    for query, future in zip(plan, futures):
        try:
            fetched.append((query, future.result()))
        except SourceUnavailableError as exc:
            failed.setdefault(query.source, exc.reason)
    for source, reason in failed.items():
        logger.warning("Payment source %s unavailable for %s: %s", source, profile_id, reason)

    stats = MergeStats(queried_at=datetime.now(timezone.utc).isoformat())
    merged: Dict[str, PaymentEvidence] = {}
    for query, rows in fetched:
        if query.source in failed:
            continue
        bucket_attr = f"{'settled' if query.source == SOURCE_SETTLED else 'queue'}_{query.bucket}"
        setattr(stats, bucket_attr, getattr(stats, bucket_attr) + len(rows))
        for row in rows:
            key = row.dedupe_key
            if not key:
                logger.warning("Dropping %s evidence without a natural key: %r", query.source, row.record_id)
                continue
            merged[key] = row
    stats.total_unique = len(merged)

    payments = sort_by_time(merged.values())[: max(limit, 0)]
    if order_names:
        payments = [_with_product_name(payment, order_names) for payment in payments]

    counts = last4_counts(linked_cards)
    view = MergedPaymentView(
        profile_id=profile_id,
        payments=payments,
        sources_ok=[name for name in (SOURCE_SETTLED, SOURCE_QUEUE) if name not in failed],
        sources_failed=failed,
        ambiguous_last4=sorted(last4 for last4, count in counts.items() if count > 1),
        stats=stats,
    )
    logger.info(
        "Merged %d payments for %s (sources ok: %s)",
        len(view.payments),
        profile_id,
        ", ".join(view.sources_ok) or "none",
    )
    return view


def _with_product_name(payment: PaymentEvidence, order_names: Mapping[str, str]) -> PaymentEvidence:
    if payment.product_name or not payment.order_ref:
        return payment
    name = order_names.get(payment.order_ref)
    return replace(payment, product_name=name) if name else payment


def evidence_from_frame(frame: pd.DataFrame, source: str) -> List[PaymentEvidence]:
    return [PaymentEvidence.from_mapping(record, source) for record in frame_records(frame)]


def cards_from_frame(frame: pd.DataFrame, profile_id: Optional[str] = None) -> List[LinkedCard]:
    cards = [LinkedCard.from_mapping(record) for record in frame_records(frame)]
    if profile_id is None:
        return cards
    return [card for card in cards if card.profile_id == profile_id]
