from __future__ import annotations

import base64
import binascii
import json
import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple, Union

import pandas as pd

from .classification import (
    CATEGORY_CANCELLED,
    CATEGORY_FAILED,
    CATEGORY_PENDING,
    CATEGORY_REFUNDED,
    CATEGORY_SUCCESSFUL,
    classify_payment,
)
from .errors import InvalidCursorError
from .normalization import frame_records, parse_amount, parse_timestamp

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 50
DEFAULT_UTC_OFFSET = "+03:00"

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)
_OFFSET_PATTERN = re.compile(r"^([+-])(\d{2}):?(\d{2})$")

SEARCHABLE_FIELDS = (
    "uid",
    "order_id",
    "email",
    "phone",
    "card_masked",
    "card_holder",
    "tracking_id",
    "description",
    "first_name",
    "last_name",
    "shop_name",
    "bank_name",
    "ip",
    "status",
    "transaction_type",
)


def _text(payload: Dict[str, Any], *keys: str) -> str:
    for key in keys:
        value = payload.get(key)
        if value is not None and str(value).strip():
            return str(value).strip()
    return ""


def _amount_text(amount: Optional[float]) -> str:
    if amount is None:
        return ""
    return ("%.2f" % amount).rstrip("0").rstrip(".")


def normalize_search_value(value: Any) -> str:
    if value is None:
        return ""
    return str(value).lower().replace(",", ".").strip()


def search_terms(query: str) -> List[str]:
    return [term for term in (normalize_search_value(part) for part in (query or "").split()) if term]


@dataclass(frozen=True)
class StatementRow:
    uid: str
    paid_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    amount: Optional[float] = None
    currency: str = ""
    status: str = ""
    transaction_type: str = ""
    order_id: str = ""
    email: str = ""
    phone: str = ""
    card_masked: str = ""
    card_holder: str = ""
    tracking_id: str = ""
    description: str = ""
    first_name: str = ""
    last_name: str = ""
    shop_name: str = ""
    bank_name: str = ""
    ip: str = ""

    @property
    def sort_ts(self) -> Optional[datetime]:
        return self.paid_at or self.created_at

    @property
    def search_index(self) -> str:
        values = [getattr(self, name) for name in SEARCHABLE_FIELDS]
        values.append(_amount_text(self.amount))
        return " ".join(normalized for normalized in map(normalize_search_value, values) if normalized)

    @property
    def category(self) -> str:
        return classify_payment(self.status, self.transaction_type, self.amount)

    @staticmethod
    def from_mapping(payload: Dict[str, Any]) -> "StatementRow":
        return StatementRow(
            uid=_text(payload, "uid", "natural_key"),
            paid_at=parse_timestamp(payload.get("paid_at")),
            created_at=parse_timestamp(_text(payload, "created_at_bepaid", "created_at")),
            amount=parse_amount(payload.get("amount")),
            currency=_text(payload, "currency"),
            status=_text(payload, "status"),
            transaction_type=_text(payload, "transaction_type"),
            order_id=_text(payload, "order_id_bepaid", "order_id"),
            email=_text(payload, "email"),
            phone=_text(payload, "phone"),
            card_masked=_text(payload, "card_masked"),
            card_holder=_text(payload, "card_holder"),
            tracking_id=_text(payload, "tracking_id"),
            description=_text(payload, "description"),
            first_name=_text(payload, "first_name"),
            last_name=_text(payload, "last_name"),
            shop_name=_text(payload, "shop_name"),
            bank_name=_text(payload, "bank_name"),
            ip=_text(payload, "ip"),
        )

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "uid": self.uid,
            "sort_ts": self.sort_ts.isoformat() if self.sort_ts else "",
            "paid_at": self.paid_at.isoformat() if self.paid_at else "",
            "created_at": self.created_at.isoformat() if self.created_at else "",
            "amount": "" if self.amount is None else self.amount,
            "currency": self.currency,
            "category": self.category,
        }
        for name in SEARCHABLE_FIELDS:
            payload.setdefault(name, getattr(self, name))
        return payload


@dataclass(frozen=True)
class SeekCursor:
    """
    Composite keyset position ``(sort_ts, natural_key)``.

    Rows are listed descending on both parts. A missing timestamp ranks below
    every real one, so such rows come last.
    """

    sort_ts: Optional[datetime]
    natural_key: str

    def rank(self) -> Tuple[bool, datetime, str]:
        return (self.sort_ts is not None, self.sort_ts or _EPOCH, self.natural_key)

    def encode(self) -> str:
        payload = {
            "ts": self.sort_ts.isoformat() if self.sort_ts else None,
            "key": self.natural_key,
        }
        raw = json.dumps(payload, separators=(",", ":")).encode("utf-8")
        return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")

    @staticmethod
    def decode(token: str) -> "SeekCursor":
        padded = (token or "") + "=" * (-len(token or "") % 4)
        try:
            payload = json.loads(base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8"))
            key = payload["key"]
            ts = payload["ts"]
        except (binascii.Error, UnicodeError, ValueError, KeyError, TypeError) as exc:
            raise InvalidCursorError(f"Undecodable cursor token: {token!r}") from exc
        if not isinstance(key, str):
            raise InvalidCursorError(f"Cursor key must be a string: {token!r}")
        sort_ts = parse_timestamp(ts) if ts else None
        if ts and sort_ts is None:
            raise InvalidCursorError(f"Cursor timestamp is invalid: {ts!r}")
        return SeekCursor(sort_ts=sort_ts, natural_key=key)


def sort_key(row: StatementRow) -> SeekCursor:
    return SeekCursor(sort_ts=row.sort_ts, natural_key=row.uid)


def is_before(a: SeekCursor, b: SeekCursor) -> bool:
    """True when ``a`` is listed after ``b``: ``a.ts < b.ts or (equal ts and a.key < b.key)``."""
    return a.rank() < b.rank()


def parse_utc_offset(value: str) -> timezone:
    match = _OFFSET_PATTERN.match((value or "").strip())
    if not match:
        raise ValueError(f"Invalid UTC offset: {value!r}")
    sign, hours, minutes = match.groups()
    delta = timedelta(hours=int(hours), minutes=int(minutes))
    return timezone(-delta if sign == "-" else delta)


@dataclass(frozen=True)
class StatementFilters:
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    search: str = ""
    utc_offset: str = DEFAULT_UTC_OFFSET

    def window(self) -> Tuple[Optional[datetime], Optional[datetime]]:
        """Inclusive datetime bounds for whole local days in ``utc_offset``."""
        zone = parse_utc_offset(self.utc_offset)
        lower = datetime.combine(self.date_from, time(0, 0, 0), tzinfo=zone) if self.date_from else None
        upper = datetime.combine(self.date_to, time(23, 59, 59), tzinfo=zone) if self.date_to else None
        return lower, upper

    def matches_search(self, row: StatementRow) -> bool:
        terms = search_terms(self.search)
        if not terms:
            return True
        index = row.search_index
        return all(term in index for term in terms)


class StatementLedger:
    def query(
        self,
        window: Tuple[Optional[datetime], Optional[datetime]],
        after: Optional[SeekCursor],
        limit: int,
    ) -> List[StatementRow]:
        raise NotImplementedError


class InMemoryLedger(StatementLedger):
    def __init__(self, rows: Iterable[StatementRow]) -> None:
        self._rows = sorted(rows, key=lambda row: sort_key(row).rank(), reverse=True)

    def __len__(self) -> int:
        return len(self._rows)

    @staticmethod
    def from_frame(frame: pd.DataFrame) -> "InMemoryLedger":
        rows = [StatementRow.from_mapping(record) for record in frame_records(frame)]
        keyed = [row for row in rows if row.uid]
        if len(keyed) != len(rows):
            logger.warning("Ignored %d statement rows without uid", len(rows) - len(keyed))
        return InMemoryLedger(keyed)

    def query(
        self,
        window: Tuple[Optional[datetime], Optional[datetime]],
        after: Optional[SeekCursor],
        limit: int,
    ) -> List[StatementRow]:
        lower, upper = window
        out: List[StatementRow] = []
        for row in self._rows:
            ts = row.sort_ts
            if lower is not None and (ts is None or ts < lower):
                continue
            if upper is not None and (ts is None or ts > upper):
                continue
            if after is not None and not is_before(sort_key(row), after):
                continue
            out.append(row)
            if len(out) >= limit:
                break
        return out


@dataclass
class StatementPage:
    rows: List[StatementRow] = field(default_factory=list)
    next_cursor: Optional[SeekCursor] = None
    fetched: int = 0

    @property
    def has_more(self) -> bool:
        return self.next_cursor is not None


class StatementPaginator:
    def __init__(
        self,
        ledger: StatementLedger,
        page_size: int = DEFAULT_PAGE_SIZE,
        utc_offset: str = DEFAULT_UTC_OFFSET,
    ) -> None:
        if page_size < 1:
            raise ValueError("page_size must be positive")
        self.ledger = ledger
        self.page_size = page_size
        self.utc_offset = utc_offset

    def _filters(self, filters: Optional[StatementFilters]) -> StatementFilters:
        if filters is None:
            return StatementFilters(utc_offset=self.utc_offset)
        return filters

    def fetch_page(
        self,
        filters: Optional[StatementFilters] = None,
        cursor: Union[SeekCursor, str, None] = None,
    ) -> StatementPage:
        """
        Fetch the next page after ``cursor``.

        The next cursor is taken from the last fetched row before the search
        filter runs, so a page may hold fewer rows than ``page_size`` and still
        have more to follow.
        """
        filters = self._filters(filters)
        if isinstance(cursor, str):
            cursor = SeekCursor.decode(cursor)
        fetched = self.ledger.query(filters.window(), cursor, self.page_size)
        rows = [row for row in fetched if filters.matches_search(row)]
        next_cursor = sort_key(fetched[-1]) if len(fetched) == self.page_size else None
        logger.debug(
            "Statement page: fetched %d, kept %d, more=%s", len(fetched), len(rows), next_cursor is not None
        )
        return StatementPage(rows=rows, next_cursor=next_cursor, fetched=len(fetched))

    def iter_pages(self, filters: Optional[StatementFilters] = None) -> Iterator[StatementPage]:
        cursor: Optional[SeekCursor] = None
        while True:
            page = self.fetch_page(filters, cursor)
            yield page
            if page.next_cursor is None:
                return
            cursor = page.next_cursor

    def fetch_all(self, filters: Optional[StatementFilters] = None) -> List[StatementRow]:
        rows: List[StatementRow] = []
        for page in self.iter_pages(filters):
            rows.extend(page.rows)
        return rows


def fetch_page(
    ledger: StatementLedger,
    filters: Optional[StatementFilters] = None,
    cursor: Union[SeekCursor, str, None] = None,
    page_size: int = DEFAULT_PAGE_SIZE,
) -> StatementPage:
    return StatementPaginator(ledger, page_size=page_size).fetch_page(filters, cursor)


@dataclass
class StatementStats:
    payments_count: int = 0
    payments_amount: float = 0.0
    refunds_count: int = 0
    refunds_amount: float = 0.0
    cancellations_count: int = 0
    cancellations_amount: float = 0.0
    errors_count: int = 0
    errors_amount: float = 0.0
    pending_count: int = 0
    unknown_count: int = 0
    total_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "payments_count": self.payments_count,
            "payments_amount": round(self.payments_amount, 2),
            "refunds_count": self.refunds_count,
            "refunds_amount": round(self.refunds_amount, 2),
            "cancellations_count": self.cancellations_count,
            "cancellations_amount": round(self.cancellations_amount, 2),
            "errors_count": self.errors_count,
            "errors_amount": round(self.errors_amount, 2),
            "pending_count": self.pending_count,
            "unknown_count": self.unknown_count,
            "total_count": self.total_count,
        }


_STAT_BUCKETS = {
    CATEGORY_SUCCESSFUL: "payments",
    CATEGORY_REFUNDED: "refunds",
    CATEGORY_CANCELLED: "cancellations",
    CATEGORY_FAILED: "errors",
}


def summarize_statement(rows: Sequence[StatementRow]) -> StatementStats:
    stats = StatementStats()
    for row in rows:
        stats.total_count += 1
        category = row.category
        bucket = _STAT_BUCKETS.get(category)
        if bucket is None:
            if category == CATEGORY_PENDING:
                stats.pending_count += 1
            else:
                stats.unknown_count += 1
            continue
        setattr(stats, f"{bucket}_count", getattr(stats, f"{bucket}_count") + 1)
        setattr(stats, f"{bucket}_amount", getattr(stats, f"{bucket}_amount") + (row.amount or 0.0))
    return stats
