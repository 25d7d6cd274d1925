from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple, Union

from .config_loader import MatchingConfig
from .errors import InvalidJobTransition, ReconcileError, RowError, RowParseError
from .fuzzy import (
    FuzzyReview,
    LinkStore,
    confirm_link,
    mark_linked,
    resolve_reviews,
    review_stats,
    review_unmatched,
)
from .identity_index import IndexCollision, build_index
from .matching import match_contacts
from .models import ExternalContact, KnownProfile, MatchResult
from .normalization import (
    first_present,
    is_indexable_phone,
    normalize_email,
    normalize_handle,
    normalize_phone,
    safe_get,
)

logger = logging.getLogger(__name__)

ID_COLUMNS = ("ID",)
FIRST_NAME_COLUMNS = ("Имя", "First name")
LAST_NAME_COLUMNS = ("Фамилия", "Last name")
FULL_NAME_COLUMNS = ("Наименование", "Name")
EMAIL_COLUMNS = (
    "Рабочий email",
    "Личный email",
    "Другой email",
    "Work email",
    "Personal email",
    "Other email",
)
PHONE_COLUMNS = (
    "Рабочий телефон",
    "Рабочий прямой телефон",
    "Мобильный телефон",
    "Домашний телефон",
    "Другой телефон",
    "Work phone",
    "Mobile phone",
    "Home phone",
    "Other phone",
)
TELEGRAM_COLUMNS = ("Телеграм (контакт)", "Никнейм Телеграм (контакт)", "Telegram")
CREATED_AT_COLUMNS = ("Дата создания", "Created at")

PLACEHOLDER = "-"

JOB_PENDING = "pending"
JOB_PROCESSING = "processing"
JOB_COMPLETED = "completed"
JOB_FAILED = "failed"

ProgressCallback = Callable[[int, int], None]


def parse_contact_row(
    row: Mapping[str, Any], row_number: int = 0, min_phone_digits: int = 9
) -> ExternalContact:
    """
    Turn one CRM export row into an ExternalContact.

    Raises RowParseError when the row has no external id or no usable name.
    Emails without ``@`` and phones shorter than ``min_phone_digits`` after
    normalization are dropped silently.
    """
    external_id = first_present(row, ID_COLUMNS, PLACEHOLDER)
    if not external_id:
        raise RowParseError(row_number, "ID", "missing external id")

    first_name = first_present(row, FIRST_NAME_COLUMNS, PLACEHOLDER)
    last_name = first_present(row, LAST_NAME_COLUMNS, PLACEHOLDER)
    full_name = first_present(row, FULL_NAME_COLUMNS, PLACEHOLDER) or f"{first_name} {last_name}".strip()
    if not full_name:
        raise RowParseError(row_number, "Name", "missing contact name")

    emails: List[str] = []
    for column in EMAIL_COLUMNS:
        value = safe_get(row, column)
        if value and value != PLACEHOLDER and "@" in value:
            emails.append(normalize_email(value))

    phones: List[str] = []
    for column in PHONE_COLUMNS:
        value = safe_get(row, column).replace("'", "")
        if not value or value == PLACEHOLDER:
            continue
        canonical = normalize_phone(value)
        if is_indexable_phone(canonical, min_phone_digits):
            phones.append(canonical)

    return ExternalContact(
        external_id=external_id,
        full_name=full_name,
        first_name=first_name,
        last_name=last_name,
        emails=tuple(dict.fromkeys(emails)),
        phones=tuple(dict.fromkeys(phones)),
        telegram_username=normalize_handle(first_present(row, TELEGRAM_COLUMNS, PLACEHOLDER)),
        created_at=first_present(row, CREATED_AT_COLUMNS, PLACEHOLDER),
        row_number=row_number,
    )


def parse_contact_rows(
    rows: Iterable[Union[Mapping[str, Any], ExternalContact]], min_phone_digits: int = 9
) -> Tuple[List[ExternalContact], List[RowError]]:
    """
    Parse export rows in input order, passing parsed contacts through as-is.

    Rows are numbered from 1 by position. A repeated external id keeps the
    first occurrence; later ones become ``duplicate external id`` errors.
    """
    contacts: List[ExternalContact] = []
    errors: List[RowError] = []
    seen: Set[str] = set()
    for row_number, row in enumerate(rows, start=1):
        try:
            if isinstance(row, ExternalContact):
                contact = row
            else:
                contact = parse_contact_row(row, row_number, min_phone_digits)
            key = contact.external_id.strip()
            if key in seen:
                raise RowParseError(row_number, "ID", "duplicate external id")
        except RowParseError as exc:
            errors.append(RowError.from_exception(exc))
            continue
        seen.add(key)
        contacts.append(contact)
    if errors:
        logger.info("Skipped %d of %d rows that could not be parsed", len(errors), len(errors) + len(contacts))
    return contacts, errors


@dataclass
class ImportJob:
    """
    Progress record for one matching batch.

    Moves ``pending -> processing -> completed | failed``. ``processed`` never
    decreases.
    """

    total: int = 0
    job_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    status: str = JOB_PENDING
    processed: int = 0
    matched: int = 0
    unmatched: int = 0
    errors_count: int = 0
    error_log: List[Dict[str, Any]] = field(default_factory=list)
    started_at: Optional[str] = None
    finished_at: Optional[str] = None

    def _require(self, *allowed: str) -> None:
        if self.status not in allowed:
            raise InvalidJobTransition(
                f"Job {self.job_id} is {self.status}, expected one of {', '.join(allowed)}",
                details={"job_id": self.job_id, "status": self.status},
            )

    def start(self) -> None:
        self._require(JOB_PENDING)
        self.status = JOB_PROCESSING
        self.started_at = datetime.now(timezone.utc).isoformat()

    def advance(self, processed: int) -> None:
        self._require(JOB_PROCESSING)
        if processed < self.processed:
            raise InvalidJobTransition(
                f"Processed count cannot go back from {self.processed} to {processed}",
                details={"job_id": self.job_id, "processed": self.processed},
            )
        self.processed = processed

    def complete(self, matched: int = 0, unmatched: int = 0) -> None:
        self._require(JOB_PROCESSING)
        self.status = JOB_COMPLETED
        self.processed = max(self.processed, self.total)
        self.matched = matched
        self.unmatched = unmatched
        self.finished_at = datetime.now(timezone.utc).isoformat()

    def fail(self, reason: str) -> None:
        self._require(JOB_PENDING, JOB_PROCESSING)
        self.status = JOB_FAILED
        self.error_log.append({"message": reason})
        self.finished_at = datetime.now(timezone.utc).isoformat()

    def record_errors(self, errors: Sequence[RowError]) -> None:
        self.errors_count += len(errors)
        self.error_log.extend(error.to_dict() for error in errors)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job_id": self.job_id,
            "status": self.status,
            "total": self.total,
            "processed": self.processed,
            "matched": self.matched,
            "unmatched": self.unmatched,
            "errors_count": self.errors_count,
            "started_at": self.started_at or "",
            "finished_at": self.finished_at or "",
        }


@dataclass
class BatchResult:
    job: ImportJob
    contacts: List[ExternalContact]
    results: List[MatchResult]
    reviews: List[FuzzyReview]
    row_errors: List[RowError]
    collisions: List[IndexCollision]

    def tier_counts(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for result in self.results:
            counts[result.tier] = counts.get(result.tier, 0) + 1
        return counts


def run_match_batch(
    rows: Sequence[Union[Mapping[str, Any], ExternalContact]],
    profiles: Sequence[KnownProfile],
    config: Optional[MatchingConfig] = None,
    progress: Optional[ProgressCallback] = None,
) -> BatchResult:
    """
    Parse, index, match and queue fuzzy review for one batch of contacts.

    ``rows`` may mix raw export rows and parsed contacts; input order is kept
    and a repeated external id is reported as a row error. The index is
    built once from ``profiles``. Progress is pushed to ``progress`` as
    ``(processed, total)``.
    """
    settings = config or MatchingConfig()
    contacts, row_errors = parse_contact_rows(rows, settings.min_phone_digits)

    job = ImportJob(total=len(contacts))
    job.record_errors(row_errors)
    job.start()

    def _report(processed: int, total: int) -> None:
        job.advance(processed)
        if progress is not None:
            progress(processed, total)

    try:
        index = build_index(profiles, settings.min_phone_digits)
        results = match_contacts(
            contacts,
            index,
            progress=_report,
            progress_every=settings.progress_every,
            min_phone_digits=settings.min_phone_digits,
        )
        reviews = review_unmatched(
            contacts,
            results,
            profiles,
            threshold=settings.fuzzy_threshold,
            limit=settings.max_candidates,
            word_threshold=settings.word_match_threshold,
        )
    except Exception as exc:
        job.fail(str(exc))
        logger.exception("Matching batch %s failed", job.job_id)
        raise

    matched = sum(1 for result in results if result.is_matched)
    job.complete(matched=matched, unmatched=len(results) - matched)
    logger.info(
        "Batch %s: %d contacts, %d matched, %d for review, %d row errors",
        job.job_id,
        len(contacts),
        matched,
        len(reviews),
        len(row_errors),
    )
    return BatchResult(
        job=job,
        contacts=contacts,
        results=results,
        reviews=reviews,
        row_errors=row_errors,
        collisions=list(index.collisions),
    )


def apply_confirmed_links(
    batch: BatchResult, decisions: Iterable[Mapping[str, Any]], store: LinkStore
) -> List[RowError]:
    """
    Apply operator decisions (``external_id`` + ``profile_id`` rows) to the
    batch's fuzzy reviews.

    Each accepted link is written to ``store`` and its ``name_fuzzy`` result
    replaces the contact's ``none`` result. Rejected decisions come back as
    row errors; the rest of the decisions still apply.
    """
    reviews = {review.contact.external_id: review for review in batch.reviews}
    errors: List[RowError] = []
    for row_number, decision in enumerate(decisions, start=1):
        external_id = safe_get(decision, "external_id")
        profile_id = safe_get(decision, "profile_id")
        if not external_id or not profile_id:
            continue
        review = reviews.get(external_id)
        if review is None:
            errors.append(RowError(row_number, "external_id", "no fuzzy review for external id"))
            continue
        try:
            outcome = confirm_link(external_id, profile_id, store)
        except ReconcileError as exc:
            errors.append(RowError(row_number, "profile_id", exc.message, exc.code))
            continue
        mark_linked(review, outcome)

    batch.results = resolve_reviews(batch.results, batch.reviews)
    batch.row_errors.extend(errors)
    batch.job.record_errors(errors)
    batch.job.matched = sum(1 for result in batch.results if result.is_matched)
    batch.job.unmatched = len(batch.results) - batch.job.matched
    linked = review_stats(batch.reviews)["linked"]
    logger.info("Applied confirmed links: %d linked, %d rejected", linked, len(errors))
    return errors
