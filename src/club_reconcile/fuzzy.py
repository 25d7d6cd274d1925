from __future__ import annotations

import logging
import re
from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence

from .errors import (
    EXTERNAL_ID_ALREADY_LINKED,
    PROFILE_ALREADY_LINKED,
    ConflictingLinkError,
    ProfileNotFoundError,
)
from .models import TIER_NAME_FUZZY, TIER_NONE, ExternalContact, KnownProfile, MatchCandidate, MatchResult
from .transliteration import transliterate_to_cyrillic, transliterate_to_latin

logger = logging.getLogger(__name__)

DEFAULT_FUZZY_THRESHOLD = 0.5
DEFAULT_WORD_THRESHOLD = 0.8
DEFAULT_MAX_CANDIDATES = 3

STATUS_PENDING = "pending"
STATUS_LINKED = "linked"
STATUS_SKIPPED = "skipped"

WORD_SPLIT = re.compile(r"\s+")


def bigram_similarity(a: str, b: str) -> float:
    """
    Sørensen–Dice coefficient over character bigrams of two lowercased strings.

    Each distinct bigram of ``a`` is counted at most once.
    """
    s1 = (a or "").lower()
    s2 = (b or "").lower()
    if not s1 or not s2:
        return 0.0
    if s1 == s2:
        return 1.0
    if len(s1) < 2 or len(s2) < 2:
        return 0.0
    remaining = {s1[i : i + 2] for i in range(len(s1) - 1)}
    shared = 0
    for i in range(len(s2) - 1):
        bigram = s2[i : i + 2]
        if bigram in remaining:
            shared += 1
            remaining.discard(bigram)
    return (2.0 * shared) / (len(s1) - 1 + len(s2) - 1)


def _words(name: str) -> List[str]:
    return [word for word in WORD_SPLIT.split((name or "").lower()) if len(word) > 1]


def name_similarity(a: str, b: str, word_threshold: float = DEFAULT_WORD_THRESHOLD) -> float:
    # A word of ``b`` may satisfy several words of ``a``.
    words_a = _words(a)
    words_b = _words(b)
    if not words_a or not words_b:
        return 0.0
    matched = 0
    for word in words_a:
        for other in words_b:
            if bigram_similarity(word, other) >= word_threshold:
                matched += 1
                break
    return matched / max(len(words_a), len(words_b))


def fuzzy_candidates(
    contact: ExternalContact,
    profiles: Iterable[KnownProfile],
    threshold: float = DEFAULT_FUZZY_THRESHOLD,
    limit: int = DEFAULT_MAX_CANDIDATES,
    word_threshold: float = DEFAULT_WORD_THRESHOLD,
) -> List[MatchCandidate]:
    """
    Rank profiles whose display name resembles the contact's across scripts.

    Each profile scores the better of the contact name rewritten in Cyrillic
    against the profile name, and the contact name against the profile name
    rewritten in Latin. Advisory only: nothing is linked here.
    """
    transliterated = transliterate_to_cyrillic(contact.full_name)
    candidates: List[MatchCandidate] = []
    for profile in profiles:
        if not profile.full_name.strip():
            continue
        direct = name_similarity(transliterated, profile.full_name, word_threshold)
        reverse = name_similarity(
            contact.full_name, transliterate_to_latin(profile.full_name), word_threshold
        )
        score = max(direct, reverse)
        if score >= threshold:
            candidates.append(
                MatchCandidate(
                    profile_id=profile.profile_id,
                    profile_name=profile.full_name,
                    score=score,
                    transliterated=transliterated,
                )
            )
    candidates.sort(key=lambda candidate: candidate.score, reverse=True)
    return candidates[: max(limit, 0)]


@dataclass
class FuzzyReview:
    contact: ExternalContact
    candidates: List[MatchCandidate] = field(default_factory=list)
    status: str = STATUS_PENDING
    linked_profile_id: Optional[str] = None
    result: Optional[MatchResult] = None

    @property
    def best(self) -> Optional[MatchCandidate]:
        return self.candidates[0] if self.candidates else None

    def candidate_for(self, profile_id: str) -> Optional[MatchCandidate]:
        for candidate in self.candidates:
            if candidate.profile_id == profile_id:
                return candidate
        return None

    def to_rows(self) -> List[Dict[str, object]]:
        base = {
            "external_id": self.contact.external_id,
            "contact_name": self.contact.full_name,
            "status": self.status,
            "linked_profile_id": self.linked_profile_id or "",
        }
        if not self.candidates:
            return [dict(base, rank="", profile_id="", profile_name="", score="", transliterated="")]
        return [
            dict(base, rank=rank, **candidate.to_dict())
            for rank, candidate in enumerate(self.candidates, start=1)
        ]


def review_unmatched(
    contacts: Sequence[ExternalContact],
    results: Sequence[MatchResult],
    profiles: Sequence[KnownProfile],
    threshold: float = DEFAULT_FUZZY_THRESHOLD,
    limit: int = DEFAULT_MAX_CANDIDATES,
    word_threshold: float = DEFAULT_WORD_THRESHOLD,
) -> List[FuzzyReview]:
    by_id = {contact.external_id: contact for contact in contacts}
    named = [profile for profile in profiles if profile.full_name.strip()]
    reviews: List[FuzzyReview] = []
    for result in results:
        if result.tier != TIER_NONE:
            continue
        contact = by_id.get(result.external_id)
        if contact is None:
            logger.warning("Unmatched result %s has no parsed contact", result.external_id)
            continue
        reviews.append(
            FuzzyReview(
                contact=contact,
                candidates=fuzzy_candidates(contact, named, threshold, limit, word_threshold),
            )
        )
    logger.info(
        "Queued %d contacts for fuzzy review (%d with candidates)",
        len(reviews),
        sum(1 for review in reviews if review.candidates),
    )
    return reviews


def review_stats(reviews: Iterable[FuzzyReview]) -> Dict[str, int]:
    counts: Counter = Counter()
    for review in reviews:
        counts["total"] += 1
        counts[review.status] += 1
        if review.candidates:
            counts["with_candidates"] += 1
    return {
        "total": counts["total"],
        "with_candidates": counts["with_candidates"],
        STATUS_PENDING: counts[STATUS_PENDING],
        STATUS_LINKED: counts[STATUS_LINKED],
        STATUS_SKIPPED: counts[STATUS_SKIPPED],
    }


class LinkStore:
    """Sink that owns the external id recorded against each profile."""

    def external_id_of(self, profile_id: str) -> Optional[str]:
        raise NotImplementedError

    def profile_for(self, external_id: str) -> Optional[str]:
        raise NotImplementedError

    def has_profile(self, profile_id: str) -> bool:
        raise NotImplementedError

    def set_external_id(self, profile_id: str, external_id: str) -> None:
        raise NotImplementedError


class InMemoryLinkStore(LinkStore):
    def __init__(self, profiles: Iterable[KnownProfile] = ()) -> None:
        self._links: Dict[str, str] = {}
        for profile in profiles:
            self._links[profile.profile_id] = profile.external_id.strip()

    def external_id_of(self, profile_id: str) -> Optional[str]:
        return self._links.get(profile_id) or None

    def profile_for(self, external_id: str) -> Optional[str]:
        for profile_id, linked in self._links.items():
            if linked and linked == external_id:
                return profile_id
        return None

    def has_profile(self, profile_id: str) -> bool:
        return profile_id in self._links

    def set_external_id(self, profile_id: str, external_id: str) -> None:
        self._links[profile_id] = external_id

    def links(self) -> Dict[str, str]:
        return {profile_id: ext for profile_id, ext in self._links.items() if ext}


@dataclass(frozen=True)
class LinkOutcome:
    external_id: str
    profile_id: str
    changed: bool


def confirm_link(external_id: str, profile_id: str, store: LinkStore) -> LinkOutcome:
    external_id = (external_id or "").strip()
    if not external_id:
        raise ValueError("external_id is required to confirm a link")
    if not store.has_profile(profile_id):
        raise ProfileNotFoundError(
            f"Profile {profile_id} does not exist", details={"profile_id": profile_id}
        )
    current = store.external_id_of(profile_id)
    if current == external_id:
        return LinkOutcome(external_id=external_id, profile_id=profile_id, changed=False)
    owner = store.profile_for(external_id)
    if owner is not None and owner != profile_id:
        raise ConflictingLinkError(
            f"External id {external_id} is already linked to profile {owner}",
            code=EXTERNAL_ID_ALREADY_LINKED,
            details={"external_id": external_id, "profile_id": owner},
        )
    if current:
        raise ConflictingLinkError(
            f"Profile {profile_id} is already linked to external id {current}",
            code=PROFILE_ALREADY_LINKED,
            details={"external_id": current, "profile_id": profile_id},
        )
    store.set_external_id(profile_id, external_id)
    logger.info("Linked external id %s to profile %s", external_id, profile_id)
    return LinkOutcome(external_id=external_id, profile_id=profile_id, changed=True)


def mark_linked(review: FuzzyReview, outcome: LinkOutcome) -> MatchResult:
    """
    Record a confirmed link on the review and return its ``name_fuzzy`` result.

    Confidence is the score of the chosen candidate, or 0.0 when the operator
    linked a profile that was not among the candidates.
    """
    if outcome.external_id != review.contact.external_id.strip():
        raise ValueError(
            f"Link for {outcome.external_id} does not belong to review of {review.contact.external_id}"
        )
    candidate = review.candidate_for(outcome.profile_id)
    review.status = STATUS_LINKED
    review.linked_profile_id = outcome.profile_id
    review.result = MatchResult(
        external_id=review.contact.external_id,
        profile_id=outcome.profile_id,
        tier=TIER_NAME_FUZZY,
        confidence=candidate.score if candidate else 0.0,
        profile_name=candidate.profile_name if candidate else "",
        matched_value=candidate.transliterated if candidate else "",
    )
    return review.result


def resolve_reviews(results: Sequence[MatchResult], reviews: Iterable[FuzzyReview]) -> List[MatchResult]:
    """Replace ``none`` results with the ``name_fuzzy`` result of their linked review."""
    linked = {review.contact.external_id: review.result for review in reviews if review.result is not None}
    return [
        linked.get(result.external_id, result) if result.tier == TIER_NONE else result
        for result in results
    ]


def mark_skipped(review: FuzzyReview) -> None:
    review.status = STATUS_SKIPPED
