import pytest

from club_reconcile.errors import ConflictingLinkError, ProfileNotFoundError
from club_reconcile.fuzzy import (
    InMemoryLinkStore,
    bigram_similarity,
    confirm_link,
    fuzzy_candidates,
    mark_linked,
    mark_skipped,
    name_similarity,
    resolve_reviews,
    review_stats,
    review_unmatched,
)
from club_reconcile.models import ExternalContact, KnownProfile, MatchResult


def test_bigram_similarity_bounds():
    assert bigram_similarity("petrov", "petrov") == 1.0
    assert bigram_similarity("Petrov", "petrov") == 1.0
    assert bigram_similarity("", "petrov") == 0.0
    assert bigram_similarity("", "") == 0.0
    assert bigram_similarity("a", "ab") == 0.0
    assert bigram_similarity("night", "nacht") == pytest.approx(0.25)


def test_bigram_counts_each_distinct_bigram_once():
    assert bigram_similarity("aaa", "aaaa") == pytest.approx(2 / 5)


def test_name_similarity_word_matching():
    assert name_similarity("Ivan Petrov", "ivan petrov") == 1.0
    assert name_similarity("Ivan Petrov", "Ivan Sidorov") == 0.5
    assert name_similarity("I P", "Ivan Petrov") == 0.0


def test_name_similarity_lets_one_word_match_twice():
    assert name_similarity("anna anna", "anna maria") == 1.0


def test_transliterated_name_is_top_candidate():
    contact = ExternalContact(external_id="1", full_name="Ivan Petrov")
    profiles = [
        KnownProfile(profile_id="other", full_name="Пётр Сидоров"),
        KnownProfile(profile_id="blank", full_name=""),
        KnownProfile(profile_id="ivan", full_name="Иван Петров"),
    ]

    candidates = fuzzy_candidates(contact, profiles)

    assert [candidate.profile_id for candidate in candidates] == ["ivan"]
    assert candidates[0].score == 1.0
    assert candidates[0].transliterated == "Иван Петров"


def test_latin_profile_name_scores_through_reverse_transliteration():
    contact = ExternalContact(external_id="1", full_name="Zhanna Kim")
    profiles = [
        KnownProfile(profile_id="latin", full_name="Zhanna Kim"),
        KnownProfile(profile_id="cyrillic", full_name="Жанна Ким"),
    ]

    candidates = fuzzy_candidates(contact, profiles)

    assert [candidate.profile_id for candidate in candidates] == ["latin", "cyrillic"]
    assert [candidate.score for candidate in candidates] == [1.0, 1.0]


def test_candidates_are_capped_and_sorted():
    contact = ExternalContact(external_id="1", full_name="Ivan Petrov")
    profiles = [KnownProfile(profile_id="half", full_name="Иван Сидоров")] + [
        KnownProfile(profile_id=f"p{i}", full_name="Иван Петров") for i in range(4)
    ]

    candidates = fuzzy_candidates(contact, profiles)

    assert [candidate.profile_id for candidate in candidates] == ["p0", "p1", "p2"]
    assert fuzzy_candidates(contact, profiles, threshold=1.01) == []


def test_review_unmatched_only_queues_none_tier():
    contacts = [
        ExternalContact(external_id="a", full_name="Ivan Petrov"),
        ExternalContact(external_id="b", full_name="Anna Ivanova"),
    ]
    results = [
        MatchResult.unmatched("a"),
        MatchResult(external_id="b", profile_id="p9", tier="email", confidence=1.0),
    ]
    profiles = [KnownProfile(profile_id="ivan", full_name="Иван Петров")]

    reviews = review_unmatched(contacts, results, profiles)

    assert [review.contact.external_id for review in reviews] == ["a"]
    assert reviews[0].best.profile_id == "ivan"
    assert reviews[0].status == "pending"

    mark_skipped(reviews[0])
    assert review_stats(reviews) == {
        "total": 1,
        "with_candidates": 1,
        "pending": 0,
        "linked": 0,
        "skipped": 1,
    }


def test_confirm_link_records_external_id_once():
    store = InMemoryLinkStore([KnownProfile(profile_id="p1"), KnownProfile(profile_id="p2")])

    first = confirm_link("100", "p1", store)
    again = confirm_link("100", "p1", store)

    assert first.changed is True
    assert again.changed is False
    assert store.links() == {"p1": "100"}


def test_confirm_link_rejects_conflicts_without_changes():
    store = InMemoryLinkStore(
        [KnownProfile(profile_id="p1", external_id="100"), KnownProfile(profile_id="p2", external_id="200")]
    )

    with pytest.raises(ConflictingLinkError) as taken:
        confirm_link("100", "p2", store)
    assert taken.value.code == "EXTERNAL_ID_ALREADY_LINKED"

    with pytest.raises(ConflictingLinkError) as occupied:
        confirm_link("300", "p2", store)
    assert occupied.value.code == "PROFILE_ALREADY_LINKED"

    with pytest.raises(ProfileNotFoundError) as missing:
        confirm_link("300", "nope", store)
    assert missing.value.to_dict()["code"] == "PROFILE_NOT_FOUND"

    assert store.links() == {"p1": "100", "p2": "200"}


def test_mark_linked_updates_review():
    contact = ExternalContact(external_id="1", full_name="Ivan Petrov")
    reviews = review_unmatched([contact], [MatchResult.unmatched("1")], [KnownProfile(profile_id="x", full_name="Иван Петров")])
    store = InMemoryLinkStore([KnownProfile(profile_id="x", full_name="Иван Петров")])

    mark_linked(reviews[0], confirm_link("1", reviews[0].best.profile_id, store))

    assert reviews[0].status == "linked"
    assert reviews[0].linked_profile_id == "x"


def test_confirmed_review_yields_name_fuzzy_result():
    contact = ExternalContact(external_id="7", full_name="Ivan Sidorov")
    profiles = [
        KnownProfile(profile_id="x", full_name="Иван Сидоров"),
        KnownProfile(profile_id="y", full_name="Иван Петров"),
    ]
    results = [
        MatchResult.unmatched("7"),
        MatchResult(external_id="8", profile_id="p8", tier="email", confidence=1.0),
    ]
    reviews = review_unmatched([contact], results, profiles)
    store = InMemoryLinkStore(profiles)

    result = mark_linked(reviews[0], confirm_link("7", "y", store))

    assert isinstance(result, MatchResult)
    assert (result.external_id, result.profile_id, result.tier) == ("7", "y", "name_fuzzy")
    assert result.confidence == 0.5
    assert result.profile_name == "Иван Петров"
    assert reviews[0].result == result
    assert resolve_reviews(results, reviews) == [result, results[1]]


def test_pending_reviews_leave_results_untouched():
    contact = ExternalContact(external_id="7", full_name="Ivan Petrov")
    results = [MatchResult.unmatched("7")]
    reviews = review_unmatched([contact], results, [KnownProfile(profile_id="x", full_name="Иван Петров")])

    assert resolve_reviews(results, reviews) == results
    with pytest.raises(ValueError):
        mark_linked(reviews[0], confirm_link("other", "x", InMemoryLinkStore([KnownProfile(profile_id="x")])))
