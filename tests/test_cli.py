import logging
from types import SimpleNamespace

import pytest

from club_reconcile import browse_statement, match_contacts, payment_history
from club_reconcile.common import ensure_known_profile, load_config
from club_reconcile.errors import ReconcileError
from club_reconcile.logging_utils import LOG_LEVEL_ENV, _resolve_level, configure_logging


def _match_args(**overrides):
    args = dict(
        config=None,
        contacts_file=None,
        profiles_csv=None,
        links_csv=None,
        out_dir=None,
        fuzzy_threshold=None,
        max_candidates=None,
        log_level=None,
    )
    args.update(overrides)
    return SimpleNamespace(**args)


def test_match_contacts_build_from_csv(tmp_path):
    contacts = tmp_path / "contacts.csv"
    contacts.write_text(
        "\n".join(
            [
                "Export generated 2024-05-01",
                "",
                "ID,Наименование,Рабочий email,Мобильный телефон",
                "1,Anna Ivanova,ANNA@x.com,",
                "2,Someone,,8 029 123 45 67",
                ",No Id,,",
                "3,Ivan Petrov,,",
            ]
        ),
        encoding="utf-8",
    )
    profiles = tmp_path / "profiles.csv"
    profiles.write_text(
        "\n".join(
            [
                "profile_id,full_name,email,phone",
                "p-anna,Анна Иванова,anna@x.com,",
                "p-phone,Пётр,,+375291234567",
                "p-ivan,Иван Петров,,",
                "p-dup,,Anna@X.com,",
            ]
        ),
        encoding="utf-8",
    )

    results_df, review_df, errors_df, collisions_df = match_contacts.build(
        _match_args(contacts_file=str(contacts), profiles_csv=str(profiles), out_dir=str(tmp_path))
    )

    tiers = dict(zip(results_df["external_id"], results_df["tier"]))
    assert tiers == {"1": "email", "2": "phone", "3": "none"}
    assert results_df.loc[results_df["external_id"] == "1", "profile_id"].iloc[0] == "p-dup"
    assert list(review_df["profile_id"]) == ["p-ivan"]
    assert list(errors_df["field"]) == ["ID"]
    assert list(collisions_df["previous_profile_id"]) == ["p-anna"]


def test_match_contacts_applies_confirmed_links(tmp_path):
    contacts = tmp_path / "contacts.csv"
    contacts.write_text("ID,Name\n1,Ivan Petrov\n1,Ivan Duplicate\n2,Zed Unknown\n", encoding="utf-8")
    profiles = tmp_path / "profiles.csv"
    profiles.write_text("profile_id,full_name\np-ivan,Иван Петров\n", encoding="utf-8")
    links = tmp_path / "links.csv"
    links.write_text("external_id,profile_id\n1,p-ivan\n2,p-missing\n", encoding="utf-8")

    results_df, review_df, errors_df, _ = match_contacts.build(
        _match_args(
            contacts_file=str(contacts),
            profiles_csv=str(profiles),
            links_csv=str(links),
            out_dir=str(tmp_path),
        )
    )

    assert list(results_df["external_id"]) == ["1", "2"]
    assert list(results_df["tier"]) == ["name_fuzzy", "none"]
    assert results_df["confidence"].iloc[0] == 1.0
    assert list(review_df.loc[review_df["external_id"] == "1", "status"]) == ["linked"]
    assert list(errors_df["message"]) == ["duplicate external id", "Profile p-missing does not exist"]
    assert list(errors_df["code"]) == ["ROW_PARSE_ERROR", "PROFILE_NOT_FOUND"]


def test_match_contacts_build_without_inputs_is_empty(tmp_path):
    results_df, review_df, errors_df, collisions_df = match_contacts.build(_match_args(out_dir=str(tmp_path)))

    assert results_df.empty and review_df.empty and errors_df.empty and collisions_df.empty
    assert "tier" in results_df.columns


def test_payment_history_build_reports_missing_queue(tmp_path):
    cards = tmp_path / "cards.csv"
    cards.write_text("profile_id,last4,brand\np1,1111,visa\np2,2222,visa\n", encoding="utf-8")
    settled = tmp_path / "settled.csv"
    settled.write_text(
        "\n".join(
            [
                "uid,profile_id,status,amount,currency,paid_at,card_last4,card_brand,order_id",
                "U-1,p1,succeeded,25.00,BYN,2024-05-01T10:00:00Z,,,o1",
                "U-2,,succeeded,30.00,BYN,2024-05-03T10:00:00Z,1111,VISA,",
                "U-3,,succeeded,40.00,BYN,2024-05-02T10:00:00Z,2222,visa,",
                "U-4,p1,failed,50.00,BYN,2024-05-04T10:00:00Z,,,",
            ]
        ),
        encoding="utf-8",
    )
    orders = tmp_path / "orders.csv"
    orders.write_text("order_id,product_name\no1,Gold membership\n", encoding="utf-8")
    args = SimpleNamespace(
        config=None,
        profile_id="p1",
        cards_csv=str(cards),
        settled_csv=str(settled),
        queue_csv=None,
        orders_csv=str(orders),
        limit=None,
        out_dir=str(tmp_path),
    )

    history_df, view = payment_history.build(args)

    assert list(history_df["natural_key"]) == ["U-2", "U-1"]
    assert list(history_df["product_name"]) == ["", "Gold membership"]
    assert view.sources_ok == ["settled"]
    assert view.sources_failed == {"pending_queue": "not provided"}


def test_payment_history_requires_profile_id(tmp_path):
    with pytest.raises(ValueError):
        payment_history.build(SimpleNamespace(config=None, profile_id="  ", out_dir=str(tmp_path)))


def test_browse_statement_build_filters_and_summarises(tmp_path):
    statement = tmp_path / "statement.csv"
    statement.write_text(
        "\n".join(
            [
                "uid,paid_at,created_at_bepaid,status,transaction_type,amount,currency,email",
                "U1,2024-03-01T10:00:00Z,,successful,Платеж,100,BYN,ivan@mail.ru",
                "U2,2024-03-01T12:00:00Z,,successful,Возврат средств,-40,BYN,ivan@mail.ru",
                "U3,,2024-03-02T09:00:00Z,failed,Платеж,20,BYN,anna@mail.ru",
                "U4,2024-02-10T09:00:00Z,,successful,Платеж,70,BYN,ivan@mail.ru",
            ]
        ),
        encoding="utf-8",
    )
    args = SimpleNamespace(
        config=None,
        statement_csv=str(statement),
        date_from="2024-03-01",
        date_to="2024-03-31",
        search="ivan",
        page_size=1,
        utc_offset=None,
        out_dir=str(tmp_path),
    )

    export_df, summary_df = browse_statement.build(args)

    assert list(export_df["uid"]) == ["U2", "U1"]
    assert list(export_df["category"]) == ["refunded", "successful"]
    summary = summary_df.iloc[0]
    assert summary["payments_count"] == 1
    assert summary["refunds_amount"] == -40.0
    assert summary["total_count"] == 2


def test_cli_flags_override_yaml(tmp_path):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        "\n".join(
            [
                "inputs:",
                "  profiles_csv: from-yaml.csv",
                "  statement_csv: statement.csv",
                "outputs:",
                "  dir: out-yaml",
                "matching:",
                "  fuzzy_threshold: 0.7",
                "  max_candidates: 5",
                "payments:",
                "  result_limit: 20",
                "  queue_statuses: [completed, processed]",
                "statement:",
                "  page_size: 10",
                "logging:",
                "  level: info",
            ]
        ),
        encoding="utf-8",
    )
    args = SimpleNamespace(
        config=str(config_path),
        profiles_csv="from-cli.csv",
        out_dir=None,
        fuzzy_threshold=0.9,
        max_candidates=None,
        limit=None,
        page_size=25,
        utc_offset="+00:00",
        log_level=None,
    )

    config = load_config(args)

    assert config.inputs["profiles_csv"] == "from-cli.csv"
    assert config.inputs["statement_csv"] == "statement.csv"
    assert config.inputs["cards_csv"] is None
    assert str(config.outputs.dir) == "out-yaml"
    assert config.matching.fuzzy_threshold == 0.9
    assert config.matching.max_candidates == 5
    assert config.matching.min_phone_digits == 9
    assert config.payments.result_limit == 20
    assert config.payments.queue_statuses == ["completed", "processed"]
    assert config.payments.settled_statuses == ["succeeded", "refunded"]
    assert config.statement.page_size == 25
    assert config.statement.utc_offset == "+00:00"
    assert config.logging.level == "INFO"


def test_resolve_level_handles_names_and_numbers():
    assert _resolve_level("debug") == logging.DEBUG
    assert _resolve_level("15") == 15
    assert _resolve_level("nonsense") == logging.WARNING
    assert _resolve_level("") == logging.WARNING


def test_configure_logging_prefers_environment(monkeypatch):
    config = load_config(SimpleNamespace(config=None, log_level="error"))
    root = logging.getLogger()
    previous = root.level
    try:
        monkeypatch.setenv(LOG_LEVEL_ENV, "debug")
        configure_logging(config, level_override="info")
        assert root.level == logging.DEBUG

        monkeypatch.delenv(LOG_LEVEL_ENV)
        configure_logging(config, level_override="info")
        assert root.level == logging.INFO

        configure_logging(config)
        assert root.level == logging.ERROR
    finally:
        root.setLevel(previous)


def test_error_payload_and_profile_coercion():
    error = ReconcileError("boom", code="CUSTOM", details={"row": 3})
    assert error.to_dict() == {"code": "CUSTOM", "message": "boom", "details": {"row": 3}}
    assert ReconcileError("plain").code == "RECONCILE_ERROR"

    profile = ensure_known_profile({"id": "p9", "full_name": "Анна"})
    assert profile.profile_id == "p9"
    assert ensure_known_profile(profile) is profile
    with pytest.raises(TypeError):
        ensure_known_profile(["p9"])
