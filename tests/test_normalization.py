import pandas as pd
import pytest

from club_reconcile.common import read_table, safe_get, warn_missing
from club_reconcile.normalization import (
    brand_variants,
    is_indexable_phone,
    normalize_brand,
    normalize_email,
    normalize_handle,
    normalize_name,
    normalize_phone,
    parse_amount,
    parse_timestamp,
    split_multi,
)
from club_reconcile.transliteration import (
    has_cyrillic,
    transliterate_to_cyrillic,
    transliterate_to_latin,
)


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("+375291234567", "375291234567"),
        ("80291234567", "375291234567"),
        ("291234567", "375291234567"),
        ("8 (916) 123-45-67", "79161234567"),
        ("+7 916 123 45 67", "79161234567"),
        ("", ""),
        (None, ""),
    ],
)
def test_normalize_phone(raw, expected):
    assert normalize_phone(raw) == expected


def test_normalize_phone_is_idempotent():
    samples = [
        "+375 (29) 123-45-67",
        "80291234567",
        "89161234567",
        "331234567",
        "12345",
        "0291234567",
        "+44 20 7946 0958",
    ]
    for raw in samples:
        once = normalize_phone(raw)
        assert normalize_phone(once) == once


def test_short_phones_are_not_indexable():
    assert is_indexable_phone(normalize_phone("12-34-56")) is False
    assert is_indexable_phone(normalize_phone("291234567")) is True


def test_normalize_email_name_and_handle():
    assert normalize_email("  A@B.com ") == "a@b.com"
    assert normalize_email(None) == ""
    assert normalize_name("  Ivan  Petrov, Jr. ") == "ivan  petrov jr"
    assert normalize_name("Иван Петров-2") == "иван петров"
    assert normalize_handle(" @Ivan_P ") == "ivan_p"


def test_brand_aliases():
    assert brand_variants("MC") == ("mc", "mastercard", "master")
    assert brand_variants("Belcard") == ("belcard", "belkart")
    assert brand_variants("visa") == ("visa",)
    assert brand_variants("") == ()
    assert normalize_brand("Master") == "mastercard"


def test_split_amount_and_timestamp_parsing():
    assert split_multi("a@x.com | b@y.com;c") == ["a@x.com", "b@y.com", "c"]
    assert split_multi(None) == []
    assert parse_amount("1 234,50") == 1234.5
    assert parse_amount("abc") is None
    assert parse_amount("") is None
    assert parse_timestamp("") is None
    assert parse_timestamp("not a date") is None
    parsed = parse_timestamp("2024-03-01T10:00:00+03:00")
    assert parsed.hour == 7
    assert parsed.utcoffset().total_seconds() == 0


def test_safe_get_and_warn_missing(tmp_path):
    row = {"A": "  value  ", "B": None}
    assert safe_get(row, "A") == "value"
    assert safe_get(row, "B") == ""
    assert warn_missing(str(tmp_path / "nope.csv"), "Test") is True


def test_read_table_seeks_header(tmp_path):
    path = tmp_path / "export.csv"
    path.write_text("Exported 2024-03-01\n\nID,Name\n101,Ivan Petrov\n", encoding="utf-8")
    frame = read_table(str(path), header_starts_with="ID")
    assert frame.iloc[0]["Name"] == "Ivan Petrov"
    assert frame.iloc[0]["ID"] == "101"


def test_read_table_reads_xlsx(tmp_path):
    path = tmp_path / "export.xlsx"
    pd.DataFrame([{"ID": "7", "Name": "Жанна Ким", "Phone": None}]).to_excel(
        path, index=False, engine="openpyxl"
    )
    frame = read_table(str(path))
    assert frame.iloc[0]["Name"] == "Жанна Ким"
    assert frame.iloc[0]["Phone"] == ""


def test_transliteration_to_cyrillic():
    assert transliterate_to_cyrillic("Ivan Petrov") == "Иван Петров"
    assert transliterate_to_cyrillic("Shchukin") == "Щукин"
    assert transliterate_to_cyrillic("Zhanna") == "Жанна"
    assert transliterate_to_cyrillic("Dmitriy") == "Дмитрий"
    assert transliterate_to_cyrillic("Ivan-2") == "Иван-2"
    assert transliterate_to_cyrillic("") == ""


def test_transliteration_to_latin():
    assert transliterate_to_latin("Иван Петров") == "Ivan Petrov"
    assert transliterate_to_latin("Щукин") == "Shchukin"
    assert transliterate_to_latin("Жанна") == "Zhanna"
    assert transliterate_to_latin("Ivan") == "Ivan"
    assert has_cyrillic("Иван") is True
    assert has_cyrillic("Ivan") is False
