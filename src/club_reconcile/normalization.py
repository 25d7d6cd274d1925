from __future__ import annotations

import logging
import os
import re
from datetime import datetime
from io import StringIO
from typing import Any, Dict, List, Optional, Tuple

import pandas as pd

logger = logging.getLogger(__name__)

MIN_PHONE_DIGITS = 9
DOMESTIC_TRUNK_PREFIX = "80"
LEGACY_TRUNK_PREFIX = "8"
LEGACY_COUNTRY_CODE = "7"
NATIONAL_COUNTRY_CODE = "375"
NATIONAL_MOBILE_PREFIXES = ("29", "33", "44", "25")

MULTI_VALUE_SPLIT = re.compile(r"[|;\r\n]+")

BRAND_ALIASES: Dict[str, str] = {
    "master": "mastercard",
    "mc": "mastercard",
    "mastercard": "mastercard",
    "visa": "visa",
    "belkart": "belkart",
    "belcard": "belkart",
    "maestro": "maestro",
    "mir": "mir",
}

BRAND_VARIANT_GROUPS: Tuple[Tuple[str, ...], ...] = (
    ("mastercard", "master", "mc"),
    ("belkart", "belcard"),
)


def normalize_phone(raw: Optional[str]) -> str:
    """
    Reduce a phone number to its canonical digit string.

    Domestic ``80`` + operator code numbers (``80291234567``) and bare 9-digit
    national mobiles get the ``375`` prefix. Other legacy 11-digit trunk numbers
    (``8XXXXXXXXXX``) are rewritten to the ``7`` country code.
    """
    digits = re.sub(r"\D", "", raw or "")
    if len(digits) == 11 and digits.startswith(DOMESTIC_TRUNK_PREFIX):
        national = digits[len(DOMESTIC_TRUNK_PREFIX):]
        if national.startswith(NATIONAL_MOBILE_PREFIXES):
            digits = national
    if digits.startswith(LEGACY_TRUNK_PREFIX) and len(digits) == 11:
        digits = LEGACY_COUNTRY_CODE + digits[1:]
    if len(digits) == 9 and digits.startswith(NATIONAL_MOBILE_PREFIXES):
        digits = NATIONAL_COUNTRY_CODE + digits
    return digits


def is_indexable_phone(canonical: str, min_digits: int = MIN_PHONE_DIGITS) -> bool:
    return len(canonical or "") >= min_digits


def normalize_email(raw: Optional[str]) -> str:
    return (raw or "").strip().lower()


def normalize_name(raw: Optional[str]) -> str:
    lowered = (raw or "").lower()
    return "".join(ch for ch in lowered if ch.isalpha() or ch.isspace()).strip()


def normalize_handle(raw: Optional[str]) -> str:
    return (raw or "").strip().lstrip("@").strip().lower()


def normalize_brand(raw: Optional[str]) -> str:
    lowered = (raw or "").strip().lower()
    return BRAND_ALIASES.get(lowered, lowered)


def brand_variants(raw: Optional[str]) -> Tuple[str, ...]:
    lowered = (raw or "").strip().lower()
    if not lowered:
        return ()
    variants: List[str] = [lowered]
    for group in BRAND_VARIANT_GROUPS:
        if lowered in group:
            variants.extend(group)
    return tuple(dict.fromkeys(variants))


def split_multi(raw: Optional[str]) -> List[str]:
    if not raw:
        return []
    return [part.strip() for part in MULTI_VALUE_SPLIT.split(str(raw)) if part.strip()]


def parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, str) and not value.strip():
        return None
    parsed = pd.to_datetime(value, utc=True, errors="coerce")
    if pd.isna(parsed):
        logger.debug("Unparseable timestamp ignored: %r", value)
        return None
    return parsed.to_pydatetime()


def parse_amount(value: Any) -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return None if pd.isna(value) else float(value)
    text = str(value).strip().replace(" ", "").replace(",", ".")
    if not text:
        return None
    try:
        return float(text)
    except ValueError:
        logger.debug("Unparseable amount ignored: %r", value)
        return None


def _coerce_to_string(value: Any) -> str:
    if value is None:
        return ""
    if not isinstance(value, (list, tuple, dict)) and pd.isna(value):
        return ""
    return str(value).strip()


def safe_get(row: Any, key: str) -> str:
    try:
        return _coerce_to_string(row.get(key, ""))
    except (AttributeError, KeyError, TypeError):
        try:
            if hasattr(row, "__contains__") and key in row:
                return _coerce_to_string(row[key])
            return ""
        except (KeyError, TypeError, AttributeError):
            return ""


def first_present(row: Any, keys: Tuple[str, ...], placeholder: str = "-") -> str:
    for key in keys:
        value = safe_get(row, key)
        if value and value != placeholder:
            return value
    return ""


def warn_missing(path: Optional[str], label: str) -> bool:
    if not path or not os.path.exists(path):
        logger.warning("%s path missing: %s", label, path)
        return True
    return False


def read_table(path: Optional[str], header_starts_with: Optional[str] = None) -> pd.DataFrame:
    """
    Load a CSV or Excel export as an all-string DataFrame.

    Excel workbooks are read from their first sheet. For CSV files with a
    preamble, ``header_starts_with`` locates the real header line.
    """
    if not path:
        return pd.DataFrame()
    if str(path).lower().endswith(".xlsx"):
        frame = pd.read_excel(path, sheet_name=0, dtype=str, engine="openpyxl")
        return frame.fillna("")
    if not header_starts_with:
        return pd.read_csv(path, dtype=str, keep_default_na=False)
    with open(path, "r", encoding="utf-8", errors="ignore") as handle:
        lines = handle.read().splitlines()
    header_idx: Optional[int] = None
    for index, line in enumerate(lines[:100]):
        if line.strip().startswith(header_starts_with):
            header_idx = index
            break
    if header_idx is None:
        return pd.read_csv(path, dtype=str, keep_default_na=False)
    return pd.read_csv(StringIO("\n".join(lines[header_idx:])), dtype=str, keep_default_na=False)


def frame_records(frame: pd.DataFrame) -> List[Dict[str, str]]:
    if frame.empty:
        return []
    return [
        {str(column): _coerce_to_string(value) for column, value in row.items()}
        for row in frame.to_dict(orient="records")
    ]
