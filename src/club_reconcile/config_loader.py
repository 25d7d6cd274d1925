from __future__ import annotations

import argparse
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml  # type: ignore[import-untyped]


@dataclass
class OutputsConfig:
    dir: Path


@dataclass
class MatchingConfig:
    min_phone_digits: int = 9
    fuzzy_threshold: float = 0.5
    word_match_threshold: float = 0.8
    max_candidates: int = 3
    progress_every: int = 100


@dataclass
class PaymentsConfig:
    result_limit: int = 100
    per_query_limit: int = 50
    settled_statuses: List[str] = field(default_factory=lambda: ["succeeded", "refunded"])
    queue_statuses: List[str] = field(default_factory=lambda: ["completed"])
    max_workers: int = 4


@dataclass
class StatementConfig:
    page_size: int = 50
    utc_offset: str = "+03:00"


@dataclass
class LoggingConfig:
    level: str = "WARNING"


@dataclass
class ReconcileConfig:
    inputs: Dict[str, Optional[str]]
    outputs: OutputsConfig
    matching: MatchingConfig
    payments: PaymentsConfig
    statement: StatementConfig
    logging: LoggingConfig


def _load_yaml(path: Optional[str]) -> Dict[str, Any]:
    if not path:
        return {}
    with open(path, "r", encoding="utf-8") as handle:
        return yaml.safe_load(handle) or {}


def _pick(args: argparse.Namespace, name: str, section: Dict[str, Any], key: str, default: Any) -> Any:
    value = getattr(args, name, None)
    if value is not None:
        return value
    return section.get(key, default)


def load_reconcile_config(args: argparse.Namespace) -> ReconcileConfig:
    config_data = _load_yaml(getattr(args, "config", None))
    inputs = config_data.get("inputs", {}) or {}
    outputs_cfg = config_data.get("outputs", {}) or {}
    matching_cfg = config_data.get("matching", {}) or {}
    payments_cfg = config_data.get("payments", {}) or {}
    statement_cfg = config_data.get("statement", {}) or {}
    logging_cfg = config_data.get("logging", {}) or {}

    outputs_dir = Path(getattr(args, "out_dir", None) or outputs_cfg.get("dir") or os.getcwd())
    outputs = OutputsConfig(dir=outputs_dir)

    matching = MatchingConfig(
        min_phone_digits=int(matching_cfg.get("min_phone_digits", 9)),
        fuzzy_threshold=float(_pick(args, "fuzzy_threshold", matching_cfg, "fuzzy_threshold", 0.5)),
        word_match_threshold=float(matching_cfg.get("word_match_threshold", 0.8)),
        max_candidates=int(_pick(args, "max_candidates", matching_cfg, "max_candidates", 3)),
        progress_every=int(matching_cfg.get("progress_every", 100)),
    )

    payments = PaymentsConfig(
        result_limit=int(_pick(args, "limit", payments_cfg, "result_limit", 100)),
        per_query_limit=int(payments_cfg.get("per_query_limit", 50)),
        settled_statuses=list(payments_cfg.get("settled_statuses") or ["succeeded", "refunded"]),
        queue_statuses=list(payments_cfg.get("queue_statuses") or ["completed"]),
        max_workers=int(payments_cfg.get("max_workers", 4)),
    )

    statement = StatementConfig(
        page_size=int(_pick(args, "page_size", statement_cfg, "page_size", 50)),
        utc_offset=getattr(args, "utc_offset", None) or statement_cfg.get("utc_offset", "+03:00"),
    )

    arg_level = getattr(args, "log_level", None)
    effective_level = (arg_level or logging_cfg.get("level") or "WARNING").upper()
    logging_config = LoggingConfig(level=effective_level)

    resolved_inputs = {
        "contacts_file": getattr(args, "contacts_file", None) or inputs.get("contacts_file"),
        "links_csv": getattr(args, "links_csv", None) or inputs.get("links_csv"),
        "profiles_csv": getattr(args, "profiles_csv", None) or inputs.get("profiles_csv"),
        "cards_csv": getattr(args, "cards_csv", None) or inputs.get("cards_csv"),
        "settled_csv": getattr(args, "settled_csv", None) or inputs.get("settled_csv"),
        "queue_csv": getattr(args, "queue_csv", None) or inputs.get("queue_csv"),
        "orders_csv": getattr(args, "orders_csv", None) or inputs.get("orders_csv"),
        "statement_csv": getattr(args, "statement_csv", None) or inputs.get("statement_csv"),
    }

    return ReconcileConfig(
        inputs=resolved_inputs,
        outputs=outputs,
        matching=matching,
        payments=payments,
        statement=statement,
        logging=logging_config,
    )
