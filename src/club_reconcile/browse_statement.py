from __future__ import annotations

import argparse
import csv
import logging
from datetime import date
from typing import Optional, Tuple

import pandas as pd

from .common import load_config, read_table, warn_missing
from .config_loader import ReconcileConfig
from .logging_utils import configure_logging
from .statement import (
    SEARCHABLE_FIELDS,
    InMemoryLedger,
    StatementFilters,
    StatementPaginator,
    summarize_statement,
)

logger = logging.getLogger(__name__)

EXPORT_COLUMNS = [
    "uid",
    "sort_ts",
    "paid_at",
    "created_at",
    "amount",
    "currency",
    "category",
    *(name for name in SEARCHABLE_FIELDS if name != "uid"),
]


def _parse_date(value: Optional[str]) -> Optional[date]:
    if not value:
        return None
    return date.fromisoformat(value)


def build(
    args: argparse.Namespace, config: Optional[ReconcileConfig] = None
) -> Tuple[pd.DataFrame, pd.DataFrame]:
    config = config or load_config(args)
    statement_path = config.inputs.get("statement_csv")
    frame = pd.DataFrame() if warn_missing(statement_path, "Statement") else read_table(statement_path)
    ledger = InMemoryLedger.from_frame(frame)

    filters = StatementFilters(
        date_from=_parse_date(getattr(args, "date_from", None)),
        date_to=_parse_date(getattr(args, "date_to", None)),
        search=getattr(args, "search", None) or "",
        utc_offset=config.statement.utc_offset,
    )
    paginator = StatementPaginator(
        ledger, page_size=config.statement.page_size, utc_offset=config.statement.utc_offset
    )

    rows = []
    pages = 0
    for page in paginator.iter_pages(filters):
        pages += 1
        rows.extend(page.rows)
    logger.info("Read %d statement rows over %d pages", len(rows), pages)

    export_df = pd.DataFrame([row.to_dict() for row in rows], columns=EXPORT_COLUMNS)
    summary_df = pd.DataFrame([summarize_statement(rows).to_dict()])
    return export_df, summary_df


def main() -> int:
    parser = argparse.ArgumentParser(description="Page through a provider statement and summarise it.")
    parser.add_argument("--config", type=str, default=None, help="Path to YAML config.")
    parser.add_argument("--statement-csv", type=str, default=None)
    parser.add_argument("--date-from", type=str, default=None, help="YYYY-MM-DD, inclusive.")
    parser.add_argument("--date-to", type=str, default=None, help="YYYY-MM-DD, inclusive.")
    parser.add_argument("--search", type=str, default=None)
    parser.add_argument("--page-size", type=int, default=None)
    parser.add_argument("--utc-offset", type=str, default=None)
    parser.add_argument("--out-dir", type=str, default=None)
    parser.add_argument("--log-level", type=str, default=None, help="Override logging level")
    args = parser.parse_args()

    config = load_config(args)
    configure_logging(config, level_override=args.log_level)
    export_df, summary_df = build(args, config=config)

    out_dir = config.outputs.dir
    out_dir.mkdir(parents=True, exist_ok=True)
    export_path = out_dir / "statement_export.csv"
    summary_path = out_dir / "statement_summary.csv"
    export_df.to_csv(str(export_path), index=False, encoding="utf-8", quoting=csv.QUOTE_ALL)
    summary_df.to_csv(str(summary_path), index=False, encoding="utf-8", quoting=csv.QUOTE_ALL)

    logger.info("Saved: %s", export_path)
    logger.info("Saved: %s", summary_path)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
