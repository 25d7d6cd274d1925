from __future__ import annotations

import argparse
import csv
import logging
from typing import Dict, List, Optional, Tuple

import pandas as pd

from .common import frame_records, load_config, read_table, safe_get, warn_missing
from .config_loader import ReconcileConfig
from .logging_utils import configure_logging
from .models import SOURCE_QUEUE, SOURCE_SETTLED, MergedPaymentView, PaymentEvidence
from .payments import cards_from_frame, evidence_from_frame, merge_payments

logger = logging.getLogger(__name__)

HISTORY_COLUMNS = [
    "source",
    "natural_key",
    "record_id",
    "profile_id",
    "paid_at",
    "created_at",
    "amount",
    "currency",
    "status",
    "transaction_type",
    "card_last4",
    "card_brand",
    "order_ref",
    "product_name",
    "payer_email",
    "payer_name",
    "description",
    "tracking_id",
]


def _load_evidence(path: Optional[str], source: str) -> Optional[List[PaymentEvidence]]:
    if warn_missing(path, f"{source} payments"):
        return None
    return evidence_from_frame(read_table(path), source)


def _load_order_names(path: Optional[str]) -> Dict[str, str]:
    if not path or warn_missing(path, "Orders"):
        return {}
    names: Dict[str, str] = {}
    for record in frame_records(read_table(path)):
        order_id = safe_get(record, "order_id") or safe_get(record, "id")
        product = safe_get(record, "product_name")
        if order_id and product:
            names[order_id] = product
    return names


def build(
    args: argparse.Namespace, config: Optional[ReconcileConfig] = None
) -> Tuple[pd.DataFrame, MergedPaymentView]:
    config = config or load_config(args)
    profile_id = (getattr(args, "profile_id", None) or "").strip()
    if not profile_id:
        raise ValueError("--profile-id is required")

    cards_path = config.inputs.get("cards_csv")
    cards = [] if warn_missing(cards_path, "Linked cards") else cards_from_frame(read_table(cards_path), profile_id)

    view = merge_payments(
        profile_id,
        cards,
        _load_evidence(config.inputs.get("settled_csv"), SOURCE_SETTLED),
        _load_evidence(config.inputs.get("queue_csv"), SOURCE_QUEUE),
        limit=config.payments.result_limit,
        per_query_limit=config.payments.per_query_limit,
        settled_statuses=config.payments.settled_statuses,
        queue_statuses=config.payments.queue_statuses,
        order_names=_load_order_names(config.inputs.get("orders_csv")),
        max_workers=config.payments.max_workers,
    )
    history_df = pd.DataFrame([payment.to_dict() for payment in view.payments], columns=HISTORY_COLUMNS)
    return history_df, view


def main() -> int:
    parser = argparse.ArgumentParser(description="Merged payment history for one member profile.")
    parser.add_argument("--config", type=str, default=None, help="Path to YAML config.")
    parser.add_argument("--profile-id", type=str, required=True)
    parser.add_argument("--cards-csv", type=str, default=None)
    parser.add_argument("--settled-csv", type=str, default=None)
    parser.add_argument("--queue-csv", type=str, default=None)
    parser.add_argument("--orders-csv", type=str, default=None)
    parser.add_argument("--limit", type=int, default=None)
    parser.add_argument("--out-dir", type=str, default=None)
    parser.add_argument("--log-level", type=str, default=None, help="Override logging level")
    args = parser.parse_args()

    config = load_config(args)
    configure_logging(config, level_override=args.log_level)
    history_df, view = build(args, config=config)

    out_dir = config.outputs.dir
    out_dir.mkdir(parents=True, exist_ok=True)
    history_path = out_dir / "payment_history.csv"
    history_df.to_csv(str(history_path), index=False, encoding="utf-8", quoting=csv.QUOTE_ALL)
    logger.info("Saved: %s", history_path)

    print(f"Sources used: {', '.join(view.sources_ok) or 'none'}")
    for source, reason in view.sources_failed.items():
        print(f"Source unavailable: {source} ({reason})")
    if view.ambiguous_last4:
        print(f"Ambiguous card endings skipped for last4-only matching: {', '.join(view.ambiguous_last4)}")
    print(f"Payments: {len(view.payments)} ({'complete' if view.is_complete else 'partial'})")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
