from __future__ import annotations

import argparse
import csv
import logging
from typing import Optional, Tuple

import pandas as pd

from .common import frame_records, load_config, load_profiles, read_table, warn_missing
from .config_loader import ReconcileConfig
from .contact_import import BatchResult, apply_confirmed_links, run_match_batch
from .fuzzy import InMemoryLinkStore, review_stats
from .logging_utils import configure_logging

logger = logging.getLogger(__name__)

RESULT_COLUMNS = [
    "row_number",
    "external_id",
    "contact_name",
    "profile_id",
    "profile_name",
    "tier",
    "confidence",
    "matched_value",
]
REVIEW_COLUMNS = [
    "external_id",
    "contact_name",
    "status",
    "linked_profile_id",
    "rank",
    "profile_id",
    "profile_name",
    "score",
    "transliterated",
]
ERROR_COLUMNS = ["row", "field", "code", "message"]
COLLISION_COLUMNS = ["kind", "key", "previous_profile_id", "profile_id"]


def _log_progress(processed: int, total: int) -> None:
    logger.info("Matched %d/%d contacts", processed, total)


def _frames(batch: BatchResult) -> Tuple[pd.DataFrame, pd.DataFrame, pd.DataFrame, pd.DataFrame]:
    contacts = {contact.external_id: contact for contact in batch.contacts}
    result_rows = []
    for result in batch.results:
        contact = contacts.get(result.external_id)
        row = result.to_dict()
        row["row_number"] = contact.row_number if contact else ""
        row["contact_name"] = contact.full_name if contact else ""
        result_rows.append(row)

    review_rows = [row for review in batch.reviews for row in review.to_rows()]
    return (
        pd.DataFrame(result_rows, columns=RESULT_COLUMNS),
        pd.DataFrame(review_rows, columns=REVIEW_COLUMNS),
        pd.DataFrame([error.to_dict() for error in batch.row_errors], columns=ERROR_COLUMNS),
        pd.DataFrame([collision.to_dict() for collision in batch.collisions], columns=COLLISION_COLUMNS),
    )


def build(
    args: argparse.Namespace, config: Optional[ReconcileConfig] = None
) -> Tuple[pd.DataFrame, pd.DataFrame, pd.DataFrame, pd.DataFrame]:
    config = config or load_config(args)
    contacts_path = config.inputs.get("contacts_file")
    if warn_missing(contacts_path, "CRM contacts export"):
        rows = []
    else:
        rows = frame_records(read_table(contacts_path, header_starts_with="ID"))
    profiles = load_profiles(config.inputs.get("profiles_csv"))

    batch = run_match_batch(rows, profiles, config.matching, progress=_log_progress)
    links_path = config.inputs.get("links_csv")
    if links_path and not warn_missing(links_path, "Confirmed links"):
        apply_confirmed_links(batch, frame_records(read_table(links_path)), InMemoryLinkStore(profiles))
    stats = review_stats(batch.reviews)
    logger.info(
        "Tiers: %s; fuzzy review: %d (%d with candidates)",
        batch.tier_counts(),
        stats["total"],
        stats["with_candidates"],
    )
    return _frames(batch)


def main() -> int:
    parser = argparse.ArgumentParser(description="Match CRM contacts to known member profiles.")
    parser.add_argument("--config", type=str, default=None, help="Path to YAML config.")
    parser.add_argument("--contacts-file", type=str, default=None, help="CRM export (CSV or XLSX).")
    parser.add_argument("--profiles-csv", type=str, default=None)
    parser.add_argument(
        "--links-csv", type=str, default=None, help="Operator-confirmed external_id,profile_id pairs."
    )
    parser.add_argument("--out-dir", type=str, default=None)
    parser.add_argument("--fuzzy-threshold", type=float, default=None)
    parser.add_argument("--max-candidates", type=int, default=None)
    parser.add_argument("--log-level", type=str, default=None, help="Override logging level")
    args = parser.parse_args()

    config = load_config(args)
    configure_logging(config, level_override=args.log_level)
    results_df, review_df, errors_df, collisions_df = build(args, config=config)

    out_dir = config.outputs.dir
    out_dir.mkdir(parents=True, exist_ok=True)
    outputs = {
        "match_results.csv": results_df,
        "fuzzy_review.csv": review_df,
        "row_errors.csv": errors_df,
        "index_collisions.csv": collisions_df,
    }
    for name, frame in outputs.items():
        path = out_dir / name
        frame.to_csv(str(path), index=False, encoding="utf-8", quoting=csv.QUOTE_ALL)
        logger.info("Saved: %s", path)

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
