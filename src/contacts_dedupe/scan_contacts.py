from __future__ import annotations

import argparse
import csv
import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

import pandas as pd

from .common import load_config
from .config_loader import EngineConfig
from .errors import StoreReadError
from .logging_utils import configure_logging
from .models import ContactRecord, ScanResult
from .scanner import ContactScanner
from .scoring import completeness_score
from .store import CsvContactStore

logger = logging.getLogger(__name__)


def _record_row(record: ContactRecord) -> Dict[str, Any]:
    return {
        "contact_id": record.contact_id,
        "name": record.display_name,
        "score": completeness_score(record),
        "phones": "|".join(phone.value for phone in record.phones),
        "emails": "|".join(email.value for email in record.emails),
        "organization": record.organization,
        "job_title": record.job_title,
    }


def build_reports(result: ScanResult) -> Tuple[pd.DataFrame, pd.DataFrame]:
    group_rows: List[Dict[str, Any]] = []
    for group_index, group in enumerate(result.groups, start=1):
        for rank, record in enumerate(group, start=1):
            row = {"group": group_index, "rank": rank, "is_primary": rank == 1}
            row.update(_record_row(record))
            group_rows.append(row)
    groups_df = pd.DataFrame(
        group_rows,
        columns=[
            "group",
            "rank",
            "is_primary",
            "contact_id",
            "name",
            "score",
            "phones",
            "emails",
            "organization",
            "job_title",
        ],
    )
    incomplete_df = pd.DataFrame(
        [_record_row(record) for record in result.incomplete],
        columns=["contact_id", "name", "score", "phones", "emails", "organization", "job_title"],
    )
    return groups_df, incomplete_df


def run_scan(config: EngineConfig) -> ScanResult:
    if not config.store.contacts_csv:
        raise StoreReadError("No contacts CSV configured (use --contacts-csv or store.contacts_csv)")
    store = CsvContactStore(config.store.contacts_csv)
    with ContactScanner(store, config.dedupe) as scanner:
        return scanner.scan_async().result()


def add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--config", type=str, default=None, help="Path to YAML config.")
    parser.add_argument("--contacts-csv", type=str, default=None)
    parser.add_argument("--out-dir", type=str, default=None)
    parser.add_argument(
        "--transitive",
        dest="transitive",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Group chains of matches together instead of seed-only groups (default: off).",
    )
    parser.add_argument("--log-level", type=str, default=None, help="Override logging level")


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Find duplicate contacts in an address book.")
    add_common_arguments(parser)
    args = parser.parse_args(argv)

    config = load_config(args)
    configure_logging(config, level_override=args.log_level)

    try:
        result = run_scan(config)
    except StoreReadError as exc:
        logger.error("%s", exc)
        return 1

    groups_df, incomplete_df = build_reports(result)
    out_dir = config.outputs.dir
    out_dir.mkdir(parents=True, exist_ok=True)
    groups_path = out_dir / "duplicate_groups.csv"
    incomplete_path = out_dir / "incomplete_contacts.csv"
    groups_df.to_csv(str(groups_path), index=False, encoding="utf-8", quoting=csv.QUOTE_ALL)
    incomplete_df.to_csv(str(incomplete_path), index=False, encoding="utf-8", quoting=csv.QUOTE_ALL)

    print(
        {
            "contacts_total": result.total_records,
            "duplicate_groups": len(result.groups),
            "duplicate_contacts": result.duplicate_record_count,
            "incomplete_contacts": len(result.incomplete),
        }
    )
    logger.info("Saved: %s", groups_path)
    logger.info("Saved: %s", incomplete_path)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
