from __future__ import annotations

import argparse
import csv
import logging
from typing import Any, Dict, List, Optional, Sequence

import pandas as pd

from .common import build_consolidator, load_config
from .errors import ContactsDedupeError, StoreReadError
from .fusion import fuse_records
from .logging_utils import configure_logging
from .models import DuplicateGroup
from .scan_contacts import add_common_arguments, run_scan
from .scoring import completeness_score, pick_primary
from .store import CsvContactStore, record_to_row

logger = logging.getLogger(__name__)


def _select_groups(groups: Sequence[DuplicateGroup], group_number: Optional[int]) -> List[DuplicateGroup]:
    if group_number is None:
        return list(groups)
    if not 1 <= group_number <= len(groups):
        raise ValueError(f"group {group_number} does not exist (found {len(groups)} group(s))")
    return [groups[group_number - 1]]


def preview_merges(groups: Sequence[DuplicateGroup], primary_id: Optional[str] = None) -> pd.DataFrame:
    rows: List[Dict[str, Any]] = []
    for index, group in enumerate(groups, start=1):
        primary = next(
            (record for record in group if record.contact_id == primary_id),
            None,
        ) or pick_primary(list(group))
        others = [record for record in group if record.contact_id != primary.contact_id]
        fused = fuse_records(primary, others)
        row: Dict[str, Any] = {"group": index}
        row.update(record_to_row(fused))
        row["score"] = completeness_score(fused)
        row["deletes"] = "|".join(record.contact_id for record in others)
        rows.append(row)
    return pd.DataFrame(rows)


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Merge duplicate contacts in an address book.")
    add_common_arguments(parser)
    parser.add_argument("--group", type=int, default=None, help="1-based group number from the scan report.")
    parser.add_argument("--primary", type=str, default=None, help="Contact id to keep (requires --group).")
    parser.add_argument("--dry-run", action="store_true", help="Write merge_preview.csv without committing.")
    parser.add_argument(
        "--auto-backup",
        dest="auto_backup",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Back up each group before merging it.",
    )
    parser.add_argument("--backup-dir", type=str, default=None)
    parser.add_argument(
        "--verify-commit",
        dest="verify_commit",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Re-read the store after each merge and report partial commits.",
    )
    args = parser.parse_args(argv)

    if args.primary and args.group is None:
        parser.error("--primary requires --group")

    config = load_config(args)
    configure_logging(config, level_override=args.log_level)

    try:
        result = run_scan(config)
        groups = _select_groups(result.groups, args.group)
    except (StoreReadError, ValueError) as exc:
        logger.error("%s", exc)
        return 1

    if args.dry_run:
        out_dir = config.outputs.dir
        out_dir.mkdir(parents=True, exist_ok=True)
        preview_path = out_dir / "merge_preview.csv"
        preview_df = preview_merges(groups, args.primary)
        preview_df.to_csv(str(preview_path), index=False, encoding="utf-8", quoting=csv.QUOTE_ALL)
        logger.info("Saved: %s", preview_path)
        return 0

    consolidator = build_consolidator(CsvContactStore(config.store.contacts_csv), config)
    merged = 0
    failed = 0
    # groups from one scan never share a contact, so each can be merged in turn
    for group in groups:
        try:
            consolidator.consolidate(group, primary_id=args.primary)
            merged += 1
        except ContactsDedupeError as exc:
            logger.error("Group led by %s not merged: %s", group.primary.contact_id, exc)
            failed += 1

    try:
        remaining = len(run_scan(config).groups)
    except StoreReadError as exc:
        logger.error("Rescan after merge failed: %s", exc)
        return 1

    print({"groups_merged": merged, "groups_failed": failed, "groups_remaining": remaining})
    return 1 if failed else 0


if __name__ == "__main__":
    raise SystemExit(main())
