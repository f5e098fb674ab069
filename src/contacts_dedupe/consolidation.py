from __future__ import annotations

import logging
from typing import Iterable, List, Optional, Sequence, Set, Union

from .errors import (
    BackupError,
    InsufficientSelection,
    PartialCommitError,
    PrimaryNotInGroup,
    StoreReadError,
    StoreWriteError,
)
from .fusion import fuse_records
from .models import ConsolidationResult, ContactRecord, DuplicateGroup
from .scoring import pick_primary
from .store import BackupService, ContactStore

logger = logging.getLogger(__name__)


def _distinct(records: Iterable[ContactRecord]) -> List[ContactRecord]:
    seen: Set[str] = set()
    out: List[ContactRecord] = []
    for record in records:
        if record.contact_id not in seen:
            seen.add(record.contact_id)
            out.append(record)
    return out


class Consolidator:
    """
    Merge a duplicate group into its primary record and delete the others.

    The store and the optional backup service are injected. Each call issues
    exactly one commit; on failure nothing is changed locally and the caller
    can retry, possibly with a different primary. After a successful merge the
    caller should rescan instead of patching its groups.
    """

    def __init__(
        self,
        store: ContactStore,
        backup: Optional[BackupService] = None,
        auto_backup: bool = False,
        verify_commit: bool = False,
    ):
        self.store = store
        self.backup = backup
        self.auto_backup = auto_backup
        self.verify_commit = verify_commit

    def _run_backup(self, records: Sequence[ContactRecord]) -> bool:
        if not (self.auto_backup and self.backup is not None):
            return False
        try:
            self.backup.backup(records)
        except BackupError as exc:
            logger.warning("Backup before merge failed, continuing: %s", exc)
            return False
        except Exception as exc:  # noqa: BLE001
            logger.warning("Backup service raised unexpectedly, continuing: %s", exc)
            return False
        return True

    def _verify(self, update: ContactRecord, deletes: Sequence[str]) -> None:
        try:
            current = {record.contact_id: record for record in self.store.fetch_all()}
        except StoreReadError as exc:
            raise StoreWriteError(f"Could not verify commit: {exc}") from exc
        missing_update = current.get(update.contact_id) != update
        lingering = [contact_id for contact_id in deletes if contact_id in current]
        if missing_update or lingering:
            raise PartialCommitError(missing_update, lingering)

    def consolidate(
        self,
        group: Union[DuplicateGroup, Sequence[ContactRecord]],
        primary_id: Optional[str] = None,
    ) -> ConsolidationResult:
        members = _distinct(group)
        if len(members) < 2:
            raise InsufficientSelection(len(members))

        if primary_id is not None:
            primary = next((record for record in members if record.contact_id == primary_id), None)
            if primary is None:
                raise PrimaryNotInGroup(primary_id)
        else:
            primary = pick_primary(members)

        backed_up = self._run_backup(members)

        others = [record for record in members if record.contact_id != primary.contact_id]
        consolidated = fuse_records(primary, others)
        deletes = [record.contact_id for record in others]

        try:
            self.store.commit(consolidated, deletes)
        except StoreWriteError as exc:
            logger.error("Failed to merge contacts into %s: %s", primary.contact_id, exc)
            raise
        except Exception as exc:
            logger.error("Failed to merge contacts into %s: %s", primary.contact_id, exc)
            raise StoreWriteError(f"Failed to merge contacts: {exc}") from exc

        if self.verify_commit:
            self._verify(consolidated, deletes)

        logger.info("Merged %d contact(s) into %s", len(deletes), primary.contact_id)
        return ConsolidationResult(
            record=consolidated,
            primary_id=primary.contact_id,
            deleted_ids=tuple(deletes),
            backed_up=backed_up,
        )

    def merge_selected(
        self,
        records: Sequence[ContactRecord],
        selected_ids: Iterable[str],
        primary_id: Optional[str] = None,
    ) -> ConsolidationResult:
        wanted = set(selected_ids)
        chosen = _distinct(record for record in records if record.contact_id in wanted)
        if len(chosen) < 2:
            raise InsufficientSelection(len(chosen))
        return self.consolidate(chosen, primary_id=primary_id)

    def delete_records(self, records: Sequence[ContactRecord]) -> List[str]:
        ids = [record.contact_id for record in _distinct(records)]
        if not ids:
            raise InsufficientSelection(0, minimum=1, action="delete")
        try:
            self.store.commit(None, ids)
        except StoreWriteError as exc:
            logger.error("Failed to delete contacts: %s", exc)
            raise
        except Exception as exc:
            logger.error("Failed to delete contacts: %s", exc)
            raise StoreWriteError(f"Failed to delete contacts: {exc}") from exc
        logger.info("Deleted %d contact(s)", len(ids))
        return ids
