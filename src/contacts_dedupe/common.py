from __future__ import annotations

from typing import Any, Dict, List

from .config_loader import EngineConfig, load_engine_config
from .consolidation import Consolidator
from .errors import (
    BackupError,
    ContactsDedupeError,
    InsufficientSelection,
    PartialCommitError,
    PrimaryNotInGroup,
    StoreReadError,
    StoreWriteError,
)
from .fusion import fuse, fuse_records
from .grouping import find_duplicate_groups, find_incomplete_records
from .matching import MatchReason, MatchRule
from .models import (
    ConsolidationResult,
    ContactPatch,
    ContactRecord,
    DuplicateGroup,
    Email,
    Phone,
    PostalAddress,
    ScanResult,
)
from .normalization import normalize_email, normalize_name, normalize_phone
from .scanner import ContactScanner
from .scoring import completeness_score, pick_primary
from .similarity import levenshtein, names_are_similar
from .store import CsvContactStore, InMemoryContactStore, JsonBackupService

__all__ = [
    "BackupError",
    "ConsolidationResult",
    "Consolidator",
    "ContactPatch",
    "ContactRecord",
    "ContactScanner",
    "ContactsDedupeError",
    "CsvContactStore",
    "DuplicateGroup",
    "Email",
    "EngineConfig",
    "InMemoryContactStore",
    "InsufficientSelection",
    "JsonBackupService",
    "MatchReason",
    "MatchRule",
    "PartialCommitError",
    "Phone",
    "PostalAddress",
    "PrimaryNotInGroup",
    "ScanResult",
    "StoreReadError",
    "StoreWriteError",
    "build_consolidator",
    "completeness_score",
    "ensure_contact_record",
    "find_duplicate_groups",
    "find_incomplete_records",
    "fuse",
    "fuse_records",
    "levenshtein",
    "load_config",
    "names_are_similar",
    "normalize_email",
    "normalize_name",
    "normalize_phone",
    "pick_primary",
    "to_contact_records",
]


def load_config(args: Any) -> EngineConfig:
    return load_engine_config(args)


def ensure_contact_record(obj: Any) -> ContactRecord:
    if isinstance(obj, ContactRecord):
        return obj
    if isinstance(obj, dict):
        return ContactRecord.from_mapping(obj)
    raise TypeError(f"Unsupported contact payload type: {type(obj)!r}")


def to_contact_records(payloads: List[Dict[str, Any]]) -> List[ContactRecord]:
    return [ensure_contact_record(payload) for payload in payloads]


def build_consolidator(store: Any, config: EngineConfig) -> Consolidator:
    backup_dir = config.backup.dir or config.outputs.dir / "backups"
    return Consolidator(
        store,
        backup=JsonBackupService(backup_dir),
        auto_backup=config.backup.auto_backup,
        verify_commit=config.consolidation.verify_commit,
    )
