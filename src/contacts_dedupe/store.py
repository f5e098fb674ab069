from __future__ import annotations

import base64
import binascii
import csv
import json
import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Protocol, Sequence, Union

import pandas as pd

from .errors import BackupError, StoreReadError, StoreWriteError
from .models import ContactRecord, Email, Phone, PostalAddress

logger = logging.getLogger(__name__)

CSV_COLUMNS = [
    "contact_id",
    "given_name",
    "family_name",
    "phones_json",
    "emails_json",
    "organization",
    "job_title",
    "addresses_json",
    "image_base64",
]


class ContactStore(Protocol):
    def fetch_all(self) -> List[ContactRecord]:
        ...

    def commit(self, update: Optional[ContactRecord], deletes: Sequence[str]) -> None:
        ...


class BackupService(Protocol):
    def backup(self, records: Sequence[ContactRecord]) -> None:
        ...


def _apply_commit(
    records: List[ContactRecord], update: Optional[ContactRecord], deletes: Sequence[str]
) -> List[ContactRecord]:
    known = {record.contact_id for record in records}
    missing = [contact_id for contact_id in deletes if contact_id not in known]
    if update is not None and update.contact_id not in known:
        missing.insert(0, update.contact_id)
    if missing:
        raise StoreWriteError(f"Contact(s) no longer exist: {', '.join(missing)}")
    if update is not None and update.contact_id in deletes:
        raise StoreWriteError(f"Contact {update.contact_id} cannot be updated and deleted together")

    doomed = set(deletes)
    result: List[ContactRecord] = []
    for record in records:
        if record.contact_id in doomed:
            continue
        if update is not None and record.contact_id == update.contact_id:
            result.append(update)
        else:
            result.append(record)
    return result


class InMemoryContactStore:
    """List-backed store; commits are applied all at once or not at all."""

    def __init__(self, records: Iterable[ContactRecord] = ()):
        self._records: List[ContactRecord] = list(records)

    def fetch_all(self) -> List[ContactRecord]:
        return list(self._records)

    def commit(self, update: Optional[ContactRecord], deletes: Sequence[str]) -> None:
        self._records = _apply_commit(self._records, update, deletes)


def _dump_json(entries: Sequence[Union[Phone, Email, PostalAddress]]) -> str:
    return json.dumps([entry.to_dict() for entry in entries], ensure_ascii=False)


def _load_json(field: Any) -> List[Dict[str, Any]]:
    raw = str(field or "").strip()
    payload = json.loads(raw or "[]")
    if not isinstance(payload, list):
        raise ValueError(f"expected a JSON list, got {type(payload).__name__}")
    return payload


def record_to_row(record: ContactRecord) -> Dict[str, str]:
    return {
        "contact_id": record.contact_id,
        "given_name": record.given_name,
        "family_name": record.family_name,
        "phones_json": _dump_json(record.phones),
        "emails_json": _dump_json(record.emails),
        "organization": record.organization,
        "job_title": record.job_title,
        "addresses_json": _dump_json(record.addresses),
        "image_base64": base64.b64encode(record.image_data).decode("ascii")
        if record.image_data is not None
        else "",
    }


def row_to_record(row: Dict[str, Any]) -> ContactRecord:
    image_raw = str(row.get("image_base64", "") or "").strip()
    return ContactRecord(
        contact_id=str(row.get("contact_id", "") or "").strip(),
        given_name=str(row.get("given_name", "") or "").strip(),
        family_name=str(row.get("family_name", "") or "").strip(),
        phones=tuple(Phone.from_mapping(entry) for entry in _load_json(row.get("phones_json"))),
        emails=tuple(Email.from_mapping(entry) for entry in _load_json(row.get("emails_json"))),
        organization=str(row.get("organization", "") or "").strip(),
        job_title=str(row.get("job_title", "") or "").strip(),
        addresses=tuple(
            PostalAddress.from_mapping(entry) for entry in _load_json(row.get("addresses_json"))
        ),
        image_data=base64.b64decode(image_raw, validate=True) if image_raw else None,
    )


class CsvContactStore:
    """
    Address book kept in a single CSV file.

    Phones, emails and addresses are stored as JSON lists of their
    ``to_dict`` payloads and the image as base64. Commits rewrite the file
    through a temporary sibling and ``os.replace`` so readers never see a
    half-written book.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def _read(self) -> List[ContactRecord]:
        if not self.path.exists():
            raise StoreReadError(f"Contacts file not found: {self.path}")
        try:
            df = pd.read_csv(self.path, dtype=str, keep_default_na=False, quoting=csv.QUOTE_ALL)
        except pd.errors.EmptyDataError:
            return []
        except (pd.errors.ParserError, OSError, UnicodeDecodeError) as exc:
            raise StoreReadError(f"Failed to load contacts from {self.path}: {exc}") from exc

        if "contact_id" not in df.columns:
            raise StoreReadError(f"{self.path} has no contact_id column")

        records: List[ContactRecord] = []
        for idx, row in df.iterrows():
            try:
                record = row_to_record(row.to_dict())
            except (ValueError, TypeError, AttributeError, binascii.Error) as exc:
                raise StoreReadError(f"Malformed contact on row {idx} of {self.path}: {exc}") from exc
            if not record.contact_id:
                raise StoreReadError(f"Row {idx} of {self.path} has no contact_id")
            records.append(record)
        logger.debug("Loaded %d contact(s) from %s", len(records), self.path)
        return records

    def _write(self, records: Sequence[ContactRecord]) -> None:
        df = pd.DataFrame([record_to_row(record) for record in records], columns=CSV_COLUMNS)
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        df.to_csv(str(tmp_path), index=False, encoding="utf-8", quoting=csv.QUOTE_ALL)
        os.replace(tmp_path, self.path)

    def fetch_all(self) -> List[ContactRecord]:
        return self._read()

    def save_all(self, records: Sequence[ContactRecord]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._write(records)
        except OSError as exc:
            raise StoreWriteError(f"Failed to write {self.path}: {exc}") from exc

    def commit(self, update: Optional[ContactRecord], deletes: Sequence[str]) -> None:
        try:
            current = self._read()
        except StoreReadError as exc:
            raise StoreWriteError(f"Cannot commit, store unreadable: {exc}") from exc
        updated = _apply_commit(current, update, deletes)
        try:
            self._write(updated)
        except OSError as exc:
            raise StoreWriteError(f"Failed to write {self.path}: {exc}") from exc
        logger.info(
            "Committed to %s: %s updated, %d deleted",
            self.path,
            update.contact_id if update is not None else "nothing",
            len(deletes),
        )


def record_to_json(record: ContactRecord) -> Dict[str, Any]:
    payload = record.to_dict()
    image = payload.pop("image_data")
    payload["image_base64"] = base64.b64encode(image).decode("ascii") if image else ""
    return payload


class JsonBackupService:
    def __init__(self, directory: Union[str, Path]):
        self.directory = Path(directory)

    def backup(self, records: Sequence[ContactRecord]) -> Path:
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
        target = self.directory / f"contacts_backup_{timestamp}.json"
        payload = {
            "created_at": datetime.now().isoformat(timespec="seconds"),
            "count": len(records),
            "contacts": [record_to_json(record) for record in records],
        }
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            with open(target, "w", encoding="utf-8") as handle:
                json.dump(payload, handle, ensure_ascii=False, indent=2)
        except OSError as exc:
            raise BackupError(f"Failed to write backup {target}: {exc}") from exc
        logger.info("Backed up %d contact(s) to %s", len(records), target)
        return target
