from __future__ import annotations

from typing import Callable, Iterable, List, Sequence, Set, TypeVar

from .models import ContactPatch, ContactRecord, Email, Phone
from .normalization import normalize_email, normalize_phone

T = TypeVar("T", Phone, Email)


def _union_by_key(
    existing: List[T], incoming: Iterable[T], key: Callable[[str], str]
) -> List[T]:
    # the target's own entries are kept verbatim, including unkeyable ones
    merged: List[T] = list(existing)
    seen: Set[str] = {key(entry.value) for entry in existing}
    seen.discard("")
    for entry in incoming:
        normalized = key(entry.value)
        if not normalized or normalized in seen:
            continue
        seen.add(normalized)
        merged.append(entry)
    return merged


def fuse(target: ContactPatch, sources: Sequence[ContactRecord]) -> None:
    """
    Fold ``sources`` into ``target`` without dropping anything ``target`` has.

    Phones and emails are unioned by normalized value with the first
    occurrence kept for display, preferring the target's own entries.
    Organization, job title and image are only filled when empty on the
    target, from the first source that has one. Addresses are concatenated
    as-is. Sources carrying the target's id are ignored.
    """
    others = [record for record in sources if record.contact_id != target.contact_id]

    target.phones = _union_by_key(
        target.phones, (phone for record in others for phone in record.phones), normalize_phone
    )
    target.emails = _union_by_key(
        target.emails, (email for record in others for email in record.emails), normalize_email
    )

    if not target.organization:
        target.organization = next(
            (record.organization for record in others if record.organization), ""
        )
    if not target.job_title:
        target.job_title = next((record.job_title for record in others if record.job_title), "")

    for record in others:
        target.addresses.extend(record.addresses)

    if target.image_data is None:
        target.image_data = next(
            (record.image_data for record in others if record.image_data is not None), None
        )


def fuse_records(primary: ContactRecord, sources: Sequence[ContactRecord]) -> ContactRecord:
    patch = ContactPatch.from_record(primary)
    fuse(patch, sources)
    return patch.build()
