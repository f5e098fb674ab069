from __future__ import annotations

import re
from typing import Optional, Set

from .models import ContactRecord

_NON_DIGIT = re.compile(r"[^0-9]")
_WHITESPACE = re.compile(r"\s+")


def normalize_phone(raw: Optional[str]) -> str:
    """Strip everything that is not an ASCII decimal digit."""
    return _NON_DIGIT.sub("", raw or "")


def normalize_email(raw: Optional[str]) -> str:
    return (raw or "").lower()


def normalize_name_text(text: Optional[str]) -> str:
    return _WHITESPACE.sub(" ", (text or "").lower()).strip()


def normalize_name(record: ContactRecord) -> str:
    """Lower-cased ``"given family"`` with whitespace runs collapsed."""
    return normalize_name_text(f"{record.given_name} {record.family_name}")


def phone_keys(record: ContactRecord) -> Set[str]:
    keys = {normalize_phone(phone.value) for phone in record.phones}
    keys.discard("")
    return keys


def email_keys(record: ContactRecord) -> Set[str]:
    keys = {normalize_email(email.value) for email in record.emails}
    keys.discard("")
    return keys
