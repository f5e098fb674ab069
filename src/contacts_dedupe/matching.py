from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Optional, Set

from .models import ContactRecord
from .normalization import email_keys, normalize_name, phone_keys
from .similarity import (
    DEFAULT_DISTANCE_FLOOR,
    DEFAULT_DISTANCE_RATIO,
    DEFAULT_SHORT_NAME_LENGTH,
    names_are_similar,
)


class MatchReason(str, enum.Enum):
    PHONE = "phone"
    EMAIL = "email"
    NAME_AND_CONTACT = "name_and_contact"


@dataclass(frozen=True)
class MatchKeys:
    phones: Set[str]
    emails: Set[str]
    name: str

    @classmethod
    def of(cls, record: ContactRecord) -> "MatchKeys":
        return cls(phones=phone_keys(record), emails=email_keys(record), name=normalize_name(record))


class MatchRule:
    """
    Pairwise duplicate test.

    Rules are tried in order and the first hit wins: shared phone, shared
    email, then similar name backed by a shared phone or email. A name on its
    own is never enough.
    """

    def __init__(
        self,
        distance_floor: int = DEFAULT_DISTANCE_FLOOR,
        distance_ratio: float = DEFAULT_DISTANCE_RATIO,
        short_name_length: int = DEFAULT_SHORT_NAME_LENGTH,
    ):
        self.distance_floor = distance_floor
        self.distance_ratio = distance_ratio
        self.short_name_length = short_name_length

    def evaluate(self, a: ContactRecord, b: ContactRecord) -> Optional[MatchReason]:
        if a.contact_id == b.contact_id:
            return None
        return self.evaluate_keys(MatchKeys.of(a), MatchKeys.of(b))

    def evaluate_keys(self, a: MatchKeys, b: MatchKeys) -> Optional[MatchReason]:
        shared_phone = bool(a.phones & b.phones)
        if shared_phone:
            return MatchReason.PHONE
        shared_email = bool(a.emails & b.emails)
        if shared_email:
            return MatchReason.EMAIL
        if (shared_phone or shared_email) and self._names_similar(a.name, b.name):
            return MatchReason.NAME_AND_CONTACT
        return None

    def is_duplicate(self, a: ContactRecord, b: ContactRecord) -> bool:
        return self.evaluate(a, b) is not None

    def _names_similar(self, a: str, b: str) -> bool:
        return names_are_similar(
            a,
            b,
            distance_floor=self.distance_floor,
            distance_ratio=self.distance_ratio,
            short_name_length=self.short_name_length,
        )
