from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple


@dataclass(frozen=True)
class Email:
    value: str
    label: str = ""

    @staticmethod
    def from_mapping(payload: Dict[str, Any]) -> "Email":
        return Email(
            value=str(payload.get("value", "") or "").strip(),
            label=str(payload.get("label", "") or "").strip(),
        )

    def to_dict(self) -> Dict[str, str]:
        return {"value": self.value, "label": self.label}


@dataclass(frozen=True)
class Phone:
    value: str
    label: str = ""

    @staticmethod
    def from_mapping(payload: Dict[str, Any]) -> "Phone":
        return Phone(
            value=str(payload.get("value", "") or "").strip(),
            label=str(payload.get("label", "") or "").strip(),
        )

    def to_dict(self) -> Dict[str, str]:
        return {"value": self.value, "label": self.label}


@dataclass(frozen=True)
class PostalAddress:
    street: str = ""
    city: str = ""
    state: str = ""
    postal_code: str = ""
    country: str = ""
    label: str = ""

    @staticmethod
    def from_mapping(payload: Dict[str, Any]) -> "PostalAddress":
        return PostalAddress(
            street=str(payload.get("street", "") or "").strip(),
            city=str(payload.get("city", "") or "").strip(),
            state=str(payload.get("state", "") or "").strip(),
            postal_code=str(payload.get("postal_code", "") or "").strip(),
            country=str(payload.get("country", "") or "").strip(),
            label=str(payload.get("label", "") or "").strip(),
        )

    def to_dict(self) -> Dict[str, str]:
        return {
            "street": self.street,
            "city": self.city,
            "state": self.state,
            "postal_code": self.postal_code,
            "country": self.country,
            "label": self.label,
        }


def _coerce(values: Sequence[Any], kind: Any) -> Tuple[Any, ...]:
    out = []
    for value in values:
        if isinstance(value, kind):
            out.append(value)
        elif isinstance(value, str):
            out.append(kind(value=value.strip()))
        else:
            out.append(kind.from_mapping(value))
    return tuple(out)


@dataclass(frozen=True)
class ContactRecord:
    """
    Read-only snapshot of one address-book entry.

    ``contact_id`` is assigned by the contact store and is the only identity
    used by the engine. Records are never mutated; fused output goes through
    :class:`ContactPatch`.
    """

    contact_id: str
    given_name: str = ""
    family_name: str = ""
    phones: Tuple[Phone, ...] = ()
    emails: Tuple[Email, ...] = ()
    organization: str = ""
    job_title: str = ""
    addresses: Tuple[PostalAddress, ...] = ()
    image_data: Optional[bytes] = None

    def __post_init__(self) -> None:
        # accept lists/strings from callers while keeping the stored value hashable
        object.__setattr__(self, "phones", _coerce(self.phones, Phone))
        object.__setattr__(self, "emails", _coerce(self.emails, Email))
        object.__setattr__(self, "addresses", _coerce(self.addresses, PostalAddress))

    @property
    def display_name(self) -> str:
        return " ".join(part for part in (self.given_name, self.family_name) if part)

    @classmethod
    def from_mapping(cls, payload: Dict[str, Any]) -> "ContactRecord":
        image = payload.get("image_data")
        return cls(
            contact_id=str(payload.get("contact_id", "") or "").strip(),
            given_name=str(payload.get("given_name", "") or "").strip(),
            family_name=str(payload.get("family_name", "") or "").strip(),
            phones=payload.get("phones", []) or [],
            emails=payload.get("emails", []) or [],
            organization=str(payload.get("organization", "") or "").strip(),
            job_title=str(payload.get("job_title", "") or "").strip(),
            addresses=payload.get("addresses", []) or [],
            image_data=bytes(image) if image else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "contact_id": self.contact_id,
            "given_name": self.given_name,
            "family_name": self.family_name,
            "phones": [phone.to_dict() for phone in self.phones],
            "emails": [email.to_dict() for email in self.emails],
            "organization": self.organization,
            "job_title": self.job_title,
            "addresses": [address.to_dict() for address in self.addresses],
            "image_data": self.image_data,
        }


@dataclass
class ContactPatch:
    """Mutable field set built from a primary record and filled in by fusion."""

    contact_id: str
    given_name: str = ""
    family_name: str = ""
    phones: List[Phone] = field(default_factory=list)
    emails: List[Email] = field(default_factory=list)
    organization: str = ""
    job_title: str = ""
    addresses: List[PostalAddress] = field(default_factory=list)
    image_data: Optional[bytes] = None

    @classmethod
    def from_record(cls, record: ContactRecord) -> "ContactPatch":
        return cls(
            contact_id=record.contact_id,
            given_name=record.given_name,
            family_name=record.family_name,
            phones=list(record.phones),
            emails=list(record.emails),
            organization=record.organization,
            job_title=record.job_title,
            addresses=list(record.addresses),
            image_data=record.image_data,
        )

    def build(self) -> ContactRecord:
        return ContactRecord(
            contact_id=self.contact_id,
            given_name=self.given_name,
            family_name=self.family_name,
            phones=tuple(self.phones),
            emails=tuple(self.emails),
            organization=self.organization,
            job_title=self.job_title,
            addresses=tuple(self.addresses),
            image_data=self.image_data,
        )


@dataclass(frozen=True)
class DuplicateGroup:
    """Two or more records believed to be the same person, best record first."""

    members: Tuple[ContactRecord, ...]

    def __post_init__(self) -> None:
        if len(self.members) < 2:
            raise ValueError("a duplicate group needs at least two records")

    @property
    def primary(self) -> ContactRecord:
        return self.members[0]

    @property
    def contact_ids(self) -> List[str]:
        return [record.contact_id for record in self.members]

    def __len__(self) -> int:
        return len(self.members)

    def __iter__(self) -> Iterator[ContactRecord]:
        return iter(self.members)


@dataclass(frozen=True)
class ScanResult:
    groups: Tuple[DuplicateGroup, ...]
    incomplete: Tuple[ContactRecord, ...]
    total_records: int

    @property
    def duplicate_record_count(self) -> int:
        return sum(len(group) for group in self.groups)


@dataclass(frozen=True)
class ConsolidationResult:
    record: ContactRecord
    primary_id: str
    deleted_ids: Tuple[str, ...]
    backed_up: bool = False
