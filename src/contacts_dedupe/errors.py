from __future__ import annotations

from typing import Sequence


class ContactsDedupeError(Exception):
    """Base class for failures surfaced by the dedupe engine."""


class InsufficientSelection(ContactsDedupeError):
    def __init__(self, count: int, minimum: int = 2, action: str = "merge"):
        self.count = count
        self.minimum = minimum
        super().__init__(
            f"Please select at least {minimum} contact(s) to {action} (got {count})."
        )


class PrimaryNotInGroup(ContactsDedupeError):
    def __init__(self, primary_id: str):
        self.primary_id = primary_id
        super().__init__(f"Primary contact {primary_id!r} is not a member of the group.")


class StoreReadError(ContactsDedupeError):
    """Fetching the contact snapshot failed."""


class StoreWriteError(ContactsDedupeError):
    """The contact store rejected a commit."""


class PartialCommitError(StoreWriteError):
    def __init__(self, missing_update: bool, lingering_ids: Sequence[str]):
        self.missing_update = missing_update
        self.lingering_ids = list(lingering_ids)
        problems = []
        if missing_update:
            problems.append("consolidated record was not saved")
        if self.lingering_ids:
            problems.append(f"records still present: {', '.join(self.lingering_ids)}")
        super().__init__("Commit applied partially: " + "; ".join(problems))


class BackupError(ContactsDedupeError):
    """A pre-merge backup could not be written."""
