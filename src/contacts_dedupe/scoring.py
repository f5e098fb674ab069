from __future__ import annotations

from typing import Sequence

from .models import ContactRecord


def completeness_score(record: ContactRecord) -> int:
    score = 0
    if record.given_name:
        score += 2
    if record.family_name:
        score += 2
    score += 3 * len(record.phones)
    score += 2 * len(record.emails)
    if record.organization:
        score += 1
    if record.job_title:
        score += 1
    score += len(record.addresses)
    return score


def rank_by_completeness(records: Sequence[ContactRecord]) -> list[ContactRecord]:
    """Most complete first; ``sorted`` is stable so ties keep input order."""
    return sorted(records, key=completeness_score, reverse=True)


def pick_primary(records: Sequence[ContactRecord]) -> ContactRecord:
    if not records:
        raise ValueError("cannot pick a primary from an empty selection")
    best = records[0]
    best_score = completeness_score(best)
    for record in records[1:]:
        score = completeness_score(record)
        if score > best_score:
            best, best_score = record, score
    return best
