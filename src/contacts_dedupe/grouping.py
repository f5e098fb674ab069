from __future__ import annotations

import logging
from collections import defaultdict
from typing import Dict, List, Optional, Sequence, Set

from .matching import MatchKeys, MatchRule
from .models import ContactRecord, DuplicateGroup
from .scoring import rank_by_completeness

logger = logging.getLogger(__name__)


def is_blank(record: ContactRecord) -> bool:
    return not (record.given_name or record.family_name or record.phones or record.emails)


def is_incomplete(record: ContactRecord) -> bool:
    has_name = bool(record.given_name or record.family_name)
    return not has_name or not record.phones


def find_incomplete_records(records: Sequence[ContactRecord]) -> List[ContactRecord]:
    return [record for record in records if is_incomplete(record)]


def _unique_by_id(records: Sequence[ContactRecord]) -> List[ContactRecord]:
    seen: Set[str] = set()
    unique: List[ContactRecord] = []
    for record in records:
        if record.contact_id in seen:
            logger.debug("Ignoring repeated contact id %s", record.contact_id)
            continue
        seen.add(record.contact_id)
        unique.append(record)
    return unique


def _seed_groups(
    records: List[ContactRecord], keys: List[MatchKeys], rule: MatchRule
) -> List[List[int]]:
    processed: Set[int] = set()
    clusters: List[List[int]] = []
    for i in range(len(records)):
        if i in processed:
            continue
        processed.add(i)
        members = [i]
        for j in range(len(records)):
            if j in processed:
                continue
            reason = rule.evaluate_keys(keys[i], keys[j])
            if reason is not None:
                logger.debug(
                    "%s matches seed %s on %s",
                    records[j].contact_id,
                    records[i].contact_id,
                    reason.value,
                )
                members.append(j)
                processed.add(j)
        clusters.append(members)
    return clusters


def _transitive_groups(
    records: List[ContactRecord], keys: List[MatchKeys], rule: MatchRule
) -> List[List[int]]:
    parent: Dict[int, int] = {}

    def find(x: int) -> int:
        parent.setdefault(x, x)
        if parent[x] != x:
            parent[x] = find(parent[x])
        return parent[x]

    def union(a: int, b: int) -> None:
        root_a, root_b = find(a), find(b)
        if root_a != root_b:
            # keep the lower index as root so clusters stay in input order
            if root_b < root_a:
                root_a, root_b = root_b, root_a
            parent[root_b] = root_a

    for i in range(len(records)):
        for j in range(i + 1, len(records)):
            if rule.evaluate_keys(keys[i], keys[j]) is not None:
                union(i, j)

    clusters: Dict[int, List[int]] = defaultdict(list)
    for idx in range(len(records)):
        clusters[find(idx)].append(idx)
    return [clusters[root] for root in sorted(clusters)]


def find_duplicate_groups(
    records: Sequence[ContactRecord],
    rule: Optional[MatchRule] = None,
    transitive: bool = False,
) -> List[DuplicateGroup]:
    """
    Cluster ``records`` into duplicate groups.

    By default every unprocessed record seeds a group and only records that
    match the seed itself join it; a record that matches another member but
    not the seed is left for a later seed. ``transitive=True`` switches to
    union-find so any chain of matches ends up in one group.

    Groups are returned largest first, members most complete first. Both sorts
    are stable.
    """
    rule = rule or MatchRule()
    unique = _unique_by_id(records)
    if not unique:
        return []
    keys = [MatchKeys.of(record) for record in unique]

    if transitive:
        clusters = _transitive_groups(unique, keys, rule)
    else:
        clusters = _seed_groups(unique, keys, rule)

    groups = [
        DuplicateGroup(members=tuple(rank_by_completeness([unique[idx] for idx in cluster])))
        for cluster in clusters
        if len(cluster) > 1
    ]
    groups.sort(key=len, reverse=True)
    logger.info(
        "Found %d duplicate group(s) covering %d of %d contact(s)",
        len(groups),
        sum(len(group) for group in groups),
        len(unique),
    )
    return groups
