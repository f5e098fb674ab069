from __future__ import annotations

import math

from rapidfuzz.distance import Levenshtein

DEFAULT_DISTANCE_FLOOR = 2
DEFAULT_DISTANCE_RATIO = 0.2
DEFAULT_SHORT_NAME_LENGTH = 3


def levenshtein(a: str, b: str) -> int:
    """Edit distance with unit cost for insertion, deletion and substitution."""
    return Levenshtein.distance(a or "", b or "", weights=(1, 1, 1))


def names_are_similar(
    a: str,
    b: str,
    distance_floor: int = DEFAULT_DISTANCE_FLOOR,
    distance_ratio: float = DEFAULT_DISTANCE_RATIO,
    short_name_length: int = DEFAULT_SHORT_NAME_LENGTH,
) -> bool:
    """
    Compare two already-normalized names.

    Equal names and names contained in one another always match. Otherwise the
    edit distance must be within ``max(distance_floor, floor(ratio * longest))``
    and the longer name must be longer than ``short_name_length`` characters so
    that pairs like "al" / "ed" never match.
    """
    if not a or not b:
        return False
    if a == b or a in b or b in a:
        return True
    longest = max(len(a), len(b))
    threshold = max(distance_floor, math.floor(distance_ratio * longest))
    return levenshtein(a, b) <= threshold and longest > short_name_length
