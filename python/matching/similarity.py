"""
Name similarity scoring.

Scores are normalized Levenshtein similarities in [0, 1]:
    1 - distance(a, b) / max(len(a), len(b))
computed on NFC-normalized, whitespace-collapsed, case-folded strings.
"""

import unicodedata
from typing import Optional

from rapidfuzz.distance import Levenshtein


def prepare_name(name: Optional[str]) -> str:
    """Normalize a name for comparison: NFC, single-spaced, case-folded."""
    if not name:
        return ""
    return " ".join(unicodedata.normalize('NFC', name).split()).casefold()


def name_similarity(name_a: Optional[str], name_b: Optional[str]) -> float:
    """Similarity of two names

    Args:
        name_a: First name (None is treated as empty)
        name_b: Second name (None is treated as empty)

    Returns:
        1.0 for identical names (including two empty names), 0.0 when
        exactly one name is empty, otherwise the normalized edit-distance
        similarity. Symmetric in its arguments.
    """
    a = prepare_name(name_a)
    b = prepare_name(name_b)

    if not a and not b:
        return 1.0
    if not a or not b:
        return 0.0
    if a == b:
        return 1.0

    distance = Levenshtein.distance(a, b)
    return 1.0 - distance / max(len(a), len(b))
