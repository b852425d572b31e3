"""
Scoring functions for reference matching.

Similarity scores run from 0.0 (unrelated) to 1.0 (identical).
Structural checks are boolean: they compare the shape of two references
rather than their characters.
"""

import re
from typing import List, Optional

from rapidfuzz.distance import Levenshtein

from .candidates import MatchCandidate

__all__ = [
    'PREFIX_BONUS_WEIGHT',
    'common_prefix_length', 'edit_similarity', 'score_reference_similarity',
    'structural_signature', 'embedded_integers',
    'signatures_match', 'integer_sequences_match',
    'select_best_match',
]

PREFIX_BONUS_WEIGHT = 0.2


def common_prefix_length(a: str, b: str) -> int:
    """Number of leading characters shared by both strings."""
    length = 0
    for left, right in zip(a, b):
        if left != right:
            break
        length += 1
    return length


def edit_similarity(a: str, b: str) -> float:
    """
    1 - levenshtein(a, b) / max_len, without the prefix bonus.

    Examples:
        >>> round(edit_similarity('ABC12345WXYZ', 'ABC123456789'), 2)
        0.67
    """
    max_len = max(len(a), len(b))
    if max_len == 0:
        return 0.0
    return 1.0 - (Levenshtein.distance(a, b) / max_len)


def score_reference_similarity(a: str, b: str) -> float:
    """
    Score two normalized references by edit distance.

    score = 1 - levenshtein(a, b) / max_len
    When the first characters agree, a prefix bonus of
    common_prefix / max_len * 0.2 is added. The result never exceeds 1.0.
    The bonus orders candidates; eligibility is decided by edit_similarity.

    Args:
        a: Confirmation reference
        b: Pending receipt key

    Returns:
        Score from 0.0 to 1.0

    Examples:
        >>> round(score_reference_similarity('XBC123456789', 'ABC123456789'), 2)
        0.92
    """
    max_len = max(len(a), len(b))
    if max_len == 0:
        return 0.0

    score = edit_similarity(a, b)

    if a and b and a[0] == b[0]:
        score += common_prefix_length(a, b) / max_len * PREFIX_BONUS_WEIGHT

    return max(0.0, min(1.0, score))


def structural_signature(reference: str) -> str:
    """
    Character-class shape of a reference.

    L = letter, N = digit, S = anything else.

    Examples:
        >>> structural_signature('CI81H2KX1Z')
        'LLNNLNLLNL'
    """
    signature = []
    for char in reference:
        if char.isalpha():
            signature.append('L')
        elif char.isdigit():
            signature.append('N')
        else:
            signature.append('S')
    return ''.join(signature)


def embedded_integers(reference: str) -> List[int]:
    """
    Integer runs inside a reference, in order.

    Examples:
        >>> embedded_integers('PP250918.1532.A71234')
        [250918, 1532, 71234]
    """
    return [int(run) for run in re.findall(r'\d+', reference)]


def signatures_match(a: str, b: str) -> bool:
    """True when both references have the same L/N/S shape."""
    return bool(a) and structural_signature(a) == structural_signature(b)


def integer_sequences_match(a: str, b: str, tolerance: int = 1) -> bool:
    """
    True when both references embed the same number of integers and each
    pair differs by at most `tolerance`.
    """
    left = embedded_integers(a)
    right = embedded_integers(b)

    if not left or len(left) != len(right):
        return False

    return all(abs(x - y) <= tolerance for x, y in zip(left, right))


def select_best_match(
    candidates: List[MatchCandidate],
    threshold: float = 0.0
) -> Optional[MatchCandidate]:
    """
    Select the best candidate at or above the threshold.

    Highest score wins; ties go to the earliest captured receipt.

    Args:
        candidates: Scored candidates
        threshold: Minimum eligible score

    Returns:
        Best candidate, or None if nothing is eligible
    """
    eligible = [candidate for candidate in candidates if candidate.score >= threshold]
    if not eligible:
        return None

    eligible.sort(key=lambda candidate: candidate.sort_key())
    return eligible[0]
