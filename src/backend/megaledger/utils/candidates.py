"""
Candidate dataclasses for reference matching.

Each candidate pairs a pending receipt with the score it earned against
a confirmation's reference and the tier that produced it.
"""

from dataclasses import dataclass
from datetime import datetime

from megaledger.models.receipt import PendingReceipt


TIER_EXACT = 'exact'
TIER_SIMILARITY = 'similarity'
TIER_STRUCTURAL = 'structural'


@dataclass
class MatchCandidate:
    """
    A pending receipt considered for a confirmation.

    Ordering factors:
    - score: Similarity in [0.0, 1.0] (higher = better)
    - captured_at: Earlier receipts win ties
    """
    receipt: PendingReceipt
    score: float
    tier: str

    @property
    def key(self) -> str:
        return self.receipt.normalized_reference

    @property
    def captured_at(self) -> datetime:
        return self.receipt.captured_at

    def sort_key(self) -> tuple:
        """Sort key: highest score first, then earliest capture."""
        return (-self.score, self.captured_at)


def create_match_candidate(receipt: PendingReceipt, score: float, tier: str) -> MatchCandidate:
    """
    Create a MatchCandidate with the score clamped to [0.0, 1.0].

    Args:
        receipt: Pending receipt under consideration
        score: Raw score from the tier
        tier: Tier name (exact, similarity, structural)

    Returns:
        MatchCandidate
    """
    return MatchCandidate(receipt=receipt, score=max(0.0, min(1.0, score)), tier=tier)
