"""
Matching engine: resolves a confirmation's reference to one pending receipt.

Tiers, first success wins:
1. Exact key
2. Edit-distance similarity (OCR/typo drift)
3. Structural shape per payment network
"""

import logging
from typing import Callable, List, Optional

from megaledger.config import settings
from megaledger.models.receipt import PendingReceipt, ReferenceType
from megaledger.services.parser import is_valid_emola_reference, is_valid_mpesa_reference
from megaledger.services.pending import PendingReceiptStore
from megaledger.utils.candidates import (
    MatchCandidate,
    TIER_SIMILARITY,
    TIER_STRUCTURAL,
    create_match_candidate,
)
from megaledger.utils.scoring import (
    edit_similarity,
    integer_sequences_match,
    score_reference_similarity,
    select_best_match,
    signatures_match,
)

logger = logging.getLogger(__name__)


class MatchingEngine:
    """Consumes pending receipts that match confirmations."""

    def __init__(
        self,
        store: PendingReceiptStore,
        similarity_threshold: float = None,
        scorer: Callable[[str, str], float] = score_reference_similarity,
        prefix: str = None
    ):
        self.store = store
        self.similarity_threshold = (
            similarity_threshold if similarity_threshold is not None
            else settings.SIMILARITY_THRESHOLD
        )
        self.scorer = scorer
        self.prefix = prefix or settings.REFERENCE_PREFIX

    def resolve(
        self,
        normalized_reference: str,
        raw_reference: str = None,
        reference_type: Optional[ReferenceType] = None
    ) -> Optional[PendingReceipt]:
        """
        Find and remove the pending receipt for a confirmation.

        Args:
            normalized_reference: Confirmation reference after normalization
            raw_reference: Reference as it appeared in the text (for logs)
            reference_type: Network detected by the parser, if known

        Returns:
            The consumed PendingReceipt, or None if nothing matches
        """
        if not normalized_reference:
            return None

        with self.store.lock:
            receipt = self.store.take_exact(normalized_reference)
            if receipt is not None:
                logger.info("Exact reference match", extra={"reference": normalized_reference})
                return receipt

            pending = self.store.all()
            if not pending:
                return None

            candidate = self._match_similar(normalized_reference, pending)
            if candidate is None:
                candidate = self._match_structural(normalized_reference, reference_type, pending)

            if candidate is None:
                return None

            logger.info("Fuzzy reference match", extra={
                "reference": normalized_reference,
                "raw_reference": raw_reference,
                "matched_key": candidate.key,
                "tier": candidate.tier,
                "score": round(candidate.score, 3)
            })
            return self.store.take_exact(candidate.key)

    def _match_similar(
        self,
        reference: str,
        pending: List[PendingReceipt]
    ) -> Optional[MatchCandidate]:
        """
        Best receipt whose key is within the similarity threshold.

        The threshold applies to the plain edit score so a shared prefix
        cannot pull a 4-in-12 difference over it; the bonus only ranks.
        """
        candidates = [
            create_match_candidate(receipt, self.scorer(reference, receipt.normalized_reference), TIER_SIMILARITY)
            for receipt in pending
            if edit_similarity(reference, receipt.normalized_reference) >= self.similarity_threshold
        ]
        return select_best_match(candidates)

    def _network_of(self, reference: str, reference_type: Optional[ReferenceType]) -> ReferenceType:
        if reference_type in (ReferenceType.MPESA, ReferenceType.EMOLA):
            return reference_type
        if is_valid_emola_reference(reference, self.prefix):
            return ReferenceType.EMOLA
        if is_valid_mpesa_reference(reference):
            return ReferenceType.MPESA
        return ReferenceType.UNKNOWN

    def _match_structural(
        self,
        reference: str,
        reference_type: Optional[ReferenceType],
        pending: List[PendingReceipt]
    ) -> Optional[MatchCandidate]:
        """
        Network-specific shape comparison.

        Network B: embedded integers align within ±1.
        Network A: identical letter/digit/separator signature.
        Several structural matches resolve by similarity, then capture time.
        """
        network = self._network_of(reference, reference_type)
        if network == ReferenceType.UNKNOWN:
            return None

        candidates = []
        for receipt in pending:
            key = receipt.normalized_reference
            if self._network_of(key, receipt.reference_type) != network:
                continue

            if network == ReferenceType.EMOLA:
                matched = integer_sequences_match(reference, key)
            else:
                matched = signatures_match(reference, key)

            if matched:
                candidates.append(
                    create_match_candidate(receipt, self.scorer(reference, key), TIER_STRUCTURAL)
                )

        return select_best_match(candidates)
