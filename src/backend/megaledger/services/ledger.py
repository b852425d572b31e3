"""
Ledger service: per-group buyer records, ranking and derived views.
"""

import logging
import threading
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from pydantic import ValidationError

from megaledger.config import settings
from megaledger.exceptions import PersistenceError
from megaledger.models.ledger import (
    Buyer,
    GroupLedger,
    GroupSummary,
    InactiveBuyer,
    PurchaseEntry,
    PurchaseResult,
    RankingEntry,
    ZeroPurchaseMember,
)
from megaledger.models.message import Participant
from megaledger.services.storage import BlobStore, LEDGER_BLOB
from megaledger.utils import clock

logger = logging.getLogger(__name__)

PRIVATE_GROUP_ID = 'private'
SECONDS_PER_DAY = 24 * 60 * 60


class LedgerService:
    """Owns every group's ledger and persists them as one blob."""

    def __init__(
        self,
        blob_store: Optional[BlobStore] = None,
        now: Callable[[], datetime] = clock.now
    ):
        self.blob_store = blob_store
        self.now = now
        self.lock = threading.RLock()
        self._groups: Dict[str, GroupLedger] = {}

    # Persistence

    def load(self) -> int:
        """Load persisted ledgers. Returns number of groups loaded."""
        if self.blob_store is None:
            return 0

        try:
            data = self.blob_store.load(LEDGER_BLOB)
        except PersistenceError as e:
            logger.error("Error loading ledger", extra={"error": str(e)})
            return 0

        with self.lock:
            self._groups.clear()
            for group_id, raw in data.items():
                try:
                    self._groups[group_id] = GroupLedger.model_validate(raw)
                except ValidationError as e:
                    logger.warning("Skipping malformed group ledger", extra={
                        "group_id": group_id,
                        "error": str(e)
                    })
            return len(self._groups)

    def flush(self) -> bool:
        """Persist every ledger. Failures are logged, never raised."""
        if self.blob_store is None:
            return True

        # Snapshot and save under one lock: saves land in mutation order
        with self.lock:
            payload = {
                group_id: ledger.model_dump(mode='json')
                for group_id, ledger in self._groups.items()
            }

            try:
                self.blob_store.save(LEDGER_BLOB, payload)
                return True
            except PersistenceError as e:
                logger.error("Error saving ledger", extra={"error": str(e)})
                return False

    # Access

    def get_group(self, group_id: str) -> GroupLedger:
        """Ledger for a group, created on first access."""
        group_id = group_id or PRIVATE_GROUP_ID
        with self.lock:
            if group_id not in self._groups:
                self._groups[group_id] = GroupLedger(created_at=self.now())
            return self._groups[group_id]

    def find_group(self, group_id: str) -> Optional[GroupLedger]:
        """Ledger for a group if it exists; read views never create one."""
        with self.lock:
            return self._groups.get(group_id or PRIVATE_GROUP_ID)

    def _buyers_of(self, group_id: str) -> Dict[str, Buyer]:
        ledger = self.find_group(group_id)
        return ledger.buyers if ledger is not None else {}

    def group_ids(self) -> List[str]:
        with self.lock:
            return list(self._groups.keys())

    def buyer_count(self) -> int:
        with self.lock:
            return sum(len(ledger.buyers) for ledger in self._groups.values())

    def get_buyer(self, group_id: str, phone: str) -> Optional[Buyer]:
        with self.lock:
            return self._buyers_of(group_id).get(phone)

    # Mutation

    def record_purchase(
        self,
        group_id: str,
        phone: str,
        display_name: str,
        amount: int
    ) -> PurchaseResult:
        """
        Record a confirmed purchase and return the buyer's new standing.

        Args:
            group_id: Group the receipt was posted in ("private" for DMs)
            phone: Ledger key, e.g. "+258841234567"
            display_name: Latest display name of the buyer
            amount: Megabytes purchased

        Returns:
            PurchaseResult with rank, cumulative total and day counters
        """
        current = self.now()
        day_key = clock.local_date_key(current)

        with self.lock:
            ledger = self.get_group(group_id)
            buyer = ledger.buyers.get(phone)
            if buyer is None:
                buyer = Buyer(display_name=display_name)
                ledger.buyers[phone] = buyer

            days_since = 0
            if buyer.last_purchase_at is not None:
                days_since = clock.calendar_days_between(buyer.last_purchase_at, current)

            buyer.display_name = display_name
            buyer.current_purchase_amount = amount
            buyer.cumulative_purchase_amount += amount
            buyer.last_purchase_at = current
            buyer.daily_purchase_log.setdefault(day_key, []).append(
                PurchaseEntry(timestamp=current, amount=amount)
            )

            ledger.total_purchase_count += 1
            ledger.total_amount += amount

            rank = self.rank_of(group_id, phone)
            leader = self.top_buyer(group_id)

            result = PurchaseResult(
                phone=phone,
                display_name=display_name,
                amount=amount,
                rank=rank,
                cumulative_total=buyer.cumulative_purchase_amount,
                purchases_today=len(buyer.daily_purchase_log[day_key]),
                days_since_last_purchase=days_since,
                leader_phone=leader[0] if leader else None,
                leader_total=leader[1].cumulative_purchase_amount if leader else 0,
            )

        self.flush()

        logger.info("Purchase recorded", extra={
            "group_id": group_id,
            "phone": phone,
            "amount": amount,
            "rank": result.rank,
            "cumulative_total": result.cumulative_total
        })
        return result

    # Ranking and views

    def _sorted_buyers(self, group_id: str) -> List[Tuple[str, Buyer]]:
        """Buyers by cumulative amount, descending. Ties keep insertion order."""
        buyers = self._buyers_of(group_id)
        return sorted(buyers.items(), key=lambda item: item[1].cumulative_purchase_amount, reverse=True)

    def rank_of(self, group_id: str, phone: str) -> int:
        """1-based position of a buyer, or 0 if unknown."""
        with self.lock:
            for position, (buyer_phone, _) in enumerate(self._sorted_buyers(group_id), start=1):
                if buyer_phone == phone:
                    return position
        return 0

    def top_buyer(self, group_id: str) -> Optional[Tuple[str, Buyer]]:
        with self.lock:
            ranked = self._sorted_buyers(group_id)
        return ranked[0] if ranked else None

    def ranking(self, group_id: str, limit: int = None) -> List[RankingEntry]:
        limit = limit or settings.RANKING_LIMIT
        with self.lock:
            ranked = self._sorted_buyers(group_id)[:limit]
        return [
            RankingEntry(
                position=position,
                phone=phone,
                display_name=buyer.display_name,
                cumulative_purchase_amount=buyer.cumulative_purchase_amount,
            )
            for position, (phone, buyer) in enumerate(ranked, start=1)
        ]

    def inactive_buyers(self, group_id: str, threshold_days: int = None) -> List[InactiveBuyer]:
        """Buyers whose last purchase is more than threshold_days old, most inactive first."""
        threshold_days = threshold_days if threshold_days is not None else settings.INACTIVE_DAYS
        current = self.now()

        inactive = []
        with self.lock:
            for phone, buyer in self._buyers_of(group_id).items():
                if buyer.last_purchase_at is None:
                    continue
                days_inactive = int((current - buyer.last_purchase_at).total_seconds() // SECONDS_PER_DAY)
                if days_inactive > threshold_days:
                    inactive.append(InactiveBuyer(
                        phone=phone,
                        display_name=buyer.display_name,
                        days_inactive=days_inactive,
                        cumulative_purchase_amount=buyer.cumulative_purchase_amount,
                    ))

        inactive.sort(key=lambda entry: entry.days_inactive, reverse=True)
        return inactive

    def zero_purchase_members(
        self,
        group_id: str,
        participants: Iterable[Participant],
        exclude_admins: bool = False,
        exclude_ids: Iterable[str] = ()
    ) -> List[ZeroPurchaseMember]:
        """
        Members with no ledger entry or a zero cumulative total.

        Args:
            group_id: Group whose ledger is diffed
            participants: Current membership from the gateway
            exclude_admins: Skip admins (cleanup protects them)
            exclude_ids: Participant ids to skip, e.g. the bot itself
        """
        excluded = set(exclude_ids)
        members = []
        with self.lock:
            buyers = self._buyers_of(group_id)
            for participant in participants:
                if participant.id in excluded or participant.phone in excluded:
                    continue
                if exclude_admins and participant.is_admin:
                    continue

                phone = f"+{participant.phone}"
                buyer = buyers.get(phone)
                if buyer is not None and buyer.cumulative_purchase_amount > 0:
                    continue

                name = participant.name or (buyer.display_name if buyer else None) or participant.phone
                members.append(ZeroPurchaseMember(phone=phone, display_name=name, has_record=buyer is not None))
        return members

    def group_summary(self, group_id: str) -> GroupSummary:
        with self.lock:
            ledger = self.find_group(group_id) or GroupLedger(created_at=self.now())
            return GroupSummary(
                group_id=group_id,
                name=ledger.name,
                buyer_count=len(ledger.buyers),
                total_purchase_count=ledger.total_purchase_count,
                total_amount=ledger.total_amount,
                created_at=ledger.created_at,
            )
