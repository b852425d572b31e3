"""
Pending receipt store: receipts captured from the chat that are still
waiting for the vendor's confirmation.

Keys are normalized references and are shared by every group.
"""

import logging
import threading
from datetime import datetime
from typing import Callable, Dict, List, Optional

from pydantic import ValidationError

from megaledger.config import settings
from megaledger.exceptions import PersistenceError
from megaledger.models.receipt import PendingReceipt
from megaledger.services.storage import BlobStore, PENDING_BLOB
from megaledger.utils import clock

logger = logging.getLogger(__name__)


class PendingReceiptStore:
    """Time-bounded map of normalized reference → PendingReceipt."""

    def __init__(
        self,
        blob_store: Optional[BlobStore] = None,
        now: Callable[[], datetime] = clock.now
    ):
        self.blob_store = blob_store
        self.now = now
        self.lock = threading.RLock()
        self._receipts: Dict[str, PendingReceipt] = {}

    def load(self) -> int:
        """
        Load persisted receipts, skipping malformed entries.

        Returns:
            Number of receipts loaded
        """
        if self.blob_store is None:
            return 0

        try:
            data = self.blob_store.load(PENDING_BLOB)
        except PersistenceError as e:
            logger.error("Error loading pending receipts", extra={"error": str(e)})
            return 0

        with self.lock:
            self._receipts.clear()
            for key, raw in data.items():
                try:
                    self._receipts[key] = PendingReceipt.model_validate(raw)
                except ValidationError as e:
                    logger.warning("Skipping malformed pending receipt", extra={
                        "reference": key,
                        "error": str(e)
                    })
            return len(self._receipts)

    def flush(self) -> bool:
        """Persist the whole map. Failures are logged, never raised."""
        if self.blob_store is None:
            return True

        # Snapshot and save under one lock: saves land in mutation order
        with self.lock:
            payload = {
                key: receipt.model_dump(mode='json')
                for key, receipt in self._receipts.items()
            }

            try:
                self.blob_store.save(PENDING_BLOB, payload)
                return True
            except PersistenceError as e:
                logger.error("Error saving pending receipts", extra={"error": str(e)})
                return False

    def put(self, receipt: PendingReceipt) -> None:
        """Store a receipt; an existing entry with the same key is replaced."""
        with self.lock:
            replaced = self._receipts.get(receipt.normalized_reference)
            self._receipts[receipt.normalized_reference] = receipt

        if replaced is not None:
            logger.info("Pending receipt replaced", extra={
                "reference": receipt.normalized_reference,
                "previous_sender": replaced.sender_id,
                "sender": receipt.sender_id
            })
        self.flush()

    def take_exact(self, normalized_reference: str) -> Optional[PendingReceipt]:
        """Remove and return the receipt stored under this exact key."""
        with self.lock:
            receipt = self._receipts.pop(normalized_reference, None)

        if receipt is not None:
            self.flush()
        return receipt

    def remove(self, normalized_reference: str) -> bool:
        """Operator removal of a pending receipt."""
        return self.take_exact(normalized_reference) is not None

    def get(self, normalized_reference: str) -> Optional[PendingReceipt]:
        with self.lock:
            return self._receipts.get(normalized_reference)

    def all(self) -> List[PendingReceipt]:
        """Snapshot of every pending receipt, oldest first."""
        with self.lock:
            receipts = list(self._receipts.values())
        return sorted(receipts, key=lambda receipt: receipt.captured_at)

    def keys(self) -> List[str]:
        with self.lock:
            return list(self._receipts.keys())

    def __len__(self) -> int:
        with self.lock:
            return len(self._receipts)

    def __contains__(self, normalized_reference: str) -> bool:
        with self.lock:
            return normalized_reference in self._receipts

    def sweep_expired(self, max_age_seconds: int = None) -> int:
        """
        Drop receipts older than max_age_seconds.

        Returns:
            Number of receipts removed
        """
        max_age_seconds = max_age_seconds or settings.PENDING_TTL_SECONDS
        current = self.now()

        with self.lock:
            expired = [
                key for key, receipt in self._receipts.items()
                if (current - receipt.captured_at).total_seconds() > max_age_seconds
            ]
            for key in expired:
                del self._receipts[key]

        if expired:
            logger.info("Expired pending receipts removed", extra={
                "count": len(expired),
                "references": expired
            })
            self.flush()

        return len(expired)
