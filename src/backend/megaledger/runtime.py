"""
Wires the bot's services together for one process.
"""

import logging
import time
from dataclasses import dataclass
from typing import Optional

from megaledger.services.commands import CommandService
from megaledger.services.composer import MessageComposer
from megaledger.services.guard import GroupGuard
from megaledger.services.ledger import LedgerService
from megaledger.services.matching import MatchingEngine
from megaledger.services.ocr import OCRService
from megaledger.services.parser import ReferenceParser
from megaledger.services.pending import PendingReceiptStore
from megaledger.services.reconciliation import ReconciliationService
from megaledger.services.spam import SpamDetector
from megaledger.services.storage import BlobStore, build_blob_store
from megaledger.services.transport import ChatTransport, GatewayTransport

logger = logging.getLogger(__name__)


@dataclass
class BotRuntime:
    """Every long-lived service, owned by the FastAPI app."""
    transport: ChatTransport
    store: PendingReceiptStore
    ledger: LedgerService
    spam: SpamDetector
    commands: CommandService
    guard: GroupGuard
    reconciliation: ReconciliationService

    def load(self) -> None:
        """Load persisted state and log a startup summary."""
        pending = self.store.load()
        groups = self.ledger.load()
        logger.info("State loaded", extra={
            "groups": groups,
            "buyers": self.ledger.buyer_count(),
            "pending_receipts": pending
        })

    def flush(self) -> None:
        self.store.flush()
        self.ledger.flush()

    def sweep_pending(self) -> int:
        return self.store.sweep_expired()

    def sweep_spam(self) -> int:
        return self.spam.sweep()


def build_runtime(
    transport: Optional[ChatTransport] = None,
    blob_store: Optional[BlobStore] = None,
    ocr: Optional[OCRService] = None,
    sleep=None
) -> BotRuntime:
    """
    Build the service graph.

    Args:
        transport: Chat transport (default: HTTP gateway from settings)
        blob_store: State backend (default: STORAGE_BACKEND from settings)
        ocr: OCR service (default: Tesseract)
        sleep: Pause function for lockdown and cleanup pacing
    """
    transport = transport or GatewayTransport()
    blob_store = blob_store or build_blob_store()
    ocr = ocr or OCRService()

    composer = MessageComposer()
    parser = ReferenceParser()
    store = PendingReceiptStore(blob_store)
    ledger = LedgerService(blob_store)
    engine = MatchingEngine(store)

    guard = GroupGuard(transport, composer, sleep=sleep or time.sleep)
    spam = SpamDetector(admin_lookup=transport.get_chat_admins, on_spam=guard.lock_down)
    commands = CommandService(transport, ledger, composer, guard)

    reconciliation = ReconciliationService(
        parser=parser,
        store=store,
        engine=engine,
        ledger=ledger,
        composer=composer,
        transport=transport,
        ocr=ocr,
        spam=spam,
        commands=commands,
        guard=guard,
    )

    return BotRuntime(
        transport=transport,
        store=store,
        ledger=ledger,
        spam=spam,
        commands=commands,
        guard=guard,
        reconciliation=reconciliation,
    )
