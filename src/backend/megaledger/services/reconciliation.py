"""
Reconciliation pipeline: turns inbound chat messages into pending receipts,
matched purchases and chat replies.

Message flow: own/ignored → spam check → command → confirmation → receipt.
"""

import logging
import threading
from datetime import datetime
from typing import Callable, Dict, Optional

from megaledger.config import settings
from megaledger.exceptions import TransportError
from megaledger.models.message import GroupJoinEvent, InboundMessage
from megaledger.models.receipt import ParsedReference, PendingReceipt
from megaledger.services.commands import CommandService
from megaledger.services.composer import MessageComposer
from megaledger.services.guard import GroupGuard
from megaledger.services.ledger import LedgerService, PRIVATE_GROUP_ID
from megaledger.services.matching import MatchingEngine
from megaledger.services.ocr import OCRService
from megaledger.services.parser import ReferenceParser
from megaledger.services.pending import PendingReceiptStore
from megaledger.services.spam import SpamDetector
from megaledger.services.transport import ChatTransport
from megaledger.utils import clock
from megaledger.utils.phone import local_subscriber_number, to_chat_id, to_phone_number

logger = logging.getLogger(__name__)


class ReconciliationService:
    """Service that reconciles receipts with vendor confirmations."""

    def __init__(
        self,
        parser: ReferenceParser,
        store: PendingReceiptStore,
        engine: MatchingEngine,
        ledger: LedgerService,
        composer: MessageComposer,
        transport: ChatTransport,
        ocr: Optional[OCRService] = None,
        spam: Optional[SpamDetector] = None,
        commands: Optional[CommandService] = None,
        guard: Optional[GroupGuard] = None,
        now: Callable[[], datetime] = clock.now
    ):
        self.parser = parser
        self.store = store
        self.engine = engine
        self.ledger = ledger
        self.composer = composer
        self.transport = transport
        self.ocr = ocr
        self.spam = spam
        self.commands = commands
        self.guard = guard
        self.now = now

        # One message at a time
        self._processing = threading.Lock()

    def _is_ignored_sender(self, message: InboundMessage) -> bool:
        name = message.sender_name or ''
        return any(marker in name for marker in settings.IGNORED_SENDER_MARKERS)

    def _is_confirmation(self, text: str) -> bool:
        return any(marker in text for marker in settings.CONFIRMATION_MARKERS)

    def handle_message(self, message: InboundMessage) -> Dict:
        """
        Process one inbound message.

        Returns:
            Dictionary with the action taken and its details
        """
        result = {
            'message_id': message.id,
            'action': 'ignored',
        }

        with self._processing:
            try:
                if message.from_me:
                    return result

                if self._is_ignored_sender(message):
                    logger.debug("Ignoring automated sender", extra={"sender_name": message.sender_name})
                    return result

                if self.spam is not None and self.spam.check(message):
                    result['action'] = 'spam'
                    return result

                body = message.body or ''

                if self.commands is not None and self.commands.is_command(body.strip()):
                    result['action'] = 'command'
                    result['command'] = self.commands.handle(message)
                    return result

                if self._is_confirmation(body):
                    result.update(self.process_confirmation(message))
                    return result

                if message.has_media or self.parser.extract_reference(body):
                    result.update(self.process_receipt(message))

                return result

            except Exception as e:
                logger.error("Error processing message", extra={
                    "message_id": message.id,
                    "chat_id": message.chat_id,
                    "error": str(e)
                }, exc_info=True)
                result['action'] = 'failed'
                result['error'] = str(e)
                return result

    def _reference_from_media(self, message: InboundMessage) -> Optional[ParsedReference]:
        if self.ocr is None or message.media is None or not message.media.is_image:
            return None

        text = self.ocr.extract_text_from_image(message.media.decoded(), message.media.mime_type)
        parsed = self.parser.reference_from_ocr(text)
        if parsed is None:
            logger.info("No reference found in receipt image", extra={"message_id": message.id})
        return parsed

    def process_receipt(self, message: InboundMessage) -> Dict:
        """
        Capture a receipt as pending.

        Images go through OCR; the caption is used when OCR finds nothing.
        """
        parsed = None
        if message.has_media:
            parsed = self._reference_from_media(message)
        if parsed is None:
            parsed = self.parser.extract_reference(message.body or '')

        if parsed is None:
            logger.info("Receipt without usable reference", extra={
                "message_id": message.id,
                "has_media": message.has_media
            })
            return {'action': 'no_reference'}

        sender = local_subscriber_number(message.sender_id)
        receipt = PendingReceipt(
            normalized_reference=parsed.reference,
            raw_reference=parsed.raw,
            reference_type=parsed.reference_type,
            sender_id=sender,
            display_name=message.sender_name or sender,
            group_id=message.group_id or PRIVATE_GROUP_ID,
            captured_at=self.now(),
            message_id=message.id,
        )
        self.store.put(receipt)

        logger.info("Reference captured", extra={
            "reference": receipt.normalized_reference,
            "raw_reference": receipt.raw_reference,
            "reference_type": receipt.reference_type.value,
            "sender": sender,
            "group_id": receipt.group_id
        })
        return {'action': 'receipt_captured', 'reference': receipt.normalized_reference}

    def process_confirmation(self, message: InboundMessage) -> Dict:
        """Match a vendor confirmation to its receipt and record the purchase."""
        text = message.body or ''

        parsed = self.parser.extract_reference(text)
        if parsed is None:
            logger.warning("Reference not found in confirmation", extra={"message_id": message.id})
            return {'action': 'no_reference'}

        amount = self.parser.extract_amount(text)
        if amount is None:
            logger.warning("Amount not found in confirmation", extra={
                "message_id": message.id,
                "reference": parsed.reference
            })
            return {'action': 'no_amount', 'reference': parsed.reference}

        receipt = self.engine.resolve(parsed.reference, parsed.raw, parsed.reference_type)
        if receipt is None:
            logger.warning("Pending receipt not found for confirmation", extra={
                "reference": parsed.reference,
                "pending": self.store.keys()
            })
            return {'action': 'unmatched', 'reference': parsed.reference}

        outcome = self.process_purchase(receipt, amount, message)
        outcome['reference'] = parsed.reference
        outcome['matched_reference'] = receipt.normalized_reference
        return outcome

    def process_purchase(self, receipt: PendingReceipt, amount: int, message: InboundMessage) -> Dict:
        """Credit the receipt's sender and reply in the confirmation's chat."""
        phone = to_phone_number(receipt.sender_id)
        purchase = self.ledger.record_purchase(receipt.group_id, phone, receipt.display_name, amount)

        text = self.composer.purchase_message(purchase)
        try:
            self.transport.send_message(message.chat_id, text, mentions=[to_chat_id(phone)])
        except TransportError as e:
            logger.error("Error sending purchase message", extra={
                "chat_id": message.chat_id,
                "phone": phone,
                "error": str(e)
            })

        logger.info("Purchase processed", extra={
            "phone": phone,
            "amount": amount,
            "rank": purchase.rank,
            "group_id": receipt.group_id
        })
        return {
            'action': 'purchase_recorded',
            'group_id': receipt.group_id,
            'phone': phone,
            'amount': amount,
            'rank': purchase.rank,
            'cumulative_total': purchase.cumulative_total,
        }

    def handle_group_join(self, event: GroupJoinEvent) -> Dict:
        """Run the foreign-number guard for new participants."""
        if self.guard is None:
            return {'group_id': event.group_id, 'removed': [], 'failed': []}

        with self._processing:
            return self.guard.handle_group_join(event)
