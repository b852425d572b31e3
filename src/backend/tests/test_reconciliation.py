"""
End-to-end tests for the reconciliation pipeline with a fake transport.

Tests cover:
- Receipt capture → confirmation → purchase recorded → reply with mention
- Image receipts through OCR
- Unmatched confirmations and missing amounts
- Ignored senders, own messages, commands and spam short-circuits
- Isolation of per-message failures
"""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

import base64
from datetime import datetime, timedelta
from zoneinfo import ZoneInfo
from unittest.mock import Mock

from megaledger.models.message import GroupJoinEvent, InboundMessage, MediaPayload
from megaledger.services.commands import CommandService
from megaledger.services.composer import MessageComposer
from megaledger.services.guard import GroupGuard
from megaledger.services.ledger import LedgerService
from megaledger.services.matching import MatchingEngine
from megaledger.services.parser import ReferenceParser
from megaledger.services.pending import PendingReceiptStore
from megaledger.services.reconciliation import ReconciliationService
from megaledger.services.spam import SpamDetector
import pytest


START = datetime(2025, 9, 18, 10, 0, tzinfo=ZoneInfo("Africa/Maputo"))
GROUP = 'G@g.us'
BUYER = '258841234567@c.us'
VENDOR = '258870000000@c.us'

CONFIRMATION = 'Transação Concluída Com Sucesso. Reference: ABC12345... 1024 MB...'


class FakeClock:
    def __init__(self, current=START):
        self.current = current

    def __call__(self):
        return self.current

    def advance(self, **kwargs):
        self.current += timedelta(**kwargs)


def make_message(body, sender_id=BUYER, group_id=GROUP, sender_name='Ana', **kwargs):
    return InboundMessage(body=body, sender_id=sender_id, group_id=group_id, sender_name=sender_name, **kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def transport():
    transport = Mock()
    transport.get_chat_admins.return_value = {'258840000001'}
    transport.get_participants.return_value = []
    transport.get_own_id.return_value = '258840000099'
    return transport


@pytest.fixture
def ocr():
    return Mock()


@pytest.fixture
def service(clock, transport, ocr):
    composer = MessageComposer()
    store = PendingReceiptStore(now=clock)
    ledger = LedgerService(now=clock)
    guard = GroupGuard(transport, composer, sleep=Mock())

    return ReconciliationService(
        parser=ReferenceParser(prefix='PP'),
        store=store,
        engine=MatchingEngine(store, prefix='PP'),
        ledger=ledger,
        composer=composer,
        transport=transport,
        ocr=ocr,
        spam=SpamDetector(admin_lookup=transport.get_chat_admins, on_spam=guard.lock_down, now=clock),
        commands=CommandService(transport, ledger, composer, guard, now=clock),
        guard=guard,
        now=clock,
    )


class TestEndToEnd:
    """Receipt, then confirmation."""

    def test_receipt_then_confirmation(self, service, transport, clock):
        captured = service.handle_message(make_message('Confirmed ABC12345'))

        assert captured['action'] == 'receipt_captured'
        pending = service.store.get('ABC12345')
        assert pending.sender_id == '841234567'
        assert pending.group_id == GROUP
        assert pending.display_name == 'Ana'

        clock.advance(minutes=3)
        result = service.handle_message(make_message(CONFIRMATION, sender_id=VENDOR, sender_name='Loja Megas'))

        assert result['action'] == 'purchase_recorded'
        assert result['phone'] == '+258841234567'
        assert result['amount'] == 1024
        assert result['rank'] == 1
        assert 'ABC12345' not in service.store

        buyer = service.ledger.get_buyer(GROUP, '+258841234567')
        assert buyer.cumulative_purchase_amount == 1024

        transport.send_message.assert_called_once()
        chat_id, text = transport.send_message.call_args[0]
        assert chat_id == GROUP
        assert '@258841234567' in text
        assert transport.send_message.call_args[1]['mentions'] == ['258841234567@c.us']

    def test_doubled_country_code_sender(self, service):
        service.handle_message(make_message('Confirmed ABC12345', sender_id='258258841234567@c.us'))

        assert service.store.get('ABC12345').sender_id == '841234567'

    def test_fuzzy_confirmation(self, service):
        service.handle_message(make_message('Confirmed ABC123456789'))

        result = service.handle_message(make_message(
            'Transação Concluída Com Sucesso. Reference: XBC123456789. Megas: 500 MB',
            sender_id=VENDOR
        ))

        assert result['action'] == 'purchase_recorded'
        assert result['matched_reference'] == 'ABC123456789'

    def test_emola_receipt(self, service):
        service.handle_message(make_message('ID da transacao: PP250918.1532.A71234.'))

        result = service.handle_message(make_message(
            'Transação Concluída Com Sucesso\nReferência: PP250918.1532.A71234\nDados: 2048 MB',
            sender_id=VENDOR
        ))

        assert result['action'] == 'purchase_recorded'
        assert result['amount'] == 2048

    def test_purchase_recorded_when_reply_fails(self, service, transport):
        from megaledger.exceptions import TransportError
        transport.send_message.side_effect = TransportError("gateway down")

        service.handle_message(make_message('Confirmed ABC12345'))
        result = service.handle_message(make_message(CONFIRMATION, sender_id=VENDOR))

        assert result['action'] == 'purchase_recorded'
        assert service.ledger.get_buyer(GROUP, '+258841234567') is not None


class TestImageReceipts:
    """Screenshots go through OCR."""

    def image_message(self):
        return make_message(
            '',
            has_media=True,
            media=MediaPayload(mime_type='image/jpeg', data=base64.b64encode(b'fake-jpeg').decode()),
        )

    def test_reference_from_ocr(self, service, ocr):
        ocr.extract_text_from_image.return_value = 'M-Pesa\nCI81H2KX1Z Confirmado.'

        result = service.handle_message(self.image_message())

        assert result['action'] == 'receipt_captured'
        assert result['reference'] == 'CI81H2KX1Z'
        ocr.extract_text_from_image.assert_called_once_with(b'fake-jpeg', 'image/jpeg')

    def test_ocr_not_found(self, service, ocr):
        ocr.extract_text_from_image.return_value = 'NOT_FOUND'

        result = service.handle_message(self.image_message())

        assert result['action'] == 'no_reference'
        assert len(service.store) == 0

    def test_non_image_media_ignored(self, service, ocr):
        message = make_message(
            '',
            has_media=True,
            media=MediaPayload(mime_type='application/pdf', data=base64.b64encode(b'%PDF').decode()),
        )

        result = service.handle_message(message)

        assert result['action'] == 'no_reference'
        ocr.extract_text_from_image.assert_not_called()


class TestConfirmationFailures:
    """Non-fatal parser and matching outcomes."""

    def test_unmatched_confirmation(self, service, transport):
        result = service.handle_message(make_message(CONFIRMATION, sender_id=VENDOR))

        assert result['action'] == 'unmatched'
        assert result['reference'] == 'ABC12345'
        transport.send_message.assert_not_called()

    def test_missing_amount_keeps_pending(self, service):
        service.handle_message(make_message('Confirmed ABC12345'))

        result = service.handle_message(make_message(
            'Transação Concluída Com Sucesso. Reference: ABC12345', sender_id=VENDOR
        ))

        assert result['action'] == 'no_amount'
        assert 'ABC12345' in service.store

    def test_missing_reference(self, service):
        result = service.handle_message(make_message('Transação Concluída Com Sucesso. 1024 MB', sender_id=VENDOR))

        assert result['action'] == 'no_reference'

    def test_failure_is_isolated(self, service):
        service.handle_message(make_message('Confirmed ABC12345'))
        service.ledger.record_purchase = Mock(side_effect=RuntimeError("boom"))

        result = service.handle_message(make_message(CONFIRMATION, sender_id=VENDOR))

        assert result['action'] == 'failed'
        assert 'boom' in result['error']

        # Next message is processed normally
        assert service.handle_message(make_message('Confirmed XYZ98765'))['action'] == 'receipt_captured'


class TestShortCircuits:
    """Messages that never reach the parser."""

    def test_own_message(self, service):
        result = service.handle_message(make_message('Confirmed ABC12345', from_me=True))

        assert result['action'] == 'ignored'
        assert len(service.store) == 0

    def test_autobot_sender(self, service):
        result = service.handle_message(make_message('Confirmed ABC12345', sender_name='Vendas AutoBot'))

        assert result['action'] == 'ignored'
        assert len(service.store) == 0

    def test_plain_chat(self, service):
        assert service.handle_message(make_message('Bom dia a todos'))['action'] == 'ignored'

    def test_command(self, service, transport):
        result = service.handle_message(make_message('.ranking'))

        assert result['action'] == 'command'
        assert result['command'] == 'ranking'
        transport.send_message.assert_called_once()

    def test_spam_stops_processing(self, service, transport):
        results = [
            service.handle_message(make_message('Confirmed ABC12345 compre já aqui'))
            for _ in range(5)
        ]

        assert [result['action'] for result in results[:4]] == ['receipt_captured'] * 4
        assert results[4]['action'] == 'spam'
        transport.set_admins_only.assert_called_once_with(GROUP, True)


class TestGroupJoin:

    def test_foreign_number_removed(self, service, transport):
        transport.get_chat_admins.return_value = {'258840000001', '258840000099'}
        transport.remove_participant.return_value = True

        result = service.handle_group_join(GroupJoinEvent(
            group_id=GROUP,
            participant_ids=['447700900123@c.us', '258841234567@c.us'],
        ))

        assert result['removed'] == ['447700900123@c.us']
        transport.remove_participant.assert_called_once_with(GROUP, '447700900123@c.us')
