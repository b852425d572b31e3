"""
Test suite for the OCR adapter and the group guard side effects.
"""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

import io
from datetime import datetime
from zoneinfo import ZoneInfo
from unittest.mock import Mock, call, patch

from PIL import Image

from megaledger.exceptions import TransportError
from megaledger.models.message import GroupJoinEvent
from megaledger.services.composer import MessageComposer
from megaledger.services.guard import GroupGuard
from megaledger.services.ocr import OCRService
from megaledger.services.spam import SpamEvent
from megaledger.utils.phone import is_valid_local_number, local_subscriber_number, sender_digits
import pytest


GROUP = 'G@g.us'


def png_bytes():
    buffer = io.BytesIO()
    Image.new('RGB', (40, 20), color='white').save(buffer, format='PNG')
    return buffer.getvalue()


class TestOCRService:

    @patch('megaledger.services.ocr.pytesseract.image_to_string')
    def test_extracts_and_normalizes(self, mock_ocr):
        mock_ocr.return_value = 'M-Pesa   recibo\n\n CI81H2KX1Z  Confirmado. |\n'

        text = OCRService().extract_text_from_image(png_bytes(), 'image/png')

        assert text == 'M-Pesa recibo\nCI81H2KX1Z Confirmado. I'
        assert mock_ocr.call_args[1]['config'] == '--oem 3 --psm 6'

    @patch('megaledger.services.ocr.pytesseract.image_to_string')
    def test_empty_output_is_none(self, mock_ocr):
        mock_ocr.return_value = '  \n '

        assert OCRService().extract_text_from_image(png_bytes(), 'image/png') is None

    @patch('megaledger.services.ocr.pytesseract.image_to_string')
    def test_non_image_skipped(self, mock_ocr):
        assert OCRService().extract_text_from_image(b'%PDF-1.4', 'application/pdf') is None
        mock_ocr.assert_not_called()

    @patch('megaledger.services.ocr.pytesseract.image_to_string')
    def test_undecodable_image(self, mock_ocr):
        assert OCRService().extract_text_from_image(b'not an image', 'image/jpeg') is None
        mock_ocr.assert_not_called()


class TestPhoneHelpers:

    def test_sender_digits(self):
        assert sender_digits('258841234567@c.us') == '258841234567'
        assert sender_digits('258841234567-1612345678@g.us') == '258841234567'

    def test_local_subscriber_number(self):
        assert local_subscriber_number('258841234567@c.us') == '841234567'
        assert local_subscriber_number('258258841234567@c.us') == '841234567'
        assert local_subscriber_number('841234567') == '841234567'

    def test_local_number_validation(self):
        assert is_valid_local_number('258841234567')
        assert is_valid_local_number('+258841234567')
        assert not is_valid_local_number('447700900123')
        assert not is_valid_local_number('25884123')


@pytest.fixture
def transport():
    transport = Mock()
    transport.get_chat_admins.return_value = {'258840000001', '258840000099'}
    transport.get_own_id.return_value = '258840000099'
    transport.remove_participant.return_value = True
    return transport


@pytest.fixture
def sleep():
    return Mock()


@pytest.fixture
def guard(transport, sleep):
    return GroupGuard(transport, MessageComposer(), sleep=sleep, announce_delay=2.0)


class TestGroupGuard:

    def test_lock_down_sequence(self, guard, transport, sleep):
        manager = Mock()
        manager.attach_mock(transport.send_message, 'send_message')
        manager.attach_mock(transport.set_admins_only, 'set_admins_only')
        manager.attach_mock(sleep, 'sleep')

        guard.lock_down(SpamEvent(
            group_id=GROUP,
            sender='258841234567',
            sender_name='Spammer',
            count=5,
            detected_at=datetime(2025, 9, 18, 10, 0, tzinfo=ZoneInfo("Africa/Maputo")),
        ))

        names = [name for name, _, _ in manager.mock_calls]
        assert names == ['send_message', 'sleep', 'set_admins_only', 'send_message']
        assert sleep.call_args == call(2.0)
        assert 'SPAM DETECTADO' in transport.send_message.call_args_list[0][0][1]
        assert 'GRUPO FECHADO' in transport.send_message.call_args_list[1][0][1]

    def test_is_admin(self, guard):
        assert guard.is_admin(GROUP, '258840000001@c.us')
        assert not guard.is_admin(GROUP, '258841234567@c.us')

    def test_group_join_skips_local_numbers(self, guard, transport):
        result = guard.handle_group_join(GroupJoinEvent(group_id=GROUP, participant_ids=['258841234567@c.us']))

        assert result['removed'] == []
        transport.remove_participant.assert_not_called()

    def test_group_join_ignores_other_events(self, guard, transport):
        result = guard.handle_group_join(GroupJoinEvent(
            group_id=GROUP, participant_ids=['447700900123@c.us'], type='remove'
        ))

        assert result['removed'] == []
        transport.remove_participant.assert_not_called()

    def test_group_join_without_bot_admin(self, guard, transport):
        transport.get_chat_admins.return_value = {'258840000001'}

        result = guard.handle_group_join(GroupJoinEvent(group_id=GROUP, participant_ids=['447700900123@c.us']))

        assert result['failed'] == ['447700900123@c.us']
        transport.remove_participant.assert_not_called()

    def test_group_join_gateway_error(self, guard, transport):
        transport.get_chat_admins.side_effect = TransportError("timeout")

        result = guard.handle_group_join(GroupJoinEvent(group_id=GROUP, participant_ids=['447700900123@c.us']))

        assert result['failed'] == ['447700900123@c.us']

    def test_foreign_number_notification(self, guard, transport):
        guard.handle_group_join(GroupJoinEvent(group_id=GROUP, participant_ids=['447700900123@c.us']))

        text = transport.send_message.call_args[0][1]
        assert 'NÚMERO ESTRANGEIRO REMOVIDO' in text
        assert '+447700900123' in text
