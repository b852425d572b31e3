"""
Test suite for the HTTP gateway transport with a mocked requests session.
"""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from unittest.mock import Mock

import requests

from megaledger.exceptions import TransportError
from megaledger.services.transport import GatewayTransport
import pytest


def make_response(payload=None, status_error=None):
    response = Mock()
    response.content = b'{}' if payload is not None else b''
    response.json.return_value = payload
    if status_error:
        response.raise_for_status.side_effect = status_error
    return response


@pytest.fixture
def session():
    session = Mock()
    session.headers = {}
    return session


@pytest.fixture
def transport(session):
    return GatewayTransport(base_url='http://gateway:3001/', token='secret', timeout=5, session=session)


class TestGatewayTransport:

    def test_bearer_token(self, session, transport):
        assert session.headers['Authorization'] == 'Bearer secret'

    def test_participants(self, session, transport):
        session.request.return_value = make_response([
            {'id': '258840000001@c.us', 'phone': '258840000001', 'name': 'Admin', 'is_admin': True},
            {'id': '258841234567@c.us', 'phone': '258841234567'},
        ])

        participants = transport.get_participants('G@g.us')

        session.request.assert_called_once_with('GET', 'http://gateway:3001/groups/G@g.us/participants', timeout=5)
        assert [participant.phone for participant in participants] == ['258840000001', '258841234567']
        assert participants[0].is_admin

    def test_chat_admins(self, session, transport):
        session.request.return_value = make_response([
            {'id': '258840000001@c.us', 'phone': '258840000001', 'is_admin': True},
            {'id': '258841234567@c.us', 'phone': '258841234567', 'is_admin': False},
        ])

        assert transport.get_chat_admins('G@g.us') == {'258840000001'}

    def test_send_message_with_mentions(self, session, transport):
        session.request.return_value = make_response()

        transport.send_message('G@g.us', 'Olá', mentions=['258841234567@c.us'])

        session.request.assert_called_once_with(
            'POST', 'http://gateway:3001/messages', timeout=5,
            json={'chat_id': 'G@g.us', 'text': 'Olá', 'mentions': ['258841234567@c.us']}
        )

    def test_http_error_raises_transport_error(self, session, transport):
        session.request.return_value = make_response(status_error=requests.HTTPError("500 Server Error"))

        with pytest.raises(TransportError):
            transport.send_message('G@g.us', 'Olá')

    def test_network_error_raises_transport_error(self, session, transport):
        session.request.side_effect = requests.ConnectionError("refused")

        with pytest.raises(TransportError):
            transport.get_participants('G@g.us')

    def test_remove_participant_result(self, session, transport):
        session.request.return_value = make_response()
        assert transport.remove_participant('G@g.us', '447700900123@c.us') is True

        session.request.return_value = make_response(status_error=requests.HTTPError("403"))
        assert transport.remove_participant('G@g.us', '447700900123@c.us') is False

    def test_set_admins_only(self, session, transport):
        session.request.return_value = make_response()

        transport.set_admins_only('G@g.us', True)

        session.request.assert_called_once_with(
            'PUT', 'http://gateway:3001/groups/G@g.us/settings', timeout=5, json={'admins_only': True}
        )

    def test_own_id_cached(self, session, transport):
        session.request.return_value = make_response({'id': '258840000099@c.us'})

        assert transport.get_own_id() == '258840000099'
        assert transport.get_own_id() == '258840000099'
        session.request.assert_called_once()
