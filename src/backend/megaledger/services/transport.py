"""
Chat transport: the bot's only way to talk to WhatsApp.

`GatewayTransport` talks to an HTTP WhatsApp gateway. Everything else in
the bot depends on the `ChatTransport` protocol so it can be replaced by a
fake in tests.
"""

import logging
from typing import List, Optional, Protocol, Set

import requests

from megaledger.config import settings
from megaledger.exceptions import TransportError
from megaledger.models.message import Participant
from megaledger.utils.phone import sender_digits

logger = logging.getLogger(__name__)


class ChatTransport(Protocol):
    """Capabilities the bot needs from the chat transport."""

    def get_participants(self, group_id: str) -> List[Participant]:
        ...

    def get_chat_admins(self, group_id: str) -> Set[str]:
        ...

    def send_message(self, chat_id: str, text: str, mentions: Optional[List[str]] = None) -> None:
        ...

    def remove_participant(self, group_id: str, participant_id: str) -> bool:
        ...

    def set_admins_only(self, group_id: str, enabled: bool) -> None:
        ...

    def get_own_id(self) -> str:
        ...


class GatewayTransport:
    """requests-based client for the WhatsApp HTTP gateway."""

    def __init__(self, base_url: str = None, token: str = None, timeout: float = None, session=None):
        self.base_url = (base_url or settings.GATEWAY_URL).rstrip('/')
        self.timeout = timeout or settings.GATEWAY_TIMEOUT
        self.session = session or requests.Session()

        token = token if token is not None else settings.GATEWAY_TOKEN
        if token:
            self.session.headers['Authorization'] = f"Bearer {token}"

        self._own_id = None

    def _request(self, method: str, path: str, **kwargs):
        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
            response.raise_for_status()
        except requests.RequestException as e:
            logger.error("Gateway request failed", extra={
                "method": method,
                "path": path,
                "error": str(e)
            })
            raise TransportError(f"{method} {path} failed: {e}") from e

        if not response.content:
            return None
        return response.json()

    def get_participants(self, group_id: str) -> List[Participant]:
        data = self._request('GET', f"/groups/{group_id}/participants") or []
        return [Participant.model_validate(item) for item in data]

    def get_chat_admins(self, group_id: str) -> Set[str]:
        """Sender digits of every admin in the group."""
        return {
            sender_digits(participant.phone or participant.id)
            for participant in self.get_participants(group_id)
            if participant.is_admin
        }

    def send_message(self, chat_id: str, text: str, mentions: Optional[List[str]] = None) -> None:
        self._request('POST', '/messages', json={
            'chat_id': chat_id,
            'text': text,
            'mentions': mentions or [],
        })
        logger.debug("Message sent", extra={"chat_id": chat_id, "length": len(text)})

    def remove_participant(self, group_id: str, participant_id: str) -> bool:
        try:
            self._request('DELETE', f"/groups/{group_id}/participants/{participant_id}")
        except TransportError:
            return False
        return True

    def set_admins_only(self, group_id: str, enabled: bool) -> None:
        self._request('PUT', f"/groups/{group_id}/settings", json={'admins_only': enabled})

    def get_own_id(self) -> str:
        """Sender digits of the bot account (cached)."""
        if self._own_id is None:
            data = self._request('GET', '/me') or {}
            self._own_id = sender_digits(data.get('id', ''))
        return self._own_id
