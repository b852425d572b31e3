"""
Chat commands (".ranking", ".inativos", ...).

Ranking, inactivity and zero-purchase answers are pure reads over the
ledger. The two cleanup workflows are two-step: an admin requests, the
same admin confirms within CLEANUP_CONFIRM_TTL seconds.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple

from megaledger.config import settings
from megaledger.exceptions import TransportError
from megaledger.models.message import InboundMessage
from megaledger.services.composer import MessageComposer
from megaledger.services.guard import GroupGuard
from megaledger.services.ledger import LedgerService, PRIVATE_GROUP_ID
from megaledger.services.transport import ChatTransport
from megaledger.utils import clock
from megaledger.utils.phone import is_valid_local_number, sender_digits

logger = logging.getLogger(__name__)

CLEANUP_MEMBERS = 'members'
CLEANUP_NUMBERS = 'numbers'


@dataclass
class CleanupRequest:
    """A cleanup waiting for its requester's confirmation."""
    group_id: str
    kind: str
    members: List[Dict]
    requested_by: str
    requested_at: datetime


class CommandService:
    """Parses and answers chat commands."""

    def __init__(
        self,
        transport: ChatTransport,
        ledger: LedgerService,
        composer: MessageComposer,
        guard: GroupGuard,
        now: Callable[[], datetime] = clock.now,
        prefix: str = None
    ):
        self.transport = transport
        self.ledger = ledger
        self.composer = composer
        self.guard = guard
        self.now = now
        self.prefix = prefix or settings.COMMAND_PREFIX
        self._pending_cleanups: Dict[Tuple[str, str], CleanupRequest] = {}

        self.handlers = {
            'ranking': self.send_ranking,
            'inativos': self.send_inactive,
            'semregistro': self.send_zero_purchase,
            'limpeza': lambda message: self.request_cleanup(message, CLEANUP_MEMBERS),
            'confirmar': lambda message: self.confirm_cleanup(message, CLEANUP_MEMBERS),
            'limpar.numeros': lambda message: self.request_cleanup(message, CLEANUP_NUMBERS),
            'confirmar.numeros': lambda message: self.confirm_cleanup(message, CLEANUP_NUMBERS),
        }

    def is_command(self, text: str) -> bool:
        return bool(text) and text.startswith(self.prefix)

    def handle(self, message: InboundMessage) -> Optional[str]:
        """
        Dispatch a command message.

        Returns:
            Name of the command handled, or None if unrecognized
        """
        command = message.body.strip().lower()[len(self.prefix):]
        handler = self.handlers.get(command)
        if handler is None:
            return None

        try:
            handler(message)
        except TransportError as e:
            logger.error("Command failed", extra={
                "command": command,
                "chat_id": message.chat_id,
                "error": str(e)
            })
            self._reply(message, self.composer.membership_error())
        return command

    def _reply(self, message: InboundMessage, text: str) -> None:
        try:
            self.transport.send_message(message.chat_id, text)
        except TransportError as e:
            logger.error("Error sending command reply", extra={
                "chat_id": message.chat_id,
                "error": str(e)
            })

    # Read-only views

    def send_ranking(self, message: InboundMessage) -> None:
        group_id = message.group_id or PRIVATE_GROUP_ID
        entries = self.ledger.ranking(group_id)
        summary = self.ledger.group_summary(group_id)
        self._reply(message, self.composer.ranking_message(entries, summary))
        logger.info("Ranking sent", extra={"group_id": group_id})

    def send_inactive(self, message: InboundMessage) -> None:
        group_id = message.group_id or PRIVATE_GROUP_ID
        inactive = self.ledger.inactive_buyers(group_id)
        self._reply(message, self.composer.inactive_message(inactive))
        logger.info("Inactive list sent", extra={"group_id": group_id, "count": len(inactive)})

    def send_zero_purchase(self, message: InboundMessage) -> None:
        if not message.group_id:
            self._reply(message, self.composer.group_only())
            return

        participants = self.transport.get_participants(message.group_id)
        members = self.ledger.zero_purchase_members(message.group_id, participants)
        self._reply(message, self.composer.zero_purchase_message(members, len(participants)))
        logger.info("Zero-purchase list sent", extra={
            "group_id": message.group_id,
            "count": len(members),
            "members": len(participants)
        })

    # Cleanup workflows

    def _cleanup_targets(self, group_id: str, kind: str) -> List[Dict]:
        """Non-admin members (never the bot) selected for removal."""
        participants = self.transport.get_participants(group_id)
        own_id = self.transport.get_own_id()

        if kind == CLEANUP_MEMBERS:
            zero = {
                member.phone: member
                for member in self.ledger.zero_purchase_members(
                    group_id, participants, exclude_admins=True, exclude_ids=[own_id]
                )
            }
            return [
                {'id': participant.id, 'phone': f"+{participant.phone}", 'name': zero[f"+{participant.phone}"].display_name}
                for participant in participants
                if f"+{participant.phone}" in zero
            ]

        return [
            {'id': participant.id, 'phone': participant.phone, 'name': participant.name or participant.phone}
            for participant in participants
            if not participant.is_admin
            and sender_digits(participant.phone) != own_id
            and not is_valid_local_number(participant.phone)
        ]

    def request_cleanup(self, message: InboundMessage, kind: str) -> None:
        foreign = kind == CLEANUP_NUMBERS
        if not message.group_id:
            self._reply(message, self.composer.group_only())
            return

        group_id = message.group_id
        requester = sender_digits(message.sender_id)

        if not self.guard.is_admin(group_id, requester):
            action = 'limpeza de números' if foreign else 'limpeza do grupo'
            self._reply(message, self.composer.access_denied(action))
            return

        if not self.guard.bot_is_admin(group_id):
            self._reply(message, self.composer.bot_not_admin())
            return

        targets = self._cleanup_targets(group_id, kind)
        if not targets:
            self._reply(message, self.composer.cleanup_unnecessary(foreign))
            return

        names = [
            f"{target['name']} (+{target['phone']})" if foreign else target['name']
            for target in targets
        ]
        self._reply(message, self.composer.cleanup_confirmation(names, foreign))

        self._pending_cleanups[(group_id, kind)] = CleanupRequest(
            group_id=group_id,
            kind=kind,
            members=targets,
            requested_by=requester,
            requested_at=self.now(),
        )
        logger.info("Cleanup requested", extra={
            "group_id": group_id,
            "kind": kind,
            "targets": len(targets),
            "requested_by": requester
        })

    def _active_cleanup(self, group_id: str, kind: str) -> Optional[CleanupRequest]:
        """Pending request for this group, dropping it once expired."""
        request = self._pending_cleanups.get((group_id, kind))
        if request is None:
            return None

        age = (self.now() - request.requested_at).total_seconds()
        if age > settings.CLEANUP_CONFIRM_TTL:
            del self._pending_cleanups[(group_id, kind)]
            logger.info("Cleanup request expired", extra={"group_id": group_id, "kind": kind})
            return None
        return request

    def confirm_cleanup(self, message: InboundMessage, kind: str) -> None:
        foreign = kind == CLEANUP_NUMBERS
        group_id = message.group_id or PRIVATE_GROUP_ID
        request = self._active_cleanup(group_id, kind)

        if request is None:
            self._reply(message, self.composer.no_pending_cleanup(foreign))
            return

        if request.requested_by != sender_digits(message.sender_id):
            self._reply(message, self.composer.cleanup_wrong_requester())
            return

        del self._pending_cleanups[(group_id, kind)]
        self._reply(message, self.composer.cleanup_started(len(request.members), foreign))

        delay = settings.NUMBER_REMOVAL_DELAY if foreign else settings.MEMBER_REMOVAL_DELAY
        outcome = self.guard.remove_participants(group_id, request.members, delay)

        self._reply(message, self.composer.cleanup_report(
            outcome['removed'], outcome['errors'], len(request.members), foreign
        ))
        logger.info("Cleanup finished", extra={
            "group_id": group_id,
            "kind": kind,
            "removed": outcome['removed'],
            "errors": outcome['errors']
        })
