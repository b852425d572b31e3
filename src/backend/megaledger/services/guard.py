"""
Group guard: admin checks, spam lockdown and the foreign-number filter.
"""

import logging
import time
from typing import Callable, Dict, List

from megaledger.config import settings
from megaledger.exceptions import TransportError
from megaledger.models.message import GroupJoinEvent
from megaledger.services.composer import MessageComposer
from megaledger.services.spam import SpamEvent
from megaledger.services.transport import ChatTransport
from megaledger.utils.phone import is_valid_local_number, sender_digits

logger = logging.getLogger(__name__)


class GroupGuard:
    """Side effects that protect a group; all go through the transport."""

    def __init__(
        self,
        transport: ChatTransport,
        composer: MessageComposer,
        sleep: Callable[[float], None] = time.sleep,
        announce_delay: float = None
    ):
        self.transport = transport
        self.composer = composer
        self.sleep = sleep
        self.announce_delay = (
            announce_delay if announce_delay is not None
            else settings.LOCKDOWN_ANNOUNCE_DELAY
        )

    def admins(self, group_id: str):
        return self.transport.get_chat_admins(group_id)

    def is_admin(self, group_id: str, sender_id: str) -> bool:
        return sender_digits(sender_id) in self.admins(group_id)

    def bot_is_admin(self, group_id: str) -> bool:
        return self.transport.get_own_id() in self.admins(group_id)

    def lock_down(self, event: SpamEvent) -> None:
        """Announce, restrict the group to admins, announce again."""
        self.transport.send_message(
            event.group_id,
            self.composer.spam_detected(event.sender_name, event.sender, event.count, event.detected_at)
        )

        # Let the announcement land before the group closes
        self.sleep(self.announce_delay)

        self.transport.set_admins_only(event.group_id, True)
        self.transport.send_message(event.group_id, self.composer.group_closed())

        logger.warning("Group locked down after spam", extra={
            "group_id": event.group_id,
            "sender": event.sender,
            "sender_name": event.sender_name
        })

    def remove_foreign_number(self, group_id: str, participant_id: str, phone: str, name: str, reason: str) -> bool:
        """Remove one non-local participant and notify the group."""
        if not self.bot_is_admin(group_id):
            logger.warning("Bot is not admin, cannot remove participant", extra={
                "group_id": group_id,
                "phone": phone
            })
            return False

        if not self.transport.remove_participant(group_id, participant_id):
            logger.error("Failed to remove foreign number", extra={
                "group_id": group_id,
                "phone": phone
            })
            return False

        self.transport.send_message(group_id, self.composer.foreign_number_removed(name, phone, reason))
        logger.info("Foreign number removed", extra={
            "group_id": group_id,
            "phone": phone,
            "reason": reason
        })
        return True

    def handle_group_join(self, event: GroupJoinEvent) -> Dict:
        """
        Remove newly added participants whose numbers are not local.

        Returns:
            Dictionary with removed and skipped participant ids
        """
        result = {'group_id': event.group_id, 'removed': [], 'failed': []}
        if event.type != 'add':
            return result

        for participant_id in event.participant_ids:
            phone = sender_digits(participant_id)
            if is_valid_local_number(phone):
                continue

            try:
                removed = self.remove_foreign_number(
                    event.group_id, participant_id, phone, phone, 'entrada automática'
                )
            except TransportError as e:
                logger.error("Error checking new member", extra={
                    "group_id": event.group_id,
                    "participant_id": participant_id,
                    "error": str(e)
                })
                removed = False

            result['removed' if removed else 'failed'].append(participant_id)

        return result

    def remove_participants(self, group_id: str, members: List[Dict], delay: float) -> Dict:
        """
        Remove members one by one with a pause between removals.

        Args:
            members: Dicts with 'id', 'phone' and 'name'
            delay: Seconds to wait after each successful removal

        Returns:
            Dictionary with 'removed' and 'errors' counts
        """
        removed = 0
        errors = 0
        for member in members:
            try:
                if not self.transport.remove_participant(group_id, member['id']):
                    raise TransportError("gateway refused removal")
            except TransportError as e:
                errors += 1
                logger.error("Error removing member", extra={
                    "group_id": group_id,
                    "phone": member['phone'],
                    "error": str(e)
                })
                continue

            removed += 1
            logger.info("Member removed", extra={"group_id": group_id, "phone": member['phone']})
            self.sleep(delay)

        return {'removed': removed, 'errors': errors}
