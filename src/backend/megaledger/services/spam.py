"""
Spam detection: per-group, per-sender sliding window of recent messages.

A sender who posts the same (normalized) text SPAM_THRESHOLD times within
SPAM_WINDOW_SECONDS triggers a group lockdown. After a lockdown the group's
tracking state is discarded so counting starts fresh.
"""

import logging
import re
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Set

from megaledger.config import settings
from megaledger.models.message import InboundMessage
from megaledger.utils import clock
from megaledger.utils.phone import sender_digits

logger = logging.getLogger(__name__)


@dataclass
class WindowEntry:
    content: str
    timestamp: datetime


@dataclass
class SenderWindow:
    """Recent messages from one sender in one group."""
    messages: List[WindowEntry] = field(default_factory=list)
    last_seen: Optional[datetime] = None


@dataclass
class SpamEvent:
    """Details handed to the lockdown callback."""
    group_id: str
    sender: str
    sender_name: str
    count: int
    detected_at: datetime


def normalize_message(text: str) -> str:
    """Lowercase and collapse whitespace for duplicate comparison."""
    return re.sub(r'\s+', ' ', text.lower()).strip()


class SpamWindows:
    """
    Two-level window map: group → sender → SenderWindow.

    Only put/prune/evaluate touch the nested containers.
    """

    def __init__(self, window_seconds: int = None):
        self.window = timedelta(seconds=window_seconds or settings.SPAM_WINDOW_SECONDS)
        self._groups: Dict[str, Dict[str, SenderWindow]] = {}

    def prune(self, group_id: str, sender: str, current: datetime) -> None:
        """Drop entries that fell out of the window."""
        window = self._groups.get(group_id, {}).get(sender)
        if window is None:
            return
        window.messages = [
            entry for entry in window.messages
            if current - entry.timestamp < self.window
        ]

    def put(self, group_id: str, sender: str, content: str, current: datetime) -> None:
        window = self._groups.setdefault(group_id, {}).setdefault(sender, SenderWindow())
        window.messages.append(WindowEntry(content=content, timestamp=current))
        window.last_seen = current

    def evaluate(self, group_id: str, sender: str, content: str) -> int:
        """Number of window entries identical to content."""
        window = self._groups.get(group_id, {}).get(sender)
        if window is None:
            return 0
        return sum(1 for entry in window.messages if entry.content == content)

    def reset_group(self, group_id: str) -> None:
        self._groups.pop(group_id, None)

    def sweep(self, current: datetime) -> int:
        """
        Remove senders with no messages left and no activity for 2× the window,
        then groups left empty.

        Returns:
            Number of sender windows removed
        """
        removed = 0
        stale_after = self.window * 2

        for group_id in list(self._groups):
            senders = self._groups[group_id]
            for sender in list(senders):
                window = senders[sender]
                window.messages = [
                    entry for entry in window.messages
                    if current - entry.timestamp < self.window
                ]
                idle = window.last_seen is None or current - window.last_seen > stale_after
                if not window.messages and idle:
                    del senders[sender]
                    removed += 1

            if not senders:
                del self._groups[group_id]

        return removed

    def group_count(self) -> int:
        return len(self._groups)

    def sender_count(self, group_id: str) -> int:
        return len(self._groups.get(group_id, {}))


class SpamDetector:
    """Decides whether an inbound message is spam and escalates when it is."""

    def __init__(
        self,
        admin_lookup: Callable[[str], Set[str]],
        on_spam: Callable[[SpamEvent], None],
        threshold: int = None,
        window_seconds: int = None,
        min_length: int = None,
        command_prefix: str = None,
        now: Callable[[], datetime] = clock.now
    ):
        """
        Args:
            admin_lookup: group_id → set of admin sender digits (gateway call)
            on_spam: Lockdown side effect, invoked once per trigger
        """
        self.admin_lookup = admin_lookup
        self.on_spam = on_spam
        self.threshold = threshold or settings.SPAM_THRESHOLD
        self.min_length = min_length if min_length is not None else settings.SPAM_MIN_MESSAGE_LENGTH
        self.command_prefix = command_prefix or settings.COMMAND_PREFIX
        self.now = now
        self.windows = SpamWindows(window_seconds)
        self.lock = threading.RLock()

    def _is_eligible(self, message: InboundMessage) -> bool:
        if not message.group_id:
            return False
        text = message.body.strip()
        if len(text) < self.min_length:
            return False
        if text.startswith(self.command_prefix):
            return False
        return message.message_type == 'chat'

    def _is_admin(self, group_id: str, sender: str) -> Optional[bool]:
        """Admin status from the gateway; None when the lookup fails."""
        try:
            return sender in self.admin_lookup(group_id)
        except Exception as e:
            logger.warning("Admin lookup failed, treating message as not spam", extra={
                "group_id": group_id,
                "sender": sender,
                "error": str(e)
            })
            return None

    def check(self, message: InboundMessage) -> bool:
        """
        Record an inbound message and report whether it triggered a lockdown.

        Returns:
            True on the message that crosses the threshold, False otherwise
        """
        if not self._is_eligible(message):
            return False

        group_id = message.group_id
        sender = sender_digits(message.sender_id)

        is_admin = self._is_admin(group_id, sender)
        if is_admin is None or is_admin:
            return False

        content = normalize_message(message.body)
        current = self.now()

        with self.lock:
            self.windows.prune(group_id, sender, current)
            self.windows.put(group_id, sender, content, current)
            count = self.windows.evaluate(group_id, sender, content)

            if count < self.threshold:
                return False

            self.windows.reset_group(group_id)

        logger.warning("Spam detected", extra={
            "group_id": group_id,
            "sender": sender,
            "identical_messages": count
        })

        event = SpamEvent(
            group_id=group_id,
            sender=sender,
            sender_name=message.sender_name or sender,
            count=count,
            detected_at=current,
        )
        try:
            self.on_spam(event)
        except Exception as e:
            logger.error("Lockdown failed", extra={
                "group_id": group_id,
                "error": str(e)
            }, exc_info=True)

        return True

    def sweep(self) -> int:
        """Periodic cleanup of stale windows."""
        with self.lock:
            removed = self.windows.sweep(self.now())
        if removed:
            logger.debug("Spam windows swept", extra={"removed": removed})
        return removed
