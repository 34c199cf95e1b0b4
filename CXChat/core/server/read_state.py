"""
Read-state transitions for direct messages.
"""

import logging
import time

from CXChat.core.logging.utils import LogTimer
from CXChat.core.server.interfaces import MessageStore
from CXChat.core.server.pipeline import require_user_id

logger = logging.getLogger(__name__)


class ReadStateTracker:
    """
    Flips messages of one ordered (sender, receiver) pair from unread to read.

    The transition is one-way and idempotent: a second call finds nothing
    left to update. Notifications are not touched; they have their own
    mark-all-read operation.
    """

    def __init__(self, messages: MessageStore):
        self._messages = messages

    def mark_read(self, sender: str, receiver: str) -> int:
        """
        Mark every unread message from ``sender`` to ``receiver`` as read.

        Returns:
            Number of messages updated

        Raises:
            InvalidArgument: malformed or missing ids
        """
        require_user_id(sender, "sender")
        require_user_id(receiver, "receiver")
        with LogTimer("mark_messages_read", logger):
            updated = self._messages.mark_messages_read(sender, receiver, time.time())
        if updated:
            logger.debug("Marked %d messages from %s to %s as read", updated, sender, receiver)
        return updated


__all__ = [
    'ReadStateTracker',
]
