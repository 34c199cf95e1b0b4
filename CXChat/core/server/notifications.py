"""
Read-side aggregation over messages and notifications.

Everything here is answered from the store alone, so the results are the
same whether or not the user currently has a live connection.
"""

import logging
from typing import Any, Dict, List, Optional

from CXChat.core.logging.utils import LogTimer, timed
from CXChat.core.message.records import MessageRecord, UserProfile
from CXChat.core.server.interfaces import MessageStore, NotificationStore, UserDirectory
from CXChat.core.server.pipeline import require_user_id

logger = logging.getLogger(__name__)


class NotificationAggregator:
    """Unread counts, notification feed, chat list and conversations."""

    def __init__(
        self,
        directory: UserDirectory,
        messages: MessageStore,
        notifications: NotificationStore
    ):
        self._directory = directory
        self._messages = messages
        self._notifications = notifications

    # ------------------------- counts -------------------------
    def unread_message_count(self, user_id: str) -> int:
        """Unread direct messages addressed to ``user_id``."""
        return sum(self.unread_message_counts_by_sender(user_id).values())

    def unread_message_counts_by_sender(self, user_id: str) -> Dict[str, int]:
        require_user_id(user_id, "user")
        return self._messages.unread_counts_by_sender(user_id)

    def unread_notification_count(self, user_id: str) -> int:
        require_user_id(user_id, "user")
        return self._notifications.count_unread_notifications(user_id)

    # ------------------------- feed ---------------------------
    @timed("list_notifications")
    def list_notifications(self, user_id: str) -> List[Dict[str, Any]]:
        """
        Notifications for ``user_id``, newest first, each joined with the
        sender's public profile and, for message notifications, the
        message id and content.

        A sender missing from the directory is reported as ``None``.
        """
        require_user_id(user_id, "user")
        profiles: Dict[str, Optional[UserProfile]] = {}
        feed = []
        for record in self._notifications.list_notifications(user_id):
            if record.sender not in profiles:
                profiles[record.sender] = self._directory.public_profile(record.sender)
            profile = profiles[record.sender]
            message = None
            if record.message_id is not None:
                message = self._messages.get_message(record.message_id)

            if profile is None:
                data = record.to_dict()
                data["sender"] = None
                if message is not None:
                    data["message"] = {"_id": message.id, "content": message.content}
            else:
                data = record.enrich(profile, message)
            feed.append(data)
        return feed

    def mark_all_read(self, user_id: str) -> int:
        """Mark every notification of ``user_id`` as read."""
        require_user_id(user_id, "user")
        with LogTimer("mark_notifications_read", logger):
            return self._notifications.mark_notifications_read(user_id)

    # ------------------------- chats --------------------------
    @timed("chat_history")
    def chat_history(self, user_id: str) -> List[Dict[str, Any]]:
        """
        One entry per conversation partner, most recent conversation first.

        Each entry carries the partner's public profile, the last message
        exchanged and the number of unread messages from that partner.
        Partners no longer in the directory are left out.
        """
        require_user_id(user_id, "user")
        history = []
        for row in self._messages.chat_partners(user_id):
            profile = self._directory.public_profile(row.partner)
            if profile is None:
                logger.debug("Dropping unknown chat partner %s for %s", row.partner, user_id)
                continue
            entry = profile.to_dict()
            entry["lastMessage"] = {
                "content": row.last_content,
                "timestamp": row.last_created_at,
                "sender": row.last_sender,
            }
            entry["unreadCount"] = row.unread_count
            history.append(entry)
        return history

    def conversation(self, user_a: str, user_b: str) -> List[MessageRecord]:
        """All messages between two users, oldest first."""
        require_user_id(user_a, "sender")
        require_user_id(user_b, "receiver")
        with LogTimer("conversation", logger):
            return self._messages.conversation(user_a, user_b)


__all__ = [
    'NotificationAggregator',
]
