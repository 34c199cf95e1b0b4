"""
Persisted record types for direct messages and notifications.

The ``to_dict`` shapes are what the single-page client consumes, both in
HTTP responses and inside pushed events, so the key names follow the
client's conventions (``_id``, ``isRead``, ``timestamp``...).
"""

import re
from dataclasses import dataclass
from typing import Any, Dict, Optional

USER_ID_RE = re.compile(r"^[0-9a-fA-F]{24}$")

MESSAGE_TYPES = ("text", "post_share")
NOTIFICATION_TYPES = ("like", "comment", "follow", "message", "reminder")


def is_valid_user_id(value: Any) -> bool:
    """True if ``value`` is a 24-hex-character user identity."""
    return isinstance(value, str) and USER_ID_RE.match(value) is not None


@dataclass(frozen=True)
class UserProfile:
    """Public profile fields used to enrich pushed records."""
    id: str
    username: str
    name: str = ""
    avatar: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "_id": self.id,
            "username": self.username,
            "name": self.name,
            "profilepic": self.avatar,
        }


@dataclass(frozen=True)
class MessageRecord:
    """
    A direct message between two users.

    Attributes:
        id: Store-assigned id
        sender: Sender identity
        receiver: Receiver identity
        content: Message text
        type: "text" or "post_share"
        post_id: Shared post reference for "post_share" messages
        is_read: Read flag, flipped by the read-state tracker only
        read_at: When the message was marked read
        created_at: Creation timestamp (epoch seconds)
    """
    id: int
    sender: str
    receiver: str
    content: str
    type: str = "text"
    post_id: Optional[str] = None
    is_read: bool = False
    read_at: Optional[float] = None
    created_at: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "_id": self.id,
            "sender": self.sender,
            "receiver": self.receiver,
            "content": self.content,
            "type": self.type,
            "postId": self.post_id,
            "isRead": self.is_read,
            "readAt": self.read_at,
            "timestamp": self.created_at,
        }


@dataclass(frozen=True)
class NotificationRecord:
    """A stored notification; ``content`` is a bounded snippet."""
    id: int
    sender: str
    receiver: str
    type: str
    message_id: Optional[int] = None
    post_id: Optional[str] = None
    content: Optional[str] = None
    is_read: bool = False
    created_at: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "_id": self.id,
            "sender": self.sender,
            "receiver": self.receiver,
            "type": self.type,
            "message": self.message_id,
            "postId": self.post_id,
            "content": self.content,
            "isRead": self.is_read,
            "createdAt": self.created_at,
        }

    def enrich(
        self,
        sender: UserProfile,
        message: Optional[MessageRecord] = None
    ) -> Dict[str, Any]:
        """
        Join the notification with the sender's public profile.

        Args:
            sender: Profile of ``self.sender``
            message: The back-referenced message, if any

        Returns:
            The client-facing notification shape
        """
        data = self.to_dict()
        data["sender"] = {
            "_id": sender.id,
            "username": sender.username,
            "profilepic": sender.avatar,
        }
        if message is not None:
            data["message"] = {"_id": message.id, "content": message.content}
        return data


__all__ = [
    'USER_ID_RE',
    'MESSAGE_TYPES',
    'NOTIFICATION_TYPES',
    'is_valid_user_id',
    'UserProfile',
    'MessageRecord',
    'NotificationRecord',
]
