"""
Message pipeline: persist first, then fan out.

A direct message is stored, a ``message`` notification is derived from it
and stored, and only then are live pushes issued. Store steps are
independent round-trips: a notification failure does not roll back the
message, and a push failure never undoes either write.
"""

import logging
from typing import Optional

from CXChat.config import config
from CXChat.core.logging.utils import LogTimer
from CXChat.core.message.protocol import NewNotification, ReceiveMessage
from CXChat.core.message.records import (
    MESSAGE_TYPES,
    NOTIFICATION_TYPES,
    MessageRecord,
    NotificationRecord,
    is_valid_user_id,
)
from CXChat.core.server.exceptions import InternalError, InvalidArgument, NotFound
from CXChat.core.server.interfaces import (
    Broadcaster,
    MessageStore,
    NotificationStore,
    UserDirectory,
)

logger = logging.getLogger(__name__)

# Action notifications pushed through ``notify``; "message" notifications
# are only ever derived by ``send_message``.
ACTION_TYPES = tuple(t for t in NOTIFICATION_TYPES if t != "message")


def snippet(content: Optional[str], limit: int = None) -> Optional[str]:
    """Bounded preview stored on a notification."""
    if content is None:
        return None
    limit = limit if limit is not None else config.NOTIFICATION_SNIPPET_LENGTH
    return content[:limit]


def require_user_id(value, field: str) -> str:
    if value is None or value == "":
        raise InvalidArgument(f"Missing required field: {field}")
    if not is_valid_user_id(value):
        raise InvalidArgument(f"Invalid user id for {field}", {"value": str(value)})
    return value


def require_post_id(value) -> Optional[str]:
    """Post references are optional opaque strings."""
    if value is not None and not isinstance(value, str):
        raise InvalidArgument("Invalid post id", {"value": repr(value)})
    return value


class MessagePipeline:
    """
    Persists direct messages and action notifications, then pushes them.

    All pushes go through the injected ``Broadcaster``; the pipeline never
    touches connections directly.
    """

    def __init__(
        self,
        directory: UserDirectory,
        messages: MessageStore,
        notifications: NotificationStore,
        broadcaster: Broadcaster,
        snippet_length: int = None
    ):
        """
        Initialize the pipeline.

        Args:
            directory: User directory for existence checks and profiles
            messages: Message store
            notifications: Notification store
            broadcaster: Room fan-out primitive
            snippet_length: Notification preview length
        """
        self._directory = directory
        self._messages = messages
        self._notifications = notifications
        self._broadcaster = broadcaster
        self._snippet_length = snippet_length or config.NOTIFICATION_SNIPPET_LENGTH

    def _validate_message(self, sender, receiver, content, type, post_id) -> str:
        require_user_id(sender, "sender")
        require_user_id(receiver, "receiver")
        if not isinstance(content, str) or not content.strip():
            raise InvalidArgument("Missing required field: content")
        require_post_id(post_id)
        msg_type = type or "text"
        if msg_type not in MESSAGE_TYPES:
            raise InvalidArgument(f"Unsupported message type: {msg_type}")
        return msg_type

    def _require_users(self, *user_ids: str) -> None:
        for user_id in user_ids:
            if not self._directory.exists(user_id):
                raise NotFound("User not found", {"user_id": user_id})

    async def send_message(
        self,
        sender: str,
        receiver: str,
        content: str,
        type: Optional[str] = None,
        post_id: Optional[str] = None,
        echo_to_sender: bool = True,
        exclude_connection: Optional[str] = None
    ) -> MessageRecord:
        """
        Store a direct message and push it to both participants.

        Args:
            sender: Sender identity
            receiver: Receiver identity
            content: Message text (non-blank)
            type: "text" (default) or "post_share"
            post_id: Shared post reference
            echo_to_sender: Also push ``receive-message`` to the sender's room
            exclude_connection: Connection id left out of the sender echo

        Returns:
            The persisted message

        Raises:
            InvalidArgument: missing or malformed input
            NotFound: sender or receiver unknown to the directory
            InternalError: the message could not be stored
        """
        msg_type = self._validate_message(sender, receiver, content, type, post_id)
        self._require_users(sender, receiver)

        try:
            with LogTimer("insert_message", logger):
                message = self._messages.insert_message(
                    sender, receiver, content, type=msg_type, post_id=post_id
                )
        except Exception as e:
            logger.exception("Failed to store message from %s to %s", sender, receiver)
            raise InternalError("Failed to send message") from e

        enriched = None
        try:
            with LogTimer("insert_notification", logger):
                notification = self._notifications.insert_notification(
                    sender,
                    receiver,
                    "message",
                    message_id=message.id,
                    content=snippet(content, self._snippet_length),
                )
        except Exception as e:
            logger.error("Message %s stored but its notification was not: %s", message.id, e)
        else:
            enriched = self._enrich(notification.id, message)

        await self._push(receiver, ReceiveMessage(message))
        if enriched is not None:
            await self._push(receiver, NewNotification(enriched))
        if echo_to_sender:
            await self._push(sender, ReceiveMessage(message), exclude=exclude_connection)

        logger.info("Message %s sent from %s to %s", message.id, sender, receiver)
        return message

    async def notify(
        self,
        sender: str,
        receiver: str,
        type: str,
        content: Optional[str] = None,
        post_id: Optional[str] = None
    ) -> Optional[NotificationRecord]:
        """
        Store one action notification (like, comment, follow, reminder)
        and push it to the receiver.

        Returns:
            The stored notification, or None when the actor is the receiver
            (nobody is notified about their own action)
        """
        require_user_id(sender, "sender")
        require_user_id(receiver, "receiver")
        if type not in ACTION_TYPES:
            raise InvalidArgument(f"Unsupported notification type: {type}")
        require_post_id(post_id)
        if content is not None and not isinstance(content, str):
            raise InvalidArgument("Invalid notification content")
        if sender == receiver and type != "reminder":
            logger.debug("Skipping self %s notification for %s", type, sender)
            return None
        self._require_users(sender, receiver)

        try:
            with LogTimer("insert_notification", logger):
                notification = self._notifications.insert_notification(
                    sender,
                    receiver,
                    type,
                    post_id=post_id,
                    content=snippet(content, self._snippet_length),
                )
        except Exception as e:
            logger.exception("Failed to store %s notification for %s", type, receiver)
            raise InternalError("Failed to create notification") from e

        enriched = self._enrich(notification.id)
        if enriched is not None:
            await self._push(receiver, NewNotification(enriched))
        return notification

    async def _push(self, room: str, event, exclude: Optional[str] = None) -> None:
        try:
            await self._broadcaster.emit(room, event, exclude=exclude)
        except Exception as e:
            logger.warning("Push of %s to room %s failed: %s", event.name, room, e)

    def _enrich(self, notification_id: int, message: Optional[MessageRecord] = None):
        """
        Re-read a stored notification joined with its sender's profile.

        Returns None when the join cannot be made; the notification then
        stays reachable through the notification feed only.
        """
        try:
            stored = self._notifications.get_notification(notification_id)
            profile = self._directory.public_profile(stored.sender) if stored else None
        except Exception as e:
            logger.warning("Could not enrich notification %s: %s", notification_id, e)
            return None
        if stored is None or profile is None:
            logger.warning("Could not enrich notification %s; skipping push", notification_id)
            return None
        return stored.enrich(profile, message)


__all__ = [
    'MessagePipeline',
    'ACTION_TYPES',
    'snippet',
    'require_user_id',
    'require_post_id',
]
