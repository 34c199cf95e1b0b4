"""
Contracts between the messaging core and its collaborators.

The core only talks to identity, the user directory, the document store
and the live transport through these protocols, so each one can be
swapped for a test double.
"""

from abc import abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Dict, List, Optional, Protocol, runtime_checkable

if TYPE_CHECKING:
    from CXChat.core.message.protocol import Event
    from CXChat.core.message.records import MessageRecord, NotificationRecord, UserProfile
    from CXChat.core.server.routing import DeliveryResult
    from CXChat.core.server.storage_sqlite import ChatPartnerRow


@dataclass
class AuthResult:
    """Result of an authentication attempt."""
    success: bool
    user_id: Optional[str] = None
    error_message: Optional[str] = None
    error_code: Optional[str] = None


@runtime_checkable
class Authenticator(Protocol):
    """Protocol for authentication handlers."""

    @abstractmethod
    async def authenticate(self, token: str) -> AuthResult:
        """
        Authenticate a user using the provided token.

        Args:
            token: Authentication token

        Returns:
            AuthResult containing authentication status and user id
        """
        ...

    @abstractmethod
    def extract_token(self, transport_context: object) -> Optional[str]:
        """
        Extract authentication token from transport context.

        Args:
            transport_context: Transport-specific context object

        Returns:
            Extracted token or None if not found
        """
        ...


@runtime_checkable
class TransportConnection(Protocol):
    """Protocol for one live transport session."""

    conn_id: str

    @abstractmethod
    async def send(self, message: str) -> bool:
        """Send a frame; False if the connection is gone."""
        ...

    @abstractmethod
    async def close(self, code: int = 1000, reason: str = "") -> None:
        """Close the connection."""
        ...

    @abstractmethod
    def is_open(self) -> bool:
        """Check if connection is open."""
        ...


@runtime_checkable
class Broadcaster(Protocol):
    """The single fan-out primitive: push an event to a user's room."""

    @abstractmethod
    async def emit(
        self,
        room: str,
        event: 'Event',
        exclude: Optional[str] = None
    ) -> 'DeliveryResult':
        """
        Deliver ``event`` to every connection currently in ``room``.

        Args:
            room: Target user identity
            event: Event to deliver
            exclude: Optional connection id to skip

        Returns:
            DeliveryResult; an empty room is a silent no-op, never an error
        """
        ...


@runtime_checkable
class UserDirectory(Protocol):
    """Read-only view of users."""

    @abstractmethod
    def exists(self, user_id: str) -> bool:
        ...

    @abstractmethod
    def public_profile(self, user_id: str) -> Optional['UserProfile']:
        ...

    @abstractmethod
    def find_by_username_pattern(self, pattern: str, limit: int = 20) -> List[str]:
        """Case-insensitive substring match on usernames."""
        ...


@runtime_checkable
class MessageStore(Protocol):
    """Message collection operations used by the core."""

    @abstractmethod
    def insert_message(
        self,
        sender: str,
        receiver: str,
        content: str,
        type: str = "text",
        post_id: Optional[str] = None,
        created_at: Optional[float] = None
    ) -> 'MessageRecord':
        ...

    @abstractmethod
    def get_message(self, message_id: int) -> Optional['MessageRecord']:
        ...

    @abstractmethod
    def conversation(self, user1: str, user2: str) -> List['MessageRecord']:
        ...

    @abstractmethod
    def chat_partners(self, user_id: str) -> List['ChatPartnerRow']:
        """Latest message and unread count per partner, newest first."""
        ...

    @abstractmethod
    def mark_messages_read(self, sender: str, receiver: str, read_at: float) -> int:
        ...

    @abstractmethod
    def unread_counts_by_sender(self, receiver: str) -> Dict[str, int]:
        ...


@runtime_checkable
class NotificationStore(Protocol):
    """Notification collection operations used by the core."""

    @abstractmethod
    def insert_notification(
        self,
        sender: str,
        receiver: str,
        type: str,
        message_id: Optional[int] = None,
        post_id: Optional[str] = None,
        content: Optional[str] = None,
        created_at: Optional[float] = None
    ) -> 'NotificationRecord':
        ...

    @abstractmethod
    def get_notification(self, notification_id: int) -> Optional['NotificationRecord']:
        ...

    @abstractmethod
    def list_notifications(self, receiver: str) -> List['NotificationRecord']:
        ...

    @abstractmethod
    def count_unread_notifications(self, receiver: str) -> int:
        ...

    @abstractmethod
    def mark_notifications_read(self, receiver: str) -> int:
        ...


__all__ = [
    'AuthResult',
    'Authenticator',
    'TransportConnection',
    'Broadcaster',
    'UserDirectory',
    'MessageStore',
    'NotificationStore',
]
