"""
Event protocol module for CXChat application.
Defines the tagged events exchanged over a live connection.

Every frame on the wire is a JSON object::

    {"event": "<name>", "data": <payload>}

Server-pushed events are small frozen dataclasses (one per event name) so
producers and consumers agree on the payload shape. Frames sent by the
client are parsed into ``ClientEvent``.
"""

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, ClassVar, Dict, List

from CXChat.core.message.records import MessageRecord


class EventType(Enum):
    """
    Enumeration of event names on the live connection.
    """
    # server -> client
    RECEIVE_MESSAGE = "receive-message"
    NEW_NOTIFICATION = "new_notification"
    POST_LIKED = "post-liked"
    CONNECTED = "connected"
    PONG = "pong"
    ERROR = "error"
    # both directions
    TYPING = "typing"
    STOP_TYPING = "stop typing"
    # client -> server
    SETUP = "setup"
    SEND_MESSAGE = "send-message"
    MARK_READ = "mark-read"
    PING = "ping"


class Event:
    """Base class for server-pushed events."""

    event_type: ClassVar[EventType]

    @property
    def name(self) -> str:
        return self.event_type.value

    def payload(self) -> Any:
        raise NotImplementedError

    def serialize(self) -> str:
        """
        Serialize the event to its JSON wire frame.

        Returns:
            str: JSON representation of the event
        """
        return json.dumps({"event": self.name, "data": self.payload()})


@dataclass(frozen=True)
class ReceiveMessage(Event):
    """A newly persisted direct message."""
    event_type: ClassVar[EventType] = EventType.RECEIVE_MESSAGE
    message: MessageRecord

    def payload(self) -> Dict[str, Any]:
        return self.message.to_dict()


@dataclass(frozen=True)
class NewNotification(Event):
    """An enriched notification (sender profile already joined in)."""
    event_type: ClassVar[EventType] = EventType.NEW_NOTIFICATION
    notification: Dict[str, Any]

    def payload(self) -> Dict[str, Any]:
        return self.notification


@dataclass(frozen=True)
class Typing(Event):
    event_type: ClassVar[EventType] = EventType.TYPING
    user_id: str

    def payload(self) -> str:
        return self.user_id


@dataclass(frozen=True)
class StopTyping(Event):
    event_type: ClassVar[EventType] = EventType.STOP_TYPING
    user_id: str

    def payload(self) -> str:
        return self.user_id


@dataclass(frozen=True)
class PostLiked(Event):
    """Updated like list of a post."""
    event_type: ClassVar[EventType] = EventType.POST_LIKED
    post_id: str
    likes: List[str]

    def payload(self) -> Dict[str, Any]:
        return {"postId": self.post_id, "updatedLikes": list(self.likes)}


@dataclass(frozen=True)
class Connected(Event):
    """Acknowledges that a connection is bound to its owner's room."""
    event_type: ClassVar[EventType] = EventType.CONNECTED
    user_id: str
    conn_id: str

    def payload(self) -> Dict[str, Any]:
        return {"userId": self.user_id, "connId": self.conn_id}


@dataclass(frozen=True)
class Pong(Event):
    event_type: ClassVar[EventType] = EventType.PONG

    def payload(self) -> None:
        return None


@dataclass(frozen=True)
class ErrorEvent(Event):
    event_type: ClassVar[EventType] = EventType.ERROR
    status: int
    error: str

    def payload(self) -> Dict[str, Any]:
        return {"status": self.status, "error": self.error}


@dataclass
class ClientEvent:
    """
    A frame received from a client.

    Attributes:
        type (EventType): Event name
        data (Any): Event payload, shape depends on ``type``
    """
    type: EventType
    data: Any = None

    @classmethod
    def deserialize(cls, raw: str) -> 'ClientEvent':
        """
        Create a ClientEvent from a JSON frame.

        Raises:
            ValueError: if the frame is not JSON, not an object, or names
                an unknown event
        """
        obj = json.loads(raw)
        if not isinstance(obj, dict) or "event" not in obj:
            raise ValueError("Frame must be an object with an 'event' field")
        return cls(type=EventType(obj["event"]), data=obj.get("data"))

    def serialize(self) -> str:
        return json.dumps({"event": self.type.value, "data": self.data})


__all__ = [
    'EventType',
    'Event',
    'ReceiveMessage',
    'NewNotification',
    'Typing',
    'StopTyping',
    'PostLiked',
    'Connected',
    'Pong',
    'ErrorEvent',
    'ClientEvent',
]
