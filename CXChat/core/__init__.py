from .message.protocol import ClientEvent, Event, EventType
from .message.records import MessageRecord, NotificationRecord, UserProfile

__all__ = ['ClientEvent', 'Event', 'EventType', 'MessageRecord', 'NotificationRecord', 'UserProfile']
