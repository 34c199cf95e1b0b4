"""
Server module for CXChat.

Real-time messaging and notification fan-out, organised as follows:

Architecture Overview:
---------------------

1. **Session Registry** (`session/`)
   - SessionRegistry: user id -> live connections (one per tab/device)

2. **Room Routing** (`routing/`)
   - RoomRouter: the single ``emit(room, event)`` fan-out primitive
   - DeliveryResult / DeliveryStatus: outcome of an emit; an empty room
     is a silent no-op, not an error

3. **Message Pipeline** (`pipeline.py`)
   - MessagePipeline: persist message -> persist notification -> push

4. **Signals** (`signals.py`)
   - SignalRelay: typing / stop typing / post-liked, never persisted

5. **Read State** (`read_state.py`)
   - ReadStateTracker: one-way unread -> read per (sender, receiver) pair

6. **Aggregation** (`notifications.py`)
   - NotificationAggregator: unread counts, notification feed, chat list

7. **Transport & Auth** (`transport/`, `auth/`)
   - WebSocketConnection, ConnectionHealthMonitor
   - JWTAuthenticator, AuthenticationMiddleware

8. **WebSocket Manager** (`websocket_manager.py`)
   - WebSocketManager: handshake, ``setup`` binding, frame dispatch

Usage:
------

    from CXChat.core.server import WebSocketManager, create_app_context

    context = create_app_context()
    manager = WebSocketManager(context)

    async with manager.run("localhost", 8765):
        await asyncio.Future()
"""

from .exceptions import (
    CXChatError,
    InvalidArgument,
    AuthenticationError,
    NotFound,
    InternalError,
)
from .interfaces import (
    AuthResult,
    Authenticator,
    TransportConnection,
    Broadcaster,
    UserDirectory,
    MessageStore,
    NotificationStore,
)
from .session import SessionRegistry
from .routing import RoomRouter, DeliveryResult, DeliveryStatus
from .transport import WebSocketConnection, ConnectionHealthMonitor
from .auth import JWTAuthenticator, AuthenticationMiddleware, issue_token
from .storage_sqlite import SQLiteStore
from .pipeline import MessagePipeline
from .signals import SignalRelay
from .read_state import ReadStateTracker
from .notifications import NotificationAggregator
from .context import AppContext, create_app_context
from .websocket_manager import WebSocketManager, create_server

__all__ = [
    # Errors
    'CXChatError',
    'InvalidArgument',
    'AuthenticationError',
    'NotFound',
    'InternalError',

    # Interfaces
    'AuthResult',
    'Authenticator',
    'TransportConnection',
    'Broadcaster',
    'UserDirectory',
    'MessageStore',
    'NotificationStore',

    # Components
    'SessionRegistry',
    'RoomRouter',
    'DeliveryResult',
    'DeliveryStatus',
    'WebSocketConnection',
    'ConnectionHealthMonitor',
    'JWTAuthenticator',
    'AuthenticationMiddleware',
    'issue_token',
    'SQLiteStore',
    'MessagePipeline',
    'SignalRelay',
    'ReadStateTracker',
    'NotificationAggregator',

    # Wiring
    'AppContext',
    'create_app_context',
    'WebSocketManager',
    'create_server',
]
