"""
Transport layer abstraction for WebSocket connections.

Wraps ``websockets`` server connections behind ``TransportConnection`` and
runs the periodic sweep that drops connections which closed without a
clean disconnect.
"""

import asyncio
import logging
import time
import uuid
from typing import Callable, List, Optional

from websockets.asyncio.server import ServerConnection
from websockets.protocol import State

from CXChat.core.server.session import SessionRegistry

logger = logging.getLogger(__name__)


class WebSocketConnection:
    """
    Wrapper around ServerConnection that implements TransportConnection.

    A connection starts unbound (``user_id`` is None) and is bound once the
    handshake token, or a later ``setup`` frame, has been verified.
    """

    def __init__(self, websocket: ServerConnection, user_id: Optional[str] = None):
        """
        Initialize WebSocket connection wrapper.

        Args:
            websocket: Underlying WebSocket connection
            user_id: Owning user, if already known
        """
        self._websocket = websocket
        self._user_id = user_id
        self._closed = False
        self.conn_id: str = uuid.uuid4().hex
        self.connected_at: float = time.time()
        self.last_seen: float = self.connected_at

    @property
    def user_id(self) -> Optional[str]:
        """Get associated user ID (None while unbound)."""
        return self._user_id

    @property
    def is_bound(self) -> bool:
        return self._user_id is not None

    def bind(self, user_id: str) -> None:
        self._user_id = user_id

    @property
    def raw_websocket(self) -> ServerConnection:
        """Get underlying WebSocket connection."""
        return self._websocket

    async def send(self, message: str) -> bool:
        """
        Send a frame through the connection.

        Args:
            message: Serialized frame

        Returns:
            True if the frame was handed to the socket
        """
        if self._closed:
            return False

        try:
            await self._websocket.send(message)
            return True
        except Exception as e:
            logger.debug("Failed to send to connection %s (%s): %s", self.conn_id, self._user_id, e)
            return False

    async def close(self, code: int = 1000, reason: str = "") -> None:
        """
        Close the connection.

        Args:
            code: Close code
            reason: Close reason
        """
        if not self._closed:
            self._closed = True
            try:
                await self._websocket.close(code=code, reason=reason)
            except Exception as e:
                logger.debug("Error closing connection %s: %s", self.conn_id, e)

    def touch(self) -> None:
        """Update last activity time."""
        self.last_seen = time.time()

    def is_open(self) -> bool:
        """Check if connection is open."""
        if self._closed:
            return False
        return self._websocket.state is State.OPEN


class ConnectionHealthMonitor:
    """
    Periodically removes registry entries whose transport has closed.

    Normal disconnects unregister from the connection handler; this sweep
    catches connections that died without reaching it.
    """

    def __init__(
        self,
        registry: SessionRegistry,
        check_interval: int = 30,
        on_prune: Optional[Callable[[List[str]], None]] = None
    ):
        """
        Initialize health monitor.

        Args:
            registry: Session registry to sweep
            check_interval: Seconds between health checks
            on_prune: Callback receiving the removed connection ids
        """
        self._registry = registry
        self._check_interval = check_interval
        self._on_prune = on_prune
        self._running = False
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the health monitor."""
        self._running = True
        self._task = asyncio.create_task(self._monitor_loop())
        logger.info("Connection health monitor started")

    async def stop(self) -> None:
        """Stop the health monitor."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Connection health monitor stopped")

    async def _monitor_loop(self) -> None:
        while self._running:
            try:
                self.check_connections()
                await asyncio.sleep(self._check_interval)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.exception("Error in health monitor: %s", e)
                await asyncio.sleep(self._check_interval)

    def check_connections(self) -> List[str]:
        """Run one sweep; returns removed connection ids."""
        removed = self._registry.prune_closed()
        if removed and self._on_prune:
            try:
                self._on_prune(removed)
            except Exception as e:
                logger.exception("Error in prune callback: %s", e)
        return removed


__all__ = [
    'WebSocketConnection',
    'ConnectionHealthMonitor',
]
