"""
Room-addressed event delivery.

Every push in the system goes through ``RoomRouter.emit``: the room is a
user identity, and the event reaches every connection currently bound to
that user.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum, auto
from typing import List, Optional

from CXChat.config import config
from CXChat.core.message.protocol import Event
from CXChat.core.server.interfaces import TransportConnection
from CXChat.core.server.session import SessionRegistry

logger = logging.getLogger(__name__)


class DeliveryStatus(Enum):
    """Outcome of a room emit."""
    DELIVERED = auto()
    NO_RECIPIENTS = auto()
    DROPPED = auto()


@dataclass
class DeliveryResult:
    """Result of one emit to a room."""
    status: DeliveryStatus
    room: str
    delivered: int = 0
    dropped: int = 0

    @property
    def ok(self) -> bool:
        return self.status is DeliveryStatus.DELIVERED


class RoomRouter:
    """
    Delivers events to user rooms.

    Membership is snapshotted under the registry lock and every send runs
    outside it. A failing or slow connection is dropped for this event only
    and never blocks the other members of the room. No event is buffered
    for users who are offline; they catch up through the pull API.
    """

    def __init__(self, registry: SessionRegistry, send_timeout: float = None):
        """
        Initialize room router.

        Args:
            registry: Session registry holding room membership
            send_timeout: Per-connection send deadline in seconds
        """
        self._registry = registry
        self._send_timeout = send_timeout if send_timeout is not None else config.SEND_TIMEOUT

    @property
    def registry(self) -> SessionRegistry:
        return self._registry

    async def emit(
        self,
        room: str,
        event: Event,
        exclude: Optional[str] = None
    ) -> DeliveryResult:
        """
        Deliver an event to every connection in a room.

        Args:
            room: Target user identity
            event: Event to push
            exclude: Connection id to skip (usually the originating tab)

        Returns:
            DeliveryResult; an empty room yields NO_RECIPIENTS
        """
        targets: List[TransportConnection] = [
            conn for conn in self._registry.connections_for(room)
            if conn.conn_id != exclude
        ]
        if not targets:
            logger.debug("No recipients for %s in room %s", event.name, room)
            return DeliveryResult(DeliveryStatus.NO_RECIPIENTS, room)

        frame = event.serialize()
        outcomes = await asyncio.gather(
            *(self._send_one(conn, frame) for conn in targets)
        )
        delivered = sum(1 for ok in outcomes if ok)
        dropped = len(outcomes) - delivered

        if dropped:
            logger.debug("Dropped %s for %d of %d connections in room %s",
                         event.name, dropped, len(outcomes), room)

        status = DeliveryStatus.DELIVERED if delivered else DeliveryStatus.DROPPED
        return DeliveryResult(status, room, delivered=delivered, dropped=dropped)

    async def _send_one(self, connection: TransportConnection, frame: str) -> bool:
        try:
            return bool(await asyncio.wait_for(connection.send(frame), timeout=self._send_timeout))
        except asyncio.TimeoutError:
            logger.warning("Send to connection %s timed out", connection.conn_id)
            return False
        except Exception as e:
            logger.debug("Send to connection %s failed: %s", connection.conn_id, e)
            return False


__all__ = [
    'RoomRouter',
    'DeliveryResult',
    'DeliveryStatus',
]
