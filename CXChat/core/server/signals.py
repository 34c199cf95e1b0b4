"""
Ephemeral signal relay (typing indicators, post like updates).

Signals are pushed to the partner's room as-is: nothing is stored, retried,
or timed out server-side. Debouncing ``stop typing`` is left to clients.
"""

import logging
from typing import Iterable

from CXChat.core.message.protocol import PostLiked, StopTyping, Typing
from CXChat.core.server.interfaces import Broadcaster
from CXChat.core.server.pipeline import require_user_id
from CXChat.core.server.routing import DeliveryResult

logger = logging.getLogger(__name__)


class SignalRelay:
    """Relays transient signals between rooms."""

    def __init__(self, broadcaster: Broadcaster):
        self._broadcaster = broadcaster

    async def typing(self, self_id: str, partner_id: str) -> DeliveryResult:
        """Tell ``partner_id`` that ``self_id`` is typing."""
        require_user_id(partner_id, "partner")
        return await self._broadcaster.emit(partner_id, Typing(self_id))

    async def stop_typing(self, self_id: str, partner_id: str) -> DeliveryResult:
        require_user_id(partner_id, "partner")
        return await self._broadcaster.emit(partner_id, StopTyping(self_id))

    async def post_liked(self, room: str, post_id: str, likes: Iterable[str]) -> DeliveryResult:
        """Push the updated like list of ``post_id`` to ``room``."""
        require_user_id(room, "room")
        return await self._broadcaster.emit(room, PostLiked(str(post_id), list(likes)))


__all__ = [
    'SignalRelay',
]
