"""
WebSocket manager: the live side of the messaging core.

Accepts connections, binds each one to its owner's room, and turns client
frames into calls on the pipeline, signal relay and read-state tracker.

Architecture:
    ┌─────────────────────────────────────────────────────────────────┐
    │                       WebSocketManager                          │
    │  ┌─────────────┐  ┌─────────────┐  ┌─────────────────────────┐  │
    │  │ Auth        │  │ Session     │  │ Room Router             │  │
    │  │ Middleware  │  │ Registry    │  │ (emit to user rooms)    │  │
    │  └─────────────┘  └─────────────┘  └─────────────────────────┘  │
    │  ┌─────────────┐  ┌─────────────┐  ┌─────────────────────────┐  │
    │  │ Message     │  │ Signal      │  │ Read-State              │  │
    │  │ Pipeline    │  │ Relay       │  │ Tracker                 │  │
    │  └─────────────┘  └─────────────┘  └─────────────────────────┘  │
    └─────────────────────────────────────────────────────────────────┘

Connection lifecycle:
    1. handshake token (query, cookie or header) → bind, or wait for ``setup``
    2. ``connected`` ack → frame loop
    3. disconnect → unregister
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

import websockets
from websockets.asyncio.server import ServerConnection

from CXChat.config import config
from CXChat.core.message.protocol import ClientEvent, Connected, ErrorEvent, Event, EventType, Pong
from CXChat.core.server.auth import AuthenticationMiddleware
from CXChat.core.server.context import AppContext
from CXChat.core.server.exceptions import CXChatError, InvalidArgument
from CXChat.core.server.transport import ConnectionHealthMonitor, WebSocketConnection

logger = logging.getLogger(__name__)

# Close codes
POLICY_VIOLATION = 1008
GOING_AWAY = 1001


class WebSocketManager:
    """
    WebSocket server bound to an application context.

    Example:
        manager = WebSocketManager(create_app_context())
        async with manager.run("localhost", 8765):
            await asyncio.Future()
    """

    def __init__(
        self,
        context: AppContext,
        setup_timeout: Optional[float] = None,
        health_check_interval: Optional[int] = None,
        echo_to_sender: Optional[bool] = None
    ):
        """
        Initialize the WebSocket manager.

        Args:
            context: Wired application components
            setup_timeout: Seconds an unauthenticated connection may wait
                before sending ``setup``
            health_check_interval: Seconds between closed-connection sweeps
            echo_to_sender: Echo sent messages to the sender's other tabs
        """
        self._context = context
        self._registry = context.registry
        self._auth_middleware = AuthenticationMiddleware(context.authenticator)
        self._setup_timeout = setup_timeout if setup_timeout is not None else config.SETUP_TIMEOUT
        self._echo_to_sender = config.ECHO_TO_SENDER if echo_to_sender is None else echo_to_sender
        self._health_monitor = ConnectionHealthMonitor(
            self._registry,
            check_interval=health_check_interval or config.HEALTH_CHECK_INTERVAL,
        )

        self._host: Optional[str] = None
        self._port: Optional[int] = None
        self._server = None
        self._running = False

    @property
    def context(self) -> AppContext:
        return self._context

    @property
    def is_running(self) -> bool:
        """Check if server is running."""
        return self._running

    @property
    def port(self) -> Optional[int]:
        """Bound port (resolved from the socket when started on port 0)."""
        if self._server is not None and self._server.sockets:
            return self._server.sockets[0].getsockname()[1]
        return self._port

    @asynccontextmanager
    async def run(self, host: str = "localhost", port: int = 8765):
        """
        Run the WebSocket server as an async context manager.

        Args:
            host: Host to bind to
            port: Port to listen on

        Yields:
            The manager instance
        """
        await self.start(host, port)
        try:
            yield self
        finally:
            await self.stop()

    async def start(self, host: str = "localhost", port: int = 8765) -> None:
        """
        Start the WebSocket server.

        Args:
            host: Host to bind to
            port: Port to listen on
        """
        self._host = host
        self._port = port
        self._running = True

        await self._health_monitor.start()
        self._server = await websockets.serve(self._handle_connection, host, port)

        logger.info("WebSocket server started on ws://%s:%s", host, self.port)

    async def stop(self) -> None:
        """Stop the WebSocket server."""
        self._running = False

        await self._health_monitor.stop()

        for connection in self._registry.all_connections():
            await connection.close(GOING_AWAY, "Server shutting down")

        if self._server:
            self._server.close()
            await self._server.wait_closed()
            self._server = None

        logger.info("WebSocket server stopped")

    async def _handle_connection(self, websocket: ServerConnection) -> None:
        """Handle one WebSocket connection from handshake to disconnect."""
        connection = WebSocketConnection(websocket)

        try:
            auth_result = await self._auth_middleware.authenticate_connection(websocket)
            if auth_result.success:
                await self._bind(connection, auth_result.user_id)
            elif auth_result.error_code != "NO_TOKEN":
                await self._reject(connection, auth_result.error_message)
                return
            else:
                try:
                    await self._await_setup(connection)
                except asyncio.TimeoutError:
                    logger.info("Connection %s sent no setup within %.1fs",
                                connection.conn_id, self._setup_timeout)
                    await connection.close(POLICY_VIOLATION, "Setup timeout")
                    return
                if not connection.is_bound:
                    return

            await self._message_loop(connection, websocket)

        except websockets.exceptions.ConnectionClosed:
            logger.debug("Connection %s closed (%s)", connection.conn_id, connection.user_id or "unbound")
        except Exception as e:
            logger.exception("Error handling connection: %s", e)
        finally:
            user_id = self._registry.unregister(connection.conn_id)
            if user_id:
                logger.info("User %s disconnected (connection %s)", user_id, connection.conn_id)

    async def _await_setup(self, connection: WebSocketConnection) -> None:
        """Process frames until the connection is bound or the deadline passes."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._setup_timeout
        websocket = connection.raw_websocket
        while not connection.is_bound and connection.is_open():
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise asyncio.TimeoutError()
            raw = await asyncio.wait_for(websocket.recv(), timeout=remaining)
            await self._dispatch(connection, raw)

    async def _message_loop(self, connection: WebSocketConnection, websocket: ServerConnection) -> None:
        """
        Main frame loop for a bound connection.
        """
        async for raw in websocket:
            await self._dispatch(connection, raw)

    async def _bind(self, connection: WebSocketConnection, user_id: str) -> None:
        connection.bind(user_id)
        self._registry.register(connection, user_id)
        await self._reply(connection, Connected(user_id, connection.conn_id))
        logger.info("User %s connected (connection %s)", user_id, connection.conn_id)

    async def _dispatch(self, connection: WebSocketConnection, raw) -> None:
        """Parse one client frame and route it; errors go back as ``error`` events."""
        connection.touch()
        try:
            event = ClientEvent.deserialize(raw)
        except ValueError as e:
            logger.debug("Malformed frame on %s: %s", connection.conn_id, e)
            await self._reply(connection, ErrorEvent(400, "Malformed frame"))
            return

        try:
            await self._handle_event(connection, event)
        except CXChatError as e:
            logger.info("Rejected %s from %s: %s", event.type.value, connection.user_id, e)
            await self._reply(connection, ErrorEvent(e.status_code, e.message))
        except Exception as e:
            logger.exception("Error processing %s from %s: %s", event.type.value, connection.user_id, e)
            await self._reply(connection, ErrorEvent(500, "Internal server error"))

    async def _handle_event(self, connection: WebSocketConnection, event: ClientEvent) -> None:
        ctx = self._context

        if event.type is EventType.PING:
            await self._reply(connection, Pong())
            return

        if event.type is EventType.SETUP:
            result = await self._auth_middleware.authenticate_token(event.data)
            if not result.success:
                await self._reject(connection, result.error_message)
                return
            await self._bind(connection, result.user_id)
            return

        if not connection.is_bound:
            await self._reply(connection, ErrorEvent(401, "Setup required"))
            return

        user_id = connection.user_id

        if event.type is EventType.TYPING:
            await ctx.signals.typing(user_id, event.data)
        elif event.type is EventType.STOP_TYPING:
            await ctx.signals.stop_typing(user_id, event.data)
        elif event.type is EventType.SEND_MESSAGE:
            data = event.data
            if not isinstance(data, dict):
                raise InvalidArgument("send-message expects an object")
            await ctx.pipeline.send_message(
                user_id,
                data.get("receiver"),
                data.get("content"),
                type=data.get("type"),
                post_id=data.get("postId"),
                echo_to_sender=self._echo_to_sender,
                exclude_connection=connection.conn_id,
            )
        elif event.type is EventType.MARK_READ:
            ctx.read_state.mark_read(event.data, user_id)
        else:
            raise InvalidArgument(f"Unsupported event: {event.type.value}")

    async def _reply(self, connection: WebSocketConnection, event: Event) -> bool:
        """Send an event to one connection only."""
        return await connection.send(event.serialize())

    async def _reject(self, connection: WebSocketConnection, reason: Optional[str]) -> None:
        """Send authentication error and close connection."""
        await self._reply(connection, ErrorEvent(401, reason or "Authentication failed"))
        await connection.close(POLICY_VIOLATION, "Unauthorized")

    def is_user_online(self, user_id: str) -> bool:
        """Check if a user has at least one live connection."""
        return self._registry.is_connected(user_id)


def create_server(context: AppContext, **kwargs) -> WebSocketManager:
    """
    Factory function to create a configured WebSocket server.

    Args:
        context: Application context
        **kwargs: Additional arguments passed to WebSocketManager

    Returns:
        Configured WebSocketManager instance
    """
    return WebSocketManager(context, **kwargs)


__all__ = [
    'WebSocketManager',
    'create_server',
]
