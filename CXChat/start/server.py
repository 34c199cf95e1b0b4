"""
Server startup module for CXChat application.
Provides the entry point for starting the websocket server and the api.
"""

import asyncio
import logging

from CXChat.api.routes import build_server
from CXChat.config import config
from CXChat.core.server import WebSocketManager, create_app_context

logger = logging.getLogger(__name__)


async def _serve(host: str, port: int, api_port: int, srv_only: bool) -> None:
    context = create_app_context()
    manager = WebSocketManager(context)
    try:
        async with manager.run(host, port):
            if srv_only:
                await asyncio.Future()
            else:
                # One loop for both: api handlers emit through the same registry
                await build_server(context, host=host, port=api_port).serve()
    finally:
        context.close()


def server(port=8765, srv_only=False, host=None, api_port=None):
    """
    Start the websocket server and, unless ``srv_only``, the api.

    Args:
        port (int): Websocket port (default: 8765)
        srv_only (bool): If True, serve only the websocket server.
        host (str): Interface to bind (default: Config.DEFAULT_HOST)
        api_port (int): Api port (default: port + 1)
    """
    host = host or config.DEFAULT_HOST
    api_port = api_port or port + 1
    try:
        asyncio.run(_serve(host, port, api_port, srv_only))
    except KeyboardInterrupt:
        logger.info("Closed by user.")
