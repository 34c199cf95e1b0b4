import asyncio
import logging

import uvicorn

from CXChat.config import config
from CXChat.core.server.context import AppContext, create_app_context
from .routes_api import create_app

logger = logging.getLogger(__name__)


def build_server(context: AppContext, host: str = None, port: int = None) -> uvicorn.Server:
    """
    Create a uvicorn server for the api without starting it, so it can share
    an event loop with the websocket server.
    """
    app = create_app(context)
    uv_config = uvicorn.Config(
        app,
        host=host or config.DEFAULT_HOST,
        port=port or config.DEFAULT_API_PORT,
        log_config=None,
    )
    return uvicorn.Server(uv_config)


def run(api_port=config.DEFAULT_API_PORT, host=None, context: AppContext = None):
    """
    Run the FastAPI application with Uvicorn server.

    Args:
        api_port (int): Port for the api.
        host (str): Interface to bind.
        context (AppContext): Shared components; built from config if omitted.
    """
    context = context or create_app_context()
    try:
        asyncio.run(build_server(context, host=host, port=api_port).serve())
    except KeyboardInterrupt:
        logger.info("api server stopped by user")
    finally:
        context.close()
