"""
Application context: builds and owns the process-wide components.

There is exactly one registry per process. It is created here and passed
explicitly to the router, the realtime server and the HTTP API instead of
living in a module-level global.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from CXChat.config import config
from CXChat.core.server.auth import JWTAuthenticator
from CXChat.core.server.notifications import NotificationAggregator
from CXChat.core.server.pipeline import MessagePipeline
from CXChat.core.server.read_state import ReadStateTracker
from CXChat.core.server.routing import RoomRouter
from CXChat.core.server.session import SessionRegistry
from CXChat.core.server.signals import SignalRelay
from CXChat.core.server.storage_sqlite import SQLiteStore

logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    """Wired components shared by the websocket server and the HTTP API."""
    store: SQLiteStore
    registry: SessionRegistry
    router: RoomRouter
    pipeline: MessagePipeline
    signals: SignalRelay
    read_state: ReadStateTracker
    aggregator: NotificationAggregator
    authenticator: JWTAuthenticator

    def close(self) -> None:
        self.registry.clear()
        self.store.close()


def create_app_context(
    db_path: Optional[str] = None,
    store: Optional[SQLiteStore] = None,
    authenticator: Optional[JWTAuthenticator] = None,
    send_timeout: Optional[float] = None
) -> AppContext:
    """
    Build a fully wired context.

    Args:
        db_path: SQLite file (defaults to Config.SQLITE_DB_FILE); ignored
            when ``store`` is given
        store: Pre-built store, e.g. an in-memory one in tests
        authenticator: Token verifier (defaults to a JWTAuthenticator)
        send_timeout: Per-connection push deadline

    Returns:
        AppContext
    """
    if store is None:
        store = SQLiteStore(db_path or config.SQLITE_DB_FILE)
    registry = SessionRegistry()
    router = RoomRouter(registry, send_timeout=send_timeout)
    pipeline = MessagePipeline(store, store, store, router)

    ctx = AppContext(
        store=store,
        registry=registry,
        router=router,
        pipeline=pipeline,
        signals=SignalRelay(router),
        read_state=ReadStateTracker(store),
        aggregator=NotificationAggregator(store, store, store),
        authenticator=authenticator or JWTAuthenticator(),
    )
    logger.info("Application context created (db=%s)", store.db_path)
    return ctx


__all__ = [
    'AppContext',
    'create_app_context',
]
