"""
Test configuration and fixtures for CXChat server tests.

Provides:
- Server configuration for testing
- In-memory store with a few directory users
- Fake transport connections and a recording broadcaster
- JWT token generation
"""

import json
import time
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple
from unittest.mock import AsyncMock

import jwt
import pytest
import pytest_asyncio

from CXChat.config import config
from CXChat.core.message.protocol import Event
from CXChat.core.server.context import AppContext, create_app_context
from CXChat.core.server.routing import DeliveryResult, DeliveryStatus
from CXChat.core.server.session import SessionRegistry
from CXChat.core.server.storage_sqlite import SQLiteStore


@dataclass
class TestConfig:
    """Configuration for server tests."""
    host: str = "127.0.0.1"
    timeout: float = 5.0
    setup_timeout: float = 1.0

    def ws_url(self, port: int, token: Optional[str] = None) -> str:
        url = f"ws://{self.host}:{port}"
        return f"{url}?token={token}" if token else url


class TestDataGenerator:
    """Generate test data for server tests."""

    @staticmethod
    def get_jwt_secret() -> str:
        """Get the JWT secret from config."""
        return config.JWT_SECRET

    @staticmethod
    def generate_user_id() -> str:
        return uuid.uuid4().hex[:24]

    @staticmethod
    def generate_jwt_token(user_id: str, secret: str = None, expires_in: int = 3600) -> str:
        """Generate a test JWT token using the config secret."""
        if secret is None:
            secret = config.JWT_SECRET
        now = int(time.time())
        payload = {
            "sub": user_id,
            "exp": now + expires_in,
            "iat": now,
        }
        return jwt.encode(payload, secret, algorithm="HS256")


class FakeConnection:
    """TransportConnection double that records decoded frames."""

    def __init__(self, conn_id: str = None, fail: bool = False):
        self.conn_id = conn_id or uuid.uuid4().hex
        self.fail = fail
        self.open = True
        self.frames: List[Dict[str, Any]] = []
        self.send = AsyncMock(side_effect=self._send)

    async def _send(self, message: str) -> bool:
        if self.fail:
            raise ConnectionError("socket gone")
        if not self.open:
            return False
        self.frames.append(json.loads(message))
        return True

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self.open = False

    def is_open(self) -> bool:
        return self.open

    def events(self, name: str = None) -> List[Dict[str, Any]]:
        return [f for f in self.frames if name is None or f["event"] == name]


class RecordingBroadcaster:
    """Broadcaster double; remembers every emit and delivers nothing."""

    def __init__(self):
        self.emits: List[Tuple[str, Event, Optional[str]]] = []

    async def emit(self, room: str, event: Event, exclude: Optional[str] = None) -> DeliveryResult:
        self.emits.append((room, event, exclude))
        return DeliveryResult(DeliveryStatus.NO_RECIPIENTS, room)

    def to(self, room: str) -> List[Event]:
        return [event for r, event, _ in self.emits if r == room]

    def names(self, room: str) -> List[str]:
        return [event.name for event in self.to(room)]


@pytest.fixture(scope="session")
def test_config() -> TestConfig:
    """Provide test configuration."""
    return TestConfig()


@pytest.fixture(scope="session")
def test_data_generator() -> TestDataGenerator:
    """Provide test data generator."""
    return TestDataGenerator()


@pytest.fixture
def store():
    """Fresh in-memory store per test."""
    s = SQLiteStore(":memory:")
    yield s
    s.close()


@pytest.fixture
def alice(store):
    return store.create_user("alice", name="Alice", avatar="alice.png")


@pytest.fixture
def bob(store):
    return store.create_user("bob", name="Bob", avatar="bob.png")


@pytest.fixture
def carol(store):
    return store.create_user("carol", name="Carol", avatar="carol.png")


@pytest.fixture
def registry() -> SessionRegistry:
    return SessionRegistry()


@pytest.fixture
def broadcaster() -> RecordingBroadcaster:
    return RecordingBroadcaster()


@pytest.fixture
def make_connection():
    """Factory for FakeConnection instances."""
    return FakeConnection


@pytest.fixture
def app_context(store) -> AppContext:
    """Fully wired context on top of the in-memory store."""
    return create_app_context(store=store, send_timeout=1.0)


@pytest_asyncio.fixture
async def server_instance(app_context: AppContext, test_config: TestConfig):
    """Running WebSocketManager on an ephemeral port."""
    from CXChat.core.server.websocket_manager import WebSocketManager

    manager = WebSocketManager(app_context, setup_timeout=test_config.setup_timeout)
    await manager.start(test_config.host, 0)
    yield manager
    await manager.stop()


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "integration: mark test as integration test"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow running"
    )
