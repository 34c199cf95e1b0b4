"""
WebSocket server integration tests for CXChat.

Tests include:
- Handshake authentication (query token, setup frame, timeout)
- Live message fan-out across tabs and users
- Typing relay and read-state over the socket
- Error frames and cleanup on disconnect

Run with: python -m pytest CXChat/test/test_websocket_manager.py -v
"""

import asyncio
import json
import time

import jwt
import pytest
from websockets.asyncio.client import connect
from websockets.exceptions import ConnectionClosed


async def recv_event(ws, name, timeout=5.0):
    """Read frames until one named ``name`` arrives."""
    deadline = time.monotonic() + timeout
    while True:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise asyncio.TimeoutError(name)
        frame = json.loads(await asyncio.wait_for(ws.recv(), timeout=remaining))
        if frame["event"] == name:
            return frame


async def send_event(ws, name, data=None):
    await ws.send(json.dumps({"event": name, "data": data}))


async def wait_until(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            return False
        await asyncio.sleep(0.02)
    return True


class TestHandshake:
    """Tests for connection binding."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_query_token_binds_connection(self, server_instance, test_config, test_data_generator, alice):
        token = test_data_generator.generate_jwt_token(alice.id)

        async with connect(test_config.ws_url(server_instance.port, token)) as ws:
            frame = await recv_event(ws, "connected")

            assert frame["data"]["userId"] == alice.id
            assert server_instance.is_user_online(alice.id)

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_invalid_token_rejected(self, server_instance, test_config):
        async with connect(test_config.ws_url(server_instance.port, "invalid_token")) as ws:
            frame = await recv_event(ws, "error")
            assert frame["data"]["status"] == 401

            with pytest.raises(ConnectionClosed):
                await asyncio.wait_for(ws.recv(), timeout=2.0)

        assert len(server_instance.context.registry) == 0

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_expired_token_rejected(self, server_instance, test_config, test_data_generator, alice):
        payload = {"sub": alice.id, "exp": int(time.time()) - 3600, "iat": int(time.time()) - 7200}
        token = jwt.encode(payload, test_data_generator.get_jwt_secret(), algorithm="HS256")

        async with connect(test_config.ws_url(server_instance.port, token)) as ws:
            frame = await recv_event(ws, "error")

        assert "expired" in frame["data"]["error"].lower()

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_setup_frame_binds_connection(self, server_instance, test_config, test_data_generator, alice):
        async with connect(test_config.ws_url(server_instance.port)) as ws:
            await send_event(ws, "ping")
            await recv_event(ws, "pong")

            await send_event(ws, "setup", test_data_generator.generate_jwt_token(alice.id))
            frame = await recv_event(ws, "connected")

        assert frame["data"]["userId"] == alice.id

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_events_before_setup_are_refused(self, server_instance, test_config, bob):
        async with connect(test_config.ws_url(server_instance.port)) as ws:
            await send_event(ws, "send-message", {"receiver": bob.id, "content": "hi"})
            frame = await recv_event(ws, "error")

        assert frame["data"]["status"] == 401
        assert server_instance.context.store.stats()["messages"] == 0

    @pytest.mark.integration
    @pytest.mark.slow
    @pytest.mark.asyncio
    async def test_setup_timeout_closes_connection(self, server_instance, test_config):
        async with connect(test_config.ws_url(server_instance.port)) as ws:
            with pytest.raises(ConnectionClosed):
                await asyncio.wait_for(ws.recv(), timeout=test_config.setup_timeout + 3)

            assert ws.close_code == 1008


class TestLiveMessaging:
    """Tests for frames on a bound connection."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_send_message_fans_out(self, server_instance, test_config, test_data_generator, alice, bob):
        port = server_instance.port
        alice_token = test_data_generator.generate_jwt_token(alice.id)
        bob_token = test_data_generator.generate_jwt_token(bob.id)

        async with connect(test_config.ws_url(port, alice_token)) as origin, \
                connect(test_config.ws_url(port, alice_token)) as other_tab, \
                connect(test_config.ws_url(port, bob_token)) as bob_ws:
            for ws in (origin, other_tab, bob_ws):
                await recv_event(ws, "connected")

            await send_event(origin, "send-message", {"receiver": bob.id, "content": "hi bob"})

            received = await recv_event(bob_ws, "receive-message")
            assert received["data"]["content"] == "hi bob"
            assert received["data"]["sender"] == alice.id

            notification = await recv_event(bob_ws, "new_notification")
            assert notification["data"]["sender"]["username"] == "alice"
            assert notification["data"]["message"]["content"] == "hi bob"

            echo = await recv_event(other_tab, "receive-message")
            assert echo["data"]["_id"] == received["data"]["_id"]

            # the originating tab gets no echo: the next frame is the pong
            await send_event(origin, "ping")
            frame = json.loads(await asyncio.wait_for(origin.recv(), timeout=test_config.timeout))
            assert frame["event"] == "pong"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_typing_relay(self, server_instance, test_config, test_data_generator, alice, bob):
        port = server_instance.port
        async with connect(test_config.ws_url(port, test_data_generator.generate_jwt_token(alice.id))) as a, \
                connect(test_config.ws_url(port, test_data_generator.generate_jwt_token(bob.id))) as b:
            await recv_event(a, "connected")
            await recv_event(b, "connected")

            await send_event(a, "typing", bob.id)
            assert (await recv_event(b, "typing"))["data"] == alice.id

            await send_event(a, "stop typing", bob.id)
            assert (await recv_event(b, "stop typing"))["data"] == alice.id

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_mark_read_over_socket(self, server_instance, test_config, test_data_generator, alice, bob):
        store = server_instance.context.store
        store.insert_message(alice.id, bob.id, "unread")

        async with connect(test_config.ws_url(server_instance.port,
                                              test_data_generator.generate_jwt_token(bob.id))) as ws:
            await recv_event(ws, "connected")
            await send_event(ws, "mark-read", alice.id)
            await send_event(ws, "ping")
            await recv_event(ws, "pong")

        assert store.unread_counts_by_sender(bob.id) == {}

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_errors_keep_connection_open(self, server_instance, test_config, test_data_generator, alice):
        async with connect(test_config.ws_url(server_instance.port,
                                              test_data_generator.generate_jwt_token(alice.id))) as ws:
            await recv_event(ws, "connected")

            await ws.send("not json")
            assert (await recv_event(ws, "error"))["data"]["status"] == 400

            await send_event(ws, "send-message", {"receiver": "f" * 24, "content": "hello?"})
            assert (await recv_event(ws, "error"))["data"]["status"] == 404

            await send_event(ws, "ping")
            await recv_event(ws, "pong")

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_malformed_post_id_is_bad_request(self, server_instance, test_config, test_data_generator,
                                                    alice, bob):
        async with connect(test_config.ws_url(server_instance.port,
                                              test_data_generator.generate_jwt_token(alice.id))) as ws:
            await recv_event(ws, "connected")

            await send_event(ws, "send-message", {"receiver": bob.id, "content": "hi", "postId": {"x": 1}})
            frame = await recv_event(ws, "error")

        assert frame["data"]["status"] == 400
        assert server_instance.context.store.stats()["messages"] == 0


class TestCleanup:
    """Tests for cleanup procedures."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_disconnect_unregisters(self, server_instance, test_config, test_data_generator, alice):
        registry = server_instance.context.registry

        async with connect(test_config.ws_url(server_instance.port,
                                              test_data_generator.generate_jwt_token(alice.id))) as ws:
            await recv_event(ws, "connected")
            assert registry.connection_count(alice.id) == 1

        assert await wait_until(lambda: not registry.is_connected(alice.id))
        assert len(registry) == 0

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_stop_closes_clients(self, server_instance, test_config, test_data_generator, alice):
        async with connect(test_config.ws_url(server_instance.port,
                                              test_data_generator.generate_jwt_token(alice.id))) as ws:
            await recv_event(ws, "connected")
            await server_instance.stop()

            with pytest.raises(ConnectionClosed):
                await asyncio.wait_for(ws.recv(), timeout=2.0)

        assert server_instance.is_running is False
