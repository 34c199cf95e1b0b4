"""
Unit tests for the message pipeline, signal relay and read-state tracker.

Tests cover:
- persist-then-fanout ordering and event shapes
- validation before any store access
- partial failure (notification write fails, enrichment fails)
- action notifications
- typing / post-liked relay
- read-state transitions
"""

from unittest.mock import MagicMock

import pytest

from CXChat.core.message.protocol import NewNotification, PostLiked, ReceiveMessage, StopTyping, Typing
from CXChat.core.server.exceptions import InternalError, InvalidArgument, NotFound
from CXChat.core.server.pipeline import MessagePipeline, snippet
from CXChat.core.server.read_state import ReadStateTracker
from CXChat.core.server.routing import RoomRouter
from CXChat.core.server.signals import SignalRelay

MISSING = "f" * 24


@pytest.fixture
def pipeline(store, broadcaster):
    return MessagePipeline(store, store, store, broadcaster)


class TestSendMessage:
    """Tests for MessagePipeline.send_message."""

    @pytest.mark.asyncio
    async def test_persists_then_pushes(self, pipeline, store, broadcaster, alice, bob):
        message = await pipeline.send_message(alice.id, bob.id, "hi")

        assert message.sender == alice.id
        assert message.receiver == bob.id
        assert message.is_read is False
        assert store.get_message(message.id) == message

        assert broadcaster.names(bob.id) == ["receive-message", "new_notification"]
        assert broadcaster.names(alice.id) == ["receive-message"]

    @pytest.mark.asyncio
    async def test_notification_is_enriched(self, pipeline, store, broadcaster, alice, bob):
        message = await pipeline.send_message(alice.id, bob.id, "hi")

        pushed = broadcaster.to(bob.id)[1]
        assert isinstance(pushed, NewNotification)
        data = pushed.notification
        assert data["type"] == "message"
        assert data["content"] == "hi"
        assert data["sender"] == {"_id": alice.id, "username": "alice", "profilepic": "alice.png"}
        assert data["message"] == {"_id": message.id, "content": "hi"}

        stored = store.list_notifications(bob.id)
        assert len(stored) == 1
        assert stored[0].message_id == message.id

    @pytest.mark.asyncio
    async def test_receive_message_payload(self, pipeline, broadcaster, alice, bob):
        message = await pipeline.send_message(alice.id, bob.id, "look", type="post_share", post_id="p1")

        event = broadcaster.to(bob.id)[0]
        assert isinstance(event, ReceiveMessage)
        payload = event.payload()
        assert payload["_id"] == message.id
        assert payload["type"] == "post_share"
        assert payload["postId"] == "p1"

    @pytest.mark.asyncio
    async def test_sender_echo_excludes_origin(self, pipeline, broadcaster, alice, bob):
        await pipeline.send_message(alice.id, bob.id, "hi", exclude_connection="tab-1")

        room, _, exclude = broadcaster.emits[-1]
        assert room == alice.id
        assert exclude == "tab-1"

    @pytest.mark.asyncio
    async def test_no_echo(self, pipeline, broadcaster, alice, bob):
        await pipeline.send_message(alice.id, bob.id, "hi", echo_to_sender=False)

        assert broadcaster.to(alice.id) == []

    @pytest.mark.asyncio
    async def test_snippet_is_bounded(self, pipeline, store, alice, bob):
        await pipeline.send_message(alice.id, bob.id, "x" * 250)

        notification = store.list_notifications(bob.id)[0]
        assert notification.content == "x" * 100

    @pytest.mark.parametrize("sender,receiver,content,kind", [
        (None, "b" * 24, "hi", None),
        ("a" * 24, "", "hi", None),
        ("a" * 24, "b" * 24, "   ", None),
        ("a" * 24, "b" * 24, None, None),
        ("not-an-id", "b" * 24, "hi", None),
        ("a" * 24, "b" * 24, "hi", "video"),
    ])
    @pytest.mark.asyncio
    async def test_invalid_input_touches_nothing(self, broadcaster, sender, receiver, content, kind):
        store = MagicMock()
        pipeline = MessagePipeline(store, store, store, broadcaster)

        with pytest.raises(InvalidArgument):
            await pipeline.send_message(sender, receiver, content, type=kind)

        store.exists.assert_not_called()
        store.insert_message.assert_not_called()
        assert broadcaster.emits == []

    @pytest.mark.parametrize("post_id", [{"x": 1}, 42, ["p1"]])
    @pytest.mark.asyncio
    async def test_non_string_post_id_rejected(self, broadcaster, post_id):
        store = MagicMock()
        pipeline = MessagePipeline(store, store, store, broadcaster)

        with pytest.raises(InvalidArgument):
            await pipeline.send_message("a" * 24, "b" * 24, "hi", type="post_share", post_id=post_id)

        store.exists.assert_not_called()
        store.insert_message.assert_not_called()

    @pytest.mark.asyncio
    async def test_unknown_receiver(self, pipeline, store, broadcaster, alice):
        with pytest.raises(NotFound):
            await pipeline.send_message(alice.id, MISSING, "hi")

        assert store.stats()["messages"] == 0
        assert broadcaster.emits == []

    @pytest.mark.asyncio
    async def test_message_write_failure(self, store, broadcaster, alice, bob):
        messages = MagicMock()
        messages.insert_message.side_effect = RuntimeError("disk full")
        pipeline = MessagePipeline(store, messages, store, broadcaster)

        with pytest.raises(InternalError):
            await pipeline.send_message(alice.id, bob.id, "hi")

        assert store.stats()["notifications"] == 0
        assert broadcaster.emits == []

    @pytest.mark.asyncio
    async def test_notification_write_failure_keeps_message(self, store, broadcaster, alice, bob):
        notifications = MagicMock()
        notifications.insert_notification.side_effect = RuntimeError("disk full")
        pipeline = MessagePipeline(store, store, notifications, broadcaster)

        message = await pipeline.send_message(alice.id, bob.id, "hi")

        assert store.get_message(message.id) is not None
        assert broadcaster.names(bob.id) == ["receive-message"]

    @pytest.mark.asyncio
    async def test_enrichment_failure_skips_notification_push(self, store, broadcaster, alice, bob):
        directory = MagicMock(wraps=store)
        directory.public_profile.return_value = None
        pipeline = MessagePipeline(directory, store, store, broadcaster)

        await pipeline.send_message(alice.id, bob.id, "hi")

        assert broadcaster.names(bob.id) == ["receive-message"]
        assert store.count_unread_notifications(bob.id) == 1

    @pytest.mark.asyncio
    async def test_emit_failure_is_absorbed(self, store, alice, bob):
        failing = MagicMock()
        failing.emit.side_effect = ConnectionError("boom")
        pipeline = MessagePipeline(store, store, store, failing)

        message = await pipeline.send_message(alice.id, bob.id, "hi")

        assert store.get_message(message.id) is not None


class TestLiveDelivery:
    """Pipeline wired to the real router."""

    @pytest.mark.asyncio
    async def test_two_tabs_each_receive_once(self, store, registry, make_connection, alice, bob):
        pipeline = MessagePipeline(store, store, store, RoomRouter(registry))
        tab1, tab2 = make_connection(), make_connection()
        registry.register(tab1, bob.id)
        registry.register(tab2, bob.id)

        await pipeline.send_message(alice.id, bob.id, "hi")

        for tab in (tab1, tab2):
            assert len(tab.events("receive-message")) == 1
            assert len(tab.events("new_notification")) == 1

    @pytest.mark.asyncio
    async def test_offline_recipient_sees_message_later(self, store, registry, alice, bob):
        pipeline = MessagePipeline(store, store, store, RoomRouter(registry))

        message = await pipeline.send_message(alice.id, bob.id, "hi")

        assert store.conversation(alice.id, bob.id) == [message]
        assert store.unread_counts_by_sender(bob.id) == {alice.id: 1}


class TestNotify:
    """Tests for action notifications."""

    @pytest.mark.asyncio
    async def test_follow_notification(self, pipeline, broadcaster, alice, bob):
        record = await pipeline.notify(alice.id, bob.id, "follow")

        assert record.type == "follow"
        [event] = broadcaster.to(bob.id)
        assert event.notification["sender"]["username"] == "alice"
        assert "message" in event.notification and event.notification["message"] is None

    @pytest.mark.asyncio
    async def test_comment_snippet_and_post(self, pipeline, store, alice, bob):
        await pipeline.notify(alice.id, bob.id, "comment", content="y" * 150, post_id="p9")

        [stored] = store.list_notifications(bob.id)
        assert stored.content == "y" * 100
        assert stored.post_id == "p9"

    @pytest.mark.asyncio
    async def test_self_like_is_skipped(self, pipeline, store, broadcaster, alice):
        assert await pipeline.notify(alice.id, alice.id, "like") is None
        assert store.list_notifications(alice.id) == []
        assert broadcaster.emits == []

    @pytest.mark.asyncio
    async def test_message_type_is_rejected(self, pipeline, alice, bob):
        with pytest.raises(InvalidArgument):
            await pipeline.notify(alice.id, bob.id, "message")

    @pytest.mark.asyncio
    async def test_malformed_post_or_content_rejected(self, pipeline, store, alice, bob):
        with pytest.raises(InvalidArgument):
            await pipeline.notify(alice.id, bob.id, "like", post_id=7)
        with pytest.raises(InvalidArgument):
            await pipeline.notify(alice.id, bob.id, "comment", content={"text": "hi"})

        assert store.list_notifications(bob.id) == []


class TestSignalRelay:
    """Tests for typing and post-liked relay."""

    @pytest.mark.asyncio
    async def test_typing_goes_to_partner(self, broadcaster):
        relay = SignalRelay(broadcaster)
        me, partner = "a" * 24, "b" * 24

        await relay.typing(me, partner)
        await relay.stop_typing(me, partner)

        [typing, stop] = broadcaster.to(partner)
        assert isinstance(typing, Typing) and typing.payload() == me
        assert isinstance(stop, StopTyping) and stop.name == "stop typing"

    @pytest.mark.asyncio
    async def test_post_liked_payload(self, broadcaster):
        relay = SignalRelay(broadcaster)
        owner = "c" * 24

        await relay.post_liked(owner, "p1", ["a" * 24])

        [event] = broadcaster.to(owner)
        assert isinstance(event, PostLiked)
        assert event.payload() == {"postId": "p1", "updatedLikes": ["a" * 24]}

    @pytest.mark.asyncio
    async def test_typing_to_malformed_partner(self, broadcaster):
        with pytest.raises(InvalidArgument):
            await SignalRelay(broadcaster).typing("a" * 24, "bob")


class TestReadState:
    """Tests for ReadStateTracker."""

    def test_mark_read_is_idempotent(self, store, alice, bob):
        for text in ("one", "two"):
            store.insert_message(alice.id, bob.id, text)
        tracker = ReadStateTracker(store)

        assert tracker.mark_read(alice.id, bob.id) == 2
        assert tracker.mark_read(alice.id, bob.id) == 0

        messages = store.conversation(alice.id, bob.id)
        assert all(m.is_read and m.read_at is not None for m in messages)

    def test_direction_matters(self, store, alice, bob):
        store.insert_message(alice.id, bob.id, "to bob")
        store.insert_message(bob.id, alice.id, "to alice")

        ReadStateTracker(store).mark_read(alice.id, bob.id)

        assert store.unread_counts_by_sender(alice.id) == {bob.id: 1}
        assert store.unread_counts_by_sender(bob.id) == {}

    def test_notifications_untouched(self, store, alice, bob):
        message = store.insert_message(alice.id, bob.id, "hi")
        store.insert_notification(alice.id, bob.id, "message", message_id=message.id)

        ReadStateTracker(store).mark_read(alice.id, bob.id)

        assert store.count_unread_notifications(bob.id) == 1

    def test_malformed_ids(self, store):
        with pytest.raises(InvalidArgument):
            ReadStateTracker(store).mark_read("alice", "b" * 24)


def test_snippet():
    assert snippet(None) is None
    assert snippet("abc", 2) == "ab"
