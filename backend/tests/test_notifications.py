# backend/tests/test_notifications.py
import asyncio
import json

import pytest

from conversly.api.events import _start_forwarder, _stop_forwarder, sse_stream
from conversly.services.notification_hub import NotificationHub, analysis_failed_event, review_ready_event


class TestNotificationHub:

    @pytest.mark.asyncio
    async def test_publish_without_subscribers_is_dropped(self):
        hub = NotificationHub()
        assert await hub.publish("conv_x", review_ready_event("conv_x", 1)) == 0

    @pytest.mark.asyncio
    async def test_publish_reaches_every_subscriber_of_that_conversation(self):
        hub = NotificationHub()
        a = await hub.subscribe("conv_x")
        b = await hub.subscribe("conv_x")
        other = await hub.subscribe("conv_y")

        delivered = await hub.publish("conv_x", review_ready_event("conv_x", 5))

        assert delivered == 2
        assert a.get_nowait() == {"type": "review_ready", "conversationId": "conv_x", "dbConversationId": 5}
        assert b.get_nowait()["dbConversationId"] == 5
        assert other.empty()

    @pytest.mark.asyncio
    async def test_unsubscribe(self):
        hub = NotificationHub()
        queue = await hub.subscribe("conv_x")
        await hub.unsubscribe("conv_x", queue)

        assert hub.subscriber_count("conv_x") == 0
        assert hub.subscriber_count() == 0
        assert await hub.publish("conv_x", {"type": "review_ready"}) == 0

    @pytest.mark.asyncio
    async def test_full_queue_does_not_raise(self):
        hub = NotificationHub(max_queue_size=1)
        await hub.subscribe("conv_x")
        assert await hub.publish("conv_x", {"type": "a"}) == 1
        assert await hub.publish("conv_x", {"type": "b"}) == 0

    def test_failed_event_shape(self):
        assert analysis_failed_event("conv_x", 3, "analysis_failed") == {
            "type": "analysis_failed",
            "conversationId": "conv_x",
            "dbConversationId": 3,
            "status": "analysis_failed",
        }


class TestServerSentEvents:

    @pytest.mark.asyncio
    async def test_connected_then_events(self):
        hub = NotificationHub()
        stream = sse_stream(hub, "conv_sse", keepalive_seconds=5)

        first = await stream.__anext__()
        assert json.loads(first[len("data: "):]) == {"type": "connected", "conversationId": "conv_sse"}

        await hub.publish("conv_sse", review_ready_event("conv_sse", 9))
        second = await stream.__anext__()
        assert json.loads(second[len("data: "):])["type"] == "review_ready"

        await stream.aclose()
        assert hub.subscriber_count("conv_sse") == 0

    @pytest.mark.asyncio
    async def test_keepalive_comment(self):
        hub = NotificationHub()
        stream = sse_stream(hub, "conv_idle", keepalive_seconds=0.01)

        await stream.__anext__()
        assert await asyncio.wait_for(stream.__anext__(), timeout=1) == ": keepalive\n\n"
        await stream.aclose()


class TestWebSocket:

    def test_register_and_ping(self, client, hub):
        with client.websocket_connect("/ws") as ws:
            ws.send_text(json.dumps({"type": "ping"}))
            assert ws.receive_json()["type"] == "pong"

            ws.send_text(json.dumps({"type": "register", "conversationId": "conv_ws"}))
            assert ws.receive_json() == {"type": "registered", "conversationId": "conv_ws"}
            assert hub.subscriber_count("conv_ws") == 1

    def test_invalid_json(self, client):
        with client.websocket_connect("/ws") as ws:
            ws.send_text("not json")
            assert ws.receive_json()["type"] == "error"


class _ClosedSocket:
    async def send_json(self, msg):
        raise RuntimeError("Cannot call send once a close message has been sent")


class _RecordingSocket:
    def __init__(self):
        self.sent = []

    async def send_json(self, msg):
        self.sent.append(msg)


class TestForwarder:

    @pytest.mark.asyncio
    async def test_send_failure_is_retrieved_and_stop_does_not_raise(self):
        queue = asyncio.Queue()
        queue.put_nowait({"type": "review_ready"})

        task = _start_forwarder(_ClosedSocket(), queue)
        await asyncio.sleep(0)
        await asyncio.sleep(0)

        assert task.done()
        assert isinstance(task.exception(), RuntimeError)
        await _stop_forwarder(task)

    @pytest.mark.asyncio
    async def test_stop_waits_for_cancellation(self):
        queue = asyncio.Queue()
        socket = _RecordingSocket()
        task = _start_forwarder(socket, queue)

        queue.put_nowait({"type": "review_ready"})
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        await _stop_forwarder(task)

        assert task.cancelled()
        assert socket.sent == [{"type": "review_ready"}]
