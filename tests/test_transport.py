import asyncio
import json
from types import SimpleNamespace
from unittest.mock import AsyncMock

import aiohttp
import pytest

from watch_peer.events import EventChannel, EventKind
from watch_peer.messages import CreatedMessage, JoinMessage, OfferMessage, SessionDescription
from watch_peer.transport import SignalingChannel


class FakeWebSocket:
    def __init__(self, frames=()):
        self.closed = False
        self.sent = []
        self.frames = list(frames)

    async def send_str(self, text):
        self.sent.append(json.loads(text))

    async def close(self):
        self.closed = True

    def __aiter__(self):
        return self._iter()

    async def _iter(self):
        for frame in self.frames:
            yield frame


def text_frame(payload):
    data = payload if isinstance(payload, str) else json.dumps(payload)
    return SimpleNamespace(type=aiohttp.WSMsgType.TEXT, data=data)


@pytest.fixture
def signaling():
    return SignalingChannel("ws://signaling.invalid/ws", scope="watch", events=EventChannel(), retry_delay=0.01)


class TestDecode:
    def test_valid_message(self, signaling):
        msg = signaling.decode(json.dumps({"type": "created", "id": "h1", "scope": "watch"}))
        assert isinstance(msg, CreatedMessage)

    def test_message_without_scope_is_accepted(self, signaling):
        assert signaling.decode(json.dumps({"type": "created", "id": "h1"})) is not None

    def test_foreign_scope_is_ignored(self, signaling):
        assert signaling.decode(json.dumps({"type": "created", "id": "h1", "scope": "chat"})) is None

    def test_invalid_json_is_dropped(self, signaling):
        assert signaling.decode("{not json") is None

    def test_malformed_variant_is_dropped(self, signaling):
        assert signaling.decode(json.dumps({"type": "offer", "from": "h1"})) is None


class TestSend:
    @pytest.mark.asyncio
    async def test_send_stamps_scope_and_wire_names(self, signaling):
        signaling.ws = FakeWebSocket()
        offer = OfferMessage(
            to="g1", from_="h1", roomId="alpha", sdp=SessionDescription(type="offer", sdp="v=0")
        )

        assert await signaling.send(offer) is True

        sent = signaling.ws.sent[0]
        assert sent["scope"] == "watch"
        assert sent["from"] == "h1"
        assert sent["type"] == "offer"

    @pytest.mark.asyncio
    async def test_send_on_closed_channel_retries_once_then_drops(self, signaling):
        signaling.connect = AsyncMock(return_value=False)

        assert await signaling.send(JoinMessage(roomId="alpha")) is False
        await asyncio.sleep(0.05)

        signaling.connect.assert_awaited_once()
        dropped = signaling.events.of_kind(EventKind.SEND_DROPPED)
        assert [e.detail for e in dropped] == ["join"]

    @pytest.mark.asyncio
    async def test_retry_delivers_when_channel_reopens(self, signaling):
        ws = FakeWebSocket()

        async def reopen():
            signaling.ws = ws
            return True

        signaling.connect = reopen

        assert await signaling.send(JoinMessage(roomId="alpha")) is False
        await asyncio.sleep(0.05)

        assert ws.sent == [{"type": "join", "roomId": "alpha", "scope": "watch"}]
        assert signaling.events.of_kind(EventKind.SEND_DROPPED) == []

    @pytest.mark.asyncio
    async def test_send_failure_is_reported_not_raised(self, signaling):
        ws = FakeWebSocket()
        ws.send_str = AsyncMock(side_effect=ConnectionResetError("gone"))
        signaling.ws = ws

        assert await signaling.send(JoinMessage(roomId="alpha")) is False
        assert len(signaling.events.of_kind(EventKind.SEND_DROPPED)) == 1


class TestListen:
    @pytest.mark.asyncio
    async def test_handler_errors_do_not_stop_delivery(self, signaling):
        signaling.ws = FakeWebSocket(
            [
                text_frame({"type": "created", "id": "h1"}),
                text_frame("garbage"),
                text_frame({"type": "new-peer", "id": "g1"}),
                text_frame({"type": "new-peer", "id": "g2", "scope": "chat"}),
                text_frame({"type": "new-peer", "id": "g3"}),
            ]
        )
        seen = []

        async def handler(message):
            seen.append(message.type)
            if message.type == "created":
                raise RuntimeError("boom")

        await signaling.listen(handler)
        await asyncio.sleep(0)

        assert seen == ["created", "new-peer", "new-peer"]

    @pytest.mark.asyncio
    async def test_suspended_handler_does_not_hold_up_later_messages(self, signaling):
        signaling.ws = FakeWebSocket(
            [
                text_frame({"type": "offer", "from": "h1", "sdp": {"type": "offer", "sdp": "v=0"}}),
                text_frame({"type": "play", "time": 3.0}),
            ]
        )
        gate = asyncio.Event()
        seen = []

        async def handler(message):
            if message.type == "offer":
                await gate.wait()
            seen.append(message.type)

        await signaling.listen(handler)
        await asyncio.sleep(0.01)

        assert seen == ["play"]
        gate.set()
        await asyncio.sleep(0.01)
        assert seen == ["play", "offer"]

    @pytest.mark.asyncio
    async def test_close_cancels_running_handlers(self, signaling):
        signaling.ws = FakeWebSocket([text_frame({"type": "created", "id": "h1"})])
        started = asyncio.Event()

        async def handler(message):
            started.set()
            await asyncio.Event().wait()

        await signaling.listen(handler)
        await started.wait()
        task = next(iter(signaling._handler_tasks))

        await signaling.close()
        await asyncio.sleep(0)

        assert task.cancelled()


class TestReconnect:
    def test_backoff_steps_then_cap(self, signaling):
        delays = [signaling.reconnect_delay(n) for n in range(1, 8)]
        assert delays == [2.0, 4.0, 8.0, 15.0, 30.0, 30.0, 30.0]

    @pytest.mark.asyncio
    async def test_reconnect_hook_runs_after_second_connect(self, signaling):
        connects = []

        async def connect():
            connects.append(1)
            signaling.ws = FakeWebSocket()
            return True

        async def listen(handler):
            if len(connects) >= 2:
                signaling._closing = True

        hook = AsyncMock()
        signaling.connect = connect
        signaling.listen = listen
        signaling.on_reconnect = hook
        signaling.reconnect_delay = lambda attempt: 0

        await signaling.run(AsyncMock())

        assert len(connects) == 2
        hook.assert_awaited_once()
