"""
Websocket signaling channel.

Sends and receives JSON messages over one aiohttp websocket. Outgoing
messages are stamped with the channel's scope; inbound messages with another
scope are ignored so the channel can share a socket protocol with unrelated
features. Inbound messages are handled concurrently, one task each.
"""

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Union

import aiohttp

from . import config
from .errors import MalformedMessage
from .events import EventChannel, EventKind
from .messages import _Message, parse_message, to_wire

logger = logging.getLogger("watch.signaling")

Handler = Callable[[Any], Awaitable[None]]


class SignalingChannel:
    def __init__(
        self,
        url: str = config.SIGNALING_URL,
        scope: Optional[str] = config.SCOPE,
        events: Optional[EventChannel] = None,
        retry_delay: float = config.SEND_RETRY_DELAY,
    ):
        self.url = url
        self.scope = scope
        self.events = events
        self.retry_delay = retry_delay
        self.http: Optional[aiohttp.ClientSession] = None
        self.ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self.on_reconnect: Optional[Callable[[], Awaitable[None]]] = None
        self._reconnect_attempt = 0
        self._closing = False
        self._retry_tasks: set = set()
        self._handler_tasks: set = set()

    @property
    def is_open(self) -> bool:
        return self.ws is not None and not self.ws.closed

    async def connect(self) -> bool:
        if self.is_open:
            return True
        if self.http is None or self.http.closed:
            self.http = aiohttp.ClientSession()
        try:
            self.ws = await self.http.ws_connect(self.url, heartbeat=config.WS_HEARTBEAT)
        except Exception as exc:
            logger.warning("WS connect to %s failed: %s", self.url, exc)
            self.ws = None
            return False
        self._reconnect_attempt = 0
        logger.info("WS connected: %s", self.url)
        return True

    def _encode(self, message: Union[_Message, Dict[str, Any]]) -> Dict[str, Any]:
        payload = to_wire(message) if isinstance(message, _Message) else dict(message)
        if self.scope and "scope" not in payload:
            payload["scope"] = self.scope
        return payload

    async def send(self, message: Union[_Message, Dict[str, Any]]) -> bool:
        """Send one message. Never raises; returns False when dropped.

        A send on a closed channel is retried once after a short delay.
        """
        payload = self._encode(message)
        if self.is_open:
            return await self._send_now(payload)
        logger.info("WS not connected; retrying %s once", payload.get("type"))
        task = asyncio.ensure_future(self._retry_once(payload))
        self._retry_tasks.add(task)
        task.add_done_callback(self._retry_tasks.discard)
        return False

    async def _send_now(self, payload: Dict[str, Any]) -> bool:
        try:
            await self.ws.send_str(json.dumps(payload))
            return True
        except Exception as exc:
            logger.warning("WS send of %s failed: %s", payload.get("type"), exc)
            self._dropped(payload, exc)
            return False

    async def _retry_once(self, payload: Dict[str, Any]) -> None:
        await asyncio.sleep(self.retry_delay)
        if not self.is_open and not self._closing:
            await self.connect()
        if self.is_open:
            await self._send_now(payload)
        else:
            logger.warning("WS still closed; dropped %s", payload.get("type"))
            self._dropped(payload, None)

    def _dropped(self, payload: Dict[str, Any], exc: Optional[BaseException]) -> None:
        if self.events is not None:
            self.events.emit(
                EventKind.SEND_DROPPED,
                peer_id=payload.get("to"),
                detail=str(payload.get("type")),
                error=exc,
            )

    def decode(self, text: str):
        """Decode one frame; returns None for foreign-scope or invalid frames."""
        try:
            data = json.loads(text)
        except ValueError:
            logger.warning("Invalid JSON: %s", text[:200])
            return None
        if self.scope and isinstance(data, dict) and data.get("scope") not in (None, self.scope):
            return None
        try:
            return parse_message(data)
        except MalformedMessage as exc:
            logger.warning("Dropping malformed message: %s", exc)
            return None

    async def listen(self, handler: Handler) -> None:
        """Hand each inbound message to ``handler`` until the socket closes.

        Every message gets its own task, so a handler suspended on the network
        does not hold up delivery of the next one.
        """
        async for msg in self.ws:
            if msg.type == aiohttp.WSMsgType.TEXT:
                message = self.decode(msg.data)
                if message is None:
                    continue
                task = asyncio.ensure_future(self._deliver(handler, message))
                self._handler_tasks.add(task)
                task.add_done_callback(self._handler_tasks.discard)
            elif msg.type in (aiohttp.WSMsgType.CLOSED, aiohttp.WSMsgType.ERROR):
                break
        logger.info("WS closed")

    async def _deliver(self, handler: Handler, message) -> None:
        try:
            await handler(message)
        except Exception:
            logger.exception("Handler failed for %s", message.type)

    def reconnect_delay(self, attempt: int) -> float:
        steps = config.RECONNECT_BACKOFF
        if attempt <= len(steps):
            return steps[attempt - 1]
        return config.RECONNECT_MAX_DELAY

    async def run(self, handler: Handler) -> None:
        """Connect, listen, and reconnect with backoff until ``close()``."""
        connected_before = False
        while not self._closing:
            if await self.connect():
                if connected_before and self.on_reconnect is not None:
                    await self._notify_reconnect()
                connected_before = True
                await self.listen(handler)
            if self._closing:
                break
            self._reconnect_attempt += 1
            delay = self.reconnect_delay(self._reconnect_attempt)
            logger.info("WS reconnect #%d in %.1fs", self._reconnect_attempt, delay)
            await asyncio.sleep(delay)

    async def _notify_reconnect(self) -> None:
        try:
            await self.on_reconnect()
        except Exception:
            logger.exception("Reconnect hook failed")

    async def close(self) -> None:
        self._closing = True
        for task in [*self._retry_tasks, *self._handler_tasks]:
            task.cancel()
        if self.ws is not None:
            try:
                await self.ws.close()
            except Exception:
                logger.debug("WS close failed", exc_info=True)
        if self.http is not None:
            await self.http.close()
        self.ws = None
