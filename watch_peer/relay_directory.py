"""
Cached list of STUN/TURN servers fetched from the signaling backend.
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional

import aiohttp
from aiortc import RTCIceServer

from . import config
from .events import EventChannel, EventKind

logger = logging.getLogger("watch.relay")

ServerList = List[Dict[str, Any]]


def extract_servers(data: Any) -> Optional[ServerList]:
    """Accept ``{"v": {"iceServers": [...]}}``, ``{"iceServers": [...]}`` or a bare list."""
    if isinstance(data, dict):
        inner = data.get("v")
        if isinstance(inner, dict) and inner.get("iceServers"):
            return inner["iceServers"]
        if data.get("iceServers"):
            return data["iceServers"]
        return None
    if isinstance(data, list):
        return data
    return None


def to_ice_servers(descriptors: ServerList) -> List[RTCIceServer]:
    servers = []
    for desc in descriptors:
        try:
            servers.append(
                RTCIceServer(
                    urls=desc["urls"],
                    username=desc.get("username"),
                    credential=desc.get("credential"),
                )
            )
        except (KeyError, TypeError, AttributeError):
            logger.warning("Skipping unusable ICE server descriptor: %r", desc)
    return servers


class RelayDirectoryCache:
    def __init__(
        self,
        endpoint: str = config.ICE_ENDPOINT,
        fetcher: Optional[Callable[[], Awaitable[Any]]] = None,
        clock: Callable[[], float] = time.monotonic,
        events: Optional[EventChannel] = None,
        ttl: float = config.ICE_CACHE_TTL,
        fallback_ttl: float = config.ICE_FALLBACK_TTL,
    ):
        self.endpoint = endpoint
        self._fetch = fetcher or self._fetch_json
        self._clock = clock
        self.events = events
        self.ttl = ttl
        self.fallback_ttl = fallback_ttl
        self.servers: ServerList = list(config.DEFAULT_ICE_SERVERS)
        self.expires = 0.0
        self._inflight: Optional[asyncio.Task] = None

    async def _fetch_json(self) -> Any:
        timeout = aiohttp.ClientTimeout(total=config.ICE_FETCH_TIMEOUT)
        async with aiohttp.ClientSession(timeout=timeout) as http:
            async with http.get(
                self.endpoint, headers={"Cache-Control": "no-store"}
            ) as resp:
                resp.raise_for_status()
                return await resp.json(content_type=None)

    async def get_relay_servers(self, force: bool = False) -> ServerList:
        if not force and self.servers and self.expires > self._clock():
            return self.servers
        if self._inflight is None:
            self._inflight = asyncio.ensure_future(self._refresh())
        # shield so one cancelled caller does not cancel the fetch for the rest
        return await asyncio.shield(self._inflight)

    async def _refresh(self) -> ServerList:
        try:
            data = await self._fetch()
            servers = extract_servers(data)
            if not servers:
                raise ValueError("ICE directory returned no servers")
            self.servers = servers
            self.expires = self._clock() + self.ttl
            logger.info("ICE servers from directory (cached %.0fs)", self.ttl)
            return servers
        except Exception as exc:
            logger.warning("ICE directory fetch failed, using fallback STUN: %s", exc)
            self.servers = list(config.DEFAULT_ICE_SERVERS)
            self.expires = self._clock() + self.fallback_ttl
            if self.events is not None:
                self.events.emit(EventKind.RELAY_FALLBACK, detail=str(exc), error=exc)
            return self.servers
        finally:
            self._inflight = None
