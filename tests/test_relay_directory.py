import asyncio

import pytest
from aiortc import RTCIceServer

from watch_peer import config
from watch_peer.events import EventChannel, EventKind
from watch_peer.relay_directory import RelayDirectoryCache, extract_servers, to_ice_servers

TURN = {"urls": "turn:turn.example.org:3478", "username": "u", "credential": "p"}


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


class CountingFetcher:
    def __init__(self, payload=None, error=None, gate=None):
        self.payload = payload if payload is not None else {"iceServers": [TURN]}
        self.error = error
        self.gate = gate
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.payload


class TestExtractServers:
    def test_nested_shape(self):
        assert extract_servers({"v": {"iceServers": [TURN]}}) == [TURN]

    def test_flat_shape(self):
        assert extract_servers({"iceServers": [TURN]}) == [TURN]

    def test_bare_list(self):
        assert extract_servers([TURN]) == [TURN]

    def test_empty_or_unknown(self):
        assert extract_servers({"iceServers": []}) is None
        assert extract_servers({"servers": [TURN]}) is None
        assert extract_servers("stun:x") is None


def test_to_ice_servers_skips_unusable_entries():
    servers = to_ice_servers([TURN, {"username": "no-urls"}, "junk"])
    assert len(servers) == 1
    assert isinstance(servers[0], RTCIceServer)
    assert servers[0].urls == TURN["urls"]
    assert servers[0].credential == "p"


class TestRelayDirectoryCache:
    @pytest.mark.asyncio
    async def test_success_is_cached_for_a_minute(self):
        clock = FakeClock()
        fetcher = CountingFetcher()
        cache = RelayDirectoryCache(fetcher=fetcher, clock=clock)

        assert await cache.get_relay_servers() == [TURN]
        assert cache.expires == pytest.approx(clock.now + 60)

        clock.now += 59
        assert await cache.get_relay_servers() == [TURN]
        assert fetcher.calls == 1

        clock.now += 2
        await cache.get_relay_servers()
        assert fetcher.calls == 2

    @pytest.mark.asyncio
    async def test_http_error_falls_back_with_shorter_expiry(self):
        clock = FakeClock()
        events = EventChannel()
        cache = RelayDirectoryCache(
            fetcher=CountingFetcher(error=RuntimeError("500 Internal Server Error")),
            clock=clock,
            events=events,
        )

        servers = await cache.get_relay_servers()

        assert servers == config.DEFAULT_ICE_SERVERS
        assert cache.expires == pytest.approx(clock.now + 30)
        assert cache.expires < clock.now + config.ICE_CACHE_TTL
        fallbacks = events.of_kind(EventKind.RELAY_FALLBACK)
        assert len(fallbacks) == 1
        assert "500" in fallbacks[0].detail

    @pytest.mark.asyncio
    async def test_empty_directory_counts_as_failure(self):
        cache = RelayDirectoryCache(fetcher=CountingFetcher(payload={"iceServers": []}), clock=FakeClock())
        assert await cache.get_relay_servers() == config.DEFAULT_ICE_SERVERS

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_fetch(self):
        gate = asyncio.Event()
        fetcher = CountingFetcher(gate=gate)
        cache = RelayDirectoryCache(fetcher=fetcher, clock=FakeClock())

        pending = asyncio.gather(*(cache.get_relay_servers() for _ in range(3)))
        await asyncio.sleep(0)
        gate.set()
        results = await pending

        assert fetcher.calls == 1
        assert results == [[TURN]] * 3

    @pytest.mark.asyncio
    async def test_force_refetches(self):
        fetcher = CountingFetcher()
        cache = RelayDirectoryCache(fetcher=fetcher, clock=FakeClock())
        await cache.get_relay_servers()
        await cache.get_relay_servers(force=True)
        assert fetcher.calls == 2

    @pytest.mark.asyncio
    async def test_cancelled_caller_does_not_cancel_fetch(self):
        gate = asyncio.Event()
        fetcher = CountingFetcher(gate=gate)
        cache = RelayDirectoryCache(fetcher=fetcher, clock=FakeClock())

        first = asyncio.ensure_future(cache.get_relay_servers())
        second = asyncio.ensure_future(cache.get_relay_servers())
        await asyncio.sleep(0)
        first.cancel()
        gate.set()

        assert await second == [TURN]
        assert fetcher.calls == 1
