import pytest

from watch_peer.coordinator import RoomCoordinator
from watch_peer.relay_directory import RelayDirectoryCache

from tests.fakes import FakeChannel, FakePeerFactory, FakeSurface, static_directory


@pytest.fixture
def timeline():
    return []


@pytest.fixture
def channel(timeline):
    return FakeChannel(timeline)


@pytest.fixture
def surface(timeline):
    return FakeSurface(timeline)


@pytest.fixture
def peer_factory(timeline):
    return FakePeerFactory(timeline)


@pytest.fixture
def relay_directory():
    return RelayDirectoryCache(fetcher=static_directory())


@pytest.fixture
def coordinator(channel, surface, relay_directory, peer_factory):
    return RoomCoordinator(channel, surface, relay_directory, peer_factory=peer_factory)
