import pytest

from watch_peer.messages import (
    CreatedMessage,
    ErrorMessage,
    OfferMessage,
    PauseMessage,
    PlayMessage,
    ScreenStoppedMessage,
    SeekMessage,
    SessionDescription,
)
from watch_peer.state import Role

from tests.fakes import FakeVideoTrack, announce_guests, open_guest, open_host


class TestRooms:
    @pytest.mark.asyncio
    async def test_create_room_sends_create(self, coordinator, channel):
        session = await coordinator.create_room("alpha")

        assert session.role is Role.HOST
        assert [m.roomId for m in channel.of_type("create")] == ["alpha"]

    @pytest.mark.asyncio
    async def test_generated_room_id(self, coordinator, channel):
        session = await coordinator.create_room()
        assert session.room_id.startswith("room-")
        assert channel.of_type("create")[0].roomId == session.room_id

    @pytest.mark.asyncio
    async def test_identity_comes_from_server(self, coordinator):
        session = await coordinator.join_room("alpha")
        assert session.self_id is None

        await coordinator.handle(CreatedMessage(id="guest-9"))

        assert session.self_id == "guest-9"

    @pytest.mark.asyncio
    async def test_second_room_is_refused(self, coordinator, channel):
        first = await coordinator.create_room("alpha")

        again = await coordinator.join_room("beta")

        assert again is first
        assert channel.of_type("join") == []

    @pytest.mark.asyncio
    async def test_rejoin_re_registers(self, coordinator, channel):
        await open_guest(coordinator)
        await coordinator.rejoin()
        assert [m.roomId for m in channel.of_type("join")] == ["alpha", "alpha"]

    @pytest.mark.asyncio
    async def test_host_rejoin_rebuilds_connections(self, coordinator, channel, peer_factory):
        session = await open_host(coordinator)
        await announce_guests(coordinator, "g1")
        await coordinator.start_stream("auto")
        old_pc = session.peers["g1"].pc

        await coordinator.rejoin()

        assert old_pc.connectionState == "closed"
        assert session.peers == {}
        assert session.streaming
        assert [m.roomId for m in channel.of_type("create")] == ["alpha", "alpha"]

        await coordinator.handle(CreatedMessage(id="host-2"))
        await announce_guests(coordinator, "g1")

        offer = channel.of_type("offer")[-1]
        assert (offer.to, offer.from_) == ("g1", "host-2")
        assert session.peers["g1"].pc is not old_pc
        await coordinator.close()

    @pytest.mark.asyncio
    async def test_messages_before_room_are_ignored(self, coordinator):
        await coordinator.handle(PlayMessage(time=3.0))
        assert coordinator.session is None

    @pytest.mark.asyncio
    async def test_error_messages_are_logged_only(self, coordinator, channel):
        await open_host(coordinator)
        await coordinator.handle(ErrorMessage(message="destination g1 not connected"))
        assert channel.of_type("error") == []

    @pytest.mark.asyncio
    async def test_close(self, coordinator, channel, peer_factory):
        await open_host(coordinator)
        await coordinator.start_stream("auto")

        await coordinator.close()

        assert channel.closed is True
        assert channel.of_type("screen-stopped") == []


class TestPlaybackIntents:
    @pytest.mark.asyncio
    async def test_host_pause_and_seek_are_broadcast(self, coordinator, channel, surface):
        await open_host(coordinator)

        assert await coordinator.seek(42.0) is True
        assert await coordinator.pause(42.0) is True

        assert surface.calls == [("seek", 42.0), ("pause", 42.0)]
        assert [(m.type, m.time, m.roomId) for m in channel.sent if m.type in ("seek", "pause")] == [
            ("seek", 42.0, "alpha"),
            ("pause", 42.0, "alpha"),
        ]

    @pytest.mark.asyncio
    async def test_host_play_starts_the_stream(self, coordinator, channel):
        session = await open_host(coordinator)

        assert await coordinator.play(5.0) is True

        assert channel.of_type("play")[0].time == 5.0
        assert session.streaming
        await coordinator.close()

    @pytest.mark.asyncio
    async def test_guest_intents_are_not_sent(self, coordinator, channel, surface):
        await open_guest(coordinator)

        assert await coordinator.play(1.0) is False
        assert await coordinator.seek(2.0) is False

        assert surface.calls == []
        assert channel.of_type("play") == []


class TestGuestPlayback:
    @pytest.mark.asyncio
    async def test_mirrors_host_playback_without_remote_stream(self, coordinator, surface):
        await open_guest(coordinator)

        await coordinator.handle(PlayMessage(roomId="alpha", time=12.5))
        await coordinator.handle(SeekMessage(roomId="alpha", time=30.0))
        await coordinator.handle(PauseMessage(roomId="alpha", time=31.0))

        assert surface.calls == [("play", 12.5), ("seek", 30.0), ("pause", 31.0)]

    @pytest.mark.asyncio
    async def test_remote_stream_is_authoritative(self, coordinator, surface):
        await open_guest(coordinator)
        surface.has_remote = True

        await coordinator.handle(PlayMessage(roomId="alpha", time=12.5))

        assert surface.calls == []

    @pytest.mark.asyncio
    async def test_host_ignores_playback_messages(self, coordinator, surface):
        await open_host(coordinator)
        await coordinator.handle(PlayMessage(roomId="alpha", time=12.5))
        assert surface.calls == []

    @pytest.mark.asyncio
    async def test_screen_stopped_clears_the_player(self, coordinator, surface):
        await open_guest(coordinator)
        surface.has_remote = True

        await coordinator.handle(ScreenStoppedMessage(roomId="alpha"))

        assert surface.cleared == 1
        assert surface.has_remote is False

    @pytest.mark.asyncio
    async def test_remote_track_reaches_the_surface(self, coordinator, surface, peer_factory):
        await open_guest(coordinator)
        await coordinator.handle(
            OfferMessage(
                to="guest-1",
                from_="host-1",
                roomId="alpha",
                sdp=SessionDescription(type="offer", sdp="v=0 host"),
            )
        )
        track = FakeVideoTrack()

        peer_factory.created[0].emit("track", track)

        assert surface.bound == [("host-1", track)]
