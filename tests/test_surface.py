from types import SimpleNamespace

import pytest

from watch_peer.errors import CaptureUnsupported
from watch_peer.surface import PlayerSurface

from tests.fakes import FakeVideoTrack


class TestClock:
    def test_starts_paused_at_zero(self):
        surface = PlayerSurface()
        assert surface.current_time == 0.0
        assert surface.playing is False

    def test_pause_and_seek_set_position(self):
        surface = PlayerSurface()
        surface.seek(40.0)
        assert surface.current_time == 40.0
        surface.pause(12.5)
        assert surface.current_time == 12.5
        surface.seek(-3)
        assert surface.current_time == 0.0

    def test_play_advances(self, monkeypatch):
        now = [100.0]
        monkeypatch.setattr("watch_peer.surface.time", SimpleNamespace(monotonic=lambda: now[0]))
        surface = PlayerSurface()

        surface.play(10.0)
        now[0] += 2.5

        assert surface.current_time == pytest.approx(12.5)
        surface.pause()
        now[0] += 5
        assert surface.current_time == pytest.approx(12.5)


class TestCapture:
    def test_capture_without_source(self):
        with pytest.raises(CaptureUnsupported):
            PlayerSurface().capture_tracks()

    def test_unopenable_source(self, tmp_path):
        with pytest.raises(CaptureUnsupported):
            PlayerSurface(str(tmp_path / "missing.mp4"))

    def test_no_audio_without_source(self):
        assert PlayerSurface().audio_track() is None


class TestRemote:
    @pytest.mark.asyncio
    async def test_binds_each_track_once_and_clears(self):
        surface = PlayerSurface()
        track = FakeVideoTrack()

        assert surface.bind_remote("host-1", track) is True
        assert surface.bind_remote("host-1", track) is False
        assert surface.has_remote

        await surface.clear()

        assert surface.has_remote is False
        assert surface.sink is None
