"""
Playback surface backed by aiortc's MediaPlayer.

The host loads a local file or a remote URL and the engine captures from it.
A guest binds the host's remote tracks to a sink (a recorder, or a blackhole
that just drains them). Playback position is tracked as a logical clock so
play/pause/seek intents can be mirrored in local preview mode.
"""

import asyncio
import logging
import time
from typing import Any, List, Optional

from aiortc.contrib.media import MediaBlackhole, MediaPlayer, MediaRecorder, MediaRelay

from .errors import CaptureUnsupported

logger = logging.getLogger("watch.surface")


class PlayerSurface:
    def __init__(self, source: Optional[str] = None, record_to: Optional[str] = None, loop: bool = False):
        self.source: Optional[str] = None
        self.player: Optional[MediaPlayer] = None
        self.relay = MediaRelay()
        self.loop = loop
        self.record_to = record_to
        self.sink = None
        self.remote_tracks: List[Any] = []
        self.position = 0.0
        self.playing = False
        self._resumed_at: Optional[float] = None
        self._tasks: set = set()
        if source:
            self.load(source)

    # ---------- local media ----------
    def load(self, source: str) -> None:
        """Open a file path or URL for playback (replaces any previous one)."""
        self._close_player()
        try:
            self.player = MediaPlayer(source, loop=self.loop)
        except Exception as exc:
            logger.exception("Failed to open MediaPlayer for %s", source)
            raise CaptureUnsupported(f"cannot open {source}: {exc}") from exc
        self.source = source
        self.position = 0.0
        self._resumed_at = None
        self.playing = False
        logger.info("Loaded %s (video=%s audio=%s)", source, self.player.video is not None, self.player.audio is not None)

    def _require_video(self):
        if self.player is None or self.player.video is None:
            raise CaptureUnsupported(
                "No video loaded: load a file or URL with a video stream before starting the stream"
            )
        return self.player.video

    def capture_tracks(self) -> List[Any]:
        video = self._require_video()
        tracks = [self.relay.subscribe(video)]
        if self.player.audio is not None:
            tracks.append(self.relay.subscribe(self.player.audio))
        return tracks

    def video_source(self):
        return self.relay.subscribe(self._require_video(), buffered=False)

    def audio_track(self):
        if self.player is None or self.player.audio is None:
            return None
        return self.relay.subscribe(self.player.audio)

    # ---------- clock ----------
    @property
    def current_time(self) -> float:
        if self.playing and self._resumed_at is not None:
            return self.position + (time.monotonic() - self._resumed_at)
        return self.position

    def play(self, at: Optional[float] = None) -> None:
        if at is not None:
            self.position = max(0.0, float(at))
        elif self.playing:
            self.position = self.current_time
        self._resumed_at = time.monotonic()
        self.playing = True

    def pause(self, at: Optional[float] = None) -> None:
        self.position = max(0.0, float(at)) if at is not None else self.current_time
        self.playing = False
        self._resumed_at = None

    def seek(self, at: float) -> None:
        self.position = max(0.0, float(at))
        if self.playing:
            self._resumed_at = time.monotonic()

    # ---------- remote media (guest) ----------
    @property
    def has_remote(self) -> bool:
        return any(getattr(t, "readyState", "live") == "live" for t in self.remote_tracks)

    def bind_remote(self, peer_id: str, track) -> bool:
        if any(t is track for t in self.remote_tracks):
            return False
        self.remote_tracks.append(track)
        if self.sink is None:
            self.sink = MediaRecorder(self.record_to) if self.record_to else MediaBlackhole()
        self.sink.addTrack(track)
        task = asyncio.ensure_future(self.sink.start())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.info("Remote %s track from %s applied to player", track.kind, peer_id)
        return True

    async def clear(self) -> None:
        """Drop the remote binding and any loaded source."""
        self.remote_tracks = []
        sink, self.sink = self.sink, None
        if sink is not None:
            try:
                await sink.stop()
            except Exception:
                logger.exception("Error stopping sink")
        self._close_player()
        self.source = None
        self.pause(0.0)

    def _close_player(self) -> None:
        player, self.player = self.player, None
        if player is None:
            return
        for track in (player.audio, player.video):
            if track is not None:
                try:
                    track.stop()
                except Exception:
                    logger.exception("Error stopping player track")

    async def close(self) -> None:
        await self.clear()
