"""
Outgoing media for the host, and live quality switching.

``auto`` sends the player's own tracks (resolution follows the source).
``high`` and ``ultra`` re-render the player's video onto a fixed-size canvas
(aspect preserved, letterboxed) that is emitted at a fixed frame rate, so the
resolution a guest receives is stable no matter what the file is encoded at.

Switching quality installs the new tracks on every peer and renegotiates
each one before the previous stream is stopped, so no guest sees a gap.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional

import av
import numpy as np
from aiortc import VideoStreamTrack
from aiortc.mediastreams import VIDEO_CLOCK_RATE, VIDEO_TIME_BASE, MediaStreamError

from .config import QualityMode, QualityProfile, profile_for
from .errors import CaptureUnsupported
from .events import EventKind
from .messages import ScreenStoppedMessage
from .negotiation import NegotiationProtocol
from .peers import PeerConnectionManager
from .state import Session

logger = logging.getLogger("watch.media")


class StreamKind(str, Enum):
    DIRECT_CAPTURE = "direct-capture"
    SYNTHETIC_RENDER = "synthetic-render"


# ---------- frame helpers ----------
def letterbox(src_frame: av.VideoFrame, target_w: int, target_h: int) -> np.ndarray:
    """Scale ``src_frame`` into a target_w x target_h RGB canvas, keeping aspect."""
    canvas = np.zeros((target_h, target_w, 3), dtype=np.uint8)
    src_w = src_frame.width
    src_h = src_frame.height
    if src_w == 0 or src_h == 0:
        return canvas

    src_ar = src_w / src_h
    target_ar = target_w / target_h
    if src_ar > target_ar:
        new_w = target_w
        new_h = int(round(target_w / src_ar))
    else:
        new_h = target_h
        new_w = int(round(target_h * src_ar))
    new_w = max(1, min(new_w, target_w))
    new_h = max(1, min(new_h, target_h))

    scaled = src_frame.reformat(width=new_w, height=new_h, format="rgb24")
    arr = scaled.to_ndarray(format="rgb24")
    y0 = (target_h - new_h) // 2
    x0 = (target_w - new_w) // 2
    canvas[y0 : y0 + new_h, x0 : x0 + new_w, :] = arr
    return canvas


class FrameRenderer:
    """Redraw loop: keeps the latest source frame painted on a fixed canvas."""

    def __init__(self, source, width: int, height: int):
        self.source = source
        self.width = width
        self.height = height
        self.canvas = np.zeros((height, width, 3), dtype=np.uint8)
        self.frames_drawn = 0
        self.on_source_ended: Optional[Callable[[], None]] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.ensure_future(self._redraw())

    async def _redraw(self) -> None:
        while True:
            try:
                frame = await self.source.recv()
            except MediaStreamError:
                logger.info("Render source ended (%dx%d)", self.width, self.height)
                break
            try:
                self.canvas = letterbox(frame, self.width, self.height)
                self.frames_drawn += 1
            except Exception:
                logger.exception("Redraw failed; keeping previous canvas")
        if self.on_source_ended is not None:
            self.on_source_ended()

    def snapshot(self) -> av.VideoFrame:
        return av.VideoFrame.from_ndarray(self.canvas, format="rgb24")

    def stop(self) -> None:
        task = self._task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
        try:
            self.source.stop()
        except Exception:
            logger.exception("Error stopping render source")


class RenderedVideoTrack(VideoStreamTrack):
    """Emits the renderer's canvas at a fixed frame rate."""

    def __init__(self, renderer: FrameRenderer, fps: int):
        super().__init__()
        self.renderer = renderer
        self.fps = fps if fps > 0 else 30
        self._start: Optional[float] = None
        self._count = 0
        logger.info("RenderedVideoTrack init: %dx%d@%d", renderer.width, renderer.height, self.fps)

    async def recv(self):
        if self.readyState != "live":
            raise MediaStreamError
        if self._start is None:
            self._start = time.time()
        else:
            self._count += 1
            wait = self._start + self._count / self.fps - time.time()
            if wait > 0:
                await asyncio.sleep(wait)
        frame = self.renderer.snapshot()
        frame.pts = int(self._count * VIDEO_CLOCK_RATE / self.fps)
        frame.time_base = VIDEO_TIME_BASE
        return frame


@dataclass
class OutgoingStream:
    kind: StreamKind
    profile: QualityProfile
    tracks: List[Any]
    renderer: Optional[FrameRenderer] = None

    @property
    def mode(self) -> QualityMode:
        return self.profile.mode

    @property
    def video_track(self):
        for track in self.tracks:
            if track.kind == "video":
                return track
        return None

    def stop(self) -> None:
        if self.renderer is not None:
            self.renderer.stop()
        for track in self.tracks:
            try:
                track.stop()
            except Exception:
                logger.exception("Error stopping %s track", track.kind)


class QualityController:
    def __init__(
        self,
        session: Session,
        peers: PeerConnectionManager,
        negotiation: NegotiationProtocol,
        surface,
        send: Callable[[object], Awaitable[bool]],
    ):
        self.session = session
        self.peers = peers
        self.negotiation = negotiation
        self.surface = surface
        self.send = send
        self._tasks: set = set()

    # ---------- stream construction ----------
    def build_stream(self, mode) -> OutgoingStream:
        profile = profile_for(mode)
        if profile.synthetic:
            try:
                return self._synthetic(profile)
            except Exception as exc:
                logger.warning(
                    "Canvas render for %s failed (%s); falling back to direct capture",
                    profile.label,
                    exc,
                )
        tracks = self.surface.capture_tracks()
        logger.info("Direct capture stream (%s)", profile.label)
        return OutgoingStream(StreamKind.DIRECT_CAPTURE, profile, tracks)

    def _synthetic(self, profile: QualityProfile) -> OutgoingStream:
        renderer = FrameRenderer(self.surface.video_source(), profile.width, profile.height)
        video = RenderedVideoTrack(renderer, profile.fps)
        renderer.on_source_ended = video.stop
        renderer.start()
        tracks = [video]
        audio = self.surface.audio_track()
        if audio is not None:
            tracks.append(audio)
        logger.info("Synthetic render stream (%s)", profile.label)
        return OutgoingStream(StreamKind.SYNTHETIC_RENDER, profile, tracks, renderer)

    def _watch_end(self, stream: OutgoingStream) -> None:
        video = stream.video_track
        if video is None:
            return

        @video.on("ended")
        def on_ended():
            self._stream_ended(stream)

    def _stream_ended(self, stream: OutgoingStream) -> None:
        if self.session.outgoing is not stream:
            return
        logger.info("Stream finished by host")
        self.session.outgoing = None
        stream.stop()
        self.session.events.emit(EventKind.STREAM_ENDED, detail=stream.mode.value)
        self._spawn(self.send(ScreenStoppedMessage(roomId=self.session.room_id)))

    def _unsupported(self, exc: CaptureUnsupported) -> None:
        logger.warning("Cannot start stream: %s", exc)
        self.session.events.emit(EventKind.CAPTURE_UNSUPPORTED, detail=str(exc), error=exc)

    def _spawn(self, coro) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    # ---------- per-peer ----------
    async def negotiate_peer(self, peer_id: str, stream: OutgoingStream) -> bool:
        """Tracks first, then encoding, then a fresh offer."""
        try:
            entry = await self.peers.ensure_connection(peer_id)
            if entry.offered_stream is stream:
                logger.debug("%s already negotiated for this stream", peer_id)
                return True
            entry.offered_stream = stream
            await self.peers.attach_tracks(entry, stream)
            await self.peers.apply_encoding(entry, stream.profile)
        except Exception as exc:
            logger.warning("Track setup for %s failed: %s", peer_id, exc)
            self.session.events.emit(
                EventKind.NEGOTIATION_FAILED, peer_id=peer_id, detail="tracks", error=exc
            )
            return False
        return await self.negotiation.send_offer(peer_id)

    async def handle_new_peer(self, peer_id: str) -> bool:
        try:
            await self.peers.ensure_connection(peer_id)
        except Exception as exc:
            logger.warning("Could not create pc for %s: %s", peer_id, exc)
            self.session.events.emit(
                EventKind.NEGOTIATION_FAILED, peer_id=peer_id, detail="connect", error=exc
            )
            return False
        stream = self.session.outgoing
        if stream is None:
            self.session.pending.add(peer_id)
            logger.info("Peer %s queued until the stream starts", peer_id)
            return False
        logger.info("Stream already active; negotiating with %s", peer_id)
        return await self.negotiate_peer(peer_id, stream)

    # ---------- stream lifecycle ----------
    async def start_outgoing_stream(self, mode=None) -> Optional[OutgoingStream]:
        if not self.session.is_host:
            logger.warning("Only the host can start the stream")
            return None
        mode = QualityMode(mode) if mode is not None else self.session.quality
        self.session.quality = mode
        try:
            stream = self.build_stream(mode)
        except CaptureUnsupported as exc:
            self._unsupported(exc)
            return None

        previous = self.session.outgoing
        self.session.outgoing = stream
        self._watch_end(stream)

        targets = list(dict.fromkeys([*self.session.peers, *self.session.pending]))
        self.session.pending.clear()
        for peer_id in targets:
            await self.negotiate_peer(peer_id, stream)

        if previous is not None and previous is not stream:
            previous.stop()
        return stream

    async def switch_quality(self, mode) -> List[str]:
        """Apply a quality level; renegotiates every peer when streaming.

        Returns the peers that were sent a renegotiation offer.
        """
        mode = QualityMode(mode)
        self.session.quality = mode
        previous = self.session.outgoing
        if not self.session.is_host or previous is None:
            logger.info("Quality set to %s", mode.value)
            return []
        try:
            stream = self.build_stream(mode)
        except CaptureUnsupported as exc:
            self._unsupported(exc)
            return []

        self.session.outgoing = stream
        self._watch_end(stream)
        renegotiated = []
        for peer_id in list(self.session.peers):
            if await self.negotiate_peer(peer_id, stream):
                renegotiated.append(peer_id)
                logger.info("Renegotiated %s at %s", peer_id, stream.profile.label)

        previous.stop()
        return renegotiated

    async def stop(self, announce: bool = True) -> None:
        stream = self.session.outgoing
        self.session.outgoing = None
        if stream is not None:
            stream.stop()
        if announce:
            await self.send(ScreenStoppedMessage(roomId=self.session.room_id))
        for task in list(self._tasks):
            task.cancel()
