"""
Peer connection lifecycle: one RTCPeerConnection per remote participant.
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, List, Optional

from aiortc import RTCConfiguration, RTCPeerConnection, RTCIceServer

from .config import CONTROL_CHANNEL_LABEL, QualityProfile
from .events import EventKind
from .relay_directory import RelayDirectoryCache, to_ice_servers
from .state import Session

if TYPE_CHECKING:
    from .media import OutgoingStream

logger = logging.getLogger("watch.peers")

PeerFactory = Callable[[List[RTCIceServer]], Any]
CandidateCallback = Callable[[str, Any], Awaitable[None]]
TrackCallback = Callable[[str, Any], bool]

TERMINAL_STATES = ("failed", "closed")


def default_peer_factory(ice_servers: List[RTCIceServer]) -> RTCPeerConnection:
    return RTCPeerConnection(RTCConfiguration(iceServers=ice_servers))


def find_sender(pc, kind: str):
    for sender in pc.getSenders():
        if sender.track is not None and sender.track.kind == kind:
            return sender
    return None


@dataclass
class PeerEntry:
    peer_id: str
    pc: Any
    channel: Any = None
    remote_tracks: List[Any] = field(default_factory=list)
    outstanding_offer: Optional[str] = None
    # stream whose tracks were last put on this pc
    offered_stream: Any = None
    removable: bool = False

    @property
    def negotiation_state(self) -> str:
        return getattr(self.pc, "signalingState", "closed")

    @property
    def connection_state(self) -> str:
        return getattr(self.pc, "connectionState", "new")


class PeerConnectionManager:
    def __init__(
        self,
        session: Session,
        relay_directory: RelayDirectoryCache,
        on_local_candidate: Optional[CandidateCallback] = None,
        on_remote_track: Optional[TrackCallback] = None,
        peer_factory: PeerFactory = default_peer_factory,
    ):
        self.session = session
        self.relay_directory = relay_directory
        self.on_local_candidate = on_local_candidate
        self.on_remote_track = on_remote_track
        self.peer_factory = peer_factory
        self._creating: Dict[str, asyncio.Task] = {}
        self._tasks: set = set()

    def get(self, peer_id: str) -> Optional[PeerEntry]:
        return self.session.peers.get(peer_id)

    async def ensure_connection(self, peer_id: str) -> PeerEntry:
        entry = self.session.peers.get(peer_id)
        if entry is not None:
            logger.debug("PC already exists for %s", peer_id)
            return entry
        task = self._creating.get(peer_id)
        if task is None:
            task = asyncio.ensure_future(self._create(peer_id))
            self._creating[peer_id] = task
            task.add_done_callback(lambda _t: self._creating.pop(peer_id, None))
        return await asyncio.shield(task)

    async def _create(self, peer_id: str) -> PeerEntry:
        servers = await self.relay_directory.get_relay_servers()
        pc = self.peer_factory(to_ice_servers(servers))
        entry = PeerEntry(peer_id=peer_id, pc=pc)
        self._wire(entry)

        if self.session.is_host:
            entry.channel = pc.createDataChannel(CONTROL_CHANNEL_LABEL)

            @entry.channel.on("open")
            def on_open():
                logger.info("Host control channel open -> %s", peer_id)

            stream = self.session.outgoing
            if stream is not None:
                for track in stream.tracks:
                    try:
                        pc.addTrack(track)
                    except Exception:
                        logger.exception("pc.addTrack failed for %s", peer_id)

        self.session.peers[peer_id] = entry
        logger.info("[pc:%s] created (role=%s)", peer_id, self.session.role.value)
        return entry

    def _wire(self, entry: PeerEntry) -> None:
        pc = entry.pc
        peer_id = entry.peer_id

        # aiortc gathers up front and ships candidates inside the SDP, so this
        # only fires for peer-connection implementations that trickle
        @pc.on("icecandidate")
        def on_icecandidate(candidate):
            if candidate is None or self.on_local_candidate is None:
                return
            self._spawn(self.on_local_candidate(peer_id, candidate))

        @pc.on("connectionstatechange")
        def on_connection_state():
            state = pc.connectionState
            logger.info("[pc:%s] connection -> %s", peer_id, state)
            if state in TERMINAL_STATES:
                entry.removable = True
                self.session.events.emit(EventKind.PEER_STATE, peer_id=peer_id, detail=state)

        if self.session.is_host:
            return

        @pc.on("track")
        def on_track(track):
            self._bind_remote_track(entry, track)

        @pc.on("datachannel")
        def on_datachannel(channel):
            entry.channel = channel
            logger.info("[pc:%s] control channel %s received", peer_id, channel.label)

    def _bind_remote_track(self, entry: PeerEntry, track) -> None:
        if any(t is track for t in entry.remote_tracks):
            logger.info("[pc:%s] %s track already applied", entry.peer_id, track.kind)
            return
        entry.remote_tracks.append(track)
        if self.on_remote_track is not None and self.on_remote_track(entry.peer_id, track):
            logger.info("[pc:%s] remote %s track bound to player", entry.peer_id, track.kind)

    def _spawn(self, coro) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def attach_tracks(self, entry: PeerEntry, stream: "OutgoingStream") -> None:
        """Put every track of ``stream`` on ``entry``: replace per kind, else add."""
        pc = entry.pc
        for track in stream.tracks:
            sender = find_sender(pc, track.kind)
            if sender is None:
                try:
                    pc.addTrack(track)
                    logger.info("[pc:%s] added %s track", entry.peer_id, track.kind)
                except Exception:
                    logger.exception("addTrack failed for %s", entry.peer_id)
                continue
            if sender.track is track:
                continue
            try:
                res = sender.replaceTrack(track)
                if inspect.isawaitable(res):
                    await res
                logger.info("[pc:%s] replaced %s track", entry.peer_id, track.kind)
            except Exception:
                logger.exception("replaceTrack failed for %s", entry.peer_id)

    async def apply_encoding(self, entry: PeerEntry, profile: QualityProfile) -> bool:
        """Best effort bitrate/framerate cap on the video sender."""
        sender = find_sender(entry.pc, "video")
        get_params = getattr(sender, "getParameters", None)
        set_params = getattr(sender, "setParameters", None)
        if not callable(get_params) or not callable(set_params):
            logger.debug("[pc:%s] sender has no setParameters; skipping bitrate", entry.peer_id)
            return False
        try:
            params = get_params()
            encodings = getattr(params, "encodings", None)
            if not encodings:
                logger.debug("[pc:%s] sender exposes no encodings", entry.peer_id)
                return False
            for enc in encodings:
                enc.maxBitrate = profile.bitrate
                enc.maxFramerate = profile.fps
            res = set_params(params)
            if inspect.isawaitable(res):
                await res
        except Exception as exc:
            logger.warning("[pc:%s] setParameters failed: %s", entry.peer_id, exc)
            return False
        logger.info("[pc:%s] encoding -> %d bps @%d", entry.peer_id, profile.bitrate, profile.fps)
        return True

    async def remove(self, peer_id: str) -> None:
        entry = self.session.peers.pop(peer_id, None)
        if entry is None:
            return
        try:
            await entry.pc.close()
        except Exception:
            logger.exception("Error closing pc for %s", peer_id)
        logger.info("[pc:%s] removed", peer_id)

    async def close_all(self) -> None:
        for peer_id in list(self.session.peers):
            await self.remove(peer_id)
        for task in list(self._tasks):
            task.cancel()
