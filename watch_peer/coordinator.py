"""
Room coordinator: role assignment, message dispatch and playback sync.

Inbound messages are routed through one table keyed by (role, message type).
The host has no handler that answers an offer, so a host can never become
the answering side of a negotiation.
"""

import logging
from typing import Awaitable, Callable, Dict, Optional, Tuple

from .config import QualityMode
from .events import EventChannel
from .media import QualityController
from .messages import (
    AnswerMessage,
    CreateMessage,
    IceMessage,
    JoinMessage,
    NewPeerMessage,
    OfferMessage,
    PauseMessage,
    PlayMessage,
    SeekMessage,
)
from .negotiation import NegotiationProtocol
from .peers import PeerConnectionManager, default_peer_factory
from .relay_directory import RelayDirectoryCache
from .state import Role, Session, generate_room_id

logger = logging.getLogger("watch.room")

Handler = Callable[[object], Awaitable[None]]


class RoomCoordinator:
    def __init__(
        self,
        channel,
        surface,
        relay_directory: Optional[RelayDirectoryCache] = None,
        peer_factory=default_peer_factory,
    ):
        self.channel = channel
        self.surface = surface
        self.relay_directory = relay_directory or RelayDirectoryCache()
        self.peer_factory = peer_factory
        self.session: Optional[Session] = None
        self.events = EventChannel()
        self.peers: Optional[PeerConnectionManager] = None
        self.negotiation: Optional[NegotiationProtocol] = None
        self.media: Optional[QualityController] = None
        self._handlers: Dict[Tuple[Role, str], Handler] = {}
        if hasattr(channel, "events") and channel.events is None:
            channel.events = self.events
        if self.relay_directory.events is None:
            self.relay_directory.events = self.events

    # ---------- room lifecycle ----------
    def _open(self, room_id: str, role: Role) -> Optional[Session]:
        if self.session is not None:
            logger.warning(
                "Already in room %s as %s; ignoring %s of %s",
                self.session.room_id,
                self.session.role.value,
                "create" if role is Role.HOST else "join",
                room_id,
            )
            return None
        self.session = Session(room_id=room_id or generate_room_id(), role=role, events=self.events)
        self.peers = PeerConnectionManager(
            self.session,
            self.relay_directory,
            on_local_candidate=self._local_candidate,
            on_remote_track=self.surface.bind_remote,
            peer_factory=self.peer_factory,
        )
        self.negotiation = NegotiationProtocol(self.session, self.peers, self.channel.send)
        self.media = QualityController(
            self.session, self.peers, self.negotiation, self.surface, self.channel.send
        )
        self._handlers = self._dispatch_table()
        return self.session

    async def create_room(self, room_id: str = "") -> Session:
        session = self._open(room_id, Role.HOST)
        if session is None:
            return self.session
        logger.info("Creating room %s", session.room_id)
        await self.channel.send(CreateMessage(roomId=session.room_id))
        return session

    async def join_room(self, room_id: str = "") -> Session:
        session = self._open(room_id, Role.GUEST)
        if session is None:
            return self.session
        logger.info("Joining room %s", session.room_id)
        if not await self.channel.send(JoinMessage(roomId=session.room_id)):
            logger.warning("Join request for %s not delivered yet", session.room_id)
        return session

    async def rejoin(self) -> None:
        """Re-register with the server after the channel reconnects.

        The server hands out a new id, so existing connections are closed and
        rebuilt from the new-peer announcements that follow.
        """
        if self.session is None:
            return
        await self.peers.close_all()
        self.session.pending.clear()
        self.session.self_id = None
        if self.session.is_host:
            await self.channel.send(CreateMessage(roomId=self.session.room_id))
        else:
            await self.channel.send(JoinMessage(roomId=self.session.room_id))

    async def close(self) -> None:
        if self.session is not None:
            await self.media.stop(announce=False)
            await self.peers.close_all()
        await self.channel.close()
        logger.info("Session closed")

    # ---------- host actions ----------
    async def start_stream(self, mode=None):
        if self.session is None:
            logger.warning("Create a room before streaming")
            return None
        return await self.media.start_outgoing_stream(mode)

    async def switch_quality(self, mode):
        if self.session is None:
            return []
        return await self.media.switch_quality(QualityMode(mode))

    async def stop_sharing(self) -> None:
        if self.session is None or not self.session.is_host:
            return
        await self.media.stop(announce=True)
        logger.info("Host stopped sharing")

    async def play(self, at: Optional[float] = None) -> bool:
        """Host play; starts streaming at the selected quality if not yet live."""
        sent = await self._playback_intent(PlayMessage, "play", at)
        if sent is not None and self.session.is_host and not self.session.streaming:
            await self.media.start_outgoing_stream()
        return bool(sent)

    async def pause(self, at: Optional[float] = None) -> bool:
        return bool(await self._playback_intent(PauseMessage, "pause", at))

    async def seek(self, at: float) -> bool:
        return bool(await self._playback_intent(SeekMessage, "seek", at))

    async def _playback_intent(self, cls, action: str, at: Optional[float]) -> Optional[bool]:
        if self.session is None or not self.session.is_host:
            logger.info("Only the host controls playback; %s ignored", action)
            return None
        getattr(self.surface, action)(at)
        return await self.channel.send(
            cls(roomId=self.session.room_id, time=self.surface.current_time)
        )

    # ---------- inbound ----------
    def _dispatch_table(self) -> Dict[Tuple[Role, str], Handler]:
        table: Dict[Tuple[Role, str], Handler] = {}
        for role in Role:
            table[(role, "created")] = self._on_identity
            table[(role, "joined")] = self._on_identity
            table[(role, "ice")] = self._on_ice
            table[(role, "error")] = self._on_error
        table[(Role.HOST, "new-peer")] = self._on_new_peer
        table[(Role.HOST, "answer")] = self._on_answer
        table[(Role.HOST, "offer")] = self._ignore_offer
        table[(Role.GUEST, "offer")] = self._on_offer
        table[(Role.GUEST, "play")] = self._on_playback
        table[(Role.GUEST, "pause")] = self._on_playback
        table[(Role.GUEST, "seek")] = self._on_playback
        table[(Role.GUEST, "screen-stopped")] = self._on_screen_stopped
        return table

    async def handle(self, message) -> None:
        if self.session is None:
            logger.debug("No room yet; %s ignored", message.type)
            return
        handler = self._handlers.get((self.session.role, message.type))
        if handler is None:
            logger.debug("No %s handler for %s", self.session.role.value, message.type)
            return
        await handler(message)

    async def _on_identity(self, msg) -> None:
        self.session.self_id = msg.id
        logger.info("%s in room %s with id %s", self.session.role.value, self.session.room_id, msg.id)

    async def _on_error(self, msg) -> None:
        logger.warning("Signaling error: %s", msg.message)

    async def _on_new_peer(self, msg: NewPeerMessage) -> None:
        logger.info("New peer joined: %s", msg.id)
        await self.media.handle_new_peer(msg.id)

    async def _ignore_offer(self, msg: OfferMessage) -> None:
        logger.info("Host received offer from %s (ignored)", msg.from_)

    async def _on_offer(self, msg: OfferMessage) -> None:
        await self.negotiation.on_offer(msg)

    async def _on_answer(self, msg: AnswerMessage) -> None:
        await self.negotiation.on_answer(msg)

    async def _on_ice(self, msg: IceMessage) -> None:
        await self.negotiation.on_ice_candidate(msg)

    async def _on_playback(self, msg) -> None:
        if self.surface.has_remote:
            logger.debug("Live remote stream is authoritative; %s ignored", msg.type)
            return
        if msg.type == "play":
            self.surface.play(msg.time)
        elif msg.type == "pause":
            self.surface.pause(msg.time)
        else:
            self.surface.seek(msg.time)
        logger.info("Applied %s at %.2fs", msg.type, msg.time)

    async def _on_screen_stopped(self, msg) -> None:
        await self.surface.clear()
        logger.info("Host stopped the stream")

    async def _local_candidate(self, peer_id: str, candidate) -> None:
        await self.negotiation.send_candidate(peer_id, candidate)
