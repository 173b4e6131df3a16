"""
Offer/answer/candidate exchange.

The host is always the offerer. Guests answer every new offer; the host
applies answers. Redelivered offers and answers are recognised through the
session's ledgers and discarded, since the signaling channel may deliver the
same message more than once while a negotiation is suspended on the network.
"""

import logging
from typing import Awaitable, Callable

from aiortc import RTCIceCandidate, RTCSessionDescription
from aiortc.sdp import candidate_from_sdp, candidate_to_sdp

from .events import EventKind
from .messages import (
    AnswerMessage,
    CandidatePayload,
    IceMessage,
    OfferMessage,
    SessionDescription,
    offer_fingerprint,
)
from .peers import PeerConnectionManager, PeerEntry
from .state import Session

logger = logging.getLogger("watch.negotiation")

Send = Callable[[object], Awaitable[bool]]


def parse_candidate(payload: CandidatePayload) -> RTCIceCandidate:
    text = payload.candidate
    if text.startswith("candidate:"):
        text = text.split(":", 1)[1]
    candidate = candidate_from_sdp(text)
    candidate.sdpMid = payload.sdpMid
    candidate.sdpMLineIndex = payload.sdpMLineIndex
    return candidate


def describe(pc) -> SessionDescription:
    local = pc.localDescription
    return SessionDescription(type=local.type, sdp=local.sdp)


class NegotiationProtocol:
    def __init__(self, session: Session, peers: PeerConnectionManager, send: Send):
        self.session = session
        self.peers = peers
        self.send = send

    def _failed(self, peer_id: str, step: str, exc: BaseException) -> None:
        logger.warning("[pc:%s] %s failed: %s", peer_id, step, exc)
        self.session.events.emit(
            EventKind.NEGOTIATION_FAILED, peer_id=peer_id, detail=step, error=exc
        )

    async def send_offer(self, peer_id: str) -> bool:
        if not self.session.is_host:
            logger.warning("Only the host sends offers; ignoring offer to %s", peer_id)
            return False
        entry = self.session.peers.get(peer_id)
        if entry is None:
            logger.warning("No pc for %s; cannot offer", peer_id)
            return False
        try:
            offer = await entry.pc.createOffer()
            await entry.pc.setLocalDescription(offer)
            sdp = describe(entry.pc)
        except Exception as exc:
            self._failed(peer_id, "offer", exc)
            return False

        fingerprint = offer_fingerprint(sdp.sdp)
        entry.outstanding_offer = fingerprint
        sent = await self.send(
            OfferMessage(
                to=peer_id,
                from_=self.session.self_id or "",
                roomId=self.session.room_id,
                sdp=sdp,
                offerFingerprint=fingerprint,
            )
        )
        logger.info("Offer %s sent to %s", fingerprint, peer_id)
        return sent

    async def on_offer(self, msg: OfferMessage) -> bool:
        """Guest side: answer an offer unless it was already handled."""
        peer_id = msg.from_
        fingerprint = msg.offerFingerprint
        if fingerprint in self.session.seen_offer_fingerprints:
            logger.info("Duplicate offer %s from %s ignored", fingerprint, peer_id)
            return False
        self.session.seen_offer_fingerprints.add(fingerprint)

        logger.info("Guest handling offer %s from %s", fingerprint, peer_id)
        try:
            entry = await self.peers.ensure_connection(peer_id)
            await entry.pc.setRemoteDescription(
                RTCSessionDescription(sdp=msg.sdp.sdp, type=msg.sdp.type)
            )
            answer = await entry.pc.createAnswer()
            await entry.pc.setLocalDescription(answer)
            sdp = describe(entry.pc)
        except Exception as exc:
            self._failed(peer_id, "answer", exc)
            return False

        await self.send(
            AnswerMessage(
                to=peer_id,
                from_=self.session.self_id or "",
                roomId=self.session.room_id,
                sdp=sdp,
            )
        )
        logger.info("Answer sent to %s", peer_id)
        return True

    async def on_answer(self, msg: AnswerMessage) -> bool:
        """Host side: apply a guest's answer to the offer outstanding on its pc.

        Answers are keyed by their own content, so a redelivered answer stays a
        duplicate even after a later renegotiation.
        """
        peer_id = msg.from_
        entry = self.session.peers.get(peer_id)
        key = (peer_id, offer_fingerprint(msg.sdp.sdp))
        if key in self.session.seen_answers:
            logger.info("Duplicate answer from %s ignored", peer_id)
            return False
        self.session.seen_answers.add(key)

        if entry is None:
            logger.info("Answer from %s but pc does not exist yet; dropped", peer_id)
            self.session.events.emit(
                EventKind.ANSWER_DROPPED, peer_id=peer_id, detail="no peer connection"
            )
            return False
        if entry.outstanding_offer is None or entry.negotiation_state != "have-local-offer":
            logger.info("Answer from %s with no offer outstanding; dropped", peer_id)
            self.session.events.emit(
                EventKind.ANSWER_DROPPED, peer_id=peer_id, detail="no outstanding offer"
            )
            return False
        try:
            await entry.pc.setRemoteDescription(
                RTCSessionDescription(sdp=msg.sdp.sdp, type=msg.sdp.type)
            )
        except Exception as exc:
            self._failed(peer_id, "setRemoteDescription(answer)", exc)
            return False
        logger.info("Answer set from %s", peer_id)
        return True

    async def on_ice_candidate(self, msg: IceMessage) -> int:
        """Apply a remote candidate; returns how many connections accepted it.

        A candidate from an unknown sender is tried on every connection.
        """
        payload = msg.candidate
        if payload is None or not payload.candidate:
            logger.debug("End of candidates from %s", msg.from_)
            return 0
        try:
            candidate = parse_candidate(payload)
        except Exception as exc:
            logger.warning("Unparseable candidate from %s: %s", msg.from_, exc)
            self.session.events.emit(
                EventKind.CANDIDATE_FAILED, peer_id=msg.from_, detail="parse", error=exc
            )
            return 0

        entry = self.session.peers.get(msg.from_)
        targets = [entry] if entry is not None else list(self.session.peers.values())
        if entry is None:
            logger.debug("Candidate from unknown %s; trying %d pcs", msg.from_, len(targets))
        applied = 0
        for target in targets:
            if await self._add_candidate(target, candidate):
                applied += 1
        return applied

    async def _add_candidate(self, entry: PeerEntry, candidate: RTCIceCandidate) -> bool:
        try:
            await entry.pc.addIceCandidate(candidate)
            return True
        except Exception as exc:
            logger.debug("[pc:%s] addIceCandidate failed: %s", entry.peer_id, exc)
            self.session.events.emit(
                EventKind.CANDIDATE_FAILED, peer_id=entry.peer_id, error=exc
            )
            return False

    async def send_candidate(self, peer_id: str, candidate: RTCIceCandidate) -> None:
        payload = CandidatePayload(
            candidate="candidate:" + candidate_to_sdp(candidate),
            sdpMid=candidate.sdpMid,
            sdpMLineIndex=candidate.sdpMLineIndex,
        )
        await self.send(
            IceMessage(
                to=peer_id,
                from_=self.session.self_id or "",
                roomId=self.session.room_id,
                candidate=payload,
            )
        )
