"""
Signaling message variants.

One model per message type; inbound JSON is validated into exactly one of
them (discriminated on ``type``) before any handler sees it.
"""

import hashlib
from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, model_validator

from .config import FINGERPRINT_LENGTH
from .errors import MalformedMessage


def offer_fingerprint(sdp: str) -> str:
    """Short stable digest of a session description, used for dedup."""
    return hashlib.sha1(sdp.encode("utf-8")).hexdigest()[:FINGERPRINT_LENGTH]


class _Message(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    scope: Optional[str] = None


class SessionDescription(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: Literal["offer", "answer"]
    sdp: str


class CandidatePayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    candidate: str = ""
    sdpMid: Optional[str] = None
    sdpMLineIndex: Optional[int] = None


# ---------- client -> server ----------
class CreateMessage(_Message):
    type: Literal["create"] = "create"
    roomId: str = Field(min_length=1)


class JoinMessage(_Message):
    type: Literal["join"] = "join"
    roomId: str = Field(min_length=1)


# ---------- server -> client ----------
class CreatedMessage(_Message):
    type: Literal["created"] = "created"
    id: str


class JoinedMessage(_Message):
    type: Literal["joined"] = "joined"
    id: str


class NewPeerMessage(_Message):
    type: Literal["new-peer"] = "new-peer"
    id: str


class ErrorMessage(_Message):
    type: Literal["error"] = "error"
    message: str = ""


# ---------- peer to peer (relayed) ----------
class OfferMessage(_Message):
    type: Literal["offer"] = "offer"
    to: Optional[str] = None
    from_: str = Field(alias="from")
    roomId: Optional[str] = None
    sdp: SessionDescription
    offerFingerprint: Optional[str] = None

    @model_validator(mode="after")
    def _fill_fingerprint(self):
        if not self.offerFingerprint:
            self.offerFingerprint = offer_fingerprint(self.sdp.sdp)
        return self


class AnswerMessage(_Message):
    type: Literal["answer"] = "answer"
    to: Optional[str] = None
    from_: str = Field(alias="from")
    roomId: Optional[str] = None
    sdp: SessionDescription


class IceMessage(_Message):
    type: Literal["ice"] = "ice"
    to: Optional[str] = None
    from_: str = Field(alias="from")
    roomId: Optional[str] = None
    candidate: Optional[CandidatePayload] = None


# ---------- playback ----------
class PlayMessage(_Message):
    type: Literal["play"] = "play"
    roomId: Optional[str] = None
    time: float = 0.0


class PauseMessage(_Message):
    type: Literal["pause"] = "pause"
    roomId: Optional[str] = None
    time: float = 0.0


class SeekMessage(_Message):
    type: Literal["seek"] = "seek"
    roomId: Optional[str] = None
    time: float = 0.0


class ScreenStoppedMessage(_Message):
    type: Literal["screen-stopped"] = "screen-stopped"
    roomId: Optional[str] = None


SignalMessage = Annotated[
    Union[
        CreateMessage,
        JoinMessage,
        CreatedMessage,
        JoinedMessage,
        NewPeerMessage,
        ErrorMessage,
        OfferMessage,
        AnswerMessage,
        IceMessage,
        PlayMessage,
        PauseMessage,
        SeekMessage,
        ScreenStoppedMessage,
    ],
    Field(discriminator="type"),
]

_adapter = TypeAdapter(SignalMessage)

PLAYBACK_TYPES = ("play", "pause", "seek")


def parse_message(data: Any):
    """Validate a decoded JSON object into its message variant.

    Raises MalformedMessage for anything that is not one of the known
    variants with its required fields.
    """
    if not isinstance(data, dict):
        raise MalformedMessage("message is not an object", data)
    try:
        return _adapter.validate_python(data)
    except ValidationError as exc:
        raise MalformedMessage(
            f"invalid {data.get('type')!r} message: {exc.error_count()} error(s)", data
        ) from exc


def to_wire(message: _Message) -> Dict[str, Any]:
    return message.model_dump(by_alias=True, exclude_none=True)
