import secrets
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Dict, Optional, Set, Tuple

from .config import DEFAULT_QUALITY, QualityMode
from .events import EventChannel

if TYPE_CHECKING:
    from .media import OutgoingStream
    from .peers import PeerEntry


class Role(str, Enum):
    HOST = "host"
    GUEST = "guest"


def generate_room_id() -> str:
    return "room-" + secrets.token_hex(3)


@dataclass
class Session:
    """Everything one room instance knows.

    Components receive the session by reference; nothing here is module
    level, so several sessions can coexist in one process.
    """

    room_id: str
    role: Role
    self_id: Optional[str] = None
    peers: Dict[str, "PeerEntry"] = field(default_factory=dict)
    pending: Set[str] = field(default_factory=set)
    seen_offer_fingerprints: Set[str] = field(default_factory=set)
    # (sender id, digest of the answer sdp)
    seen_answers: Set[Tuple[str, str]] = field(default_factory=set)
    outgoing: Optional["OutgoingStream"] = None
    quality: QualityMode = DEFAULT_QUALITY
    events: EventChannel = field(default_factory=EventChannel)

    @property
    def is_host(self) -> bool:
        return self.role is Role.HOST

    @property
    def streaming(self) -> bool:
        return self.outgoing is not None
