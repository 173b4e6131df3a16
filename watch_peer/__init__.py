"""
Peer engine for watching a video together over WebRTC.

One participant hosts a room and streams a local file or URL to every guest
through a mesh of peer connections; playback intents are relayed through the
signaling server.
"""

from .config import QualityMode
from .coordinator import RoomCoordinator
from .events import EventChannel, EventKind, SessionEvent
from .relay_directory import RelayDirectoryCache
from .state import Role, Session
from .transport import SignalingChannel

__all__ = [
    "EventChannel",
    "EventKind",
    "QualityMode",
    "RelayDirectoryCache",
    "Role",
    "RoomCoordinator",
    "Session",
    "SessionEvent",
    "SignalingChannel",
]
