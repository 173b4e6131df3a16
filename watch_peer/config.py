"""
Runtime configuration for the watch-together peer engine.

Values are module constants; the ones that depend on the deployment can be
overridden from the environment.
"""

import os
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional

# ---------- Config ----------
SIGNALING_URL = os.getenv("WATCH_SIGNALING_URL", "ws://localhost:8000/ws")
ICE_ENDPOINT = os.getenv("WATCH_ICE_ENDPOINT", "http://localhost:8000/ice")
SCOPE = os.getenv("WATCH_SCOPE", "watch")

DEFAULT_ICE_SERVERS: List[Dict[str, str]] = [
    {"urls": "stun:stun.l.google.com:19302"}
]
ICE_CACHE_TTL = 60.0  # seconds, successful directory fetch
ICE_FALLBACK_TTL = 30.0  # seconds, fallback list
ICE_FETCH_TIMEOUT = 5.0

SEND_RETRY_DELAY = 0.3
RECONNECT_BACKOFF = (2.0, 4.0, 8.0, 15.0)
RECONNECT_MAX_DELAY = 30.0
WS_HEARTBEAT = 30.0

CONTROL_CHANNEL_LABEL = "ctrl"
FINGERPRINT_LENGTH = 16
# ----------------------------


class QualityMode(str, Enum):
    AUTO = "auto"
    HIGH = "high"
    ULTRA = "ultra"

    @property
    def rank(self) -> int:
        return list(QualityMode).index(self)

    def __lt__(self, other):
        if not isinstance(other, QualityMode):
            return NotImplemented
        return self.rank < other.rank


@dataclass(frozen=True)
class QualityProfile:
    """Target encoding for one quality level.

    ``width``/``height`` are None for pass-through capture, where the
    resolution follows the source.
    """

    mode: QualityMode
    width: Optional[int]
    height: Optional[int]
    fps: int
    bitrate: int

    @property
    def synthetic(self) -> bool:
        return self.width is not None and self.height is not None

    @property
    def label(self) -> str:
        if not self.synthetic:
            return f"{self.mode.value} (source)@{self.fps}"
        return f"{self.mode.value} {self.width}x{self.height}@{self.fps}"


QUALITY_PROFILES: Dict[QualityMode, QualityProfile] = {
    QualityMode.AUTO: QualityProfile(QualityMode.AUTO, None, None, 30, 600_000),
    QualityMode.HIGH: QualityProfile(QualityMode.HIGH, 1280, 720, 30, 1_500_000),
    QualityMode.ULTRA: QualityProfile(QualityMode.ULTRA, 1920, 1080, 30, 3_500_000),
}
DEFAULT_QUALITY = QualityMode.AUTO


def profile_for(mode) -> QualityProfile:
    """Look up a quality profile by enum member or by its string value."""
    return QUALITY_PROFILES[QualityMode(mode)]
