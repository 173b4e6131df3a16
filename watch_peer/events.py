"""
Structured failure/diagnostic events.

Nothing in the engine raises out of a message handler; instead failures are
logged and published here so callers and tests can observe them.
"""

import logging
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Deque, List, Optional

logger = logging.getLogger("watch.events")


class EventKind(str, Enum):
    SEND_DROPPED = "send-dropped"
    NEGOTIATION_FAILED = "negotiation-failed"
    ANSWER_DROPPED = "answer-dropped"
    CANDIDATE_FAILED = "candidate-failed"
    CAPTURE_UNSUPPORTED = "capture-unsupported"
    PEER_STATE = "peer-state"
    RELAY_FALLBACK = "relay-fallback"
    STREAM_ENDED = "stream-ended"


@dataclass
class SessionEvent:
    kind: EventKind
    peer_id: Optional[str] = None
    detail: str = ""
    error: Optional[BaseException] = None


class EventChannel:
    def __init__(self, maxlen: int = 256):
        self.history: Deque[SessionEvent] = deque(maxlen=maxlen)
        self._subscribers: List[Callable[[SessionEvent], None]] = []

    def subscribe(self, callback: Callable[[SessionEvent], None]) -> None:
        self._subscribers.append(callback)

    def emit(
        self,
        kind: EventKind,
        peer_id: Optional[str] = None,
        detail: str = "",
        error: Optional[BaseException] = None,
    ) -> SessionEvent:
        event = SessionEvent(kind, peer_id, detail, error)
        self.history.append(event)
        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception:
                logger.exception("Event subscriber failed for %s", kind.value)
        return event

    def of_kind(self, kind: EventKind) -> List[SessionEvent]:
        return [e for e in self.history if e.kind == kind]
