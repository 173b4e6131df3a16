class WatchError(Exception):
    """Base class for errors raised by the watch-together engine."""


class MalformedMessage(WatchError, ValueError):
    """A signaling message failed validation at the boundary."""

    def __init__(self, message: str, payload=None):
        super().__init__(message)
        self.payload = payload


class CaptureUnsupported(WatchError):
    """The playback surface cannot produce the requested media."""
