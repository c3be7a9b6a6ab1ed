"""Error types shared by the library, queue and playback engine."""

from __future__ import annotations

from enum import Enum
from typing import Optional


class SourceErrorKind(Enum):
    NOT_FOUND = "not_found"
    UNSUPPORTED = "unsupported"
    NETWORK_UNAVAILABLE = "network_unavailable"
    DECODE_ERROR = "decode_error"
    TIMEOUT = "timeout"


class SourceError(Exception):
    """Raised when a track cannot be opened, decoded or seeked."""

    def __init__(self, kind: SourceErrorKind, message: str, cause: Optional[BaseException] = None):
        self.kind = kind
        self.message = message
        self.cause = cause
        super().__init__(f"{kind.value}: {message}")

    @property
    def retryable(self) -> bool:
        return self.kind in (SourceErrorKind.NETWORK_UNAVAILABLE, SourceErrorKind.TIMEOUT)


class ResolverFailure(Enum):
    NOT_FOUND = "not_found"
    UNAVAILABLE = "unavailable"
    TIMEOUT = "timeout"


class ResolverError(Exception):
    """Raised when a remote URL cannot be turned into a playable stream."""

    def __init__(self, failure: ResolverFailure, url: str, message: str = ""):
        self.failure = failure
        self.url = url
        super().__init__(message or f"{failure.value}: {url}")


class TrackImportError(Exception):
    """Raised for a single file that could not be added to the collection."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"{path}: {reason}")


class QueueError(Exception):
    pass


class EmptyQueueError(QueueError):
    """Raised when an operation needs a current entry and the queue has none."""

    def __init__(self, message: str = "Queue is empty"):
        super().__init__(message)


class SinkError(Exception):
    """Raised when the audio output device cannot be opened."""

    pass
