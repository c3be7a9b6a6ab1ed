from __future__ import annotations

import os
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Optional, Union


@dataclass(frozen=True)
class BufferPreset:
    blocksize_frames: int
    latency: str | float
    target_sec: float
    high_sec: float
    low_sec: float
    ring_max_seconds: float


@dataclass(frozen=True)
class LocalOrigin:
    path: str

    @property
    def location(self) -> str:
        return self.path


@dataclass(frozen=True)
class RemoteOrigin:
    url: str

    @property
    def location(self) -> str:
        return self.url


Origin = Union[LocalOrigin, RemoteOrigin]


def origin_to_dict(origin: Origin) -> dict:
    if isinstance(origin, RemoteOrigin):
        return {"kind": "remote", "url": origin.url}
    return {"kind": "local", "path": origin.path}


def origin_from_dict(data: dict) -> Origin:
    kind = data.get("kind")
    if kind == "remote" and data.get("url"):
        return RemoteOrigin(str(data["url"]))
    if kind == "local" and data.get("path"):
        return LocalOrigin(str(data["path"]))
    raise ValueError(f"Unrecognised origin record: {data!r}")


@dataclass(frozen=True)
class Track:
    id: int
    title: str
    origin: Origin
    duration_sec: Optional[float] = None
    artist: str = ""
    album: str = ""

    @property
    def is_remote(self) -> bool:
        return isinstance(self.origin, RemoteOrigin)

    @property
    def location(self) -> str:
        return self.origin.location


@dataclass
class TrackMetadata:
    duration_sec: float
    artist: str
    album: str
    title: str
    readable: bool = True


@dataclass(frozen=True)
class ResolvedStream:
    url: str
    title: str
    duration_sec: Optional[float]
    seekable: bool
    source_url: str


@dataclass(frozen=True)
class FailureRecord:
    track_id: int
    title: str
    kind: str
    reason: str


@dataclass(frozen=True)
class ImportFailure:
    path: str
    reason: str


@dataclass
class ImportReport:
    added: list[int] = field(default_factory=list)
    errors: list[ImportFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    def merge(self, other: "ImportReport") -> None:
        self.added.extend(other.added)
        self.errors.extend(other.errors)


def format_track_title(track: Track) -> str:
    title = track.title or os.path.basename(track.location)
    artist = track.artist.strip()
    if artist:
        return f"{artist} - {title}"
    return title


class PlayerState(Enum):
    STOPPED = auto()
    LOADING = auto()
    PLAYING = auto()
    PAUSED = auto()
    FINISHED = auto()
    FAILED = auto()


class RepeatMode(Enum):
    OFF = "off"
    ALL = "all"
    ONE = "one"

    @classmethod
    def from_setting(cls, value: str) -> "RepeatMode":
        for mode in cls:
            if mode.value == value:
                return mode
        return cls.OFF
