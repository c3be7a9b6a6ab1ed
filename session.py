"""
Session persistence: library, queue, cursor and playback flags.

Stored in QSettings next to the rest of the user preferences. Anything that
fails to parse is dropped and the session starts with an empty library.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Optional

from PySide6 import QtCore

from config import APP_NAME, DEFAULT_VOLUME, ORG_NAME
from library import TrackCollection
from models import RepeatMode, origin_from_dict, origin_to_dict
from playqueue import PlaybackQueue
from utils import clamp

logger = logging.getLogger(__name__)

KEY_LIBRARY = "session/library"
KEY_QUEUE = "session/queue"
KEY_CURSOR = "session/cursor"
KEY_SHUFFLE = "playback/shuffle"
KEY_REPEAT = "playback/repeat"
KEY_VOLUME = "audio/volume"


@dataclass
class SessionState:
    tracks: list[dict] = field(default_factory=list)
    queue: list[int] = field(default_factory=list)
    cursor: Optional[int] = None
    shuffle: bool = False
    repeat: RepeatMode = RepeatMode.OFF
    volume: float = DEFAULT_VOLUME

    @classmethod
    def capture(cls, collection: TrackCollection, play_queue: PlaybackQueue, volume: float) -> "SessionState":
        tracks = collection.all()
        index_of = {track.id: i for i, track in enumerate(tracks)}
        queue_indices = [index_of[track_id] for track_id in play_queue.ids() if track_id in index_of]
        return cls(
            tracks=[
                {
                    "origin": origin_to_dict(track.origin),
                    "title": track.title,
                    "duration": track.duration_sec,
                    "artist": track.artist,
                    "album": track.album,
                }
                for track in tracks
            ],
            queue=queue_indices,
            cursor=play_queue.cursor_index(),
            shuffle=play_queue.shuffle,
            repeat=play_queue.repeat,
            volume=volume,
        )

    def apply_to(self, collection: TrackCollection, play_queue: PlaybackQueue) -> list[int]:
        """Load the saved tracks and queue. Returns the new library ids in saved order."""
        ids: list[int] = []
        for record in self.tracks:
            ids.append(
                collection.add_known(
                    origin_from_dict(record["origin"]),
                    title=str(record.get("title") or ""),
                    duration_sec=record.get("duration"),
                    artist=str(record.get("artist") or ""),
                    album=str(record.get("album") or ""),
                )
            )
        queued = [ids[i] for i in self.queue if 0 <= i < len(ids)]
        play_queue.set_repeat(self.repeat)
        play_queue.restore(queued, self.cursor, self.shuffle)
        return ids


class SessionStore:
    def __init__(self, settings: Optional[QtCore.QSettings] = None):
        self.settings = settings or QtCore.QSettings(ORG_NAME, APP_NAME)

    def save(self, state: SessionState) -> None:
        self.settings.setValue(KEY_LIBRARY, json.dumps(state.tracks))
        self.settings.setValue(KEY_QUEUE, json.dumps(state.queue))
        self.settings.setValue(KEY_CURSOR, -1 if state.cursor is None else int(state.cursor))
        self.settings.setValue(KEY_SHUFFLE, bool(state.shuffle))
        self.settings.setValue(KEY_REPEAT, state.repeat.value)
        self.settings.setValue(KEY_VOLUME, float(state.volume))
        self.settings.sync()
        logger.debug("Saved session: %d track(s), %d queued", len(state.tracks), len(state.queue))

    def load(self) -> SessionState:
        try:
            state = self._read()
        except (ValueError, TypeError, KeyError, AttributeError) as e:
            logger.warning("Ignoring unreadable session state: %s", e)
            return SessionState(volume=self._read_volume())
        logger.debug("Loaded session: %d track(s), %d queued", len(state.tracks), len(state.queue))
        return state

    def clear(self) -> None:
        for key in (KEY_LIBRARY, KEY_QUEUE, KEY_CURSOR):
            self.settings.remove(key)

    def _read(self) -> SessionState:
        tracks = json.loads(str(self.settings.value(KEY_LIBRARY, "[]") or "[]"))
        queue_indices = json.loads(str(self.settings.value(KEY_QUEUE, "[]") or "[]"))
        if not isinstance(tracks, list) or not isinstance(queue_indices, list):
            raise ValueError("session lists are malformed")
        for record in tracks:
            if not isinstance(record, dict):
                raise ValueError(f"bad track record {record!r}")
            origin_from_dict(record["origin"])
            duration = record.get("duration")
            if duration is not None and not isinstance(duration, (int, float)):
                raise ValueError(f"bad duration {duration!r}")
        if not all(isinstance(i, int) for i in queue_indices):
            raise ValueError("queue indices must be integers")

        cursor = int(self.settings.value(KEY_CURSOR, -1))
        shuffle = self.settings.value(KEY_SHUFFLE, False, type=bool)
        repeat = RepeatMode.from_setting(str(self.settings.value(KEY_REPEAT, RepeatMode.OFF.value)))
        return SessionState(
            tracks=tracks,
            queue=queue_indices,
            cursor=cursor if 0 <= cursor < len(queue_indices) else None,
            shuffle=bool(shuffle),
            repeat=repeat,
            volume=self._read_volume(),
        )

    def _read_volume(self) -> float:
        try:
            volume = float(self.settings.value(KEY_VOLUME, DEFAULT_VOLUME))
        except (TypeError, ValueError):
            volume = DEFAULT_VOLUME
        return clamp(volume, 0.0, 1.0)
