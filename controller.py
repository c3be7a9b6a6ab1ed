"""
Player controller: turns UI intents into library, queue and engine calls.

Widgets talk to this class only. It owns the wiring to the collaborators
that live outside the playback core: the file picker, the stream resolver
and the session store.
"""

from __future__ import annotations

import logging
import os
from typing import Callable, Optional

from PySide6 import QtCore

from audio.engine import PlaybackEngine
from audio.resolver import StreamResolver
from audio.sink import AudioSink
from audio.source import SourceOpener
from config import COLLECTIONS_DIR, MEDIA_EXTENSIONS, VOLUME_STEP
from errors import TrackImportError
from library import TrackCollection
from models import FailureRecord, ImportReport, PlayerState, RemoteOrigin, RepeatMode, Track
from playqueue import PlaybackQueue
from session import SessionState, SessionStore
from utils import clamp, is_remote_url

logger = logging.getLogger(__name__)

# picker(mode, file_filter) -> list of paths, or None when the user cancels
Picker = Callable[[str, Optional[str]], Optional[list[str]]]

AUDIO_FILE_FILTER = "Audio files ({});;All files (*)".format(
    " ".join(f"*{ext}" for ext in sorted(MEDIA_EXTENSIONS))
)
_IDLE_STATES = (PlayerState.STOPPED, PlayerState.FINISHED, PlayerState.FAILED)


class PlayerController(QtCore.QObject):
    statusChanged = QtCore.Signal(str)
    libraryChanged = QtCore.Signal()
    queueChanged = QtCore.Signal()
    stateChanged = QtCore.Signal(object)    # PlayerState
    trackChanged = QtCore.Signal(object)    # Track or None
    durationChanged = QtCore.Signal(float)
    volumeChanged = QtCore.Signal(float)
    errorOccurred = QtCore.Signal(object)   # FailureRecord

    def __init__(
        self,
        collection: TrackCollection,
        play_queue: PlaybackQueue,
        engine: PlaybackEngine,
        *,
        resolver: Optional[StreamResolver] = None,
        session: Optional[SessionStore] = None,
        picker: Optional[Picker] = None,
        collections_dir: Optional[str] = None,
        parent=None,
    ):
        super().__init__(parent)
        self.collection = collection
        self.queue = play_queue
        self.engine = engine
        self._resolver = resolver
        self._session = session
        self._picker = picker
        self._collections_dir = collections_dir

        self.collection.on_removed(self._on_track_removed)
        self.engine.stateChanged.connect(self.stateChanged)
        self.engine.trackChanged.connect(self._on_engine_track_changed)
        self.engine.durationChanged.connect(self.durationChanged)
        self.engine.volumeChanged.connect(self.volumeChanged)
        self.engine.errorOccurred.connect(self._on_engine_error)

    @property
    def state(self) -> PlayerState:
        return self.engine.state

    def set_picker(self, picker: Optional[Picker]) -> None:
        self._picker = picker

    # -------------------------------------------------------------------------
    # Import intents
    # -------------------------------------------------------------------------

    def open_files(self, paths: list[str]) -> ImportReport:
        report = self.collection.add_files(list(paths))
        self.accept_import(report)
        return report

    def open_folder(self, folder: str) -> ImportReport:
        report = self.collection.add_folder(folder)
        self.accept_import(report)
        return report

    def choose_paths(self, mode: str) -> Optional[list[str]]:
        """Ask the picker for files (``"file"``) or a folder (``"folder"``); None if cancelled."""
        if self._picker is None:
            logger.warning("No file picker available")
            return None
        file_filter = AUDIO_FILE_FILTER if mode == "file" else None
        paths = self._picker(mode, file_filter)
        return list(paths) if paths else None

    def open_with_picker(self, mode: str) -> Optional[ImportReport]:
        """Pick and import in one go. A cancelled dialog is not an error."""
        paths = self.choose_paths(mode)
        if not paths:
            return None
        if mode == "folder":
            report = ImportReport()
            for folder in paths:
                report.merge(self.collection.add_folder(folder))
            self.accept_import(report)
            return report
        return self.open_files(paths)

    def accept_import(self, report: ImportReport) -> None:
        """Queue freshly imported tracks; start playing if the player is idle."""
        was_idle = self.engine.state in _IDLE_STATES
        self.queue.extend(report.added)
        if report.added:
            self.libraryChanged.emit()
            self.queueChanged.emit()

        message = f"Added {len(report.added)} track(s)"
        if report.errors:
            message += f", {len(report.errors)} could not be imported"
            for failure in report.errors:
                logger.info("Import failed: %s (%s)", failure.path, failure.reason)
        self.statusChanged.emit(message)

        if was_idle and report.added:
            self.play_track(report.added[0])

    def open_url(self, url: str) -> Optional[int]:
        url = (url or "").strip()
        if not url or not is_remote_url(url):
            self.statusChanged.emit("Please enter a valid YouTube URL")
            return None
        was_idle = self.engine.state in _IDLE_STATES
        track_id = self.collection.add(RemoteOrigin(url))
        self.queue.enqueue(track_id)
        self.libraryChanged.emit()
        self.queueChanged.emit()
        self.statusChanged.emit(f"Added YouTube audio: {url}")
        if was_idle:
            self.play_track(track_id)
        return track_id

    def import_collections(self) -> Optional[ImportReport]:
        """Load the local collections folder into the library without queueing it."""
        folder = self._collections_dir
        if not folder or not os.path.isdir(folder):
            return None
        report = self.collection.add_folder(folder)
        if report.added:
            self.libraryChanged.emit()
        logger.info("Collections: %d track(s) from %s", len(report.added), folder)
        return report

    # -------------------------------------------------------------------------
    # Transport intents
    # -------------------------------------------------------------------------

    def play_track(self, track_id: int) -> bool:
        if track_id not in self.collection:
            self.statusChanged.emit("That track is no longer in the library")
            return False
        if track_id not in self.queue:
            self.queue.enqueue(track_id)
            self.queueChanged.emit()
        self.queue.jump_to(track_id)
        return self.engine.play(track_id)

    def play_pause(self) -> None:
        state = self.engine.state
        if state == PlayerState.PLAYING:
            self.engine.pause()
            return
        if state == PlayerState.PAUSED:
            self.engine.resume()
            return
        if state == PlayerState.LOADING:
            return
        track_id = self.queue.current()
        if track_id is None:
            track_id = self.queue.next()
        if track_id is None:
            self.statusChanged.emit("Queue is empty")
            return
        self.engine.play(track_id)

    def next_track(self) -> Optional[int]:
        track_id = self.queue.next()
        if track_id is None:
            self.engine.stop()
            self.statusChanged.emit("End of queue")
            return None
        self.engine.play(track_id)
        return track_id

    def previous_track(self) -> Optional[int]:
        track_id = self.queue.previous()
        if track_id is None:
            self.statusChanged.emit("Start of queue")
            return None
        self.engine.play(track_id)
        return track_id

    def stop(self) -> None:
        self.engine.stop()

    def seek(self, seconds: float) -> bool:
        return self.engine.seek(seconds)

    def seek_fraction(self, frac: float) -> bool:
        duration = self.engine.duration()
        if duration <= 0:
            return False
        return self.engine.seek(clamp(float(frac), 0.0, 1.0) * duration)

    def set_volume(self, level: float) -> float:
        return self.engine.set_volume(level)

    def volume_up(self) -> float:
        return self.engine.set_volume(self.engine.volume + VOLUME_STEP)

    def volume_down(self) -> float:
        return self.engine.set_volume(self.engine.volume - VOLUME_STEP)

    def set_shuffle(self, enabled: bool) -> None:
        self.queue.set_shuffle(enabled)
        self.queueChanged.emit()

    def set_repeat(self, mode: RepeatMode) -> None:
        self.queue.set_repeat(mode)

    def retry(self) -> bool:
        return self.engine.retry()

    def tick(self) -> None:
        self.engine.process_events()

    # -------------------------------------------------------------------------
    # Library and queue editing
    # -------------------------------------------------------------------------

    def remove_track(self, track_id: int) -> bool:
        """Drop a track from the library, and with it from the queue."""
        return self.collection.remove(track_id)

    def remove_from_queue(self, track_id: int) -> None:
        was_current = self.queue.remove(track_id)
        if was_current and self.engine.current_track_id() == track_id:
            self._follow_cursor()
        self.queueChanged.emit()

    def clear_queue(self) -> None:
        self.queue.clear()
        self.engine.stop()
        self.queueChanged.emit()

    def search(self, text: str, *, hint: bool = True) -> list[Track]:
        """Library tracks matching text. With hint, an empty result suggests streaming instead."""
        results = list(self.collection.search(text))
        if hint and text and not results:
            if is_remote_url(text):
                self.statusChanged.emit("No match in the library. Press Enter to stream this URL")
            else:
                self.statusChanged.emit(f"No tracks match '{text}'. Paste a YouTube URL to stream it")
        return results

    def failures(self) -> list[FailureRecord]:
        return self.engine.error_log()

    def queued_tracks(self) -> list[Track]:
        tracks = []
        for track_id in self.queue.order():
            track = self.collection.get(track_id)
            if track is not None:
                tracks.append(track)
        return tracks

    def _on_track_removed(self, track_id: int) -> None:
        self.queue.remove_all(track_id)
        if self.engine.current_track_id() == track_id:
            self._follow_cursor()
        self.libraryChanged.emit()
        self.queueChanged.emit()

    def _follow_cursor(self) -> None:
        if self.engine.state not in (PlayerState.PLAYING, PlayerState.PAUSED, PlayerState.LOADING):
            self.engine.stop()
            return
        track_id = self.queue.current()
        if track_id is None:
            self.engine.stop()
        else:
            self.engine.play(track_id)

    # -------------------------------------------------------------------------
    # Engine feedback
    # -------------------------------------------------------------------------

    def _on_engine_track_changed(self, track: Optional[Track]) -> None:
        self.trackChanged.emit(track)
        self.queueChanged.emit()

    def _on_engine_error(self, record: FailureRecord) -> None:
        self.statusChanged.emit(f"Skipped {record.title}: {record.reason}")
        self.errorOccurred.emit(record)

    # -------------------------------------------------------------------------
    # Session
    # -------------------------------------------------------------------------

    def save_session(self) -> None:
        if self._session is None:
            return
        self._session.save(SessionState.capture(self.collection, self.queue, self.engine.volume))

    def restore_session(self) -> None:
        if self._session is None:
            return
        state = self._session.load()
        try:
            state.apply_to(self.collection, self.queue)
        except (TrackImportError, ValueError, KeyError) as e:
            logger.warning("Could not restore session: %s", e)
            self.queue.clear()
            self.collection.clear()
        self.engine.set_volume(state.volume)
        self.libraryChanged.emit()
        self.queueChanged.emit()

    def shutdown(self) -> None:
        self.save_session()
        self.engine.shutdown()
        if self._resolver is not None:
            self._resolver.shutdown()


def build_controller(
    *,
    picker: Optional[Picker] = None,
    settings: Optional[QtCore.QSettings] = None,
    parent=None,
) -> PlayerController:
    resolver = StreamResolver()
    collection = TrackCollection()
    play_queue = PlaybackQueue()
    sink = AudioSink()
    engine = PlaybackEngine(
        collection,
        play_queue,
        SourceOpener(resolver),
        sink,
        parent=parent,
    )
    return PlayerController(
        collection,
        play_queue,
        engine,
        resolver=resolver,
        session=SessionStore(settings),
        picker=picker,
        collections_dir=COLLECTIONS_DIR,
        parent=parent,
    )
