from __future__ import annotations

import logging
import queue
import threading
import time
from collections import deque
from typing import Callable, Optional

from PySide6 import QtCore

from audio.source import END_OF_STREAM, AudioSource, SourceOpener
from config import (
    DEBUG_METRICS,
    DEFAULT_VOLUME,
    ERROR_LOG_SIZE,
    MAX_CONSECUTIVE_FAILURES,
)
from errors import SinkError, SourceError, SourceErrorKind
from library import TrackCollection
from models import FailureRecord, PlayerState, Track
from playqueue import PlaybackQueue
from utils import clamp

logger = logging.getLogger(__name__)

Spawner = Callable[[Callable[[], None], str], None]


def _spawn_thread(target: Callable[[], None], name: str) -> None:
    threading.Thread(target=target, name=name, daemon=True).start()


# -----------------------------
# Engine
# -----------------------------

class PlaybackEngine(QtCore.QObject):
    """
    Drives one AudioSource at a time through the output sink.

    Opening and decoding run on background threads. They never touch engine
    state directly: every outcome is posted to a completion channel as
    (kind, token, payload) and applied on the GUI thread by process_events().
    Each load carries the generation token current when it started, and
    anything arriving with an older token is discarded.
    """

    stateChanged = QtCore.Signal(object)    # PlayerState
    trackChanged = QtCore.Signal(object)    # Track or None
    durationChanged = QtCore.Signal(float)
    errorOccurred = QtCore.Signal(object)   # FailureRecord
    trackFinished = QtCore.Signal()
    volumeChanged = QtCore.Signal(float)

    def __init__(
        self,
        collection: TrackCollection,
        play_queue: PlaybackQueue,
        opener: SourceOpener,
        sink,
        *,
        max_consecutive_failures: int = MAX_CONSECUTIVE_FAILURES,
        error_log_size: int = ERROR_LOG_SIZE,
        volume: float = DEFAULT_VOLUME,
        block_frames: Optional[int] = None,
        spawn: Optional[Spawner] = None,
        clock: Callable[[], float] = time.monotonic,
        metrics_enabled: bool = DEBUG_METRICS,
        parent=None,
    ):
        super().__init__(parent)
        self._collection = collection
        self._queue = play_queue
        self._opener = opener
        self._sink = sink
        self._max_failures = max(1, int(max_consecutive_failures))
        self._block_frames = int(block_frames or getattr(sink, "block_frames", 1024)) * 2
        self._spawn = spawn or _spawn_thread
        self._clock = clock

        self.state = PlayerState.STOPPED
        self.track: Optional[Track] = None
        self.failure: Optional[str] = None

        self._volume = clamp(float(volume), 0.0, 1.0)
        self._sink.set_volume(self._volume)

        self._transition_lock = threading.RLock()
        self._events: queue.Queue = queue.Queue()
        self._token = 0
        self._stop_event: Optional[threading.Event] = None
        self._source: Optional[AudioSource] = None
        self._eof_pending = False

        self._position_sec = 0.0
        self._last_position_update = self._clock()

        self._consecutive_failures = 0
        self._error_log: deque[FailureRecord] = deque(maxlen=max(1, int(error_log_size)))

        self._metrics_enabled = bool(metrics_enabled)
        self._metrics_last_log = self._clock()

    # -------------------------------------------------------------------------
    # Transport
    # -------------------------------------------------------------------------

    @property
    def volume(self) -> float:
        return self._volume

    @property
    def token(self) -> int:
        return self._token

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    def current_track_id(self) -> Optional[int]:
        return self.track.id if self.track is not None else None

    def play(self, track_id: int) -> bool:
        """Start ``track_id`` from the beginning, replacing whatever is loaded."""
        with self._transition_lock:
            self._consecutive_failures = 0
            return self._start(track_id)

    def pause(self) -> None:
        with self._transition_lock:
            if self.state != PlayerState.PLAYING:
                return
            self._sync_position()
            self._sink.set_paused(True)
            self._set_state(PlayerState.PAUSED)

    def resume(self) -> None:
        with self._transition_lock:
            if self.state != PlayerState.PAUSED:
                return
            self._last_position_update = self._clock()
            self._sink.set_paused(False)
            self._set_state(PlayerState.PLAYING)

    def toggle_pause(self) -> None:
        if self.state == PlayerState.PLAYING:
            self.pause()
        elif self.state == PlayerState.PAUSED:
            self.resume()

    def stop(self) -> None:
        with self._transition_lock:
            self._release_source()
            self.failure = None
            self._position_sec = 0.0
            self._last_position_update = self._clock()
            self._set_state(PlayerState.STOPPED)

    def retry(self) -> bool:
        """Reload the track that failed last, including after the failure cap stopped playback."""
        with self._transition_lock:
            if self.failure is None or self.track is None:
                return False
            if self.state not in (PlayerState.FAILED, PlayerState.STOPPED):
                return False
            if self.track.id not in self._collection:
                return False
            return self.play(self.track.id)

    def set_volume(self, level: float) -> float:
        self._volume = clamp(float(level), 0.0, 1.0)
        self._sink.set_volume(self._volume)
        self.volumeChanged.emit(self._volume)
        return self._volume

    def position(self) -> float:
        if self.state == PlayerState.PLAYING:
            dt = max(0.0, self._clock() - self._last_position_update)
            pos = self._position_sec + dt
        else:
            pos = self._position_sec
        duration = self.duration()
        if duration > 0:
            pos = min(pos, duration)
        return pos

    def duration(self) -> float:
        if self._source is not None and self._source.duration_sec:
            return float(self._source.duration_sec)
        if self.track is not None and self.track.duration_sec:
            return float(self.track.duration_sec)
        return 0.0

    def seek(self, target_sec: float) -> bool:
        """
        Move playback to ``target_sec``.

        Returns False when nothing is playing or the source cannot seek;
        playback then simply carries on.
        """
        with self._transition_lock:
            source = self._source
            if source is None or self.state not in (PlayerState.PLAYING, PlayerState.PAUSED):
                return False
            if not source.seekable:
                logger.info("Seek rejected: %s is not seekable", self.track.location if self.track else "source")
                return False
            dur = self.duration()
            target_sec = clamp(float(target_sec), 0.0, dur) if dur > 0 else max(0.0, float(target_sec))

            # Retire the running pump; a fresh one repositions the decoder.
            if self._stop_event is not None:
                self._stop_event.set()
            token = self._next_token()
            stop_event = threading.Event()
            self._stop_event = stop_event
            self._eof_pending = False
            self._sink.claim(token)

            self._position_sec = target_sec
            self._last_position_update = self._clock()
            self._spawn(
                lambda: self._pump(token, source, None, stop_event, seek_to=target_sec),
                f"pump-seek-{token}",
            )
            return True

    def error_log(self) -> list[FailureRecord]:
        return list(self._error_log)

    def clear_error_log(self) -> None:
        self._error_log.clear()

    def shutdown(self) -> None:
        self.stop()
        close = getattr(self._sink, "close", None)
        if close is not None:
            close()

    # -------------------------------------------------------------------------
    # Completion channel
    # -------------------------------------------------------------------------

    def process_events(self) -> int:
        """Apply background completions on the calling (GUI) thread. Returns events handled."""
        handled = 0
        # Only what is queued right now; events posted meanwhile wait for the next tick.
        for _ in range(self._events.qsize()):
            try:
                kind, token, payload = self._events.get_nowait()
            except queue.Empty:
                break
            handled += 1
            with self._transition_lock:
                self._handle_event(kind, token, payload)

        with self._transition_lock:
            if self._eof_pending and self._sink.is_drained():
                self._on_finished()

        self.log_metrics_if_needed()
        return handled

    def _post(self, kind: str, token: int, payload=None) -> None:
        self._events.put((kind, token, payload))

    def _handle_event(self, kind: str, token: int, payload) -> None:
        if token != self._token:
            logger.debug("Dropping stale %s event (token %d, current %d)", kind, token, self._token)
            if kind == "ready":
                payload[0].close()
            return

        if kind == "ready":
            source, first = payload
            self._on_source_ready(token, source, first)
        elif kind == "eof":
            self._eof_pending = True
        elif kind == "error":
            self._on_source_error(payload)

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def _start(self, track_id: int) -> bool:
        track = self._collection.get(track_id)
        if track is None:
            logger.warning("Cannot play unknown track %s", track_id)
            return False

        # At most one source: the old one goes before the new one opens.
        self._release_source()
        token = self._next_token()
        stop_event = threading.Event()
        self._stop_event = stop_event

        self.track = track
        self.failure = None
        self._position_sec = 0.0
        self._last_position_update = self._clock()
        self._sink.set_paused(False)
        self._set_state(PlayerState.LOADING)
        self.trackChanged.emit(track)
        self.durationChanged.emit(float(track.duration_sec or 0.0))
        logger.debug("Loading track %d (%s), token %d", track.id, track.location, token)

        self._spawn(lambda: self._load(token, track, stop_event), f"load-{token}")
        return True

    def _on_source_ready(self, token: int, source: AudioSource, first) -> None:
        self._source = source
        self._sink.set_volume(self._volume)
        try:
            self._sink.claim(token)
            self._sink.start()
        except SinkError as e:
            self._fail_output(e)
            return

        self._refresh_track_from_source(source)
        self.durationChanged.emit(float(source.duration_sec or 0.0))
        primed = 0 if first is END_OF_STREAM else len(first)
        self._position_sec = max(0.0, (source.position_frames - primed) / float(source.sample_rate))
        self._last_position_update = self._clock()
        self._consecutive_failures = 0
        self._set_state(PlayerState.PLAYING)

        stop_event = self._stop_event
        self._spawn(lambda: self._pump(token, source, first, stop_event), f"pump-{token}")

    def _on_finished(self) -> None:
        self._eof_pending = False
        self._sync_position()
        self._set_state(PlayerState.FINISHED)
        self.trackFinished.emit()
        self._consecutive_failures = 0
        self._advance(auto=True)

    def _on_source_error(self, error: SourceError) -> None:
        track = self.track
        record = FailureRecord(
            track_id=track.id if track else -1,
            title=track.title if track else "",
            kind=error.kind.value,
            reason=error.message,
        )
        self._error_log.append(record)
        logger.warning("Playback failed for %s: %s", record.title or "<unknown>", error)

        self._release_source()
        self.failure = error.message
        self._set_state(PlayerState.FAILED)
        self.errorOccurred.emit(record)

        self._consecutive_failures += 1
        if self._consecutive_failures >= self._max_failures:
            logger.warning(
                "Stopping after %d consecutive failures", self._consecutive_failures
            )
            self._set_state(PlayerState.STOPPED)
            return
        self._advance(auto=False)

    def _fail_output(self, error: SinkError) -> None:
        logger.error("%s", error)
        self._release_source()
        self.failure = str(error)
        self._set_state(PlayerState.FAILED)
        track = self.track
        record = FailureRecord(
            track_id=track.id if track else -1,
            title=track.title if track else "",
            kind="output",
            reason=str(error),
        )
        self._error_log.append(record)
        self.errorOccurred.emit(record)

    def _advance(self, *, auto: bool) -> None:
        next_id = self._queue.next(auto=auto)
        if next_id is None:
            self._release_source()
            self._position_sec = 0.0
            self._set_state(PlayerState.STOPPED)
            return
        self._start(next_id)

    def _release_source(self) -> None:
        self._next_token()
        if self._stop_event is not None:
            self._stop_event.set()
            self._stop_event = None
        self._eof_pending = False
        source = self._source
        self._source = None
        if source is not None:
            source.close()
        self._sink.stop()

    def _next_token(self) -> int:
        self._token += 1
        return self._token

    def _refresh_track_from_source(self, source: AudioSource) -> None:
        track = self.track
        if track is None or not track.is_remote or track.id not in self._collection:
            return
        changes = {}
        if source.title and source.title != track.title:
            changes["title"] = source.title
        if source.duration_sec and source.duration_sec != track.duration_sec:
            changes["duration_sec"] = source.duration_sec
        if changes:
            self.track = self._collection.update(track.id, **changes)
            self.trackChanged.emit(self.track)

    # -------------------------------------------------------------------------
    # Background work
    # -------------------------------------------------------------------------

    def _load(self, token: int, track: Track, stop_event: threading.Event) -> None:
        attempts = 2 if track.is_remote else 1
        for attempt in range(attempts):
            if stop_event.is_set():
                return
            source: Optional[AudioSource] = None
            try:
                source = self._opener.open(track.origin)
                first = source.read_samples(self._block_frames)
            except SourceError as e:
                if source is not None:
                    source.close()
                if e.retryable and attempt + 1 < attempts and not stop_event.is_set():
                    logger.info("Retrying %s after %s", track.location, e.kind.value)
                    self._opener.invalidate(track.origin)
                    continue
                self._post("error", token, e)
                return
            except Exception as e:
                if source is not None:
                    source.close()
                logger.exception("Unexpected error opening %s", track.location)
                self._post("error", token, SourceError(SourceErrorKind.DECODE_ERROR, str(e), e))
                return
            # Superseded or shut down while opening: nobody will drain a "ready".
            if stop_event.is_set():
                source.close()
                return
            self._post("ready", token, (source, first))
            return

    def _pump(
        self,
        token: int,
        source: AudioSource,
        first,
        stop_event: threading.Event,
        seek_to: Optional[float] = None,
    ) -> None:
        try:
            if seek_to is not None:
                source.seek(seek_to)
                block = source.read_samples(self._block_frames)
            else:
                block = first
            while not stop_event.is_set():
                if block is END_OF_STREAM:
                    self._post("eof", token)
                    return
                if not self._sink.write(token, block, stop_event):
                    return
                if stop_event.is_set():
                    return
                block = source.read_samples(self._block_frames)
        except SourceError as e:
            if not stop_event.is_set():
                self._post("error", token, e)
        except Exception as e:
            if not stop_event.is_set():
                logger.exception("Decoder error")
                self._post("error", token, SourceError(SourceErrorKind.DECODE_ERROR, str(e), e))
        finally:
            self._sink.release(token)

    # -------------------------------------------------------------------------
    # Position and metrics
    # -------------------------------------------------------------------------

    def _sync_position(self) -> None:
        now = self._clock()
        if self.state == PlayerState.PLAYING:
            dt = now - self._last_position_update
            if dt > 0:
                self._position_sec += dt
        self._last_position_update = now

    def log_metrics_if_needed(self) -> None:
        now = self._clock()
        elapsed = now - self._metrics_last_log
        if elapsed < 1.0:
            return
        self._metrics_last_log = now
        underflows, overflows, ring_underruns = self._sink.consume_xruns()
        if underflows or overflows or ring_underruns:
            logger.debug(
                "Output xruns: cb_underflows=%d cb_overflows=%d ring_underruns=%d",
                underflows,
                overflows,
                ring_underruns,
            )
        if self._metrics_enabled and self.state == PlayerState.PLAYING:
            logger.info(
                "Audio metrics: buffer=%.2fs ring_underruns=%.2f/s cb_underflows=%.2f/s cb_overflows=%.2f/s",
                getattr(self._sink, "buffered_seconds", lambda: 0.0)(),
                ring_underruns / elapsed,
                underflows / elapsed,
                overflows / elapsed,
            )

    def _set_state(self, st: PlayerState):
        if self.state != st:
            logger.debug("State %s -> %s", self.state.name, st.name)
            self.state = st
            self.stateChanged.emit(st)
