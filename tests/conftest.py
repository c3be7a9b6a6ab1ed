"""Shared fakes for engine, controller and library tests.

Nothing here touches an audio device, ffmpeg or the network.
"""

from __future__ import annotations

import numpy as np
import pytest
from PySide6 import QtCore

from audio.source import END_OF_STREAM, AudioSource
from errors import SourceError
from models import TrackMetadata


@pytest.fixture(scope="session", autouse=True)
def qapp():
    app = QtCore.QCoreApplication.instance()
    if app is None:
        app = QtCore.QCoreApplication([])
    return app


def pcm_block(frames: int = 4, value: float = 0.25, channels: int = 2) -> np.ndarray:
    return np.full((frames, channels), value, dtype=np.float32)


class FakeSource(AudioSource):
    """Plays back a scripted list of blocks; an exception in the list is raised when reached."""

    def __init__(self, origin, blocks=None, *, seekable=True, duration_sec=100.0, title="", **kwargs):
        kwargs.pop("start_sec", None)
        super().__init__(
            origin,
            seekable=seekable,
            duration_sec=duration_sec,
            title=title,
            **kwargs,
        )
        self._blocks = list(blocks if blocks is not None else [pcm_block(), pcm_block()])
        self.closed = False
        self.seeks = []

    def read_samples(self, max_frames):
        if self.closed or not self._blocks:
            return END_OF_STREAM
        block = self._blocks.pop(0)
        if isinstance(block, Exception):
            raise block
        self.position_frames += len(block)
        return block

    def seek(self, position_sec):
        if not self.seekable:
            super().seek(position_sec)
        self.seeks.append(position_sec)
        self.position_frames = int(position_sec * self.sample_rate)

    def close(self):
        self.closed = True


class FakeOpener:
    """
    Hands out scripted outcomes per origin, in order.

    An outcome is a FakeSource, a SourceError, or a callable returning a
    source. The last outcome repeats once the script runs out.
    """

    def __init__(self, outcomes=None):
        self._outcomes = {origin: list(items) for origin, items in (outcomes or {}).items()}
        self.calls = []
        self.invalidated = []
        self.opened = []

    def script(self, origin, *outcomes):
        self._outcomes[origin] = list(outcomes)

    def open(self, origin, start_sec=0.0):
        self.calls.append(origin)
        items = self._outcomes.get(origin)
        if not items:
            outcome = FakeSource(origin)
        elif len(items) > 1:
            outcome = items.pop(0)
        else:
            outcome = items[0]
        if isinstance(outcome, SourceError):
            raise outcome
        if callable(outcome) and not isinstance(outcome, AudioSource):
            outcome = outcome()
        self.opened.append(outcome)
        return outcome

    def invalidate(self, origin):
        self.invalidated.append(origin)


class FakeSink:
    """Records writes; only the claimed token may write."""

    block_frames = 4

    def __init__(self, start_error=None):
        self.owner = None
        self.claims = []
        self.writes = []
        self.volume = 1.0
        self.paused = False
        self.started = 0
        self.stopped = 0
        self.closed = False
        self.drained = True
        self.start_error = start_error

    def set_volume(self, volume):
        self.volume = max(0.0, min(1.0, float(volume)))

    def set_paused(self, paused):
        self.paused = bool(paused)

    def claim(self, token):
        self.owner = token
        self.claims.append(token)

    def release(self, token):
        if self.owner == token:
            self.owner = None

    def write(self, token, frames, stop_event=None):
        if token != self.owner:
            return False
        if stop_event is not None and stop_event.is_set():
            return False
        self.writes.append((token, frames))
        return True

    def is_drained(self):
        return self.drained

    def buffered_seconds(self):
        return 0.0

    def consume_xruns(self):
        return 0, 0, 0

    def start(self):
        if self.start_error is not None:
            raise self.start_error
        self.started += 1

    def stop(self):
        self.stopped += 1

    def close(self):
        self.closed = True


class ManualSpawner:
    """Collects background jobs so a test decides when they run."""

    def __init__(self):
        self.jobs = []

    def __call__(self, target, name):
        self.jobs.append((name, target))

    @property
    def names(self):
        return [name for name, _ in self.jobs]

    def run_next(self):
        _, target = self.jobs.pop(0)
        target()

    def run_all(self):
        while self.jobs:
            self.run_next()


class FakeClock:
    def __init__(self, now=100.0):
        self.now = float(now)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += float(seconds)


def fake_probe(path):
    """Anything with 'corrupt' in its name is unreadable."""
    readable = "corrupt" not in path
    return TrackMetadata(duration_sec=180.0, artist="", album="", title="", readable=readable)


@pytest.fixture
def sink():
    return FakeSink()


@pytest.fixture
def spawner():
    return ManualSpawner()


@pytest.fixture
def clock():
    return FakeClock()
