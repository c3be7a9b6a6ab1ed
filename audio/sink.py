from __future__ import annotations

import logging
import threading
from collections import deque
from typing import Optional

import numpy as np

try:
    import sounddevice as sd
    _sounddevice_import_error = None
except Exception as e:
    sd = None
    _sounddevice_import_error = e

from config import BUFFER_PRESETS, CHANNELS, DEFAULT_BUFFER_PRESET, SAMPLE_RATE
from errors import SinkError
from models import BufferPreset
from utils import clamp

logger = logging.getLogger(__name__)


class PcmRingBuffer:
    """
    Thread-safe audio buffer as deque of numpy arrays, with a single writer.

    claim(token): makes ``token`` the only accepted writer and drops queued audio
    push_blocking(token, frames, stop_event): returns False once ``token`` is stale
    pop_into(out): fills provided buffer, zero-padded on underrun
    """

    def __init__(self, channels: int, max_seconds: float, sample_rate: int):
        self.channels = channels
        self.sample_rate = sample_rate
        self.max_frames = int(max_seconds * sample_rate)
        self._dq: deque[np.ndarray] = deque()
        self._frames = 0
        self._underruns = 0
        self._owner: Optional[int] = None
        self._lock = threading.Lock()
        self._not_full = threading.Condition(self._lock)

    @property
    def owner(self) -> Optional[int]:
        with self._lock:
            return self._owner

    def claim(self, token: int) -> None:
        with self._not_full:
            self._owner = token
            self._dq.clear()
            self._frames = 0
            self._not_full.notify_all()

    def release(self, token: int) -> None:
        with self._not_full:
            if self._owner == token:
                self._owner = None
                self._not_full.notify_all()

    def clear(self) -> None:
        with self._not_full:
            self._dq.clear()
            self._frames = 0
            self._not_full.notify_all()

    def frames_available(self) -> int:
        with self._lock:
            return self._frames

    def push_blocking(
        self,
        token: int,
        frames: np.ndarray,
        stop_event: Optional[threading.Event] = None,
    ) -> bool:
        if frames.size == 0:
            return True
        if frames.dtype != np.float32:
            frames = frames.astype(np.float32, copy=False)
        if frames.ndim != 2 or frames.shape[1] != self.channels:
            raise ValueError(f"frames must be (n,{self.channels}) float32, got {frames.shape} {frames.dtype}")

        if frames.shape[0] > self.max_frames:
            frames = frames[:self.max_frames, :]

        offset = 0
        total = frames.shape[0]
        with self._not_full:
            while offset < total:
                if self._owner != token:
                    return False
                if stop_event is not None and stop_event.is_set():
                    return False
                space = self.max_frames - self._frames
                if space <= 0:
                    self._not_full.wait(timeout=0.05)
                    continue
                take = min(space, total - offset)
                self._dq.append(frames[offset : offset + take])
                self._frames += take
                offset += take
        return True

    def pop_into(self, out: np.ndarray) -> int:
        if out.ndim != 2 or out.shape[1] != self.channels:
            raise ValueError(f"out must be (n,{self.channels}) float32, got {out.shape} {out.dtype}")

        n = out.shape[0]
        if n <= 0:
            return 0

        idx = 0
        with self._not_full:
            while idx < n and self._dq:
                chunk = self._dq[0]
                take = min(n - idx, chunk.shape[0])
                out[idx : idx + take] = chunk[:take]
                idx += take
                if take == chunk.shape[0]:
                    self._dq.popleft()
                else:
                    self._dq[0] = chunk[take:, :]
                self._frames -= take
                self._not_full.notify_all()
            if idx < n and self._owner is not None:
                self._underruns += 1

        if idx < n:
            out[idx:n, :].fill(0)
        return idx

    def consume_underruns(self) -> int:
        with self._lock:
            underruns = self._underruns
            self._underruns = 0
            return underruns


class AudioSink:
    """
    Audio output through a sounddevice callback stream.

    Decoded frames go into a PcmRingBuffer; the PortAudio callback drains it,
    applies volume and outputs silence while paused.
    """

    def __init__(
        self,
        sample_rate: int = SAMPLE_RATE,
        channels: int = CHANNELS,
        buffer_preset: Optional[BufferPreset] = None,
        device: Optional[int] = None,
    ):
        self.sample_rate = sample_rate
        self.channels = channels
        self._preset = buffer_preset or BUFFER_PRESETS[DEFAULT_BUFFER_PRESET]
        self._device = device
        self._ring = PcmRingBuffer(
            channels,
            max_seconds=self._preset.ring_max_seconds,
            sample_rate=sample_rate,
        )
        self._stream = None
        self._volume = 1.0
        self._paused = False
        self._active = False
        self._callback_underflows = 0
        self._callback_overflows = 0
        self._fade_out_ramp = np.linspace(1.0, 0.0, 32, dtype=np.float32)

    @property
    def block_frames(self) -> int:
        return self._preset.blocksize_frames

    @property
    def volume(self) -> float:
        return self._volume

    def set_volume(self, volume: float) -> None:
        self._volume = clamp(float(volume), 0.0, 1.0)

    def set_paused(self, paused: bool) -> None:
        self._paused = bool(paused)

    def claim(self, token: int) -> None:
        self._ring.claim(token)
        self._active = True

    def release(self, token: int) -> None:
        self._ring.release(token)

    def write(self, token: int, frames: np.ndarray, stop_event: Optional[threading.Event] = None) -> bool:
        return self._ring.push_blocking(token, frames, stop_event)

    def is_drained(self) -> bool:
        return self._ring.frames_available() == 0

    def buffered_seconds(self) -> float:
        return self._ring.frames_available() / float(self.sample_rate)

    def consume_xruns(self) -> tuple[int, int, int]:
        """Return and reset (callback underflows, callback overflows, ring underruns)."""
        underflows = self._callback_underflows
        overflows = self._callback_overflows
        self._callback_underflows = 0
        self._callback_overflows = 0
        return underflows, overflows, self._ring.consume_underruns()

    def start(self) -> None:
        if sd is None:
            raise SinkError(f"sounddevice not available: {_sounddevice_import_error}")
        if self._stream is not None:
            try:
                if not self._stream.active:
                    self._stream.start()
            except sd.PortAudioError as e:
                raise SinkError(f"Audio output error: {e}") from e
            return

        def callback(outdata, frames, time_info, status):
            if status and getattr(status, "output_underflow", False):
                self._callback_underflows += 1
            if status and getattr(status, "output_overflow", False):
                self._callback_overflows += 1
            if not self._active or self._paused:
                outdata.fill(0)
                return

            outdata.fill(0)
            filled = self._ring.pop_into(outdata)
            if filled < frames:
                fade_samples = min(filled, self._fade_out_ramp.shape[0])
                if fade_samples > 1:
                    outdata[filled - fade_samples:filled] *= self._fade_out_ramp[:fade_samples, None]
            vol = self._volume
            if vol == 0.0:
                outdata.fill(0)
            elif vol != 1.0:
                outdata *= vol

        try:
            self._stream = sd.OutputStream(
                samplerate=self.sample_rate,
                channels=self.channels,
                dtype="float32",
                blocksize=self._preset.blocksize_frames,
                latency=self._preset.latency,
                device=self._device,
                callback=callback,
            )
            self._stream.start()
        except sd.PortAudioError as e:
            self._stream = None
            raise SinkError(f"Audio output error: {e}") from e
        logger.debug("Output stream opened (%d Hz, %d ch)", self.sample_rate, self.channels)

    def stop(self) -> None:
        self._active = False
        self._paused = False
        self._ring.clear()

    def close(self) -> None:
        self.stop()
        if self._stream is not None:
            try:
                self._stream.stop()
                self._stream.close()
            except sd.PortAudioError as e:
                logger.debug("Closing output stream failed: %s", e)
            self._stream = None

