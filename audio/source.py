from __future__ import annotations

import logging
import os
import subprocess
import threading
from collections import deque
from typing import Callable, Iterable, Optional, Union

import numpy as np

from config import CHANNELS, FFMPEG_STDERR_LINES, MEDIA_EXTENSIONS, SAMPLE_RATE
from errors import ResolverError, ResolverFailure, SourceError, SourceErrorKind
from metadata import probe_metadata
from models import LocalOrigin, Origin, RemoteOrigin, TrackMetadata
from utils import have_exe

logger = logging.getLogger(__name__)


class _EndOfStream:
    _instance: Optional["_EndOfStream"] = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "END_OF_STREAM"

    def __bool__(self) -> bool:
        return False


END_OF_STREAM = _EndOfStream()

ReadResult = Union[np.ndarray, _EndOfStream]


def make_ffmpeg_cmd(
    path: str,
    start_sec: float,
    sample_rate: int,
    channels: int,
    *,
    remote: bool = False,
) -> list[str]:
    cmd = ["ffmpeg", "-hide_banner", "-loglevel", "error"]
    if remote:
        cmd += ["-reconnect", "1", "-reconnect_streamed", "1", "-reconnect_delay_max", "5"]
    cmd += [
        "-ss", str(max(0.0, start_sec)),
        "-i", path,
        "-vn",
        "-ac", str(channels),
        "-ar", str(sample_rate),
        "-f", "f32le",
        "pipe:1",
    ]
    return cmd


class AudioSource:
    """
    One decode session for one track.

    read_samples(n): returns up to n frames as (n, ch) float32, or
    END_OF_STREAM once the input is exhausted. Never raises at a clean end.
    """

    def __init__(
        self,
        origin: Origin,
        *,
        sample_rate: int = SAMPLE_RATE,
        channels: int = CHANNELS,
        title: str = "",
        duration_sec: Optional[float] = None,
        seekable: bool = True,
    ):
        self.origin = origin
        self.sample_rate = sample_rate
        self.channels = channels
        self.title = title
        self.duration_sec = duration_sec
        self.seekable = seekable
        self.position_frames = 0

    @property
    def position_sec(self) -> float:
        return self.position_frames / float(self.sample_rate)

    def read_samples(self, max_frames: int) -> ReadResult:
        raise NotImplementedError

    def seek(self, position_sec: float) -> None:
        raise SourceError(SourceErrorKind.UNSUPPORTED, "Seeking is not supported by this source")

    def close(self) -> None:
        pass


class FfmpegSource(AudioSource):
    """
    Decodes a file or stream URL to float32 PCM through an ffmpeg subprocess.

    close() may be called from any thread; it kills the decoder so that a
    reader blocked on the pipe returns promptly. Each spawn of the decoder
    gets a new generation; a read that started before a seek returns an
    empty block instead of consuming audio from the new decoder.
    """

    def __init__(
        self,
        origin: Origin,
        input_url: str,
        *,
        sample_rate: int = SAMPLE_RATE,
        channels: int = CHANNELS,
        title: str = "",
        duration_sec: Optional[float] = None,
        seekable: bool = True,
        start_sec: float = 0.0,
    ):
        super().__init__(
            origin,
            sample_rate=sample_rate,
            channels=channels,
            title=title,
            duration_sec=duration_sec,
            seekable=seekable,
        )
        self._input_url = input_url
        self._remote = isinstance(origin, RemoteOrigin)
        self._frame_bytes = channels * 4
        self._byte_buffer = bytearray()
        self._proc: Optional[subprocess.Popen] = None
        self._stderr_thread: Optional[threading.Thread] = None
        self._stderr_tail: deque[str] = deque(maxlen=FFMPEG_STDERR_LINES)
        self._generation = 0
        self._lock = threading.Lock()
        self._closed = False
        self._spawn(start_sec)

    @property
    def generation(self) -> int:
        return self._generation

    def _spawn(self, start_sec: float) -> None:
        cmd = make_ffmpeg_cmd(
            self._input_url,
            start_sec,
            self.sample_rate,
            self.channels,
            remote=self._remote,
        )
        try:
            self._proc = subprocess.Popen(cmd, stdout=subprocess.PIPE, stderr=subprocess.PIPE)
        except FileNotFoundError as e:
            raise SourceError(SourceErrorKind.UNSUPPORTED, "ffmpeg not found in PATH.", e) from e
        except OSError as e:
            raise SourceError(SourceErrorKind.DECODE_ERROR, f"Failed to start ffmpeg: {e}", e) from e
        self._generation += 1
        self._byte_buffer.clear()
        self.position_frames = int(max(0.0, start_sec) * self.sample_rate)

        # ffmpeg stalls once the stderr pipe fills, so it is always drained.
        self._stderr_tail = deque(maxlen=FFMPEG_STDERR_LINES)
        self._stderr_thread = None
        if self._proc.stderr is not None:
            self._stderr_thread = threading.Thread(
                target=self._stderr_reader,
                args=(self._proc.stderr, self._stderr_tail),
                name=f"ffmpeg-stderr-{self._generation}",
                daemon=True,
            )
            self._stderr_thread.start()

    def _stderr_reader(self, stderr, tail: deque) -> None:
        try:
            for raw_line in iter(stderr.readline, b""):
                line = raw_line.decode("utf-8", errors="replace").rstrip()
                if not line:
                    continue
                tail.append(line)
                logger.debug("ffmpeg: %s", line)
        except (OSError, ValueError):
            return

    def _terminate(self) -> None:
        proc = self._proc
        if proc is None or proc.poll() is not None:
            return
        try:
            proc.terminate()
            proc.wait(timeout=1.0)
        except subprocess.TimeoutExpired:
            proc.kill()
        except OSError as e:
            logger.debug("ffmpeg terminate failed: %s", e)

    def _close_pipes(self) -> None:
        proc = self._proc
        if proc is None:
            return
        # stderr belongs to the reader thread until it sees EOF.
        if self._stderr_thread is not None:
            self._stderr_thread.join(timeout=1.0)
        for pipe in (proc.stdout, proc.stderr):
            if pipe is not None:
                try:
                    pipe.close()
                except OSError:
                    pass

    def stderr_tail(self) -> list[str]:
        return list(self._stderr_tail)

    def _exit_error(self) -> Optional[SourceError]:
        proc = self._proc
        if proc is None:
            return None
        try:
            code = proc.wait(timeout=2.0)
        except subprocess.TimeoutExpired:
            return None
        if code == 0 or self._closed:
            return None
        if self._stderr_thread is not None:
            self._stderr_thread.join(timeout=1.0)
        detail = "\n".join(list(self._stderr_tail)[-3:]).strip()
        detail = detail or f"ffmpeg exited with code {code}"
        kind = SourceErrorKind.NETWORK_UNAVAILABLE if self._remote else SourceErrorKind.DECODE_ERROR
        return SourceError(kind, detail)

    def read_samples(self, max_frames: int) -> ReadResult:
        generation = self._generation
        with self._lock:
            if self._closed or self._proc is None or self._proc.stdout is None:
                return END_OF_STREAM
            if generation != self._generation:
                return np.zeros((0, self.channels), dtype=np.float32)
            stdout = self._proc.stdout
            read_bytes = max(1, int(max_frames)) * self._frame_bytes
            try:
                while len(self._byte_buffer) < self._frame_bytes:
                    chunk = stdout.read(read_bytes)
                    if not chunk:
                        break
                    self._byte_buffer.extend(chunk)
            except (OSError, ValueError):
                if self._closed:
                    return END_OF_STREAM
                raise
            if len(self._byte_buffer) < self._frame_bytes:
                error = self._exit_error()
                if error is not None:
                    raise error
                return END_OF_STREAM

            available_frames = len(self._byte_buffer) // self._frame_bytes
            frames_to_take = min(available_frames, max(1, int(max_frames)))
            take_bytes = frames_to_take * self._frame_bytes
            data = bytes(self._byte_buffer[:take_bytes])
            del self._byte_buffer[:take_bytes]
            self.position_frames += frames_to_take
            return np.frombuffer(data, dtype=np.float32).reshape((-1, self.channels))

    def seek(self, position_sec: float) -> None:
        if not self.seekable:
            raise SourceError(SourceErrorKind.UNSUPPORTED, "This stream cannot be seeked")
        with self._lock:
            if self._closed:
                return
            self._terminate()
            self._close_pipes()
            self._spawn(position_sec)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        # Killing the process unblocks a reader parked on stdout.
        self._terminate()
        if self._lock.acquire(timeout=2.0):
            try:
                self._close_pipes()
            finally:
                self._lock.release()


SourceFactory = Callable[..., AudioSource]


class SourceOpener:
    """
    Opens an AudioSource for an origin.

    Local files are checked up front; remote URLs go through the resolver
    first. Every failure surfaces as a SourceError with the underlying
    exception attached as ``cause``.
    """

    _RESOLVER_KINDS = {
        ResolverFailure.NOT_FOUND: SourceErrorKind.DECODE_ERROR,
        ResolverFailure.UNAVAILABLE: SourceErrorKind.NETWORK_UNAVAILABLE,
        ResolverFailure.TIMEOUT: SourceErrorKind.TIMEOUT,
    }

    def __init__(
        self,
        resolver,
        *,
        probe: Callable[[str], TrackMetadata] = probe_metadata,
        extensions: Optional[Iterable[str]] = None,
        sample_rate: int = SAMPLE_RATE,
        channels: int = CHANNELS,
        source_factory: SourceFactory = FfmpegSource,
        decoder_available: Callable[[], bool] = lambda: have_exe("ffmpeg"),
    ):
        self._resolver = resolver
        self._probe = probe
        self._extensions = {e.lower() for e in (extensions or MEDIA_EXTENSIONS)}
        self.sample_rate = sample_rate
        self.channels = channels
        self._source_factory = source_factory
        self._decoder_available = decoder_available

    def open(self, origin: Origin, start_sec: float = 0.0) -> AudioSource:
        if isinstance(origin, RemoteOrigin):
            return self._open_remote(origin, start_sec)
        if isinstance(origin, LocalOrigin):
            return self._open_local(origin, start_sec)
        raise SourceError(SourceErrorKind.UNSUPPORTED, f"Unknown origin {origin!r}")

    def _require_decoder(self) -> None:
        if not self._decoder_available():
            raise SourceError(SourceErrorKind.UNSUPPORTED, "ffmpeg not found in PATH.")

    def _open_local(self, origin: LocalOrigin, start_sec: float) -> AudioSource:
        path = origin.path
        if not os.path.isfile(path):
            raise SourceError(SourceErrorKind.NOT_FOUND, f"File not found: {path}")
        if os.path.splitext(path)[1].lower() not in self._extensions:
            raise SourceError(SourceErrorKind.UNSUPPORTED, f"Unsupported format: {path}")
        self._require_decoder()
        meta = self._probe(path)
        if not meta.readable:
            raise SourceError(SourceErrorKind.DECODE_ERROR, f"Cannot decode {path}")
        return self._source_factory(
            origin,
            path,
            sample_rate=self.sample_rate,
            channels=self.channels,
            title=meta.title or os.path.splitext(os.path.basename(path))[0],
            duration_sec=meta.duration_sec or None,
            seekable=True,
            start_sec=start_sec,
        )

    def _open_remote(self, origin: RemoteOrigin, start_sec: float) -> AudioSource:
        self._require_decoder()
        try:
            resolved = self._resolver.resolve(origin.url)
        except ResolverError as e:
            kind = self._RESOLVER_KINDS[e.failure]
            raise SourceError(kind, str(e), e) from e
        return self._source_factory(
            origin,
            resolved.url,
            sample_rate=self.sample_rate,
            channels=self.channels,
            title=resolved.title,
            duration_sec=resolved.duration_sec,
            seekable=resolved.seekable,
            start_sec=start_sec if resolved.seekable else 0.0,
        )

    def invalidate(self, origin: Origin) -> None:
        """Forget any cached stream URL, so a retry resolves afresh."""
        if isinstance(origin, RemoteOrigin) and hasattr(self._resolver, "invalidate"):
            self._resolver.invalidate(origin.url)
