"""Stream URL resolution for remote tracks using yt-dlp.

Turns a YouTube (or other yt-dlp supported) page URL into a direct audio
stream URL that ffmpeg can open. Stream URLs expire, so results are cached
only for a short time.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Callable, Optional

import yt_dlp

from config import RESOLVER_CACHE_TTL_SEC, RESOLVER_MAX_WORKERS, RESOLVER_TIMEOUT_SEC
from errors import ResolverError, ResolverFailure
from models import ResolvedStream
from utils import clean_title

logger = logging.getLogger(__name__)

_UNAVAILABLE_MARKERS = (
    "unavailable",
    "private",
    "deleted",
    "removed",
    "sign in",
    "confirm your age",
    "copyright",
    "blocked",
    "not available in your country",
    "geo",
    "unable to download",
    "urlopen error",
    "connection",
    "network is unreachable",
    "name or service not known",
    "getaddrinfo",
)
_TIMEOUT_MARKERS = ("timed out", "timeout")


def classify_download_error(message: str) -> ResolverFailure:
    error_msg = (message or "").lower()
    if any(marker in error_msg for marker in _TIMEOUT_MARKERS):
        return ResolverFailure.TIMEOUT
    if any(marker in error_msg for marker in _UNAVAILABLE_MARKERS):
        return ResolverFailure.UNAVAILABLE
    return ResolverFailure.NOT_FOUND


def pick_stream_url(info: dict) -> Optional[str]:
    stream_url = info.get("url")
    if stream_url:
        return stream_url

    # Some extractors put URL in 'formats' list
    formats = [f for f in (info.get("formats") or []) if f.get("url")]
    if not formats:
        return None
    audio_only = [
        f for f in formats
        if f.get("acodec") not in (None, "none") and f.get("vcodec") in (None, "none")
    ]
    with_audio = [f for f in formats if f.get("acodec") not in (None, "none")]
    candidates = audio_only or with_audio or formats
    best = max(candidates, key=lambda f: (f.get("abr") or f.get("tbr") or 0.0))
    return best.get("url")


class StreamResolver:
    """
    Resolves page URLs to playable streams.

    ``resolve`` blocks for up to ``timeout_sec``; call it off the GUI thread.
    """

    def __init__(
        self,
        timeout_sec: float = RESOLVER_TIMEOUT_SEC,
        cache_ttl_sec: float = RESOLVER_CACHE_TTL_SEC,
        clock: Callable[[], float] = time.monotonic,
        max_workers: int = RESOLVER_MAX_WORKERS,
    ):
        self._timeout_sec = float(timeout_sec)
        self._cache_ttl_sec = float(cache_ttl_sec)
        self._clock = clock
        self._cache: dict[str, tuple[ResolvedStream, float]] = {}
        self._cache_lock = threading.Lock()
        self._max_workers = max(1, int(max_workers))
        self._executor = ThreadPoolExecutor(max_workers=self._max_workers, thread_name_prefix="resolver")
        # Extractions still running, including ones a caller already gave up on.
        self._running: dict[str, Future] = {}
        self._running_lock = threading.Lock()

    def _ydl_opts(self) -> dict:
        return {
            "quiet": True,
            "no_warnings": True,
            "format": "bestaudio/best",
            "noplaylist": True,
            "skip_download": True,
            "socket_timeout": max(1.0, self._timeout_sec / 2.0),
        }

    def _extract(self, url: str) -> dict:
        with yt_dlp.YoutubeDL(self._ydl_opts()) as ydl:
            return ydl.extract_info(url, download=False)

    def _submit(self, url: str) -> Future:
        with self._running_lock:
            future = self._running.get(url)
            if future is not None and not future.done():
                logger.debug("Waiting on running extraction for %s", url)
                return future
            busy = sum(1 for f in self._running.values() if not f.done())
            if busy >= self._max_workers:
                logger.warning("All %d resolver workers are busy; giving up on %s", busy, url)
                raise ResolverError(ResolverFailure.TIMEOUT, url, "Resolver is busy")
            future = self._executor.submit(self._extract, url)
            self._running[url] = future
        future.add_done_callback(lambda f: self._forget(url, f))
        return future

    def _forget(self, url: str, future: Future) -> None:
        with self._running_lock:
            if self._running.get(url) is future:
                del self._running[url]

    def resolve(self, url: str) -> ResolvedStream:
        if not url:
            raise ResolverError(ResolverFailure.NOT_FOUND, url, "Empty URL")

        cached = self._cached(url)
        if cached is not None:
            logger.debug("Stream URL cache hit for %s", url)
            return cached

        future = self._submit(url)
        try:
            info = future.result(timeout=self._timeout_sec)
        except FutureTimeoutError as e:
            logger.warning("yt-dlp timed out after %.1fs for %s", self._timeout_sec, url)
            raise ResolverError(ResolverFailure.TIMEOUT, url, "Timed out resolving stream") from e
        except yt_dlp.utils.DownloadError as e:
            failure = classify_download_error(str(e))
            logger.warning("yt-dlp download error for %s (%s): %s", url, failure.value, e)
            raise ResolverError(failure, url, str(e)) from e

        if not info:
            logger.warning("yt-dlp returned no info for %s", url)
            raise ResolverError(ResolverFailure.NOT_FOUND, url, "No stream information")

        entries = info.get("entries")
        if entries:
            info = next((entry for entry in entries if entry), None) or {}

        stream_url = pick_stream_url(info)
        if not stream_url:
            logger.warning("No stream URL found in yt-dlp response for %s", url)
            raise ResolverError(ResolverFailure.NOT_FOUND, url, "No playable audio stream")

        duration = info.get("duration")
        resolved = ResolvedStream(
            url=stream_url,
            title=clean_title(info.get("title") or "") or url,
            duration_sec=float(duration) if duration else None,
            seekable=not bool(info.get("is_live")),
            source_url=url,
        )
        with self._cache_lock:
            self._cache[url] = (resolved, self._clock() + self._cache_ttl_sec)
        logger.debug("Resolved stream URL for %s", url)
        return resolved

    def _cached(self, url: str) -> Optional[ResolvedStream]:
        with self._cache_lock:
            entry = self._cache.get(url)
            if entry is None:
                return None
            resolved, expires_at = entry
            if self._clock() < expires_at:
                return resolved
            del self._cache[url]
            return None

    def invalidate(self, url: str) -> None:
        with self._cache_lock:
            self._cache.pop(url, None)

    def clear_cache(self) -> None:
        with self._cache_lock:
            self._cache.clear()

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)
