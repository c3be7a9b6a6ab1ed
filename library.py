"""
Track collection: the ordered set of everything the user has imported.

Provides folder scanning with per-file error collection, substring search
and removal listeners that keep the play queue in sync.
"""

from __future__ import annotations

import logging
import os
import threading
from dataclasses import replace
from typing import Callable, Iterable, Iterator, List, Optional

from config import MEDIA_EXTENSIONS
from errors import TrackImportError
from metadata import probe_metadata
from models import (
    ImportFailure,
    ImportReport,
    LocalOrigin,
    Origin,
    RemoteOrigin,
    Track,
    TrackMetadata,
)

logger = logging.getLogger(__name__)


class TrackCollection:
    """
    Insertion-ordered mapping of track id to Track.

    Tracks are immutable; ``update`` swaps in a replacement record. Adding
    an origin that is already present returns the existing id.
    """

    def __init__(
        self,
        probe: Callable[[str], TrackMetadata] = probe_metadata,
        extensions: Optional[Iterable[str]] = None,
    ):
        self._probe = probe
        self._extensions = {e.lower() for e in (extensions or MEDIA_EXTENSIONS)}
        self._lock = threading.RLock()
        self._tracks: dict[int, Track] = {}
        self._by_origin: dict[Origin, int] = {}
        self._next_id = 1
        self._removed_listeners: list[Callable[[int], None]] = []
        self._scan_abort = False

    def __len__(self) -> int:
        with self._lock:
            return len(self._tracks)

    def __contains__(self, track_id: object) -> bool:
        with self._lock:
            return track_id in self._tracks

    def is_supported(self, path: str) -> bool:
        return os.path.splitext(path)[1].lower() in self._extensions

    def on_removed(self, callback: Callable[[int], None]) -> None:
        self._removed_listeners.append(callback)

    # -------------------------------------------------------------------------
    # Import
    # -------------------------------------------------------------------------

    def add(self, origin: Origin) -> int:
        """Add one origin and return its id. Raises TrackImportError for bad local files."""
        with self._lock:
            existing = self._by_origin.get(origin)
        if existing is not None:
            return existing

        if isinstance(origin, RemoteOrigin):
            track_fields = {"title": origin.url, "duration_sec": None}
        else:
            track_fields = self._local_fields(origin.path)
        return self._insert(origin, **track_fields)

    def add_known(
        self,
        origin: Origin,
        title: str,
        duration_sec: Optional[float] = None,
        artist: str = "",
        album: str = "",
    ) -> int:
        """Add a previously imported track without probing it again."""
        with self._lock:
            existing = self._by_origin.get(origin)
        if existing is not None:
            return existing
        return self._insert(
            origin,
            title=title or origin.location,
            duration_sec=duration_sec,
            artist=artist,
            album=album,
        )

    def add_files(
        self,
        paths: List[str],
        *,
        progress_callback: Optional[Callable[[int, str], None]] = None,
    ) -> ImportReport:
        self._scan_abort = False
        report = ImportReport()
        for path in paths:
            if self._scan_abort:
                break
            self._add_into_report(path, report, progress_callback)
        return report

    def add_folder(
        self,
        folder: str,
        *,
        recursive: bool = True,
        progress_callback: Optional[Callable[[int, str], None]] = None,
    ) -> ImportReport:
        """
        Import every supported audio file under ``folder``.

        Files with other extensions are skipped silently. Files that look
        like audio but cannot be read end up in ``report.errors``; the scan
        carries on past them.
        """
        self._scan_abort = False
        report = ImportReport()
        if not os.path.isdir(folder):
            report.errors.append(ImportFailure(folder, "not a folder"))
            return report

        for path in self._find_media_files(folder, recursive=recursive):
            if self._scan_abort:
                logger.info("Folder import of %s aborted", folder)
                break
            self._add_into_report(path, report, progress_callback)

        logger.info(
            "Imported %d track(s) from %s, %d failed",
            len(report.added),
            folder,
            len(report.errors),
        )
        return report

    def abort_scan(self) -> None:
        self._scan_abort = True

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get(self, track_id: int) -> Optional[Track]:
        with self._lock:
            return self._tracks.get(track_id)

    def id_for(self, origin: Origin) -> Optional[int]:
        with self._lock:
            return self._by_origin.get(origin)

    def all(self) -> list[Track]:
        with self._lock:
            return list(self._tracks.values())

    def search(self, substring: str) -> Iterator[Track]:
        """Lazily yield tracks whose title or location contains ``substring``, ignoring case."""
        needle = (substring or "").casefold()
        for track in self.all():
            if not needle or needle in track.title.casefold() or needle in track.location.casefold():
                yield track

    # -------------------------------------------------------------------------
    # Mutation
    # -------------------------------------------------------------------------

    def update(self, track_id: int, **changes) -> Track:
        with self._lock:
            track = self._tracks[track_id]
            updated = replace(track, **changes)
            self._tracks[track_id] = updated
            return updated

    def remove(self, track_id: int) -> bool:
        with self._lock:
            track = self._tracks.pop(track_id, None)
            if track is None:
                return False
            self._by_origin.pop(track.origin, None)
        for callback in list(self._removed_listeners):
            callback(track_id)
        return True

    def clear(self) -> None:
        for track_id in [t.id for t in self.all()]:
            self.remove(track_id)

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _insert(self, origin: Origin, **track_fields) -> int:
        with self._lock:
            existing = self._by_origin.get(origin)
            if existing is not None:
                return existing
            track_id = self._next_id
            self._next_id += 1
            self._tracks[track_id] = Track(id=track_id, origin=origin, **track_fields)
            self._by_origin[origin] = track_id
        logger.debug("Added track %d: %s", track_id, origin.location)
        return track_id

    def _local_fields(self, path: str) -> dict:
        if not os.path.isfile(path):
            raise TrackImportError(path, "file not found")
        if not self.is_supported(path):
            raise TrackImportError(path, "unsupported format")
        meta = self._probe(path)
        if not meta.readable:
            raise TrackImportError(path, "unreadable or corrupt audio")
        stem = os.path.splitext(os.path.basename(path))[0]
        return {
            "title": meta.title or stem,
            "duration_sec": meta.duration_sec or None,
            "artist": meta.artist,
            "album": meta.album,
        }

    def _add_into_report(
        self,
        path: str,
        report: ImportReport,
        progress_callback: Optional[Callable[[int, str], None]],
    ) -> None:
        try:
            track_id = self.add(LocalOrigin(os.path.abspath(path)))
        except TrackImportError as e:
            logger.warning("Skipping %s: %s", e.path, e.reason)
            report.errors.append(ImportFailure(e.path, e.reason))
            return
        report.added.append(track_id)
        if progress_callback:
            progress_callback(len(report.added), path)

    def _find_media_files(self, folder: str, *, recursive: bool = True) -> Iterator[str]:
        if recursive:
            for root, dirs, files in os.walk(folder):
                dirs.sort()
                for filename in sorted(files):
                    filepath = os.path.join(root, filename)
                    if self.is_supported(filepath):
                        yield filepath
        else:
            for entry in sorted(os.listdir(folder)):
                filepath = os.path.join(folder, entry)
                if os.path.isfile(filepath) and self.is_supported(filepath):
                    yield filepath
