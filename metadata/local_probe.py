from __future__ import annotations

import json
import logging
import os
import subprocess

from models import TrackMetadata
from utils import have_exe, safe_float

logger = logging.getLogger(__name__)

PROBE_TIMEOUT_SEC = 15.0


def _startupinfo():
    # Keep Windows from flashing a console window for every probe.
    if os.name != "nt":
        return None
    startupinfo = subprocess.STARTUPINFO()
    startupinfo.dwFlags |= subprocess.STARTF_USESHOWWINDOW
    return startupinfo


def probe_metadata(path: str) -> TrackMetadata:
    """
    Probe file metadata using ffprobe.

    ``readable`` is False when ffprobe rejects the file or finds no audio
    stream in it. Without ffprobe on PATH nothing can be verified, so the
    file is assumed readable and decoding decides later.
    """
    duration = 0.0
    artist = ""
    album = ""
    title = ""

    if not have_exe("ffprobe"):
        return TrackMetadata(duration_sec=0.0, artist="", album="", title="", readable=True)

    cmd = [
        "ffprobe",
        "-v",
        "error",
        "-print_format",
        "json",
        "-show_entries",
        "format=duration:format_tags=artist,album,album_artist,title:stream=index,codec_type",
        path,
    ]
    try:
        p = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            check=False,
            timeout=PROBE_TIMEOUT_SEC,
            startupinfo=_startupinfo(),
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        logger.warning("ffprobe failed for %s: %s", path, e)
        return TrackMetadata(duration_sec=0.0, artist="", album="", title="", readable=False)

    if p.returncode != 0:
        logger.debug("ffprobe rejected %s: %s", path, (p.stderr or "").strip())
        return TrackMetadata(duration_sec=0.0, artist="", album="", title="", readable=False)

    try:
        data = json.loads(p.stdout or "{}")
    except json.JSONDecodeError:
        return TrackMetadata(duration_sec=0.0, artist="", album="", title="", readable=False)

    fmt = data.get("format", {}) or {}
    tags = fmt.get("tags", {}) or {}
    tags_lower = {str(k).lower(): str(v) for k, v in tags.items()}

    artist = tags_lower.get("artist") or tags_lower.get("album_artist") or ""
    album = tags_lower.get("album") or ""
    title = tags_lower.get("title") or ""
    duration = max(0.0, safe_float(str(fmt.get("duration", "0")), 0.0))

    streams = data.get("streams", []) or []
    has_audio = any(stream.get("codec_type") == "audio" for stream in streams)

    return TrackMetadata(
        duration_sec=duration,
        artist=artist,
        album=album,
        title=title,
        readable=has_audio,
    )
