from __future__ import annotations

import os
import re
import shutil
from urllib.parse import urlparse


def have_exe(name: str) -> bool:
    return shutil.which(name) is not None


def clamp(x: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, x))


def safe_float(value: str, default: float) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def env_flag(name: str) -> bool:
    value = os.environ.get(name, "")
    return value.strip().lower() in {"1", "true", "yes", "on"}


def format_time(sec: float) -> str:
    if sec is None or sec < 0 or sec != sec:
        sec = 0.0
    sec = int(sec)
    h, rem = divmod(sec, 3600)
    m, s = divmod(rem, 60)
    if h:
        return f"{h}:{m:02d}:{s:02d}"
    return f"{m}:{s:02d}"


_TITLE_NOISE = (
    "[Official Music Video]",
    "(Official Music Video)",
    "Official Music Video",
    "[Official Video]",
    "(Official Video)",
    "Official Video",
    "[Lyrics]",
    "(Lyrics)",
    "Lyrics",
)
_TITLE_MAX_WORDS = 6


def clean_title(raw_title: str) -> str:
    """Strip video decorations from an uploaded title and keep the first few words."""
    cleaned = raw_title or ""
    for noise in _TITLE_NOISE:
        cleaned = cleaned.replace(noise, "")
    return " ".join(cleaned.split()[:_TITLE_MAX_WORDS])


_URL_SCHEMES = {"http", "https"}
_YOUTUBE_HOST = re.compile(r"(^|\.)(youtube\.com|youtu\.be|youtube-nocookie\.com)$", re.IGNORECASE)


def is_remote_url(text: str) -> bool:
    parsed = urlparse((text or "").strip())
    return parsed.scheme.lower() in _URL_SCHEMES and bool(parsed.netloc)


def is_youtube_url(text: str) -> bool:
    if not is_remote_url(text):
        return False
    host = urlparse(text.strip()).hostname or ""
    return bool(_YOUTUBE_HOST.search(host))
