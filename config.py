from __future__ import annotations

import os

from models import BufferPreset
from utils import env_flag, safe_float

APP_NAME = "Waveline"
ORG_NAME = "Waveline"

SAMPLE_RATE = 44100
CHANNELS = 2

BUFFER_PRESETS = {
    "Low (20ms)": BufferPreset(
        blocksize_frames=512,
        latency="low",
        target_sec=0.6,
        high_sec=0.9,
        low_sec=0.25,
        ring_max_seconds=2.0,
    ),
    "Balanced (50ms)": BufferPreset(
        blocksize_frames=1024,
        latency="high",
        target_sec=1.0,
        high_sec=1.5,
        low_sec=0.4,
        ring_max_seconds=3.0,
    ),
    "Stable (100ms)": BufferPreset(
        blocksize_frames=2048,
        latency="high",
        target_sec=1.6,
        high_sec=2.4,
        low_sec=0.7,
        ring_max_seconds=4.0,
    ),
}
DEFAULT_BUFFER_PRESET = "Balanced (50ms)"

DEFAULT_VOLUME = 0.5
VOLUME_STEP = 0.05

MAX_CONSECUTIVE_FAILURES = int(safe_float(os.environ.get("WAVELINE_MAX_FAILURES", "3"), 3.0))
ERROR_LOG_SIZE = 20
# ffmpeg stderr lines kept per decoder for failure messages.
FFMPEG_STDERR_LINES = 20

RESOLVER_TIMEOUT_SEC = safe_float(os.environ.get("WAVELINE_RESOLVER_TIMEOUT", "20"), 20.0)
# Stream URLs handed out by YouTube expire after a few hours.
RESOLVER_CACHE_TTL_SEC = 600.0
# yt-dlp extractions cannot be cancelled once running; hung ones hold a worker.
RESOLVER_MAX_WORKERS = 4

ENGINE_TICK_MS = 50
UI_TICK_MS = 120

MEDIA_EXTENSIONS = {
    ".mp3",
    ".wav",
    ".flac",
    ".ogg",
    ".m4a",
    ".aac",
    ".opus",
    ".webm",
}

COLLECTIONS_DIR = os.environ.get(
    "WAVELINE_COLLECTIONS_DIR",
    os.path.join(os.path.expanduser("~"), "Music", "my_collections"),
)

LOG_LEVEL = os.environ.get("WAVELINE_LOG_LEVEL", "INFO").upper()
LOG_FILE = os.environ.get("WAVELINE_LOG_FILE") or None
DEBUG_METRICS = env_flag("WAVELINE_DEBUG_METRICS")
