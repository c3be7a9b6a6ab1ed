"""
Waveline: a desktop audio player for local files, folders and streamed YouTube audio.

Backend pipeline:
- Resolve: yt-dlp turns a YouTube URL into a direct audio stream URL
- Decode: ffmpeg -> float32 PCM (stereo) at fixed sample rate
- Output: sounddevice (PortAudio) callback pulling from a thread-safe ring buffer

Requirements:
  pip install PySide6 numpy sounddevice yt-dlp
  ffmpeg + ffprobe installed and on PATH

Env vars:
- WAVELINE_LOG_LEVEL = DEBUG | INFO | WARNING (default INFO)
- WAVELINE_LOG_FILE = optional path of a detailed log file
- WAVELINE_COLLECTIONS_DIR = folder imported into the library at startup
- WAVELINE_DEBUG_METRICS = 1 to log output buffer metrics every second
"""

from __future__ import annotations

import sys

from PySide6 import QtCore, QtWidgets

from config import APP_NAME, LOG_FILE, LOG_LEVEL, ORG_NAME
from controller import build_controller
from logging_config import setup_logging
from ui.main_window import MainWindow


def main():
    logger = setup_logging(LOG_LEVEL, LOG_FILE)
    app = QtWidgets.QApplication(sys.argv)
    app.setOrganizationName(ORG_NAME)
    app.setApplicationName(APP_NAME)

    settings = QtCore.QSettings(ORG_NAME, APP_NAME)
    controller = build_controller(settings=settings)
    w = MainWindow(controller, settings)
    w.show()
    logger.info("%s started", APP_NAME)
    sys.exit(app.exec())


if __name__ == "__main__":
    main()
