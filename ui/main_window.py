from __future__ import annotations

import logging
import os
from typing import Optional

from PySide6 import QtCore, QtGui, QtWidgets

from audio.sink import sd, _sounddevice_import_error
from config import APP_NAME, ORG_NAME, UI_TICK_MS, ENGINE_TICK_MS
from controller import PlayerController
from models import ImportReport, PlayerState, RepeatMode, Track, format_track_title
from ui.widgets import FailureLogWidget, LibraryPanel, QueueWidget, TransportWidget
from ui.workers.library_scan import LibraryScanWorker
from utils import have_exe

logger = logging.getLogger(__name__)


class FileDialogPicker:
    """File/folder picker backed by QFileDialog; remembers the last directory."""

    def __init__(self, parent: QtWidgets.QWidget, settings: QtCore.QSettings):
        self._parent = parent
        self._settings = settings

    def __call__(self, mode: str, file_filter: Optional[str]) -> Optional[list[str]]:
        last_dir = str(self._settings.value("last_dir", os.path.expanduser("~")))
        if mode == "folder":
            folder = QtWidgets.QFileDialog.getExistingDirectory(self._parent, "Select folder", last_dir)
            if not folder:
                return None
            self._settings.setValue("last_dir", folder)
            return [folder]
        paths, _ = QtWidgets.QFileDialog.getOpenFileNames(
            self._parent, "Select audio files", last_dir, file_filter or ""
        )
        if not paths:
            return None
        self._settings.setValue("last_dir", os.path.dirname(paths[0]))
        return paths


# Main Window
# -----------------------------

class MainWindow(QtWidgets.QMainWindow):
    def __init__(self, controller: PlayerController, settings: Optional[QtCore.QSettings] = None):
        super().__init__()
        self.setWindowTitle(f"{APP_NAME} Player")
        self.resize(1080, 640)

        self.settings = settings or QtCore.QSettings(ORG_NAME, APP_NAME)
        self.controller = controller
        self.controller.set_picker(FileDialogPicker(self, self.settings))

        self.transport = TransportWidget()
        self.queue_view = QueueWidget()
        self.library_view = LibraryPanel()
        self.failure_view = FailureLogWidget()
        self.now_playing = QtWidgets.QLabel("Nothing playing")
        self.now_playing.setObjectName("now_playing")
        self.status = QtWidgets.QLabel("")

        self._scan_worker: Optional[LibraryScanWorker] = None
        self._scan_thread: Optional[QtCore.QThread] = None
        self._dur = 0.0

        left = QtWidgets.QSplitter(QtCore.Qt.Orientation.Vertical)
        left.addWidget(self.library_view)
        left.addWidget(self.failure_view)
        left.setStretchFactor(0, 3)
        left.setStretchFactor(1, 1)

        body = QtWidgets.QSplitter(QtCore.Qt.Orientation.Horizontal)
        body.addWidget(left)
        body.addWidget(self.queue_view)
        body.setStretchFactor(0, 1)
        body.setStretchFactor(1, 1)

        central = QtWidgets.QWidget()
        layout = QtWidgets.QVBoxLayout(central)
        layout.addWidget(self.now_playing)
        layout.addWidget(body, 1)
        layout.addWidget(self.transport)
        layout.addWidget(self.status)
        self.setCentralWidget(central)

        # Transport
        self.transport.playPauseClicked.connect(self.controller.play_pause)
        self.transport.stopClicked.connect(self.controller.stop)
        self.transport.prevClicked.connect(self.controller.previous_track)
        self.transport.nextClicked.connect(self.controller.next_track)
        self.transport.seekRequested.connect(self.controller.seek_fraction)
        self.transport.volumeChanged.connect(self.controller.set_volume)
        self.transport.shuffleToggled.connect(self._on_shuffle_toggled)
        self.transport.repeatChanged.connect(self._on_repeat_changed)

        # Queue and library
        self.queue_view.addFilesRequested.connect(self._add_files_dialog)
        self.queue_view.addFolderRequested.connect(self._add_folder_dialog)
        self.queue_view.clearRequested.connect(self.controller.clear_queue)
        self.queue_view.trackActivated.connect(self.controller.play_track)
        self.queue_view.removeRequested.connect(self.controller.remove_from_queue)
        self.queue_view.filesDropped.connect(self._start_scan_files)
        self.library_view.searchChanged.connect(self._on_search_changed)
        self.library_view.urlSubmitted.connect(self._on_url_submitted)
        self.library_view.trackActivated.connect(self.controller.play_track)
        self.library_view.removeRequested.connect(self.controller.remove_track)
        self.failure_view.retryRequested.connect(self.controller.retry)

        # Controller feedback
        self.controller.stateChanged.connect(self._on_state_changed)
        self.controller.trackChanged.connect(self._on_track_changed)
        self.controller.durationChanged.connect(self._on_duration_changed)
        self.controller.volumeChanged.connect(self.transport.set_volume)
        self.controller.errorOccurred.connect(self._on_error)
        self.controller.statusChanged.connect(self.status.setText)
        self.controller.queueChanged.connect(self._refresh_queue)
        self.controller.libraryChanged.connect(self._refresh_library)

        # Timers
        self._engine_timer = QtCore.QTimer(self)
        self._engine_timer.setInterval(ENGINE_TICK_MS)
        self._engine_timer.timeout.connect(self.controller.tick)
        self._engine_timer.start()
        self._timer = QtCore.QTimer(self)
        self._timer.setInterval(UI_TICK_MS)
        self._timer.timeout.connect(self._tick)
        self._timer.start()

        # Shortcuts
        QtGui.QShortcut(QtGui.QKeySequence("Space"), self, activated=self.controller.play_pause)
        QtGui.QShortcut(QtGui.QKeySequence("Ctrl+P"), self, activated=self.controller.play_pause)
        QtGui.QShortcut(QtGui.QKeySequence("Ctrl+U"), self, activated=self.controller.volume_up)
        QtGui.QShortcut(QtGui.QKeySequence("Ctrl+D"), self, activated=self.controller.volume_down)
        QtGui.QShortcut(QtGui.QKeySequence("Ctrl+O"), self, activated=self._add_files_dialog)
        QtGui.QShortcut(QtGui.QKeySequence("Ctrl+L"), self, activated=self._add_folder_dialog)
        QtGui.QShortcut(QtGui.QKeySequence("Ctrl+N"), self, activated=self.controller.next_track)
        QtGui.QShortcut(QtGui.QKeySequence("Ctrl+B"), self, activated=self.controller.previous_track)
        QtGui.QShortcut(
            QtGui.QKeySequence("Ctrl+Right"), self, activated=lambda: self._seek_relative(10)
        )
        QtGui.QShortcut(
            QtGui.QKeySequence("Ctrl+Left"), self, activated=lambda: self._seek_relative(-10)
        )

        self.controller.restore_session()
        self.controller.import_collections()
        self.transport.set_volume(self.controller.engine.volume)
        self.transport.set_shuffle(self.controller.queue.shuffle)
        self.transport.set_repeat(self.controller.queue.repeat)
        self._refresh_library()
        self._refresh_queue()
        self._on_state_changed(self.controller.state)
        self._initial_warnings()

    def _initial_warnings(self):
        missing = []
        if sd is None:
            missing.append(f"sounddevice not available: {_sounddevice_import_error}")
        if not have_exe("ffmpeg"):
            missing.append("ffmpeg not found in PATH.")
        if not have_exe("ffprobe"):
            missing.append("ffprobe not found in PATH; track metadata will be limited.")
        if missing:
            QtWidgets.QMessageBox.warning(self, "Missing dependencies", "\n".join(missing))

    # -------------------------------------------------------------------------
    # Import
    # -------------------------------------------------------------------------

    def _add_files_dialog(self):
        paths = self.controller.choose_paths("file")
        if paths:
            self._start_scan(paths, is_folder=False)

    def _add_folder_dialog(self):
        paths = self.controller.choose_paths("folder")
        if paths:
            self._start_scan(paths, is_folder=True)

    def _start_scan_files(self, paths: list[str]) -> None:
        folders = [p for p in paths if os.path.isdir(p)]
        files = [p for p in paths if not os.path.isdir(p)]
        if folders:
            self._start_scan(folders, is_folder=True)
        if files:
            self._start_scan(files, is_folder=False)

    def _start_scan(self, paths: list[str], *, is_folder: bool) -> None:
        if self._scan_thread is not None:
            self._stop_scan_worker()
        worker = LibraryScanWorker(self.controller.collection, paths, is_folder)
        thread = QtCore.QThread(self)
        worker.moveToThread(thread)
        thread.started.connect(worker.run)
        worker.progress.connect(
            lambda _count, message: self.status.setText(message),
            QtCore.Qt.ConnectionType.QueuedConnection,
        )
        worker.finished.connect(self._on_scan_finished, QtCore.Qt.ConnectionType.QueuedConnection)
        thread.start()
        self._scan_worker = worker
        self._scan_thread = thread

    def _on_scan_finished(self, report: ImportReport) -> None:
        worker = self.sender()
        if worker is not self._scan_worker:
            return
        self._stop_scan_worker()
        self.controller.accept_import(report)

    def _stop_scan_worker(self) -> None:
        worker = self._scan_worker
        thread = self._scan_thread
        self._scan_worker = None
        self._scan_thread = None
        if worker is not None:
            worker.stop()
        if thread is not None:
            thread.quit()
            thread.wait()
            thread.deleteLater()
        if worker is not None:
            worker.deleteLater()

    def _on_url_submitted(self, text: str) -> None:
        if self.controller.open_url(text) is not None:
            self.library_view.clear_query()

    # -------------------------------------------------------------------------
    # Playback feedback
    # -------------------------------------------------------------------------

    def _on_shuffle_toggled(self, on: bool):
        self.controller.set_shuffle(on)
        self.settings.setValue("playback/shuffle", on)

    def _on_repeat_changed(self, mode: RepeatMode):
        self.controller.set_repeat(mode)
        self.settings.setValue("playback/repeat", mode.value)

    def _seek_relative(self, delta_sec: float):
        self.controller.seek(self.controller.engine.position() + delta_sec)

    def _on_state_changed(self, state: PlayerState):
        self.transport.set_play_pause_state(state == PlayerState.PLAYING)
        if state == PlayerState.LOADING:
            self.status.setText("Loading…")

    def _on_track_changed(self, track: Optional[Track]):
        if track is None:
            self.now_playing.setText("Nothing playing")
            self.setWindowTitle(f"{APP_NAME} Player")
            return
        title = format_track_title(track)
        self.now_playing.setText(title)
        self.setWindowTitle(f"{title} - {APP_NAME}")

    def _on_duration_changed(self, duration: float):
        self._dur = duration

    def _on_error(self, _record):
        self.failure_view.set_failures(self.controller.failures())

    def _refresh_queue(self):
        self.queue_view.set_tracks(
            self.controller.queued_tracks(),
            self.controller.engine.current_track_id(),
        )

    def _on_search_changed(self, _text: str):
        self.library_view.set_tracks(self.controller.search(self.library_view.query()))

    def _refresh_library(self, *_args):
        self.library_view.set_tracks(self.controller.search(self.library_view.query(), hint=False))

    def _tick(self):
        pos = self.controller.engine.position()
        self.transport.set_time(pos, self._dur)

    def closeEvent(self, e: QtGui.QCloseEvent):
        self._stop_scan_worker()
        self.controller.shutdown()
        super().closeEvent(e)
