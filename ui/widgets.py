from __future__ import annotations

from typing import List, Optional

from PySide6 import QtCore, QtGui, QtWidgets

from models import FailureRecord, RepeatMode, Track, format_track_title
from utils import clamp, format_time


class TransportWidget(QtWidgets.QWidget):
    playPauseClicked = QtCore.Signal()
    stopClicked = QtCore.Signal()
    prevClicked = QtCore.Signal()
    nextClicked = QtCore.Signal()
    seekRequested = QtCore.Signal(float)  # fraction 0..1
    volumeChanged = QtCore.Signal(float)
    shuffleToggled = QtCore.Signal(bool)
    repeatChanged = QtCore.Signal(object)  # RepeatMode

    _REPEAT_CYCLE = (RepeatMode.OFF, RepeatMode.ALL, RepeatMode.ONE)
    _REPEAT_LABELS = {
        RepeatMode.OFF: "Repeat: Off",
        RepeatMode.ALL: "Repeat: All",
        RepeatMode.ONE: "Repeat: One",
    }

    def __init__(self, parent=None):
        super().__init__(parent)

        self.prev_btn = QtWidgets.QToolButton(text="⏮")
        self.play_pause_btn = QtWidgets.QToolButton(text="▶")
        self.stop_btn = QtWidgets.QToolButton(text="⏹")
        self.next_btn = QtWidgets.QToolButton(text="⏭")
        transport_buttons = [
            self.prev_btn,
            self.play_pause_btn,
            self.stop_btn,
            self.next_btn,
        ]
        for button in transport_buttons:
            button.setMinimumSize(36, 36)
            button.setSizePolicy(
                QtWidgets.QSizePolicy.Policy.Fixed,
                QtWidgets.QSizePolicy.Policy.Fixed,
            )
        self.prev_btn.setToolTip("Previous track.")
        self.prev_btn.setAccessibleName("Previous track")
        self.play_pause_btn.setToolTip("Play/Pause (Space, Ctrl+P).")
        self.play_pause_btn.setAccessibleName("Play/Pause")
        self.stop_btn.setToolTip("Stop playback.")
        self.stop_btn.setAccessibleName("Stop")
        self.next_btn.setToolTip("Next track (Ctrl+N).")
        self.next_btn.setAccessibleName("Next track")

        self.shuffle_btn = QtWidgets.QToolButton(text="Shuffle")
        self.shuffle_btn.setCheckable(True)
        self.shuffle_btn.setToolTip("Shuffle the rest of the queue.")
        self.repeat_btn = QtWidgets.QToolButton(text=self._REPEAT_LABELS[RepeatMode.OFF])
        self.repeat_btn.setToolTip("Cycle repeat mode.")
        self._repeat = RepeatMode.OFF

        self.pos_slider = QtWidgets.QSlider(QtCore.Qt.Orientation.Horizontal)
        self.pos_slider.setRange(0, 1000)
        self.pos_slider.setValue(0)
        self.pos_slider.setToolTip("Seek position.")
        self.pos_slider.setAccessibleName("Seek position")

        self.time_label = QtWidgets.QLabel("0:00 / 0:00")
        self.time_label.setAlignment(QtCore.Qt.AlignmentFlag.AlignRight | QtCore.Qt.AlignmentFlag.AlignVCenter)

        self.volume_slider = QtWidgets.QSlider(QtCore.Qt.Orientation.Horizontal)
        self.volume_slider.setRange(0, 100)
        self.volume_slider.setValue(50)
        self.volume_slider.setFixedWidth(120)
        self.volume_slider.setToolTip("Adjust volume (Ctrl+U / Ctrl+D).")
        self.volume_slider.setAccessibleName("Volume")

        btns = QtWidgets.QHBoxLayout()
        for b in transport_buttons:
            btns.addWidget(b)
        btns.addSpacing(12)
        btns.addWidget(self.shuffle_btn)
        btns.addWidget(self.repeat_btn)
        btns.addStretch(1)
        btns.addWidget(QtWidgets.QLabel("Vol"))
        btns.addWidget(self.volume_slider)

        layout = QtWidgets.QVBoxLayout(self)
        layout.addLayout(btns)

        seek_row = QtWidgets.QHBoxLayout()
        seek_row.addWidget(self.pos_slider, 1)
        seek_row.addWidget(self.time_label)
        layout.addLayout(seek_row)

        self.prev_btn.clicked.connect(self.prevClicked)
        self.play_pause_btn.clicked.connect(self.playPauseClicked)
        self.stop_btn.clicked.connect(self.stopClicked)
        self.next_btn.clicked.connect(self.nextClicked)
        self.shuffle_btn.toggled.connect(self.shuffleToggled)
        self.repeat_btn.clicked.connect(self._cycle_repeat)

        self.volume_slider.valueChanged.connect(lambda v: self.volumeChanged.emit(v / 100.0))

        self._dragging = False
        self.pos_slider.sliderPressed.connect(lambda: setattr(self, "_dragging", True))
        self.pos_slider.sliderReleased.connect(self._on_seek_end)

    def _on_seek_end(self):
        self._dragging = False
        frac = self.pos_slider.value() / 1000.0
        self.seekRequested.emit(frac)

    def _cycle_repeat(self):
        idx = self._REPEAT_CYCLE.index(self._repeat)
        self.set_repeat(self._REPEAT_CYCLE[(idx + 1) % len(self._REPEAT_CYCLE)])
        self.repeatChanged.emit(self._repeat)

    def set_repeat(self, mode: RepeatMode):
        self._repeat = mode
        self.repeat_btn.setText(self._REPEAT_LABELS[mode])

    def set_shuffle(self, on: bool):
        self.shuffle_btn.blockSignals(True)
        self.shuffle_btn.setChecked(on)
        self.shuffle_btn.blockSignals(False)

    def set_volume(self, volume: float):
        self.volume_slider.blockSignals(True)
        self.volume_slider.setValue(int(round(clamp(volume, 0.0, 1.0) * 100)))
        self.volume_slider.blockSignals(False)

    def set_play_pause_state(self, playing: bool):
        self.play_pause_btn.setText("⏸" if playing else "▶")

    def set_time(self, pos_sec: float, dur_sec: float):
        self.time_label.setText(f"{format_time(pos_sec)} / {format_time(dur_sec)}")
        if dur_sec > 0 and not self._dragging:
            frac = clamp(pos_sec / dur_sec, 0.0, 1.0)
            self.pos_slider.setValue(int(round(frac * 1000)))
        elif dur_sec <= 0 and not self._dragging:
            self.pos_slider.setValue(0)


def _track_item(track: Track) -> QtWidgets.QListWidgetItem:
    duration = format_time(track.duration_sec) if track.duration_sec else "--:--"
    prefix = "● " if track.is_remote else ""
    it = QtWidgets.QListWidgetItem(f"{prefix}{format_track_title(track)} - {duration}")
    it.setData(QtCore.Qt.ItemDataRole.UserRole, track.id)
    it.setToolTip(track.location)
    return it


class QueueWidget(QtWidgets.QWidget):
    addFilesRequested = QtCore.Signal()
    addFolderRequested = QtCore.Signal()
    clearRequested = QtCore.Signal()
    trackActivated = QtCore.Signal(int)        # track id
    removeRequested = QtCore.Signal(int)       # track id
    filesDropped = QtCore.Signal(list)

    def __init__(self, parent=None):
        super().__init__(parent)
        header = QtWidgets.QLabel("Queue")
        header.setObjectName("queue_header")

        self.list = QtWidgets.QListWidget()
        self.list.setSelectionMode(QtWidgets.QAbstractItemView.SelectionMode.SingleSelection)
        self.list.setUniformItemSizes(True)
        self.list.setSpacing(2)
        self.list.setContextMenuPolicy(QtCore.Qt.ContextMenuPolicy.CustomContextMenu)

        style = self.style()
        add_files = QtWidgets.QToolButton()
        add_files.setText("Files")
        add_files.setToolTip("Add files (Ctrl+O)")
        add_files.setIcon(style.standardIcon(QtWidgets.QStyle.StandardPixmap.SP_FileIcon))
        add_files.setToolButtonStyle(QtCore.Qt.ToolButtonStyle.ToolButtonTextBesideIcon)
        add_files.setAutoRaise(True)

        add_folder = QtWidgets.QToolButton()
        add_folder.setText("Folder")
        add_folder.setToolTip("Add folder (Ctrl+L)")
        add_folder.setIcon(style.standardIcon(QtWidgets.QStyle.StandardPixmap.SP_DirOpenIcon))
        add_folder.setToolButtonStyle(QtCore.Qt.ToolButtonStyle.ToolButtonTextBesideIcon)
        add_folder.setAutoRaise(True)

        clear_btn = QtWidgets.QToolButton()
        clear_btn.setText("Clear")
        clear_btn.setToolTip("Clear queue")
        clear_btn.setIcon(style.standardIcon(QtWidgets.QStyle.StandardPixmap.SP_DialogResetButton))
        clear_btn.setToolButtonStyle(QtCore.Qt.ToolButtonStyle.ToolButtonTextBesideIcon)
        clear_btn.setAutoRaise(True)

        for btn in (add_files, add_folder, clear_btn):
            btn.setIconSize(QtCore.QSize(14, 14))

        header_row = QtWidgets.QHBoxLayout()
        header_row.addWidget(header)
        header_row.addStretch(1)
        header_row.addWidget(add_files)
        header_row.addWidget(add_folder)
        header_row.addWidget(clear_btn)

        layout = QtWidgets.QVBoxLayout(self)
        layout.setContentsMargins(8, 8, 8, 8)
        layout.setSpacing(6)
        layout.addLayout(header_row)
        layout.addWidget(self.list, 1)

        add_files.clicked.connect(self.addFilesRequested)
        add_folder.clicked.connect(self.addFolderRequested)
        clear_btn.clicked.connect(self.clearRequested)

        self.list.itemDoubleClicked.connect(self._on_double)
        self.list.customContextMenuRequested.connect(self._on_context_menu)
        self.setAcceptDrops(True)

    def _on_double(self, item: QtWidgets.QListWidgetItem):
        self.trackActivated.emit(int(item.data(QtCore.Qt.ItemDataRole.UserRole)))

    def _on_context_menu(self, pos: QtCore.QPoint):
        item = self.list.itemAt(pos)
        if item is None:
            return
        menu = QtWidgets.QMenu(self)
        remove = menu.addAction("Remove from queue")
        if menu.exec(self.list.mapToGlobal(pos)) == remove:
            self.removeRequested.emit(int(item.data(QtCore.Qt.ItemDataRole.UserRole)))

    def set_tracks(self, tracks: List[Track], current_id: Optional[int]):
        self.list.clear()
        for t in tracks:
            it = _track_item(t)
            if t.id == current_id:
                font = it.font()
                font.setBold(True)
                it.setFont(font)
            self.list.addItem(it)

    def dragEnterEvent(self, e: QtGui.QDragEnterEvent):
        if e.mimeData().hasUrls():
            e.acceptProposedAction()
        else:
            super().dragEnterEvent(e)

    def dropEvent(self, e: QtGui.QDropEvent):
        if e.mimeData().hasUrls():
            paths = [u.toLocalFile() for u in e.mimeData().urls() if u.isLocalFile()]
            if paths:
                self.filesDropped.emit(paths)
            e.acceptProposedAction()
        else:
            super().dropEvent(e)


class LibraryPanel(QtWidgets.QWidget):
    """Library listing with a search box that doubles as the URL input."""

    searchChanged = QtCore.Signal(str)
    urlSubmitted = QtCore.Signal(str)
    trackActivated = QtCore.Signal(int)
    removeRequested = QtCore.Signal(int)

    def __init__(self, parent=None):
        super().__init__(parent)
        header = QtWidgets.QLabel("Library")
        self.search = QtWidgets.QLineEdit()
        self.search.setPlaceholderText("Search, or paste a YouTube URL and press Enter")
        self.search.setClearButtonEnabled(True)
        self.add_url_btn = QtWidgets.QPushButton("Add URL")

        self.list = QtWidgets.QListWidget()
        self.list.setUniformItemSizes(True)
        self.list.setContextMenuPolicy(QtCore.Qt.ContextMenuPolicy.CustomContextMenu)

        search_row = QtWidgets.QHBoxLayout()
        search_row.addWidget(self.search, 1)
        search_row.addWidget(self.add_url_btn)

        layout = QtWidgets.QVBoxLayout(self)
        layout.setContentsMargins(8, 8, 8, 8)
        layout.addWidget(header)
        layout.addLayout(search_row)
        layout.addWidget(self.list, 1)

        self.search.textChanged.connect(self.searchChanged)
        self.search.returnPressed.connect(self._submit)
        self.add_url_btn.clicked.connect(self._submit)
        self.list.itemDoubleClicked.connect(
            lambda item: self.trackActivated.emit(int(item.data(QtCore.Qt.ItemDataRole.UserRole)))
        )
        self.list.customContextMenuRequested.connect(self._on_context_menu)

    def _submit(self):
        text = self.search.text().strip()
        self.urlSubmitted.emit(text)

    def _on_context_menu(self, pos: QtCore.QPoint):
        item = self.list.itemAt(pos)
        if item is None:
            return
        menu = QtWidgets.QMenu(self)
        remove = menu.addAction("Remove from library")
        if menu.exec(self.list.mapToGlobal(pos)) == remove:
            self.removeRequested.emit(int(item.data(QtCore.Qt.ItemDataRole.UserRole)))

    def query(self) -> str:
        return self.search.text()

    def clear_query(self):
        self.search.clear()

    def set_tracks(self, tracks: List[Track]):
        self.list.clear()
        for t in tracks:
            self.list.addItem(_track_item(t))


class FailureLogWidget(QtWidgets.QWidget):
    retryRequested = QtCore.Signal()

    def __init__(self, parent=None):
        super().__init__(parent)
        header = QtWidgets.QLabel("Skipped tracks")
        self.retry_btn = QtWidgets.QToolButton(text="Retry")
        self.retry_btn.setToolTip("Retry the track that failed last.")
        self.list = QtWidgets.QListWidget()

        row = QtWidgets.QHBoxLayout()
        row.addWidget(header)
        row.addStretch(1)
        row.addWidget(self.retry_btn)

        layout = QtWidgets.QVBoxLayout(self)
        layout.setContentsMargins(8, 8, 8, 8)
        layout.addLayout(row)
        layout.addWidget(self.list, 1)

        self.retry_btn.clicked.connect(self.retryRequested)

    def set_failures(self, failures: List[FailureRecord]):
        self.list.clear()
        for record in reversed(failures):
            self.list.addItem(f"{record.title}: {record.reason}")
