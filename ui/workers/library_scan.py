import os

from PySide6 import QtCore

from library import TrackCollection
from models import ImportReport


class LibraryScanWorker(QtCore.QObject):
    """Imports files or folders into the collection off the GUI thread."""

    progress = QtCore.Signal(int, str)
    finished = QtCore.Signal(object)  # ImportReport

    def __init__(self, collection: TrackCollection, paths: list[str], is_folder: bool, parent=None):
        super().__init__(parent)
        self._collection = collection
        self._paths = paths
        self._is_folder = is_folder
        self._abort = False

    @QtCore.Slot()
    def run(self) -> None:
        report = ImportReport()
        if self._is_folder:
            for folder in self._paths:
                if self._abort:
                    break
                report.merge(
                    self._collection.add_folder(folder, progress_callback=self._emit_progress)
                )
        else:
            report = self._collection.add_files(self._paths, progress_callback=self._emit_progress)
        self.finished.emit(report)

    def _emit_progress(self, count: int, path: str):
        self.progress.emit(count, f"Adding: {os.path.basename(path)}")

    def stop(self) -> None:
        self._abort = True
        self._collection.abort_scan()
