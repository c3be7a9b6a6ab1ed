import types

import pytest

from conftest import fake_probe
from errors import TrackImportError
from library import TrackCollection
from models import LocalOrigin, RemoteOrigin, TrackMetadata
from ui.workers.library_scan import LibraryScanWorker


def _touch(path, data=b"\x00" * 16):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
    return path


def test_add_folder_collects_per_file_errors(tmp_path):
    for name in ("a.mp3", "b.flac", "sub/c.ogg", "corrupt.mp3"):
        _touch(tmp_path / name)
    _touch(tmp_path / "notes.txt")

    collection = TrackCollection(probe=fake_probe)
    report = collection.add_folder(str(tmp_path))

    assert len(collection) == 3
    assert len(report.added) == 3
    assert len(report.errors) == 1
    assert report.errors[0].path.endswith("corrupt.mp3")
    assert report.errors[0].reason == "unreadable or corrupt audio"
    assert not report.ok


def test_add_folder_non_recursive_skips_subfolders(tmp_path):
    _touch(tmp_path / "top.mp3")
    _touch(tmp_path / "deep" / "inner.mp3")

    collection = TrackCollection(probe=fake_probe)
    report = collection.add_folder(str(tmp_path), recursive=False)

    assert [collection.get(i).title for i in report.added] == ["top"]


def test_add_folder_missing_folder_reports_error(tmp_path):
    collection = TrackCollection(probe=fake_probe)
    report = collection.add_folder(str(tmp_path / "nope"))
    assert report.added == []
    assert report.errors[0].reason == "not a folder"


def test_add_reports_progress(tmp_path):
    paths = [str(_touch(tmp_path / f"{n}.mp3")) for n in ("one", "two")]
    seen = []

    collection = TrackCollection(probe=fake_probe)
    collection.add_files(paths, progress_callback=lambda count, path: seen.append((count, path)))

    assert seen == [(1, paths[0]), (2, paths[1])]


def test_add_local_rejects_missing_and_unsupported(tmp_path):
    collection = TrackCollection(probe=fake_probe)

    with pytest.raises(TrackImportError) as missing:
        collection.add(LocalOrigin(str(tmp_path / "ghost.mp3")))
    assert missing.value.reason == "file not found"

    text_file = _touch(tmp_path / "readme.txt")
    with pytest.raises(TrackImportError) as unsupported:
        collection.add(LocalOrigin(str(text_file)))
    assert unsupported.value.reason == "unsupported format"
    assert len(collection) == 0


def test_add_uses_probe_metadata(tmp_path):
    path = _touch(tmp_path / "song.mp3")

    def probe(_path):
        return TrackMetadata(duration_sec=0.0, artist="Artist", album="Album", title="Tagged", readable=True)

    collection = TrackCollection(probe=probe)
    track = collection.get(collection.add(LocalOrigin(str(path))))

    assert track.title == "Tagged"
    assert track.artist == "Artist"
    assert track.duration_sec is None
    assert not track.is_remote


def test_add_same_origin_twice_returns_existing_id():
    collection = TrackCollection(probe=fake_probe)
    first = collection.add(RemoteOrigin("https://youtu.be/abc"))
    second = collection.add(RemoteOrigin("https://youtu.be/abc"))

    assert first == second
    assert len(collection) == 1
    assert collection.get(first).title == "https://youtu.be/abc"


def test_all_keeps_insertion_order():
    collection = TrackCollection(probe=fake_probe)
    ids = [
        collection.add_known(LocalOrigin("/music/zeta.mp3"), "Zeta"),
        collection.add_known(RemoteOrigin("https://youtu.be/x"), "Alpha"),
        collection.add_known(LocalOrigin("/music/mid.mp3"), "Mid"),
    ]
    assert [t.id for t in collection.all()] == ids


def test_search_is_lazy_and_case_insensitive():
    collection = TrackCollection(probe=fake_probe)
    collection.add_known(LocalOrigin("/music/Blue Monday.mp3"), "Blue Monday")
    collection.add_known(LocalOrigin("/music/other.mp3"), "Something Else")
    collection.add_known(RemoteOrigin("https://youtu.be/BLUEish"), "Remote")

    results = collection.search("blue")
    assert isinstance(results, types.GeneratorType)
    assert [t.title for t in results] == ["Blue Monday", "Remote"]
    assert len(list(collection.search(""))) == 3
    assert list(collection.search("missing")) == []


def test_remove_notifies_listeners():
    collection = TrackCollection(probe=fake_probe)
    track_id = collection.add_known(LocalOrigin("/music/a.mp3"), "A")
    removed = []
    collection.on_removed(removed.append)

    assert collection.remove(track_id) is True
    assert collection.remove(track_id) is False
    assert removed == [track_id]
    assert collection.id_for(LocalOrigin("/music/a.mp3")) is None


def test_update_replaces_track_record():
    collection = TrackCollection(probe=fake_probe)
    track_id = collection.add_known(RemoteOrigin("https://youtu.be/q"), "")

    updated = collection.update(track_id, title="Resolved", duration_sec=42.0)
    assert updated.title == "Resolved"
    assert collection.get(track_id).duration_sec == 42.0


def test_scan_worker_reports_progress_and_result(tmp_path):
    for name in ("a.mp3", "corrupt.mp3"):
        _touch(tmp_path / name)
    collection = TrackCollection(probe=fake_probe)
    worker = LibraryScanWorker(collection, [str(tmp_path)], is_folder=True)
    progress = []
    reports = []
    worker.progress.connect(lambda count, message: progress.append(message))
    worker.finished.connect(reports.append)

    worker.run()

    assert progress == ["Adding: a.mp3"]
    assert len(reports[0].added) == 1
    assert len(reports[0].errors) == 1
