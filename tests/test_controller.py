import pytest

from audio.engine import PlaybackEngine
from conftest import FakeOpener, FakeSink, fake_probe
from controller import PlayerController
from errors import SourceError, SourceErrorKind
from library import TrackCollection
from models import LocalOrigin, PlayerState, RemoteOrigin, RepeatMode
from playqueue import PlaybackQueue


class _Picker:
    def __init__(self, result):
        self.result = result
        self.calls = []

    def __call__(self, mode, file_filter):
        self.calls.append((mode, file_filter))
        return self.result


@pytest.fixture
def controller(spawner, clock, tmp_path):
    collection = TrackCollection(probe=fake_probe)
    play_queue = PlaybackQueue()
    opener = FakeOpener()
    engine = PlaybackEngine(
        collection,
        play_queue,
        opener,
        FakeSink(),
        spawn=spawner,
        clock=clock,
    )
    ctrl = PlayerController(collection, play_queue, engine, collections_dir=str(tmp_path / "collections"))
    ctrl.opener = opener
    ctrl.statuses = []
    ctrl.statusChanged.connect(ctrl.statuses.append)
    return ctrl


def _settle(controller, spawner):
    spawner.run_all()
    controller.tick()


def _add_local(controller, *names):
    ids = []
    for name in names:
        ids.append(controller.collection.add_known(LocalOrigin(f"/music/{name}.mp3"), name))
    controller.queue.extend(ids)
    return ids


def test_open_url_rejects_empty_and_invalid(controller):
    assert controller.open_url("") is None
    assert controller.open_url("not a url") is None
    assert controller.statuses == ["Please enter a valid YouTube URL"] * 2
    assert len(controller.collection) == 0


def test_open_url_adds_queues_and_autoplays(controller, spawner):
    url = "https://www.youtube.com/watch?v=dQw4w9WgXcQ"
    track_id = controller.open_url(f"  {url} ")

    assert controller.collection.get(track_id).origin == RemoteOrigin(url)
    assert controller.queue.ids() == [track_id]
    assert controller.statuses[-1] == f"Added YouTube audio: {url}"
    assert controller.state == PlayerState.LOADING

    _settle(controller, spawner)
    assert controller.state == PlayerState.PLAYING


def test_open_url_while_playing_only_queues(controller, spawner):
    first, second = _add_local(controller, "one", "two")
    controller.play_track(first)
    _settle(controller, spawner)

    controller.open_url("https://youtu.be/later")
    assert controller.engine.current_track_id() == first
    assert len(controller.queue) == 3


def test_remove_at_cursor_then_end_of_queue(controller, spawner):
    a, b, c = _add_local(controller, "A", "B", "C")
    controller.play_track(a)
    _settle(controller, spawner)

    assert controller.next_track() == b
    _settle(controller, spawner)

    controller.remove_from_queue(b)
    assert controller.queue.current() == c
    assert controller.engine.current_track_id() == c
    _settle(controller, spawner)
    assert controller.state == PlayerState.PLAYING

    assert controller.next_track() is None
    assert controller.state == PlayerState.STOPPED
    assert controller.statuses[-1] == "End of queue"


def test_previous_at_start_does_nothing(controller, spawner):
    a, _ = _add_local(controller, "A", "B")
    controller.play_track(a)
    _settle(controller, spawner)

    assert controller.previous_track() is None
    assert controller.engine.current_track_id() == a
    assert controller.state == PlayerState.PLAYING


def test_play_pause_cycles_and_handles_empty_queue(controller, spawner):
    controller.play_pause()
    assert controller.statuses[-1] == "Queue is empty"

    a, _ = _add_local(controller, "A", "B")
    controller.play_pause()
    assert controller.engine.current_track_id() == a
    _settle(controller, spawner)

    controller.play_pause()
    assert controller.state == PlayerState.PAUSED
    controller.play_pause()
    assert controller.state == PlayerState.PLAYING


def test_picker_cancel_is_a_noop(controller):
    picker = _Picker(None)
    controller.set_picker(picker)

    assert controller.open_with_picker("file") is None
    assert picker.calls[0][0] == "file"
    assert "*.mp3" in picker.calls[0][1]
    assert controller.statuses == []


def test_open_files_reports_failures_and_autoplays(controller, tmp_path):
    paths = []
    for name in ("good.mp3", "corrupt.mp3", "also.flac"):
        path = tmp_path / name
        path.write_bytes(b"\x00")
        paths.append(str(path))
    controller.set_picker(_Picker(paths))

    report = controller.open_with_picker("file")

    assert len(report.added) == 2
    assert len(report.errors) == 1
    assert controller.statuses[-1] == "Added 2 track(s), 1 could not be imported"
    assert controller.queue.ids() == report.added
    assert controller.engine.current_track_id() == report.added[0]


def test_open_folder_from_picker(controller, tmp_path):
    folder = tmp_path / "album"
    folder.mkdir()
    for name in ("01.mp3", "02.mp3"):
        (folder / name).write_bytes(b"\x00")
    controller.set_picker(_Picker([str(folder)]))

    report = controller.open_with_picker("folder")
    assert len(report.added) == 2
    assert controller.statuses[-1] == "Added 2 track(s)"


def test_import_collections_fills_library_without_queueing(controller, tmp_path):
    folder = tmp_path / "collections"
    folder.mkdir()
    (folder / "kept.ogg").write_bytes(b"\x00")

    report = controller.import_collections()
    assert len(report.added) == 1
    assert len(controller.queue) == 0
    assert controller.state == PlayerState.STOPPED


def test_import_collections_missing_folder(controller):
    assert controller.import_collections() is None


def test_volume_steps_are_clamped(controller):
    controller.set_volume(0.5)
    assert controller.volume_up() == pytest.approx(0.55)
    assert controller.volume_down() == pytest.approx(0.5)

    controller.set_volume(0.98)
    assert controller.volume_up() == 1.0
    controller.set_volume(0.01)
    assert controller.volume_down() == 0.0


def test_remove_playing_track_from_library_follows_queue(controller, spawner):
    a, b = _add_local(controller, "A", "B")
    controller.play_track(a)
    _settle(controller, spawner)

    assert controller.remove_track(a) is True
    assert a not in controller.queue
    assert controller.engine.current_track_id() == b


def test_remove_last_remaining_track_stops(controller, spawner):
    (a,) = _add_local(controller, "A")
    controller.play_track(a)
    _settle(controller, spawner)

    controller.remove_track(a)
    assert controller.state == PlayerState.STOPPED


def test_play_track_enqueues_library_only_track(controller):
    track_id = controller.collection.add_known(LocalOrigin("/music/solo.mp3"), "Solo")
    assert controller.play_track(track_id) is True
    assert controller.queue.current() == track_id


def test_play_track_unknown_id(controller):
    assert controller.play_track(42) is False
    assert controller.statuses[-1] == "That track is no longer in the library"


def test_search_without_match_suggests_url(controller):
    _add_local(controller, "Song")
    assert [t.title for t in controller.search("song")] == ["Song"]
    assert controller.search("zzz") == []
    assert "Paste a YouTube URL" in controller.statuses[-1]


def test_quiet_search_leaves_status_alone(controller):
    _add_local(controller, "Song")
    before = list(controller.statuses)
    assert controller.search("zzz", hint=False) == []
    assert controller.statuses == before


def test_failures_surface_as_status(controller, spawner):
    (a,) = _add_local(controller, "A")
    controller.opener.script(
        controller.collection.get(a).origin,
        SourceError(SourceErrorKind.NOT_FOUND, "gone"),
    )
    errors = []
    controller.errorOccurred.connect(errors.append)

    controller.play_track(a)
    _settle(controller, spawner)

    assert len(errors) == 1
    assert controller.failures() == errors
    assert controller.statuses[-1] == "Skipped A: gone"


def test_shuffle_and_repeat_reach_queue(controller):
    _add_local(controller, "A", "B", "C")
    controller.set_shuffle(True)
    controller.set_repeat(RepeatMode.ALL)
    assert controller.queue.shuffle
    assert controller.queue.loop


def test_clear_queue_stops_playback(controller, spawner):
    (a,) = _add_local(controller, "A")
    controller.play_track(a)
    _settle(controller, spawner)

    controller.clear_queue()
    assert len(controller.queue) == 0
    assert controller.state == PlayerState.STOPPED
