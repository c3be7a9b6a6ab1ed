import pytest

from audio.source import END_OF_STREAM, AudioSource, SourceOpener, make_ffmpeg_cmd
from conftest import fake_probe
from errors import ResolverError, ResolverFailure, SourceError, SourceErrorKind
from models import LocalOrigin, RemoteOrigin, ResolvedStream


class _Resolver:
    def __init__(self, outcome):
        self.outcome = outcome
        self.invalidated = []

    def resolve(self, url):
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return self.outcome

    def invalidate(self, url):
        self.invalidated.append(url)


class _RecordingFactory:
    def __init__(self):
        self.calls = []

    def __call__(self, origin, input_url, **kwargs):
        self.calls.append((origin, input_url, kwargs))
        return AudioSource(
            origin,
            sample_rate=kwargs["sample_rate"],
            channels=kwargs["channels"],
            title=kwargs["title"],
            duration_sec=kwargs["duration_sec"],
            seekable=kwargs["seekable"],
        )


def _opener(resolver=None, *, decoder=True, factory=None):
    return SourceOpener(
        resolver or _Resolver(None),
        probe=fake_probe,
        source_factory=factory or _RecordingFactory(),
        decoder_available=lambda: decoder,
    )


def test_local_missing_file_is_not_found(tmp_path):
    with pytest.raises(SourceError) as excinfo:
        _opener().open(LocalOrigin(str(tmp_path / "gone.mp3")))
    assert excinfo.value.kind == SourceErrorKind.NOT_FOUND


def test_local_unsupported_extension(tmp_path):
    path = tmp_path / "cover.jpg"
    path.write_bytes(b"\xff\xd8")
    with pytest.raises(SourceError) as excinfo:
        _opener().open(LocalOrigin(str(path)))
    assert excinfo.value.kind == SourceErrorKind.UNSUPPORTED


def test_local_without_decoder_is_unsupported(tmp_path):
    path = tmp_path / "song.mp3"
    path.write_bytes(b"\x00")
    with pytest.raises(SourceError) as excinfo:
        _opener(decoder=False).open(LocalOrigin(str(path)))
    assert excinfo.value.kind == SourceErrorKind.UNSUPPORTED


def test_local_corrupt_file_is_decode_error(tmp_path):
    path = tmp_path / "corrupt.mp3"
    path.write_bytes(b"\x00")
    with pytest.raises(SourceError) as excinfo:
        _opener().open(LocalOrigin(str(path)))
    assert excinfo.value.kind == SourceErrorKind.DECODE_ERROR


def test_local_open_passes_probe_details(tmp_path):
    path = tmp_path / "My Song.flac"
    path.write_bytes(b"\x00")
    factory = _RecordingFactory()

    source = _opener(factory=factory).open(LocalOrigin(str(path)), start_sec=12.0)

    origin, input_url, kwargs = factory.calls[0]
    assert input_url == str(path)
    assert kwargs["title"] == "My Song"
    assert kwargs["start_sec"] == 12.0
    assert kwargs["seekable"] is True
    assert source.duration_sec == 180.0


@pytest.mark.parametrize(
    "failure, kind",
    [
        (ResolverFailure.UNAVAILABLE, SourceErrorKind.NETWORK_UNAVAILABLE),
        (ResolverFailure.TIMEOUT, SourceErrorKind.TIMEOUT),
        (ResolverFailure.NOT_FOUND, SourceErrorKind.DECODE_ERROR),
    ],
)
def test_resolver_failures_keep_their_cause(failure, kind):
    cause = ResolverError(failure, "https://youtu.be/x", "nope")
    with pytest.raises(SourceError) as excinfo:
        _opener(_Resolver(cause)).open(RemoteOrigin("https://youtu.be/x"))

    assert excinfo.value.kind == kind
    assert excinfo.value.cause is cause
    assert excinfo.value.__cause__ is cause


def test_remote_open_uses_resolved_stream():
    stream = ResolvedStream(
        url="https://cdn/audio",
        title="Resolved",
        duration_sec=61.0,
        seekable=False,
        source_url="https://youtu.be/x",
    )
    factory = _RecordingFactory()
    source = _opener(_Resolver(stream), factory=factory).open(RemoteOrigin("https://youtu.be/x"), start_sec=30.0)

    _, input_url, kwargs = factory.calls[0]
    assert input_url == "https://cdn/audio"
    assert kwargs["start_sec"] == 0.0
    assert source.title == "Resolved"
    assert not source.seekable


def test_remote_without_decoder_skips_resolver():
    resolver = _Resolver(AssertionError("resolver should not be called"))
    with pytest.raises(SourceError) as excinfo:
        _opener(resolver, decoder=False).open(RemoteOrigin("https://youtu.be/x"))
    assert excinfo.value.kind == SourceErrorKind.UNSUPPORTED


def test_invalidate_only_touches_remote_origins():
    resolver = _Resolver(None)
    opener = _opener(resolver)
    opener.invalidate(LocalOrigin("/music/a.mp3"))
    opener.invalidate(RemoteOrigin("https://youtu.be/x"))
    assert resolver.invalidated == ["https://youtu.be/x"]


def test_base_source_rejects_seek():
    source = AudioSource(RemoteOrigin("https://youtu.be/x"), seekable=False)
    with pytest.raises(SourceError) as excinfo:
        source.seek(10.0)
    assert excinfo.value.kind == SourceErrorKind.UNSUPPORTED


def test_end_of_stream_marker():
    assert not END_OF_STREAM
    assert type(END_OF_STREAM)() is END_OF_STREAM
    assert repr(END_OF_STREAM) == "END_OF_STREAM"


def test_ffmpeg_cmd_for_local_and_remote():
    local = make_ffmpeg_cmd("/music/a.mp3", 5.0, 44100, 2)
    assert local[local.index("-ss") + 1] == "5.0"
    assert local[local.index("-i") + 1] == "/music/a.mp3"
    assert local[-3:] == ["-f", "f32le", "pipe:1"]
    assert "-reconnect" not in local

    remote = make_ffmpeg_cmd("https://cdn/audio", -1.0, 48000, 1, remote=True)
    assert "-reconnect" in remote
    assert remote[remote.index("-ss") + 1] == "0.0"
    assert remote[remote.index("-ar") + 1] == "48000"
