import pytest

from shared.exceptions import NotFoundError
from storage.streaming import StreamingGateway, UnsatisfiableRange, parse_range

SONG = "audio/album/02 - song.mp3"
SONG_BYTES = bytes(range(256)) * 4


@pytest.fixture
def gateway(adapter):
    return StreamingGateway(adapter, chunk_size=100)


def _body(response):
    return b"".join(response.body)


@pytest.mark.parametrize("header, expected", [
    (None, None),
    ("", None),
    ("bytes=0-99", (0, 99)),
    ("0-99", (0, 99)),
    ("bytes=100-", (100, 999)),
    ("bytes=-10", (990, 999)),
    ("bytes=-5000", (0, 999)),
    ("bytes=900-5000", (900, 999)),
    ("bytes=0-1,5-6", None),
    ("items=0-1", None),
    ("bytes=-", None),
])
def test_parse_range(header, expected):
    assert parse_range(header, 1000) == expected


@pytest.mark.parametrize("header", ["bytes=1000-", "bytes=5-4", "bytes=-0"])
def test_parse_range_unsatisfiable(header):
    with pytest.raises(UnsatisfiableRange):
        parse_range(header, 1000)


def test_full_object(gateway):
    response = gateway.serve(SONG)

    assert response.status == 200
    assert response.headers["Content-Length"] == "1024"
    assert "Content-Range" not in response.headers
    assert _body(response) == SONG_BYTES


def test_first_hundred_bytes(gateway):
    response = gateway.serve(SONG, "bytes=0-99")

    assert response.status == 206
    assert response.headers["Content-Range"] == "bytes 0-99/1024"
    assert response.headers["Content-Length"] == "100"
    assert _body(response) == SONG_BYTES[:100]


def test_open_ended_range(gateway):
    response = gateway.serve(SONG, "bytes=1000-")

    assert response.headers["Content-Range"] == "bytes 1000-1023/1024"
    assert _body(response) == SONG_BYTES[1000:]


def test_suffix_range(gateway):
    response = gateway.serve(SONG, "bytes=-24")
    assert response.headers["Content-Range"] == "bytes 1000-1023/1024"
    assert len(_body(response)) == 24


def test_end_is_clamped(gateway, s3_client):
    response = gateway.serve(SONG, "bytes=1020-9999")

    assert response.headers["Content-Range"] == "bytes 1020-1023/1024"
    assert s3_client.calls[-1] == ("get_object", SONG, "bytes=1020-1023")
    assert _body(response) == SONG_BYTES[1020:]


def test_unsatisfiable_range(gateway, s3_client):
    response = gateway.serve(SONG, "bytes=2048-")

    assert response.status == 416
    assert response.headers["Content-Range"] == "bytes */1024"
    assert _body(response) == b""
    assert not any(call[0] == "get_object" for call in s3_client.calls)


def test_malformed_range_serves_everything(gateway):
    response = gateway.serve(SONG, "bytes=abc")
    assert response.status == 200
    assert len(_body(response)) == 1024


def test_media_type_comes_from_extension(gateway):
    assert gateway.serve("audio/album/01 - intro.flac").headers["Content-Type"] == "audio/flac"
    assert gateway.serve("audio/album/cover.jpg").headers["Content-Type"] == "application/octet-stream"


def test_playback_headers(gateway):
    headers = gateway.serve(SONG).headers
    assert headers["Accept-Ranges"] == "bytes"
    assert headers["Cache-Control"] == "public, max-age=31536000"
    assert headers["Content-Disposition"] == "inline"


def test_missing_key(gateway):
    with pytest.raises(NotFoundError):
        gateway.serve("audio/missing.mp3")


def _record_bodies(s3_client, monkeypatch):
    bodies = []
    get_object = s3_client.get_object

    def recording(**kwargs):
        response = get_object(**kwargs)
        bodies.append(response["Body"])
        return response
    monkeypatch.setattr(s3_client, "get_object", recording)
    return bodies


def test_closing_unread_body_releases_stream(gateway, s3_client, monkeypatch):
    bodies = _record_bodies(s3_client, monkeypatch)

    response = gateway.serve(SONG, "bytes=0-99")
    response.body.close()

    assert bodies[0]._raw_stream.closed
    assert list(response.body) == []


def test_exhausted_body_releases_stream(gateway, s3_client, monkeypatch):
    bodies = _record_bodies(s3_client, monkeypatch)

    assert _body(gateway.serve(SONG)) == SONG_BYTES
    assert bodies[0]._raw_stream.closed
