from datetime import datetime, timezone
from types import SimpleNamespace

import pytest
from pyftpdlib.authorizers import AuthenticationFailed
from pyftpdlib.filesystems import FilesystemError

from ftp_bridge.server import (
    ObjectStoreFilesystem, SessionAuthorizer, format_list_line, format_mlsx_line,
)
from ftp_bridge.session import TransferCredentials, TransferSession
from shared.models import VirtualDirectory, VirtualFile


@pytest.fixture
def session(adapter):
    session = TransferSession(TransferCredentials("admin", "s3cret"), lambda: adapter)
    session.login("admin", "s3cret")
    return session


@pytest.fixture
def fs(session):
    channel = SimpleNamespace(session=session, unicode_errors="replace")
    return ObjectStoreFilesystem("/", channel)


def test_listdir(fs):
    assert sorted(fs.listdir("/audio")) == ["album", "ftp", "single.wav"]


def test_isdir_and_isfile(fs):
    assert fs.isdir("/")
    assert fs.isdir("/audio/album")
    assert not fs.isdir("/audio/single.wav")
    assert fs.isfile("/audio/single.wav")
    assert not fs.isfile("/audio/missing.mp3")
    assert not fs.islink("/audio/single.wav")


def test_chdir_updates_cwd(fs, session):
    fs.chdir("/audio/album")
    assert fs.cwd == "/audio/album"
    assert session.current_path == "/audio/album"


def test_chdir_to_file_is_a_filesystem_error(fs):
    with pytest.raises(FilesystemError):
        fs.chdir("/audio/single.wav")


def test_getsize_and_getmtime(fs):
    assert fs.getsize("/audio/album/01 - intro.flac") == 100
    expected = datetime(2024, 5, 1, 12, 30, tzinfo=timezone.utc).timestamp()
    assert fs.getmtime("/audio/album/01 - intro.flac") == expected


def test_open_and_seek(fs):
    handle = fs.open("/audio/album/02 - song.mp3", "rb")
    assert handle.read(3) == bytes([0, 1, 2])

    handle.seek(1020)
    assert handle.read(-1) == bytes([252, 253, 254, 255])
    handle.close()
    assert handle.closed


def test_open_missing_file(fs):
    with pytest.raises(FilesystemError):
        fs.open("/audio/missing.mp3", "rb")


def test_open_for_writing_is_rejected(fs):
    with pytest.raises(FilesystemError):
        fs.open("/audio/new.mp3", "wb")


@pytest.mark.parametrize("call", [
    lambda fs: fs.mkdir("/audio/new"),
    lambda fs: fs.rmdir("/audio/album"),
    lambda fs: fs.remove("/audio/single.wav"),
    lambda fs: fs.rename("/audio/single.wav", "/audio/x.wav"),
    lambda fs: fs.chmod("/audio/single.wav", 0o777),
])
def test_mutations_answer_with_filesystem_errors(fs, session, call):
    with pytest.raises(FilesystemError):
        call(fs)
    assert session.is_authenticated


def test_format_list(fs):
    lines = list(fs.format_list("/audio", ["album", "single.wav", "ghost.mp3"]))

    assert len(lines) == 2
    assert lines[0].startswith(b"drwxr-xr-x")
    assert lines[0].endswith(b" album\r\n")
    assert lines[1].startswith(b"-rw-r--r--")
    assert b" 64 " in lines[1]
    assert lines[1].endswith(b" single.wav\r\n")


def test_format_list_strict_mode(fs):
    with pytest.raises(FilesystemError):
        list(fs.format_list("/audio", ["ghost.mp3"], ignore_err=False))


def test_format_mlsx(fs):
    lines = list(fs.format_mlsx("/audio", ["album", "single.wav"], "elr", ["type", "size", "modify"]))
    assert lines[0].startswith(b"type=dir;size=0;modify=")
    assert lines[1].startswith(b"type=file;size=64;modify=20240501123000;")
    assert lines[1].endswith(b" single.wav\r\n")


def test_format_list_line_dates():
    now = datetime(2024, 6, 1, tzinfo=timezone.utc).timestamp()
    recent = VirtualFile("a.mp3", 10, datetime(2024, 5, 1, 12, 30, tzinfo=timezone.utc), "/a.mp3")
    old = VirtualFile("b.mp3", 10, datetime(2020, 1, 2, tzinfo=timezone.utc), "/b.mp3")

    assert "May 01 12:30 a.mp3" in format_list_line(recent, now)
    assert "Jan 02  2020 b.mp3" in format_list_line(old, now)


def test_format_mlsx_line_only_requested_facts():
    line = format_mlsx_line(VirtualDirectory("album", "/album"), ["type"])
    assert line == "type=dir; album\r\n"


def test_authorizer_delegates_to_session(session, adapter):
    fresh = TransferSession(TransferCredentials("admin", "s3cret"), lambda: adapter)
    authorizer = SessionAuthorizer(fresh.credentials)
    handler = SimpleNamespace(session=fresh)

    authorizer.validate_authentication("admin", "s3cret", handler)
    assert fresh.is_authenticated
    assert authorizer.get_home_dir("admin") == "/"
    assert authorizer.has_perm("admin", "r")
    assert not authorizer.has_perm("admin", "w")


def test_authorizer_rejects_bad_password(adapter):
    fresh = TransferSession(TransferCredentials("admin", "s3cret"), lambda: adapter)
    authorizer = SessionAuthorizer(fresh.credentials)

    with pytest.raises(AuthenticationFailed):
        authorizer.validate_authentication("admin", "nope", SimpleNamespace(session=fresh))
