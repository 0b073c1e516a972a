import ftplib
import io
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest

from ftp_bridge.client import RemoteTransferClient, RemoteTransferConfig, parse_list_line
from shared.exceptions import AuthError, ConfigurationError, ConnectError, DownloadError
from shared.models import ClientState


@pytest.fixture
def config():
    return RemoteTransferConfig(host="ftp.example.com", user="bob", password="pw", port=2121)


@pytest.fixture
def ftp():
    with patch("ftp_bridge.client.ftplib.FTP") as factory:
        yield factory.return_value


def test_from_config_requires_credentials(bridge_config):
    with pytest.raises(ConfigurationError, match="FTP_HOST"):
        RemoteTransferConfig.from_config(bridge_config)


def test_connect_logs_in(config, ftp):
    client = RemoteTransferClient(config)
    client.connect()

    ftp.connect.assert_called_once_with("ftp.example.com", 2121)
    ftp.login.assert_called_once_with("bob", "pw")
    assert client.state is ClientState.CONNECTED


def test_rejected_login_is_an_auth_error(config, ftp):
    ftp.login.side_effect = ftplib.error_perm("530 Login incorrect.")
    client = RemoteTransferClient(config)

    with pytest.raises(AuthError):
        client.connect()
    assert client.state is ClientState.FAILED
    ftp.close.assert_called_once()


def test_unreachable_host_is_a_connect_error(config, ftp):
    ftp.connect.side_effect = OSError("Connection refused")
    client = RemoteTransferClient(config)

    with pytest.raises(ConnectError) as excinfo:
        client.connect()
    assert not isinstance(excinfo.value, AuthError)
    assert client.state is ClientState.FAILED


def test_secure_connection_uses_tls(config):
    config.secure = True
    with patch("ftp_bridge.client.ftplib.FTP_TLS") as factory:
        RemoteTransferClient(config).connect()
    factory.return_value.prot_p.assert_called_once()


def test_list_returns_only_files(config, ftp):
    ftp.mlsd.return_value = iter([
        ("song.flac", {"type": "file", "size": "1234", "modify": "20240102030405"}),
        ("Albums", {"type": "dir"}),
        (".", {"type": "cdir"}),
        ("notes.txt", {"type": "file", "size": "3"}),
    ])
    with RemoteTransferClient(config) as client:
        files = client.list("/music")

    assert [f.name for f in files] == ["song.flac", "notes.txt"]
    assert files[0].size == 1234
    assert files[0].remote_path == "/music/song.flac"
    assert files[0].media_type == "audio/flac"
    assert files[0].modified == datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)


def test_list_falls_back_to_unix_listing(config, ftp):
    ftp.mlsd.side_effect = ftplib.error_perm("500 Unknown command")

    def retrlines(cmd, callback):
        assert cmd == "LIST /music"
        callback("drwxr-xr-x   2 owner group     4096 Jan 01  2023 Albums")
        callback("-rw-r--r--   1 owner group  5242880 Mar 15  2023 track one.mp3")
        callback("lrwxrwxrwx   1 owner group       10 Mar 15  2023 link -> x")
        callback("total 12")
    ftp.retrlines.side_effect = retrlines

    with RemoteTransferClient(config) as client:
        files = client.list("/music")

    assert len(files) == 1
    assert files[0].name == "track one.mp3"
    assert files[0].size == 5242880
    assert files[0].modified == datetime(2023, 3, 15, tzinfo=timezone.utc)


def test_parse_list_line_with_time_uses_recent_year():
    entry = parse_list_line("-rw-r--r-- 1 u g 10 Jan 05 10:30 a.wav", "/")
    assert entry.modified.month == 1
    assert (entry.modified.hour, entry.modified.minute) == (10, 30)
    assert entry.modified <= datetime.now(timezone.utc)


def test_download_streams_into_sink(config, ftp):
    def retrbinary(cmd, callback, blocksize):
        assert cmd == "RETR /music/a.mp3"
        callback(b"abc")
        callback(b"def")
    ftp.retrbinary.side_effect = retrbinary

    sink = io.BytesIO()
    with RemoteTransferClient(config) as client:
        client.download("/music/a.mp3", sink)
    assert sink.getvalue() == b"abcdef"


def test_failed_download_keeps_partial_bytes(config, ftp):
    def retrbinary(cmd, callback, blocksize):
        callback(b"partial")
        raise ftplib.error_temp("426 Connection closed; transfer aborted.")
    ftp.retrbinary.side_effect = retrbinary

    sink = io.BytesIO()
    with RemoteTransferClient(config) as client:
        with pytest.raises(DownloadError):
            client.download("/music/a.mp3", sink)
    assert sink.getvalue() == b"partial"


def test_download_to_path(config, ftp, tmp_path):
    ftp.retrbinary.side_effect = lambda cmd, callback, blocksize: callback(b"data")
    with RemoteTransferClient(config) as client:
        path = client.download_to_path("/a.mp3", tmp_path / "a.mp3")
    assert path.read_bytes() == b"data"


def test_operations_require_connection(config):
    client = RemoteTransferClient(config)
    with pytest.raises(ConnectError):
        client.list("/")


def test_disconnect_is_idempotent(config, ftp):
    client = RemoteTransferClient(config)
    client.connect()
    client.disconnect()
    client.disconnect()

    ftp.quit.assert_called_once()
    ftp.close.assert_called_once()
    assert client.state is ClientState.CLOSED


def test_disconnect_closes_even_when_quit_fails(config, ftp):
    ftp.quit.side_effect = EOFError()
    client = RemoteTransferClient(config)
    client.connect()
    client.disconnect()
    ftp.close.assert_called_once()


def test_overlapping_operations_fail_fast(config, ftp):
    client = RemoteTransferClient(config)
    client.connect()
    client._busy.acquire()
    try:
        with pytest.raises(RuntimeError):
            client.download("/a.mp3", MagicMock())
    finally:
        client._busy.release()
