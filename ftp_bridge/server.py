"""
Built-in FTP server exposing the bucket to legacy players.

pyftpdlib owns the wire protocol and the passive data channels. Everything
filesystem-shaped is routed through the connection's ``TransferSession`` by
``ObjectStoreFilesystem``, so no real directory is ever touched.
"""

import io
import logging
import threading
import time
from dataclasses import dataclass
from datetime import timezone
from contextlib import contextmanager
from typing import Callable, Dict, Iterator, List, Optional, Tuple

from pyftpdlib.authorizers import AuthenticationFailed
from pyftpdlib.filesystems import AbstractedFS, FilesystemError
from pyftpdlib.handlers import FTPHandler
from pyftpdlib.servers import ThreadedFTPServer

from shared.config import BridgeConfig
from shared.constants import DEFAULT_FTP_PORT, DEFAULT_PASSIVE_PORTS, FTP_BANNER
from shared.exceptions import AuthError, BridgeError
from shared.models import VirtualDirectory, VirtualDirectoryEntry
from storage.filesystem import VirtualFilesystem
from .session import TransferCredentials, TransferSession

logger = logging.getLogger(__name__)

_MONTHS = ["Jan", "Feb", "Mar", "Apr", "May", "Jun",
           "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]
_SIX_MONTHS = 180 * 24 * 60 * 60


@contextmanager
def _fs_errors() -> Iterator[None]:
    """Turn bridge errors into 550 replies instead of dropped connections."""
    try:
        yield
    except BridgeError as e:
        raise FilesystemError(str(e))


def _timestamp(entry: VirtualDirectoryEntry) -> float:
    modified = getattr(entry, "modified", None)
    if modified is None:
        return time.time()
    if modified.tzinfo is None:
        modified = modified.replace(tzinfo=timezone.utc)
    return modified.timestamp()


def format_list_line(entry: VirtualDirectoryEntry, now: Optional[float] = None) -> str:
    """One ``ls -l`` style line for the LIST command."""
    now = time.time() if now is None else now
    stamp = _timestamp(entry)
    when = time.gmtime(stamp)
    if now - stamp > _SIX_MONTHS:
        date = "%s %02d  %d" % (_MONTHS[when.tm_mon - 1], when.tm_mday, when.tm_year)
    else:
        date = "%s %02d %02d:%02d" % (_MONTHS[when.tm_mon - 1], when.tm_mday, when.tm_hour, when.tm_min)

    if entry.is_directory:
        perms, size = "drwxr-xr-x", 0
    else:
        perms, size = "-rw-r--r--", entry.size
    return "%s %3d %-8s %-8s %8d %s %s\r\n" % (perms, 1, "owner", "group", size, date, entry.name)


def format_mlsx_line(entry: VirtualDirectoryEntry, facts: List[str]) -> str:
    """One MLSD/MLST line containing only the requested facts."""
    values = {
        "type": "dir" if entry.is_directory else "file",
        "size": "0" if entry.is_directory else str(entry.size),
        "modify": time.strftime("%Y%m%d%H%M%S", time.gmtime(_timestamp(entry))),
        "perm": "el" if entry.is_directory else "r",
    }
    parts = "".join(f"{fact}={values[fact]};" for fact in facts if fact in values)
    return f"{parts} {entry.name}\r\n"


class VirtualFileHandle:
    """File-like wrapper pyftpdlib's producers can read and close."""

    def __init__(self, name: str, opener: Callable[[Optional[int]], io.RawIOBase]):
        self.name = name
        self._opener = opener
        self._stream = opener(None)
        self.closed = False

    def read(self, size: int = -1) -> bytes:
        return self._stream.read(size if size >= 0 else None)

    def seek(self, offset: int, whence: int = io.SEEK_SET) -> int:
        # REST resumes by reopening at the requested byte
        if whence != io.SEEK_SET:
            raise io.UnsupportedOperation("only absolute seeks are supported")
        self._stream.close()
        with _fs_errors():
            self._stream = self._opener(offset)
        return offset

    def close(self) -> None:
        if not self.closed:
            self._stream.close()
            self.closed = True


class ObjectStoreFilesystem(AbstractedFS):
    """
    AbstractedFS backed by the connection's session.

    The root is always ``/`` and paths are never resolved against the local
    disk, so ``validpath``/``realpath`` are identities.
    """

    @property
    def session(self) -> TransferSession:
        return self.cmd_channel.session

    def validpath(self, path):
        return True

    def realpath(self, path):
        return path

    def _entries(self, basedir: str) -> Dict[str, VirtualDirectoryEntry]:
        with _fs_errors():
            return {entry.name: entry for entry in self.session.list(basedir)}

    def _entry(self, path: str) -> VirtualDirectoryEntry:
        if self.isdir(path):
            return VirtualDirectory(name=path.rsplit("/", 1)[-1], path=path)
        with _fs_errors():
            return self.session.stat(path)

    # --- Reads ---

    def chdir(self, path):
        with _fs_errors():
            self.cwd = self.session.change_directory(self.fs2ftp(path))

    def listdir(self, path):
        return list(self._entries(path))

    def isdir(self, path):
        try:
            return self.session.is_directory(path)
        except BridgeError:
            return False

    def isfile(self, path):
        try:
            self.session.stat(path)
            return True
        except BridgeError:
            return False

    def islink(self, path):
        return False

    def lexists(self, path):
        return self.isdir(path) or self.isfile(path)

    def stat(self, path):
        return self._entry(path)

    lstat = stat

    def getsize(self, path):
        entry = self._entry(path)
        return 0 if entry.is_directory else entry.size

    def getmtime(self, path):
        return _timestamp(self._entry(path))

    def open(self, filename, mode):
        if any(flag in mode for flag in "wa+"):
            with _fs_errors():
                self.session.write(filename, None)
        with _fs_errors():
            return VirtualFileHandle(filename, lambda start: self.session.retrieve(filename, start))

    def format_list(self, basedir, listing, ignore_err=True):
        entries = self._entries(basedir)
        now = time.time()
        for name in listing:
            entry = entries.get(name)
            if entry is None:
                if ignore_err:
                    continue
                raise FilesystemError(f"No such file or directory: {name}")
            yield format_list_line(entry, now).encode("utf8", self.cmd_channel.unicode_errors)

    def format_mlsx(self, basedir, listing, perms, facts, ignore_err=True):
        entries = self._entries(basedir)
        for name in listing:
            entry = entries.get(name)
            if entry is None:
                if ignore_err:
                    continue
                raise FilesystemError(f"No such file or directory: {name}")
            yield format_mlsx_line(entry, facts).encode("utf8", self.cmd_channel.unicode_errors)

    # --- Mutations: all rejected by the adapter ---

    def mkdir(self, path):
        with _fs_errors():
            self.session.mkdir(path)

    def rmdir(self, path):
        with _fs_errors():
            self.session.delete(path)

    def remove(self, path):
        with _fs_errors():
            self.session.delete(path)

    def rename(self, src, dst):
        with _fs_errors():
            self.session.rename(src, dst)

    def mkstemp(self, suffix='', prefix='', dir=None, mode='wb'):
        with _fs_errors():
            self.session.write(dir or self.cwd, None)

    def chmod(self, path, mode):
        raise FilesystemError("Store is read-only")

    def utime(self, path, timeval):
        raise FilesystemError("Store is read-only")


class SessionAuthorizer:
    """
    pyftpdlib authorizer that defers the credential check to the session.

    Grants read-only permissions: change directory, list, retrieve.
    """

    read_perms = "elr"

    def __init__(self, credentials: TransferCredentials):
        self.credentials = credentials

    def validate_authentication(self, username, password, handler):
        try:
            handler.session.login(username, password)
        except AuthError as e:
            raise AuthenticationFailed(str(e))

    def has_user(self, username):
        return username == self.credentials.username

    def get_home_dir(self, username):
        return "/"

    def has_perm(self, username, perm, path=None):
        return perm in self.read_perms

    def get_perms(self, username):
        return self.read_perms

    def get_msg_login(self, username):
        return "Login successful."

    def get_msg_quit(self, username):
        return "Goodbye."

    def impersonate_user(self, username, password):
        pass

    def terminate_impersonation(self, username):
        pass


class BridgeFTPHandler(FTPHandler):
    """Control-connection handler owning exactly one TransferSession."""

    abstracted_fs = ObjectStoreFilesystem
    banner = FTP_BANNER
    # Reads come from a network stream, not a file descriptor
    use_sendfile = False
    # A failed login ends the connection
    max_login_attempts = 1

    credentials: Optional[TransferCredentials] = None
    adapter_factory: Optional[Callable[[], VirtualFilesystem]] = None

    def __init__(self, conn, server, ioloop=None):
        self.session = TransferSession(self.credentials, self.adapter_factory)
        super().__init__(conn, server, ioloop)

    def on_disconnect(self):
        self.session.close()

    def on_file_sent(self, file):
        logger.info("FTP: sent %s", file)


@dataclass
class FTPServerConfig:
    """Listening endpoint and the single accepted identity."""
    username: str
    password: str
    host: str = "0.0.0.0"
    port: int = DEFAULT_FTP_PORT
    passive_ports: Optional[Tuple[int, int]] = DEFAULT_PASSIVE_PORTS
    masquerade_address: Optional[str] = None

    @classmethod
    def from_config(cls, config: BridgeConfig) -> 'FTPServerConfig':
        config.require("ftp_server_username", "ftp_server_password")
        return cls(
            username=config.ftp_server_username,
            password=config.ftp_server_password,
            host=config.ftp_server_host,
            port=config.ftp_server_port,
            passive_ports=(config.ftp_passive_min, config.ftp_passive_max),
            masquerade_address=config.ftp_passive_host,
        )

    @property
    def credentials(self) -> TransferCredentials:
        return TransferCredentials(self.username, self.password)

    @property
    def connection_url(self) -> str:
        """Address players connect to. Never includes the password."""
        host = self.masquerade_address or ("localhost" if self.host == "0.0.0.0" else self.host)
        return f"ftp://{self.username}@{host}:{self.port}/"


class BridgeFTPServer:
    """Threaded FTP server polled from one background thread."""

    poll_interval = 0.1

    def __init__(self, config: FTPServerConfig, adapter_factory: Callable[[], VirtualFilesystem]):
        self.config = config
        handler = type("BoundFTPHandler", (BridgeFTPHandler,), {
            "authorizer": SessionAuthorizer(config.credentials),
            "credentials": config.credentials,
            "adapter_factory": staticmethod(adapter_factory),
            "passive_ports": range(config.passive_ports[0], config.passive_ports[1] + 1)
            if config.passive_ports else None,
            "masquerade_address": config.masquerade_address,
        })
        self._server = ThreadedFTPServer((config.host, config.port), handler)
        self._thread: Optional[threading.Thread] = None
        self._stop_flag = threading.Event()

    @property
    def address(self) -> Tuple[str, int]:
        return self._server.address

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _serve(self) -> None:
        while not self._stop_flag.is_set():
            self._server.serve_forever(timeout=self.poll_interval, blocking=False)

    def start(self) -> None:
        if self.running:
            return
        self._thread = threading.Thread(target=self._serve, name="ftp-bridge", daemon=True)
        self._thread.start()
        host, port = self.address
        logger.info("FTP server started on %s:%s", host, port)
        logger.info("FTP connection: %s", self.config.connection_url)

    def stop(self) -> None:
        self._stop_flag.set()
        if self._thread is not None:
            self._thread.join()
            self._thread = None
        self._server.close_all()
        logger.info("FTP server stopped")


class ServerRegistry:
    """
    Explicit handle for the one FTP server an application runs.

    Start and stop are idempotent but not synchronized with each other;
    administrative callers serialize them.
    """

    def __init__(self, server_factory: Callable[..., BridgeFTPServer] = BridgeFTPServer):
        self._server_factory = server_factory
        self._server: Optional[BridgeFTPServer] = None

    @property
    def is_running(self) -> bool:
        return self._server is not None

    def current(self) -> Optional[BridgeFTPServer]:
        return self._server

    def start(self, config: FTPServerConfig,
              adapter_factory: Callable[[], VirtualFilesystem]) -> BridgeFTPServer:
        if self._server is not None:
            logger.info("FTP server already running")
            return self._server
        server = self._server_factory(config, adapter_factory)
        server.start()
        self._server = server
        return server

    def stop(self) -> None:
        server, self._server = self._server, None
        if server is not None:
            server.stop()
