"""
Client for pulling audio files from a remote FTP server.

Login happens inside ``connect()``: there is no connected-but-anonymous
state. A client carries one control channel, so it runs one operation at a
time; overlapping calls fail fast instead of corrupting the channel.
"""

import ftplib
import logging
import posixpath
import re
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import BinaryIO, Iterator, List, Optional, Union

from shared.config import BridgeConfig
from shared.constants import DEFAULT_DOWNLOAD_CHUNK_SIZE, DEFAULT_FTP_PORT, DEFAULT_NETWORK_TIMEOUT, media_type_for
from shared.exceptions import AuthError, ConnectError, DownloadError
from shared.models import ClientState, RemoteFileDescriptor

logger = logging.getLogger(__name__)

_MONTHS = {name: index for index, name in enumerate(
    ["jan", "feb", "mar", "apr", "may", "jun", "jul", "aug", "sep", "oct", "nov", "dec"], start=1
)}

_UNIX_LIST_RE = re.compile(
    r"^(?P<kind>[-dlbcps])\S{9}\S*\s+\d+\s+\S+\s+(?:\S+\s+)?(?P<size>\d+)\s+"
    r"(?P<month>[A-Za-z]{3})\s+(?P<day>\d{1,2})\s+(?P<when>\d{1,2}:\d{2}|\d{4})\s+(?P<name>.+)$"
)


@dataclass
class RemoteTransferConfig:
    """Connection settings for the remote FTP source."""
    host: str
    user: str
    password: str
    port: int = DEFAULT_FTP_PORT
    secure: bool = False
    timeout: float = DEFAULT_NETWORK_TIMEOUT

    @classmethod
    def from_config(cls, config: BridgeConfig) -> 'RemoteTransferConfig':
        config.require("ftp_host", "ftp_user", "ftp_password")
        return cls(
            host=config.ftp_host,
            user=config.ftp_user,
            password=config.ftp_password,
            port=config.ftp_port,
            secure=config.ftp_secure,
        )


def _parse_mlsd_time(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.strptime(value[:14], "%Y%m%d%H%M%S").replace(tzinfo=timezone.utc)
    except ValueError:
        return None


def _parse_list_time(month: str, day: str, when: str, now: Optional[datetime] = None) -> Optional[datetime]:
    now = now or datetime.now(timezone.utc)
    month_number = _MONTHS.get(month.lower())
    if month_number is None:
        return None
    try:
        if ":" in when:
            hour, minute = (int(part) for part in when.split(":"))
            stamp = datetime(now.year, month_number, int(day), hour, minute, tzinfo=timezone.utc)
            # ls omits the year for recent entries; a future date means last year
            if stamp > now:
                stamp = stamp.replace(year=now.year - 1)
            return stamp
        return datetime(int(when), month_number, int(day), tzinfo=timezone.utc)
    except ValueError:
        return None


def parse_list_line(line: str, directory: str) -> Optional[RemoteFileDescriptor]:
    """Parse one Unix ``ls -l`` style line; None for non-files and noise."""
    match = _UNIX_LIST_RE.match(line.strip())
    if not match or match.group("kind") != "-":
        return None
    name = match.group("name")
    return RemoteFileDescriptor(
        name=name,
        size=int(match.group("size")),
        modified=_parse_list_time(match.group("month"), match.group("day"), match.group("when")),
        remote_path=posixpath.join(directory, name),
        media_type=media_type_for(name),
    )


class RemoteTransferClient:
    """
    Connects to, lists and downloads from one remote FTP server.

    Not safe to disconnect while a download is in flight from another
    thread; callers serialize against their own outstanding operations.
    """

    def __init__(self, config: RemoteTransferConfig):
        self.config = config
        self.state = ClientState.DISCONNECTED
        self._ftp: Optional[ftplib.FTP] = None
        self._busy = threading.Lock()

    def __enter__(self) -> 'RemoteTransferClient':
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.disconnect()

    @contextmanager
    def _operation(self, name: str) -> Iterator[ftplib.FTP]:
        if self.state is not ClientState.CONNECTED or self._ftp is None:
            raise ConnectError(f"Cannot {name}: client is {self.state.value}")
        if not self._busy.acquire(blocking=False):
            raise RuntimeError(f"Cannot {name}: another operation is in flight")
        try:
            yield self._ftp
        finally:
            self._busy.release()

    def connect(self) -> None:
        """
        Open the control channel and log in.

        Raises:
            AuthError: If the server rejects the credentials
            ConnectError: If the server cannot be reached
        """
        if self.state is ClientState.CONNECTED:
            return

        self.state = ClientState.CONNECTING
        ftp = ftplib.FTP_TLS(timeout=self.config.timeout) if self.config.secure \
            else ftplib.FTP(timeout=self.config.timeout)
        try:
            ftp.connect(self.config.host, self.config.port)
            ftp.login(self.config.user, self.config.password)
            if self.config.secure:
                ftp.prot_p()
        except ftplib.error_perm as e:
            self._fail(ftp)
            logger.warning("FTP login rejected by %s: %s", self.config.host, e)
            raise AuthError(f"Login rejected by {self.config.host}: {e}")
        except ftplib.all_errors as e:
            self._fail(ftp)
            logger.error("FTP connection to %s:%s failed: %s", self.config.host, self.config.port, e)
            raise ConnectError(f"Could not connect to {self.config.host}:{self.config.port}: {e}")

        self._ftp = ftp
        self.state = ClientState.CONNECTED
        logger.info("FTP connection established with %s:%s", self.config.host, self.config.port)

    def _fail(self, ftp: ftplib.FTP) -> None:
        ftp.close()
        self.state = ClientState.FAILED

    def list(self, remote_path: str = "/") -> List[RemoteFileDescriptor]:
        """
        List the regular files directly inside ``remote_path``.

        Subdirectories, links and special entries are never returned.
        """
        with self._operation("list") as ftp:
            try:
                return self._list_mlsd(ftp, remote_path)
            except ftplib.error_perm:
                # Server has no MLSD; fall back to parsing LIST output
                logger.debug("MLSD unsupported by %s, falling back to LIST", self.config.host)
            except ftplib.all_errors as e:
                raise ConnectError(f"Listing {remote_path} failed: {e}")

            lines: List[str] = []
            try:
                ftp.retrlines(f"LIST {remote_path}", lines.append)
            except ftplib.all_errors as e:
                raise ConnectError(f"Listing {remote_path} failed: {e}")

        files = [parse_list_line(line, remote_path) for line in lines]
        return [f for f in files if f is not None]

    def _list_mlsd(self, ftp: ftplib.FTP, remote_path: str) -> List[RemoteFileDescriptor]:
        files = []
        for name, facts in ftp.mlsd(remote_path, facts=["type", "size", "modify"]):
            if facts.get("type", "").lower() != "file":
                continue
            files.append(RemoteFileDescriptor(
                name=name,
                size=int(facts.get("size", 0) or 0),
                modified=_parse_mlsd_time(facts.get("modify")),
                remote_path=posixpath.join(remote_path, name),
                media_type=media_type_for(name),
            ))
        return files

    def download(self, remote_path: str, sink: BinaryIO) -> None:
        """
        Stream one remote file into ``sink``.

        Returns only after the data channel has reported end of stream and
        the server has confirmed the transfer.

        Raises:
            DownloadError: On any failure; bytes already written stay in sink
        """
        with self._operation("download") as ftp:
            try:
                ftp.retrbinary(f"RETR {remote_path}", sink.write, blocksize=DEFAULT_DOWNLOAD_CHUNK_SIZE)
            except (ftplib.all_errors + (ValueError,)) as e:
                logger.error("Download of %s failed: %s", remote_path, e)
                raise DownloadError(f"Download of {remote_path} failed: {e}")
        logger.info("Downloaded %s", remote_path)

    def download_to_path(self, remote_path: str, local_path: Union[str, Path]) -> Path:
        """Download into a local file. A partial file is left behind on failure."""
        local_path = Path(local_path)
        with open(local_path, "wb") as sink:
            self.download(remote_path, sink)
        return local_path

    def disconnect(self) -> None:
        """Release the control channel. Safe to call any number of times."""
        ftp, self._ftp = self._ftp, None
        if ftp is not None:
            try:
                ftp.quit()
            except ftplib.all_errors as e:
                logger.debug("FTP QUIT failed, closing anyway: %s", e)
            finally:
                ftp.close()
        if self.state is not ClientState.DISCONNECTED or ftp is not None:
            self.state = ClientState.CLOSED
