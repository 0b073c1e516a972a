"""
Per-connection session state for the built-in FTP server.

A session starts unauthenticated, binds exactly one read-only adapter at a
successful login, and is closed either by the client leaving or by a failed
login. Sessions share nothing but the bucket behind their adapters.
"""

import hmac
import logging
import posixpath
from dataclasses import dataclass
from typing import BinaryIO, Callable, List, Optional

from shared.exceptions import AuthError, NotDirectoryError
from shared.models import SessionState, VirtualDirectory, VirtualDirectoryEntry, VirtualFile
from storage.directory_adapter import normalize_path
from storage.filesystem import VirtualFilesystem

logger = logging.getLogger(__name__)

# Same message whichever half of the credential pair was wrong
INVALID_CREDENTIALS = "Invalid credentials"


@dataclass(frozen=True)
class TransferCredentials:
    """The single identity the server accepts."""
    username: str
    password: str

    def __repr__(self) -> str:
        return f"TransferCredentials(username={self.username!r}, password='***')"

    def matches(self, username: str, password: str) -> bool:
        # Both halves are always compared so timing does not reveal which failed
        user_ok = hmac.compare_digest(self.username.encode("utf-8"), username.encode("utf-8"))
        password_ok = hmac.compare_digest(self.password.encode("utf-8"), password.encode("utf-8"))
        return user_ok and password_ok


class TransferSession:
    """State machine behind one FTP control connection."""

    def __init__(self, credentials: TransferCredentials,
                 adapter_factory: Callable[[], VirtualFilesystem]):
        self.credentials = credentials
        self.adapter_factory = adapter_factory
        self.state = SessionState.UNAUTHENTICATED
        self.current_path = "/"
        self.adapter: Optional[VirtualFilesystem] = None
        self.username: Optional[str] = None

    @property
    def is_authenticated(self) -> bool:
        return self.state is SessionState.AUTHENTICATED

    def login(self, username: str, password: str) -> None:
        """
        Check a credential pair and bind the adapter.

        Raises:
            AuthError: On any mismatch; the session is closed afterwards
        """
        # One login per connection; REIN does not reset the bound adapter
        if self.state is not SessionState.UNAUTHENTICATED:
            logger.info("FTP login repeated on a %s session", self.state.name.lower())
            raise AuthError(INVALID_CREDENTIALS)

        if not self.credentials.matches(username, password):
            logger.info("FTP login failed for user %r", username)
            self.close()
            raise AuthError(INVALID_CREDENTIALS)

        self.adapter = self.adapter_factory()
        self.username = username
        self.current_path = "/"
        self.state = SessionState.AUTHENTICATED
        logger.info("FTP login successful for user %r", username)

    def close(self) -> None:
        self.state = SessionState.CLOSED

    def _require_login(self) -> VirtualFilesystem:
        if self.state is not SessionState.AUTHENTICATED or self.adapter is None:
            raise AuthError("Not logged in")
        return self.adapter

    def resolve(self, path: Optional[str]) -> str:
        """Absolute virtual path for ``path`` relative to the current directory."""
        if not path:
            return self.current_path
        return normalize_path(posixpath.join(self.current_path, path))

    def list(self, path: Optional[str] = None) -> List[VirtualDirectoryEntry]:
        return self._require_login().list(self.resolve(path))

    def retrieve(self, path: str, start: Optional[int] = None) -> BinaryIO:
        return self._require_login().get(self.resolve(path), start)

    def stat(self, path: str) -> VirtualFile:
        return self._require_login().stat(self.resolve(path))

    # Mutations go to the adapter, which rejects them

    def write(self, path: str, data: BinaryIO) -> None:
        self._require_login().write(self.resolve(path), data)

    def delete(self, path: str) -> None:
        self._require_login().delete(self.resolve(path))

    def mkdir(self, path: str) -> None:
        self._require_login().mkdir(self.resolve(path))

    def rename(self, source: str, destination: str) -> None:
        self._require_login().rename(self.resolve(source), self.resolve(destination))

    def is_directory(self, path: Optional[str]) -> bool:
        """
        True if ``path`` appears as a directory in its parent's listing.

        Performs one listing call and nothing else against the store.
        """
        adapter = self._require_login()
        target = self.resolve(path)
        if target == "/":
            return True
        parent, name = posixpath.split(target)
        return any(
            isinstance(entry, VirtualDirectory) and entry.name == name
            for entry in adapter.list(parent)
        )

    def change_directory(self, path: str) -> str:
        """
        Move the current directory.

        Raises:
            NotDirectoryError: If the target is not a listed directory
        """
        target = self.resolve(path)
        if not self.is_directory(target):
            raise NotDirectoryError(f"Not a directory: {target}")
        self.current_path = target
        return target
