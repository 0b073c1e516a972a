"""
Data models for manifests, remote listings and virtual directory entries.

Everything here is a value object: created once by a decoder or a listing
call, handed to the caller, and never mutated afterwards.
"""

from dataclasses import dataclass, asdict
from datetime import datetime
from enum import Enum
from typing import Tuple, Dict, Optional, Any, Union


@dataclass(frozen=True)
class FileEntry:
    """
    One file declared by a manifest.

    Attributes:
        name: Final path segment
        length: Size in bytes
        path: Path segments, at least one
        offset: Byte offset of this file within the concatenated payload
    """
    name: str
    length: int
    path: Tuple[str, ...]
    offset: int = 0

    @property
    def display_path(self) -> str:
        return "/".join(self.path)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["path"] = list(self.path)
        return data


@dataclass(frozen=True)
class Manifest:
    """
    Decoded representation of a binary manifest.

    Attributes:
        name: Bundle name
        files: Declared files, in declaration order
        total_size: Sum of all file lengths
        info_hash: 20-byte SHA-1 digest of the re-serialized info dictionary
        announce: Tracker URIs, tier order then in-tier order
        magnet_uri: Magnet link built from info_hash and name
    """
    name: str
    files: Tuple[FileEntry, ...]
    total_size: int
    info_hash: bytes
    announce: Tuple[str, ...]
    magnet_uri: str

    @property
    def info_hash_hex(self) -> str:
        return self.info_hash.hex()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "files": [f.to_dict() for f in self.files],
            "totalSize": self.total_size,
            "infoHash": self.info_hash_hex,
            "announce": list(self.announce),
            "magnetURI": self.magnet_uri,
        }


@dataclass(frozen=True)
class RemoteFileDescriptor:
    """A regular file found on a remote FTP server."""
    name: str
    size: int
    modified: Optional[datetime]
    remote_path: str
    media_type: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "size": self.size,
            "date": self.modified.isoformat() if self.modified else None,
            "path": self.remote_path,
            "type": self.media_type,
        }


@dataclass(frozen=True)
class VirtualDirectory:
    """A prefix one level below the listed path."""
    name: str
    path: str

    is_directory = True


@dataclass(frozen=True)
class VirtualFile:
    """An object directly under the listed path."""
    name: str
    size: int
    modified: Optional[datetime]
    path: str

    is_directory = False


VirtualDirectoryEntry = Union[VirtualDirectory, VirtualFile]


class SessionState(Enum):
    """Lifecycle of a server-side transfer session."""
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATED = "authenticated"
    CLOSED = "closed"


class ClientState(Enum):
    """Lifecycle of a remote transfer client."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    FAILED = "failed"
    CLOSED = "closed"
