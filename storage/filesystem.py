"""
Capability interface for filesystem-shaped access to a backing store.

Protocol front ends (the FTP server, the streaming gateway) talk to this
interface only, never to the store client directly.
"""

from abc import ABC, abstractmethod
from typing import BinaryIO, List, Optional

from shared.models import VirtualDirectoryEntry, VirtualFile


class VirtualFilesystem(ABC):
    """
    Hierarchical view over a flat key space.

    Read methods must not cache anything between calls. Mutation methods
    are part of the interface so that read-only implementations can reject
    them explicitly instead of lacking them.
    """

    @abstractmethod
    def list(self, path: str) -> List[VirtualDirectoryEntry]:
        """
        List one directory level.

        Args:
            path: Virtual path, ``/`` for the root

        Returns:
            Directories and files directly under ``path``
        """
        pass

    @abstractmethod
    def get(self, path: str, start: Optional[int] = None,
            end: Optional[int] = None) -> BinaryIO:
        """
        Open an object for reading.

        Args:
            path: Virtual path of the object
            start: First byte of an inclusive window (optional)
            end: Last byte of an inclusive window (optional)

        Returns:
            Lazily consumed byte stream

        Raises:
            NotFoundError: If no object exists at ``path``
        """
        pass

    @abstractmethod
    def stat(self, path: str) -> VirtualFile:
        """Size and modification time of one object."""
        pass

    @abstractmethod
    def write(self, path: str, data: BinaryIO) -> None:
        pass

    @abstractmethod
    def delete(self, path: str) -> None:
        pass

    @abstractmethod
    def mkdir(self, path: str) -> None:
        pass

    @abstractmethod
    def rename(self, source: str, destination: str) -> None:
        pass
