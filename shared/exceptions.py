"""
Error taxonomy shared by the decoder, the storage adapter and both FTP roles.
"""


class BridgeError(Exception):
    """Base class for every error raised by the bridge."""


class ConfigurationError(BridgeError):
    """A required group of settings is missing or incomplete."""


class DecodeError(BridgeError):
    """Manifest bytes are malformed or describe no usable file list."""


class ConnectError(BridgeError):
    """The remote transfer endpoint could not be reached."""


class AuthError(ConnectError):
    """Credentials were rejected, or the session is not logged in."""


class DownloadError(BridgeError):
    """
    A transfer failed part-way.

    Bytes already written to the sink are left in place; discarding them is
    the caller's job.
    """


class NotFoundError(BridgeError):
    """No object exists at the requested key or path."""


class UnsupportedOperationError(BridgeError):
    """A mutation was attempted through the read-only adapter."""


class NotDirectoryError(BridgeError):
    """A directory change targeted something that is not a directory."""


class StorageError(BridgeError):
    """The object store failed for a reason other than a missing key."""


class TempStorageFullError(BridgeError):
    """Local temp storage is above its usage threshold."""
