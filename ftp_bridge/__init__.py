from .session import TransferCredentials, TransferSession
from .client import RemoteTransferClient, RemoteTransferConfig
from .server import BridgeFTPServer, FTPServerConfig, ServerRegistry

__all__ = [
    "TransferCredentials",
    "TransferSession",
    "RemoteTransferClient",
    "RemoteTransferConfig",
    "BridgeFTPServer",
    "FTPServerConfig",
    "ServerRegistry",
]
