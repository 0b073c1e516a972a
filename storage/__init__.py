"""Bucket access: read-only directory view, range streaming, uploads and imports."""

from .filesystem import VirtualFilesystem
from .directory_adapter import ObjectStoreDirectoryAdapter, normalize_path
from .streaming import StreamingGateway, StreamResponse
from .cloudflare_r2 import CloudflareR2Provider, create_r2_client

__all__ = [
    "VirtualFilesystem",
    "ObjectStoreDirectoryAdapter",
    "normalize_path",
    "StreamingGateway",
    "StreamResponse",
    "CloudflareR2Provider",
    "create_r2_client",
]
