"""
Shared constants used across the bridge.
"""

import os

# Audio formats
AUDIO_EXTENSIONS = frozenset([
    ".mp3", ".flac", ".wav", ".ogg", ".aac", ".m4a", ".wma"
])

# Media types are derived from the extension only, never from store metadata
AUDIO_MEDIA_TYPES = {
    ".mp3": "audio/mpeg",
    ".flac": "audio/flac",
    ".wav": "audio/wav",
    ".ogg": "audio/ogg",
    ".aac": "audio/aac",
    ".m4a": "audio/mp4",
    ".wma": "audio/x-ms-wma",
}
DEFAULT_MEDIA_TYPE = "application/octet-stream"

# Object store layout
AUDIO_KEY_PREFIX = "audio/"
FTP_IMPORT_PREFIX = "audio/ftp/"
KEY_DELIMITER = "/"
CACHE_CONTROL = "public, max-age=31536000"  # 1 year

# FTP server defaults
DEFAULT_FTP_PORT = 21
DEFAULT_PASSIVE_PORTS = (21000, 21100)
FTP_BANNER = "Welcome to the audio bridge FTP server"

# Network Settings
DEFAULT_NETWORK_TIMEOUT = 30  # seconds
DEFAULT_DOWNLOAD_CHUNK_SIZE = 8192  # bytes
STREAM_CHUNK_SIZE = 64 * 1024  # bytes

# Temp storage
DEFAULT_MAX_TEMP_STORAGE_MB = 1024
TEMP_STORAGE_THRESHOLD = 0.8


def file_extension(name: str) -> str:
    """Lower-cased extension of the final path segment, including the dot."""
    return os.path.splitext(name.rsplit("/", 1)[-1])[1].lower()


def is_audio_file(name: str) -> bool:
    return file_extension(name) in AUDIO_EXTENSIONS


def media_type_for(name: str) -> str:
    return AUDIO_MEDIA_TYPES.get(file_extension(name), DEFAULT_MEDIA_TYPE)
