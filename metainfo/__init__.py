"""
Manifest decoding.

- bencode: byte-exact reader/writer for the nested manifest encoding
- decoder: Manifest construction and content identifier
- selector: audio subset of a manifest
"""

from .decoder import decode_manifest, read_manifest, build_magnet_uri
from .selector import select_audio_files

__all__ = [
    "build_magnet_uri",
    "decode_manifest",
    "read_manifest",
    "select_audio_files",
]
