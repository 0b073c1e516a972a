"""
Manifest decoder.

Turns the raw bytes of a ``.torrent`` style manifest into a ``Manifest``.
The content identifier is the SHA-1 of the ``info`` dictionary exactly as it
was written in the source file; ``bencode.encode`` replays the decoded tree
in read order, so the hash matches what any other client computes for the
same file.
"""

import hashlib
import logging
from pathlib import Path
from typing import Any, Dict, List, Tuple, Union
from urllib.parse import quote

from shared.exceptions import DecodeError
from shared.models import FileEntry, Manifest
from . import bencode

logger = logging.getLogger(__name__)

# Characters encodeURIComponent leaves alone, beyond alphanumerics and "_.-~"
_MAGNET_SAFE = "!*'()"


def _text(value: Any) -> str:
    """Permissive UTF-8 decoding for name-like fields."""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    if isinstance(value, int):
        return str(value)
    raise DecodeError(f"expected a string, got {type(value).__name__}")


def build_magnet_uri(info_hash: bytes, name: str) -> str:
    return f"magnet:?xt=urn:btih:{info_hash.hex()}&dn={quote(name, safe=_MAGNET_SAFE)}"


def _announce_list(root: Dict[bytes, Any]) -> Tuple[str, ...]:
    announce: List[str] = []
    if isinstance(root.get(b"announce"), bytes):
        announce.append(_text(root[b"announce"]))
    tiers = root.get(b"announce-list")
    if isinstance(tiers, list):
        for tier in tiers:
            if not isinstance(tier, list):
                continue
            announce.extend(_text(url) for url in tier if isinstance(url, bytes))
    return tuple(announce)


def _multi_file_entries(files: List[Any]) -> Tuple[FileEntry, ...]:
    entries = []
    offset = 0
    for index, item in enumerate(files):
        if not isinstance(item, dict):
            raise DecodeError(f"files[{index}] is not a dictionary")

        raw_path = item.get(b"path")
        segments: Tuple[str, ...] = ()
        if isinstance(raw_path, list):
            segments = tuple(_text(segment) for segment in raw_path)
        if not segments:
            segments = (f"file_{index}",)

        length = item.get(b"length", 0)
        if not isinstance(length, int) or length < 0:
            raise DecodeError(f"files[{index}] has an invalid length")

        entries.append(FileEntry(name=segments[-1], length=length, path=segments, offset=offset))
        offset += length
    return tuple(entries)


def decode_manifest(data: bytes) -> Manifest:
    """
    Decode manifest bytes.

    Args:
        data: Complete contents of a manifest file

    Returns:
        Manifest with its file list, total size and content identifier

    Raises:
        DecodeError: If the bytes are not valid bencode, carry no ``info``
                     dictionary, or describe neither a file list nor a
                     single ``name``/``length`` pair
    """
    root = bencode.decode(data)
    if not isinstance(root, dict):
        raise DecodeError("manifest root is not a dictionary")

    info = root.get(b"info")
    if not isinstance(info, dict):
        raise DecodeError("no info section found in manifest")

    info_hash = hashlib.sha1(bencode.encode(info)).digest()

    files = info.get(b"files")
    if isinstance(files, list):
        name = _text(info[b"name"]).strip() if b"name" in info else "Unknown"
        entries = _multi_file_entries(files)
    else:
        if b"name" not in info or not isinstance(info.get(b"length"), int):
            raise DecodeError("info section has neither a file list nor a name/length pair")
        name = _text(info[b"name"]).strip()
        length = info[b"length"]
        if length < 0:
            raise DecodeError("info section has a negative length")
        entries = (FileEntry(name=name, length=length, path=(name,), offset=0),)

    manifest = Manifest(
        name=name,
        files=entries,
        total_size=sum(entry.length for entry in entries),
        info_hash=info_hash,
        announce=_announce_list(root),
        magnet_uri=build_magnet_uri(info_hash, name),
    )
    logger.debug(
        "Decoded manifest %r: %d files, %d bytes, info hash %s",
        manifest.name, len(manifest.files), manifest.total_size, manifest.info_hash_hex,
    )
    return manifest


def read_manifest(path: Union[str, Path]) -> Manifest:
    """Read and decode a manifest file from disk."""
    return decode_manifest(Path(path).read_bytes())
