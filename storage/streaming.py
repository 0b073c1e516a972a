"""
Stateless range-capable byte server for direct playback.

One request, one object. The gateway never holds state between calls, so
any number of players can seek through the same object concurrently.
"""

import logging
import re
from dataclasses import dataclass
from typing import Dict, Iterable, Iterator, Optional, Tuple

from shared.constants import CACHE_CONTROL, STREAM_CHUNK_SIZE, media_type_for
from .directory_adapter import ObjectStoreDirectoryAdapter

logger = logging.getLogger(__name__)

HTTP_OK = 200
HTTP_PARTIAL_CONTENT = 206
HTTP_RANGE_NOT_SATISFIABLE = 416

_RANGE_RE = re.compile(r"^\s*(?:bytes=)?\s*(\d*)\s*-\s*(\d*)\s*$")


class UnsatisfiableRange(ValueError):
    pass


def parse_range(header: Optional[str], size: int) -> Optional[Tuple[int, int]]:
    """
    Resolve a ``start-end`` range expression against an object size.

    Returns:
        Inclusive ``(start, end)``, or None when the header is absent or not
        a single well-formed range (the full object is served instead)

    Raises:
        UnsatisfiableRange: If the range lies outside the object
    """
    if not header:
        return None
    match = _RANGE_RE.match(header)
    if not match:
        return None
    first, last = match.groups()
    if not first and not last:
        return None

    if not first:
        # Suffix form: the final N bytes
        suffix = int(last)
        if suffix == 0 or size == 0:
            raise UnsatisfiableRange(header)
        return max(size - suffix, 0), size - 1

    start = int(first)
    end = int(last) if last else size - 1
    if start >= size or end < start:
        raise UnsatisfiableRange(header)
    return start, min(end, size - 1)


@dataclass
class StreamResponse:
    status: int
    headers: Dict[str, str]
    body: Iterable[bytes]


class ObjectBody:
    """
    Iterable over at most ``length`` bytes of an open object stream.

    The stream is closed once it is exhausted or when ``close`` is called,
    whichever comes first. WSGI servers call ``close`` even when the body is
    never iterated (HEAD requests, dropped clients).
    """

    def __init__(self, stream, length: int, chunk_size: int = STREAM_CHUNK_SIZE):
        self.stream = stream
        self.remaining = length
        self.chunk_size = chunk_size
        self.closed = False

    def __iter__(self) -> Iterator[bytes]:
        return self

    def __next__(self) -> bytes:
        if self.closed or self.remaining <= 0:
            self.close()
            raise StopIteration
        chunk = self.stream.read(min(self.chunk_size, self.remaining))
        if not chunk:
            self.close()
            raise StopIteration
        self.remaining -= len(chunk)
        return chunk

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self.stream.close()


class StreamingGateway:
    """Serves whole objects or byte windows of them by exact key."""

    def __init__(self, adapter: ObjectStoreDirectoryAdapter, chunk_size: int = STREAM_CHUNK_SIZE):
        self.adapter = adapter
        self.chunk_size = chunk_size

    def serve(self, key: str, range_header: Optional[str] = None) -> StreamResponse:
        """
        Build the response for one playback request.

        Raises:
            NotFoundError: If the bucket has no object at ``key``
        """
        info = self.adapter.stat(key)
        size = info.size
        headers = {
            "Content-Type": media_type_for(key),
            "Accept-Ranges": "bytes",
            "Cache-Control": CACHE_CONTROL,
            "Content-Disposition": "inline",
        }

        try:
            window = parse_range(range_header, size)
        except UnsatisfiableRange:
            logger.debug("Unsatisfiable range %r for %s (%d bytes)", range_header, key, size)
            headers["Content-Range"] = f"bytes */{size}"
            headers["Content-Length"] = "0"
            return StreamResponse(HTTP_RANGE_NOT_SATISFIABLE, headers, iter(()))

        if window is None:
            headers["Content-Length"] = str(size)
            stream = self.adapter.get(key)
            return StreamResponse(HTTP_OK, headers, ObjectBody(stream, size, self.chunk_size))

        start, end = window
        length = end - start + 1
        headers["Content-Range"] = f"bytes {start}-{end}/{size}"
        headers["Content-Length"] = str(length)
        stream = self.adapter.get(key, start, end)
        return StreamResponse(HTTP_PARTIAL_CONTENT, headers, ObjectBody(stream, length, self.chunk_size))
