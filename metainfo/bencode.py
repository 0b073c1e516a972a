"""
Bencode reader and writer.

The grammar has four token kinds: ``<length>:<bytes>``, ``i<integer>e``,
``l<items>e`` and ``d<key><value>...e``. Dictionaries decode to ``dict``
objects whose iteration order is the order the keys were read, and encoding
writes keys back in iteration order. Keys are never sorted on either side,
so ``encode(decode(data)) == data`` holds for every input the reader
accepts. Content identifiers are hashes of re-encoded sub-trees, which is
why the reader refuses anything that would not survive that round trip
(leading zeros, negative zero, duplicate keys).
"""

from typing import Any, Tuple

from shared.exceptions import DecodeError

_DIGITS = b"0123456789"
# Same ceiling CPython applies to int() on str since 3.11
_MAX_DIGITS = 4300


class BencodeDecoder:
    """Single-use cursor over one bencoded buffer."""

    def __init__(self, data: bytes):
        if not isinstance(data, (bytes, bytearray, memoryview)):
            raise DecodeError(f"expected bytes, got {type(data).__name__}")
        self.data = bytes(data)
        self.pos = 0

    def decode(self) -> Any:
        if not self.data:
            raise DecodeError("empty input")
        try:
            value = self._read_value()
        except RecursionError:
            raise DecodeError("nesting too deep")
        if self.pos != len(self.data):
            raise DecodeError(f"trailing data at offset {self.pos}")
        return value

    def _peek(self) -> int:
        if self.pos >= len(self.data):
            raise DecodeError(f"unexpected end of data at offset {self.pos}")
        return self.data[self.pos]

    def _read_value(self) -> Any:
        token = self._peek()
        if token == ord("i"):
            return self._read_int()
        if token == ord("l"):
            return self._read_list()
        if token == ord("d"):
            return self._read_dict()
        if token in _DIGITS:
            return self._read_bytes()
        raise DecodeError(f"invalid token {bytes([token])!r} at offset {self.pos}")

    def _read_until(self, terminator: bytes) -> Tuple[bytes, int]:
        start = self.pos
        end = self.data.find(terminator, start)
        if end == -1:
            raise DecodeError(f"unterminated token at offset {start}")
        self.pos = end + 1
        return self.data[start:end], start

    def _read_int(self) -> int:
        self.pos += 1  # 'i'
        raw, start = self._read_until(b"e")
        digits = raw[1:] if raw.startswith(b"-") else raw
        if not digits or any(c not in _DIGITS for c in digits):
            raise DecodeError(f"malformed integer {raw!r} at offset {start}")
        if digits.startswith(b"0") and (len(digits) > 1 or raw.startswith(b"-")):
            raise DecodeError(f"non-canonical integer {raw!r} at offset {start}")
        if len(digits) > _MAX_DIGITS:
            raise DecodeError(f"integer too long ({len(digits)} digits) at offset {start}")
        try:
            return int(raw)
        except ValueError:
            raise DecodeError(f"integer too long ({len(digits)} digits) at offset {start}")

    def _read_bytes(self) -> bytes:
        raw, start = self._read_until(b":")
        if not raw or any(c not in _DIGITS for c in raw):
            raise DecodeError(f"malformed string length {raw!r} at offset {start}")
        if raw.startswith(b"0") and len(raw) > 1:
            raise DecodeError(f"non-canonical string length {raw!r} at offset {start}")
        if len(raw) > _MAX_DIGITS:
            raise DecodeError(f"string length too long ({len(raw)} digits) at offset {start}")
        try:
            length = int(raw)
        except ValueError:
            raise DecodeError(f"string length too long ({len(raw)} digits) at offset {start}")
        end = self.pos + length
        if end > len(self.data):
            raise DecodeError(f"string at offset {start} runs past end of data")
        value = self.data[self.pos:end]
        self.pos = end
        return value

    def _read_list(self) -> list:
        self.pos += 1  # 'l'
        items = []
        while self._peek() != ord("e"):
            items.append(self._read_value())
        self.pos += 1
        return items

    def _read_dict(self) -> dict:
        self.pos += 1  # 'd'
        result = {}
        while self._peek() != ord("e"):
            key_offset = self.pos
            if self._peek() not in _DIGITS:
                raise DecodeError(f"dictionary key at offset {key_offset} is not a string")
            key = self._read_bytes()
            if key in result:
                raise DecodeError(f"duplicate dictionary key {key!r} at offset {key_offset}")
            result[key] = self._read_value()
        self.pos += 1
        return result


class BencodeEncoder:
    """Writes Python values back into bencode, preserving dict order."""

    def encode(self, value: Any) -> bytes:
        out = bytearray()
        self._write(value, out)
        return bytes(out)

    def _write(self, value: Any, out: bytearray) -> None:
        # bool is an int subclass but has no bencode form
        if isinstance(value, bool):
            raise TypeError("cannot bencode bool")
        if isinstance(value, int):
            out += b"i%de" % value
        elif isinstance(value, (bytes, bytearray, memoryview)):
            value = bytes(value)
            out += b"%d:" % len(value)
            out += value
        elif isinstance(value, str):
            self._write(value.encode("utf-8"), out)
        elif isinstance(value, (list, tuple)):
            out += b"l"
            for item in value:
                self._write(item, out)
            out += b"e"
        elif isinstance(value, dict):
            out += b"d"
            for key, item in value.items():
                if not isinstance(key, (bytes, str)):
                    raise TypeError(f"dictionary keys must be bytes or str, not {type(key).__name__}")
                self._write(key, out)
                self._write(item, out)
            out += b"e"
        else:
            raise TypeError(f"cannot bencode {type(value).__name__}")


def decode(data: bytes) -> Any:
    """Decode one complete bencoded value."""
    return BencodeDecoder(data).decode()


def encode(value: Any) -> bytes:
    """Encode a value; dict keys are written in iteration order."""
    return BencodeEncoder().encode(value)
