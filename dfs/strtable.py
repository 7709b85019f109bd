from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, List, Tuple

from .errors import FormatError


_INITIAL_SLOTS = 1024


def hash_string(s: str) -> int:
    h = 5381
    for ch in s.upper():
        h = (((h << 5) + h) ^ ord(ch)) & 0xFFFFFFFF
    return h


@dataclass
class _Slot:
    hash: int
    offset: int
    length: int


class StringTable:
    """Append-only, case-insensitive string interning store.

    Strings are upper-cased and stored once as NUL-terminated ASCII. Lookups go
    through an open-addressing hash table with linear probing; the table is
    rebuilt at double size whenever more than half its slots are in use.
    Offsets are assigned in first-insertion order and never move.
    """

    def __init__(self):
        self._buf = bytearray()
        self._entries: List[_Slot] = []
        self._slots: List[int] = [-1] * _INITIAL_SLOTS

    def __len__(self) -> int:
        return len(self._buf)

    def _rehash(self, size: int):
        self._slots = [-1] * size
        for i, e in enumerate(self._entries):
            idx = e.hash % size
            while self._slots[idx] != -1:
                idx = (idx + 1) % size
            self._slots[idx] = i

    def _matches(self, e: _Slot, data: bytes) -> bool:
        return e.length == len(data) and self._buf[e.offset : e.offset + e.length] == data

    def intern(self, s: str) -> int:
        s = s.upper()
        try:
            data = s.encode("ascii")
        except UnicodeEncodeError as exc:
            raise ValueError(f"Archive names must be ASCII: {s!r}") from exc
        if b"\x00" in data:
            raise ValueError("Archive names may not contain NUL")
        h = hash_string(s)
        size = len(self._slots)
        idx = h % size
        while self._slots[idx] != -1:
            e = self._entries[self._slots[idx]]
            if e.hash == h and self._matches(e, data):
                return e.offset
            idx = (idx + 1) % size

        entry = _Slot(hash=h, offset=len(self._buf), length=len(data))
        self._entries.append(entry)
        self._buf += data
        self._buf.append(0)

        if size // 2 < len(self._entries):
            # rebuild places the new entry too
            self._rehash(size * 2)
        else:
            self._slots[idx] = len(self._entries) - 1
        return entry.offset

    def save(self) -> bytes:
        return bytes(self._buf)

    def entries(self) -> Iterator[Tuple[int, str]]:
        for e in self._entries:
            yield e.offset, self._buf[e.offset : e.offset + e.length].decode("ascii")

    @property
    def slot_count(self) -> int:
        return len(self._slots)


def lookup(blob: bytes, offset: int) -> str:
    """Resolve ``offset`` against a serialized string table."""
    if offset < 0 or offset >= len(blob):
        raise FormatError(f"String offset {offset} outside string table ({len(blob)} bytes)")
    end = blob.find(b"\x00", offset)
    if end < 0:
        raise FormatError(f"Unterminated string at offset {offset}")
    try:
        return blob[offset:end].decode("ascii")
    except UnicodeDecodeError as exc:
        raise FormatError(f"Non-ASCII string at offset {offset}") from exc
