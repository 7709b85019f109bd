"""
Logical address space spanning every sub-file of an archive.

All sub-files concatenated form one range ``[0, total)``. The sub-file table
stores, per sub-file, the cumulative logical offset at which it ends; entry
``i`` covers ``[table[i-1].offset, table[i].offset)``.
"""

from __future__ import annotations

import bisect
import os
import threading
from typing import BinaryIO, Iterator, List, Optional, Sequence, Tuple

from .errors import FormatError, MissingSubFileError
from .records import SubFileEntry


class SplitBuilder:
    """Tracks sub-file boundaries while an archive is being written."""

    def __init__(self, split_size: int):
        self.split_size = split_size
        self.table: List[SubFileEntry] = []
        self.index = -1  # no sub-file open yet
        self.local = 0
        self.logical = 0

    @property
    def is_open(self) -> bool:
        return self.index >= 0

    def needs_new_subfile(self, nbytes: int) -> bool:
        return not self.is_open or self.local + nbytes > self.split_size

    def open_subfile(self) -> int:
        self.index += 1
        self.local = 0
        return self.index

    def close_subfile(self, checksum_index: int) -> SubFileEntry:
        ent = SubFileEntry(offset=self.logical, checksum_index=checksum_index)
        self.table.append(ent)
        return ent

    def advance(self, nbytes: int):
        self.local += nbytes
        self.logical += nbytes


class SplitSpace:
    """Resolves logical ranges against a parsed sub-file table."""

    def __init__(self, table: Sequence[SubFileEntry]):
        self._ends = [e.offset for e in table]
        for a, b in zip(self._ends, self._ends[1:]):
            if b < a:
                raise FormatError("Sub-file table offsets are not increasing")

    @property
    def total(self) -> int:
        return self._ends[-1] if self._ends else 0

    def __len__(self) -> int:
        return len(self._ends)

    def subfile_bounds(self, i: int) -> Tuple[int, int]:
        start = self._ends[i - 1] if i > 0 else 0
        return start, self._ends[i]

    def locate(self, index: int) -> Tuple[int, int]:
        """Map a logical byte index to ``(subfile, local_offset)``."""
        if index < 0 or index >= self.total:
            raise FormatError(f"Logical offset {index} outside data space (0..{self.total})")
        sub = bisect.bisect_right(self._ends, index)
        start = self._ends[sub - 1] if sub > 0 else 0
        return sub, index - start

    def segments(self, offset: int, length: int) -> Iterator[Tuple[int, int, int]]:
        """Yield ``(subfile, local_offset, count)`` pieces covering a logical range."""
        if length < 0 or offset < 0 or offset + length > self.total:
            raise FormatError(f"Range {offset}+{length} outside data space (0..{self.total})")
        remaining = length
        pos = offset
        while remaining > 0:
            sub, local = self.locate(pos)
            start, end = self.subfile_bounds(sub)
            count = min(remaining, end - pos)
            yield sub, local, count
            pos += count
            remaining -= count

    def read(self, handles: Sequence["SubFileHandle"], offset: int, length: int) -> bytes:
        parts = []
        for sub, local, count in self.segments(offset, length):
            parts.append(handles[sub].pread(local, count))
        return b"".join(parts)


class SubFileHandle:
    """A read-only sub-file handle whose seek+read pairs are serialized by a lock."""

    def __init__(self, path: str, index: int):
        self.path = path
        self.index = index
        self._lock = threading.Lock()
        try:
            self.f: Optional[BinaryIO] = open(path, "rb")
        except FileNotFoundError as exc:
            raise MissingSubFileError(path, index) from exc

    def size(self) -> int:
        return os.fstat(self.f.fileno()).st_size

    def pread(self, offset: int, count: int) -> bytes:
        with self._lock:
            if self.f is None:
                raise RuntimeError("Sub-file closed")
            self.f.seek(offset)
            data = self.f.read(count)
        if len(data) != count:
            raise FormatError(f"Short read from {self.path}: wanted {count} bytes at {offset}, got {len(data)}")
        return data

    def close(self):
        with self._lock:
            if self.f is not None:
                self.f.close()
                self.f = None
