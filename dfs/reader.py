from __future__ import annotations

import concurrent.futures as _fut
import os
from dataclasses import dataclass
from typing import Callable, Dict, Iterator, List, Optional

from .checksum import ChecksumAccumulator, whole_archive_checksum
from .constants import DEFAULT_CHUNK_SIZE, DFS_MAGIC, DFS_VERSION, HEADER_SIZE, subfile_name
from .errors import ChecksumMismatchError, DfsError, FormatError
from .names import join_path, norm_path
from .records import (
    ArchiveHeader,
    FileEntry,
    SubFileEntry,
    read_checksum_table,
    read_file_table,
    read_subfile_table,
)
from .splitspace import SplitSpace, SubFileHandle
from .strtable import lookup


@dataclass(frozen=True)
class FileInfo:
    name: str
    path: str
    size: int


@dataclass
class VerifyReport:
    checksum: int
    windows_verified: int = 0
    windows_skipped: int = 0
    has_checksum_table: bool = False
    # logical index of the trailing window that is never verified, if any
    tail_index: Optional[int] = None


class ArchiveReader:
    """Read-only view of a DFS archive.

    The primary file is parsed completely on :meth:`open`; the resulting tables
    are never modified afterwards. Sub-file reads are serialized per handle, so
    entries may be fetched from several threads at once.
    """

    def __init__(self, path: str, chunk_size: int = DEFAULT_CHUNK_SIZE):
        self.path = str(path)
        self.chunk_size = chunk_size
        self.raw: bytes = b""
        self.header: Optional[ArchiveHeader] = None
        self.entries: List[FileEntry] = []
        self.subfiles: List[SubFileEntry] = []
        self.checksums: List[int] = []
        self.space: Optional[SplitSpace] = None
        self.handles: List[SubFileHandle] = []
        self._strings: bytes = b""
        self._by_path: Dict[str, FileEntry] = {}
        self._by_name: Dict[str, FileEntry] = {}
        self._opened = False

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def open(self):
        if self._opened:
            return
        try:
            with open(self.path, "rb") as f:
                self.raw = f.read()
            self._parse()
            self._open_subfiles()
            self._opened = True
        except (DfsError, OSError, ValueError):
            self.close()
            raise

    def close(self):
        for h in self.handles:
            h.close()
        self.handles = []
        self._opened = False

    # parsing
    def _parse(self):
        raw = self.raw
        if len(raw) < HEADER_SIZE:
            raise FormatError("File too small to be a DFS archive")
        hdr = ArchiveHeader.unpack(raw)
        if hdr.magic != DFS_MAGIC or hdr.version != DFS_VERSION:
            raise FormatError(f"Invalid DFS file format (magic {hdr.magic:#010x}, version {hdr.version})")
        if hdr.string_table_length < 0 or hdr.string_table_offset + hdr.string_table_length > len(raw):
            raise FormatError("String table out of range")
        self.header = hdr
        self._by_path = {}
        self._by_name = {}
        self.subfiles = read_subfile_table(raw, hdr)
        self.entries = read_file_table(raw, hdr)
        self.checksums = read_checksum_table(raw, hdr)
        self._strings = raw[hdr.string_table_offset : hdr.string_table_offset + hdr.string_table_length]
        self.space = SplitSpace(self.subfiles)
        total = self.space.total
        for e in self.entries:
            if e.data_offset + e.length > total:
                raise FormatError(
                    f"Entry data {e.data_offset}+{e.length} exceeds data space of {total} bytes"
                )
            info = self._info(e)
            self._by_path[info.path.upper()] = e
            self._by_name[info.name.upper()] = e

    def _open_subfiles(self):
        assert self.header is not None and self.space is not None
        stem = os.path.splitext(self.path)[0]
        for i in range(self.header.subfile_count):
            h = SubFileHandle(subfile_name(stem, i), i)
            self.handles.append(h)
            start, end = self.space.subfile_bounds(i)
            if h.size() != end - start:
                raise FormatError(f"Sub-file {h.path} is {h.size()} bytes, table expects {end - start}")

    def _string(self, offset: int) -> str:
        return lookup(self._strings, offset)

    def _info(self, e: FileEntry) -> FileInfo:
        name = self._string(e.name_part1) + self._string(e.name_part2) + self._string(e.extension)
        return FileInfo(name=name, path=join_path(self._string(e.path), name), size=e.length)

    # queries
    def enumerate(self) -> Iterator[FileInfo]:
        for e in self.entries:
            yield self._info(e)

    def list(self) -> List[FileInfo]:
        return list(self.enumerate())

    def find(self, name: str) -> FileEntry:
        key = name.replace("\\", "/").strip("/").upper()
        e = self._by_path.get(key) or self._by_name.get(key)
        if e is None:
            raise FileNotFoundError(f"File {name} not found.")
        return e

    def read_entry(self, e: FileEntry) -> bytes:
        if not self._opened:
            raise RuntimeError("Archive not open")
        assert self.space is not None
        return self.space.read(self.handles, e.data_offset, e.length)

    def get_file(self, name: str) -> bytes:
        return self.read_entry(self.find(name))

    def extract(
        self,
        outdir: str,
        *,
        jobs: int = 1,
        on_entry: Optional[Callable[[FileInfo], None]] = None,
    ) -> int:
        """Write every entry to ``outdir/path/name``; returns the number of files written.

        ``on_entry`` is called before each file; raising from it stops the
        extraction between files.
        """
        if not self._opened:
            raise RuntimeError("Archive not open")

        def _one(e: FileEntry, info: FileInfo):
            dst = os.path.join(outdir, *norm_path(info.path).split("/"))
            os.makedirs(os.path.dirname(dst) or ".", exist_ok=True)
            data = self.read_entry(e)
            with open(dst, "wb") as wf:
                wf.write(data)

        count = 0
        if jobs <= 1:
            for e in self.entries:
                info = self._info(e)
                if on_entry:
                    on_entry(info)
                _one(e, info)
                count += 1
            return count
        with _fut.ThreadPoolExecutor(max_workers=jobs) as ex:
            futures = []
            for e in self.entries:
                info = self._info(e)
                if on_entry:
                    on_entry(info)
                futures.append(ex.submit(_one, e, info))
            for fu in futures:
                fu.result()
                count += 1
        return count

    def verify(self) -> VerifyReport:
        """
        Checks the archive against its stored checksums.

        1.  **Whole archive:** the CRC16 of the primary file, computed with the
            header checksum field zeroed, must equal the header value.
        2.  **Windows:** when a checksum table is present, every full
            ``chunk_size`` window of each sub-file is re-hashed and compared
            with the table entry at ``subfile.checksum_index + window``.

        The last window of the logical data space is never checked, full or
        partial.

        Raises:
            ChecksumMismatchError: on the first mismatch found.
        """
        if not self._opened:
            raise RuntimeError("Archive not open")
        assert self.header is not None and self.space is not None
        stored = self.header.file_checksum
        actual = whole_archive_checksum(self.raw)
        if actual != stored:
            raise ChecksumMismatchError(
                f"Checksum mismatch in header. Expected {stored}, got {actual}",
                expected=stored,
                actual=actual,
            )
        report = VerifyReport(checksum=actual, has_checksum_table=self.header.has_checksums)
        if not self.header.has_checksums:
            return report
        total = self.space.total
        cs = self.chunk_size
        acc = ChecksumAccumulator(cs)
        for i, sub in enumerate(self.subfiles):
            start, end = self.space.subfile_bounds(i)
            local = 0
            while start + local < end:
                index = start + local
                count = min(cs, end - index)
                if index + count == total:
                    report.tail_index = index
                    report.windows_skipped += 1
                    break
                if count < cs:
                    # partial window at the end of an inner sub-file: never emitted
                    report.windows_skipped += 1
                    break
                slot = sub.checksum_index + local // cs
                if slot >= len(self.checksums):
                    raise FormatError(f"Checksum table has no entry {slot} for sub-file {i}")
                acc.reset()
                acc.apply(self.handles[i].pread(local, count))
                crc = acc.finish()[0]
                expected = self.checksums[slot]
                if crc != expected:
                    raise ChecksumMismatchError(
                        f"Checksum mismatch at index {index} ({i}) {crc} != {expected}",
                        expected=expected,
                        actual=crc,
                        index=index,
                        subfile=i,
                    )
                report.windows_verified += 1
                local += count
        return report
