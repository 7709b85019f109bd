from __future__ import annotations

import io
import os
from dataclasses import dataclass
from typing import BinaryIO, Iterable, List, Optional, Tuple, Union

from .checksum import ChecksumAccumulator, whole_archive_checksum
from .constants import (
    DEFAULT_CHUNK_SIZE,
    DEFAULT_SECTOR_ALIGNED_EXTENSIONS,
    DEFAULT_SECTOR_SIZE,
    DEFAULT_SPLIT_SIZE,
    HEADER_SIZE,
    MAX_STRING_OFFSET,
    MAX_U32,
    TABLE_ALIGNMENT,
    subfile_name,
)
from .errors import ConfigurationError
from .names import decompose, split_names
from .records import ArchiveHeader, FileEntry, SubFileEntry, pack_checksums
from .splitspace import SplitBuilder
from .strtable import StringTable


_TMP_SUFFIX = ".tmp"


@dataclass
class PendingEntry:
    arc_path: str
    directory: str
    stem: str
    extension: str
    data_offset: int
    length: int


def _check_config(sector_size: int, split_size: int, chunk_size: int):
    if sector_size <= 0 or sector_size & (sector_size - 1):
        raise ConfigurationError(f"Sector size must be a positive power of two, got {sector_size}")
    if sector_size > 0x7FFFFFFF:
        raise ConfigurationError("Sector size does not fit the header field")
    if split_size <= 0 or split_size > MAX_U32:
        raise ConfigurationError(f"Split size must be between 1 and {MAX_U32}, got {split_size}")
    if chunk_size <= 0 or chunk_size > MAX_U32:
        raise ConfigurationError(f"Chunk size must be between 1 and {MAX_U32}, got {chunk_size}")


class ArchiveWriter:
    """Write-once builder for a DFS archive (primary ``.DFS`` file plus ``.NNN`` sub-files).

    Files are streamed into sub-files as they are added; the string table,
    entry table and header are produced by :meth:`finalize`. Outputs are first
    written to ``*.tmp`` paths and renamed into place only when finalization
    succeeds.
    """

    def __init__(
        self,
        out_path: str,
        sector_size: int = DEFAULT_SECTOR_SIZE,
        split_size: int = DEFAULT_SPLIT_SIZE,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        enable_crc: bool = False,
        sector_aligned_extensions: Iterable[str] = DEFAULT_SECTOR_ALIGNED_EXTENSIONS,
    ):
        _check_config(sector_size, split_size, chunk_size)
        self.out_path = str(out_path)
        self.stem = os.path.splitext(self.out_path)[0]
        self.sector_size = sector_size
        self.split_size = split_size
        self.chunk_size = chunk_size
        self.enable_crc = enable_crc
        self.sector_aligned_extensions = {e.upper() for e in sector_aligned_extensions}

        self.pending: List[PendingEntry] = []
        self.entries: List[FileEntry] = []
        self.split = SplitBuilder(split_size)
        self.checksums: List[int] = []
        self._acc = ChecksumAccumulator(chunk_size)
        self.string_table = StringTable()
        self.header: Optional[ArchiveHeader] = None

        self._sub: Optional[BinaryIO] = None
        self._temps: List[Tuple[str, str]] = []  # (temp path, final path)
        self._opened = False
        self._finalized = False

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def open(self):
        if self._opened:
            return
        d = os.path.dirname(self.out_path)
        if d:
            os.makedirs(d, exist_ok=True)
        self._opened = True

    def close(self):
        """Release handles; an unfinalized build leaves no output behind."""
        if self._sub is not None:
            self._sub.close()
            self._sub = None
        if not self._finalized:
            for tmp, _final in self._temps:
                if os.path.exists(tmp):
                    os.remove(tmp)
            self._temps = []

    # ingestion
    def add_file(self, arc_path: str, fs_path: str) -> FileEntry:
        """Stream a filesystem file into the archive under ``arc_path``."""
        with open(fs_path, "rb") as rf:
            length = os.fstat(rf.fileno()).st_size
            return self._add(arc_path, rf, length)

    def add_bytes(self, arc_path: str, data: bytes) -> FileEntry:
        return self._add(arc_path, io.BytesIO(data), len(data))

    def add_stream(self, arc_path: str, fh: BinaryIO, length: Optional[int] = None) -> FileEntry:
        if length is None:
            pos = fh.tell()
            fh.seek(0, os.SEEK_END)
            length = fh.tell() - pos
            fh.seek(pos)
        return self._add(arc_path, fh, length)

    def _add(self, arc_path: str, src: BinaryIO, length: int) -> FileEntry:
        if not self._opened:
            raise RuntimeError("Archive not open")
        if self._finalized:
            raise RuntimeError("Archive already finalized")
        directory, stem, ext = decompose(arc_path)
        aligned = ext.upper() in self.sector_aligned_extensions
        if length > self.split_size:
            raise ConfigurationError(
                f"{arc_path} is {length} bytes, larger than the split size {self.split_size}"
            )

        pad = 0
        if aligned and self.split.is_open and self.split.local % self.sector_size:
            pad = self.sector_size - (self.split.local % self.sector_size)

        if self.split.needs_new_subfile(length + pad):
            self._next_subfile()
            pad = 0
        if pad:
            self._write(b"\x00" * pad)

        if self.split.logical + length > MAX_U32:
            raise ConfigurationError("Archive data exceeds the 32-bit logical address space")
        entry = PendingEntry(
            arc_path=arc_path,
            directory=directory,
            stem=stem,
            extension=ext,
            data_offset=self.split.logical,
            length=length,
        )
        remaining = length
        while remaining > 0:
            buf = src.read(min(self.chunk_size, remaining))
            if not buf:
                raise RuntimeError(f"Source for {arc_path} ended {remaining} bytes early")
            self._write(buf)
            remaining -= len(buf)
        self.pending.append(entry)
        fe = FileEntry(0, 0, 0, 0, entry.data_offset, entry.length)
        self.entries.append(fe)
        return fe

    def _write(self, data: bytes):
        assert self._sub is not None
        self._sub.write(data)
        if self.enable_crc:
            self._acc.apply(data)
        self.split.advance(len(data))

    def _close_subfile(self):
        if self._sub is None:
            return
        self.split.close_subfile(len(self.checksums) if self.enable_crc else 0)
        self._sub.flush()
        self._sub.close()
        self._sub = None
        if self.enable_crc:
            self.checksums.extend(self._acc.finish())
            self._acc.reset()

    def _next_subfile(self):
        self._close_subfile()
        index = self.split.open_subfile()
        final = subfile_name(self.stem, index)
        tmp = final + _TMP_SUFFIX
        self._sub = open(tmp, "wb")
        self._temps.append((tmp, final))

    # finalization
    def finalize(self) -> ArchiveHeader:
        """
        Completes the archive.

        1.  Closes the last sub-file and flushes its checksum windows.
        2.  Splits every file name against its neighbours and interns the
            path, name parts and extension of each file, in input order.
        3.  Serializes header, sub-file table, entry table, checksum table and
            string table, pads to the table alignment, then backpatches the
            offsets and finally the whole-archive checksum.
        4.  Renames the temporary outputs into place.
        """
        if not self._opened:
            raise RuntimeError("Archive not open")
        if self._finalized:
            raise RuntimeError("Archive already finalized")
        self._close_subfile()
        self._intern_names()
        primary = self._serialize()
        tmp = self.out_path + _TMP_SUFFIX
        with open(tmp, "wb") as f:
            f.write(primary)
        self._temps.append((tmp, self.out_path))
        self._commit()
        return self.header

    def _intern_names(self):
        parts = split_names([p.stem for p in self.pending])
        st = self.string_table
        for fe, p, (part1, part2) in zip(self.entries, self.pending, parts):
            fe.path = st.intern(p.directory)
            fe.name_part1 = st.intern(part1)
            fe.name_part2 = st.intern(part2)
            fe.extension = st.intern(p.extension)
            for off in (fe.path, fe.name_part1, fe.name_part2, fe.extension):
                if off >= MAX_STRING_OFFSET:
                    raise ConfigurationError(f"String table exceeds 16-bit addressing at {p.arc_path}")

    def _serialize(self) -> bytes:
        table: List[SubFileEntry] = self.split.table
        hdr = ArchiveHeader(
            sector_size=self.sector_size,
            max_split_size=self.split_size,
            total_file_count=len(self.entries),
            subfile_count=len(table),
        )
        buf = bytearray(hdr.pack())
        hdr.subfile_table_offset = len(buf)
        for sub in table:
            buf += sub.pack()
        hdr.file_entries_offset = len(buf)
        for fe in self.entries:
            buf += fe.pack()
        if self.enable_crc:
            hdr.checksum_table_offset = len(buf)
            buf += pack_checksums(self.checksums)
        hdr.string_table_offset = len(buf)
        buf += self.string_table.save()
        hdr.string_table_length = len(self.string_table)
        buf += b"\x00" * (-len(buf) % TABLE_ALIGNMENT)

        buf[:HEADER_SIZE] = hdr.pack()
        hdr.file_checksum = whole_archive_checksum(bytes(buf))
        buf[:HEADER_SIZE] = hdr.pack()
        self.header = hdr
        return bytes(buf)

    def _commit(self):
        for tmp, final in self._temps:
            os.replace(tmp, final)
        self._finalized = True
        self._temps = []
        # Drop sub-files left over from an earlier, larger build
        i = len(self.split.table)
        while os.path.exists(subfile_name(self.stem, i)):
            os.remove(subfile_name(self.stem, i))
            i += 1


Source = Union[str, "os.PathLike[str]", bytes, BinaryIO]


def write_archive(out_path: str, items: Iterable[Tuple[str, Source]], **options) -> ArchiveHeader:
    """Build an archive from ordered ``(arc_path, source)`` pairs.

    A source is a filesystem path, a ``bytes`` payload or a readable binary stream.
    """
    with ArchiveWriter(out_path, **options) as w:
        for arc_path, src in items:
            if isinstance(src, (bytes, bytearray)):
                w.add_bytes(arc_path, bytes(src))
            elif isinstance(src, (str, os.PathLike)):
                w.add_file(arc_path, os.fspath(src))
            else:
                w.add_stream(arc_path, src)
        return w.finalize()
