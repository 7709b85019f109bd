from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import List

from .constants import (
    CHECKSUM_SIZE,
    DFS_MAGIC,
    DFS_VERSION,
    FILE_ENTRY_SIZE,
    HEADER_SIZE,
    SUBFILE_ENTRY_SIZE,
)
from .errors import FormatError


_HEADER_STRUCT = struct.Struct("<iiIiIiiiIIII")
# Fields (little endian):
# magic i32, version i32, file_checksum u32, sector_size i32, max_split_size u32,
# total_file_count i32, subfile_count i32, string_table_length i32,
# subfile_table_offset u32, file_entries_offset u32, checksum_table_offset u32,
# string_table_offset u32
_SUBFILE_STRUCT = struct.Struct("<II")
_FILE_ENTRY_STRUCT = struct.Struct("<IIIIII")
_CHECKSUM_STRUCT = struct.Struct("<H")

assert _HEADER_STRUCT.size == HEADER_SIZE
assert _SUBFILE_STRUCT.size == SUBFILE_ENTRY_SIZE
assert _FILE_ENTRY_STRUCT.size == FILE_ENTRY_SIZE
assert _CHECKSUM_STRUCT.size == CHECKSUM_SIZE


@dataclass
class ArchiveHeader:
    magic: int = DFS_MAGIC
    version: int = DFS_VERSION
    file_checksum: int = 0
    sector_size: int = 0
    max_split_size: int = 0
    total_file_count: int = 0
    subfile_count: int = 0
    string_table_length: int = 0
    subfile_table_offset: int = 0
    file_entries_offset: int = 0
    checksum_table_offset: int = 0
    string_table_offset: int = 0

    def pack(self) -> bytes:
        return _HEADER_STRUCT.pack(
            self.magic,
            self.version,
            self.file_checksum,
            self.sector_size,
            self.max_split_size,
            self.total_file_count,
            self.subfile_count,
            self.string_table_length,
            self.subfile_table_offset,
            self.file_entries_offset,
            self.checksum_table_offset,
            self.string_table_offset,
        )

    @classmethod
    def unpack(cls, raw: bytes) -> "ArchiveHeader":
        if len(raw) < HEADER_SIZE:
            raise FormatError("Header too short")
        return cls(*_HEADER_STRUCT.unpack_from(raw, 0))

    @property
    def has_checksums(self) -> bool:
        return self.checksum_table_offset != 0


@dataclass
class SubFileEntry:
    """End of one sub-file in the logical address space, and where its checksums start."""

    offset: int
    checksum_index: int

    def pack(self) -> bytes:
        return _SUBFILE_STRUCT.pack(self.offset, self.checksum_index)


@dataclass
class FileEntry:
    name_part1: int
    name_part2: int
    path: int
    extension: int
    data_offset: int
    length: int

    def pack(self) -> bytes:
        return _FILE_ENTRY_STRUCT.pack(
            self.name_part1, self.name_part2, self.path, self.extension, self.data_offset, self.length
        )


def _table(raw: bytes, offset: int, count: int, st: struct.Struct, what: str):
    end = offset + count * st.size
    if count < 0 or offset < 0 or end > len(raw):
        raise FormatError(f"{what} table out of range")
    return [st.unpack_from(raw, offset + i * st.size) for i in range(count)]


def read_subfile_table(raw: bytes, header: ArchiveHeader) -> List[SubFileEntry]:
    rows = _table(raw, header.subfile_table_offset, header.subfile_count, _SUBFILE_STRUCT, "Sub-file")
    return [SubFileEntry(*r) for r in rows]


def read_file_table(raw: bytes, header: ArchiveHeader) -> List[FileEntry]:
    rows = _table(raw, header.file_entries_offset, header.total_file_count, _FILE_ENTRY_STRUCT, "File entry")
    return [FileEntry(*r) for r in rows]


def read_checksum_table(raw: bytes, header: ArchiveHeader) -> List[int]:
    if not header.has_checksums:
        return []
    span = header.string_table_offset - header.checksum_table_offset
    if span < 0:
        raise FormatError("Checksum table overlaps string table")
    rows = _table(raw, header.checksum_table_offset, span // _CHECKSUM_STRUCT.size, _CHECKSUM_STRUCT, "Checksum")
    return [r[0] for r in rows]


def pack_checksums(values: List[int]) -> bytes:
    return b"".join(_CHECKSUM_STRUCT.pack(v) for v in values)
