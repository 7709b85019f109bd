# Magic and version
DFS_MAGIC = 0x58444653  # b"SFDX" on disk, "XDFS" as a little-endian int32
DFS_VERSION = 3

# Layout
HEADER_SIZE = 48
SUBFILE_ENTRY_SIZE = 8
FILE_ENTRY_SIZE = 24
CHECKSUM_SIZE = 2
CHECKSUM_FIELD_OFFSET = 8  # header.file_checksum
TABLE_ALIGNMENT = 2048  # metadata section is zero-padded to this boundary

# Defaults
DEFAULT_SECTOR_SIZE = 2048
DEFAULT_SPLIT_SIZE = 240 * 1024 * 1024  # 240 MiB
DEFAULT_CHUNK_SIZE = 32768  # 32 KiB
DEFAULT_SECTOR_ALIGNED_EXTENSIONS = (".AUDIOPKG",)

# 16-bit string offsets, 32-bit logical offsets
MAX_STRING_OFFSET = 0xFFFF
MAX_U32 = 0xFFFFFFFF


def subfile_name(stem: str, index: int) -> str:
    """Return the sub-file name for ``index``: ``stem.000``, ``stem.001``, ..."""
    return f"{stem}.{index:03d}"
