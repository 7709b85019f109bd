"""
dfs: reader/writer for the XDFS game-asset archive format.

An archive is one primary metadata file (``NAME.DFS``) plus N data sub-files
(``NAME.000``, ``NAME.001``, ...). The primary file holds:

- a 48-byte header (magic, version, whole-archive CRC16, layout offsets)
- the sub-file table (cumulative logical offsets + checksum chunk indices)
- the file entry table (string-table offsets for name parts/path/extension,
  logical data offset and length)
- an optional CRC16 checksum table, one value per 32 KiB window
- the deduplicated, upper-cased string table

Output is byte-exact with archives produced by the shipped game tools.
"""

__version__ = "0.1"

__all__ = [
    "constants",
    "writer",
    "reader",
    "strtable",
    "splitspace",
    "checksum",
]

# Programmatic API: dfs.writer.ArchiveWriter / write_archive and
# dfs.reader.ArchiveReader. The CLI lives in dfs.cli.
