from __future__ import annotations

import os
import sys
import time
import argparse
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from dfs.constants import (
    DEFAULT_CHUNK_SIZE,
    DEFAULT_SECTOR_ALIGNED_EXTENSIONS,
    DEFAULT_SECTOR_SIZE,
    DEFAULT_SPLIT_SIZE,
)
from dfs.errors import ChecksumMismatchError, DfsError
from dfs.reader import ArchiveReader, FileInfo
from dfs.writer import ArchiveWriter


def _collect_files(input_dir: str) -> List[Tuple[str, str, int]]:
    """Walk ``input_dir`` in sorted order; returns (arc_path, fs_path, size) triples."""
    root = Path(input_dir)
    if not root.is_dir():
        raise NotADirectoryError(f"Input directory not found: {input_dir}")
    files: List[Tuple[str, str, int]] = []
    for dirpath, dirnames, filenames in os.walk(str(root)):
        dirnames.sort()
        for fn in sorted(filenames):
            full = os.path.join(dirpath, fn)
            rel = os.path.relpath(full, start=str(root))
            files.append((rel.replace(os.sep, "/"), full, os.path.getsize(full)))
    return files


def cmd_create(
    input_dir: str,
    output: str,
    *,
    crc: bool = False,
    sector_size: int = DEFAULT_SECTOR_SIZE,
    split_size: int = DEFAULT_SPLIT_SIZE,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    align_ext: Optional[Sequence[str]] = None,
    quiet: bool = False,
) -> bool:
    """Create an archive from every file under ``input_dir``.

    Args:
        input_dir: Directory to pack; archive paths are relative to it.
        output: Primary ``.DFS`` path; sub-files are written beside it.
        crc: Emit the per-window checksum table.
        align_ext: Extensions whose data starts on a sector boundary.
    """
    files = _collect_files(input_dir)
    total_bytes = sum(sz for _, _, sz in files) or 1
    processed = 0
    t0 = time.time()
    aligned = list(align_ext) if align_ext is not None else list(DEFAULT_SECTOR_ALIGNED_EXTENSIONS)

    with ArchiveWriter(
        output,
        sector_size=sector_size,
        split_size=split_size,
        chunk_size=chunk_size,
        enable_crc=crc,
        sector_aligned_extensions=aligned,
    ) as w:
        for arc, full, size in files:
            w.add_file(arc, full)
            processed += size
            if not quiet:
                pct = processed * 100.0 / total_bytes
                print(f" {pct:6.2f}% packing: {arc}")
        hdr = w.finalize()

    dt = max(0.000001, time.time() - t0)
    mib = processed / (1024.0 * 1024.0)
    print(
        f"Done: {hdr.total_file_count} files in {hdr.subfile_count} sub-file(s); "
        f"{mib:.2f} MiB in {dt:.1f}s; CRC={'on' if crc else 'off'}"
    )
    return True


def cmd_extract(archive: str, outdir: str, *, jobs: int = 1, quiet: bool = False) -> bool:
    """Extract every entry of ``archive`` below ``outdir``."""
    t0 = time.time()
    with ArchiveReader(archive) as r:
        total = len(r.entries)
        seen = {"n": 0}

        def _progress(info: FileInfo):
            seen["n"] += 1
            if not quiet:
                print(f" extracting: {seen['n']:>4}/{total:<4} {info.path}")

        count = r.extract(outdir, jobs=jobs, on_entry=_progress)
        nbytes = sum(e.length for e in r.entries)
    dt = max(0.000001, time.time() - t0)
    print(f"Done: extracted {count}/{total} files ({nbytes / (1024.0 * 1024.0):.2f} MiB) in {dt:.1f}s")
    return True


def cmd_list(archive: str) -> bool:
    with ArchiveReader(archive) as r:
        for info in r.enumerate():
            print(f"{info.size}\t{info.path}")
    return True


def cmd_verify(archive: str) -> bool:
    """Verify archive integrity.

    Prints:
        "OK" with window counts on success; mismatches raise and are reported
        by :func:`main`.
    """
    with ArchiveReader(archive) as r:
        rep = r.verify()
    if not rep.has_checksum_table:
        print("Note: no checksum table; archive was built without CRC.")
    elif rep.tail_index is not None:
        print(f"Note: final window at index {rep.tail_index} is not covered by the checksum table.")
    print(f"OK (checksum {rep.checksum:#06x}, {rep.windows_verified} window(s) verified, {rep.windows_skipped} skipped)")
    return True


def cmd_info(archive: str) -> bool:
    with ArchiveReader(archive) as r:
        h = r.header
        print(f"Archive: {archive}")
        print(f"  Version: {h.version}")
        print(f"  Checksum: {h.file_checksum:#06x}")
        print(f"  Sector size: {h.sector_size}")
        print(f"  Max split size: {h.max_split_size}")
        print(f"  Files: {h.total_file_count}")
        print(f"  Sub-files: {h.subfile_count}")
        print(f"  Data bytes: {r.space.total}")
        print(f"  String table: {h.string_table_length} bytes")
        print(f"  Checksum windows: {len(r.checksums) if h.has_checksums else 'none'}")
    return True


def _int(s: str) -> int:
    return int(s, 0)


def _parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="dfs", description="Create, list, extract and verify DFS archives")
    sub = ap.add_subparsers(dest="cmd")

    ap_create = sub.add_parser("create", help="Create archive from a directory")
    ap_create.add_argument("input_dir", help="Directory to pack")
    ap_create.add_argument("output", help="Output .DFS path")
    ap_create.add_argument("--crc", action="store_true", help="Write the per-window CRC16 table")
    ap_create.add_argument("--sector-size", type=_int, default=DEFAULT_SECTOR_SIZE, help="Sector size (power of two)")
    ap_create.add_argument("--split-size", type=_int, default=DEFAULT_SPLIT_SIZE, help="Maximum sub-file size in bytes")
    ap_create.add_argument("--chunk-size", type=_int, default=DEFAULT_CHUNK_SIZE, help="Checksum window size in bytes")
    ap_create.add_argument(
        "--align-ext",
        nargs="*",
        default=None,
        help=f"Extensions stored sector-aligned (default: {' '.join(DEFAULT_SECTOR_ALIGNED_EXTENSIONS)})",
    )
    ap_create.add_argument("--quiet", help="limit outputs to summaries only", action="store_true")

    ap_extract = sub.add_parser("extract", help="Extract all files")
    ap_extract.add_argument("archive", help="Archive .DFS path")
    ap_extract.add_argument("outdir", help="Destination directory")
    ap_extract.add_argument("--jobs", "-j", type=int, default=1, help="Parallel extraction threads (default 1)")
    ap_extract.add_argument("--quiet", help="limit outputs to summaries only", action="store_true")

    ap_verify = sub.add_parser("verify", help="Verify archive checksums")
    ap_verify.add_argument("archive", help="Archive .DFS path")

    ap_list = sub.add_parser("list", help="List archive contents")
    ap_list.add_argument("archive", help="Archive .DFS path")

    ap_info = sub.add_parser("info", help="Show archive header information")
    ap_info.add_argument("archive", help="Archive .DFS path")

    sub.add_parser("help", help="Show this help")
    return ap


def main(argv: List[str] | None = None):
    ap = _parser()
    try:
        args = ap.parse_args(argv)
    except SystemExit as e:
        # argparse uses 2 for usage errors
        sys.exit(0 if e.code in (0, None) else 1)
    try:
        if args.cmd == "create":
            cmd_create(
                args.input_dir,
                args.output,
                crc=args.crc,
                sector_size=args.sector_size,
                split_size=args.split_size,
                chunk_size=args.chunk_size,
                align_ext=args.align_ext,
                quiet=args.quiet,
            )
        elif args.cmd == "extract":
            cmd_extract(args.archive, args.outdir, jobs=args.jobs, quiet=args.quiet)
        elif args.cmd == "verify":
            cmd_verify(args.archive)
        elif args.cmd == "list":
            cmd_list(args.archive)
        elif args.cmd == "info":
            cmd_info(args.archive)
        elif args.cmd in ("help", None):
            ap.print_help()
        else:
            raise RuntimeError("Unknown command")
    except ChecksumMismatchError as e:
        print(f"FAIL: {e}", file=sys.stderr)
        sys.exit(1)
    except (DfsError, OSError, ValueError, RuntimeError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    sys.exit(0)


if __name__ == "__main__":
    main()
