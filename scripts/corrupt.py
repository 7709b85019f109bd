from __future__ import annotations

import argparse
import os
import random
import sys
from typing import Optional

from dfs.constants import subfile_name
from dfs.errors import DfsError
from dfs.reader import ArchiveReader


def _flip_byte(path: str, offset: int, xor_val: int = 0xFF) -> None:
    if offset < 0:
        raise ValueError("Offset must be non-negative")
    with open(path, "r+b") as f:
        f.seek(offset)
        b = f.read(1)
        if not b:
            raise ValueError("Offset beyond end of file")
        f.seek(offset)
        f.write(bytes([b[0] ^ (xor_val & 0xFF)]))
        f.flush()
        os.fsync(f.fileno())


def cmd_primary(args: argparse.Namespace) -> None:
    _flip_byte(args.archive, args.offset, xor_val=args.xor)
    print(f"Flipped 1 byte at primary offset {args.offset}")


def cmd_logical(args: argparse.Namespace) -> None:
    with ArchiveReader(args.archive) as r:
        sub, local = r.space.locate(args.offset)
    path = subfile_name(os.path.splitext(args.archive)[0], sub)
    _flip_byte(path, local, xor_val=args.xor)
    print(f"Flipped 1 byte at logical offset {args.offset} (sub-file {sub}, local {local})")


def cmd_window(args: argparse.Namespace) -> None:
    with ArchiveReader(args.archive, chunk_size=args.chunk_size) as r:
        if args.subfile < 0 or args.subfile >= len(r.subfiles):
            raise ValueError(f"Sub-file index out of range (0..{len(r.subfiles)-1})")
        start, end = r.space.subfile_bounds(args.subfile)
    local = args.window * args.chunk_size + args.within
    if start + local >= end:
        raise ValueError("Window offset beyond end of sub-file")
    path = subfile_name(os.path.splitext(args.archive)[0], args.subfile)
    _flip_byte(path, local, xor_val=args.xor)
    print(f"Flipped 1 byte in window {args.window} of sub-file {args.subfile} (local {local})")


def cmd_random(args: argparse.Namespace) -> None:
    rng = random.Random(args.seed)
    with ArchiveReader(args.archive) as r:
        total = r.space.total
    if total == 0:
        raise ValueError("Archive holds no data")
    for _ in range(args.count):
        ns = argparse.Namespace(archive=args.archive, offset=rng.randrange(0, total), xor=args.xor)
        cmd_logical(ns)


def main(argv: Optional[list[str]] = None) -> None:
    ap = argparse.ArgumentParser(prog="dfs.corrupt", description="Corrupt DFS archives for testing")
    sub = ap.add_subparsers(dest="cmd", required=True)

    p_prim = sub.add_parser("primary", help="Flip one byte in the primary .DFS file")
    p_prim.add_argument("archive", help="Path to .DFS archive")
    p_prim.add_argument("--offset", type=int, required=True, help="Byte offset in the primary file")
    p_prim.add_argument("--xor", type=lambda x: int(x, 0), default=0xFF, help="XOR mask to apply (default 0xFF)")
    p_prim.set_defaults(func=cmd_primary)

    p_log = sub.add_parser("logical", help="Flip one byte at a logical data offset")
    p_log.add_argument("archive", help="Path to .DFS archive")
    p_log.add_argument("--offset", type=int, required=True, help="Logical offset across all sub-files")
    p_log.add_argument("--xor", type=lambda x: int(x, 0), default=0xFF, help="XOR mask to apply (default 0xFF)")
    p_log.set_defaults(func=cmd_logical)

    p_win = sub.add_parser("window", help="Flip a byte inside a checksum window of a sub-file")
    p_win.add_argument("archive", help="Path to .DFS archive")
    p_win.add_argument("--subfile", type=int, default=0, help="Sub-file index (default 0)")
    p_win.add_argument("--window", type=int, default=0, help="Window index within the sub-file (default 0)")
    p_win.add_argument("--within", type=int, default=10, help="Byte offset within the window (default 10)")
    p_win.add_argument("--chunk-size", type=int, default=32768, help="Window size (default 32768)")
    p_win.add_argument("--xor", type=lambda x: int(x, 0), default=0xFF, help="XOR mask to apply (default 0xFF)")
    p_win.set_defaults(func=cmd_window)

    p_rand = sub.add_parser("random", help="Flip N random bytes in the data sub-files")
    p_rand.add_argument("archive", help="Path to .DFS archive")
    p_rand.add_argument("--count", type=int, default=1, help="Number of random byte flips (default 1)")
    p_rand.add_argument("--seed", type=int, default=None, help="PRNG seed for reproducibility")
    p_rand.add_argument("--xor", type=lambda x: int(x, 0), default=0xFF, help="XOR mask to apply (default 0xFF)")
    p_rand.set_defaults(func=cmd_random)

    args = ap.parse_args(argv)
    try:
        args.func(args)
    except (DfsError, OSError, ValueError, RuntimeError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)


if __name__ == "__main__":
    main()
