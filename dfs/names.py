from __future__ import annotations

from typing import List, Sequence, Tuple


def norm_path(p: str) -> str:
    """Normalize archive paths to a canonical forward-slash form.

    Rules:
    - Convert backslashes to slashes
    - Strip leading/trailing slashes
    - Remove empty and '.' segments
    - Reject '..' segments
    """
    p = p.replace("\\", "/").strip("/")
    parts = [q for q in p.split("/") if q not in ("", ".")]
    for q in parts:
        if q == "..":
            raise ValueError("Path may not contain '..'")
    return "/".join(parts)


def split_ext(filename: str) -> Tuple[str, str]:
    """Split ``NAME.EXT`` into ``("NAME", ".EXT")``; the dot stays with the extension."""
    dot = filename.rfind(".")
    if dot < 0:
        return filename, ""
    return filename[:dot], filename[dot:]


def decompose(arc_path: str) -> Tuple[str, str, str]:
    """Return ``(directory, stem, extension)`` for an archive path.

    The directory uses backslash separators as stored in the string table.
    Raises ValueError for names that are not plain ASCII or contain NUL.
    """
    arc_path = norm_path(arc_path)
    if not arc_path:
        raise ValueError("Empty archive path")
    if not arc_path.isascii() or "\0" in arc_path:
        raise ValueError(f"Archive names must be ASCII without NUL: {arc_path!r}")
    directory, _, filename = arc_path.rpartition("/")
    stem, ext = split_ext(filename)
    return directory.replace("/", "\\"), stem, ext


def _common_prefix(a: str, b: str) -> int:
    n = 0
    for x, y in zip(a.upper(), b.upper()):
        if x != y:
            break
        n += 1
    return n


def _back_off_digits(name: str, n: int) -> int:
    while n > 0 and name[n - 1].isdigit():
        n -= 1
    return n


def split_name(prev: str, cur: str, nxt: str) -> Tuple[str, str]:
    """Split ``cur`` at the longest digit-free prefix shared with a neighbour.

    Trailing digits are trimmed from each shared prefix so that ``TRACK9`` and
    ``TRACK10`` share ``TRACK`` rather than ``TRACK1``. Both parts are returned
    upper-cased.
    """
    cur = cur.upper()
    prev_len = _back_off_digits(cur, _common_prefix(cur, prev))
    next_len = _back_off_digits(cur, _common_prefix(cur, nxt))
    n = max(prev_len, next_len)
    return cur[:n], cur[n:]


def split_names(stems: Sequence[str]) -> List[Tuple[str, str]]:
    """Apply :func:`split_name` over an ordered list of base names.

    The first name is its own predecessor and the last its own successor.
    """
    out = []
    last = len(stems) - 1
    for i, stem in enumerate(stems):
        prev = stems[max(i - 1, 0)]
        nxt = stems[min(i + 1, last)]
        out.append(split_name(prev, stem, nxt))
    return out


def join_path(directory: str, filename: str) -> str:
    """Archive path ``DIR/SUB/NAME.EXT`` from a stored backslash directory."""
    directory = directory.replace("\\", "/").strip("/")
    return f"{directory}/{filename}" if directory else filename
