from __future__ import annotations

from typing import Optional


class DfsError(Exception):
    """Base class for DFS-specific errors."""


class FormatError(DfsError):
    """Header magic/version mismatch or malformed metadata tables."""


class ConfigurationError(DfsError, ValueError):
    """Writer parameters or inputs violate a format limit."""


class MissingSubFileError(DfsError, FileNotFoundError):
    def __init__(self, path: str, index: Optional[int] = None):
        self.path = path
        self.index = index
        super().__init__(f"Sub-file {path} not found")


class ChecksumMismatchError(DfsError):
    def __init__(
        self,
        message: str,
        *,
        expected: int,
        actual: int,
        index: Optional[int] = None,
        subfile: Optional[int] = None,
    ):
        self.expected = expected
        self.actual = actual
        self.index = index
        self.subfile = subfile
        super().__init__(message)
