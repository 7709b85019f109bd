from __future__ import annotations

from typing import List, Optional

from .constants import CHECKSUM_FIELD_OFFSET, HEADER_SIZE
from .crc16 import crc16


class ChecksumAccumulator:
    """Emit one CRC16 per fixed-size window of consumed bytes.

    The CRC restarts from zero at every window boundary. A trailing window that
    never fills is not emitted. With ``chunk_size=None`` the window never closes
    and :attr:`value` is a running CRC over everything applied.
    """

    def __init__(self, chunk_size: Optional[int] = None):
        self._checksums: List[int] = []
        self.value = 0
        self.chunk_size = chunk_size
        self._to_next = chunk_size

    def reset(self, chunk_size: Optional[int] = None):
        if chunk_size is not None:
            self.chunk_size = chunk_size
        self._checksums = []
        self.value = 0
        self._to_next = self.chunk_size

    def apply(self, data: bytes):
        view = memoryview(data)
        if self._to_next is None:
            self.value = crc16(view, self.value)
            return
        pos = 0
        while pos < len(view):
            take = min(self._to_next, len(view) - pos)
            self.value = crc16(view[pos : pos + take], self.value)
            pos += take
            self._to_next -= take
            if self._to_next == 0:
                self._checksums.append(self.value)
                self.value = 0
                self._to_next = self.chunk_size

    @property
    def pending(self) -> int:
        """Bytes consumed since the last emitted window."""
        if self._to_next is None:
            return 0
        return self.chunk_size - self._to_next

    def finish(self) -> List[int]:
        return list(self._checksums)


def whole_archive_checksum(primary: bytes) -> int:
    """CRC16 over the primary file with the header checksum field zeroed."""
    acc = ChecksumAccumulator()
    head = bytearray(primary[:HEADER_SIZE])
    head[CHECKSUM_FIELD_OFFSET : CHECKSUM_FIELD_OFFSET + 4] = b"\x00" * 4
    acc.apply(bytes(head))
    acc.apply(primary[HEADER_SIZE:])
    return acc.value
