"""
CRC16 with a precomputed table (polynomial 0x1021, MSB-first, init 0, no final XOR).

This is the checksum used by the archive format for both the whole-archive
header checksum and the per-window checksum table.
"""

_POLY = 0x1021


def _make_table():
    tbl = []
    for n in range(256):
        c = n << 8
        for _ in range(8):
            if c & 0x8000:
                c = (c << 1) ^ _POLY
            else:
                c <<= 1
        tbl.append(c & 0xFFFF)
    return tuple(tbl)


_TABLE = _make_table()


def apply_byte(byte: int, crc: int) -> int:
    return ((crc << 8) & 0xFFFF) ^ _TABLE[((crc >> 8) ^ byte) & 0xFF]


def crc16(data: bytes, crc: int = 0) -> int:
    c = crc & 0xFFFF
    for b in data:
        c = ((c << 8) & 0xFFFF) ^ _TABLE[((c >> 8) ^ b) & 0xFF]
    return c
