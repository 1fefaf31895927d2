"""
Serialization helpers for transaction construction.

Parsers take ``(data, offset)`` and return the decoded value together with the
offset just past it; truncated input raises ValueError.
"""

import hashlib
import struct
from typing import Tuple

from bitcoinlib.encoding import varstr


# compact size marker byte -> (struct format, payload width)
COMPACT_SIZE_WIDTHS = {
    0xfd: ('<H', 2),
    0xfe: ('<I', 4),
    0xff: ('<Q', 8),
}


def serialize_compact_size(n: int) -> bytes:
    """
    Serialize integer as Bitcoin compact size.

    Args:
        n: Integer to serialize

    Returns:
        Compact size encoded bytes
    """
    if n < 0xfd:
        return bytes([n])
    for marker, (fmt, width) in COMPACT_SIZE_WIDTHS.items():
        if n < 1 << (8 * width):
            return bytes([marker]) + struct.pack(fmt, n)
    raise ValueError(f"compact size out of range: {n}")


def compact_size_len(n: int) -> int:
    """Number of bytes used by the compact size encoding of ``n``."""
    return len(serialize_compact_size(n))


def _take(data: bytes, offset: int, length: int, what: str) -> bytes:
    if offset + length > len(data):
        raise ValueError(f"Insufficient data for {what}")
    return data[offset:offset + length]


def parse_compact_size(data: bytes, offset: int = 0) -> Tuple[int, int]:
    """
    Parse Bitcoin compact size from bytes.

    Args:
        data: Bytes to parse
        offset: Starting offset in bytes

    Returns:
        Tuple of (value, new_offset)
    """
    marker = _take(data, offset, 1, "compact size")[0]
    if marker not in COMPACT_SIZE_WIDTHS:
        return marker, offset + 1

    fmt, width = COMPACT_SIZE_WIDTHS[marker]
    payload = _take(data, offset + 1, width, f"{width}-byte compact size")
    return struct.unpack(fmt, payload)[0], offset + 1 + width


def varstr_parse(data: bytes, offset: int = 0) -> Tuple[bytes, int]:
    """Inverse of ``bitcoinlib.encoding.varstr``: ``(bytes, new_offset)``."""
    length, offset = parse_compact_size(data, offset)
    return _take(data, offset, length, "varstr"), offset + length


def sha256(data: bytes) -> bytes:
    return hashlib.sha256(data).digest()


def double_sha256(data: bytes) -> bytes:
    """Double SHA256 hash (used for transaction IDs)."""
    return sha256(sha256(data))


def serialize_outpoint(txid: str, vout: int) -> bytes:
    """Little-endian txid followed by the 4-byte vout."""
    return bytes.fromhex(txid)[::-1] + struct.pack('<I', vout)


def parse_outpoint(data: bytes, offset: int = 0) -> Tuple[str, int, int]:
    """
    Parse transaction outpoint.

    Returns:
        Tuple of (txid, vout, new_offset)
    """
    raw = _take(data, offset, 36, "outpoint")
    return raw[:32][::-1].hex(), struct.unpack('<I', raw[32:])[0], offset + 36


def serialize_output(value: int, script: bytes) -> bytes:
    """Serialize a transaction output: 8-byte value then length-prefixed script."""
    return struct.pack('<Q', value) + varstr(script)


def push_data(data: bytes) -> bytes:
    """
    Minimal-length script push of ``data`` using direct pushes or OP_PUSHDATA1/2/4.

    Args:
        data: Bytes to push

    Returns:
        Push opcode(s) followed by data
    """
    length = len(data)
    if length <= 75:
        return bytes([length]) + data
    elif length <= 0xff:
        return bytes([0x4c, length]) + data
    elif length <= 0xffff:
        return bytes([0x4d]) + struct.pack('<H', length) + data
    return bytes([0x4e]) + struct.pack('<I', length) + data
