"""Minimal SCALE decoding and storage key helpers for raw JSON-RPC responses."""

from typing import List, Optional, Tuple

import xxhash
from scalecodec.utils.ss58 import ss58_encode

ACCOUNT_ID_LENGTH = 32


def twox128(data: bytes) -> bytes:
    return b"".join(
        xxhash.xxh64(data, seed=seed).intdigest().to_bytes(8, "little")
        for seed in (0, 1)
    )


def storage_key(pallet: str, item: str) -> str:
    """Key of a plain (non-map) storage value."""
    return "0x" + (twox128(pallet.encode()) + twox128(item.encode())).hex()


def hex_to_bytes(value: Optional[str]) -> Optional[bytes]:
    if not value:
        return None
    if value.startswith("0x"):
        value = value[2:]
    try:
        return bytes.fromhex(value)
    except ValueError:
        return None


def decode_uint(value: Optional[str], size: int) -> Optional[int]:
    """Little-endian fixed width unsigned integer."""
    data = hex_to_bytes(value)
    if data is None or len(data) < size:
        return None
    return int.from_bytes(data[:size], "little")


def decode_compact(data: bytes, offset: int = 0) -> Tuple[int, int]:
    """Return (value, bytes consumed) of a compact-encoded integer."""
    first = data[offset]
    mode = first & 0b11
    if mode == 0:
        return first >> 2, 1
    if mode == 1:
        return int.from_bytes(data[offset : offset + 2], "little") >> 2, 2
    if mode == 2:
        return int.from_bytes(data[offset : offset + 4], "little") >> 2, 4
    length = (first >> 2) + 4
    return int.from_bytes(data[offset + 1 : offset + 1 + length], "little"), length + 1


def decode_account_list(value: Optional[str], ss58_format: int) -> Optional[List[str]]:
    """Decode a Vec<AccountId32> into SS58 addresses."""
    data = hex_to_bytes(value)
    if data is None:
        return None
    if not data:
        return []
    count, offset = decode_compact(data)
    if len(data) < offset + count * ACCOUNT_ID_LENGTH:
        return None
    return [
        ss58_encode(
            data[offset + i * ACCOUNT_ID_LENGTH : offset + (i + 1) * ACCOUNT_ID_LENGTH],
            ss58_format=ss58_format,
        )
        for i in range(count)
    ]
