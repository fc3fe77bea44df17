"""
Hex encoding for keys, signatures and node hashes.

Published tree files and API payloads carry every fixed-width blob as a
0x-prefixed lower-case hex string. These helpers convert in both directions
and enforce the blob width where the caller knows it.
"""

from typing import Optional

_HEX_DIGITS = frozenset("0123456789abcdefABCDEF")


def hex_to_bytes(hex_str: str, expected_bytes: Optional[int] = None) -> bytes:
    """
    Decode a hex string, with or without the 0x prefix.

    Args:
        hex_str: Encoded blob, e.g. a 96-char key or a 64-char root
        expected_bytes: Width the decoded blob must have (KEY_LENGTH,
            SIGNATURE_LENGTH or HASH_LENGTH)

    Raises:
        ValueError: On non-hex characters, odd digit counts or a width mismatch
    """
    digits = hex_str[2:] if hex_str.startswith(("0x", "0X")) else hex_str
    if len(digits) % 2:
        raise ValueError(f"Odd number of hex digits in {hex_str!r}")
    data = bytes.fromhex(digits)
    if expected_bytes is not None and len(data) != expected_bytes:
        raise ValueError(f"Expected a {expected_bytes}-byte blob, got {len(data)} bytes")
    return data


def bytes_to_hex(data: bytes, prefix: bool = True) -> str:
    """Encode a blob as lower-case hex, 0x-prefixed unless `prefix` is False."""
    return ("0x" if prefix else "") + data.hex()


def validate_hex_length(hex_str: str, expected_bytes: int) -> bool:
    """True if `hex_str` is a 0x-prefixed encoding of exactly `expected_bytes` bytes."""
    if not isinstance(hex_str, str) or not hex_str.startswith("0x"):
        return False
    digits = hex_str[2:]
    return len(digits) == 2 * expected_bytes and all(c in _HEX_DIGITS for c in digits)
