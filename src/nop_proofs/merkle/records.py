"""
Key Records

A KeyRecord pairs a validator public key with its deposit signature. Records
are the raw material of every tree leaf and are never modified once a tree
has been published.
"""

import os
from dataclasses import dataclass
from typing import Any, Dict

from ..constants import KEY_LENGTH, SIGNATURE_LENGTH
from ..errors import PreconditionViolation
from ..utils.hex_helpers import bytes_to_hex, hex_to_bytes


@dataclass(frozen=True)
class KeyRecord:
    """Fixed-width key and signature blob pair."""
    key: bytes
    signature: bytes

    def __post_init__(self):
        if len(self.key) != KEY_LENGTH:
            raise PreconditionViolation(
                f"Key must be {KEY_LENGTH} bytes, got {len(self.key)}"
            )
        if len(self.signature) != SIGNATURE_LENGTH:
            raise PreconditionViolation(
                f"Signature must be {SIGNATURE_LENGTH} bytes, got {len(self.signature)}"
            )

    def serialize(self) -> bytes:
        """Return key bytes followed by signature bytes."""
        return self.key + self.signature

    def to_dict(self) -> Dict[str, str]:
        return {
            "key": bytes_to_hex(self.key),
            "signature": bytes_to_hex(self.signature),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "KeyRecord":
        return cls(
            key=hex_to_bytes(data["key"], KEY_LENGTH),
            signature=hex_to_bytes(data["signature"], SIGNATURE_LENGTH),
        )


def random_key_record() -> KeyRecord:
    """Generate a pseudo key/signature pair filled with random bytes."""
    return KeyRecord(key=os.urandom(KEY_LENGTH), signature=os.urandom(SIGNATURE_LENGTH))
