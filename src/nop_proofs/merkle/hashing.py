"""
Hash Primitives

The two hash functions every tree, proof and verifier in this package relies
on. Both use keccak-256 so that roots and proofs match the EVM keccak256
verifier byte for byte.
"""

from typing import Sequence

from eth_utils import keccak

from ..constants import HASH_LENGTH
from .records import KeyRecord


def hash_batch(records: Sequence[KeyRecord]) -> bytes:
    """
    Hash a batch of key records into a single leaf.

    The preimage is the concatenation of every record's key bytes followed by
    its signature bytes, in batch order.

    Args:
        records: Ordered key records forming one batch

    Returns:
        32-byte leaf hash

    Examples:
        >>> hash_batch([record]) == keccak(record.key + record.signature)
        True
    """
    return keccak(b"".join(record.serialize() for record in records))


def hash_pair(left: bytes, right: bytes) -> bytes:
    """
    Hash two sibling nodes into their parent, left then right.

    Args:
        left: 32-byte left child
        right: 32-byte right child

    Returns:
        32-byte parent hash
    """
    assert len(left) == HASH_LENGTH and len(right) == HASH_LENGTH, "nodes must be 32 bytes"
    return keccak(left + right)
