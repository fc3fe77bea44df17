"""
Range Proof Generation and Verification

This module proves that a contiguous block of leaves belongs to a batch
tree. Instead of one sibling path per leaf, only the siblings at the two
edges of the block are supplied at each level, so a proof never holds more
than 2 * log2(tree_size) hashes regardless of how many leaves it covers.

Proof elements are ordered level by level from the leaves upward, and
within a level the left-edge sibling comes before the right-edge sibling.
Generation and verification must walk the levels identically.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Sequence, Tuple

from ..errors import PreconditionViolation, ProofMismatch
from .hashing import hash_pair
from .tree import BatchTree, get_tree_depth

logger = logging.getLogger(__name__)


@dataclass
class RangeProof:
    """Leaf hashes inside the proved range plus the boundary siblings."""
    hashes: List[bytes] = field(default_factory=list)
    proofs: List[bytes] = field(default_factory=list)


def max_proof_length(tree_size: int) -> int:
    """Upper bound on the number of siblings a range proof can need."""
    return 2 * get_tree_depth(tree_size)


def batch_range(key_index: int, key_count: int, keys_per_batch: int) -> Tuple[int, int]:
    """
    Convert a key range into the batch-aligned leaf range covering it.

    The key range [key_index, key_index + key_count) is rounded outward to
    whole batches, since batches are the smallest provable unit.

    Args:
        key_index: First key to use (the tree's used key count)
        key_count: Number of keys to use
        keys_per_batch: Keys per leaf

    Returns:
        Tuple of (batch_index, batch_count)

    Examples:
        >>> batch_range(3, 2, 2)  # keys 3..4 live in batches 1 and 2
        (1, 2)
    """
    if keys_per_batch < 1:
        raise PreconditionViolation(f"keys_per_batch must be at least 1, got {keys_per_batch}")
    if key_index < 0 or key_count < 1:
        raise PreconditionViolation(f"Invalid key range: index {key_index}, count {key_count}")

    batch_index = key_index // keys_per_batch
    batch_count = (key_count + key_index + keys_per_batch - 1) // keys_per_batch - batch_index
    return batch_index, batch_count


def _check_range(tree_size: int, start_leaf: int, leaf_count: int) -> None:
    get_tree_depth(tree_size)
    if leaf_count < 1:
        raise PreconditionViolation("No leaves to prove")
    if start_leaf < 0 or start_leaf + leaf_count > tree_size:
        raise PreconditionViolation(
            f"Leaf range [{start_leaf}, {start_leaf + leaf_count}) outside tree of {tree_size} leaves"
        )


def get_proof_indices(tree_size: int, start_leaf: int, leaf_count: int) -> List[int]:
    """
    Get the flattened node positions a range proof consists of.

    Args:
        tree_size: Number of leaves in the tree
        start_leaf: First leaf of the range
        leaf_count: Number of leaves in the range

    Returns:
        Positions into the tree's flattened hash list, in proof order
    """
    _check_range(tree_size, start_leaf, leaf_count)

    indices: List[int] = []
    idx_l = start_leaf
    idx_r = start_leaf + leaf_count - 1
    offset = 0
    length = tree_size
    while length > 1:
        # Left edge is a right child: its sibling lies outside the window
        if idx_l & 1:
            indices.append(offset + idx_l - 1)
        # Right edge is a left child: its sibling lies outside the window
        if not idx_r & 1:
            indices.append(offset + idx_r + 1)
        offset += length
        length >>= 1
        idx_l >>= 1
        idx_r >>= 1
    return indices


def generate_range_proof(tree: BatchTree, start_leaf: int, leaf_count: int) -> RangeProof:
    """
    Generate a compact proof for leaves [start_leaf, start_leaf + leaf_count).

    Args:
        tree: Published batch tree
        start_leaf: First leaf (batch) of the range
        leaf_count: Number of leaves (batches) in the range

    Returns:
        RangeProof with the range's leaf hashes and the boundary siblings

    Raises:
        PreconditionViolation: If the range is empty or exceeds the tree
    """
    indices = get_proof_indices(tree.tree_size, start_leaf, leaf_count)
    return RangeProof(
        hashes=list(tree.hashes[start_leaf:start_leaf + leaf_count]),
        proofs=[tree.hashes[i] for i in indices],
    )


def fold_range(
    start_leaf: int,
    tree_size: int,
    leaf_hashes: Sequence[bytes],
    proofs: Sequence[bytes],
    proofs_offset: int = 0,
) -> Tuple[int, bytes]:
    """
    Recompute a tree root from a contiguous run of leaf hashes.

    Proof elements are consumed from `proofs` starting at `proofs_offset`,
    so several ranges packed into one proof buffer can be folded back to
    back by feeding each call the offset returned by the previous one.

    Args:
        start_leaf: Index of the first leaf in `leaf_hashes`
        tree_size: Number of leaves in the tree
        leaf_hashes: Hashes of the leaves in the range
        proofs: Proof buffer holding this range's siblings
        proofs_offset: Position of this range's first sibling in `proofs`

    Returns:
        Tuple of (next_proofs_offset, root)

    Raises:
        PreconditionViolation: If the range is empty or exceeds the tree
        ProofMismatch: If the proof buffer runs out before the root
    """
    _check_range(tree_size, start_leaf, len(leaf_hashes))

    level = list(leaf_hashes)
    idx_l = start_leaf
    pos = proofs_offset
    length = tree_size
    while length > 1:
        if idx_l & 1:
            if pos >= len(proofs):
                raise ProofMismatch(f"Proof exhausted at offset {pos} (left sibling, level width {length})")
            level.insert(0, proofs[pos])
            pos += 1
            idx_l -= 1
        idx_r = idx_l + len(level) - 1
        if not idx_r & 1:
            if pos >= len(proofs):
                raise ProofMismatch(f"Proof exhausted at offset {pos} (right sibling, level width {length})")
            level.append(proofs[pos])
            pos += 1
        level = [hash_pair(level[i], level[i + 1]) for i in range(0, len(level), 2)]
        idx_l >>= 1
        length >>= 1

    return pos, level[0]


def verify_range_proof(
    root: bytes,
    start_leaf: int,
    tree_size: int,
    leaf_hashes: Sequence[bytes],
    proofs: Sequence[bytes],
    proofs_offset: int = 0,
) -> int:
    """
    Verify a range proof against a committed root.

    Returns:
        Offset of the first proof element after this range

    Raises:
        ProofMismatch: If the recomputed root differs from `root`
    """
    next_offset, computed = fold_range(start_leaf, tree_size, leaf_hashes, proofs, proofs_offset)
    if computed != root:
        logger.error(
            f"Root mismatch for leaves [{start_leaf}, {start_leaf + len(leaf_hashes)}): "
            f"expected {root.hex()}, got {computed.hex()}"
        )
        raise ProofMismatch(f"Computed root 0x{computed.hex()} does not match committed root 0x{root.hex()}")
    return next_offset
