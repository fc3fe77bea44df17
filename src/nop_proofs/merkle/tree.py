"""
Batch Tree Building

This module builds the perfect binary Merkle tree an operator publishes for
a set of keys. Leaves are hashes of fixed-size key batches, and the whole
tree is kept as one flattened list (leaves first, then each level up to the
root) so proofs can be cut out of it later without rehashing.
"""

import logging
from dataclasses import dataclass, replace
from typing import List, Sequence, Tuple

from ..constants import DEFAULT_IPFS_LINK
from ..errors import PreconditionViolation
from .hashing import hash_batch, hash_pair
from .records import KeyRecord, random_key_record

logger = logging.getLogger(__name__)


@dataclass
class BatchTree:
    """
    A published key tree.

    Attributes:
        keys: All key records, tree_size * keys_per_batch of them
        hashes: Flattened node hashes, leaves first, root last
        tree_size: Number of leaves (a power of two)
        keys_per_batch: Key records hashed into each leaf
        ipfs_link: Where the full key set is published for auditing
        used_keys: Keys already consumed from this tree
    """
    keys: Tuple[KeyRecord, ...]
    hashes: Tuple[bytes, ...]
    tree_size: int
    keys_per_batch: int
    ipfs_link: str = DEFAULT_IPFS_LINK
    used_keys: int = 0

    @property
    def root(self) -> bytes:
        return self.hashes[-1]

    @property
    def capacity(self) -> int:
        """Total number of keys committed by the tree."""
        return self.tree_size * self.keys_per_batch

    @property
    def spare_capacity(self) -> int:
        return self.capacity - self.used_keys

    @property
    def leaves(self) -> Tuple[bytes, ...]:
        return self.hashes[:self.tree_size]

    def batch(self, index: int) -> Tuple[KeyRecord, ...]:
        """Return the key records hashed into leaf `index`."""
        start = index * self.keys_per_batch
        return self.keys[start:start + self.keys_per_batch]

    def copy(self, used_keys: int = None) -> "BatchTree":
        """Shallow copy sharing the immutable keys and hashes."""
        if used_keys is None:
            used_keys = self.used_keys
        return replace(self, used_keys=used_keys)


def is_power_of_two(value: int) -> bool:
    return value >= 1 and (value & (value - 1)) == 0


def get_tree_depth(tree_size: int) -> int:
    """
    Calculate the number of levels above the leaves.

    Args:
        tree_size: Number of leaves (must be power of two)

    Returns:
        Tree depth (number of folds from leaves to root)

    Examples:
        >>> get_tree_depth(1024)  # Returns 10
        >>> get_tree_depth(1)     # Returns 0
    """
    if not is_power_of_two(tree_size):
        raise PreconditionViolation(f"Tree size must be a power of two, got {tree_size}")

    return tree_size.bit_length() - 1


def build_levels(leaves: Sequence[bytes]) -> List[bytes]:
    """
    Fold leaf hashes pairwise into the flattened level-by-level node list.

    Args:
        leaves: Leaf hashes (count must be a power of two)

    Returns:
        Flattened list of 2 * len(leaves) - 1 hashes, root last
    """
    hashes = list(leaves)
    n = len(hashes)
    offset = 0
    while n > 1:
        if n % 2 != 0:
            raise PreconditionViolation(f"Cannot pair a level of {n} nodes")
        for i in range(0, n, 2):
            hashes.append(hash_pair(hashes[offset + i], hashes[offset + i + 1]))
        offset += n
        n >>= 1
    return hashes


def build_batch_tree(
    records: Sequence[KeyRecord],
    tree_size: int,
    keys_per_batch: int = 1,
    ipfs_link: str = DEFAULT_IPFS_LINK,
) -> BatchTree:
    """
    Build a batch tree over `records`.

    Records are split into `tree_size` consecutive batches of
    `keys_per_batch`, each batch is hashed into a leaf and the leaves are
    folded pairwise up to the root.

    Args:
        records: Key records, exactly tree_size * keys_per_batch of them
        tree_size: Number of leaves, a power of two
        keys_per_batch: Records per leaf, at least 1
        ipfs_link: Publication link stored as tree metadata

    Returns:
        BatchTree holding the records and the full flattened hash layout

    Raises:
        PreconditionViolation: If the size, batch width or record count is
            invalid. Nothing is hashed in that case.
    """
    if not is_power_of_two(tree_size):
        raise PreconditionViolation(f"Tree size must be a power of two, got {tree_size}")
    if keys_per_batch < 1:
        raise PreconditionViolation(f"keys_per_batch must be at least 1, got {keys_per_batch}")
    if len(records) != tree_size * keys_per_batch:
        raise PreconditionViolation(
            f"Expected {tree_size * keys_per_batch} records for {tree_size} batches "
            f"of {keys_per_batch}, got {len(records)}"
        )

    keys = tuple(records)
    leaves = [
        hash_batch(keys[i * keys_per_batch:(i + 1) * keys_per_batch])
        for i in range(tree_size)
    ]
    hashes = build_levels(leaves)

    logger.debug(f"Built tree of {tree_size} batches x {keys_per_batch} keys, root {hashes[-1].hex()}")
    return BatchTree(
        keys=keys,
        hashes=tuple(hashes),
        tree_size=tree_size,
        keys_per_batch=keys_per_batch,
        ipfs_link=ipfs_link,
    )


def prep_tree(tree_size: int = 8, keys_per_batch: int = 1, ipfs_link: str = DEFAULT_IPFS_LINK) -> BatchTree:
    """Build a tree over freshly generated random key records."""
    records = [random_key_record() for _ in range(tree_size * keys_per_batch)]
    return build_batch_tree(records, tree_size, keys_per_batch, ipfs_link)


def validate_tree_structure(tree: BatchTree) -> bool:
    """
    Check that a tree's flattened hashes are consistent with its keys.

    Returns:
        True if every leaf and every internal node recomputes correctly
    """
    if not is_power_of_two(tree.tree_size):
        return False
    if len(tree.hashes) != 2 * tree.tree_size - 1:
        return False
    if len(tree.keys) != tree.capacity:
        return False

    leaves = [hash_batch(tree.batch(i)) for i in range(tree.tree_size)]
    return tuple(build_levels(leaves)) == tuple(tree.hashes)
