"""
Batch Tree Merkle Operations

This package provides the key tree commitment scheme and its range proofs.

The module is organized into four components:
- records: KeyRecord, the fixed-width key/signature pair
- hashing: batch leaf and node hash primitives
- tree: batch tree construction
- proof: contiguous range proof generation and verification
"""

from .records import KeyRecord, random_key_record

from .hashing import hash_batch, hash_pair

from .tree import (
    BatchTree,
    build_batch_tree,
    build_levels,
    prep_tree,
    is_power_of_two,
    get_tree_depth,
    validate_tree_structure,
)

from .proof import (
    RangeProof,
    batch_range,
    max_proof_length,
    get_proof_indices,
    generate_range_proof,
    fold_range,
    verify_range_proof,
)

__all__ = [
    # Records
    "KeyRecord",
    "random_key_record",
    # Hashing
    "hash_batch",
    "hash_pair",
    # Tree
    "BatchTree",
    "build_batch_tree",
    "build_levels",
    "prep_tree",
    "is_power_of_two",
    "get_tree_depth",
    "validate_tree_structure",
    # Proofs
    "RangeProof",
    "batch_range",
    "max_proof_length",
    "get_proof_indices",
    "generate_range_proof",
    "fold_range",
    "verify_range_proof",
]
