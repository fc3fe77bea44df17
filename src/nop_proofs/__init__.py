"""
NOP Proofs

Batched-leaf Merkle commitments for node operator validator keys, compact
contiguous-range proofs, and the assembler that packs keys and proofs from
many operators' trees into one verifiable deposit payload.

Usage:
    from nop_proofs import prep_operator_trees, KeyRegistry

    trees = prep_operator_trees([{"tree_sizes": [4, 4]}], keys_per_batch=1)
    registry = KeyRegistry.from_operator_trees(trees, keys_per_batch=1)
    result = registry.deposit(6, trees)
"""

from .errors import NopProofsError, PreconditionViolation, ProofMismatch, CapacityExhausted
from .main import AssemblyResult, ProofCursor, ProofSegment, assemble, generate_tree_proof
from .merkle import (
    BatchTree,
    KeyRecord,
    RangeProof,
    build_batch_tree,
    fold_range,
    generate_range_proof,
    verify_range_proof,
)
from .operators import OperatorTreeList, TreeCursor, prep_operator_trees
from .registry import KeyRegistry, OperatorRoot, OperatorState

__version__ = "0.1.0"

__all__ = [
    "NopProofsError",
    "PreconditionViolation",
    "ProofMismatch",
    "CapacityExhausted",
    "AssemblyResult",
    "ProofCursor",
    "ProofSegment",
    "assemble",
    "generate_tree_proof",
    "BatchTree",
    "KeyRecord",
    "RangeProof",
    "build_batch_tree",
    "fold_range",
    "generate_range_proof",
    "verify_range_proof",
    "OperatorTreeList",
    "TreeCursor",
    "prep_operator_trees",
    "KeyRegistry",
    "OperatorRoot",
    "OperatorState",
]
