"""
NOP Proofs - Deposit proof assembly

This module contains the functions that turn an allocation ("operator 3
contributes 12 keys, operator 5 contributes 4") into the flat key and proof
buffers a verifier checks in one pass. It is used by both the CLI and the
API layer.

Assembly is pure planning: it reads a snapshot of the operators' trees and
their usage counters and never changes them, so it can be run
speculatively (for example to estimate a deposit) any number of times.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Sequence, Tuple

from .errors import CapacityExhausted, PreconditionViolation
from .merkle import (
    BatchTree,
    KeyRecord,
    RangeProof,
    batch_range,
    generate_range_proof,
)
from .operators import OperatorTreeList, TreeCursor

logger = logging.getLogger(__name__)

Allocation = Sequence[Tuple[int, int]]


@dataclass
class ProofCursor:
    """Read positions into the flat key and proof buffers."""
    keys_offset: int = 0
    proofs_offset: int = 0


@dataclass
class ProofSegment:
    """One contiguous range taken from one tree."""
    operator_id: int
    tree_index: int
    key_index: int
    key_count: int
    batch_index: int
    batch_count: int
    proofs_count: int


@dataclass
class AssemblyResult:
    """Container for deposit assembly results."""
    keys_prepared: List[KeyRecord] = field(default_factory=list)
    proofs_prepared: List[bytes] = field(default_factory=list)
    used_keys: Dict[int, int] = field(default_factory=dict)
    segments: List[ProofSegment] = field(default_factory=list)

    @property
    def total_keys(self) -> int:
        return sum(self.used_keys.values())

    def metadata(self) -> Dict[str, Any]:
        return {
            "total_keys": self.total_keys,
            "keys_prepared": len(self.keys_prepared),
            "proofs_prepared": len(self.proofs_prepared),
            "segments": len(self.segments),
            "operators": len(self.used_keys),
        }


def generate_tree_proof(tree: BatchTree, key_index: int, key_count: int) -> Tuple[int, int, RangeProof]:
    """
    Generate the batch-aligned range proof for a key range of one tree.

    Args:
        tree: Published batch tree
        key_index: First key of the range
        key_count: Number of keys in the range

    Returns:
        Tuple of (batch_index, batch_count, proof)
    """
    if key_index + key_count > tree.capacity:
        raise PreconditionViolation(
            f"Key range [{key_index}, {key_index + key_count}) exceeds tree capacity {tree.capacity}"
        )
    batch_index, batch_count = batch_range(key_index, key_count, tree.keys_per_batch)
    proof = generate_range_proof(tree, batch_index, batch_count)
    return batch_index, batch_count, proof


def assemble(
    operator_tree_lists: Mapping[int, OperatorTreeList],
    allocation: Allocation,
    keys_per_batch: int,
) -> AssemblyResult:
    """
    Collect keys and range proofs for every (operator_id, keys_to_use) pair.

    For each operator, trees are walked from its cursor in publish order.
    Every tree contributes the keys right after its used ones, rounded
    outward to whole batches, and the matching range proof. Keys and proofs
    are appended to flat buffers in allocation order.

    Args:
        operator_tree_lists: Snapshot of each operator's trees and cursor
        allocation: Ordered (operator_id, keys_to_use) pairs
        keys_per_batch: Keys per leaf used by every tree

    Returns:
        AssemblyResult with the flat buffers and per-operator key counts

    Raises:
        PreconditionViolation: For unknown operators, negative requests or
            trees built with a different keys_per_batch
        CapacityExhausted: If an operator cannot supply its share
    """
    if keys_per_batch < 1:
        raise PreconditionViolation(f"keys_per_batch must be at least 1, got {keys_per_batch}")

    result = AssemblyResult()
    cursors: Dict[int, TreeCursor] = {}

    for operator_id, keys_to_use in allocation:
        if keys_to_use < 0:
            raise PreconditionViolation(f"Negative key request {keys_to_use} for operator {operator_id}")
        if operator_id not in operator_tree_lists:
            raise PreconditionViolation(f"Unknown operator {operator_id}")

        # Repeated operators continue from the keys already planned for them
        cursor = cursors.get(operator_id)
        if cursor is None:
            cursor = TreeCursor(operator_tree_lists[operator_id], keys_per_batch)
            cursors[operator_id] = cursor

        if keys_to_use > cursor.spare_capacity:
            raise CapacityExhausted(operator_id, keys_to_use, cursor.spare_capacity)

        remaining = keys_to_use
        while remaining > 0:
            tree_index = cursor.current()
            tree = cursor.operator.trees[tree_index]
            key_index = cursor.used_keys(tree_index)
            take = min(remaining, cursor.keys_left(tree_index))

            batch_index, batch_count, proof = generate_tree_proof(tree, key_index, take)
            result.keys_prepared.extend(
                tree.keys[batch_index * keys_per_batch:(batch_index + batch_count) * keys_per_batch]
            )
            result.proofs_prepared.extend(proof.proofs)
            result.segments.append(ProofSegment(
                operator_id=operator_id,
                tree_index=tree_index,
                key_index=key_index,
                key_count=take,
                batch_index=batch_index,
                batch_count=batch_count,
                proofs_count=len(proof.proofs),
            ))
            logger.debug(
                f"Operator {operator_id} tree {tree_index}: keys [{key_index}, {key_index + take}) "
                f"-> batches [{batch_index}, {batch_index + batch_count}), {len(proof.proofs)} proofs"
            )

            cursor.consume(tree_index, take)
            remaining -= take

        result.used_keys[operator_id] = result.used_keys.get(operator_id, 0) + keys_to_use

    logger.info(
        f"Assembled {result.total_keys} keys from {len(result.used_keys)} operators: "
        f"{len(result.keys_prepared)} key records, {len(result.proofs_prepared)} proof hashes"
    )
    return result
