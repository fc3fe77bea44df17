"""
Proof Service Module

This module provides a service layer over the operator trees and the
registry, shared by the REST API and the CLI. It returns plain dicts with
hex-encoded hashes ready for JSON output.
"""

import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from nop_proofs import config
from nop_proofs.errors import NopProofsError, PreconditionViolation
from nop_proofs.main import AssemblyResult, assemble, generate_tree_proof
from nop_proofs.operators import OperatorTreeList
from nop_proofs.registry import KeyRegistry, OperatorRoot
from nop_proofs.serialization import load_operator_trees, save_operator_trees
from nop_proofs.utils.hex_helpers import bytes_to_hex

logger = logging.getLogger(__name__)


class ProofServiceError(Exception):
    """Custom exception for proof service operations."""
    pass


def format_root(root: OperatorRoot) -> Dict[str, Any]:
    return {
        "merkle_root": bytes_to_hex(root.merkle_root),
        "tree_size": root.tree_size,
        "used_keys": root.used_keys,
        "ipfs_link": root.ipfs_link,
    }


def format_assembly(result: AssemblyResult, allocation: Sequence[Tuple[int, int]]) -> Dict[str, Any]:
    """Convert an AssemblyResult to the JSON response format."""
    return {
        "allocation": [{"operator_id": op_id, "keys_to_use": keys} for op_id, keys in allocation],
        "keys_prepared": [record.to_dict() for record in result.keys_prepared],
        "proofs_prepared": [bytes_to_hex(proof) for proof in result.proofs_prepared],
        "used_keys": dict(result.used_keys),
        "segments": [vars(segment).copy() for segment in result.segments],
        "metadata": result.metadata(),
    }


class ProofService:
    """Service for generating range proofs and deposit payloads."""

    def __init__(
        self,
        trees: Optional[Mapping[int, OperatorTreeList]] = None,
        keys_per_batch: Optional[int] = None,
        registry: Optional[KeyRegistry] = None,
        trees_file: Optional[str] = None,
    ):
        """
        Initialize the proof service.

        Args:
            trees: Operator trees. If None, they are loaded from `trees_file`
                or the NOP_TREES_FILE environment variable.
            keys_per_batch: Keys per leaf. Defaults to the value stored with
                the trees file or NOP_KEYS_PER_BATCH.
            registry: Registry holding committed roots and usage. If None, one
                is built from the trees.
            trees_file: Path of the operator trees JSON file
        """
        self.trees_file = trees_file or config.get_trees_file()

        if trees is None:
            if not self.trees_file:
                raise ProofServiceError("No operator trees given and NOP_TREES_FILE is not set")
            try:
                trees, file_kpb = load_operator_trees(self.trees_file)
            except (OSError, ValueError, KeyError) as e:
                raise ProofServiceError(f"Failed to load operator trees from {self.trees_file}: {e}")
            keys_per_batch = keys_per_batch or file_kpb

        self.trees: Dict[int, OperatorTreeList] = dict(trees)
        self.keys_per_batch = keys_per_batch or config.get_keys_per_batch()
        self.registry = registry or KeyRegistry.from_operator_trees(self.trees, self.keys_per_batch)

    def get_operator_summary(self) -> List[Dict[str, Any]]:
        return self.registry.summary()

    def get_operator(self, operator_id: int) -> Dict[str, Any]:
        state = self.registry.get_operator(operator_id)
        return {
            "operator_id": state.operator_id,
            "active": state.active,
            "last_root_id": state.last_root_id,
            "used_keys": state.used_keys,
            "total_roots": state.total_roots,
            "roots": [format_root(root) for root in state.roots],
        }

    def get_operator_root(self, operator_id: int, tree_index: int) -> Dict[str, Any]:
        return format_root(self.registry.get_operator_root(operator_id, tree_index))

    def get_allocation(self, total_keys: int) -> List[Tuple[int, int]]:
        return self.registry.calc_keys_to_use(total_keys)

    def get_range_proof(self, operator_id: int, tree_index: int, key_index: int, key_count: int) -> Dict[str, Any]:
        """
        Generate the batch-aligned range proof for keys of one tree.

        Raises:
            PreconditionViolation: If the operator, tree or range is invalid
        """
        operator = self.trees.get(operator_id)
        if operator is None:
            raise PreconditionViolation(f"Unknown operator {operator_id}")
        if not 0 <= tree_index < len(operator.trees):
            raise PreconditionViolation(f"Operator {operator_id} has no tree #{tree_index}")

        tree = operator.trees[tree_index]
        batch_index, batch_count, proof = generate_tree_proof(tree, key_index, key_count)
        kpb = tree.keys_per_batch
        logger.info(
            f"Range proof for operator {operator_id} tree {tree_index}: "
            f"batches [{batch_index}, {batch_index + batch_count}), {len(proof.proofs)} siblings"
        )
        return {
            "operator_id": operator_id,
            "tree_index": tree_index,
            "batch_index": batch_index,
            "batch_count": batch_count,
            "tree_size": tree.tree_size,
            "root": bytes_to_hex(tree.root),
            "hashes": [bytes_to_hex(h) for h in proof.hashes],
            "proofs": [bytes_to_hex(p) for p in proof.proofs],
            "keys": [r.to_dict() for r in tree.keys[batch_index * kpb:(batch_index + batch_count) * kpb]],
        }

    def plan_deposit(
        self,
        total_keys: Optional[int] = None,
        allocation: Optional[Sequence[Tuple[int, int]]] = None,
    ) -> Dict[str, Any]:
        """
        Assemble a deposit payload against the registry's current usage.

        Nothing is committed; the same call can be repeated safely.

        Args:
            total_keys: Keys to deposit, split by the registry's allocation
            allocation: Explicit (operator_id, keys_to_use) pairs

        Returns:
            Dictionary with the flat key and proof buffers
        """
        if allocation is None:
            if total_keys is None:
                raise ProofServiceError("Either total_keys or allocation is required")
            allocation = self.registry.calc_keys_to_use(total_keys)

        try:
            snapshot = self.registry.snapshot_trees(self.trees)
            result = assemble(snapshot, allocation, self.keys_per_batch)
        except NopProofsError:
            raise
        except Exception as e:
            logger.error(f"Error assembling deposit: {e}")
            raise ProofServiceError(f"Failed to assemble deposit: {e}")

        return format_assembly(result, allocation)

    def commit_deposit(self, total_keys: int, persist: bool = False) -> Dict[str, Any]:
        """
        Plan, verify and commit a deposit round in the registry.

        Args:
            total_keys: Keys to deposit
            persist: Write updated usage counters back to the trees file

        Returns:
            Dictionary with the payload, final offsets and keys used
        """
        try:
            deposit = self.registry.deposit(total_keys, self.trees)
        except NopProofsError:
            raise
        except Exception as e:
            logger.error(f"Error committing deposit: {e}")
            raise ProofServiceError(f"Failed to commit deposit: {e}")

        if persist:
            self.persist()

        response = format_assembly(deposit.assembly, deposit.allocation)
        response.update({
            "total_used_keys": deposit.total_used_keys,
            "keys_offset": deposit.cursor.keys_offset,
            "proofs_offset": deposit.cursor.proofs_offset,
        })
        return response

    def persist(self) -> None:
        """Write the trees with the registry's usage counters to the trees file."""
        if not self.trees_file:
            raise ProofServiceError("No trees file to persist to")
        snapshot = self.registry.snapshot_trees(self.trees)
        save_operator_trees(self.trees_file, snapshot, self.keys_per_batch)
