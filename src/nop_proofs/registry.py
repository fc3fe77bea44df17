"""
Node Operator Registry

This module provides an in-memory stand-in for the on-chain node operator
registry: it stores each operator's committed roots and usage counters,
verifies the flat key/proof buffers produced by the assembler and only then
commits the new usage.

The registry is the single owner of usage counters. Verification of an
operator's share is done in full before anything is written, so a rejected
payload leaves the registry unchanged.
"""

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence, Tuple

from .errors import CapacityExhausted, PreconditionViolation, ProofMismatch
from .main import AssemblyResult, ProofCursor, assemble
from .merkle import (
    KeyRecord,
    batch_range,
    hash_batch,
    is_power_of_two,
    verify_range_proof,
)
from .operators import OperatorTreeList

logger = logging.getLogger(__name__)


@dataclass
class OperatorRoot:
    """Committed root of one published tree and its usage."""
    merkle_root: bytes
    tree_size: int
    ipfs_link: str = ""
    used_keys: int = 0


@dataclass
class OperatorState:
    """Registry view of one operator."""
    operator_id: int
    active: bool = True
    last_root_id: int = 0
    used_keys: int = 0
    roots: List[OperatorRoot] = field(default_factory=list)

    @property
    def total_roots(self) -> int:
        return len(self.roots)


@dataclass
class OperatorVerification:
    """Outcome of verifying one operator's share of a payload."""
    cursor: ProofCursor
    used_keys: int
    last_root_id: int
    tree_usage: Dict[int, int] = field(default_factory=dict)
    deposit_keys: List[KeyRecord] = field(default_factory=list)


@dataclass
class DepositResult:
    """Container for a planned and committed deposit round."""
    allocation: List[Tuple[int, int]]
    assembly: AssemblyResult
    cursor: ProofCursor
    total_used_keys: int


class RegistrySource(Protocol):
    """Read interface the planner needs from a registry."""

    def get_keys_per_batch(self) -> int: ...

    def get_operator(self, operator_id: int) -> OperatorState: ...

    def get_operator_root(self, operator_id: int, root_index: int) -> OperatorRoot: ...


def verify_operator_keys(
    roots: Sequence[OperatorRoot],
    last_root_id: int,
    keys_to_use: int,
    keys_per_batch: int,
    cursor: ProofCursor,
    keys_prepared: Sequence[KeyRecord],
    proofs_prepared: Sequence[bytes],
) -> OperatorVerification:
    """
    Verify one operator's keys and proofs in the flat payload.

    Walks the operator's roots from `last_root_id` exactly as the assembler
    does, rehashes each batch-aligned key slice into leaves and folds it
    against the committed root, consuming the proof buffer from the shared
    cursor.

    Args:
        roots: The operator's committed roots, in publish order
        last_root_id: The operator's cursor
        keys_to_use: Number of keys the operator contributes
        keys_per_batch: Keys per leaf
        cursor: Current read positions into the payload
        keys_prepared: Flat key buffer
        proofs_prepared: Flat proof buffer

    Returns:
        OperatorVerification with the advanced cursor and planned usage

    Raises:
        ProofMismatch: If a root does not match or a buffer runs out
        CapacityExhausted: If the roots cannot supply keys_to_use keys
    """
    keys_offset = cursor.keys_offset
    proofs_offset = cursor.proofs_offset
    root_id = last_root_id
    remaining = keys_to_use
    usage: Dict[int, int] = {}
    deposit_keys: List[KeyRecord] = []

    if keys_to_use < 0:
        raise PreconditionViolation(f"Negative key request {keys_to_use}")

    while remaining > 0:
        if root_id >= len(roots):
            raise CapacityExhausted(None, keys_to_use, keys_to_use - remaining)
        root = roots[root_id]
        keys_left = root.tree_size * keys_per_batch - root.used_keys
        if keys_left == 0:
            root_id += 1
            continue

        take = min(remaining, keys_left)
        batch_index, batch_count = batch_range(root.used_keys, take, keys_per_batch)
        key_count = batch_count * keys_per_batch
        batch_keys = keys_prepared[keys_offset:keys_offset + key_count]
        if len(batch_keys) != key_count:
            raise ProofMismatch(
                f"Key buffer exhausted at offset {keys_offset}: need {key_count}, have {len(batch_keys)}"
            )

        leaves = [
            hash_batch(batch_keys[i * keys_per_batch:(i + 1) * keys_per_batch])
            for i in range(batch_count)
        ]
        proofs_offset = verify_range_proof(
            root.merkle_root, batch_index, root.tree_size, leaves, proofs_prepared, proofs_offset
        )

        skip = root.used_keys - batch_index * keys_per_batch
        deposit_keys.extend(batch_keys[skip:skip + take])
        usage[root_id] = take
        keys_offset += key_count
        remaining -= take
        if take == keys_left:
            root_id += 1

    return OperatorVerification(
        cursor=ProofCursor(keys_offset, proofs_offset),
        used_keys=keys_to_use,
        last_root_id=root_id,
        tree_usage=usage,
        deposit_keys=deposit_keys,
    )


class KeyRegistry:
    """
    In-memory node operator registry.

    Holds the committed roots of every operator, the global keys per batch
    setting and the usage counters, and verifies deposit payloads before
    committing usage.
    """

    def __init__(self, keys_per_batch: int = 1):
        self._keys_per_batch = 1
        self._operators: Dict[int, OperatorState] = {}
        self.set_keys_per_batch(keys_per_batch)

    # ---- configuration -------------------------------------------------

    def get_keys_per_batch(self) -> int:
        return self._keys_per_batch

    def set_keys_per_batch(self, keys_per_batch: int) -> None:
        if keys_per_batch < 1:
            raise PreconditionViolation(f"keys_per_batch must be at least 1, got {keys_per_batch}")
        if keys_per_batch != self._keys_per_batch and any(op.roots for op in self._operators.values()):
            raise PreconditionViolation("Cannot change keys_per_batch once roots are registered")
        self._keys_per_batch = keys_per_batch

    # ---- operators and roots -------------------------------------------

    def add_operator(self, operator_id: Optional[int] = None, active: bool = True) -> int:
        """Register an operator and return its id (ids start at 1)."""
        if operator_id is None:
            operator_id = max(self._operators, default=0) + 1
        if operator_id in self._operators:
            raise PreconditionViolation(f"Operator {operator_id} already registered")
        self._operators[operator_id] = OperatorState(operator_id=operator_id, active=active)
        logger.info(f"Registered operator {operator_id}")
        return operator_id

    def set_operator_active(self, operator_id: int, active: bool) -> None:
        self._state(operator_id).active = active

    def add_operator_root(self, operator_id: int, merkle_root: bytes, tree_size: int, ipfs_link: str = "") -> int:
        """Commit a newly published tree root and return its index."""
        if not is_power_of_two(tree_size):
            raise PreconditionViolation(f"Tree size must be a power of two, got {tree_size}")
        state = self._state(operator_id)
        state.roots.append(OperatorRoot(merkle_root=merkle_root, tree_size=tree_size, ipfs_link=ipfs_link))
        logger.info(f"Operator {operator_id} added root #{len(state.roots) - 1} ({tree_size} batches)")
        return len(state.roots) - 1

    def get_operator(self, operator_id: int) -> OperatorState:
        state = self._state(operator_id)
        return replace(state, roots=[replace(root) for root in state.roots])

    def get_operator_root(self, operator_id: int, root_index: int) -> OperatorRoot:
        roots = self._state(operator_id).roots
        if not 0 <= root_index < len(roots):
            raise PreconditionViolation(f"Operator {operator_id} has no root #{root_index}")
        return replace(roots[root_index])

    def get_operator_total_roots(self, operator_id: int) -> int:
        return self._state(operator_id).total_roots

    def get_active_operators(self) -> List[int]:
        return sorted(op_id for op_id, state in self._operators.items() if state.active)

    def spare_capacity(self, operator_id: int) -> int:
        state = self._state(operator_id)
        kpb = self._keys_per_batch
        return sum(root.tree_size * kpb - root.used_keys for root in state.roots[state.last_root_id:])

    def increment_used(self, operator_id: int, count: int) -> None:
        """Mark keys used without a deposit, filling roots in order."""
        state = self._state(operator_id)
        available = self.spare_capacity(operator_id)
        if count < 0 or count > available:
            raise CapacityExhausted(operator_id, count, available)
        usage: Dict[int, int] = {}
        remaining = count
        root_id = state.last_root_id
        while remaining > 0:
            root = state.roots[root_id]
            take = min(remaining, root.tree_size * self._keys_per_batch - root.used_keys)
            if take:
                usage[root_id] = take
            remaining -= take
            root_id += 1
        self._commit(state, usage, count)

    # ---- allocation ----------------------------------------------------

    def calc_keys_to_use(self, total_keys: int) -> List[Tuple[int, int]]:
        """
        Reference allocation: hand out keys one at a time to the active
        operator with the fewest used plus allocated keys.

        Returns:
            (operator_id, keys_to_use) pairs in operator id order, zero
            shares omitted
        """
        if total_keys < 0:
            raise PreconditionViolation(f"Negative key request {total_keys}")
        spare = {op_id: self.spare_capacity(op_id) for op_id in self.get_active_operators()}
        available = sum(spare.values())
        if total_keys > available:
            raise CapacityExhausted(None, total_keys, available)

        allocated = {op_id: 0 for op_id in spare}
        for _ in range(total_keys):
            op_id = min(
                (op_id for op_id in spare if allocated[op_id] < spare[op_id]),
                key=lambda i: (self._operators[i].used_keys + allocated[i], i),
            )
            allocated[op_id] += 1
        return [(op_id, keys) for op_id, keys in sorted(allocated.items()) if keys > 0]

    # ---- verification --------------------------------------------------

    def check_op_all_roots(
        self,
        operator_id: int,
        keys_to_use: int,
        cursor: ProofCursor,
        keys_prepared: Sequence[KeyRecord],
        proofs_prepared: Sequence[bytes],
    ) -> Tuple[ProofCursor, int]:
        """
        Verify one operator's share of the payload and commit its usage.

        Returns:
            Tuple of (advanced cursor, keys used)

        Raises:
            ProofMismatch: If any range fails to fold to its committed root
            CapacityExhausted: If the operator lacks spare keys
            PreconditionViolation: If keys_to_use is negative
        """
        if keys_to_use < 0:
            raise PreconditionViolation(f"Negative key request {keys_to_use} for operator {operator_id}")
        state = self._state(operator_id)
        available = self.spare_capacity(operator_id)
        if keys_to_use > available:
            raise CapacityExhausted(operator_id, keys_to_use, available)

        verification = verify_operator_keys(
            state.roots,
            state.last_root_id,
            keys_to_use,
            self._keys_per_batch,
            cursor,
            keys_prepared,
            proofs_prepared,
        )
        self._commit(state, verification.tree_usage, verification.used_keys)
        return verification.cursor, verification.used_keys

    # ---- snapshots and deposits ----------------------------------------

    def snapshot_trees(self, trees: Mapping[int, OperatorTreeList]) -> Dict[int, OperatorTreeList]:
        """
        Copy the registry's usage counters onto local trees for planning.

        Raises:
            ProofMismatch: If a local tree does not match its committed root
            PreconditionViolation: If an operator's tree count differs
        """
        return load_snapshot(self, trees)

    def deposit(self, total_keys: int, trees: Mapping[int, OperatorTreeList]) -> DepositResult:
        """
        Run a full deposit round: allocate, assemble, verify and commit.

        Args:
            total_keys: Keys to deposit
            trees: Locally held trees of every operator

        Returns:
            DepositResult with the payload and the keys actually used
        """
        allocation = self.calc_keys_to_use(total_keys)
        missing = [op_id for op_id, _ in allocation if op_id not in trees]
        if missing:
            raise PreconditionViolation(f"No local trees for operators {missing}")
        snapshot = self.snapshot_trees({op_id: trees[op_id] for op_id, _ in allocation})
        assembly = assemble(snapshot, allocation, self._keys_per_batch)

        # Every share is verified before any usage is committed
        cursor = ProofCursor()
        verified: List[Tuple[OperatorState, OperatorVerification]] = []
        for op_id, keys_to_use in allocation:
            state = self._state(op_id)
            verification = verify_operator_keys(
                state.roots,
                state.last_root_id,
                keys_to_use,
                self._keys_per_batch,
                cursor,
                assembly.keys_prepared,
                assembly.proofs_prepared,
            )
            verified.append((state, verification))
            cursor = verification.cursor

        if cursor.keys_offset != len(assembly.keys_prepared) or cursor.proofs_offset != len(assembly.proofs_prepared):
            raise ProofMismatch(
                f"Payload has trailing data: {len(assembly.keys_prepared) - cursor.keys_offset} keys, "
                f"{len(assembly.proofs_prepared) - cursor.proofs_offset} proofs"
            )

        total_used = 0
        for state, verification in verified:
            self._commit(state, verification.tree_usage, verification.used_keys)
            total_used += verification.used_keys

        logger.info(f"Deposit committed: {total_used} keys from {len(allocation)} operators")
        return DepositResult(allocation=list(allocation), assembly=assembly, cursor=cursor, total_used_keys=total_used)

    @classmethod
    def from_operator_trees(cls, trees: Mapping[int, OperatorTreeList], keys_per_batch: int) -> "KeyRegistry":
        """Register every operator and root, carrying over existing usage."""
        registry = cls(keys_per_batch)
        for op_id in sorted(trees):
            operator = trees[op_id]
            registry.add_operator(op_id)
            usage: Dict[int, int] = {}
            for tree in operator.trees:
                if tree.keys_per_batch != keys_per_batch:
                    raise PreconditionViolation(
                        f"Operator {op_id} tree uses {tree.keys_per_batch} keys per batch, expected {keys_per_batch}"
                    )
                root_id = registry.add_operator_root(op_id, tree.root, tree.tree_size, tree.ipfs_link)
                if tree.used_keys:
                    usage[root_id] = tree.used_keys
            state = registry._state(op_id)
            state.last_root_id = operator.last_root_id
            registry._commit(state, usage, operator.used_keys)
        return registry

    def summary(self) -> List[Dict[str, Any]]:
        """Per-operator usage overview."""
        return [
            {
                "operator_id": op_id,
                "active": state.active,
                "total_roots": state.total_roots,
                "last_root_id": state.last_root_id,
                "used_keys": state.used_keys,
                "spare_keys": self.spare_capacity(op_id),
            }
            for op_id, state in sorted(self._operators.items())
        ]

    # ---- internals -----------------------------------------------------

    def _state(self, operator_id: int) -> OperatorState:
        try:
            return self._operators[operator_id]
        except KeyError:
            raise PreconditionViolation(f"Unknown operator {operator_id}") from None

    def _commit(self, state: OperatorState, usage: Mapping[int, int], count: int) -> None:
        for root_id, take in usage.items():
            state.roots[root_id].used_keys += take
        state.used_keys += count
        while (
            state.last_root_id < len(state.roots)
            and state.roots[state.last_root_id].used_keys == state.roots[state.last_root_id].tree_size * self._keys_per_batch
        ):
            state.last_root_id += 1
        logger.info(f"Operator {state.operator_id}: committed {count} keys, cursor at root #{state.last_root_id}")


def load_snapshot(source: RegistrySource, trees: Mapping[int, OperatorTreeList]) -> Dict[int, OperatorTreeList]:
    """
    Build a planning snapshot from locally held trees and registry state.

    The local trees supply the keys and hashes; the registry supplies the
    committed usage counters and cursor. Local trees are not modified.

    Raises:
        ProofMismatch: If a local tree does not match its committed root
        PreconditionViolation: If the registry holds a different number of roots
    """
    snapshot: Dict[int, OperatorTreeList] = {}
    for op_id, operator in trees.items():
        state = source.get_operator(op_id)
        if state.total_roots != len(operator.trees):
            raise PreconditionViolation(
                f"Operator {op_id}: registry has {state.total_roots} roots, local copy has {len(operator.trees)} trees"
            )
        local = OperatorTreeList(operator_id=op_id, last_root_id=state.last_root_id)
        for index, tree in enumerate(operator.trees):
            root = source.get_operator_root(op_id, index)
            if root.merkle_root != tree.root:
                raise ProofMismatch(
                    f"Operator {op_id} tree {index}: local root 0x{tree.root.hex()} "
                    f"differs from committed 0x{root.merkle_root.hex()}"
                )
            local.add_tree(tree.copy(used_keys=root.used_keys))
        snapshot[op_id] = local
    return snapshot
