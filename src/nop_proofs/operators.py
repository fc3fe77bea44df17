"""
Operator Tree Lists and Cursors

An operator publishes its keys as a sequence of batch trees. Keys are always
consumed from the earliest tree that still has spare capacity, so each
operator carries a cursor (`last_root_id`) that only ever moves forward.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from .constants import DEFAULT_IPFS_LINK
from .errors import PreconditionViolation
from .merkle.tree import BatchTree, prep_tree

logger = logging.getLogger(__name__)


@dataclass
class OperatorTreeList:
    """
    Trees published by one operator, in publish order.

    Attributes:
        operator_id: Operator identifier
        trees: Published trees, earliest first
        last_root_id: Index of the earliest tree not yet exhausted
    """
    operator_id: int
    trees: List[BatchTree] = field(default_factory=list)
    last_root_id: int = 0

    @property
    def used_keys(self) -> int:
        return sum(tree.used_keys for tree in self.trees)

    @property
    def total_keys(self) -> int:
        return sum(tree.capacity for tree in self.trees)

    @property
    def spare_capacity(self) -> int:
        return sum(tree.spare_capacity for tree in self.trees[self.last_root_id:])

    def add_tree(self, tree: BatchTree) -> int:
        """Append a newly published tree and return its index."""
        self.trees.append(tree)
        return len(self.trees) - 1

    def copy(self) -> "OperatorTreeList":
        """Snapshot with independent usage counters."""
        return OperatorTreeList(
            operator_id=self.operator_id,
            trees=[tree.copy() for tree in self.trees],
            last_root_id=self.last_root_id,
        )


class TreeCursor:
    """
    Walks an operator's trees in publish order for one planning pass.

    The cursor keeps its own record of keys planned per tree, so the
    snapshot it was created from is never modified. Planned usage only
    becomes real once a verifier accepts the proofs and commits it.
    """

    def __init__(self, operator: OperatorTreeList, keys_per_batch: Optional[int] = None):
        self.operator = operator
        self.keys_per_batch = keys_per_batch
        self.last_root_id = operator.last_root_id
        self._planned: Dict[int, int] = {}

        if keys_per_batch is not None:
            for index, tree in enumerate(operator.trees):
                if tree.keys_per_batch != keys_per_batch:
                    raise PreconditionViolation(
                        f"Operator {operator.operator_id} tree {index} uses "
                        f"{tree.keys_per_batch} keys per batch, expected {keys_per_batch}"
                    )

    def used_keys(self, index: int) -> int:
        """Committed plus planned usage of tree `index`."""
        return self.operator.trees[index].used_keys + self._planned.get(index, 0)

    def keys_left(self, index: int) -> int:
        return self.operator.trees[index].capacity - self.used_keys(index)

    @property
    def exhausted(self) -> bool:
        return self.last_root_id >= len(self.operator.trees)

    @property
    def spare_capacity(self) -> int:
        return sum(self.keys_left(i) for i in range(self.last_root_id, len(self.operator.trees)))

    def current(self) -> Optional[int]:
        """
        Return the index of the earliest tree with spare capacity.

        Exhausted trees in front of the cursor are skipped permanently.
        Returns None when every tree has been used up.
        """
        while not self.exhausted and self.keys_left(self.last_root_id) == 0:
            self.advance()
        return None if self.exhausted else self.last_root_id

    def advance(self) -> None:
        if self.keys_left(self.last_root_id) > 0:
            raise PreconditionViolation(
                f"Tree {self.last_root_id} of operator {self.operator.operator_id} still has spare keys"
            )
        logger.debug(f"Operator {self.operator.operator_id}: tree {self.last_root_id} exhausted, advancing cursor")
        self.last_root_id += 1

    def consume(self, index: int, count: int) -> None:
        """Record `count` keys of tree `index` as planned."""
        if index != self.last_root_id:
            raise PreconditionViolation(
                f"Tree {index} is not the cursor position {self.last_root_id}"
            )
        if count < 1 or count > self.keys_left(index):
            raise PreconditionViolation(
                f"Cannot take {count} keys from tree {index} with {self.keys_left(index)} left"
            )
        self._planned[index] = self._planned.get(index, 0) + count


def prep_operator_trees(params: Sequence[Dict], keys_per_batch: int = 1) -> Dict[int, OperatorTreeList]:
    """
    Generate random operators and trees for testing and benchmarking.

    Operators are numbered from 1 in the order given. Each entry of
    `params` holds `tree_sizes`, optional `ipfs_links` and optional
    `keys_pre_used`, the latter being marked used on the earliest trees.

    Args:
        params: Per-operator tree parameters
        keys_per_batch: Keys per leaf for every generated tree

    Returns:
        Mapping of operator id to its tree list
    """
    operators: Dict[int, OperatorTreeList] = {}
    for i, param in enumerate(params):
        operator_id = i + 1
        tree_sizes = param.get("tree_sizes", [])
        ipfs_links = param.get("ipfs_links") or [DEFAULT_IPFS_LINK] * len(tree_sizes)
        operator = OperatorTreeList(operator_id=operator_id)
        for tree_size, ipfs_link in zip(tree_sizes, ipfs_links):
            operator.add_tree(prep_tree(tree_size, keys_per_batch, ipfs_link))
        mark_used(operator, param.get("keys_pre_used", 0))
        operators[operator_id] = operator
    return operators


def mark_used(operator: OperatorTreeList, count: int) -> None:
    """
    Mark `count` further keys as used, filling trees in publish order.

    This mutates the operator, so it belongs to whoever owns usage
    accounting; planning code never calls it.
    """
    if count < 0 or count > operator.spare_capacity:
        raise PreconditionViolation(
            f"Cannot mark {count} keys used, operator {operator.operator_id} has "
            f"{operator.spare_capacity} spare keys"
        )
    remaining = count
    while remaining > 0:
        tree = operator.trees[operator.last_root_id]
        take = min(remaining, tree.spare_capacity)
        tree.used_keys += take
        remaining -= take
        if tree.spare_capacity == 0:
            operator.last_root_id += 1
