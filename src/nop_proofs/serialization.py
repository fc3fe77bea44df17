"""
Operator Tree Serialization

This module reads and writes the published-keys JSON format: every
operator's trees with their keys, signatures, metadata and usage counters.
Roots are stored alongside the keys and checked again on load, so a
tampered or truncated file is rejected instead of producing proofs that
would fail verification later.

File layout:
    {
      "keys_per_batch": 2,
      "operators": [
        {"operator_id": 1, "last_root_id": 0,
         "trees": [{"tree_size": 8, "ipfs_link": "...", "used_keys": 3,
                    "root": "0x...", "keys": [{"key": "0x...", "signature": "0x..."}]}]}
      ]
    }
"""

import json
import logging
from typing import Any, Dict, Mapping, Tuple

from .errors import PreconditionViolation, ProofMismatch
from .merkle import BatchTree, KeyRecord, build_batch_tree
from .operators import OperatorTreeList
from .utils.hex_helpers import bytes_to_hex, hex_to_bytes

logger = logging.getLogger(__name__)


def tree_to_dict(tree: BatchTree) -> Dict[str, Any]:
    return {
        "tree_size": tree.tree_size,
        "ipfs_link": tree.ipfs_link,
        "used_keys": tree.used_keys,
        "root": bytes_to_hex(tree.root),
        "keys": [record.to_dict() for record in tree.keys],
    }


def tree_from_dict(data: Dict[str, Any], keys_per_batch: int) -> BatchTree:
    """
    Rebuild a tree from its JSON form and check the stored root.

    Raises:
        ProofMismatch: If the rebuilt root differs from the stored one
        PreconditionViolation: If the size or usage fields are invalid
    """
    records = [KeyRecord.from_dict(item) for item in data["keys"]]
    tree = build_batch_tree(records, int(data["tree_size"]), keys_per_batch, data.get("ipfs_link", ""))

    stored_root = data.get("root")
    if stored_root is not None and hex_to_bytes(stored_root, 32) != tree.root:
        raise ProofMismatch(f"Stored root {stored_root} does not match rebuilt root {bytes_to_hex(tree.root)}")

    used_keys = int(data.get("used_keys", 0))
    if not 0 <= used_keys <= tree.capacity:
        raise PreconditionViolation(f"used_keys {used_keys} outside tree capacity {tree.capacity}")
    tree.used_keys = used_keys
    return tree


def operators_to_dict(operators: Mapping[int, OperatorTreeList], keys_per_batch: int) -> Dict[str, Any]:
    return {
        "keys_per_batch": keys_per_batch,
        "operators": [
            {
                "operator_id": op_id,
                "last_root_id": operators[op_id].last_root_id,
                "trees": [tree_to_dict(tree) for tree in operators[op_id].trees],
            }
            for op_id in sorted(operators)
        ],
    }


def operators_from_dict(data: Dict[str, Any]) -> Tuple[Dict[int, OperatorTreeList], int]:
    keys_per_batch = int(data.get("keys_per_batch", 1))
    operators: Dict[int, OperatorTreeList] = {}
    for item in data.get("operators", []):
        op_id = int(item["operator_id"])
        operator = OperatorTreeList(operator_id=op_id, last_root_id=int(item.get("last_root_id", 0)))
        for tree_data in item.get("trees", []):
            operator.add_tree(tree_from_dict(tree_data, keys_per_batch))
        operators[op_id] = operator
    return operators, keys_per_batch


def save_operator_trees(path: str, operators: Mapping[int, OperatorTreeList], keys_per_batch: int) -> None:
    """Write operators and their trees to a JSON file."""
    with open(path, "w") as f:
        json.dump(operators_to_dict(operators, keys_per_batch), f, indent=2)
    logger.info(f"Saved {len(operators)} operators to {path}")


def load_operator_trees(path: str) -> Tuple[Dict[int, OperatorTreeList], int]:
    """
    Load operators and their trees from a JSON file.

    Returns:
        Tuple of (operators by id, keys_per_batch)
    """
    with open(path, "r") as f:
        data = json.load(f)
    operators, keys_per_batch = operators_from_dict(data)
    logger.info(f"Loaded {len(operators)} operators ({keys_per_batch} keys per batch) from {path}")
    return operators, keys_per_batch
