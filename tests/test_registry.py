"""
Tests for the In-Memory Node Operator Registry

Exercises root registration, the reference allocation, payload
verification against committed roots and the commit of usage counters
across repeated deposit rounds.
"""

import unittest
import sys
import os

# Add src directory to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from nop_proofs.errors import CapacityExhausted, PreconditionViolation, ProofMismatch
from nop_proofs.main import ProofCursor, assemble
from nop_proofs.merkle import random_key_record
from nop_proofs.operators import prep_operator_trees
from nop_proofs.registry import KeyRegistry, load_snapshot, verify_operator_keys


class TestRegistryState(unittest.TestCase):

    def test_operator_ids_start_at_one(self):
        registry = KeyRegistry()
        self.assertEqual(registry.add_operator(), 1)
        self.assertEqual(registry.add_operator(), 2)
        with self.assertRaises(PreconditionViolation):
            registry.add_operator(2)

    def test_add_root_requires_power_of_two(self):
        registry = KeyRegistry()
        registry.add_operator(1)
        with self.assertRaises(PreconditionViolation):
            registry.add_operator_root(1, b"\x00" * 32, 6)
        self.assertEqual(registry.add_operator_root(1, b"\x00" * 32, 8, "ipfs://x"), 0)
        self.assertEqual(registry.get_operator_total_roots(1), 1)
        self.assertEqual(registry.get_operator_root(1, 0).ipfs_link, "ipfs://x")

    def test_keys_per_batch_is_fixed_once_roots_exist(self):
        registry = KeyRegistry(2)
        registry.add_operator(1)
        registry.set_keys_per_batch(3)
        registry.add_operator_root(1, b"\x00" * 32, 4)
        with self.assertRaises(PreconditionViolation):
            registry.set_keys_per_batch(1)
        self.assertEqual(registry.get_keys_per_batch(), 3)

    def test_unknown_operator(self):
        registry = KeyRegistry()
        with self.assertRaises(PreconditionViolation):
            registry.get_operator(5)
        registry.add_operator(1)
        with self.assertRaises(PreconditionViolation):
            registry.get_operator_root(1, 0)

    def test_getters_return_copies(self):
        trees = prep_operator_trees([{"tree_sizes": [4]}])
        registry = KeyRegistry.from_operator_trees(trees, 1)
        state = registry.get_operator(1)
        state.roots[0].used_keys = 4
        state.last_root_id = 1
        self.assertEqual(registry.get_operator(1).roots[0].used_keys, 0)
        self.assertEqual(registry.get_operator(1).last_root_id, 0)

    def test_from_operator_trees_carries_usage(self):
        trees = prep_operator_trees([{"tree_sizes": [4, 4], "keys_pre_used": 5}, {"tree_sizes": [2]}])
        registry = KeyRegistry.from_operator_trees(trees, 1)

        state = registry.get_operator(1)
        self.assertEqual(state.used_keys, 5)
        self.assertEqual(state.last_root_id, 1)
        self.assertEqual([root.used_keys for root in state.roots], [4, 1])
        self.assertEqual(state.roots[0].merkle_root, trees[1].trees[0].root)
        self.assertEqual(registry.spare_capacity(1), 3)
        self.assertEqual(registry.spare_capacity(2), 2)

    def test_increment_used(self):
        trees = prep_operator_trees([{"tree_sizes": [2, 4]}])
        registry = KeyRegistry.from_operator_trees(trees, 1)
        registry.increment_used(1, 3)
        state = registry.get_operator(1)
        self.assertEqual([root.used_keys for root in state.roots], [2, 1])
        self.assertEqual(state.last_root_id, 1)
        with self.assertRaises(CapacityExhausted):
            registry.increment_used(1, 4)

    def test_summary(self):
        trees = prep_operator_trees([{"tree_sizes": [4], "keys_pre_used": 1}])
        registry = KeyRegistry.from_operator_trees(trees, 1)
        self.assertEqual(registry.summary(), [{
            "operator_id": 1,
            "active": True,
            "total_roots": 1,
            "last_root_id": 0,
            "used_keys": 1,
            "spare_keys": 3,
        }])


class TestCalcKeysToUse(unittest.TestCase):

    def test_balances_by_used_keys(self):
        trees = prep_operator_trees([
            {"tree_sizes": [4, 4], "keys_pre_used": 3},
            {"tree_sizes": [8]},
        ])
        registry = KeyRegistry.from_operator_trees(trees, 1)
        # operator 2 catches up to 3 used, then ties go to the lower id
        self.assertEqual(registry.calc_keys_to_use(5), [(1, 1), (2, 4)])

    def test_skips_inactive_and_full_operators(self):
        trees = prep_operator_trees([
            {"tree_sizes": [2]},
            {"tree_sizes": [2], "keys_pre_used": 2},
            {"tree_sizes": [8]},
        ])
        registry = KeyRegistry.from_operator_trees(trees, 1)
        registry.set_operator_active(3, False)
        self.assertEqual(registry.get_active_operators(), [1, 2])
        self.assertEqual(registry.calc_keys_to_use(2), [(1, 2)])

    def test_over_request(self):
        trees = prep_operator_trees([{"tree_sizes": [2]}, {"tree_sizes": [2]}])
        registry = KeyRegistry.from_operator_trees(trees, 1)
        with self.assertRaises(CapacityExhausted) as ctx:
            registry.calc_keys_to_use(5)
        self.assertIsNone(ctx.exception.operator_id)
        self.assertEqual(ctx.exception.available, 4)

    def test_negative_total_is_rejected(self):
        trees = prep_operator_trees([{"tree_sizes": [2]}])
        registry = KeyRegistry.from_operator_trees(trees, 1)
        with self.assertRaises(PreconditionViolation):
            registry.calc_keys_to_use(-3)


class TestCheckOpAllRoots(unittest.TestCase):

    def setUp(self):
        self.trees = prep_operator_trees([
            {"tree_sizes": [4, 4]},
            {"tree_sizes": [8], "keys_pre_used": 3},
        ], keys_per_batch=2)
        self.registry = KeyRegistry.from_operator_trees(self.trees, 2)
        self.result = assemble(self.registry.snapshot_trees(self.trees), [(1, 11), (2, 6)], 2)

    def test_verifies_and_commits(self):
        cursor, used = self.registry.check_op_all_roots(
            1, 11, ProofCursor(), self.result.keys_prepared, self.result.proofs_prepared
        )
        self.assertEqual(used, 11)
        state = self.registry.get_operator(1)
        self.assertEqual([root.used_keys for root in state.roots], [8, 3])
        self.assertEqual(state.last_root_id, 1)

        cursor, used = self.registry.check_op_all_roots(
            2, 6, cursor, self.result.keys_prepared, self.result.proofs_prepared
        )
        self.assertEqual(used, 6)
        self.assertEqual(cursor.keys_offset, len(self.result.keys_prepared))
        self.assertEqual(cursor.proofs_offset, len(self.result.proofs_prepared))
        self.assertEqual(self.registry.get_operator(2).used_keys, 9)

    def test_tampered_proof_leaves_state_unchanged(self):
        before = self.registry.get_operator(1)
        proofs = list(self.result.proofs_prepared)
        proofs[0] = b"\x00" * 32
        with self.assertRaises(ProofMismatch):
            self.registry.check_op_all_roots(1, 11, ProofCursor(), self.result.keys_prepared, proofs)
        self.assertEqual(self.registry.get_operator(1), before)

    def test_tampered_key_is_rejected(self):
        keys = list(self.result.keys_prepared)
        keys[0] = random_key_record()
        with self.assertRaises(ProofMismatch):
            self.registry.check_op_all_roots(1, 11, ProofCursor(), keys, self.result.proofs_prepared)
        self.assertEqual(self.registry.get_operator(1).used_keys, 0)

    def test_short_key_buffer_is_rejected(self):
        keys = self.result.keys_prepared[:9]
        with self.assertRaises(ProofMismatch):
            self.registry.check_op_all_roots(1, 11, ProofCursor(), keys, self.result.proofs_prepared)

    def test_over_request_is_rejected(self):
        with self.assertRaises(CapacityExhausted):
            self.registry.check_op_all_roots(
                2, 14, ProofCursor(), self.result.keys_prepared, self.result.proofs_prepared
            )

    def test_zero_keys(self):
        cursor, used = self.registry.check_op_all_roots(1, 0, ProofCursor(3, 1), [], [])
        self.assertEqual((cursor.keys_offset, cursor.proofs_offset, used), (3, 1, 0))

    def test_negative_request_leaves_state_unchanged(self):
        before = self.registry.get_operator(2)
        self.assertEqual(before.used_keys, 3)
        with self.assertRaises(PreconditionViolation):
            self.registry.check_op_all_roots(2, -2, ProofCursor(), [], [])
        after = self.registry.get_operator(2)
        self.assertEqual(after, before)
        self.assertEqual(after.used_keys, sum(root.used_keys for root in after.roots))

    def test_verifier_rejects_negative_request(self):
        state = self.registry.get_operator(1)
        with self.assertRaises(PreconditionViolation):
            verify_operator_keys(state.roots, state.last_root_id, -1, 2, ProofCursor(), [], [])

    def test_verifier_is_pure(self):
        state = self.registry.get_operator(1)
        verification = verify_operator_keys(
            state.roots, state.last_root_id, 11, 2, ProofCursor(),
            self.result.keys_prepared, self.result.proofs_prepared
        )
        self.assertEqual(verification.tree_usage, {0: 8, 1: 3})
        self.assertEqual(verification.last_root_id, 1)
        self.assertEqual(verification.deposit_keys, list(self.trees[1].trees[0].keys) + list(self.trees[1].trees[1].keys[:3]))
        self.assertEqual(self.registry.get_operator(1), state)


class TestDeposit(unittest.TestCase):

    def test_deposit_with_pre_used_keys(self):
        trees = prep_operator_trees([
            {"tree_sizes": [4, 4], "keys_pre_used": 3},
            {"tree_sizes": [8]},
        ])
        registry = KeyRegistry.from_operator_trees(trees, 1)

        deposit = registry.deposit(5, trees)

        self.assertEqual(deposit.allocation, [(1, 1), (2, 4)])
        self.assertEqual(deposit.total_used_keys, 5)
        self.assertEqual(deposit.cursor.keys_offset, len(deposit.assembly.keys_prepared))
        self.assertEqual(registry.get_operator(1).last_root_id, 1)
        self.assertEqual(registry.get_operator(2).used_keys, 4)
        # local trees keep their own counters
        self.assertEqual(trees[2].used_keys, 0)

    def test_cursor_is_monotonic_across_rounds(self):
        trees = prep_operator_trees([{"tree_sizes": [2, 2, 4]}], keys_per_batch=2)
        registry = KeyRegistry.from_operator_trees(trees, 2)

        cursors = []
        for _ in range(5):
            registry.deposit(3, trees)
            cursors.append(registry.get_operator(1).last_root_id)
            self.assertEqual(cursors, sorted(cursors))

        self.assertEqual(registry.get_operator(1).used_keys, 15)
        self.assertEqual(cursors[-1], 2)
        with self.assertRaises(CapacityExhausted):
            registry.deposit(2, trees)
        registry.deposit(1, trees)
        self.assertEqual(registry.get_operator(1).last_root_id, 3)

    def test_mismatched_local_trees_commit_nothing(self):
        trees = prep_operator_trees([{"tree_sizes": [4]}, {"tree_sizes": [4]}])
        registry = KeyRegistry.from_operator_trees(trees, 1)
        foreign = prep_operator_trees([{"tree_sizes": [4]}, {"tree_sizes": [4]}])
        foreign[1] = trees[1]

        with self.assertRaises(ProofMismatch):
            registry.deposit(4, foreign)
        self.assertEqual([s["used_keys"] for s in registry.summary()], [0, 0])

    def test_missing_local_trees(self):
        trees = prep_operator_trees([{"tree_sizes": [4]}, {"tree_sizes": [4]}])
        registry = KeyRegistry.from_operator_trees(trees, 1)
        with self.assertRaises(PreconditionViolation):
            registry.deposit(4, {1: trees[1]})

    def test_negative_deposit_is_rejected(self):
        trees = prep_operator_trees([{"tree_sizes": [4]}])
        registry = KeyRegistry.from_operator_trees(trees, 1)
        with self.assertRaises(PreconditionViolation):
            registry.deposit(-3, trees)
        self.assertEqual(registry.get_operator(1).used_keys, 0)


class TestLoadSnapshot(unittest.TestCase):

    def test_copies_registry_usage(self):
        trees = prep_operator_trees([{"tree_sizes": [4, 4]}])
        registry = KeyRegistry.from_operator_trees(trees, 1)
        registry.increment_used(1, 5)

        snapshot = load_snapshot(registry, trees)

        self.assertEqual([t.used_keys for t in snapshot[1].trees], [4, 1])
        self.assertEqual(snapshot[1].last_root_id, 1)
        self.assertEqual(trees[1].used_keys, 0)

    def test_root_count_must_match(self):
        trees = prep_operator_trees([{"tree_sizes": [4, 4]}])
        registry = KeyRegistry.from_operator_trees(trees, 1)
        trees[1].trees.pop()
        with self.assertRaises(PreconditionViolation):
            load_snapshot(registry, trees)


if __name__ == '__main__':
    unittest.main()
