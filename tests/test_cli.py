"""
Tests for the nop-proofs command-line interface.
"""

import json
import logging
import os
import sys
import tempfile
import unittest

# Add src directory to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from click.testing import CliRunner

from nop_proofs.cli import cli, parse_allocation, parse_tree_sizes
from nop_proofs.serialization import load_operator_trees


def setUpModule():
    # Keep log handlers off the runner's captured streams
    logging.basicConfig(level=logging.WARNING)


class TestParsers(unittest.TestCase):

    def test_parse_allocation(self):
        self.assertEqual(parse_allocation(("1:4", "3:2")), [(1, 4), (3, 2)])

    def test_parse_tree_sizes(self):
        self.assertEqual(parse_tree_sizes("8,16"), [8, 16])
        self.assertEqual(parse_tree_sizes(""), [])


class TestCLI(unittest.TestCase):

    def setUp(self):
        self.runner = CliRunner()
        self.tmp = tempfile.TemporaryDirectory()
        self.trees_file = os.path.join(self.tmp.name, "operators.json")
        result = self.runner.invoke(cli, [
            "generate", self.trees_file,
            "-o", "4,4", "-o", "8",
            "--keys-per-batch", "2",
            "--pre-used", "3",
        ])
        self.assertEqual(result.exit_code, 0, result.output)

    def tearDown(self):
        self.tmp.cleanup()

    def test_generate(self):
        operators, keys_per_batch = load_operator_trees(self.trees_file)
        self.assertEqual(keys_per_batch, 2)
        self.assertEqual([t.tree_size for t in operators[1].trees], [4, 4])
        self.assertEqual(operators[1].used_keys, 3)
        self.assertEqual(operators[2].used_keys, 0)

    def test_generate_rejects_bad_sizes(self):
        path = os.path.join(self.tmp.name, "bad.json")
        result = self.runner.invoke(cli, ["generate", path, "-o", "6"])
        self.assertNotEqual(result.exit_code, 0)
        self.assertFalse(os.path.exists(path))

    def test_inspect(self):
        result = self.runner.invoke(cli, ["inspect", self.trees_file])
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("Operator Trees", result.output)

    def test_prove_and_verify(self):
        proof_file = os.path.join(self.tmp.name, "proof.json")
        result = self.runner.invoke(cli, [
            "prove", self.trees_file, "1", "--key-index", "3", "--key-count", "2", "--output", proof_file
        ])
        self.assertEqual(result.exit_code, 0, result.output)

        with open(proof_file) as f:
            proof = json.load(f)
        self.assertEqual((proof["batch_index"], proof["batch_count"]), (1, 2))
        self.assertEqual(len(proof["keys"]), 4)

        result = self.runner.invoke(cli, ["verify", proof_file])
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("Proof valid", result.output)

    def test_verify_rejects_tampered_proof(self):
        proof_file = os.path.join(self.tmp.name, "proof.json")
        self.runner.invoke(cli, ["prove", self.trees_file, "2", "--key-count", "3", "--output", proof_file])
        with open(proof_file) as f:
            proof = json.load(f)
        proof["proofs"][0] = "0x" + "00" * 32
        with open(proof_file, "w") as f:
            json.dump(proof, f)

        result = self.runner.invoke(cli, ["verify", proof_file])
        self.assertNotEqual(result.exit_code, 0)
        self.assertIn("Root mismatch", result.output)

    def test_prove_unknown_operator(self):
        result = self.runner.invoke(cli, ["prove", self.trees_file, "9"])
        self.assertEqual(result.exit_code, 1)

    def test_plan(self):
        result = self.runner.invoke(cli, ["plan", self.trees_file, "-a", "1:6", "-a", "2:2"])
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("Deposit Plan", result.output)

        # planning commits nothing
        operators, _ = load_operator_trees(self.trees_file)
        self.assertEqual(operators[1].used_keys, 3)

    def test_plan_requires_request(self):
        result = self.runner.invoke(cli, ["plan", self.trees_file])
        self.assertEqual(result.exit_code, 2)

    def test_plan_over_request(self):
        result = self.runner.invoke(cli, ["plan", self.trees_file, "--total", "100"])
        self.assertEqual(result.exit_code, 1)

    def test_deposit_save(self):
        result = self.runner.invoke(cli, ["deposit", self.trees_file, "5", "--save"])
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("Committed 5 keys", result.output)

        operators, _ = load_operator_trees(self.trees_file)
        self.assertEqual(operators[1].used_keys + operators[2].used_keys, 8)

    def test_deposit_without_save(self):
        result = self.runner.invoke(cli, ["deposit", self.trees_file, "5"])
        self.assertEqual(result.exit_code, 0, result.output)
        operators, _ = load_operator_trees(self.trees_file)
        self.assertEqual(operators[1].used_keys + operators[2].used_keys, 3)


if __name__ == '__main__':
    unittest.main()
