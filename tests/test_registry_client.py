"""
Tests for RegistryAPIClient

HTTP calls are replaced with mocked responses; one test routes the client
through the FastAPI test client to check it reads the routes this package
serves.
"""

import os
import sys
import unittest
from unittest.mock import MagicMock, patch

# Add src directory to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

import requests
from fastapi.testclient import TestClient

from nop_proofs.api.proof_service import ProofService
from nop_proofs.api.registry_client import RegistryAPIClient, RegistryAPIError
from nop_proofs.api.rest_api import app, get_proof_service
from nop_proofs.main import assemble
from nop_proofs.operators import prep_operator_trees
from nop_proofs.registry import load_snapshot


def mock_response(payload, status_code=200):
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = payload
    if status_code >= 400:
        response.raise_for_status.side_effect = requests.HTTPError(f"{status_code} Error")
    return response


class TestRegistryAPIClient(unittest.TestCase):

    def setUp(self):
        self.client = RegistryAPIClient("http://registry.local/")

    def test_requires_base_url(self):
        with patch.dict(os.environ, {}, clear=True):
            with self.assertRaises(ValueError):
                RegistryAPIClient()

    def test_strips_trailing_slash(self):
        self.assertEqual(self.client.base_url, "http://registry.local")

    def test_get_operator(self):
        payload = {
            "operator_id": 3,
            "active": True,
            "last_root_id": 1,
            "used_keys": 10,
            "roots": [
                {"merkle_root": "0x" + "11" * 32, "tree_size": 8, "used_keys": 8, "ipfs_link": "ipfs://a"},
                {"merkle_root": "0x" + "22" * 32, "tree_size": 4, "used_keys": 2},
            ],
        }
        with patch.object(self.client.session, "get", return_value=mock_response(payload)) as get:
            state = self.client.get_operator(3)

        get.assert_called_once_with("http://registry.local/operators/3", params=None, timeout=30)
        self.assertEqual(state.operator_id, 3)
        self.assertEqual(state.last_root_id, 1)
        self.assertEqual(state.total_roots, 2)
        self.assertEqual(state.roots[0].merkle_root, b"\x11" * 32)
        self.assertEqual(state.roots[1].ipfs_link, "")

    def test_calc_keys_to_use(self):
        payload = {"total_keys": 5, "allocation": [{"operator_id": 1, "keys_to_use": 2}, {"operator_id": 4, "keys_to_use": 3}]}
        with patch.object(self.client.session, "get", return_value=mock_response(payload)) as get:
            allocation = self.client.calc_keys_to_use(5)

        get.assert_called_once_with("http://registry.local/allocation", params={"total_keys": 5}, timeout=30)
        self.assertEqual(allocation, [(1, 2), (4, 3)])

    def test_http_error(self):
        with patch.object(self.client.session, "get", return_value=mock_response({}, 404)):
            with self.assertRaises(RegistryAPIError):
                self.client.get_operator_root(1, 0)

    def test_connection_error(self):
        with patch.object(self.client.session, "get", side_effect=requests.ConnectionError("refused")):
            with self.assertRaises(RegistryAPIError) as ctx:
                self.client.get_keys_per_batch()
        self.assertIn("Failed to connect", str(ctx.exception))

    def test_malformed_root(self):
        with patch.object(self.client.session, "get", return_value=mock_response({"merkle_root": "0x12"})):
            with self.assertRaises(RegistryAPIError):
                self.client.get_operator_root(1, 0)

    def test_health_check(self):
        with patch.object(self.client.session, "get", return_value=mock_response({}, 200)):
            self.assertTrue(self.client.health_check())
        with patch.object(self.client.session, "get", side_effect=requests.Timeout("slow")):
            self.assertFalse(self.client.health_check())


class TestClientAgainstRestAPI(unittest.TestCase):

    def setUp(self):
        self.trees = prep_operator_trees([
            {"tree_sizes": [4, 4], "keys_pre_used": 5},
            {"tree_sizes": [8]},
        ])
        self.service = ProofService(trees=self.trees, keys_per_batch=1)
        app.dependency_overrides[get_proof_service] = lambda: self.service

        self.client = RegistryAPIClient("http://testserver")
        # TestClient is a requests-compatible session bound to the app
        self.client.session = TestClient(app)

    def tearDown(self):
        app.dependency_overrides.clear()

    def test_snapshot_from_remote_registry(self):
        self.assertEqual(self.client.get_keys_per_batch(), 1)

        snapshot = load_snapshot(self.client, self.trees)
        self.assertEqual([t.used_keys for t in snapshot[1].trees], [4, 1])
        self.assertEqual(snapshot[1].last_root_id, 1)

        allocation = self.client.calc_keys_to_use(4)
        result = assemble(snapshot, allocation, 1)
        self.assertEqual(result.total_keys, 4)


if __name__ == '__main__':
    unittest.main()
