"""
Registry API Client

This module provides a client for a remote node operator registry exposing
the same routes as this package's REST API. It implements the read side of
the registry interface, so a planning snapshot can be built from live
registry state with `nop_proofs.registry.load_snapshot`.
"""

import requests
import logging
from typing import Any, Dict, List, Optional, Tuple

from nop_proofs import config
from nop_proofs.registry import OperatorRoot, OperatorState
from nop_proofs.utils.hex_helpers import hex_to_bytes

logger = logging.getLogger(__name__)


class RegistryAPIError(Exception):
    """Exception raised for registry API related errors."""
    pass


class RegistryAPIClient:
    """
    Client for a node operator registry API.

    Provides methods for fetching operator state, committed roots and the
    keys per batch setting with proper error handling.
    """

    def __init__(self, base_url: Optional[str] = None, timeout: int = 30):
        """
        Initialize the registry API client.

        Args:
            base_url: Base URL for the registry API. If None, uses NOP_REGISTRY_URL.
            timeout: Request timeout in seconds
        """
        self.base_url = base_url or config.get_registry_url()
        if not self.base_url:
            raise ValueError("NOP_REGISTRY_URL environment variable is not set")
        self.base_url = self.base_url.rstrip('/')
        self.timeout = timeout

        self.session = requests.Session()
        self.session.headers.update({
            'Content-Type': 'application/json',
            'Accept': 'application/json'
        })

        logger.info(f"Initialized RegistryAPIClient with base_url: {self.base_url}")

    def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        url = f"{self.base_url}{path}"
        try:
            logger.debug(f"GET {url}")
            response = self.session.get(url, params=params, timeout=self.timeout)
            response.raise_for_status()
            return response.json()
        except requests.ConnectionError as e:
            raise RegistryAPIError(
                f"Failed to connect to registry API at {self.base_url}. "
                f"Check that the registry is running and NOP_REGISTRY_URL is correct. "
                f"Original error: {e}"
            )
        except requests.Timeout as e:
            raise RegistryAPIError(
                f"Timeout connecting to registry API at {self.base_url}. "
                f"Original error: {e}"
            )
        except requests.RequestException as e:
            raise RegistryAPIError(f"Request to {url} failed. Error: {e}")
        except ValueError as e:
            raise RegistryAPIError(f"Invalid JSON from {url}: {e}")

    @staticmethod
    def _parse_root(data: Dict[str, Any]) -> OperatorRoot:
        try:
            return OperatorRoot(
                merkle_root=hex_to_bytes(data['merkle_root'], 32),
                tree_size=int(data['tree_size']),
                ipfs_link=data.get('ipfs_link', ''),
                used_keys=int(data.get('used_keys', 0)),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise RegistryAPIError(f"Invalid root format: {e}")

    def get_keys_per_batch(self) -> int:
        data = self._get("/keys-per-batch")
        return int(data['keys_per_batch'])

    def get_operator(self, operator_id: int) -> OperatorState:
        """
        Fetch an operator's cursor, usage and committed roots.

        Raises:
            RegistryAPIError: If the request fails or the response is malformed
        """
        data = self._get(f"/operators/{operator_id}")
        try:
            return OperatorState(
                operator_id=int(data['operator_id']),
                active=bool(data.get('active', True)),
                last_root_id=int(data.get('last_root_id', 0)),
                used_keys=int(data.get('used_keys', 0)),
                roots=[self._parse_root(root) for root in data.get('roots', [])],
            )
        except (KeyError, TypeError, ValueError) as e:
            raise RegistryAPIError(f"Invalid operator format: {e}")

    def get_operator_root(self, operator_id: int, root_index: int) -> OperatorRoot:
        return self._parse_root(self._get(f"/operators/{operator_id}/roots/{root_index}"))

    def calc_keys_to_use(self, total_keys: int) -> List[Tuple[int, int]]:
        data = self._get("/allocation", params={"total_keys": total_keys})
        return [(int(item['operator_id']), int(item['keys_to_use'])) for item in data.get('allocation', [])]

    def health_check(self) -> bool:
        """
        Check if the registry API is accessible.

        Returns:
            True if API is accessible, False otherwise
        """
        try:
            response = self.session.get(f"{self.base_url}/health", timeout=10)
            return response.status_code == 200
        except requests.RequestException:
            return False
