"""
API Integration Package

This package provides the service layer and HTTP integration:

- ProofService: range proofs and deposit payloads over local trees
- RegistryAPIClient: HTTP client for a remote node operator registry

Usage:
    from nop_proofs.api import ProofService

    service = ProofService(trees_file="operators.json")
    plan = service.plan_deposit(total_keys=21)
"""

from .proof_service import ProofService, ProofServiceError
from .registry_client import RegistryAPIClient, RegistryAPIError

__all__ = [
    'ProofService',
    'ProofServiceError',
    'RegistryAPIClient',
    'RegistryAPIError',
]
