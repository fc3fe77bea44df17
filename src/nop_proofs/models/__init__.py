"""
API Models Package

This package contains request and response models for the key proof API.

Usage:
    from nop_proofs.models import DepositPlanRequest, DepositPlanResponse

    request = DepositPlanRequest(total_keys=21)
"""

from .api_models import (
    ErrorResponse,
    HealthResponse,
    KeyRecordModel,
    OperatorRootResponse,
    OperatorStateResponse,
    AllocationItem,
    AllocationResponse,
    RangeProofRequest,
    RangeProofResponse,
    ProofSegmentModel,
    DepositPlanRequest,
    DepositPlanResponse,
    DepositCommitRequest,
    DepositCommitResponse,
)

__all__ = [
    'ErrorResponse',
    'HealthResponse',
    'KeyRecordModel',
    'OperatorRootResponse',
    'OperatorStateResponse',
    'AllocationItem',
    'AllocationResponse',
    'RangeProofRequest',
    'RangeProofResponse',
    'ProofSegmentModel',
    'DepositPlanRequest',
    'DepositPlanResponse',
    'DepositCommitRequest',
    'DepositCommitResponse',
]
