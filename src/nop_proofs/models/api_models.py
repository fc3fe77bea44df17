"""
API Models

This module defines Pydantic models for API request and response validation.
Hashes, keys and signatures travel as 0x-prefixed hex strings.
"""

from typing import Dict, List, Optional
from pydantic import BaseModel, Field, validator
from datetime import datetime

from ..constants import HASH_LENGTH
from ..utils.hex_helpers import validate_hex_length


def _check_hex(value: str) -> str:
    if not validate_hex_length(value, HASH_LENGTH):
        raise ValueError("Must be a 32-byte hex string starting with '0x'")
    return value


class ErrorResponse(BaseModel):
    """
    Response model for API errors.

    Attributes:
        error: Error message
        code: Error code (string identifier)
        details: Additional error details
    """
    error: str = Field(..., description="Error message")
    code: str = Field(..., description="Error code")
    details: Optional[dict] = Field(default=None, description="Additional error details")


class HealthResponse(BaseModel):
    """
    Response model for health check endpoint.

    Attributes:
        status: Service status
        operators: Number of registered operators
        keys_per_batch: Keys hashed into each leaf
        version: Service version
        timestamp: Response timestamp
    """
    status: str = Field(..., description="Service status")
    operators: int = Field(default=0, description="Registered operators")
    keys_per_batch: int = Field(default=1, description="Keys per leaf")
    version: str = Field(default="0.1.0", description="Service version")
    timestamp: Optional[str] = Field(default_factory=lambda: datetime.utcnow().isoformat(), description="Response timestamp")


class KeyRecordModel(BaseModel):
    """A validator key and its deposit signature."""
    key: str = Field(..., description="48-byte public key as hex string")
    signature: str = Field(..., description="96-byte signature as hex string")

    @validator('key')
    def validate_key(cls, v):
        if not v.startswith('0x') or len(v) != 98:
            raise ValueError("Key must be 48 bytes (96 hex chars) with 0x prefix")
        return v

    @validator('signature')
    def validate_signature(cls, v):
        if not v.startswith('0x') or len(v) != 194:
            raise ValueError("Signature must be 96 bytes (192 hex chars) with 0x prefix")
        return v


class OperatorRootResponse(BaseModel):
    """Committed root of one published tree."""
    merkle_root: str = Field(..., description="Tree root as hex string")
    tree_size: int = Field(..., description="Number of leaves")
    used_keys: int = Field(..., description="Keys already used")
    ipfs_link: str = Field(default="", description="Where the full key set is published")

    @validator('merkle_root')
    def validate_root(cls, v):
        return _check_hex(v)


class OperatorStateResponse(BaseModel):
    """Registry view of one operator."""
    operator_id: int
    active: bool = True
    last_root_id: int = 0
    used_keys: int = 0
    total_roots: int = 0
    roots: List[OperatorRootResponse] = Field(default_factory=list)


class AllocationItem(BaseModel):
    """Keys one operator contributes to a deposit."""
    operator_id: int = Field(..., description="Operator identifier")
    keys_to_use: int = Field(..., description="Number of keys to take")

    @validator('keys_to_use')
    def validate_keys_to_use(cls, v):
        if v < 0:
            raise ValueError("keys_to_use cannot be negative")
        return v


class AllocationResponse(BaseModel):
    total_keys: int
    allocation: List[AllocationItem]


class RangeProofRequest(BaseModel):
    """
    Request model for a single-tree range proof.

    Attributes:
        operator_id: Operator owning the tree
        tree_index: Index of the tree in publish order
        key_index: First key of the range
        key_count: Number of keys in the range
    """
    operator_id: int = Field(..., description="Operator identifier")
    tree_index: int = Field(default=0, description="Tree index in publish order")
    key_index: int = Field(default=0, description="First key of the range")
    key_count: int = Field(default=1, description="Number of keys in the range")

    @validator('key_count')
    def validate_key_count(cls, v):
        if v < 1:
            raise ValueError("key_count must be at least 1")
        return v

    @validator('tree_index', 'key_index')
    def validate_non_negative(cls, v):
        if v < 0:
            raise ValueError("Index cannot be negative")
        return v


class RangeProofResponse(BaseModel):
    """Range proof for one tree, rounded outward to whole batches."""
    operator_id: int
    tree_index: int
    batch_index: int
    batch_count: int
    tree_size: int
    root: str = Field(..., description="Committed tree root as hex string")
    hashes: List[str] = Field(..., description="Leaf hashes inside the range")
    proofs: List[str] = Field(..., description="Boundary sibling hashes, leaves upward")
    keys: List[KeyRecordModel] = Field(default_factory=list, description="Key records of the proved batches")

    @validator('hashes', 'proofs', each_item=True)
    def validate_hash_format(cls, v):
        return _check_hex(v)


class ProofSegmentModel(BaseModel):
    operator_id: int
    tree_index: int
    key_index: int
    key_count: int
    batch_index: int
    batch_count: int
    proofs_count: int


class DepositPlanRequest(BaseModel):
    """
    Request model for deposit planning.

    Either `total_keys` (split by the registry's allocation) or an explicit
    `allocation` must be given.
    """
    total_keys: Optional[int] = Field(default=None, description="Keys to deposit in total")
    allocation: Optional[List[AllocationItem]] = Field(default=None, description="Explicit per-operator split")

    @validator('total_keys')
    def validate_total_keys(cls, v):
        if v is not None and v < 1:
            raise ValueError("total_keys must be at least 1")
        return v


class DepositCommitRequest(BaseModel):
    total_keys: int = Field(..., description="Keys to deposit in total")

    @validator('total_keys')
    def validate_total_keys(cls, v):
        if v < 1:
            raise ValueError("total_keys must be at least 1")
        return v


class DepositPlanResponse(BaseModel):
    """
    Flat deposit payload.

    Attributes:
        allocation: Per-operator split the payload was built for
        keys_prepared: Key records in verification order
        proofs_prepared: Proof hashes in verification order
        used_keys: Keys scheduled per operator
        segments: Per-tree ranges making up the payload
        metadata: Counts and sizes
    """
    allocation: List[AllocationItem]
    keys_prepared: List[KeyRecordModel]
    proofs_prepared: List[str]
    used_keys: Dict[int, int]
    segments: List[ProofSegmentModel]
    metadata: dict = Field(default_factory=dict)

    @validator('proofs_prepared', each_item=True)
    def validate_proof_format(cls, v):
        return _check_hex(v)


class DepositCommitResponse(DepositPlanResponse):
    total_used_keys: int = Field(..., description="Keys committed by the registry")
    keys_offset: int = Field(..., description="Final key buffer offset")
    proofs_offset: int = Field(..., description="Final proof buffer offset")
