"""
REST API for NOP Proofs

This module provides a FastAPI-based REST API for generating range proofs
and deposit payloads from published operator key trees, with full OpenAPI
documentation. It also exposes the registry read routes consumed by
RegistryAPIClient.
"""

import logging
import traceback
from typing import List
from fastapi import FastAPI, Depends, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import uvicorn

from .. import __version__, config
from ..errors import CapacityExhausted, PreconditionViolation, ProofMismatch
from .proof_service import ProofService, ProofServiceError
from .registry_client import RegistryAPIError
from ..models.api_models import (
    ErrorResponse,
    HealthResponse,
    OperatorRootResponse,
    OperatorStateResponse,
    AllocationResponse,
    RangeProofRequest,
    RangeProofResponse,
    DepositPlanRequest,
    DepositPlanResponse,
    DepositCommitRequest,
    DepositCommitResponse,
)

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="NOP Proofs API",
    description="""
    Generate compact Merkle range proofs for node operator validator keys.

    Operators publish their keys as batch trees. This API proves contiguous
    ranges of a tree and assembles multi-operator deposit payloads: a flat
    list of key records and a flat list of proof hashes that a verifier
    checks in one pass.

    ## Features
    - **Range Proofs**: Proof size logarithmic in tree size, not range size
    - **Deposit Planning**: Keys and proofs for many operators and trees at once
    - **Registry Routes**: Committed roots, usage counters and allocation
    """,
    version=__version__,
    license_info={
        "name": "MIT",
        "url": "https://opensource.org/licenses/MIT"
    }
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Global proof service instance
proof_service = None


def get_proof_service() -> ProofService:
    """Dependency to get the proof service instance."""
    global proof_service
    if proof_service is None:
        proof_service = ProofService()
    return proof_service


def _error(status_code: int, exc: Exception, code: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(
            error=str(exc),
            code=code,
            details={"error_type": type(exc).__name__}
        ).model_dump()
    )


@app.exception_handler(PreconditionViolation)
async def precondition_handler(request, exc: PreconditionViolation):
    """Handle invalid requests rejected before any hashing."""
    logger.error(f"Precondition violation: {exc}")
    return _error(400, exc, "PRECONDITION_VIOLATION")


@app.exception_handler(CapacityExhausted)
async def capacity_handler(request, exc: CapacityExhausted):
    """Handle requests for more keys than operators have published."""
    logger.error(f"Capacity exhausted: {exc}")
    return _error(409, exc, "CAPACITY_EXHAUSTED")


@app.exception_handler(ProofMismatch)
async def proof_mismatch_handler(request, exc: ProofMismatch):
    """Handle integrity failures."""
    logger.error(f"Proof mismatch: {exc}")
    return _error(422, exc, "PROOF_MISMATCH")


@app.exception_handler(ProofServiceError)
async def proof_service_handler(request, exc: ProofServiceError):
    logger.error(f"Proof service error: {exc}")
    return _error(400, exc, "PROOF_SERVICE_ERROR")


@app.exception_handler(RegistryAPIError)
async def registry_api_handler(request, exc: RegistryAPIError):
    """Handle registry API errors."""
    logger.error(f"Registry API error: {exc}")
    return _error(502, exc, "REGISTRY_API_ERROR")


@app.exception_handler(Exception)
async def general_exception_handler(request, exc: Exception):
    """Handle unexpected errors."""
    logger.error(f"Unexpected error: {exc}\n{traceback.format_exc()}")
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error="Internal server error",
            code="INTERNAL_ERROR",
            details={"error_type": type(exc).__name__}
        ).model_dump()
    )


@app.get("/", response_model=dict)
async def root():
    """API root endpoint with basic information."""
    return {
        "name": "NOP Proofs API",
        "version": __version__,
        "description": "Generate Merkle range proofs for node operator keys",
        "docs": "/docs",
        "health": "/health"
    }


@app.get("/health", response_model=HealthResponse)
async def health_check(service: ProofService = Depends(get_proof_service)):
    """Health check endpoint."""
    return HealthResponse(
        status="healthy",
        operators=len(service.trees),
        keys_per_batch=service.keys_per_batch,
        version=__version__
    )


@app.get("/keys-per-batch")
async def keys_per_batch(service: ProofService = Depends(get_proof_service)):
    """Keys hashed into each leaf, shared by every tree."""
    return {"keys_per_batch": service.registry.get_keys_per_batch()}


@app.get("/operators", response_model=List[dict])
async def list_operators(service: ProofService = Depends(get_proof_service)):
    """Usage overview of every registered operator."""
    return service.get_operator_summary()


@app.get("/operators/{operator_id}", response_model=OperatorStateResponse)
async def get_operator(operator_id: int, service: ProofService = Depends(get_proof_service)):
    """Operator cursor, usage and committed roots."""
    return OperatorStateResponse(**service.get_operator(operator_id))


@app.get("/operators/{operator_id}/roots/{tree_index}", response_model=OperatorRootResponse)
async def get_operator_root(operator_id: int, tree_index: int, service: ProofService = Depends(get_proof_service)):
    """Committed root, size and usage of one tree."""
    return OperatorRootResponse(**service.get_operator_root(operator_id, tree_index))


@app.get("/allocation", response_model=AllocationResponse)
async def get_allocation(
    total_keys: int = Query(..., ge=1, description="Keys to deposit in total"),
    service: ProofService = Depends(get_proof_service)
):
    """Per-operator split of a deposit according to the registry's policy."""
    allocation = service.get_allocation(total_keys)
    return AllocationResponse(
        total_keys=total_keys,
        allocation=[{"operator_id": op_id, "keys_to_use": keys} for op_id, keys in allocation]
    )


@app.post("/proofs/range", response_model=RangeProofResponse)
async def generate_range_proof(request: RangeProofRequest, service: ProofService = Depends(get_proof_service)):
    """
    Generate a range proof for keys of one tree.

    The key range is rounded outward to whole batches. The response holds
    the proved batches' leaf hashes and key records plus the boundary
    sibling hashes needed to fold them up to the committed root.
    """
    logger.info(f"Range proof request: {request}")
    return RangeProofResponse(**service.get_range_proof(
        request.operator_id, request.tree_index, request.key_index, request.key_count
    ))


@app.post("/deposits/plan", response_model=DepositPlanResponse)
async def plan_deposit(request: DepositPlanRequest, service: ProofService = Depends(get_proof_service)):
    """
    Assemble a deposit payload without committing it.

    Give either `total_keys`, split by the registry's allocation, or an
    explicit `allocation`. Calling this twice against unchanged registry
    state returns the same payload.
    """
    allocation = None
    if request.allocation is not None:
        allocation = [(item.operator_id, item.keys_to_use) for item in request.allocation]
    return DepositPlanResponse(**service.plan_deposit(request.total_keys, allocation))


@app.post("/deposits/commit", response_model=DepositCommitResponse)
async def commit_deposit(request: DepositCommitRequest, service: ProofService = Depends(get_proof_service)):
    """Plan a deposit, verify every proof in the registry and commit usage."""
    return DepositCommitResponse(**service.commit_deposit(request.total_keys))


def run_server(host: str = None, port: int = None, dev: bool = False):
    """
    Run the API server.

    Args:
        host: Host to bind to (defaults to NOP_API_HOST)
        port: Port to bind to (defaults to NOP_API_PORT)
        dev: Enable development mode with auto-reload
    """
    host = host or config.get_api_host()
    port = port or config.get_api_port()
    logger.info(f"Starting NOP Proofs API server on {host}:{port}")
    uvicorn.run(
        "nop_proofs.api.rest_api:app",
        host=host,
        port=port,
        reload=dev,
        log_level="info"
    )


if __name__ == "__main__":
    run_server(dev=True)
