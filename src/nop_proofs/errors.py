"""
Error Taxonomy

All failures raised by the tree, proof and assembly code derive from
NopProofsError. None of them are retried automatically and none leave
partial state behind.
"""

from typing import Optional


class NopProofsError(Exception):
    """Base class for key tree and proof errors."""
    pass


class PreconditionViolation(NopProofsError, ValueError):
    """Raised for caller bugs: bad tree sizes, empty or out-of-bounds ranges."""
    pass


class ProofMismatch(NopProofsError):
    """Raised when a recomputed root differs from the committed root."""
    pass


class CapacityExhausted(NopProofsError):
    """Raised when an operator cannot supply the requested number of keys."""

    def __init__(self, operator_id: Optional[int], requested: int, available: int):
        self.operator_id = operator_id
        self.requested = requested
        self.available = available
        owner = "Registry" if operator_id is None else f"Operator {operator_id}"
        super().__init__(f"{owner} has {available} spare keys, {requested} requested")
