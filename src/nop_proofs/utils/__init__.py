"""
Utility Functions

This package provides hex string helpers used by the serializer, the CLI and
the API layer.
"""

from .hex_helpers import (
    hex_to_bytes,
    bytes_to_hex,
    validate_hex_length,
)

__all__ = [
    'hex_to_bytes',
    'bytes_to_hex',
    'validate_hex_length',
]
