"""
Key Tree Constants

This module contains the fixed byte widths and defaults shared by the tree
builder, the range prover and the verifier. Any change here changes the
committed roots, so prover and verifier must always agree on these values.
"""

# ====================
# Fixed Encoding Widths
# ====================

# BLS12-381 public key length in bytes
KEY_LENGTH = 48

# BLS12-381 signature length in bytes
SIGNATURE_LENGTH = 96

# keccak-256 digest length in bytes
HASH_LENGTH = 32

# ====================
# Defaults
# ====================

# Keys hashed together into a single leaf (one key per leaf unless configured)
DEFAULT_KEYS_PER_BATCH = 1

# Metadata link used when a tree is built without one
DEFAULT_IPFS_LINK = "ipfs_link"
