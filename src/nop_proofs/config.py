"""
Runtime configuration read from the environment (and a .env file if present).
"""

import os
from typing import Optional

from dotenv import load_dotenv

from .constants import DEFAULT_KEYS_PER_BATCH

# Load environment variables
load_dotenv()


def get_keys_per_batch() -> int:
    return int(os.getenv("NOP_KEYS_PER_BATCH", str(DEFAULT_KEYS_PER_BATCH)))


def get_trees_file() -> Optional[str]:
    """Path of the operator trees JSON file served by the REST API."""
    return os.getenv("NOP_TREES_FILE")


def get_registry_url() -> Optional[str]:
    return os.getenv("NOP_REGISTRY_URL")


def get_api_host() -> str:
    return os.getenv("NOP_API_HOST", "127.0.0.1")


def get_api_port() -> int:
    return int(os.getenv("NOP_API_PORT", "8000"))
