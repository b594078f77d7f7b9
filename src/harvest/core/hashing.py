"""
Deterministic hashing for artifacts, records and datasets.

Hashes identify artifacts for order-independent sorting and let stores detect
unchanged records on re-publish (upsert without duplication).

Examples:
    >>> h1 = compute_hash("sku-1", 1000)
    >>> h2 = compute_hash("sku-1", 1000)
    >>> h1 == h2
    True
    >>> compute_hash("a", "b") != compute_hash("b", "a")
    True
"""

import hashlib
import json
from typing import Any


def compute_hash(*values: Any, length: int = 32) -> str:
    """
    Compute deterministic hash from values.

    Joins the string form of every value with ``|`` and takes the SHA-256
    hex digest, truncated to *length* characters. Order-dependent.

    Args:
        *values: Values to hash (converted to strings)
        length: Hex digest length (default 32 = 128 bits)

    Returns:
        Hex string of specified length
    """
    content = "|".join(str(v) for v in values)
    return hashlib.sha256(content.encode()).hexdigest()[:length]


def compute_record_hash(record: dict[str, Any], length: int = 32) -> str:
    """Content hash of a record, independent of key order."""
    content = json.dumps(record, sort_keys=True, separators=(",", ":"), default=str)
    return compute_hash(content, length=length)
