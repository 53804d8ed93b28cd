"""
Deterministic hashing utilities.

All hashing in the cost kernel must be deterministic and reproducible.
This module provides the canonical JSON form and the SHA-256 digest used by
the integrity seal and the configuration checksum.
"""

import hashlib
import json
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID


def _json_serializer(obj: Any) -> Any:
    """
    Custom JSON serializer for types not natively supported.

    Raises:
        TypeError: If object type is not supported.
    """
    if isinstance(obj, Decimal):
        # Normalize so 12.50 and 12.5 hash identically
        if obj == 0:
            return "0"
        normalized = obj.normalize()
        if normalized == normalized.to_integral_value():
            normalized = normalized.quantize(Decimal(1))
        return format(normalized, "f")
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, date):
        return obj.isoformat()
    if isinstance(obj, UUID):
        return str(obj)
    if isinstance(obj, Enum):
        return obj.value

    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def canonicalize_json(data: dict | list | Any) -> str:
    """
    Convert data to canonical JSON string.

    Produces a deterministic JSON representation:
    - Keys are sorted alphabetically
    - No whitespace
    - Consistent handling of special types (Decimal, datetime, UUID)
    """
    return json.dumps(
        data,
        sort_keys=True,
        separators=(",", ":"),
        default=_json_serializer,
    )


def hash_payload(payload: dict, algorithm: str = "sha256") -> str:
    """
    Compute the hex digest of a payload's canonical JSON.

    Args:
        payload: Dictionary payload to hash.
        algorithm: Any ``hashlib`` algorithm name; SHA-256 by default.

    Returns:
        Hex-encoded digest (64 characters for SHA-256).
    """
    canonical = canonicalize_json(payload)
    return hashlib.new(algorithm, canonical.encode("utf-8")).hexdigest()
