"""
cost_engines.seal -- Integrity seal for approved certifications.

Responsibility:
    Compute a tamper-evident digest over the identity of a certification
    and the frozen figures of its lines, and verify a stored digest.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    Uses cost_kernel.utils.hashing for the canonical JSON form.

Invariants enforced:
    - Deterministic: canonical JSON (sorted keys, no whitespace, Decimal
      normalized) hashed with SHA-256.
    - Order-independent: lines are sorted before hashing.
    - Covers exactly the identity fields and SEALED_LINE_FIELDS; editing
      any of them after issuance changes the seal.

Audit relevance:
    The seal is written once at approval and never overwritten.  Any later
    recomputation that disagrees is evidence of tampering.
"""

from __future__ import annotations

import hmac
from collections.abc import Iterable, Mapping
from typing import Any

from cost_engines.tracer import traced_engine
from cost_kernel.utils.hashing import canonicalize_json, hash_payload

SEAL_ALGORITHM = "sha256"

IDENTITY_FIELDS: tuple[str, ...] = (
    "project_id",
    "number",
    "period_year",
    "period_month",
)

SEALED_LINE_FIELDS: tuple[str, ...] = (
    "wbs_node_id",
    "contractual_qty_snapshot",
    "unit_price_snapshot",
    "prev_qty",
    "period_qty",
    "total_qty",
    "prev_amount",
    "period_amount",
    "total_amount",
)


def _pick(source: Any, fields: tuple[str, ...]) -> dict[str, Any]:
    if isinstance(source, Mapping):
        return {f: source[f] for f in fields}
    return {f: getattr(source, f) for f in fields}


def seal_payload(identity: Any, lines: Iterable[Any]) -> dict[str, Any]:
    """
    The exact structure that gets hashed.

    ``identity`` and each line may be mappings or objects exposing the
    sealed fields as attributes.
    """
    line_dicts = [_pick(line, SEALED_LINE_FIELDS) for line in lines]
    line_dicts.sort(key=canonicalize_json)
    return {
        "identity": _pick(identity, IDENTITY_FIELDS),
        "lines": line_dicts,
    }


@traced_engine("seal", "1.0")
def seal(identity: Any, lines: Iterable[Any], algorithm: str = SEAL_ALGORITHM) -> str:
    """Hex digest over the certification identity and its sealed line fields."""
    return hash_payload(seal_payload(identity, lines), algorithm=algorithm)


def verify_seal(
    identity: Any,
    lines: Iterable[Any],
    stored: str | None,
    algorithm: str = SEAL_ALGORITHM,
) -> bool:
    """True when ``stored`` matches the recomputed seal; a missing seal never matches."""
    if not stored:
        return False
    return hmac.compare_digest(seal(identity, lines, algorithm=algorithm), stored)
