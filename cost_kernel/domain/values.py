"""
Values -- exact decimal coercion for quantities, prices and percentages.

Responsibility:
    The single boundary where caller-supplied numbers become ``Decimal``.
    Every service and engine entry point runs its numeric inputs through
    ``to_decimal`` so that binary floating point never reaches arithmetic.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  No imports from
    db/, services/, selectors/ or outer layers.

Invariants enforced:
    - float inputs are rejected (TypeError), never converted.
    - NaN and infinities are rejected (ValueError).
    - bool is not a number here (TypeError).

Audit relevance:
    Certified amounts are audited to the cent across hundreds of lines;
    a single float conversion would introduce drift that no later rounding
    can remove.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any

ZERO = Decimal("0")
HUNDRED = Decimal("100")


def to_decimal(value: Any, field: str = "value") -> Decimal:
    """
    Convert ``value`` to an exact ``Decimal``.

    Accepts Decimal, int and numeric strings.

    Raises:
        TypeError: for float, bool, None or any other type.
        ValueError: for unparsable strings, NaN or infinities.
    """
    if isinstance(value, bool):
        raise TypeError(f"{field} must be a Decimal, int or numeric string, got bool")
    if isinstance(value, float):
        raise TypeError(
            f"{field} must not be a float (got {value!r}); "
            "pass a Decimal or a string to keep exact arithmetic"
        )
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, int):
        result = Decimal(value)
    elif isinstance(value, str):
        try:
            result = Decimal(value.strip())
        except InvalidOperation as exc:
            raise ValueError(f"{field} is not a number: {value!r}") from exc
    else:
        raise TypeError(
            f"{field} must be a Decimal, int or numeric string, "
            f"got {type(value).__name__}"
        )
    if not result.is_finite():
        raise ValueError(f"{field} must be finite, got {value!r}")
    return result


def pct_of(base: Decimal, pct: Decimal) -> Decimal:
    """``base x pct / 100`` in exact decimal arithmetic."""
    return base * pct / HUNDRED
