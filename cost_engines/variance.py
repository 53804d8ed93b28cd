"""
cost_engines.variance -- Budget versus certified variance.

Responsibility:
    Compare a planned figure (budget line total) with an actual figure
    (certified cumulative amount) and classify the gap against a
    percentage threshold.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import cost_kernel.domain.values (and the tracer).
    Consumed by cost_kernel.selectors.progress_selector.

Invariants enforced:
    - variance = actual - planned
    - variance_pct = variance / planned x 100, and 0 when planned is zero.
    - UNDER when variance_pct < -threshold, OVER when > threshold,
      ON_TRACK otherwise (the threshold itself is ON_TRACK).

Failure modes:
    - TypeError on float inputs.
    - ValueError on a negative threshold.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from cost_engines.tracer import traced_engine
from cost_kernel.domain.values import HUNDRED, ZERO, to_decimal

DEFAULT_THRESHOLD_PCT = Decimal("10")


class VarianceStatus(str, Enum):
    UNDER = "UNDER"
    ON_TRACK = "ON_TRACK"
    OVER = "OVER"


@dataclass(frozen=True)
class VarianceResult:
    planned: Decimal
    actual: Decimal
    variance: Decimal
    variance_pct: Decimal
    status: VarianceStatus

    @property
    def is_favorable(self) -> bool:
        """Spending at or under plan."""
        return self.variance <= ZERO


@traced_engine("variance", "1.0", fingerprint_fields=("planned", "actual", "threshold_pct"))
def variance(
    planned: Decimal,
    actual: Decimal,
    threshold_pct: Decimal = DEFAULT_THRESHOLD_PCT,
) -> VarianceResult:
    planned = to_decimal(planned, "planned")
    actual = to_decimal(actual, "actual")
    threshold = to_decimal(threshold_pct, "threshold_pct")
    if threshold < ZERO:
        raise ValueError(f"threshold_pct must not be negative, got {threshold}")

    diff = actual - planned
    pct = ZERO if planned == ZERO else diff / planned * HUNDRED

    if pct < -threshold:
        status = VarianceStatus.UNDER
    elif pct > threshold:
        status = VarianceStatus.OVER
    else:
        status = VarianceStatus.ON_TRACK

    return VarianceResult(
        planned=planned,
        actual=actual,
        variance=diff,
        variance_pct=pct,
        status=status,
    )
