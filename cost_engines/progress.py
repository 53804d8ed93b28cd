"""
cost_engines.progress -- Cumulative progress reconciliation for certification lines.

Responsibility:
    Given the approved baseline of a WBS node (previous cumulative
    percentage, quantity and amount), the frozen contractual quantity and
    unit price, and the progress claimed this period, derive every figure
    of a certification line.  Also re-checks the invariant chain of an
    existing line.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import cost_kernel.domain.values, cost_kernel.exceptions and
    the tracer.

Invariants enforced:
    - total_pct = prev_pct + period_pct, and 0 <= total_pct <= max_pct.
    - period_pct >= 0 (progress never regresses inside a certification).
    - total_qty = contractual x total_pct / 100
    - remaining_qty = contractual - total_qty
    - total_amount = total_qty x unit_price
    - period_amount = total_amount - prev_amount
    - period_qty = total_qty - prev_qty
    Conservation follows: summing period_amount over a chain of approved
    certifications telescopes to the last total_amount.

Failure modes:
    - ProgressOverrunError when total_pct exceeds the maximum or period_pct
      is negative.
    - TypeError on float inputs.

Audit relevance:
    Every certified amount is derived here; no other code path computes
    line figures.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from cost_engines.tracer import traced_engine
from cost_kernel.domain.values import HUNDRED, ZERO, pct_of, to_decimal
from cost_kernel.exceptions import ProgressOverrunError


@dataclass(frozen=True)
class Baseline:
    """Previous cumulative figures of a WBS node (all zero in period zero)."""

    progress_pct: Decimal = ZERO
    qty: Decimal = ZERO
    amount: Decimal = ZERO


@dataclass(frozen=True)
class LineFigures:
    """Every derived figure of one certification line."""

    prev_progress_pct: Decimal
    period_progress_pct: Decimal
    total_progress_pct: Decimal
    prev_qty: Decimal
    period_qty: Decimal
    total_qty: Decimal
    remaining_qty: Decimal
    prev_amount: Decimal
    period_amount: Decimal
    total_amount: Decimal


@traced_engine(
    "progress.compute_line",
    "1.0",
    fingerprint_fields=("contractual_qty", "unit_price", "period_pct"),
)
def compute_line(
    baseline: Baseline,
    contractual_qty: Decimal,
    unit_price: Decimal,
    period_pct: Decimal,
    wbs_node_id: str = "",
    max_pct: Decimal = HUNDRED,
) -> LineFigures:
    """
    Derive a line's figures from its baseline and this period's progress.

    Raises:
        ProgressOverrunError: total above ``max_pct`` or negative period.
    """
    prev_pct = to_decimal(baseline.progress_pct, "prev_progress_pct")
    prev_qty = to_decimal(baseline.qty, "prev_qty")
    prev_amount = to_decimal(baseline.amount, "prev_amount")
    contractual = to_decimal(contractual_qty, "contractual_qty")
    price = to_decimal(unit_price, "unit_price")
    period_pct = to_decimal(period_pct, "period_progress_pct")

    total_pct = prev_pct + period_pct
    if period_pct < ZERO or total_pct > to_decimal(max_pct, "max_pct") or total_pct < ZERO:
        raise ProgressOverrunError(
            wbs_node_id=str(wbs_node_id),
            prev_progress_pct=prev_pct,
            period_progress_pct=period_pct,
            total_progress_pct=total_pct,
        )

    total_qty = pct_of(contractual, total_pct)
    total_amount = total_qty * price
    return LineFigures(
        prev_progress_pct=prev_pct,
        period_progress_pct=period_pct,
        total_progress_pct=total_pct,
        prev_qty=prev_qty,
        period_qty=total_qty - prev_qty,
        total_qty=total_qty,
        remaining_qty=contractual - total_qty,
        prev_amount=prev_amount,
        period_amount=total_amount - prev_amount,
        total_amount=total_amount,
    )


def invariant_violations(
    figures: LineFigures,
    contractual_qty: Decimal,
    unit_price: Decimal,
    max_pct: Decimal = HUNDRED,
) -> list[str]:
    """
    Names of the invariant-chain equations a line fails; empty when sound.

    Used as a guard before submission and approval, so a line written
    through any path is re-checked before it can be sealed.
    """
    violations: list[str] = []
    if figures.total_progress_pct != figures.prev_progress_pct + figures.period_progress_pct:
        violations.append("total_pct")
    if not ZERO <= figures.total_progress_pct <= max_pct:
        violations.append("pct_range")
    if figures.period_progress_pct < ZERO:
        violations.append("period_pct_negative")
    if figures.total_qty != pct_of(contractual_qty, figures.total_progress_pct):
        violations.append("total_qty")
    if figures.remaining_qty != contractual_qty - figures.total_qty:
        violations.append("remaining_qty")
    if figures.total_amount != figures.total_qty * unit_price:
        violations.append("total_amount")
    if figures.period_amount != figures.total_amount - figures.prev_amount:
        violations.append("period_amount")
    if figures.period_qty != figures.total_qty - figures.prev_qty:
        violations.append("period_qty")
    return violations
