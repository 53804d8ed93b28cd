"""
cost_engines.costing -- Budget line costing, unit price analysis and markups.

Responsibility:
    Exact Decimal arithmetic for budget lines: direct, indirect and total
    cost of a line, the billable (sale) unit price certifications snapshot,
    version totals, unit price analysis from a resource breakdown, and the
    sequential markup cascade (overhead, financial, profit, tax).

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import cost_kernel.domain.values (and the tracer).

Invariants enforced:
    - ``direct = quantity x unit_cost``
    - ``indirect = direct x indirect_pct / 100``
    - ``total = direct + indirect``
    - ``sale_unit_price = unit_cost + unit_cost x indirect_pct / 100``, so
      ``quantity x sale_unit_price == total`` without any division.
    - No rounding: results carry full Decimal precision; presentation
      rounding belongs to the caller.

Failure modes:
    - TypeError on float (or bool) inputs.
    - ValueError on NaN/infinite inputs.
    - indirect_pct range is not checked here.

Usage:
    from cost_engines.costing import line_totals

    cost = line_totals(Decimal("100"), Decimal("10"), Decimal("15"))
    cost.total  # Decimal("1150")
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal

from cost_engines.tracer import traced_engine
from cost_kernel.domain.values import ZERO, pct_of, to_decimal


@dataclass(frozen=True)
class LineCost:
    """Derived costs of one budget line."""

    direct: Decimal
    indirect: Decimal
    total: Decimal


@dataclass(frozen=True)
class ApuResource:
    """One resource consumed per unit of work (material, labour, equipment)."""

    code: str
    name: str
    unit: str
    unit_cost: Decimal
    quantity_per_unit: Decimal


@dataclass(frozen=True)
class ApuLine:
    resource: ApuResource
    subtotal: Decimal


@dataclass(frozen=True)
class ApuResult:
    """Unit price analysis: per-unit direct cost, indirect and final price."""

    direct_cost: Decimal
    indirect_cost: Decimal
    unit_price: Decimal
    lines: tuple[ApuLine, ...]


@dataclass(frozen=True)
class MarkupBreakdown:
    """
    Sequential markup cascade.

    Each percentage is applied on the previous subtotal, not on the direct
    cost: overhead on direct, financial on subtotal 1, profit on subtotal 2,
    tax on subtotal 3.
    """

    direct_cost: Decimal
    overhead: Decimal
    subtotal_1: Decimal
    financial: Decimal
    subtotal_2: Decimal
    profit: Decimal
    subtotal_3: Decimal
    tax: Decimal
    total: Decimal


def line_total(quantity: Decimal, unit_cost: Decimal) -> Decimal:
    """Exact product ``quantity x unit_cost``."""
    return to_decimal(quantity, "quantity") * to_decimal(unit_cost, "unit_cost")


def line_totals(quantity: Decimal, unit_cost: Decimal, indirect_pct: Decimal) -> LineCost:
    direct = line_total(quantity, unit_cost)
    indirect = pct_of(direct, to_decimal(indirect_pct, "indirect_pct"))
    return LineCost(direct=direct, indirect=indirect, total=direct + indirect)


def version_total(totals: Iterable[Decimal]) -> Decimal:
    """Exact sum of line totals; an empty version totals zero."""
    return sum((to_decimal(t, "total") for t in totals), ZERO)


def sale_unit_price(unit_cost: Decimal, indirect_pct: Decimal) -> Decimal:
    """Billable unit price including the line's indirect percentage."""
    unit_cost = to_decimal(unit_cost, "unit_cost")
    return unit_cost + pct_of(unit_cost, to_decimal(indirect_pct, "indirect_pct"))


@traced_engine("costing.unit_price_analysis", "1.0", fingerprint_fields=("indirect_pct",))
def unit_price_analysis(
    resources: Iterable[ApuResource],
    indirect_pct: Decimal = ZERO,
) -> ApuResult:
    """
    Price one unit of work from its resource breakdown.

    ``direct = sum(unit_cost x quantity_per_unit)``, then the indirect
    percentage is added on top.
    """
    lines = tuple(
        ApuLine(
            resource=r,
            subtotal=line_total(r.quantity_per_unit, r.unit_cost),
        )
        for r in resources
    )
    direct = sum((line.subtotal for line in lines), ZERO)
    indirect = pct_of(direct, to_decimal(indirect_pct, "indirect_pct"))
    return ApuResult(
        direct_cost=direct,
        indirect_cost=indirect,
        unit_price=direct + indirect,
        lines=lines,
    )


@traced_engine(
    "costing.markup_cascade",
    "1.0",
    fingerprint_fields=("direct_cost", "overhead_pct", "financial_pct", "profit_pct", "tax_pct"),
)
def markup_cascade(
    direct_cost: Decimal,
    overhead_pct: Decimal = ZERO,
    financial_pct: Decimal = ZERO,
    profit_pct: Decimal = ZERO,
    tax_pct: Decimal = Decimal("21"),
) -> MarkupBreakdown:
    direct = to_decimal(direct_cost, "direct_cost")
    overhead = pct_of(direct, to_decimal(overhead_pct, "overhead_pct"))
    subtotal_1 = direct + overhead
    financial = pct_of(subtotal_1, to_decimal(financial_pct, "financial_pct"))
    subtotal_2 = subtotal_1 + financial
    profit = pct_of(subtotal_2, to_decimal(profit_pct, "profit_pct"))
    subtotal_3 = subtotal_2 + profit
    tax = pct_of(subtotal_3, to_decimal(tax_pct, "tax_pct"))
    return MarkupBreakdown(
        direct_cost=direct,
        overhead=overhead,
        subtotal_1=subtotal_1,
        financial=financial,
        subtotal_2=subtotal_2,
        profit=profit,
        subtotal_3=subtotal_3,
        tax=tax,
        total=subtotal_3 + tax,
    )
