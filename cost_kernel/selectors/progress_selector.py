"""
Module: cost_kernel.selectors.progress_selector
Responsibility: Read-only budget-vs-certified reporting.  Pairs every line
    of a budget version (planned total) with the latest approved
    certified total of its WBS node (actual) and classifies the variance.
Architecture position: Kernel > Selectors.  Reads through the repository
    interfaces only; never writes.

Invariants enforced:
    - Actual figures come from APPROVED certifications only (the same
      versioned baseline the certification engine reads).
    - No stored balances: every row is derived at query time.

Failure modes:
    - BudgetVersionNotFoundError when the version is unknown or belongs to
      another project.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from cost_engines.variance import DEFAULT_THRESHOLD_PCT, VarianceResult, variance
from cost_kernel.domain.dtos import CertificationStatus, Period
from cost_kernel.domain.values import ZERO, to_decimal
from cost_kernel.domain.wbs import sort_codes
from cost_kernel.exceptions import BudgetVersionNotFoundError


@dataclass(frozen=True)
class BudgetVsCertifiedRow:
    """One budget line against its certified progress."""

    wbs_node_id: UUID
    wbs_code: str
    description: str | None
    planned: Decimal
    certified_pct: Decimal
    certified_qty: Decimal
    actual: Decimal
    result: VarianceResult

    @property
    def pending(self) -> Decimal:
        """Budgeted amount not yet certified."""
        return self.planned - self.actual


@dataclass(frozen=True)
class LineHistoryEntry:
    certification_id: UUID
    number: int
    period: Period
    status: CertificationStatus
    period_progress_pct: Decimal
    total_progress_pct: Decimal
    period_amount: Decimal
    total_amount: Decimal


class ProgressSelector:
    """
    Budget-vs-certified queries.

    Usage:
        selector = ProgressSelector(uow, variance_threshold_pct=config.variance_threshold_pct)
        rows = selector.budget_vs_certified(project_id, version_id)
    """

    def __init__(self, uow, variance_threshold_pct: Decimal = DEFAULT_THRESHOLD_PCT):
        self._uow = uow
        self._threshold = to_decimal(variance_threshold_pct, "variance_threshold_pct")

    def budget_vs_certified(
        self, project_id: UUID, budget_version_id: UUID
    ) -> list[BudgetVsCertifiedRow]:
        """Rows ordered by WBS code."""
        version = self._uow.budgets.get_version(budget_version_id)
        if version is None or version.project_id != project_id:
            raise BudgetVersionNotFoundError(str(budget_version_id))

        rows: list[BudgetVsCertifiedRow] = []
        for line in self._uow.budgets.list_lines(budget_version_id):
            node = self._uow.wbs.get(line.wbs_node_id)
            baseline = self._uow.certifications.get_baseline(project_id, line.wbs_node_id)
            planned = line.total_cost
            rows.append(
                BudgetVsCertifiedRow(
                    wbs_node_id=line.wbs_node_id,
                    wbs_code=node.code if node else "",
                    description=line.description,
                    planned=planned,
                    certified_pct=baseline.progress_pct,
                    certified_qty=baseline.qty,
                    actual=baseline.amount,
                    result=variance(planned, baseline.amount, self._threshold),
                )
            )

        rank = {code: i for i, code in enumerate(sort_codes(r.wbs_code for r in rows))}
        return sorted(rows, key=lambda r: rank[r.wbs_code])

    def totals(self, rows: list[BudgetVsCertifiedRow]) -> VarianceResult:
        """Project-level variance over the rows of ``budget_vs_certified``."""
        planned = sum((r.planned for r in rows), ZERO)
        actual = sum((r.actual for r in rows), ZERO)
        return variance(planned, actual, self._threshold)

    def line_history(self, project_id: UUID, wbs_node_id: UUID) -> list[LineHistoryEntry]:
        """Every certification touching the node, oldest first (all statuses)."""
        entries = []
        for certification in self._uow.certifications.list_for_project(project_id):
            line = certification.line_for(wbs_node_id)
            if line is None:
                continue
            entries.append(
                LineHistoryEntry(
                    certification_id=certification.id,
                    number=certification.number,
                    period=certification.period,
                    status=certification.status,
                    period_progress_pct=line.period_progress_pct,
                    total_progress_pct=line.total_progress_pct,
                    period_amount=line.period_amount,
                    total_amount=line.total_amount,
                )
            )
        return sorted(entries, key=lambda e: (e.period, e.number))
