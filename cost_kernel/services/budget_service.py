"""
BudgetService -- budget versions and priced lines.

Responsibility:
    Version lifecycle (create, approve, baseline, copy) and line editing
    for a project's budgets.  Derived costs are never stored; every read
    recomputes them through ``cost_engines.costing``.

Architecture position:
    Kernel > Services -- imperative shell over ``UnitOfWork``.

Invariants enforced:
    - Version codes are V1, V2, ... per project.
    - Only WORKING versions accept line edits; BASELINE and APPROVED are
      locked and APPROVED is terminal.
    - At most one BASELINE per project: setting a new one demotes the
      previous baseline to WORKING.
    - One line per (version, WBS node); quantity, unit price and indirect
      percentage are exact non-negative Decimals.

Failure modes:
    - BudgetVersionNotFoundError, BudgetLineNotFoundError.
    - BudgetVersionLockedError on edits of BASELINE/APPROVED versions.
    - DuplicateBudgetLineError on a second line for the same node.
    - WbsNodeNotFoundError for a node of another project or inactive.
"""

from __future__ import annotations

import re
from dataclasses import replace
from decimal import Decimal
from uuid import UUID, uuid4

from cost_engines import costing
from cost_kernel.domain.dtos import BudgetLine, BudgetVersion, BudgetVersionType
from cost_kernel.domain.values import ZERO, to_decimal
from cost_kernel.exceptions import (
    BudgetLineNotFoundError,
    BudgetVersionLockedError,
    BudgetVersionNotFoundError,
    DuplicateBudgetLineError,
    WbsNodeNotFoundError,
)
from cost_kernel.logging_config import LogContext, get_logger
from cost_kernel.services.base import BaseService

logger = get_logger("services.budget")

_VERSION_CODE = re.compile(r"^V(\d+)$")


def _non_negative(value, field: str) -> Decimal:
    result = to_decimal(value, field)
    if result < ZERO:
        raise ValueError(f"{field} must not be negative, got {result}")
    return result


class BudgetService(BaseService):
    """
    Budget version and line lifecycle.

    ``default_indirect_pct`` applies to lines added without an explicit
    indirect percentage (``CostControlConfig.default_indirect_pct``).
    """

    def __init__(self, uow, clock=None, default_indirect_pct: Decimal = ZERO):
        super().__init__(uow, clock)
        self._default_indirect_pct = to_decimal(default_indirect_pct, "default_indirect_pct")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_version(self, version_id: UUID) -> BudgetVersion:
        version = self._uow.budgets.get_version(version_id)
        if version is None:
            raise BudgetVersionNotFoundError(str(version_id))
        return version

    def list_versions(self, project_id: UUID) -> list[BudgetVersion]:
        return self._uow.budgets.list_versions(project_id)

    def list_lines(self, version_id: UUID) -> list[BudgetLine]:
        self.get_version(version_id)
        return self._uow.budgets.list_lines(version_id)

    def version_total(self, version_id: UUID) -> Decimal:
        """Exact sum of the version's line totals."""
        return costing.version_total(line.total_cost for line in self.list_lines(version_id))

    # ------------------------------------------------------------------
    # Versions
    # ------------------------------------------------------------------

    def create_version(
        self, project_id: UUID, *, actor_id: UUID, notes: str | None = None
    ) -> BudgetVersion:
        with LogContext.bind(project_id=project_id, actor_id=actor_id), self._transaction() as uow:
            version = BudgetVersion(
                id=uuid4(),
                project_id=project_id,
                version_code=self._next_version_code(project_id),
                notes=notes,
                created_at=self._clock.now(),
                created_by=actor_id,
            )
            uow.budgets.add_version(version, actor_id)

        logger.info(
            "budget_version_created",
            extra={"version_id": str(version.id), "version_code": version.version_code},
        )
        return version

    def approve_version(self, version_id: UUID, *, actor_id: UUID) -> BudgetVersion:
        """WORKING or BASELINE -> APPROVED (terminal)."""
        with self._transaction() as uow:
            version = self.get_version(version_id)
            if version.version_type == BudgetVersionType.APPROVED:
                raise BudgetVersionLockedError(str(version_id), version.version_type.value)
            version = replace(
                version,
                version_type=BudgetVersionType.APPROVED,
                approved_at=self._clock.now(),
                approved_by=actor_id,
            )
            uow.budgets.update_version(version, actor_id)

        logger.info("budget_version_approved", extra={"version_id": str(version_id)})
        return version

    def set_baseline(self, version_id: UUID, *, actor_id: UUID) -> BudgetVersion:
        """Make a WORKING version the project baseline, demoting the previous one."""
        with self._transaction() as uow:
            version = self.get_version(version_id)
            if version.version_type == BudgetVersionType.BASELINE:
                return version
            if version.version_type == BudgetVersionType.APPROVED:
                raise BudgetVersionLockedError(str(version_id), version.version_type.value)

            for other in uow.budgets.list_versions(version.project_id):
                if other.version_type == BudgetVersionType.BASELINE:
                    uow.budgets.update_version(
                        replace(other, version_type=BudgetVersionType.WORKING), actor_id
                    )
                    logger.info(
                        "budget_baseline_demoted",
                        extra={"version_id": str(other.id), "version_code": other.version_code},
                    )

            version = replace(version, version_type=BudgetVersionType.BASELINE)
            uow.budgets.update_version(version, actor_id)

        logger.info("budget_baseline_set", extra={"version_id": str(version_id)})
        return version

    def copy_version(
        self, version_id: UUID, *, actor_id: UUID, notes: str | None = None
    ) -> BudgetVersion:
        """New WORKING version carrying copies of every line of ``version_id``."""
        with self._transaction() as uow:
            source = self.get_version(version_id)
            copy = BudgetVersion(
                id=uuid4(),
                project_id=source.project_id,
                version_code=self._next_version_code(source.project_id),
                notes=notes if notes is not None else f"Copy of {source.version_code}",
                created_at=self._clock.now(),
                created_by=actor_id,
            )
            uow.budgets.add_version(copy, actor_id)
            lines = uow.budgets.list_lines(version_id)
            for line in lines:
                uow.budgets.add_line(
                    replace(line, id=uuid4(), budget_version_id=copy.id), actor_id
                )

        logger.info(
            "budget_version_copied",
            extra={
                "source_version_id": str(version_id),
                "version_id": str(copy.id),
                "line_count": len(lines),
            },
        )
        return copy

    # ------------------------------------------------------------------
    # Lines
    # ------------------------------------------------------------------

    def add_line(
        self,
        version_id: UUID,
        wbs_node_id: UUID,
        quantity,
        unit_price,
        indirect_pct=None,
        description: str | None = None,
        unit: str | None = None,
        *,
        actor_id: UUID,
    ) -> BudgetLine:
        quantity = _non_negative(quantity, "quantity")
        unit_price = _non_negative(unit_price, "unit_price")
        indirect_pct = (
            self._default_indirect_pct
            if indirect_pct is None
            else _non_negative(indirect_pct, "indirect_pct")
        )

        with self._transaction() as uow:
            version = self._editable_version(version_id)
            node = uow.wbs.get(wbs_node_id)
            if node is None or node.project_id != version.project_id or not node.is_active:
                raise WbsNodeNotFoundError(str(wbs_node_id))
            if uow.budgets.get_line_for_node(version_id, wbs_node_id) is not None:
                raise DuplicateBudgetLineError(str(version_id), str(wbs_node_id))

            line = BudgetLine(
                id=uuid4(),
                budget_version_id=version_id,
                wbs_node_id=wbs_node_id,
                quantity=quantity,
                unit_price=unit_price,
                indirect_pct=indirect_pct,
                description=description if description is not None else node.name,
                unit=unit if unit is not None else node.unit,
            )
            uow.budgets.add_line(line, actor_id)

        logger.info(
            "budget_line_added",
            extra={
                "version_id": str(version_id),
                "line_id": str(line.id),
                "wbs_code": node.code,
                "total_cost": line.total_cost,
            },
        )
        return line

    def update_line(
        self,
        line_id: UUID,
        *,
        actor_id: UUID,
        quantity=None,
        unit_price=None,
        indirect_pct=None,
        description: str | None = None,
        unit: str | None = None,
    ) -> BudgetLine:
        """Change any of the inputs; derived costs follow automatically."""
        changes: dict = {}
        if quantity is not None:
            changes["quantity"] = _non_negative(quantity, "quantity")
        if unit_price is not None:
            changes["unit_price"] = _non_negative(unit_price, "unit_price")
        if indirect_pct is not None:
            changes["indirect_pct"] = _non_negative(indirect_pct, "indirect_pct")
        if description is not None:
            changes["description"] = description
        if unit is not None:
            changes["unit"] = unit

        with self._transaction() as uow:
            line = self._get_line(line_id)
            self._editable_version(line.budget_version_id)
            line = replace(line, **changes)
            uow.budgets.update_line(line, actor_id)

        logger.info(
            "budget_line_updated",
            extra={"line_id": str(line_id), "fields": sorted(changes), "total_cost": line.total_cost},
        )
        return line

    def delete_line(self, line_id: UUID, *, actor_id: UUID) -> None:
        with LogContext.bind(actor_id=actor_id), self._transaction() as uow:
            line = self._get_line(line_id)
            self._editable_version(line.budget_version_id)
            uow.budgets.delete_line(line_id)

        logger.info("budget_line_deleted", extra={"line_id": str(line_id)})

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _get_line(self, line_id: UUID) -> BudgetLine:
        line = self._uow.budgets.get_line(line_id)
        if line is None:
            raise BudgetLineNotFoundError(line_id=str(line_id))
        return line

    def _editable_version(self, version_id: UUID) -> BudgetVersion:
        version = self.get_version(version_id)
        if version.is_locked:
            raise BudgetVersionLockedError(str(version_id), version.version_type.value)
        return version

    def _next_version_code(self, project_id: UUID) -> str:
        highest = 0
        for version in self._uow.budgets.list_versions(project_id):
            match = _VERSION_CODE.match(version.version_code)
            if match:
                highest = max(highest, int(match.group(1)))
        return f"V{highest + 1}"
