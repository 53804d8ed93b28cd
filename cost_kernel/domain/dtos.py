"""
Domain DTOs for WBS nodes, budgets, certifications and outbox events.

Responsibility:
    Immutable value objects passed between repositories, services and
    selectors.  Services never hand ORM instances to callers; they return
    these frozen dataclasses and produce modified copies with
    ``dataclasses.replace``.

Architecture position:
    Kernel > Domain -- pure, zero I/O.  May import ``cost_engines.costing``
    (itself pure) for derived budget line figures.

Invariants enforced:
    - Every money/quantity field is Decimal.
    - Period month is 1..12; periods order chronologically.
    - Budget line derived costs are never stored on the DTO; they are
      recomputed from quantity, unit_price and indirect_pct on access.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from cost_engines.costing import LineCost, line_totals, sale_unit_price
from cost_kernel.domain.values import ZERO
from cost_kernel.domain.wbs import WbsType

__all__ = [
    "WbsType",
    "BudgetVersionType",
    "CertificationStatus",
    "OutboxStatus",
    "Period",
    "WbsNode",
    "WbsTreeNode",
    "BudgetVersion",
    "BudgetLine",
    "CertificationLine",
    "Certification",
    "CertificationSummary",
    "ApprovedBaseline",
    "OutboxEvent",
    "EDITABLE_STATUSES",
    "SEALED_STATUSES",
]


class BudgetVersionType(str, Enum):
    """Budget version lifecycle; only WORKING is editable."""

    WORKING = "WORKING"
    BASELINE = "BASELINE"
    APPROVED = "APPROVED"


class CertificationStatus(str, Enum):
    DRAFT = "DRAFT"
    SUBMITTED = "SUBMITTED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    VOID = "VOID"


class OutboxStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


EDITABLE_STATUSES = frozenset({CertificationStatus.DRAFT, CertificationStatus.REJECTED})
SEALED_STATUSES = frozenset({CertificationStatus.APPROVED, CertificationStatus.VOID})


@dataclass(frozen=True, order=True)
class Period:
    """A certification period (calendar month)."""

    year: int
    month: int

    def __post_init__(self) -> None:
        if isinstance(self.year, bool) or not isinstance(self.year, int):
            raise TypeError("period year must be an int")
        if isinstance(self.month, bool) or not isinstance(self.month, int):
            raise TypeError("period month must be an int")
        if not 1 <= self.month <= 12:
            raise ValueError(f"period month must be 1..12, got {self.month}")
        if self.year < 1900:
            raise ValueError(f"period year out of range: {self.year}")

    @classmethod
    def parse(cls, value: str) -> Period:
        """Parse ``"YYYY-MM"``."""
        try:
            year, month = value.split("-")
            return cls(int(year), int(month))
        except (AttributeError, ValueError) as exc:
            raise ValueError(f"invalid period {value!r}, expected YYYY-MM") from exc

    def __str__(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"


# ---------------------------------------------------------------------------
# WBS
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class WbsNode:
    id: UUID
    project_id: UUID
    code: str
    name: str
    node_type: WbsType
    parent_id: UUID | None = None
    unit: str | None = None
    quantity: Decimal | None = None
    sort_order: int = 0
    is_active: bool = True


@dataclass(frozen=True)
class WbsTreeNode:
    """A WBS node with its active children, for tree rendering."""

    node: WbsNode
    children: tuple[WbsTreeNode, ...] = ()


# ---------------------------------------------------------------------------
# Budget
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BudgetVersion:
    id: UUID
    project_id: UUID
    version_code: str
    version_type: BudgetVersionType = BudgetVersionType.WORKING
    notes: str | None = None
    created_at: datetime | None = None
    created_by: UUID | None = None
    approved_at: datetime | None = None
    approved_by: UUID | None = None

    @property
    def is_locked(self) -> bool:
        return self.version_type != BudgetVersionType.WORKING


@dataclass(frozen=True)
class BudgetLine:
    """
    A priced WBS node inside a budget version.

    Derived costs (direct, indirect, total) and the sale unit price are
    computed from the three inputs every time they are read.
    """

    id: UUID
    budget_version_id: UUID
    wbs_node_id: UUID
    quantity: Decimal
    unit_price: Decimal
    indirect_pct: Decimal = ZERO
    description: str | None = None
    unit: str | None = None

    @property
    def costs(self) -> LineCost:
        return line_totals(self.quantity, self.unit_price, self.indirect_pct)

    @property
    def direct_cost(self) -> Decimal:
        return self.costs.direct

    @property
    def indirect_cost(self) -> Decimal:
        return self.costs.indirect

    @property
    def total_cost(self) -> Decimal:
        return self.costs.total

    @property
    def sale_unit_price(self) -> Decimal:
        return sale_unit_price(self.unit_price, self.indirect_pct)


# ---------------------------------------------------------------------------
# Certification
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CertificationLine:
    """
    One WBS node's progress in one certification.

    Invariant chain:
        total_pct = prev_pct + period_pct, 0 <= total_pct <= 100
        total_qty = contractual x total_pct / 100
        remaining_qty = contractual - total_qty
        total_amount = total_qty x unit_price
        period_amount = total_amount - prev_amount
        period_qty = total_qty - prev_qty
    """

    id: UUID
    certification_id: UUID
    wbs_node_id: UUID
    budget_line_id: UUID
    contractual_qty_snapshot: Decimal
    unit_price_snapshot: Decimal
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
    baseline_certification_id: UUID | None = None
    baseline_version: int = 0


@dataclass(frozen=True)
class Certification:
    id: UUID
    project_id: UUID
    budget_version_id: UUID
    number: int
    period: Period
    status: CertificationStatus = CertificationStatus.DRAFT
    notes: str | None = None
    created_by: UUID | None = None
    created_at: datetime | None = None
    submitted_at: datetime | None = None
    submitted_by: UUID | None = None
    issued_date: date | None = None
    issued_by: UUID | None = None
    approved_by: UUID | None = None
    approved_at: datetime | None = None
    rejection_comment: str | None = None
    rejected_at: datetime | None = None
    rejected_by: UUID | None = None
    voided_at: datetime | None = None
    voided_by: UUID | None = None
    total_amount: Decimal | None = None
    integrity_seal: str | None = None
    lines: tuple[CertificationLine, ...] = ()

    @property
    def is_editable(self) -> bool:
        return self.status in EDITABLE_STATUSES

    @property
    def is_sealed(self) -> bool:
        return self.status in SEALED_STATUSES

    @property
    def period_amount(self) -> Decimal:
        """Sum of line period amounts (live, unlike the stamped total)."""
        return sum((line.period_amount for line in self.lines), ZERO)

    def line_for(self, wbs_node_id: UUID) -> CertificationLine | None:
        for line in self.lines:
            if line.wbs_node_id == wbs_node_id:
                return line
        return None

    def identity(self) -> dict[str, Any]:
        """Fields identifying the document inside its integrity seal."""
        return {
            "project_id": str(self.project_id),
            "number": self.number,
            "period_year": self.period.year,
            "period_month": self.period.month,
        }


@dataclass(frozen=True)
class CertificationSummary:
    id: UUID
    project_id: UUID
    number: int
    period: Period
    status: CertificationStatus
    line_count: int
    period_amount: Decimal
    total_amount: Decimal | None = None
    integrity_seal: str | None = None

    @classmethod
    def of(cls, certification: Certification) -> CertificationSummary:
        return cls(
            id=certification.id,
            project_id=certification.project_id,
            number=certification.number,
            period=certification.period,
            status=certification.status,
            line_count=len(certification.lines),
            period_amount=certification.period_amount,
            total_amount=certification.total_amount,
            integrity_seal=certification.integrity_seal,
        )


@dataclass(frozen=True)
class ApprovedBaseline:
    """
    Versioned baseline read for one (project, WBS node).

    ``version`` is the baseline counter; 0 with zero figures means no
    approved certification has touched the node yet (period zero).
    """

    project_id: UUID
    wbs_node_id: UUID
    version: int = 0
    certification_id: UUID | None = None
    period: Period | None = None
    progress_pct: Decimal = ZERO
    qty: Decimal = ZERO
    amount: Decimal = ZERO


# ---------------------------------------------------------------------------
# Outbox
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class OutboxEvent:
    id: UUID
    event_type: str
    entity_type: str
    entity_id: UUID
    project_id: UUID
    payload: dict[str, Any] = field(default_factory=dict)
    status: OutboxStatus = OutboxStatus.PENDING
    retry_count: int = 0
    created_at: datetime | None = None
