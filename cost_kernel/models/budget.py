"""
Module: cost_kernel.models.budget
Responsibility: ORM persistence for budget versions and budget lines.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - (project_id, version_code) is unique; codes are V1, V2, ...
    - (budget_version_id, wbs_node_id) is unique: one priced line per node.
    - Derived costs are NOT stored; they are recomputed from quantity,
      unit_price and indirect_pct on every read (cost_engines.costing).
    - APPROVED versions and their lines are immutable (db/immutability.py).
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from cost_kernel.db.base import TrackedBase
from cost_kernel.db.types import UTCDateTime, UUIDString


class BudgetVersionModel(TrackedBase):
    """Maps to the ``BudgetVersion`` DTO."""

    __tablename__ = "cost_budget_versions"

    __table_args__ = (
        UniqueConstraint("project_id", "version_code", name="uq_budget_version_code"),
        Index("idx_budget_version_project", "project_id"),
    )

    project_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    version_code: Mapped[str] = mapped_column(String(20), nullable=False)
    version_type: Mapped[str] = mapped_column(String(20), nullable=False, default="WORKING")
    notes: Mapped[str | None] = mapped_column(String(2000), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    approved_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    lines: Mapped[list["BudgetLineModel"]] = relationship(
        back_populates="version",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def to_dto(self):
        from cost_kernel.domain.dtos import BudgetVersion, BudgetVersionType

        return BudgetVersion(
            id=self.id,
            project_id=self.project_id,
            version_code=self.version_code,
            version_type=BudgetVersionType(self.version_type),
            notes=self.notes,
            created_at=self.created_at,
            created_by=self.created_by_id,
            approved_at=self.approved_at,
            approved_by=self.approved_by,
        )

    @classmethod
    def from_dto(cls, dto, created_by_id: UUID) -> "BudgetVersionModel":
        return cls(
            id=dto.id,
            project_id=dto.project_id,
            version_code=dto.version_code,
            version_type=dto.version_type.value,
            notes=dto.notes,
            approved_at=dto.approved_at,
            approved_by=dto.approved_by,
            created_by_id=created_by_id,
        )

    def apply_dto(self, dto, updated_by_id: UUID) -> None:
        for name, value in (
            ("version_type", dto.version_type.value),
            ("notes", dto.notes),
            ("approved_at", dto.approved_at),
            ("approved_by", dto.approved_by),
        ):
            if getattr(self, name) != value:
                setattr(self, name, value)
        self.updated_by_id = updated_by_id

    def __repr__(self) -> str:
        return f"<BudgetVersionModel {self.version_code} [{self.version_type}]>"


class BudgetLineModel(TrackedBase):
    """Maps to the ``BudgetLine`` DTO."""

    __tablename__ = "cost_budget_lines"

    __table_args__ = (
        UniqueConstraint("budget_version_id", "wbs_node_id", name="uq_budget_line_node"),
        Index("idx_budget_line_version", "budget_version_id"),
    )

    budget_version_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("cost_budget_versions.id"),
        nullable=False,
    )
    wbs_node_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("cost_wbs_nodes.id"),
        nullable=False,
    )
    description: Mapped[str | None] = mapped_column(String(500), nullable=True)
    unit: Mapped[str | None] = mapped_column(String(20), nullable=True)
    quantity: Mapped[Decimal] = mapped_column(nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(nullable=False)
    indirect_pct: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    version: Mapped["BudgetVersionModel"] = relationship(back_populates="lines")

    def to_dto(self):
        from cost_kernel.domain.dtos import BudgetLine

        return BudgetLine(
            id=self.id,
            budget_version_id=self.budget_version_id,
            wbs_node_id=self.wbs_node_id,
            quantity=self.quantity,
            unit_price=self.unit_price,
            indirect_pct=self.indirect_pct,
            description=self.description,
            unit=self.unit,
        )

    @classmethod
    def from_dto(cls, dto, created_by_id: UUID) -> "BudgetLineModel":
        return cls(
            id=dto.id,
            budget_version_id=dto.budget_version_id,
            wbs_node_id=dto.wbs_node_id,
            description=dto.description,
            unit=dto.unit,
            quantity=dto.quantity,
            unit_price=dto.unit_price,
            indirect_pct=dto.indirect_pct,
            created_by_id=created_by_id,
        )

    def apply_dto(self, dto, updated_by_id: UUID) -> None:
        for name, value in (
            ("description", dto.description),
            ("unit", dto.unit),
            ("quantity", dto.quantity),
            ("unit_price", dto.unit_price),
            ("indirect_pct", dto.indirect_pct),
        ):
            if getattr(self, name) != value:
                setattr(self, name, value)
        self.updated_by_id = updated_by_id
