"""
Module: cost_kernel.models.wbs
Responsibility: ORM persistence for work-breakdown-structure nodes.
Architecture position: Kernel > Models.  May import from db/ only.
    ``to_dto`` imports the domain DTO inline.

Invariants enforced:
    - (project_id, code) is unique.
    - node_type is stored as its string value (PHASE/ACTIVITY/TASK).
    - Referenced nodes are never hard deleted (db/immutability.py).

Failure modes:
    - IntegrityError on duplicate (project_id, code).
    - ImmutabilityViolationError on DELETE of a node referenced by a
      budget or certification line.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from cost_kernel.db.base import TrackedBase
from cost_kernel.db.types import UUIDString


class WbsNodeModel(TrackedBase):
    """
    A WBS node (PHASE, ACTIVITY or TASK).

    Maps to the ``WbsNode`` DTO in ``cost_kernel.domain.dtos``.
    """

    __tablename__ = "cost_wbs_nodes"

    __table_args__ = (
        UniqueConstraint("project_id", "code", name="uq_wbs_project_code"),
        Index("idx_wbs_project", "project_id"),
        Index("idx_wbs_parent", "parent_id"),
    )

    project_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    code: Mapped[str] = mapped_column(String(50), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    node_type: Mapped[str] = mapped_column(String(20), nullable=False)
    parent_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("cost_wbs_nodes.id"),
        nullable=True,
    )
    unit: Mapped[str | None] = mapped_column(String(20), nullable=True)
    quantity: Mapped[Decimal | None] = mapped_column(nullable=True)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def to_dto(self):
        from cost_kernel.domain.dtos import WbsNode, WbsType

        return WbsNode(
            id=self.id,
            project_id=self.project_id,
            code=self.code,
            name=self.name,
            node_type=WbsType(self.node_type),
            parent_id=self.parent_id,
            unit=self.unit,
            quantity=self.quantity,
            sort_order=self.sort_order,
            is_active=self.is_active,
        )

    @classmethod
    def from_dto(cls, dto, created_by_id: UUID) -> "WbsNodeModel":
        return cls(
            id=dto.id,
            project_id=dto.project_id,
            code=dto.code,
            name=dto.name,
            node_type=dto.node_type.value,
            parent_id=dto.parent_id,
            unit=dto.unit,
            quantity=dto.quantity,
            sort_order=dto.sort_order,
            is_active=dto.is_active,
            created_by_id=created_by_id,
        )

    def apply_dto(self, dto, updated_by_id: UUID) -> None:
        """Copy mutable fields from ``dto``; only touched columns end up dirty."""
        for name, value in (
            ("code", dto.code),
            ("name", dto.name),
            ("node_type", dto.node_type.value),
            ("parent_id", dto.parent_id),
            ("unit", dto.unit),
            ("quantity", dto.quantity),
            ("sort_order", dto.sort_order),
            ("is_active", dto.is_active),
        ):
            if getattr(self, name) != value:
                setattr(self, name, value)
        self.updated_by_id = updated_by_id

    def __repr__(self) -> str:
        return f"<WbsNodeModel {self.code} {self.node_type}>"
