"""
Module: cost_kernel.models.certification
Responsibility: ORM persistence for progress certifications, their lines and
    the versioned baseline counters that order approvals per WBS node.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - (project_id, number) is unique; numbers come from a locked sequence
      counter per project (services/sequence_service.py).
    - (certification_id, wbs_node_id) is unique: one line per node.
    - (project_id, wbs_node_id) is unique on baseline counters, which is
      what makes the first approval of a node a compare-and-swap too.
    - APPROVED and VOID certifications and their lines are immutable; the
      integrity seal is written once (db/immutability.py).

Failure modes:
    - IntegrityError on duplicate number, duplicate line or a lost race
      creating a baseline counter.
    - ImmutabilityViolationError on UPDATE/DELETE of sealed rows.

Audit relevance:
    Certification lines carry every figure covered by the integrity seal.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    BigInteger,
    Date,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from cost_kernel.db.base import Base, TrackedBase
from cost_kernel.db.types import SealHash, UTCDateTime, UUIDString


class CertificationModel(TrackedBase):
    """
    A progress certification (partial billing document).

    Maps to the ``Certification`` DTO.

    Guarantees:
        - ``status`` follows DRAFT/REJECTED -> SUBMITTED -> APPROVED -> VOID,
          with SUBMITTED/DRAFT -> REJECTED.
        - ``integrity_seal`` is null until approval and never changes after.
    """

    __tablename__ = "cost_certifications"

    __table_args__ = (
        UniqueConstraint("project_id", "number", name="uq_certification_number"),
        Index("idx_certification_project", "project_id"),
        Index("idx_certification_status", "status"),
        Index("idx_certification_period", "project_id", "period_year", "period_month"),
    )

    project_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    budget_version_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("cost_budget_versions.id"),
        nullable=False,
    )
    number: Mapped[int] = mapped_column(BigInteger, nullable=False)
    period_year: Mapped[int] = mapped_column(Integer, nullable=False)
    period_month: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="DRAFT")
    notes: Mapped[str | None] = mapped_column(String(2000), nullable=True)

    submitted_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    submitted_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    issued_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    issued_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    approved_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    rejection_comment: Mapped[str | None] = mapped_column(String(2000), nullable=True)
    rejected_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    rejected_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    voided_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    voided_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    total_amount: Mapped[Decimal | None] = mapped_column(nullable=True)
    integrity_seal: Mapped[SealHash | None] = mapped_column(nullable=True)

    lines: Mapped[list["CertificationLineModel"]] = relationship(
        back_populates="certification",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="CertificationLineModel.created_at",
    )

    # Header fields copied from the DTO on save (lines are saved separately)
    HEADER_FIELDS = (
        "status",
        "notes",
        "submitted_at",
        "submitted_by",
        "issued_date",
        "issued_by",
        "approved_by",
        "approved_at",
        "rejection_comment",
        "rejected_at",
        "rejected_by",
        "voided_at",
        "voided_by",
        "total_amount",
        "integrity_seal",
    )

    def to_dto(self):
        from cost_kernel.domain.dtos import Certification, CertificationStatus, Period

        return Certification(
            id=self.id,
            project_id=self.project_id,
            budget_version_id=self.budget_version_id,
            number=self.number,
            period=Period(self.period_year, self.period_month),
            status=CertificationStatus(self.status),
            notes=self.notes,
            created_by=self.created_by_id,
            created_at=self.created_at,
            submitted_at=self.submitted_at,
            submitted_by=self.submitted_by,
            issued_date=self.issued_date,
            issued_by=self.issued_by,
            approved_by=self.approved_by,
            approved_at=self.approved_at,
            rejection_comment=self.rejection_comment,
            rejected_at=self.rejected_at,
            rejected_by=self.rejected_by,
            voided_at=self.voided_at,
            voided_by=self.voided_by,
            total_amount=self.total_amount,
            integrity_seal=self.integrity_seal,
            lines=tuple(line.to_dto() for line in self.lines),
        )

    @classmethod
    def from_dto(cls, dto, created_by_id: UUID) -> "CertificationModel":
        model = cls(
            id=dto.id,
            project_id=dto.project_id,
            budget_version_id=dto.budget_version_id,
            number=dto.number,
            period_year=dto.period.year,
            period_month=dto.period.month,
            created_by_id=created_by_id,
        )
        for name in cls.HEADER_FIELDS:
            setattr(model, name, _column_value(getattr(dto, name)))
        return model

    def apply_dto(self, dto, updated_by_id: UUID) -> None:
        """Copy header fields; only changed columns are marked dirty."""
        changes = {
            "period_year": dto.period.year,
            "period_month": dto.period.month,
        }
        for name in self.HEADER_FIELDS:
            changes[name] = _column_value(getattr(dto, name))
        for name, value in changes.items():
            if getattr(self, name) != value:
                setattr(self, name, value)
        self.updated_by_id = updated_by_id

    def __repr__(self) -> str:
        return f"<CertificationModel #{self.number} {self.period_year}-{self.period_month:02d} [{self.status}]>"


class CertificationLineModel(TrackedBase):
    """Maps to the ``CertificationLine`` DTO."""

    __tablename__ = "cost_certification_lines"

    __table_args__ = (
        UniqueConstraint("certification_id", "wbs_node_id", name="uq_certification_line_node"),
        Index("idx_certification_line_cert", "certification_id"),
        Index("idx_certification_line_node", "wbs_node_id"),
    )

    certification_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("cost_certifications.id"),
        nullable=False,
    )
    wbs_node_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("cost_wbs_nodes.id"),
        nullable=False,
    )
    budget_line_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("cost_budget_lines.id"),
        nullable=False,
    )

    contractual_qty_snapshot: Mapped[Decimal] = mapped_column(nullable=False)
    unit_price_snapshot: Mapped[Decimal] = mapped_column(nullable=False)
    prev_progress_pct: Mapped[Decimal] = mapped_column(nullable=False)
    period_progress_pct: Mapped[Decimal] = mapped_column(nullable=False)
    total_progress_pct: Mapped[Decimal] = mapped_column(nullable=False)
    prev_qty: Mapped[Decimal] = mapped_column(nullable=False)
    period_qty: Mapped[Decimal] = mapped_column(nullable=False)
    total_qty: Mapped[Decimal] = mapped_column(nullable=False)
    remaining_qty: Mapped[Decimal] = mapped_column(nullable=False)
    prev_amount: Mapped[Decimal] = mapped_column(nullable=False)
    period_amount: Mapped[Decimal] = mapped_column(nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(nullable=False)

    baseline_certification_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    baseline_version: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    certification: Mapped["CertificationModel"] = relationship(back_populates="lines")

    FIGURE_FIELDS = (
        "budget_line_id",
        "contractual_qty_snapshot",
        "unit_price_snapshot",
        "prev_progress_pct",
        "period_progress_pct",
        "total_progress_pct",
        "prev_qty",
        "period_qty",
        "total_qty",
        "remaining_qty",
        "prev_amount",
        "period_amount",
        "total_amount",
        "baseline_certification_id",
        "baseline_version",
    )

    def to_dto(self):
        from cost_kernel.domain.dtos import CertificationLine

        return CertificationLine(
            id=self.id,
            certification_id=self.certification_id,
            wbs_node_id=self.wbs_node_id,
            **{name: getattr(self, name) for name in self.FIGURE_FIELDS},
        )

    @classmethod
    def from_dto(cls, dto, created_by_id: UUID) -> "CertificationLineModel":
        return cls(
            id=dto.id,
            certification_id=dto.certification_id,
            wbs_node_id=dto.wbs_node_id,
            created_by_id=created_by_id,
            **{name: getattr(dto, name) for name in cls.FIGURE_FIELDS},
        )

    def apply_dto(self, dto, updated_by_id: UUID) -> None:
        for name in self.FIGURE_FIELDS:
            value = getattr(dto, name)
            if getattr(self, name) != value:
                setattr(self, name, value)
        self.updated_by_id = updated_by_id


class BaselineCounterModel(Base):
    """
    Versioned baseline for one (project, WBS node).

    ``version`` advances by exactly one on every approval or void touching
    the node, always through a compare-and-swap on the expected value.
    """

    __tablename__ = "cost_baseline_counters"

    __table_args__ = (
        UniqueConstraint("project_id", "wbs_node_id", name="uq_baseline_counter_node"),
    )

    project_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    wbs_node_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    version: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    last_certification_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)


def _column_value(value):
    """Enum members are stored as their string value."""
    return getattr(value, "value", value)
