"""
Module: cost_kernel.models.outbox
Responsibility: ORM persistence for transactional outbox records.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Outbox rows are written in the same transaction as the state change
      they announce; a rolled back approval leaves no outbox row.
    - payload is plain JSON (strings for Decimal and UUID values).

Audit relevance:
    The outbox is the hand-off point to the external dispatcher (email,
    webhooks, reporting).  This kernel only inserts PENDING rows.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import JSON, Index, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from cost_kernel.db.base import Base
from cost_kernel.db.types import UTCDateTime, UUIDString


class OutboxEventModel(Base):
    """Maps to the ``OutboxEvent`` DTO."""

    __tablename__ = "cost_outbox_events"

    __table_args__ = (
        Index("idx_outbox_status", "status"),
        Index("idx_outbox_entity", "entity_type", "entity_id"),
    )

    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    project_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="PENDING")
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        server_default=func.now(),
        nullable=False,
    )

    def to_dto(self):
        from cost_kernel.domain.dtos import OutboxEvent, OutboxStatus

        return OutboxEvent(
            id=self.id,
            event_type=self.event_type,
            entity_type=self.entity_type,
            entity_id=self.entity_id,
            project_id=self.project_id,
            payload=dict(self.payload or {}),
            status=OutboxStatus(self.status),
            retry_count=self.retry_count,
            created_at=self.created_at,
        )

    @classmethod
    def from_dto(cls, dto) -> "OutboxEventModel":
        model = cls(
            id=dto.id,
            event_type=dto.event_type,
            entity_type=dto.entity_type,
            entity_id=dto.entity_id,
            project_id=dto.project_id,
            payload=dict(dto.payload),
            status=dto.status.value,
            retry_count=dto.retry_count,
        )
        if dto.created_at is not None:
            model.created_at = dto.created_at
        return model
