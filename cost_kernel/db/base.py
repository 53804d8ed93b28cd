"""
Module: cost_kernel.db.base
Responsibility: Declarative base classes for the ORM models: uuid4 primary
    keys, one type annotation map for the whole schema, and the TrackedBase
    mixin carrying who/when audit columns.
Architecture position: Kernel > DB.  Imported by every model file; imports
    only db/types.py.

Invariants enforced:
    - ``Mapped[Decimal]`` is always ExactDecimal, never a float column.
    - ``Mapped[datetime]`` is always UTCDateTime, aware on every dialect.
    - Every tracked row records its creator (created_by_id NOT NULL).

Audit relevance:
    updated_at/updated_by_id may change on sealed rows; db/immutability.py
    treats them as metadata, not certified figures.
"""

from datetime import datetime
from decimal import Decimal
from typing import ClassVar
from uuid import UUID, uuid4

from sqlalchemy import BigInteger, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from cost_kernel.db.types import ExactDecimal, UTCDateTime, UUIDString


class Base(DeclarativeBase):
    """Declarative base: UUID ``id`` primary key and the shared type map."""

    type_annotation_map: ClassVar[dict] = {
        Decimal: ExactDecimal(),
        datetime: UTCDateTime(),
        UUID: UUIDString(),
        int: BigInteger,
    }

    id: Mapped[UUID] = mapped_column(UUIDString(), primary_key=True, default=uuid4)


class TrackedBase(Base):
    """Abstract base adding creation/update timestamps and actors."""

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), server_default=func.now(), onupdate=func.now(), nullable=False
    )
    created_by_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    updated_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
