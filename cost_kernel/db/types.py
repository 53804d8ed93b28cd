"""
Module: cost_kernel.db.types
Responsibility: Portable column types: exact quantities and amounts, UTC
    timestamps and string UUIDs.  Every model stores figures the same way.
Architecture position: Kernel > DB.  MUST NOT import from models/, services/,
    selectors/, or domain/.

    CRITICAL: No floats and no rounding anywhere in the cost kernel.
    Certified figures are exact products that may carry any number of
    decimals; a stored line must compare equal to the computed one or the
    invariant and seal checks fail.  ExactDecimal therefore never imposes
    a scale: unconstrained NUMERIC on PostgreSQL, the Decimal string
    elsewhere.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Annotated
from uuid import UUID

from sqlalchemy import DateTime, Numeric, String, Text
from sqlalchemy.types import TypeDecorator


class ExactDecimal(TypeDecorator):
    """
    Decimal column that keeps every digit it is given.

    Contract:
        PostgreSQL: NUMERIC without precision or scale, Decimal in and out.
        Others:     text holding ``str(Decimal)``, Decimal out.  (SQLite
                    has no exact numeric type.)

    Guarantees:
        - Binding a float raises TypeError.
        - ``process_result_value(process_bind_param(v)) == v`` for every
          finite Decimal, whatever its scale.
    """

    impl = Numeric(asdecimal=True)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(Numeric(asdecimal=True))
        if dialect.name == "sqlite":
            return dialect.type_descriptor(String(64))
        return dialect.type_descriptor(Text())

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if isinstance(value, float):
            raise TypeError("float values are not accepted for exact decimal columns")
        value = Decimal(value)
        if dialect.name == "postgresql":
            return value
        return str(value)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return Decimal(value) if not isinstance(value, Decimal) else value


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware timestamp on every dialect.

    SQLite drops the offset on storage; values are bound as UTC and naive
    results are read back as UTC, so a loaded value compares equal to the
    aware value that was written.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None or not isinstance(value, datetime):
            return value
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class UUIDString(TypeDecorator):
    """UUID stored as its 36-character string; UUID objects in and out."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return None if value is None else str(value)

    def process_result_value(self, value, dialect):
        return None if value is None else UUID(str(value))


# SHA-256 integrity seal as hex string (64 characters)
SealHash = Annotated[str, String(64)]
