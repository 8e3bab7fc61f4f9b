"""
Module: workflow_kernel.db.base
Responsibility: Declarative base class for all SQLAlchemy ORM models.  Provides
    the UUID primary key convention and the type annotation map that keeps
    column types consistent across the schema.
Architecture position: Kernel > DB.  This is the lowest-level import target
    within the kernel.  ALL model files import from here.  This module MUST NOT
    import from models/, services/, selectors/, domain/, or outer layers.

Invariants enforced:
    - UUID primary keys: every model inherits a uuid4-generated primary key.
    - Timezone-aware timestamps: datetime columns round-trip as UTC-aware
      values on every backend (SQLite drops tzinfo on its own).

Failure modes:
    - ValueError on bind if a naive datetime is written.  Callers always use
      an injected Clock, which produces aware values.
"""

from datetime import UTC, datetime
from typing import Any, ClassVar
from uuid import UUID as PyUUID, uuid4

from sqlalchemy import JSON, DateTime, Integer, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class UUIDString(TypeDecorator):
    """
    UUID type stored as String(36) for cross-database portability.

    Contract:
        Transparently converts between Python UUID objects and their 36-character
        string representation.

    Guarantees:
        - process_bind_param: UUID -> str on INSERT/UPDATE.
        - process_result_value: str -> UUID on SELECT.
        - cache_ok=True enables SQLAlchemy statement caching.
    """

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None:
            return str(value)
        return None

    def process_result_value(self, value, dialect):
        if value is not None:
            return PyUUID(value)
        return None


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware timestamp that always loads as UTC.

    PostgreSQL stores ``timestamptz`` natively; SQLite stores text and hands
    back naive values, which are re-tagged as UTC here.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError(f"Naive datetime not allowed: {value!r}")
        return value.astimezone(UTC)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)


# JSON payload column: JSONB on PostgreSQL, generic JSON elsewhere.
JSONPayload = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """
    Declarative base for all SQLAlchemy models.

    Contract:
        Every ORM model in the system inherits from Base.  Base provides a
        UUID primary key and a type_annotation_map that enforces consistent
        column types across the entire schema.

    Guarantees:
        - id is always a uuid4-generated UUID stored as String(36).
        - datetime maps to UTCDateTime -- always timezone-aware.
        - dict maps to JSONB on PostgreSQL, JSON elsewhere.
    """

    type_annotation_map: ClassVar[dict] = {
        datetime: UTCDateTime(),
        PyUUID: UUIDString(),
        int: Integer,
        dict[str, Any]: JSONPayload,
    }

    id: Mapped[PyUUID] = mapped_column(
        UUIDString(),
        primary_key=True,
        default=uuid4,
    )


# Re-export UUID for convenience
UUID = PyUUID
