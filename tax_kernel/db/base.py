"""
Module: tax_kernel.db.base
Responsibility: Declarative base and column types shared by every ORM model
    in tax_modules.
Architecture position: Kernel > DB.  Imports nothing from tax_modules or
    tax_engines.

Column conventions (via ``Base.type_annotation_map``):
    UUID      -> ``UUIDString``, String(36), so SQLite and PostgreSQL agree.
    Decimal   -> Numeric(38, 9).  Amounts are never stored as float.
    datetime  -> ``UTCDateTime``; always read back timezone-aware in UTC,
                 also on SQLite, which drops the offset.
    date      -> Date.

Audit relevance:
    ``TrackedBase`` rows carry the actor that created them and the actor of
    the last change.  SQL repositories are constructed with an actor id and
    stamp both.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import ClassVar
from uuid import UUID as PyUUID, uuid4

from sqlalchemy import Date, DateTime, MetaData, Numeric, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class UUIDString(TypeDecorator):
    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return str(value if isinstance(value, PyUUID) else PyUUID(str(value)))

    def process_result_value(self, value, dialect):
        return None if value is None else PyUUID(value)


class UTCDateTime(TypeDecorator):
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None or value.tzinfo is None:
            return value
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class Base(DeclarativeBase):
    metadata = MetaData(naming_convention={
        "ix": "idx_%(table_name)s_%(column_0_name)s",
        "uq": "uq_%(table_name)s_%(column_0_name)s",
        "fk": "fk_%(table_name)s_%(column_0_name)s",
        "pk": "pk_%(table_name)s",
    })

    type_annotation_map: ClassVar[dict] = {
        PyUUID: UUIDString(),
        Decimal: Numeric(38, 9),
        datetime: UTCDateTime(),
        date: Date(),
    }

    id: Mapped[PyUUID] = mapped_column(primary_key=True, default=uuid4)


class TrackedBase(Base):
    """Adds created/updated timestamps and the acting user."""

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), onupdate=func.now(), nullable=False
    )
    created_by_id: Mapped[PyUUID] = mapped_column(nullable=False)
    updated_by_id: Mapped[PyUUID | None] = mapped_column(nullable=True)

    def touch(self, actor_id: PyUUID) -> None:
        """Record ``actor_id`` as the author of the pending change."""
        self.updated_by_id = actor_id


UUID = PyUUID
