"""
Module: tax_kernel.db.engine
Responsibility: Process-wide SQLAlchemy engine and the transactional scope
    that the SQL repositories run in.
Architecture position: Kernel > DB.  ``create_tables`` imports the ORM
    registry in tax_modules lazily.

Invariants enforced:
    - Repositories never commit.  One ``session_scope()`` wraps one business
      operation (a settlement, a declaration, a period close), so ledger
      mutations and the rows that reference them commit or roll back together.
    - PostgreSQL runs under READ COMMITTED; ledger rows are serialised with
      SELECT ... FOR UPDATE.  SQLite shares one connection across threads.

Failure modes:
    - RuntimeError from any accessor before ``init_engine_from_url()``.
"""

from contextlib import contextmanager
from typing import Iterator
from uuid import UUID

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from tax_kernel.logging_config import LogContext, get_logger

logger = get_logger("db.engine")

_engine: Engine | None = None
_sessions: sessionmaker[Session] | None = None


def _engine_kwargs(database_url: str) -> dict:
    if database_url.startswith("sqlite"):
        return {"poolclass": StaticPool, "connect_args": {"check_same_thread": False}}
    return {"pool_pre_ping": True, "pool_recycle": 1800, "isolation_level": "READ COMMITTED"}


def init_engine_from_url(database_url: str, echo: bool = False) -> Engine:
    """
    Create the engine for ``database_url`` and make it current.

    A later call replaces the earlier engine; the earlier one is disposed.
    """
    global _engine, _sessions

    if _engine is not None:
        _engine.dispose()
    _engine = create_engine(database_url, echo=echo, **_engine_kwargs(database_url))
    _sessions = sessionmaker(bind=_engine, expire_on_commit=False)

    logger.info("engine_initialized", extra={"dialect": _engine.dialect.name})
    return _engine


def get_engine() -> Engine:
    if _engine is None:
        raise RuntimeError("Database engine not initialized; call init_engine_from_url() first")
    return _engine


def get_session() -> Session:
    """A new unmanaged session.  The caller commits and closes it."""
    if _sessions is None:
        raise RuntimeError("Database engine not initialized; call init_engine_from_url() first")
    return _sessions()


@contextmanager
def session_scope(actor_id: UUID | None = None) -> Iterator[Session]:
    """
    Session committed on normal exit, rolled back on any exception.

    ``actor_id`` is bound into the log context for the duration.

        with session_scope(actor_id) as session:
            vat = VatService(SqlVatRepository(session, actor_id), catalog)
            vat.finalize_settlement(client_id, 2024, 5)
    """
    session = get_session()
    with LogContext.bind(actor_id=actor_id):
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            logger.warning("session_rolled_back", exc_info=True)
            raise
        finally:
            session.close()


def create_tables() -> None:
    """Create the table of every ORM model in tax_modules."""
    from tax_kernel.db.base import Base
    from tax_modules._orm_registry import import_all_orm_models

    import_all_orm_models()
    Base.metadata.create_all(get_engine())
    logger.info("tables_created", extra={"tables": sorted(Base.metadata.tables)})


def drop_tables() -> None:
    from tax_kernel.db.base import Base

    Base.metadata.drop_all(get_engine())


def reset_engine() -> None:
    """Dispose the current engine.  Used by test teardown."""
    global _engine, _sessions

    if _engine is not None:
        _engine.dispose()
    _engine = None
    _sessions = None
