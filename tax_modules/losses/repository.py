"""
Loss ledger repositories.

``LossRepository`` is the persistence contract the ledger depends on.  The
single-writer-per-client-per-tax-type rule is expressed by ``locked()``:
every read-modify-write of a client's loss records happens inside it.

    InMemoryLossRepository   per-(client, tax type) re-entrant lock
    SqlLossRepository        SELECT ... FOR UPDATE on the client's rows;
                             the lock is held until the caller's
                             transaction ends (see ``session_scope``)
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from collections.abc import Iterator
from contextlib import contextmanager
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from tax_kernel.exceptions import LossRecordNotFoundError
from tax_kernel.logging_config import get_logger
from tax_modules.losses.models import LossRecord
from tax_modules.losses.orm import LossRecordModel

logger = get_logger("modules.losses.repository")


def _fifo_order(records: list[LossRecord]) -> list[LossRecord]:
    return sorted(records, key=lambda r: (r.loss_year, r.expiry_year))


class LossRepository(ABC):
    @abstractmethod
    def get(self, record_id: UUID) -> LossRecord:
        """Raises LossRecordNotFoundError."""

    @abstractmethod
    def list_for(self, client_id: UUID, tax_type: str) -> list[LossRecord]:
        """All records of the client and tax type, oldest loss year first."""

    @abstractmethod
    def add(self, record: LossRecord) -> LossRecord: ...

    @abstractmethod
    def save(self, record: LossRecord) -> LossRecord: ...

    @abstractmethod
    def locked(self, client_id: UUID, tax_type: str):
        """Context manager yielding the locked records, oldest first."""


class InMemoryLossRepository(LossRepository):
    def __init__(self) -> None:
        self._records: dict[UUID, LossRecord] = {}
        self._data_lock = threading.Lock()
        self._key_locks: dict[tuple[UUID, str], threading.RLock] = {}

    def _key_lock(self, client_id: UUID, tax_type: str) -> threading.RLock:
        with self._data_lock:
            return self._key_locks.setdefault((client_id, tax_type), threading.RLock())

    def get(self, record_id: UUID) -> LossRecord:
        with self._data_lock:
            record = self._records.get(record_id)
        if record is None:
            raise LossRecordNotFoundError(record_id)
        return record

    def list_for(self, client_id: UUID, tax_type: str) -> list[LossRecord]:
        with self._data_lock:
            records = [
                r for r in self._records.values()
                if r.client_id == client_id and r.tax_type == tax_type
            ]
        return _fifo_order(records)

    def add(self, record: LossRecord) -> LossRecord:
        with self._data_lock:
            self._records[record.id] = record
        return record

    def save(self, record: LossRecord) -> LossRecord:
        with self._data_lock:
            if record.id not in self._records:
                raise LossRecordNotFoundError(record.id)
            self._records[record.id] = record
        return record

    @contextmanager
    def locked(self, client_id: UUID, tax_type: str) -> Iterator[list[LossRecord]]:
        lock = self._key_lock(client_id, tax_type)
        with lock:
            yield self.list_for(client_id, tax_type)


class SqlLossRepository(LossRepository):
    """
    SQLAlchemy-backed repository.

    Contract:
        Operates inside the caller's session; never commits.  ``actor_id``
        fills the audit columns of rows it writes.
    """

    def __init__(self, session: Session, actor_id: UUID):
        self._session = session
        self._actor_id = actor_id

    def _model(self, record_id: UUID) -> LossRecordModel:
        model = self._session.get(LossRecordModel, record_id)
        if model is None:
            raise LossRecordNotFoundError(record_id)
        return model

    def get(self, record_id: UUID) -> LossRecord:
        return self._model(record_id).to_dto()

    def _select(self, client_id: UUID, tax_type: str):
        return (
            select(LossRecordModel)
            .where(LossRecordModel.client_id == client_id)
            .where(LossRecordModel.tax_type == tax_type)
            .order_by(LossRecordModel.loss_year, LossRecordModel.expiry_year)
        )

    def list_for(self, client_id: UUID, tax_type: str) -> list[LossRecord]:
        models = self._session.execute(self._select(client_id, tax_type)).scalars().all()
        return [m.to_dto() for m in models]

    def add(self, record: LossRecord) -> LossRecord:
        self._session.add(LossRecordModel.from_dto(record, self._actor_id))
        self._session.flush()
        return record

    def save(self, record: LossRecord) -> LossRecord:
        self._model(record.id).update_from_dto(record, self._actor_id)
        self._session.flush()
        return record

    @contextmanager
    def locked(self, client_id: UUID, tax_type: str) -> Iterator[list[LossRecord]]:
        # Row-level lock held until the surrounding transaction ends.
        models = self._session.execute(
            self._select(client_id, tax_type)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalars().all()
        logger.debug("loss_records_locked", extra={
            "client_id": str(client_id),
            "tax_type": tax_type,
            "record_count": len(models),
        })
        yield [m.to_dto() for m in models]
