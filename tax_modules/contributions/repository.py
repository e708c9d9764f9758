"""
Contribution repositories.

``locked(person_id, year)`` serialises recording for one insured person
and year so the year-to-date pension base read before a calculation is
still current when the record is written.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from collections.abc import Iterator
from contextlib import contextmanager
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from tax_kernel.logging_config import get_logger
from tax_modules.contributions.models import ContributionRecord
from tax_modules.contributions.orm import ContributionRecordModel

logger = get_logger("modules.contributions.repository")


class ContributionRepository(ABC):
    @abstractmethod
    def list_for(self, person_id: UUID, year: int) -> list[ContributionRecord]:
        """The person's records for the year, by month."""

    @abstractmethod
    def add(self, record: ContributionRecord) -> ContributionRecord: ...

    @abstractmethod
    def locked(self, person_id: UUID, year: int):
        """Context manager yielding the person's records for the year, locked."""


class InMemoryContributionRepository(ContributionRepository):
    def __init__(self) -> None:
        self._records: dict[UUID, ContributionRecord] = {}
        self._data_lock = threading.Lock()
        self._key_locks: dict[tuple[UUID, int], threading.RLock] = {}

    def list_for(self, person_id: UUID, year: int) -> list[ContributionRecord]:
        with self._data_lock:
            found = [
                r for r in self._records.values()
                if r.person_id == person_id and r.year == year
            ]
        return sorted(found, key=lambda r: r.month)

    def add(self, record: ContributionRecord) -> ContributionRecord:
        with self._data_lock:
            self._records[record.id] = record
        return record

    @contextmanager
    def locked(self, person_id: UUID, year: int) -> Iterator[list[ContributionRecord]]:
        with self._data_lock:
            lock = self._key_locks.setdefault((person_id, year), threading.RLock())
        with lock:
            yield self.list_for(person_id, year)


class SqlContributionRepository(ContributionRepository):
    """
    SQLAlchemy-backed repository.

    Contract:
        Operates inside the caller's session; never commits.
    """

    def __init__(self, session: Session, actor_id: UUID):
        self._session = session
        self._actor_id = actor_id

    def _select(self, person_id: UUID, year: int):
        return (
            select(ContributionRecordModel)
            .where(ContributionRecordModel.person_id == person_id)
            .where(ContributionRecordModel.year == year)
            .order_by(ContributionRecordModel.month)
        )

    def list_for(self, person_id: UUID, year: int) -> list[ContributionRecord]:
        models = self._session.execute(self._select(person_id, year)).scalars().all()
        return [m.to_dto() for m in models]

    def add(self, record: ContributionRecord) -> ContributionRecord:
        self._session.add(ContributionRecordModel.from_dto(record, self._actor_id))
        self._session.flush()
        return record

    @contextmanager
    def locked(self, person_id: UUID, year: int) -> Iterator[list[ContributionRecord]]:
        models = self._session.execute(
            self._select(person_id, year)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalars().all()
        logger.debug("contribution_records_locked", extra={
            "person_id": str(person_id),
            "year": year,
            "record_count": len(models),
        })
        yield [m.to_dto() for m in models]
