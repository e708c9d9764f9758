"""
Declaration repositories.

    InMemoryDeclarationRepository   per-declaration re-entrant lock
    SqlDeclarationRepository        SELECT ... FOR UPDATE on the row
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from collections.abc import Iterator
from contextlib import contextmanager
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from tax_kernel.exceptions import DeclarationNotFoundError
from tax_kernel.logging_config import get_logger
from tax_modules.declarations.models import Declaration
from tax_modules.declarations.orm import DeclarationModel

logger = get_logger("modules.declarations.repository")


class DeclarationRepository(ABC):
    @abstractmethod
    def get(self, declaration_id: UUID) -> Declaration:
        """Raises DeclarationNotFoundError."""

    @abstractmethod
    def find(
        self, client_id: UUID, tax_type: str, tax_year: int, period: int | None
    ) -> list[Declaration]:
        """Every declaration (originals and corrections) for the period."""

    @abstractmethod
    def list_for_client(self, client_id: UUID) -> list[Declaration]: ...

    @abstractmethod
    def add(self, declaration: Declaration) -> Declaration: ...

    @abstractmethod
    def save(self, declaration: Declaration) -> Declaration: ...

    @abstractmethod
    def delete(self, declaration_id: UUID) -> None: ...

    @abstractmethod
    def locked(self, declaration_id: UUID):
        """Context manager yielding the declaration, locked."""


def _sort_key(d: Declaration):
    return (d.tax_year, d.period or 0, d.correction_number)


class InMemoryDeclarationRepository(DeclarationRepository):
    def __init__(self) -> None:
        self._declarations: dict[UUID, Declaration] = {}
        self._data_lock = threading.Lock()
        self._row_locks: dict[UUID, threading.RLock] = {}

    def get(self, declaration_id: UUID) -> Declaration:
        with self._data_lock:
            declaration = self._declarations.get(declaration_id)
        if declaration is None:
            raise DeclarationNotFoundError(declaration_id)
        return declaration

    def find(
        self, client_id: UUID, tax_type: str, tax_year: int, period: int | None
    ) -> list[Declaration]:
        with self._data_lock:
            found = [
                d for d in self._declarations.values()
                if d.client_id == client_id
                and d.tax_type.value == tax_type
                and d.tax_year == tax_year
                and d.period == period
            ]
        return sorted(found, key=_sort_key)

    def list_for_client(self, client_id: UUID) -> list[Declaration]:
        with self._data_lock:
            found = [d for d in self._declarations.values() if d.client_id == client_id]
        return sorted(found, key=_sort_key)

    def add(self, declaration: Declaration) -> Declaration:
        with self._data_lock:
            self._declarations[declaration.id] = declaration
        return declaration

    def save(self, declaration: Declaration) -> Declaration:
        with self._data_lock:
            if declaration.id not in self._declarations:
                raise DeclarationNotFoundError(declaration.id)
            self._declarations[declaration.id] = declaration
        return declaration

    def delete(self, declaration_id: UUID) -> None:
        with self._data_lock:
            if self._declarations.pop(declaration_id, None) is None:
                raise DeclarationNotFoundError(declaration_id)

    @contextmanager
    def locked(self, declaration_id: UUID) -> Iterator[Declaration]:
        with self._data_lock:
            lock = self._row_locks.setdefault(declaration_id, threading.RLock())
        with lock:
            yield self.get(declaration_id)


class SqlDeclarationRepository(DeclarationRepository):
    """
    SQLAlchemy-backed repository.

    Contract:
        Operates inside the caller's session; never commits.
    """

    def __init__(self, session: Session, actor_id: UUID):
        self._session = session
        self._actor_id = actor_id

    def _model(self, declaration_id: UUID) -> DeclarationModel:
        model = self._session.get(DeclarationModel, declaration_id)
        if model is None:
            raise DeclarationNotFoundError(declaration_id)
        return model

    def get(self, declaration_id: UUID) -> Declaration:
        return self._model(declaration_id).to_dto()

    def find(
        self, client_id: UUID, tax_type: str, tax_year: int, period: int | None
    ) -> list[Declaration]:
        stmt = (
            select(DeclarationModel)
            .where(DeclarationModel.client_id == client_id)
            .where(DeclarationModel.tax_type == tax_type)
            .where(DeclarationModel.tax_year == tax_year)
        )
        if period is None:
            stmt = stmt.where(DeclarationModel.period.is_(None))
        else:
            stmt = stmt.where(DeclarationModel.period == period)
        models = self._session.execute(
            stmt.order_by(DeclarationModel.correction_number)
        ).scalars().all()
        return [m.to_dto() for m in models]

    def list_for_client(self, client_id: UUID) -> list[Declaration]:
        models = self._session.execute(
            select(DeclarationModel)
            .where(DeclarationModel.client_id == client_id)
            .order_by(
                DeclarationModel.tax_year,
                DeclarationModel.period,
                DeclarationModel.correction_number,
            )
        ).scalars().all()
        return [m.to_dto() for m in models]

    def add(self, declaration: Declaration) -> Declaration:
        self._session.add(DeclarationModel.from_dto(declaration, self._actor_id))
        self._session.flush()
        return declaration

    def save(self, declaration: Declaration) -> Declaration:
        self._model(declaration.id).update_from_dto(declaration, self._actor_id)
        self._session.flush()
        return declaration

    def delete(self, declaration_id: UUID) -> None:
        self._session.delete(self._model(declaration_id))
        self._session.flush()

    @contextmanager
    def locked(self, declaration_id: UUID) -> Iterator[Declaration]:
        model = self._session.execute(
            select(DeclarationModel)
            .where(DeclarationModel.id == declaration_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if model is None:
            raise DeclarationNotFoundError(declaration_id)
        logger.debug("declaration_locked", extra={"declaration_id": str(declaration_id)})
        yield model.to_dto()
