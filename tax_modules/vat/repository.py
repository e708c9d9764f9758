"""
VAT repositories.

``VatRepository`` stores transactions, carry-forwards and finalised
settlements.  ``locked(client_id)`` serialises a client's settlement
finalisation and carry-forward mutation:

    InMemoryVatRepository   per-client re-entrant lock
    SqlVatRepository        SELECT ... FOR UPDATE on the client's
                            carry-forward rows, held until commit
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from collections.abc import Iterator
from contextlib import contextmanager
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from tax_kernel.exceptions import CarryForwardNotFoundError, VatTransactionNotFoundError
from tax_kernel.logging_config import get_logger
from tax_modules.vat.models import VatCarryForward, VatSettlement, VatTransaction
from tax_modules.vat.orm import VatCarryForwardModel, VatSettlementModel, VatTransactionModel

logger = get_logger("modules.vat.repository")


def _oldest_first(records: list[VatCarryForward]) -> list[VatCarryForward]:
    return sorted(records, key=lambda cf: (cf.source_year, cf.source_month))


class VatRepository(ABC):
    # Transactions
    @abstractmethod
    def add_transaction(self, tx: VatTransaction) -> VatTransaction: ...

    @abstractmethod
    def save_transaction(self, tx: VatTransaction) -> VatTransaction: ...

    @abstractmethod
    def get_transaction(self, transaction_id: UUID) -> VatTransaction:
        """Raises VatTransactionNotFoundError."""

    @abstractmethod
    def list_transactions(self, client_id: UUID, year: int, month: int) -> list[VatTransaction]: ...

    @abstractmethod
    def list_pair(self, pair_id: UUID) -> list[VatTransaction]: ...

    @abstractmethod
    def list_corrections(self, transaction_id: UUID) -> list[VatTransaction]:
        """CORRECTION rows referencing ``transaction_id``, oldest first."""

    # Carry-forwards
    @abstractmethod
    def add_carry_forward(self, cf: VatCarryForward) -> VatCarryForward: ...

    @abstractmethod
    def save_carry_forward(self, cf: VatCarryForward) -> VatCarryForward: ...

    @abstractmethod
    def get_carry_forward(self, carry_forward_id: UUID) -> VatCarryForward:
        """Raises CarryForwardNotFoundError."""

    @abstractmethod
    def list_carry_forwards(self, client_id: UUID) -> list[VatCarryForward]:
        """All of the client's carry-forwards, oldest source period first."""

    # Settlements
    @abstractmethod
    def add_settlement(self, settlement: VatSettlement) -> VatSettlement: ...

    @abstractmethod
    def find_settlement(self, client_id: UUID, year: int, month: int) -> VatSettlement | None: ...

    @abstractmethod
    def locked(self, client_id: UUID):
        """Context manager yielding the client's carry-forwards, locked."""


class InMemoryVatRepository(VatRepository):
    def __init__(self) -> None:
        self._transactions: dict[UUID, VatTransaction] = {}
        self._carry_forwards: dict[UUID, VatCarryForward] = {}
        self._settlements: dict[tuple[UUID, int, int], VatSettlement] = {}
        self._data_lock = threading.Lock()
        self._client_locks: dict[UUID, threading.RLock] = {}

    def add_transaction(self, tx: VatTransaction) -> VatTransaction:
        with self._data_lock:
            self._transactions[tx.id] = tx
        return tx

    def save_transaction(self, tx: VatTransaction) -> VatTransaction:
        with self._data_lock:
            if tx.id not in self._transactions:
                raise VatTransactionNotFoundError(tx.id)
            self._transactions[tx.id] = tx
        return tx

    def get_transaction(self, transaction_id: UUID) -> VatTransaction:
        with self._data_lock:
            tx = self._transactions.get(transaction_id)
        if tx is None:
            raise VatTransactionNotFoundError(transaction_id)
        return tx

    def list_transactions(self, client_id: UUID, year: int, month: int) -> list[VatTransaction]:
        with self._data_lock:
            return [
                tx for tx in self._transactions.values()
                if tx.client_id == client_id
                and tx.period_year == year
                and tx.period_month == month
            ]

    def list_pair(self, pair_id: UUID) -> list[VatTransaction]:
        with self._data_lock:
            return [tx for tx in self._transactions.values() if tx.pair_id == pair_id]

    def list_corrections(self, transaction_id: UUID) -> list[VatTransaction]:
        with self._data_lock:
            found = [
                tx for tx in self._transactions.values()
                if tx.corrects_transaction_id == transaction_id
            ]
        return sorted(found, key=lambda tx: tx.transaction_date)

    def add_carry_forward(self, cf: VatCarryForward) -> VatCarryForward:
        with self._data_lock:
            self._carry_forwards[cf.id] = cf
        return cf

    def save_carry_forward(self, cf: VatCarryForward) -> VatCarryForward:
        with self._data_lock:
            if cf.id not in self._carry_forwards:
                raise CarryForwardNotFoundError(cf.id)
            self._carry_forwards[cf.id] = cf
        return cf

    def get_carry_forward(self, carry_forward_id: UUID) -> VatCarryForward:
        with self._data_lock:
            cf = self._carry_forwards.get(carry_forward_id)
        if cf is None:
            raise CarryForwardNotFoundError(carry_forward_id)
        return cf

    def list_carry_forwards(self, client_id: UUID) -> list[VatCarryForward]:
        with self._data_lock:
            records = [cf for cf in self._carry_forwards.values() if cf.client_id == client_id]
        return _oldest_first(records)

    def add_settlement(self, settlement: VatSettlement) -> VatSettlement:
        key = (settlement.client_id, settlement.period_year, settlement.period_month)
        with self._data_lock:
            self._settlements[key] = settlement
        return settlement

    def find_settlement(self, client_id: UUID, year: int, month: int) -> VatSettlement | None:
        with self._data_lock:
            return self._settlements.get((client_id, year, month))

    @contextmanager
    def locked(self, client_id: UUID) -> Iterator[list[VatCarryForward]]:
        with self._data_lock:
            lock = self._client_locks.setdefault(client_id, threading.RLock())
        with lock:
            yield self.list_carry_forwards(client_id)


class SqlVatRepository(VatRepository):
    """
    SQLAlchemy-backed repository.

    Contract:
        Operates inside the caller's session; never commits.
    """

    def __init__(self, session: Session, actor_id: UUID):
        self._session = session
        self._actor_id = actor_id

    def add_transaction(self, tx: VatTransaction) -> VatTransaction:
        self._session.add(VatTransactionModel.from_dto(tx, self._actor_id))
        self._session.flush()
        return tx

    def save_transaction(self, tx: VatTransaction) -> VatTransaction:
        model = self._session.get(VatTransactionModel, tx.id)
        if model is None:
            raise VatTransactionNotFoundError(tx.id)
        # Only the status changes after recording.
        model.status = tx.status.value
        model.touch(self._actor_id)
        self._session.flush()
        return tx

    def get_transaction(self, transaction_id: UUID) -> VatTransaction:
        model = self._session.get(VatTransactionModel, transaction_id)
        if model is None:
            raise VatTransactionNotFoundError(transaction_id)
        return model.to_dto()

    def list_transactions(self, client_id: UUID, year: int, month: int) -> list[VatTransaction]:
        models = self._session.execute(
            select(VatTransactionModel)
            .where(VatTransactionModel.client_id == client_id)
            .where(VatTransactionModel.period_year == year)
            .where(VatTransactionModel.period_month == month)
            .order_by(VatTransactionModel.transaction_date)
        ).scalars().all()
        return [m.to_dto() for m in models]

    def list_pair(self, pair_id: UUID) -> list[VatTransaction]:
        models = self._session.execute(
            select(VatTransactionModel).where(VatTransactionModel.pair_id == pair_id)
        ).scalars().all()
        return [m.to_dto() for m in models]

    def list_corrections(self, transaction_id: UUID) -> list[VatTransaction]:
        models = self._session.execute(
            select(VatTransactionModel)
            .where(VatTransactionModel.corrects_transaction_id == transaction_id)
            .order_by(VatTransactionModel.transaction_date)
        ).scalars().all()
        return [m.to_dto() for m in models]

    def add_carry_forward(self, cf: VatCarryForward) -> VatCarryForward:
        self._session.add(VatCarryForwardModel.from_dto(cf, self._actor_id))
        self._session.flush()
        return cf

    def save_carry_forward(self, cf: VatCarryForward) -> VatCarryForward:
        model = self._session.get(VatCarryForwardModel, cf.id)
        if model is None:
            raise CarryForwardNotFoundError(cf.id)
        model.update_from_dto(cf, self._actor_id)
        self._session.flush()
        return cf

    def get_carry_forward(self, carry_forward_id: UUID) -> VatCarryForward:
        model = self._session.get(VatCarryForwardModel, carry_forward_id)
        if model is None:
            raise CarryForwardNotFoundError(carry_forward_id)
        return model.to_dto()

    def _select_carry_forwards(self, client_id: UUID):
        return (
            select(VatCarryForwardModel)
            .where(VatCarryForwardModel.client_id == client_id)
            .order_by(VatCarryForwardModel.source_year, VatCarryForwardModel.source_month)
        )

    def list_carry_forwards(self, client_id: UUID) -> list[VatCarryForward]:
        models = self._session.execute(self._select_carry_forwards(client_id)).scalars().all()
        return [m.to_dto() for m in models]

    def add_settlement(self, settlement: VatSettlement) -> VatSettlement:
        self._session.add(VatSettlementModel.from_dto(settlement, self._actor_id))
        self._session.flush()
        return settlement

    def find_settlement(self, client_id: UUID, year: int, month: int) -> VatSettlement | None:
        model = self._session.execute(
            select(VatSettlementModel)
            .where(VatSettlementModel.client_id == client_id)
            .where(VatSettlementModel.period_year == year)
            .where(VatSettlementModel.period_month == month)
        ).scalar_one_or_none()
        return model.to_dto() if model else None

    @contextmanager
    def locked(self, client_id: UUID) -> Iterator[list[VatCarryForward]]:
        models = self._session.execute(
            self._select_carry_forwards(client_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalars().all()
        logger.debug("vat_carry_forwards_locked", extra={
            "client_id": str(client_id),
            "record_count": len(models),
        })
        yield [m.to_dto() for m in models]
