"""
Rate/Threshold Catalog (``tax_config.catalog``).

Responsibility
--------------
Holds the versioned, time-sliced tables every calculator reads: percentage
rates keyed by (tax_type, code), progressive threshold tables, statutory
fixed amounts and ZUS contribution bases.  All lookups are "as of" a date.

Architecture position
---------------------
**Config layer.**  Calculators in ``tax_engines`` receive a RateCatalog by
constructor injection and never hold rate literals of their own.

Invariants enforced
-------------------
* For a given (tax_type, code) active validity intervals never overlap, so
  a lookup returns exactly one entry or raises NotFound.
* A threshold table tiles [0, inf) without gaps or overlaps: it starts at
  zero, each lower bound equals the previous upper bound, and only the last
  bracket is open-ended.  ``base_amount`` (when given) equals the
  cumulative tax of the lower brackets.
* Statutory amounts never overlap per code; ZUS bases are unique per
  (year, month).

Failure modes
-------------
* CatalogIntegrityError on any of the above at construction or admin time.
* RateNotFoundError / ThresholdTableNotFoundError /
  StatutoryAmountNotFoundError / ZusBaseNotFoundError on lookup misses.
  Nothing is defaulted.
* UnknownActivityCodeError when a lump-sum activity has no catalog rate.

Audit relevance
---------------
Admin changes (create, update, deactivate) append a RateAuditEntry with old
and new values, reason and actor.  ``version`` and ``checksum`` identify the
seed dataset a calculation ran against.
"""

from __future__ import annotations

import threading
from collections import defaultdict
from dataclasses import replace
from datetime import date
from decimal import Decimal
from typing import Any, Iterable
from uuid import UUID

from tax_config.loader import SeedData, load_seed
from tax_config.schema import (
    RateAuditEntry,
    RateEntry,
    StatutoryAmount,
    Threshold,
    ZusBase,
    intervals_overlap,
)
from tax_kernel.domain.clock import Clock, SystemClock
from tax_kernel.domain.decimal_engine import ZERO, multiply
from tax_kernel.domain.periods import validate_month, validate_year
from tax_kernel.exceptions import (
    CatalogIntegrityError,
    NotFoundError,
    RateNotFoundError,
    StatutoryAmountNotFoundError,
    ThresholdTableNotFoundError,
    UnknownActivityCodeError,
    ZusBaseNotFoundError,
)
from tax_kernel.logging_config import get_logger

logger = get_logger("config.catalog")

LUMP_SUM_TAX_TYPE = "PIT_LUMP_SUM"

_UPDATABLE_FIELDS = frozenset(
    {"value", "valid_from", "valid_to", "is_active", "name", "legal_basis"}
)


def _snapshot(entry: RateEntry) -> dict[str, Any]:
    return {
        "tax_type": entry.tax_type,
        "code": entry.code,
        "value": str(entry.value),
        "valid_from": entry.valid_from.isoformat(),
        "valid_to": entry.valid_to.isoformat() if entry.valid_to else None,
        "is_active": entry.is_active,
        "name": entry.name,
        "legal_basis": entry.legal_basis,
    }


def validate_threshold_table(table: list[Threshold]) -> None:
    """
    Check that one threshold table tiles [0, inf).

    Raises:
        CatalogIntegrityError: gap, overlap, wrong start, bounded last bracket,
            or a base_amount that disagrees with the lower brackets.
    """
    ordered = sorted(table, key=lambda t: t.lower_bound)
    tax_type = ordered[0].tax_type
    if ordered[0].lower_bound != ZERO:
        raise CatalogIntegrityError(
            f"{tax_type} threshold table must start at 0, starts at {ordered[0].lower_bound}",
            field="lower_bound",
        )
    cumulative = ZERO
    for i, bracket in enumerate(ordered):
        is_last = i == len(ordered) - 1
        if bracket.upper_bound is None and not is_last:
            raise CatalogIntegrityError(
                f"{tax_type} threshold at {bracket.lower_bound} is open-ended but not last",
                field="upper_bound",
            )
        if is_last and bracket.upper_bound is not None:
            raise CatalogIntegrityError(
                f"{tax_type} threshold table must end open-ended, ends at {bracket.upper_bound}",
                field="upper_bound",
            )
        if i > 0 and bracket.lower_bound != ordered[i - 1].upper_bound:
            raise CatalogIntegrityError(
                f"{tax_type} thresholds do not tile: {ordered[i - 1].upper_bound} "
                f"followed by {bracket.lower_bound}",
                field="lower_bound",
            )
        if bracket.base_amount is not None and bracket.base_amount != cumulative:
            raise CatalogIntegrityError(
                f"{tax_type} threshold at {bracket.lower_bound}: base amount "
                f"{bracket.base_amount} != cumulative tax {cumulative}",
                field="base_amount",
            )
        if bracket.upper_bound is not None:
            cumulative += multiply(
                bracket.upper_bound - bracket.lower_bound, bracket.fraction
            )


class RateCatalog:
    """
    Versioned, time-sliced catalog of rates, thresholds and amounts.

    Contract:
        Lookups are pure reads keyed by date.  Admin mutations are
        serialised with an internal lock and re-validate non-overlap.

    Guarantees:
        - ``rate()`` returns exactly one RateEntry or raises.
        - ``thresholds()`` returns a validated, ascending table or raises.

    Non-goals:
        - Does not persist admin changes; the caller stores the audit trail.
    """

    def __init__(
        self,
        rates: Iterable[RateEntry] = (),
        thresholds: Iterable[Threshold] = (),
        statutory_amounts: Iterable[StatutoryAmount] = (),
        zus_bases: Iterable[ZusBase] = (),
        *,
        version: str = "unversioned",
        checksum: str | None = None,
        clock: Clock | None = None,
    ):
        self._lock = threading.RLock()
        self._clock = clock or SystemClock()
        self.version = version
        self.checksum = checksum
        self._rates: dict[UUID, RateEntry] = {}
        self._history: dict[UUID, list[RateAuditEntry]] = defaultdict(list)
        self._thresholds: tuple[Threshold, ...] = tuple(thresholds)
        self._amounts: tuple[StatutoryAmount, ...] = tuple(statutory_amounts)
        self._zus_bases: tuple[ZusBase, ...] = tuple(zus_bases)

        for entry in rates:
            self._check_rate_overlap(entry)
            self._rates[entry.id] = entry
        self._validate_thresholds()
        self._validate_amounts()
        self._validate_zus_bases()

        logger.info(
            "rate_catalog_initialized",
            extra={
                "version": version,
                "checksum": checksum,
                "rate_count": len(self._rates),
                "threshold_count": len(self._thresholds),
            },
        )

    @classmethod
    def from_seed(cls, seed: SeedData, clock: Clock | None = None) -> RateCatalog:
        return cls(
            seed.rates,
            seed.thresholds,
            seed.statutory_amounts,
            seed.zus_bases,
            version=seed.version,
            checksum=seed.checksum,
            clock=clock,
        )

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def _check_rate_overlap(self, entry: RateEntry, ignore_id: UUID | None = None) -> None:
        for existing in self._rates.values():
            if existing.id == ignore_id:
                continue
            if existing.overlaps(entry):
                logger.warning(
                    "catalog_rate_overlap_rejected",
                    extra={
                        "tax_type": entry.tax_type,
                        "code": entry.code,
                        "valid_from": entry.valid_from,
                        "existing_valid_from": existing.valid_from,
                    },
                )
                raise CatalogIntegrityError(
                    f"Rate {entry.tax_type}/{entry.code} validity "
                    f"{entry.valid_from}..{entry.valid_to or 'open'} overlaps "
                    f"{existing.valid_from}..{existing.valid_to or 'open'}",
                    field="valid_from",
                )

    def _validate_thresholds(self) -> None:
        tables: dict[tuple[str, date, date | None], list[Threshold]] = defaultdict(list)
        for t in self._thresholds:
            tables[(t.tax_type, t.valid_from, t.valid_to)].append(t)
        for table in tables.values():
            validate_threshold_table(table)
        keys = list(tables)
        for i, (tax_type, a_from, a_to) in enumerate(keys):
            for other_type, b_from, b_to in keys[i + 1:]:
                if tax_type == other_type and intervals_overlap(a_from, a_to, b_from, b_to):
                    raise CatalogIntegrityError(
                        f"{tax_type} threshold tables from {a_from} and {b_from} overlap",
                        field="valid_from",
                    )

    def _validate_amounts(self) -> None:
        by_code: dict[str, list[StatutoryAmount]] = defaultdict(list)
        for a in self._amounts:
            for other in by_code[a.code]:
                if intervals_overlap(a.valid_from, a.valid_to, other.valid_from, other.valid_to):
                    raise CatalogIntegrityError(
                        f"Statutory amount {a.code} validity from {a.valid_from} "
                        f"overlaps {other.valid_from}",
                        field="valid_from",
                    )
            by_code[a.code].append(a)

    def _validate_zus_bases(self) -> None:
        seen: set[tuple[int, int | None]] = set()
        for b in self._zus_bases:
            key = (b.year, b.month)
            if key in seen:
                raise CatalogIntegrityError(
                    f"Duplicate ZUS base for {b.year}/{b.month or 'year'}", field="year"
                )
            seen.add(key)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def rate(self, tax_type: str, code: str, on_date: date) -> RateEntry:
        """
        The rate for (tax_type, code) effective on ``on_date``.

        Raises:
            RateNotFoundError: no active entry covers the date.
        """
        with self._lock:
            matches = sorted(
                (
                    r
                    for r in self._rates.values()
                    if r.tax_type == tax_type and r.code == code and r.covers(on_date)
                ),
                key=lambda r: r.valid_from,
                reverse=True,
            )
        if not matches:
            logger.warning(
                "catalog_rate_not_found",
                extra={"tax_type": tax_type, "code": code, "as_of": on_date},
            )
            raise RateNotFoundError(tax_type, code, on_date)
        return matches[0]

    def rate_fraction(self, tax_type: str, code: str, on_date: date) -> Decimal:
        """Exact multiplier (23% -> 0.23) for the effective rate."""
        return self.rate(tax_type, code, on_date).fraction

    def lump_sum_rate(self, activity_code: str, on_date: date) -> RateEntry:
        """
        Lump-sum (ryczalt) rate for an activity.

        Raises:
            UnknownActivityCodeError: the catalog has no such activity at all.
            RateNotFoundError: the activity exists but not on ``on_date``.
        """
        with self._lock:
            known = any(
                r.tax_type == LUMP_SUM_TAX_TYPE and r.code == activity_code
                for r in self._rates.values()
            )
        if not known:
            logger.warning("unknown_activity_code", extra={"activity_code": activity_code})
            raise UnknownActivityCodeError(activity_code)
        return self.rate(LUMP_SUM_TAX_TYPE, activity_code, on_date)

    def thresholds(self, tax_type: str, on_date: date) -> tuple[Threshold, ...]:
        """
        The progressive table effective on ``on_date``, ascending.

        Raises:
            ThresholdTableNotFoundError: no table covers the date.
        """
        table = sorted(
            (t for t in self._thresholds if t.tax_type == tax_type and t.covers(on_date)),
            key=lambda t: t.lower_bound,
        )
        if not table:
            logger.warning(
                "catalog_thresholds_not_found",
                extra={"tax_type": tax_type, "as_of": on_date},
            )
            raise ThresholdTableNotFoundError(tax_type, on_date)
        return tuple(table)

    def statutory_amount(self, code: str, on_date: date) -> Decimal:
        """
        Raises:
            StatutoryAmountNotFoundError: no entry for ``code`` covers the date.
        """
        for a in self._amounts:
            if a.code == code and a.covers(on_date):
                return a.amount
        logger.warning(
            "catalog_statutory_amount_not_found",
            extra={"code": code, "as_of": on_date},
        )
        raise StatutoryAmountNotFoundError(code, on_date)

    def child_relief_schedule(self, child_count: int, on_date: date) -> tuple[Decimal, ...]:
        """Per-child relief amounts for the first ``child_count`` children."""
        schedule = []
        for ordinal in range(1, child_count + 1):
            schedule.append(self.statutory_amount(f"CHILD_RELIEF_{min(ordinal, 4)}", on_date))
        return tuple(schedule)

    def zus_base_for(self, year: int, month: int = 1) -> ZusBase:
        """
        Contribution bases in force in (year, month).

        A month-specific entry overrides the annual one from its month on.

        Raises:
            ZusBaseNotFoundError: no entry for the year.
        """
        validate_year(year)
        validate_month(month)
        candidates = [
            b for b in self._zus_bases if b.year == year and b.starts_in_month <= month
        ]
        if not candidates:
            logger.warning("catalog_zus_base_not_found", extra={"year": year, "month": month})
            raise ZusBaseNotFoundError(year)
        return max(candidates, key=lambda b: b.starts_in_month)

    def rates_as_of(self, tax_type: str, on_date: date) -> list[RateEntry]:
        """All rates of ``tax_type`` effective on the date, sorted by code."""
        with self._lock:
            return sorted(
                (r for r in self._rates.values() if r.tax_type == tax_type and r.covers(on_date)),
                key=lambda r: r.code,
            )

    def current_rates_summary(self, on_date: date) -> dict[str, dict[str, Decimal]]:
        """``{tax_type: {code: percentage}}`` for every rate effective on the date."""
        summary: dict[str, dict[str, Decimal]] = defaultdict(dict)
        with self._lock:
            for r in sorted(self._rates.values(), key=lambda r: (r.tax_type, r.code)):
                if r.covers(on_date):
                    summary[r.tax_type][r.code] = r.value
        return dict(summary)

    def get_rate_by_id(self, rate_id: UUID) -> RateEntry:
        with self._lock:
            entry = self._rates.get(rate_id)
        if entry is None:
            raise NotFoundError(f"Rate {rate_id} not found", field="rate_id")
        return entry

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    def create_rate(self, entry: RateEntry, actor_id: UUID | None = None) -> RateEntry:
        """
        Add a rate after checking it does not overlap an existing one.

        Raises:
            CatalogIntegrityError: overlapping validity for (tax_type, code).
        """
        with self._lock:
            self._check_rate_overlap(entry)
            self._rates[entry.id] = entry
            self._record(entry.id, "created", None, _snapshot(entry), None, actor_id)
        logger.info(
            "catalog_rate_created",
            extra={
                "rate_id": str(entry.id),
                "tax_type": entry.tax_type,
                "code": entry.code,
                "value": str(entry.value),
            },
        )
        return entry

    def update_rate(
        self,
        rate_id: UUID,
        changes: dict[str, Any],
        reason: str,
        actor_id: UUID | None = None,
    ) -> RateEntry:
        """
        Change fields of an existing rate and record the change.

        Preconditions:
            - ``changes`` keys are among value, valid_from, valid_to,
              is_active, name, legal_basis.
        Raises:
            NotFoundError: unknown ``rate_id``.
            ValueError: unsupported field in ``changes``.
            CatalogIntegrityError: the changed interval overlaps another rate.
        """
        unknown = set(changes) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update rate fields: {sorted(unknown)}")
        with self._lock:
            current = self.get_rate_by_id(rate_id)
            updated = replace(current, **changes)
            self._check_rate_overlap(updated, ignore_id=rate_id)
            self._rates[rate_id] = updated
            action = "deactivated" if current.is_active and not updated.is_active else "updated"
            self._record(rate_id, action, _snapshot(current), _snapshot(updated), reason, actor_id)
        logger.info(
            "catalog_rate_updated",
            extra={
                "rate_id": str(rate_id),
                "action": action,
                "changed_fields": sorted(changes),
                "reason": reason,
            },
        )
        return updated

    def deactivate_rate(self, rate_id: UUID, reason: str, actor_id: UUID | None = None) -> RateEntry:
        return self.update_rate(rate_id, {"is_active": False}, reason, actor_id)

    def rate_history(self, rate_id: UUID) -> list[RateAuditEntry]:
        """Audit entries for the rate, newest first."""
        with self._lock:
            return list(reversed(self._history.get(rate_id, [])))

    def _record(
        self,
        rate_id: UUID,
        action: str,
        old_value: dict[str, Any] | None,
        new_value: dict[str, Any] | None,
        reason: str | None,
        actor_id: UUID | None,
    ) -> None:
        self._history[rate_id].append(
            RateAuditEntry(
                rate_id=rate_id,
                action=action,
                old_value=old_value,
                new_value=new_value,
                reason=reason,
                actor_id=actor_id,
                recorded_at=self._clock.now_utc(),
            )
        )


def load_default_catalog(clock: Clock | None = None) -> RateCatalog:
    """Catalog built from the shipped seed dataset."""
    return RateCatalog.from_seed(load_seed(), clock=clock)


__all__ = [
    "LUMP_SUM_TAX_TYPE",
    "RateCatalog",
    "load_default_catalog",
    "validate_threshold_table",
]
