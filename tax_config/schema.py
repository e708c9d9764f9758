"""
Catalog schema.

Frozen value types held by the Rate/Threshold Catalog.  YAML seed files are
parsed into these by ``tax_config.loader``; calculators only ever see these
types, never raw dictionaries.

    RateEntry        percentage rate for (tax_type, code), time-sliced
    Threshold        one progressive bracket, time-sliced
    StatutoryAmount  fixed statutory amount (allowance, cap, relief)
    ZusBase          contribution bases and annual limit for a year
    RateAuditEntry   one admin change to a RateEntry
    TaxEngineConfig  policy tunables that are not statute
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from tax_kernel.domain.decimal_engine import percent_to_fraction, to_decimal
from tax_kernel.logging_config import get_logger

logger = get_logger("config.schema")


def _covers(valid_from: date, valid_to: date | None, on_date: date) -> bool:
    return valid_from <= on_date and (valid_to is None or on_date <= valid_to)


def intervals_overlap(
    a_from: date, a_to: date | None, b_from: date, b_to: date | None
) -> bool:
    """Closed-interval overlap; ``None`` means open-ended."""
    a_end = a_to or date.max
    b_end = b_to or date.max
    return a_from <= b_end and b_from <= a_end


# ---------------------------------------------------------------------------
# Rates
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RateEntry:
    """A percentage rate valid for a closed date interval.

    ``value`` is a percentage (23 means 23%).  ``fraction`` is the exact
    multiplier used by calculators.
    """

    tax_type: str
    code: str
    value: Decimal
    valid_from: date
    valid_to: date | None = None
    is_active: bool = True
    name: str = ""
    legal_basis: str | None = None
    id: UUID = field(default_factory=uuid4)

    def __post_init__(self) -> None:
        if not self.tax_type or not self.code:
            raise ValueError("tax_type and code are required")
        if not isinstance(self.value, Decimal):
            object.__setattr__(self, "value", to_decimal(self.value, "value"))
        if self.value < 0:
            raise ValueError(f"Rate {self.tax_type}/{self.code} cannot be negative")
        if self.valid_to is not None and self.valid_to < self.valid_from:
            raise ValueError(
                f"Rate {self.tax_type}/{self.code}: valid_to precedes valid_from"
            )

    @property
    def fraction(self) -> Decimal:
        return percent_to_fraction(self.value)

    def covers(self, on_date: date) -> bool:
        return self.is_active and _covers(self.valid_from, self.valid_to, on_date)

    def overlaps(self, other: RateEntry) -> bool:
        return (
            self.tax_type == other.tax_type
            and self.code == other.code
            and self.is_active
            and other.is_active
            and intervals_overlap(
                self.valid_from, self.valid_to, other.valid_from, other.valid_to
            )
        )


@dataclass(frozen=True)
class RateAuditEntry:
    """One administrative change to a catalog rate."""

    rate_id: UUID
    action: str  # created, updated, deactivated
    old_value: dict[str, Any] | None
    new_value: dict[str, Any] | None
    reason: str | None
    actor_id: UUID | None
    recorded_at: datetime
    id: UUID = field(default_factory=uuid4)


# ---------------------------------------------------------------------------
# Progressive thresholds
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Threshold:
    """One bracket of a progressive table.

    ``base_amount`` is the cumulative tax of all lower brackets at
    ``lower_bound``; the catalog verifies it when present.
    """

    tax_type: str
    lower_bound: Decimal
    upper_bound: Decimal | None
    rate: Decimal
    valid_from: date
    valid_to: date | None = None
    base_amount: Decimal | None = None
    name: str = ""

    def __post_init__(self) -> None:
        if self.upper_bound is not None and self.upper_bound <= self.lower_bound:
            raise ValueError(
                f"Threshold {self.tax_type}: upper bound {self.upper_bound} "
                f"must exceed lower bound {self.lower_bound}"
            )

    @property
    def fraction(self) -> Decimal:
        return percent_to_fraction(self.rate)

    def covers(self, on_date: date) -> bool:
        return _covers(self.valid_from, self.valid_to, on_date)


# ---------------------------------------------------------------------------
# Statutory amounts
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StatutoryAmount:
    """Fixed statutory amount such as the tax-free allowance."""

    code: str
    amount: Decimal
    valid_from: date
    valid_to: date | None = None
    description: str = ""

    def covers(self, on_date: date) -> bool:
        return _covers(self.valid_from, self.valid_to, on_date)


# ---------------------------------------------------------------------------
# ZUS bases
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ZusBase:
    """Contribution bases for a year, optionally from a given month.

    An entry with ``month=None`` applies from January; an entry with
    ``month=7`` overrides it from July onwards (mid-year minimum wage
    change).
    """

    year: int
    minimum_wage: Decimal
    average_wage: Decimal
    standard_base: Decimal
    preferential_base: Decimal
    annual_limit: Decimal
    month: int | None = None

    @property
    def starts_in_month(self) -> int:
        return self.month or 1


# ---------------------------------------------------------------------------
# Engine policy configuration
# ---------------------------------------------------------------------------

EU_MEMBER_STATES: tuple[str, ...] = (
    "AT", "BE", "BG", "CY", "CZ", "DE", "DK", "EE", "ES", "FI", "FR", "GR", "HR", "HU",
    "IE", "IT", "LT", "LU", "LV", "MT", "NL", "PL", "PT", "RO", "SE", "SI", "SK",
)

DEFAULT_REFUND_DAYS: dict[str, int] = {
    "BANK_TRANSFER": 60,
    "OFFSET_NEXT_PERIOD": 0,
    "ACCELERATED_25D": 25,
    "ACCELERATED_40D": 40,
}


@dataclass
class TaxEngineConfig:
    """
    Policy tunables for the calculators and ledgers.

    Field defaults reflect current Polish rules.  Override at instantiation:

        config = TaxEngineConfig(default_accident_rate=Decimal("0.93"))
    """

    loss_offset_cap_ratio: Decimal = Decimal("0.5")
    loss_carry_forward_years: int = 5
    default_accident_rate: Decimal = Decimal("1.67")
    health_flat_deduction_percent: Decimal = Decimal("4.9")
    health_lump_sum_deduction_percent: Decimal = Decimal("50")
    self_employed_health_base_ratio: Decimal = Decimal("0.75")
    maly_zus_min_ratio: Decimal = Decimal("0.3")
    maly_zus_income_ratio: Decimal = Decimal("0.5")
    late_filing_lookback_months: int = 12
    refund_days: dict[str, int] = field(default_factory=lambda: dict(DEFAULT_REFUND_DAYS))
    eu_member_states: tuple[str, ...] = EU_MEMBER_STATES

    def __post_init__(self):
        if not Decimal("0") < self.loss_offset_cap_ratio <= Decimal("1"):
            raise ValueError("loss_offset_cap_ratio must be in (0, 1]")
        if self.loss_carry_forward_years < 1:
            raise ValueError("loss_carry_forward_years must be at least 1")
        if self.default_accident_rate < 0:
            raise ValueError("default_accident_rate cannot be negative")
        for name in (
            "health_flat_deduction_percent",
            "health_lump_sum_deduction_percent",
        ):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} cannot be negative")
        if not Decimal("0") < self.self_employed_health_base_ratio <= Decimal("1"):
            raise ValueError("self_employed_health_base_ratio must be in (0, 1]")
        if self.late_filing_lookback_months < 0:
            raise ValueError("late_filing_lookback_months cannot be negative")
        missing = set(DEFAULT_REFUND_DAYS) - set(self.refund_days)
        if missing:
            raise ValueError(f"refund_days is missing options: {sorted(missing)}")
        if any(days < 0 for days in self.refund_days.values()):
            raise ValueError("refund_days cannot be negative")
        bad_codes = [c for c in self.eu_member_states if len(c) != 2 or not c.isalpha()]
        if bad_codes:
            raise ValueError(f"eu_member_states contains invalid codes: {bad_codes}")

        logger.info(
            "tax_engine_config_initialized",
            extra={
                "loss_offset_cap_ratio": str(self.loss_offset_cap_ratio),
                "loss_carry_forward_years": self.loss_carry_forward_years,
                "default_accident_rate": str(self.default_accident_rate),
                "eu_member_states_count": len(self.eu_member_states),
            },
        )

    @classmethod
    def with_defaults(cls) -> TaxEngineConfig:
        """Create config with current statutory defaults."""
        logger.info("tax_engine_config_created_with_defaults")
        return cls()

    @classmethod
    def from_dict(cls, data: dict) -> TaxEngineConfig:
        """Create config from dictionary (e.g., loaded from a YAML file)."""
        logger.info(
            "tax_engine_config_loading_from_dict",
            extra={"keys": sorted(data.keys())},
        )
        data = dict(data)
        for key in (
            "loss_offset_cap_ratio",
            "default_accident_rate",
            "health_flat_deduction_percent",
            "health_lump_sum_deduction_percent",
            "self_employed_health_base_ratio",
            "maly_zus_min_ratio",
            "maly_zus_income_ratio",
        ):
            if key in data:
                data[key] = to_decimal(data[key], key)
        if "eu_member_states" in data:
            data["eu_member_states"] = tuple(data["eu_member_states"])
        return cls(**data)
