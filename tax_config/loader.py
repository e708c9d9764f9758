"""
Catalog Loader (``tax_config.loader``).

Responsibility
--------------
Loads the YAML seed files and parses them into the frozen types of
``tax_config.schema``.  The shipped seed dataset lives in
``tax_config/seed``; callers may point ``load_seed`` at another directory
holding the same four files.

Invariants enforced
-------------------
* Amounts and rates are parsed with ``to_decimal`` -- YAML floats are
  rejected, so every seed value must be quoted.
* Missing required keys raise ``KeyError``; there are no silent defaults.
* ``compute_checksum`` produces a deterministic SHA-256 of the raw seed
  content for dataset identity.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Invalid date  -> ``ValueError``.
* Unquoted numeric  -> ``InvalidAmountError``.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Any

import yaml

from tax_config.schema import RateEntry, StatutoryAmount, Threshold, ZusBase
from tax_kernel.domain.decimal_engine import to_decimal
from tax_kernel.logging_config import get_logger

logger = get_logger("config.loader")

SEED_DIR = Path(__file__).parent / "seed"

RATES_FILE = "rates.yaml"
THRESHOLDS_FILE = "thresholds.yaml"
AMOUNTS_FILE = "statutory_amounts.yaml"
ZUS_BASES_FILE = "zus_bases.yaml"


@dataclass(frozen=True)
class SeedData:
    """Everything parsed from one seed directory."""

    version: str
    checksum: str
    rates: tuple[RateEntry, ...]
    thresholds: tuple[Threshold, ...]
    statutory_amounts: tuple[StatutoryAmount, ...]
    zus_bases: tuple[ZusBase, ...]


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_date(value: Any) -> date:
    """
    Parse a date from YAML (string or date object).

    Raises:
        ValueError: if ``value`` is not a valid date representation.
    """
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        return date.fromisoformat(value)
    raise ValueError(f"Cannot parse date from {value!r}")


def _optional_date(data: dict[str, Any], key: str) -> date | None:
    value = data.get(key)
    return parse_date(value) if value is not None else None


def _optional_decimal(data: dict[str, Any], key: str):
    value = data.get(key)
    return to_decimal(value, key) if value is not None else None


def parse_rate(data: dict[str, Any]) -> RateEntry:
    return RateEntry(
        tax_type=data["tax_type"],
        code=data["code"],
        value=to_decimal(data["value"], "value"),
        valid_from=parse_date(data["valid_from"]),
        valid_to=_optional_date(data, "valid_to"),
        is_active=data.get("is_active", True),
        name=data.get("name", ""),
        legal_basis=data.get("legal_basis"),
    )


def parse_threshold(data: dict[str, Any]) -> Threshold:
    return Threshold(
        tax_type=data["tax_type"],
        lower_bound=to_decimal(data["lower_bound"], "lower_bound"),
        upper_bound=_optional_decimal(data, "upper_bound"),
        rate=to_decimal(data["rate"], "rate"),
        valid_from=parse_date(data["valid_from"]),
        valid_to=_optional_date(data, "valid_to"),
        base_amount=_optional_decimal(data, "base_amount"),
        name=data.get("name", ""),
    )


def parse_statutory_amount(data: dict[str, Any]) -> StatutoryAmount:
    return StatutoryAmount(
        code=data["code"],
        amount=to_decimal(data["amount"], "amount"),
        valid_from=parse_date(data["valid_from"]),
        valid_to=_optional_date(data, "valid_to"),
        description=data.get("description", ""),
    )


def parse_zus_base(data: dict[str, Any]) -> ZusBase:
    return ZusBase(
        year=int(data["year"]),
        month=data.get("month"),
        minimum_wage=to_decimal(data["minimum_wage"], "minimum_wage"),
        average_wage=to_decimal(data["average_wage"], "average_wage"),
        standard_base=to_decimal(data["standard_base"], "standard_base"),
        preferential_base=to_decimal(data["preferential_base"], "preferential_base"),
        annual_limit=to_decimal(data["annual_limit"], "annual_limit"),
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """
    SHA-256 checksum of the canonical JSON serialization.

    Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def load_seed(seed_dir: Path | None = None) -> SeedData:
    """
    Load and parse all four seed files from ``seed_dir``.

    Preconditions:
        - ``seed_dir`` (default: the shipped dataset) holds rates.yaml,
          thresholds.yaml, statutory_amounts.yaml and zus_bases.yaml.
    Postconditions:
        - Returns SeedData; ordering of entries follows the files.
    """
    seed_dir = Path(seed_dir) if seed_dir is not None else SEED_DIR

    raw = {
        "rates": load_yaml_file(seed_dir / RATES_FILE),
        "thresholds": load_yaml_file(seed_dir / THRESHOLDS_FILE),
        "amounts": load_yaml_file(seed_dir / AMOUNTS_FILE),
        "zus_bases": load_yaml_file(seed_dir / ZUS_BASES_FILE),
    }

    seed = SeedData(
        version=str(raw["rates"].get("version", "unversioned")),
        checksum=compute_checksum(raw),
        rates=tuple(parse_rate(r) for r in raw["rates"].get("rates", [])),
        thresholds=tuple(
            parse_threshold(t) for t in raw["thresholds"].get("thresholds", [])
        ),
        statutory_amounts=tuple(
            parse_statutory_amount(a) for a in raw["amounts"].get("amounts", [])
        ),
        zus_bases=tuple(parse_zus_base(b) for b in raw["zus_bases"].get("bases", [])),
    )

    logger.info(
        "catalog_seed_loaded",
        extra={
            "seed_dir": str(seed_dir),
            "version": seed.version,
            "checksum": seed.checksum,
            "rate_count": len(seed.rates),
            "threshold_count": len(seed.thresholds),
            "amount_count": len(seed.statutory_amounts),
            "zus_base_count": len(seed.zus_bases),
        },
    )
    return seed
