"""
Rate/Threshold Catalog.

Usage:
    from tax_config import load_default_catalog

    catalog = load_default_catalog()
    vat = catalog.rate("VAT", "STANDARD", date(2024, 5, 1))
"""

from tax_config.catalog import RateCatalog, load_default_catalog
from tax_config.loader import SeedData, compute_checksum, load_seed
from tax_config.schema import (
    RateAuditEntry,
    RateEntry,
    StatutoryAmount,
    TaxEngineConfig,
    Threshold,
    ZusBase,
)

__all__ = [
    "RateAuditEntry",
    "RateCatalog",
    "RateEntry",
    "SeedData",
    "StatutoryAmount",
    "TaxEngineConfig",
    "Threshold",
    "ZusBase",
    "compute_checksum",
    "load_default_catalog",
    "load_seed",
]
