"""
Pytest fixtures for the tax engine test suite.

Provides:
- Structured logging configuration and a ``captured_logs`` fixture
- The seed Rate/Threshold Catalog (loaded once per session)
- In-memory ledgers and services wired with a deterministic clock
- SQLite in-memory sessions for repository round-trip tests
"""

import json
import logging
from datetime import datetime, timezone
from io import StringIO
from typing import Generator
from uuid import UUID, uuid4

import pytest
from sqlalchemy.orm import Session

from tax_config.catalog import RateCatalog
from tax_config.loader import load_seed
from tax_config.schema import TaxEngineConfig
from tax_kernel.db.engine import create_tables, drop_tables, init_engine_from_url, reset_engine
from tax_kernel.domain.clock import DeterministicClock
from tax_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from tax_modules.contributions import ContributionService, InMemoryContributionRepository
from tax_modules.declarations import DeclarationService, InMemoryDeclarationRepository
from tax_modules.losses import InMemoryLossRepository, LossLedger
from tax_modules.period_close import PeriodCloseService
from tax_modules.profiles import ClientTaxProfile, InMemoryClientProfileProvider
from tax_modules.vat import InMemoryVatRepository, VatService

TEST_ACTOR_ID = UUID("00000000-0000-0000-0000-000000000001")


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture tax_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, loss_ledger):
            loss_ledger.record_loss(...)
            logs = captured_logs()
            assert any(r["message"] == "loss_recorded" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("tax_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Catalog and configuration
# =============================================================================


@pytest.fixture(scope="session")
def seed_data():
    """The shipped YAML seed dataset, parsed once."""
    return load_seed()


@pytest.fixture
def catalog(seed_data, deterministic_clock) -> RateCatalog:
    """A fresh catalog per test; admin tests may mutate it."""
    return RateCatalog.from_seed(seed_data, clock=deterministic_clock)


@pytest.fixture
def config() -> TaxEngineConfig:
    return TaxEngineConfig()


# =============================================================================
# Identity and clock
# =============================================================================


@pytest.fixture
def test_actor_id() -> UUID:
    """Provide a consistent test actor ID."""
    return TEST_ACTOR_ID


@pytest.fixture
def client_id() -> UUID:
    return uuid4()


@pytest.fixture
def deterministic_clock() -> DeterministicClock:
    """Provide a deterministic clock for testing."""
    return DeterministicClock(datetime(2025, 3, 15, 12, 0, 0, tzinfo=timezone.utc))


# =============================================================================
# In-memory modules
# =============================================================================


@pytest.fixture
def profiles(client_id) -> InMemoryClientProfileProvider:
    """Profile provider holding an eligible, verified VAT payer."""
    provider = InMemoryClientProfileProvider()
    provider.put(ClientTaxProfile(
        client_id=client_id,
        white_list_verified_on=datetime(2025, 1, 10).date(),
    ))
    return provider


@pytest.fixture
def loss_repository() -> InMemoryLossRepository:
    return InMemoryLossRepository()


@pytest.fixture
def loss_ledger(loss_repository, deterministic_clock, config) -> LossLedger:
    return LossLedger(loss_repository, clock=deterministic_clock, config=config)


@pytest.fixture
def vat_repository() -> InMemoryVatRepository:
    return InMemoryVatRepository()


@pytest.fixture
def vat_service(vat_repository, catalog, profiles, deterministic_clock, config) -> VatService:
    return VatService(
        vat_repository, catalog, profiles=profiles, clock=deterministic_clock, config=config
    )


@pytest.fixture
def declaration_service(
    loss_ledger, catalog, profiles, deterministic_clock, config
) -> DeclarationService:
    return DeclarationService(
        InMemoryDeclarationRepository(),
        loss_ledger,
        catalog,
        profiles=profiles,
        clock=deterministic_clock,
        config=config,
    )


@pytest.fixture
def contribution_service(catalog, deterministic_clock, config) -> ContributionService:
    return ContributionService(
        InMemoryContributionRepository(), catalog, clock=deterministic_clock, config=config
    )


@pytest.fixture
def period_close_service(vat_service, declaration_service, deterministic_clock) -> PeriodCloseService:
    return PeriodCloseService(vat_service, declaration_service, clock=deterministic_clock)


# =============================================================================
# SQLite sessions
# =============================================================================


@pytest.fixture(scope="session")
def db_engine():
    """In-memory SQLite engine with every module table created."""
    engine = init_engine_from_url("sqlite:///:memory:")
    create_tables()
    yield engine
    drop_tables()
    reset_engine()


@pytest.fixture
def session(db_engine) -> Generator[Session, None, None]:
    """Session bound to an outer transaction that is rolled back after the test."""
    conn = db_engine.connect()
    trans = conn.begin()
    sess = Session(bind=conn, expire_on_commit=False)
    yield sess
    try:
        sess.close()
    finally:
        try:
            trans.rollback()
        finally:
            conn.close()
