"""
Pytest fixtures for the colony ledger test suite.

Provides:
- A file-backed SQLite database per test (real commits, real threads)
- A seeded colony: three domes and three resources
- A LedgerEngine on a deterministic clock
- Structured log capture

Every transaction on SQLite begins IMMEDIATE, so a test that keeps a raw
session open while calling the engine will block the engine until the
session ends.  Close or commit raw sessions before driving the engine.
"""

import json
import logging
from dataclasses import dataclass
from decimal import Decimal
from io import StringIO
from typing import Generator
from uuid import UUID, uuid4

import pytest
from sqlalchemy.orm import Session

from colony_ledger.db.engine import (
    create_tables,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
    session_scope,
)
from colony_ledger.db.immutability import (
    register_immutability_listeners,
    unregister_immutability_listeners,
)
from colony_ledger.domain.clock import DeterministicClock
from colony_ledger.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from colony_ledger.models.registry import (
    Dome,
    DomeType,
    Resource,
    ResourceCategory,
)
from colony_ledger.services.alert_notifier import CallbackAlertNotifier
from colony_ledger.services.ledger_engine import EngineSettings, LedgerEngine


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
    Capture colony_ledger logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, ledger_engine):
            ledger_engine.transfer_resources(...)
            logs = captured_logs()
            assert any(r["message"] == "transfer_completed" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("colony_ledger")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture
def database_url(tmp_path) -> str:
    return f"sqlite:///{tmp_path / 'colony_ledger.db'}"


@pytest.fixture
def db_engine(database_url):
    """Fresh SQLite database with all tables and immutability listeners."""
    engine = init_engine_from_url(
        database_url,
        pool_size=10,
        max_overflow=20,
        sqlite_busy_timeout=30.0,
    )
    create_tables()
    register_immutability_listeners()
    yield engine
    unregister_immutability_listeners()
    reset_engine()


@pytest.fixture
def session_factory(db_engine):
    return get_session_factory()


@pytest.fixture
def session(session_factory) -> Generator[Session, None, None]:
    """A raw session for store-level tests.  Rolled back at teardown."""
    sess = session_factory()
    yield sess
    sess.rollback()
    sess.close()


# =============================================================================
# Colony fixtures
# =============================================================================


@dataclass(frozen=True)
class SeededColony:
    dome_a: UUID
    dome_b: UUID
    dome_c: UUID
    water: UUID
    oxygen: UUID
    food: UUID


@pytest.fixture
def colony(db_engine) -> SeededColony:
    """Three domes and three resources, committed."""
    seeded = SeededColony(
        dome_a=uuid4(),
        dome_b=uuid4(),
        dome_c=uuid4(),
        water=uuid4(),
        oxygen=uuid4(),
        food=uuid4(),
    )
    with session_scope() as sess:
        sess.add_all([
            Dome(id=seeded.dome_a, code="ALPHA", name="Alpha Habitat",
                 dome_type=DomeType.HABITATION.value),
            Dome(id=seeded.dome_b, code="BETA", name="Beta Greenhouse",
                 dome_type=DomeType.AGRICULTURE.value),
            Dome(id=seeded.dome_c, code="GAMMA", name="Gamma Works",
                 dome_type=DomeType.INDUSTRIAL.value),
            Resource(id=seeded.water, code="WATER", name="Water", unit="L",
                     category=ResourceCategory.LIFE_SUPPORT.value),
            Resource(id=seeded.oxygen, code="OXYGEN", name="Oxygen", unit="kg",
                     category=ResourceCategory.LIFE_SUPPORT.value),
            Resource(id=seeded.food, code="FOOD", name="Ration packs", unit="kg",
                     category=ResourceCategory.SUPPLIES.value),
        ])
    return seeded


@pytest.fixture
def deterministic_clock():
    """Provide a deterministic clock for testing."""
    return DeterministicClock()


@pytest.fixture
def breaches():
    """List that receives every ThresholdBreach sent to the notifier."""
    return []


@pytest.fixture
def ledger_engine(session_factory, colony, deterministic_clock, breaches) -> LedgerEngine:
    """A LedgerEngine over the seeded colony, recording breaches."""
    return LedgerEngine(
        session_factory,
        clock=deterministic_clock,
        settings=EngineSettings(lock_timeout_seconds=30.0),
        alert_notifier=CallbackAlertNotifier(breaches.append),
    )


@pytest.fixture
def quantity_of(ledger_engine):
    """Current quantity of a key, zero if it has no stock row."""

    def _quantity(dome_id: UUID, resource_id: UUID) -> Decimal:
        row = ledger_engine.get_stock(dome_id, resource_id)
        return row.quantity if row is not None else Decimal("0")

    return _quantity


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "postgres: mark test as requiring PostgreSQL"
    )
    config.addinivalue_line(
        "markers", "slow_locks: mark test as potentially waiting for stock locks"
    )
