"""
Pytest fixtures for the mortuary billing test suite.

Provides:
- A file-backed SQLite database per test (SAVEPOINTs enabled by the engine)
- A deterministic clock
- Case / coffin factories
- Captured JSON log records

Environment Variables:
- DATABASE_URL: run against another database (e.g. PostgreSQL) instead of
  the per-test SQLite file.  Tables are dropped and recreated per test.
"""

import json
import logging
import os
from datetime import datetime, timezone
from decimal import Decimal
from io import StringIO
from typing import Generator
from uuid import uuid4

import pytest
from sqlalchemy.orm import Session

from mortuary_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from mortuary_kernel.db.immutability import (
    register_immutability_listeners,
    unregister_immutability_listeners,
)
from mortuary_kernel.domain.clock import DeterministicClock
from mortuary_kernel.domain.policy import BillingPolicy
from mortuary_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from mortuary_kernel.models.coffin import Coffin
from mortuary_kernel.services.case_service import CaseService

# Test actor ID for all test operations
TEST_ACTOR_ID = uuid4()

# Admission instant shared by most scenarios.
T0 = datetime(2024, 3, 1, 8, 0, 0, tzinfo=timezone.utc)


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
    Capture mortuary_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, reconciler):
            reconciler.reconcile_case("MC-001", T0)
            logs = captured_logs()
            assert any(r["message"] == "case_reconciled" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("mortuary_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Database
# =============================================================================


@pytest.fixture
def db_engine(tmp_path):
    """Fresh database per test.

    SQLite files are cheap, and a file (rather than ``:memory:``) lets
    separate sessions -- scheduler, reconciler, test -- see each other's
    commits.
    """
    url = os.environ.get("DATABASE_URL") or f"sqlite:///{tmp_path / 'billing.db'}"
    engine = init_engine_from_url(url)
    drop_tables()
    create_tables()
    register_immutability_listeners()
    yield engine
    unregister_immutability_listeners()
    drop_tables()
    reset_engine()


@pytest.fixture
def session_factory(db_engine):
    return get_session_factory()


@pytest.fixture
def session(session_factory) -> Generator[Session, None, None]:
    """A session for single-session tests; rolled back at teardown."""
    sess = session_factory()
    yield sess
    sess.rollback()
    sess.close()


# =============================================================================
# Domain fixtures
# =============================================================================


@pytest.fixture
def t0() -> datetime:
    return T0


@pytest.fixture
def clock() -> DeterministicClock:
    return DeterministicClock(T0)


@pytest.fixture
def policy() -> BillingPolicy:
    return BillingPolicy(persistence_backoff_seconds=0)


@pytest.fixture
def test_actor_id():
    return TEST_ACTOR_ID


@pytest.fixture
def coffin_factory(session):
    """Insert a catalog coffin and return it."""

    def _create(
        custom_id: str = "CF-001",
        unit_price: str = "25000",
        currency: str = "KES",
        stock_quantity: int = 5,
        fx_rate_kes_per_usd: str | None = None,
        coffin_type: str = "Standard",
    ) -> Coffin:
        coffin = Coffin(
            custom_id=custom_id,
            coffin_type=coffin_type,
            material="Mahogany",
            unit_price=Decimal(unit_price),
            currency=currency,
            fx_rate_kes_per_usd=Decimal(fx_rate_kes_per_usd) if fx_rate_kes_per_usd else None,
            stock_quantity=stock_quantity,
            created_by_id=TEST_ACTOR_ID,
        )
        session.add(coffin)
        session.flush()
        return coffin

    return _create


@pytest.fixture
def case_factory(session, clock, policy):
    """Register a case through CaseService; admitted at T0 unless overridden."""
    service = CaseService(session, clock=clock, policy=policy, actor_id=TEST_ACTOR_ID)

    def _create(case_id: str = "MC-001", full_name: str = "John Doe", **terms):
        terms.setdefault("admitted_at", T0)
        return service.register_case(case_id, full_name, **terms)

    return _create
