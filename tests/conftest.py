"""
Pytest fixtures for the cost kernel test suite.

Provides:
- Structured-logging capture
- In-memory unit of work (tests/fakes.py) and services over it
- Database sessions for SQL repository tests
- A priced WBS builder shared by the certification tests

Environment Variables:
- DATABASE_URL: database for SQL tests.  Defaults to SQLite in memory;
  set a PostgreSQL URL to run the same tests (and the PostgreSQL-only
  concurrency tests) against a real server.
"""

import json
import logging
import os
from dataclasses import dataclass
from decimal import Decimal
from io import StringIO
from typing import Generator
from uuid import UUID, uuid4

import pytest
from sqlalchemy.orm import Session

from cost_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from cost_kernel.db.immutability import (
    register_immutability_listeners,
    unregister_immutability_listeners,
)
from cost_kernel.domain.clock import DeterministicClock
from cost_kernel.domain.wbs import WbsType
from cost_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from cost_kernel.services.budget_service import BudgetService
from cost_kernel.services.certification_service import CertificationService
from cost_kernel.services.sql_repositories import SqlUnitOfWork
from cost_kernel.services.wbs_service import WbsService
from tests.fakes import FakeUnitOfWork, InMemoryStore

# Test actor IDs for all test operations
TEST_ACTOR_ID = uuid4()
TEST_APPROVER_ID = uuid4()

DEFAULT_DATABASE_URL = "sqlite+pysqlite:///:memory:"


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
    Capture cost_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, certification_service):
            certification_service.approve(...)
            logs = captured_logs()
            assert any(r["message"] == "certification_approved" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("cost_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "postgres: mark test as requiring PostgreSQL"
    )


# =============================================================================
# Identity and clock fixtures
# =============================================================================


@pytest.fixture
def test_actor_id() -> UUID:
    """Provide a consistent test actor ID."""
    return TEST_ACTOR_ID


@pytest.fixture
def approver_id() -> UUID:
    return TEST_APPROVER_ID


@pytest.fixture
def project_id() -> UUID:
    return uuid4()


@pytest.fixture
def deterministic_clock():
    """Provide a deterministic clock for testing."""
    return DeterministicClock()


# =============================================================================
# In-memory unit of work
# =============================================================================


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def uow(store) -> FakeUnitOfWork:
    return FakeUnitOfWork(store)


@pytest.fixture
def wbs_service(uow, deterministic_clock) -> WbsService:
    return WbsService(uow, deterministic_clock)


@pytest.fixture
def budget_service(uow, deterministic_clock) -> BudgetService:
    return BudgetService(uow, deterministic_clock)


@pytest.fixture
def certification_service(uow, deterministic_clock) -> CertificationService:
    return CertificationService(uow, deterministic_clock)


# =============================================================================
# Priced project builder
# =============================================================================


@dataclass
class PricedProject:
    """A project with one phase, one activity and priced tasks in one version."""

    project_id: UUID
    phase_id: UUID
    activity_id: UUID
    task_ids: list[UUID]
    version_id: UUID
    budget_line_ids: list[UUID]

    @property
    def task_id(self) -> UUID:
        return self.task_ids[0]


def build_priced_project(
    uow,
    clock,
    actor_id: UUID,
    project_id: UUID | None = None,
    tasks: tuple = ((Decimal("100"), Decimal("10"), Decimal("0")),),
) -> PricedProject:
    """
    Create phase 1, activity 1.1 and one task per (quantity, unit_price,
    indirect_pct) under a single WORKING budget version.
    """
    project_id = project_id or uuid4()
    wbs = WbsService(uow, clock)
    budgets = BudgetService(uow, clock)

    phase = wbs.create_node(project_id, WbsType.PHASE, "Structure", actor_id=actor_id)
    activity = wbs.create_node(
        project_id, WbsType.ACTIVITY, "Concrete", parent_id=phase.id, actor_id=actor_id
    )
    version = budgets.create_version(project_id, actor_id=actor_id)

    task_ids, line_ids = [], []
    for i, (quantity, unit_price, indirect_pct) in enumerate(tasks, start=1):
        task = wbs.create_node(
            project_id,
            WbsType.TASK,
            f"Task {i}",
            parent_id=activity.id,
            unit="m3",
            quantity=quantity,
            actor_id=actor_id,
        )
        line = budgets.add_line(
            version.id, task.id, quantity, unit_price, indirect_pct, actor_id=actor_id
        )
        task_ids.append(task.id)
        line_ids.append(line.id)

    return PricedProject(
        project_id=project_id,
        phase_id=phase.id,
        activity_id=activity.id,
        task_ids=task_ids,
        version_id=version.id,
        budget_line_ids=line_ids,
    )


@pytest.fixture
def priced_project(uow, deterministic_clock, test_actor_id, project_id) -> PricedProject:
    """Single task: contractual quantity 100, sale unit price 10."""
    return build_priced_project(uow, deterministic_clock, test_actor_id, project_id)


@pytest.fixture
def certify(certification_service, test_actor_id, approver_id):
    """
    Create, fill, submit and approve a certification in one call.

    Usage::

        cert = certify(project, "2024-01", {project.task_id: Decimal("30")})
    """

    def _certify(project: PricedProject, period: str, progress: dict, approve: bool = True):
        cert = certification_service.create_certification(
            project.project_id, project.version_id, period, test_actor_id
        )
        for node_id, pct in progress.items():
            certification_service.add_or_update_line(cert.id, node_id, pct, test_actor_id)
        certification_service.submit(cert.id, test_actor_id)
        if approve:
            return certification_service.approve(cert.id, approver_id)
        return certification_service.get_certification(cert.id)

    return _certify


# =============================================================================
# Database fixtures
# =============================================================================


def get_database_url() -> str:
    """Get database URL from environment, or use in-memory SQLite."""
    return os.environ.get("DATABASE_URL", DEFAULT_DATABASE_URL)


def is_postgres_url() -> bool:
    return get_database_url().startswith("postgresql")


@pytest.fixture(scope="session")
def db_engine():
    """Single engine for the entire test session."""
    eng = init_engine_from_url(get_database_url(), echo=False, pool_size=10, max_overflow=10)
    yield eng
    reset_engine()


@pytest.fixture(scope="session")
def db_tables(db_engine):
    """Create all tables once per session; immutability listeners stay active."""
    drop_tables()
    create_tables()
    register_immutability_listeners()
    yield
    unregister_immutability_listeners()
    drop_tables()


@pytest.fixture(scope="function")
def session(db_tables, db_engine) -> Generator[Session, None, None]:
    """Provide a database session for testing.

    Uses the SQLAlchemy 2.0 ``join_transaction_mode`` pattern:
    - Opens a dedicated connection with an outer transaction
    - Creates a session that *joins* the outer transaction
    - Any ``session.commit()`` inside the test releases a savepoint
    - At teardown the outer transaction is rolled back, undoing ALL data
      changes made during the test
    """
    conn = db_engine.connect()
    trans = conn.begin()
    sess = Session(bind=conn, join_transaction_mode="create_savepoint", expire_on_commit=False)
    yield sess
    try:
        sess.close()
    finally:
        try:
            trans.rollback()
        finally:
            conn.close()


@pytest.fixture
def sql_uow(session) -> SqlUnitOfWork:
    return SqlUnitOfWork(session)


@pytest.fixture
def session_factory(db_tables):
    """Real-commit sessions for PostgreSQL concurrency tests."""
    if not is_postgres_url():
        pytest.skip("requires PostgreSQL (set DATABASE_URL)")
    factory = get_session_factory()
    yield factory
    drop_tables()
    create_tables()
