"""
Pytest fixtures for the approval workflow test suite.

Provides:
- Structured logging setup and a ``captured_logs`` helper
- A fresh database per test (SQLite file under tmp_path by default)
- Sessions, a session factory for threaded tests, a deterministic clock
- An in-memory user directory with a standard cast of users
- A recording notification sink and template / workflow factories

Environment Variables:
- DATABASE_URL: PostgreSQL connection URL.  When set, tests run against
  PostgreSQL (tables are dropped and recreated per test) and tests marked
  ``postgres`` are enabled.
"""

import json
import logging
import os
from dataclasses import dataclass
from io import StringIO
from uuid import UUID, uuid4

import pytest

from approval_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from approval_kernel.domain.clock import DeterministicClock
from approval_kernel.domain.directory import (
    InMemoryUserDirectory,
    StaticPermissionOracle,
    UserRecord,
)
from approval_kernel.domain.workflow import (
    ApproverCandidate,
    FieldDescriptor,
    FieldKind,
    LevelDefinition,
)
from approval_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from approval_kernel.services.notification_service import (
    InMemoryNotificationSink,
    NotificationDispatcher,
)
from approval_kernel.services.template_service import TemplateService
from approval_kernel.services.workflow_service import ApprovalWorkflowService

HR_ROLE = "HR_MANAGER"


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
    Capture approval_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, workflow):
            workflow.create_request(...)
            logs = captured_logs()
            assert any(r["message"] == "request_created" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("approval_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Database
# =============================================================================


def get_database_url(tmp_path) -> str:
    """DATABASE_URL if set, otherwise a SQLite file private to the test."""
    return os.environ.get("DATABASE_URL") or f"sqlite:///{tmp_path / 'approvals.db'}"


def pytest_collection_modifyitems(config, items):
    if os.environ.get("DATABASE_URL"):
        return
    skip_pg = pytest.mark.skip(reason="needs DATABASE_URL pointing at PostgreSQL")
    for item in items:
        if "postgres" in item.keywords:
            item.add_marker(skip_pg)


@pytest.fixture
def db_engine(tmp_path):
    """A freshly created schema for one test."""
    engine = init_engine_from_url(
        get_database_url(tmp_path),
        pool_size=20,
        max_overflow=10,
        pool_timeout=10,
    )
    drop_tables()
    create_tables()
    yield engine
    drop_tables()
    reset_engine()


@pytest.fixture
def session(db_engine):
    """
    Session for single-threaded tests.

    Services only flush; the test's work is rolled back at the end.
    On SQLite the session holds the write lock once it has touched the
    database, so threaded tests use ``session_factory`` instead.
    """
    sess = get_session()
    yield sess
    sess.rollback()
    sess.close()


@pytest.fixture
def session_factory(db_engine):
    """Factory for per-thread sessions (each commits its own work)."""
    return get_session_factory()


@pytest.fixture
def deterministic_clock():
    return DeterministicClock()


# =============================================================================
# Users and collaborators
# =============================================================================


@dataclass
class Cast:
    """Standard users of the workflow tests."""

    requester: UUID
    supervisor: UUID
    u1: UUID
    u2: UUID
    hr: UUID
    outsider: UUID
    auditor: UUID


@pytest.fixture
def cast():
    supervisor = uuid4()
    return Cast(
        requester=uuid4(),
        supervisor=supervisor,
        u1=uuid4(),
        u2=uuid4(),
        hr=uuid4(),
        outsider=uuid4(),
        auditor=uuid4(),
    )


@pytest.fixture
def directory(cast):
    return InMemoryUserDirectory([
        UserRecord(id=cast.requester, first_supervisor_id=cast.supervisor),
        UserRecord(id=cast.supervisor),
        UserRecord(id=cast.u1),
        UserRecord(id=cast.u2),
        UserRecord(id=cast.hr, role=HR_ROLE),
        UserRecord(id=cast.outsider),
        UserRecord(id=cast.auditor, role="AUDITOR"),
    ])


@pytest.fixture
def permission_oracle(cast):
    oracle = StaticPermissionOracle()
    oracle.grant(cast.auditor, "APPROVALS", "READ")
    oracle.grant(cast.auditor, "APPROVALS", "READ_ALL")
    return oracle


@pytest.fixture
def sink():
    return InMemoryNotificationSink()


@pytest.fixture
def dispatcher(sink):
    return NotificationDispatcher([sink])


@pytest.fixture
def template_service(session, deterministic_clock):
    return TemplateService(session, deterministic_clock)


@pytest.fixture
def workflow(session, directory, deterministic_clock, dispatcher, permission_oracle):
    return ApprovalWorkflowService(
        session,
        directory,
        clock=deterministic_clock,
        dispatcher=dispatcher,
        permission_oracle=permission_oracle,
    )


# =============================================================================
# Template factories
# =============================================================================


def chain(*approvers, scope=None) -> tuple[LevelDefinition, ...]:
    """
    Build levels 1..n; each argument is one level's candidate list (or a
    single candidate).
    """
    levels = []
    for number, candidates in enumerate(approvers, start=1):
        if isinstance(candidates, ApproverCandidate):
            candidates = [candidates]
        ordered = tuple(
            ApproverCandidate(c.kind, c.user_id, c.role, sort_order=i)
            for i, c in enumerate(candidates)
        )
        kwargs = {"scope": scope} if scope is not None else {}
        levels.append(LevelDefinition(
            level_number=number,
            candidates=ordered,
            level_name=f"Level {number}",
            **kwargs,
        ))
    return tuple(levels)


LEAVE_FIELDS = (
    FieldDescriptor(
        name="leave_type",
        label="Leave Type",
        kind=FieldKind.SELECT,
        required=True,
        options=("ANNUAL", "SICK"),
        sort_order=0,
    ),
    FieldDescriptor(
        name="start_date",
        label="Start Date",
        kind=FieldKind.DATE,
        required=True,
        sort_order=1,
    ),
    FieldDescriptor(
        name="reason",
        label="Reason",
        kind=FieldKind.TEXTAREA,
        sort_order=2,
    ),
)

LEAVE_FORM = {"leave_type": "ANNUAL", "start_date": "2025-05-12"}


@pytest.fixture
def make_template(template_service):
    """
    Factory: ``make_template(levels, name=..., sla=24, fields=LEAVE_FIELDS)``.
    """
    counter = {"n": 0}

    def _make(levels=(), *, name=None, display_name="Leave Request", sla=24, fields=LEAVE_FIELDS):
        counter["n"] += 1
        return template_service.create_template(
            name=name or f"leave_request_{counter['n']}",
            display_name=display_name,
            default_sla_hours=sla,
            fields=fields,
            levels=levels,
        )

    return _make


@pytest.fixture
def single_level_template(make_template, cast):
    """One global level with fixed user U1, 24h SLA."""
    return make_template(chain(ApproverCandidate.fixed_user(cast.u1)))


@pytest.fixture
def two_level_template(make_template, cast):
    """U1 then U2."""
    return make_template(chain(
        ApproverCandidate.fixed_user(cast.u1),
        ApproverCandidate.fixed_user(cast.u2),
    ))
