"""
Pytest fixtures for testing
"""
import threading
from concurrent.futures import Executor, Future, ThreadPoolExecutor

import pytest
from sqlalchemy import create_engine, JSON
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool
from sqlalchemy.dialects.postgresql import JSONB

from agencyflow.infrastructure.db.session import Base
import agencyflow.infrastructure.db.models  # noqa: F401  (registers tables on Base.metadata)


@pytest.fixture
def db_engine():
    """Create in-memory SQLite engine for tests, with JSONB→JSON mapping."""
    # one shared connection, so sessions opened from other threads (TestClient) see the data
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # SQLite doesn't support JSONB, remap to JSON for tests
    for table in Base.metadata.tables.values():
        for col in table.columns:
            if isinstance(col.type, JSONB):
                col.type = JSON()
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(bind=db_engine)


@pytest.fixture
def db_session(session_factory) -> Session:
    """Create database session for tests"""
    session = session_factory()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


class ImmediateExecutor(Executor):
    """Runs submitted work inline so notification fan-out is observable in tests."""

    def submit(self, fn, /, *args, **kwargs):
        future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as exc:
            future.set_exception(exc)
        return future


class BlockingTransport:
    """Holds delivery until released, so callers can be checked for not waiting on it."""
    channel = "blocking"

    def __init__(self):
        self.started = threading.Event()
        self.release = threading.Event()
        self.delivered = []

    def deliver(self, db, note, recipients):
        self.started.set()
        self.release.wait(timeout=5)
        self.delivered.append(note)
        return len(recipients)


class RecordingDispatcher:
    """Stands in for NotificationDispatcher: keeps every dispatched notification."""

    def __init__(self):
        self.sent = []

    def dispatch(self, note):
        self.sent.append(note)
        return None

    def of_kind(self, kind):
        return [n for n in self.sent if n.kind == kind]


@pytest.fixture
def immediate_executor():
    return ImmediateExecutor()


@pytest.fixture
def recording_dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def blocking_transport():
    return BlockingTransport()


@pytest.fixture
def thread_executor(blocking_transport):
    """A real pool; released and joined before the database fixtures are torn down."""
    executor = ThreadPoolExecutor(max_workers=1)
    yield executor
    blocking_transport.release.set()
    executor.shutdown(wait=True)
