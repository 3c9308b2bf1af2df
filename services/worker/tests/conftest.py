"""Pytest configuration and fixtures for worker tests.

These fixtures enable testing Celery tasks without requiring:
- Running Redis/Celery
- A MySQL server (tasks run against in-memory SQLite)
- External provider APIs
"""

import os
import sys
from pathlib import Path
from typing import Any, Generator
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy import StaticPool, create_engine, event
from sqlalchemy.orm import Session, sessionmaker

# Add worker package to path
worker_path = Path(__file__).parent.parent
sys.path.insert(0, str(worker_path))

# Set test environment variables before importing celery_app
os.environ.setdefault("CELERY_BROKER_URL", "memory://")
os.environ.setdefault("CELERY_RESULT_BACKEND", "cache+memory://")
os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("ATTACHMENTS_PATH", "/tmp/inboxsync_test_attachments")
os.environ.setdefault("SYNC_WARMUP_SECONDS", "0")
os.environ.setdefault("LOG_JSON", "false")
os.environ.setdefault("KEYED_LOCK_BACKEND", "local")


@pytest.fixture(scope="session")
def celery_config() -> dict[str, Any]:
    """Celery configuration for testing."""
    return {
        "broker_url": "memory://",
        "result_backend": "cache+memory://",
        "task_always_eager": True,
        "task_eager_propagates": True,
    }


@pytest.fixture
def mock_celery_app():
    """Celery app configured for eager execution."""
    from inboxsync_worker.celery_app import app

    app.conf.update(
        task_always_eager=True,
        task_eager_propagates=True,
    )
    return app


@pytest.fixture
def session_factory() -> Generator[sessionmaker[Session], None, None]:
    """In-memory SQLite session factory patched in as the task database."""
    from inboxsync_core.domain.models import Base

    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_conn, connection_record):
        dbapi_conn.isolation_level = None
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    from sqlalchemy.dialects import sqlite
    original_visit = sqlite.dialect.type_compiler_cls.visit_BIGINT
    sqlite.dialect.type_compiler_cls.visit_BIGINT = lambda self, type_, **kw: "INTEGER"
    Base.metadata.create_all(bind=engine)
    sqlite.dialect.type_compiler_cls.visit_BIGINT = original_visit

    factory = sessionmaker(bind=engine, autocommit=False, autoflush=False)

    with patch("inboxsync_core.infra.db.get_sync_session_factory", return_value=factory):
        yield factory

    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(session_factory) -> Generator[Session, None, None]:
    """A separate session for seeding and inspecting task results."""
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def connected_account(db):
    """A connected account with external id ``acc_1``."""
    from inboxsync_core.domain.models import Account

    account = Account(
        provider="LINKEDIN",
        external_account_id="acc_1",
        status="connected",
        owner_provider_id="owner_1",
    )
    db.add(account)
    db.commit()
    return account


@pytest.fixture
def mock_provider_adapter() -> Generator[AsyncMock, None, None]:
    """Provider adapter returned by the worker runtime builder."""
    adapter = AsyncMock()
    adapter.provider_id = "unipile"

    with patch("inboxsync_worker.util.runtime.build_provider", return_value=adapter):
        yield adapter


@pytest.fixture
def mock_send_task(mock_celery_app) -> Generator[MagicMock, None, None]:
    """Capture tasks enqueued by other tasks."""
    with patch.object(mock_celery_app, "send_task") as send_task:
        send_task.return_value = MagicMock(id="task-123")
        yield send_task
