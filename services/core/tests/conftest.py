"""Pytest configuration and fixtures for Inboxsync Core tests.

This module provides fixtures for:
- Database: SQLite in-memory with working SAVEPOINTs
- Settings: safe defaults for tests
- Mocks: provider adapter and httpx client
- Seed data: a connected account
"""

import tempfile
from collections.abc import Generator
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import StaticPool, create_engine, event
from sqlalchemy.orm import Session, sessionmaker

from inboxsync_core.config import Settings, get_settings
from inboxsync_core.domain.models import Account, Base


# -----------------------------------------------------------------------------
# Test Settings
# -----------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def reset_settings_cache():
    """Clear the cached settings so env overrides apply per test."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def test_settings() -> Settings:
    """Create test settings with safe defaults."""
    return Settings(
        environment="test",
        database_url="sqlite+pysqlite:///:memory:",
        redis_url="redis://localhost:6379/15",  # Use DB 15 for tests
        celery_broker_url="memory://",
        celery_result_backend="cache+memory://",
        attachments_path="/tmp/inboxsync_test/attachments",
        provider_api_key="test-api-key",
        provider_dsn="api.test.local:13111",
        sync_warmup_seconds=0,
        keyed_lock_backend="local",
        log_json=False,
    )


# -----------------------------------------------------------------------------
# Synchronous Database Fixtures
# -----------------------------------------------------------------------------


@pytest.fixture
def sync_engine():
    """Create a synchronous SQLite in-memory engine for testing."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_conn, connection_record):
        # Let SQLAlchemy emit BEGIN itself; pysqlite's implicit transactions
        # break SAVEPOINT handling
        dbapi_conn.isolation_level = None
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    # SQLite only supports autoincrement on INTEGER PRIMARY KEY
    from sqlalchemy.dialects import sqlite
    original_visit = sqlite.dialect.type_compiler_cls.visit_BIGINT
    sqlite.dialect.type_compiler_cls.visit_BIGINT = lambda self, type_, **kw: "INTEGER"

    Base.metadata.create_all(bind=engine)

    sqlite.dialect.type_compiler_cls.visit_BIGINT = original_visit

    yield engine

    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def sync_session_factory(sync_engine) -> sessionmaker[Session]:
    """Create a synchronous session factory."""
    return sessionmaker(
        bind=sync_engine,
        autocommit=False,
        autoflush=False,
    )


@pytest.fixture
def db_session(sync_session_factory) -> Generator[Session, None, None]:
    """Create a synchronous database session for testing."""
    session = sync_session_factory()
    try:
        yield session
        # A test that provoked a failed flush leaves the transaction inactive
        if session.is_active:
            session.commit()
        else:
            session.rollback()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


# -----------------------------------------------------------------------------
# Mock Fixtures for External Services
# -----------------------------------------------------------------------------


@pytest.fixture
def mock_provider() -> AsyncMock:
    """Mock provider adapter. Every API method is an AsyncMock."""
    provider = AsyncMock()
    provider.provider_id = "unipile"
    return provider


@pytest.fixture
def mock_httpx_client() -> Generator[AsyncMock, None, None]:
    """Mock httpx.AsyncClient for testing external HTTP calls."""
    with patch("httpx.AsyncClient") as mock:
        mock_instance = AsyncMock()
        mock.return_value.__aenter__.return_value = mock_instance
        mock.return_value.__aexit__.return_value = None
        yield mock_instance


@pytest.fixture
def temp_storage_path() -> Generator[str, None, None]:
    """Create a temporary directory for blob storage."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


# -----------------------------------------------------------------------------
# Test Data Helpers
# -----------------------------------------------------------------------------


@pytest.fixture
def account(db_session) -> Account:
    """A connected account whose owner is provider user ``owner_1``."""
    account = Account(
        provider="LINKEDIN",
        external_account_id="acc_1",
        owner="user-123",
        status="connected",
        owner_provider_id="owner_1",
    )
    db_session.add(account)
    db_session.flush()
    return account
