"""Pytest configuration and fixtures for Topicdesk Core tests.

This module provides fixtures for:
- Database: SQLite in-memory engine shared through a StaticPool
- Transport: an in-memory fake of the messaging platform
- HTTP client: AsyncClient for FastAPI testing
- Mocks: Celery and httpx
"""

from collections.abc import AsyncGenerator, Generator
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy import StaticPool, create_engine
from sqlalchemy.orm import Session, sessionmaker

from topicdesk_core.config import Settings
from topicdesk_core.domain.models import Base
from topicdesk_core.domain.services.admin_sessions import AdminSessionStore
from topicdesk_core.domain.services.gatekeeping import GatekeepingPipeline
from topicdesk_core.domain.services.relay import RelayEngine
from topicdesk_core.domain.services.rules import ConfigRepository
from topicdesk_core.domain.services.sessions import SessionStore
from tests.factories import ADMIN_GROUP_ID, ADMIN_ID, FakeTransport


# -----------------------------------------------------------------------------
# Test Settings
# -----------------------------------------------------------------------------


@pytest.fixture
def test_settings() -> Settings:
    """Create test settings with safe defaults."""
    return Settings(
        database_url="sqlite+pysqlite:///:memory:",
        celery_broker_url="memory://",
        celery_result_backend="cache+memory://",
        bot_token="123456:test-token",
        admin_group_id=ADMIN_GROUP_ID,
        admin_ids=ADMIN_ID,
        webhook_secret=None,
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

    Base.metadata.create_all(bind=engine)

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
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


# -----------------------------------------------------------------------------
# Service Fixtures
# -----------------------------------------------------------------------------


@pytest.fixture
def transport() -> FakeTransport:
    """In-memory messaging platform."""
    return FakeTransport()


@pytest.fixture
def store(db_session) -> SessionStore:
    return SessionStore(db_session)


@pytest.fixture
def config_repo(db_session, test_settings) -> ConfigRepository:
    return ConfigRepository(db_session, test_settings)


@pytest.fixture
def edit_sessions(db_session) -> AdminSessionStore:
    return AdminSessionStore(db_session)


@pytest.fixture
def pipeline(store, config_repo) -> GatekeepingPipeline:
    return GatekeepingPipeline(store, config_repo)


@pytest.fixture
def relay(store, transport) -> RelayEngine:
    return RelayEngine(store, transport, ADMIN_GROUP_ID)


# -----------------------------------------------------------------------------
# FastAPI Test Client Fixtures
# -----------------------------------------------------------------------------


@pytest.fixture
def mock_celery_app() -> MagicMock:
    """Celery app stand-in that records enqueued tasks."""
    celery_app = MagicMock()
    celery_app.send_task.return_value = MagicMock(id="test-task-id")
    return celery_app


@pytest.fixture
def test_app(test_settings, mock_celery_app) -> Generator[FastAPI, None, None]:
    """Create a FastAPI test application with test settings and Celery override."""
    from topicdesk_core.api.deps import get_celery_app
    from topicdesk_core.config import get_settings
    from topicdesk_core.main import app

    app.state.settings = test_settings
    app.dependency_overrides[get_settings] = lambda: test_settings
    app.dependency_overrides[get_celery_app] = lambda: mock_celery_app

    yield app

    # Clean up overrides
    app.dependency_overrides.clear()


@pytest.fixture
async def client(test_app) -> AsyncGenerator[AsyncClient, None]:
    """Create an async HTTP client for testing FastAPI endpoints."""
    async with AsyncClient(
        transport=ASGITransport(app=test_app),
        base_url="http://test",
    ) as ac:
        yield ac


# -----------------------------------------------------------------------------
# Mock Fixtures for External Services
# -----------------------------------------------------------------------------


@pytest.fixture
def mock_httpx_client() -> Generator[AsyncMock, None, None]:
    """Mock httpx.AsyncClient for testing Bot API calls."""
    with patch("httpx.AsyncClient") as mock:
        mock_instance = AsyncMock()
        mock.return_value.__aenter__.return_value = mock_instance
        mock.return_value.__aexit__.return_value = None

        # Default response
        mock_response = MagicMock()
        mock_response.status_code = 200
        mock_response.json.return_value = {"ok": True, "result": True}
        mock_response.text = ""
        mock_instance.post.return_value = mock_response

        yield mock_instance
