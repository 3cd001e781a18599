"""Pytest configuration and fixtures for worker tests.

These fixtures enable testing Celery tasks without requiring:
- Running Redis/Celery
- A database server
- The Telegram Bot API
"""

import os
import sys
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock

import pytest

# Add worker package to path
worker_path = Path(__file__).parent.parent
sys.path.insert(0, str(worker_path))

# Set test environment variables before importing celery_app
os.environ.setdefault("CELERY_BROKER_URL", "memory://")
os.environ.setdefault("CELERY_RESULT_BACKEND", "cache+memory://")
os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("LOG_JSON", "false")


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
    """Celery app configured for eager (synchronous) execution."""
    from topicdesk_worker.celery_app import app

    app.conf.update(
        task_always_eager=True,
        task_eager_propagates=True,
    )
    return app


@pytest.fixture
def mock_db_session():
    """Create a mock database session."""
    session = MagicMock()
    session.commit = MagicMock()
    session.rollback = MagicMock()
    session.close = MagicMock()
    return session


@pytest.fixture
def mock_settings():
    """Create mock application settings."""
    settings = MagicMock()
    settings.bot_token = "123456:test-token"
    settings.telegram_api_base = "https://api.telegram.org"
    settings.telegram_timeout_seconds = 10.0
    settings.admin_group_id = "-1001234567890"
    return settings

