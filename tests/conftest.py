"""Shared test fixtures and configuration.

Sets up fake environment variables so src.config doesn't sys.exit(),
and provides common fixtures like a temp DB.
"""

import os

# Patch env vars BEFORE any src imports
os.environ.setdefault("TELEGRAM_BOT_TOKEN", "fake-token-for-tests")
os.environ.setdefault("ADMIN_USER_IDS", "12345")
os.environ.setdefault("DATABASE_PATH", "data/test-keepintouch.db")
os.environ.setdefault("TIMEZONE", "UTC")
os.environ.setdefault("ENABLE_SCHEDULER", "false")

from datetime import datetime

import pytest

NOW = datetime(2026, 3, 10, 9, 0)


@pytest.fixture
def tmp_db_path(tmp_path):
    """Return a temporary SQLite DB path."""
    return str(tmp_path / "test_keepintouch.db")


@pytest.fixture
def storage(tmp_db_path):
    """Return a Storage bundle backed by a temp file."""
    from src.data.db import Storage
    return Storage.open(tmp_db_path)


@pytest.fixture
def seeded_storage(storage):
    """Storage with the default achievement catalog loaded."""
    from src.data.seeds import seed_achievements
    seed_achievements(storage.achievements)
    return storage


@pytest.fixture
def user(storage):
    """A registered user with no progress."""
    return storage.users.add_user(1001, "Alice", NOW)


@pytest.fixture
def service(storage):
    from src.core.action_service import ActionService
    from src.core.locks import UserLocks
    return ActionService(storage, UserLocks())
