"""
Pytest configuration and fixtures for the gateway tests
"""
import pytest
import os
import tempfile
from unittest.mock import MagicMock, AsyncMock
from sqlalchemy.orm import sessionmaker

from db import get_engine, init_database
from services.event_log_service import EventLogService

# Fake protocol connection fixtures
from tests.fixtures.protocol_fixtures import (
    fake_protocol_client,
)


@pytest.fixture(scope="function")
def test_db():
    """Create a temporary test database for each test, returns a session factory"""
    # Create temporary database file
    db_fd, db_path = tempfile.mkstemp(suffix='.db')

    # Create engine, tables and default settings
    engine = get_engine(db_path)
    init_database(engine)

    SessionLocal = sessionmaker(bind=engine)

    yield SessionLocal

    # Cleanup
    engine.dispose()
    os.close(db_fd)
    os.unlink(db_path)


@pytest.fixture(scope="function")
def event_log(test_db):
    """EventLogService backed by the temporary database"""
    return EventLogService(test_db)


@pytest.fixture(scope="function")
def session_dir(tmp_path):
    """Temporary SESSION_DIR"""
    path = tmp_path / "sessions"
    path.mkdir()
    return str(path)


@pytest.fixture(scope="function")
def push():
    """Push channel double: records emit(event, data, room=None) calls"""
    channel = MagicMock()
    channel.emit = AsyncMock()
    return channel
