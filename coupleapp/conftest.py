"""
Pytest configuration and shared fixtures.

Environment variables may come from .env.test; sensible defaults are set
here so settings load before any app module is imported.
"""

import os
import sqlite3

os.environ.setdefault("DATABASE_URL", "sqlite:///./test_coupleapp.db")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest
from fastapi.testclient import TestClient

# Clear settings cache before any app imports to ensure test env vars are used
from coupleapp.config import get_settings
get_settings.cache_clear()

from coupleapp.main import app
from coupleapp.storage import RecordStore


@pytest.fixture(scope="function")
def client():
    """Test client with fresh tables; the lifespan creates them, teardown drops them."""
    with TestClient(app) as test_client:
        yield test_client
        test_client.app.state.store.drop_all()


@pytest.fixture(scope="function")
def store():
    """A record store on the test database, independent of the HTTP app."""
    record_store = RecordStore(get_settings().DATABASE_URL, timeout_seconds=1.0)
    record_store.init_db()
    yield record_store
    record_store.drop_all()
    record_store.dispose()


@pytest.fixture(scope="function")
def write_locked(store):
    """
    Hold the database write lock from a second connection, and return a
    store on the same file that gives up waiting for it after 0.1s.
    """
    holder = sqlite3.connect(store.engine.url.database, isolation_level=None)
    holder.execute("BEGIN IMMEDIATE")
    impatient = RecordStore(get_settings().DATABASE_URL, timeout_seconds=0.1)
    yield impatient
    impatient.dispose()
    holder.execute("ROLLBACK")
    holder.close()
