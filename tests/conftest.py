"""Shared fixtures: module-scoped history DB template avoids per-test init_db."""

import shutil

import pytest

from smartdraw.elements.identity import IdentityStabilizer
from smartdraw.storage.history_store import HistoryStore


@pytest.fixture(scope="module")
def _module_db_path(tmp_path_factory):
    """Create one initialized history DB per test module as a template."""
    db_path = tmp_path_factory.mktemp("db") / "test.db"
    s = HistoryStore(db_path)
    s.init_db()
    s._conn.execute("PRAGMA wal_checkpoint(TRUNCATE)")
    s.close()
    return db_path


@pytest.fixture
def db_path(tmp_path, _module_db_path):
    """Copy the template DB into a per-test tmp dir."""
    path = tmp_path / "test.db"
    shutil.copy2(_module_db_path, path)
    return path


@pytest.fixture
def history(db_path):
    """Per-test HistoryStore backed by a pre-initialized DB copy."""
    store = HistoryStore(db_path)
    yield store
    store.close()


@pytest.fixture
def stabilizer():
    return IdentityStabilizer("positional")
