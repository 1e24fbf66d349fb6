# =============================================================================
# tests/conftest.py
# Pytest Configuration and Fixtures
# =============================================================================

import sys
import threading
from typing import Any, Dict, List, Optional, Set
from unittest.mock import MagicMock

import pytest

from upp_core.config import OfflineSettings
from upp_core.errors import RemoteOperationError
from upp_core.offline import (
    ConnectivityMonitor,
    LocalStore,
    MutationQueue,
    NotificationChannel,
    OfflineContext,
    OfflineService,
    RemoteBackend,
)


# =============================================================================
# TEST DOUBLES
# =============================================================================

class FakeBackend(RemoteBackend):
    """
    In-memory RemoteBackend.

    Records every applied mutation in `calls` as (type, table, data). Operation
    ids in `fail_ids` and tables in `fail_tables` raise RemoteOperationError.
    """

    def __init__(self, tables: Optional[Dict[str, List[Dict[str, Any]]]] = None):
        self.tables: Dict[str, List[Dict[str, Any]]] = tables or {}
        self.calls: List[tuple] = []
        self.applied_ids: List[str] = []
        self.fail_ids: Set[str] = set()
        self.fail_tables: Set[str] = set()
        self.fail_select = False
        self.select_calls = 0

    def _check(self, table: str, operation: str) -> None:
        if table in self.fail_tables:
            raise RemoteOperationError("Network request failed", table=table, operation=operation)

    def select(self, table, order_by=None, ascending=False, limit=None):
        self.select_calls += 1
        if self.fail_select:
            raise RemoteOperationError("Network request failed", table=table, operation="SELECT")
        rows = [dict(r) for r in self.tables.get(table, [])]
        return rows[:limit] if limit else rows

    def create(self, table, data):
        self._check(table, "CREATE")
        self.calls.append(("CREATE", table, dict(data)))
        self.tables.setdefault(table, []).append(dict(data))
        return [dict(data)]

    def update(self, table, data):
        self._check(table, "UPDATE")
        self.calls.append(("UPDATE", table, dict(data)))
        for row in self.tables.get(table, []):
            if row.get("id") == data["id"]:
                row.update(data)
                return [dict(row)]
        return []

    def delete(self, table, data):
        self._check(table, "DELETE")
        self.calls.append(("DELETE", table, dict(data)))
        rows = self.tables.get(table, [])
        self.tables[table] = [r for r in rows if r.get("id") != data["id"]]
        return []

    def apply(self, op):
        if op.id in self.fail_ids:
            raise RemoteOperationError("Network request failed", table=op.table, operation=op.type.value)
        result = super().apply(op)
        self.applied_ids.append(op.id)
        return result


class BlockingBackend(FakeBackend):
    """FakeBackend whose apply() waits until `release` is set."""

    def __init__(self):
        super().__init__()
        self.entered = threading.Event()
        self.release = threading.Event()

    def apply(self, op):
        self.entered.set()
        self.release.wait(timeout=5)
        return super().apply(op)


class ToggleProbe:
    """Connectivity probe whose answer tests flip directly."""

    def __init__(self, online: bool = True):
        self.online = online
        self.calls = 0
        self.last_error = None

    def __call__(self) -> bool:
        self.calls += 1
        return self.online


# =============================================================================
# OFFLINE LAYER FIXTURES
# =============================================================================

@pytest.fixture
def store(tmp_path):
    """Initialized LocalStore in a temporary directory"""
    local_store = LocalStore(tmp_path / "store.db")
    local_store.initialize()
    yield local_store
    local_store.close()


@pytest.fixture
def channel():
    return NotificationChannel()


@pytest.fixture
def probe():
    return ToggleProbe(online=True)


@pytest.fixture
def monitor(channel, probe):
    return ConnectivityMonitor(channel, probe=probe, check_interval=0.05)


@pytest.fixture
def queue(store, channel):
    return MutationQueue(store, channel)


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def blocking_backend():
    backend = BlockingBackend()
    yield backend
    backend.release.set()


@pytest.fixture
def settings(tmp_path):
    """Settings pointing at a temporary database with no critical reads"""
    return OfflineSettings(db_path=tmp_path / "offline.db", critical_reads=[])


@pytest.fixture
def context(settings, backend, probe):
    """Fully wired OfflineContext backed by FakeBackend and ToggleProbe"""
    ctx = OfflineContext.create(settings, backend=backend, probe=probe)
    yield ctx
    ctx.shutdown()


@pytest.fixture
def service(context):
    return OfflineService(context)


# =============================================================================
# MOCK FIXTURES
# =============================================================================

@pytest.fixture
def mock_streamlit(monkeypatch):
    """Mock Streamlit for testing"""
    mock_st = MagicMock()
    mock_st.session_state = {}
    mock_st.cache_data = lambda f: f
    mock_st.cache_resource = lambda f: f
    mock_st.sidebar.button.return_value = False

    monkeypatch.setitem(sys.modules, "streamlit", mock_st)

    # Modules that bound `st` at import time
    import upp_core.errors.handlers as handlers
    import upp_core.ui.offline_indicator as indicator
    monkeypatch.setattr(handlers, "st", mock_st)
    monkeypatch.setattr(indicator, "st", mock_st)

    return mock_st


@pytest.fixture
def mock_supabase():
    """Mock Supabase client"""
    mock_client = MagicMock()
    mock_client.table.return_value.select.return_value.execute.return_value.data = []
    mock_client.table.return_value.insert.return_value.execute.return_value = MagicMock()
    return mock_client
