import os
import sys
import tempfile
from pathlib import Path

import pytest

# Keep config files out of the user's home and run Qt without a display
os.environ.setdefault("SQLTABS_HOME", tempfile.mkdtemp(prefix="sqltabs-test-"))
os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")

# Ensure project src directory is on sys.path
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from PyQt6.QtWidgets import QApplication


class DeferredRunner:
    """Stand-in for ThreadRunner: records calls so tests decide when and in which order they complete.

    With immediate=True every call completes synchronously.
    """

    def __init__(self, immediate=False):
        self.immediate = immediate
        self.pending = []
        self.calls = 0

    def __call__(self, fn, on_result, on_error=None):
        self.calls += 1
        call = (fn, on_result, on_error)
        if self.immediate:
            self._complete(call)
        else:
            self.pending.append(call)

    def _complete(self, call):
        fn, on_result, on_error = call
        try:
            value = fn()
        except Exception as e:
            if on_error is not None:
                on_error(str(e))
            return
        on_result(value)

    def resolve(self, index=0):
        self._complete(self.pending.pop(index))

    def resolve_all(self):
        while self.pending:
            self.resolve(0)


class FakeTabStore:
    def __init__(self, tabs_by_connection=None):
        self.data = {k: list(v) for k, v in (tabs_by_connection or {}).items()}
        self.saves = []
        self.fail_saves = 0

    def load(self, connection_id):
        return [dict(t) for t in self.data.get(connection_id, [])]

    def save(self, connection_id, tabs):
        if self.fail_saves:
            self.fail_saves -= 1
            raise RuntimeError("disk full")
        self.saves.append((connection_id, [dict(t) for t in tabs]))
        self.data[connection_id] = [dict(t) for t in tabs]

    def forget(self, connection_id):
        self.data.pop(connection_id, None)


class FakeExecutor:
    """execute() fails for text containing 'fail'; 'silent' fails with an empty message."""

    def __init__(self):
        self.executed = []
        self.fetched = []

    def execute(self, connection_id, text):
        self.executed.append((connection_id, text))
        if "silent" in text:
            raise RuntimeError("")
        if "fail" in text:
            raise RuntimeError(f"syntax error near '{text}'")
        return {"columns": ["text"], "rows": [[text]], "count": 1, "total": 1, "page": 1, "limit": 1000}

    def fetch_table_page(self, connection_id, table_name, page, filters):
        self.fetched.append((connection_id, table_name, page, filters))
        return {"columns": ["id"], "rows": [[page]], "count": 1, "total": 100, "page": page, "limit": 25}


class FakeDirectory:
    def __init__(self, last_selected_id=None):
        self.last_selected_id = last_selected_id
        self.selected = []
        self.removed = []

    def list(self):
        return {"connections": [], "last_selected_id": self.last_selected_id}

    def select(self, connection_id):
        self.selected.append(connection_id)

    def remove_connection(self, connection_id):
        if connection_id == "locked":
            raise RuntimeError("config is read-only")
        self.removed.append(connection_id)


@pytest.fixture(scope="session", autouse=True)
def qapp():
    app = QApplication.instance() or QApplication([])
    yield app


@pytest.fixture
def runner():
    return DeferredRunner()


@pytest.fixture
def tab_store():
    return FakeTabStore()


@pytest.fixture
def executor():
    return FakeExecutor()
