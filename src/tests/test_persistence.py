import sys
from pathlib import Path

# Ensure project src directory is on sys.path
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from PyQt6.QtTest import QTest

from conftest import DeferredRunner, FakeTabStore
from session.persistence import PersistenceSynchronizer
from session.tab_registry import TabRegistry, make_query_tab, make_table_tab

DELAY = 30


def _setup(connection_id="A", max_retries=3, delay_ms=DELAY):
    registry = TabRegistry()
    store = FakeTabStore()
    sync = PersistenceSynchronizer(registry, store, DeferredRunner(immediate=True), delay_ms=delay_ms, max_retries=max_retries)
    sync.set_connection(connection_id)
    return registry, store, sync


def test_burst_of_edits_flushes_once():
    registry, store, sync = _setup(delay_ms=300)
    tab = registry.add_tab(make_query_tab("A", "Query 1"))
    for text in ("S", "SE", "SEL", "SELECT 1"):
        registry.update_tab(tab["id"], {"query": text})
        QTest.qWait(20)
    assert store.saves == []
    QTest.qWait(600)
    assert len(store.saves) == 1
    connection_id, tabs = store.saves[0]
    assert connection_id == "A"
    assert tabs[0]["query"] == "SELECT 1"
    assert registry.dirty is False


def test_flush_writes_entire_sequence():
    registry, store, sync = _setup()
    registry.add_tab(make_table_tab("A", "users"))
    registry.add_tab(make_query_tab("A", "Query 1", "SELECT 1"))
    QTest.qWait(DELAY * 5)
    assert [t["kind"] for t in store.saves[-1][1]] == ["table", "query"]


def test_single_mutation_flushes_after_quiet_period():
    registry, store, sync = _setup()
    registry.add_tab(make_query_tab("A", "Query 1"))
    assert sync.is_pending()
    QTest.qWait(DELAY * 5)
    assert len(store.saves) == 1
    assert not sync.is_pending()


def test_replace_all_never_flushes():
    registry, store, sync = _setup()
    registry.replace_all([make_table_tab("A", "users"), make_query_tab("A", "Query 1")])
    assert not sync.is_pending()
    QTest.qWait(DELAY * 5)
    assert store.saves == []


def test_connection_change_abandons_pending_flush():
    registry, store, sync = _setup()
    registry.add_tab(make_query_tab("A", "Query 1"))
    sync.set_connection(None)
    QTest.qWait(DELAY * 5)
    assert store.saves == []


def test_no_flush_without_connection():
    registry, store, sync = _setup(connection_id=None)
    registry.add_tab(make_query_tab("A", "Query 1"))
    QTest.qWait(DELAY * 5)
    assert store.saves == []
    assert registry.dirty is True


def test_failed_flush_retries_and_keeps_state():
    registry, store, sync = _setup()
    failures = []
    sync.flush_failed.connect(lambda cid, msg: failures.append((cid, msg)))
    store.fail_saves = 1
    tab = registry.add_tab(make_query_tab("A", "Query 1", "SELECT 1"))
    QTest.qWait(DELAY * 3)
    assert failures == [("A", "disk full")]
    assert registry.get_tab(tab["id"])["query"] == "SELECT 1"
    QTest.qWait(DELAY * 5)
    assert len(store.saves) == 1
    assert registry.dirty is False


def test_retries_are_bounded():
    registry, store, sync = _setup(max_retries=2)
    store.fail_saves = 10
    registry.add_tab(make_query_tab("A", "Query 1"))
    QTest.qWait(DELAY * 12)
    assert store.fail_saves == 8
    assert registry.dirty is True
    assert not sync.is_pending()


def test_flush_now_skips_the_timer():
    registry, store, sync = _setup()
    registry.add_tab(make_query_tab("A", "Query 1"))
    sync.flush_now()
    assert len(store.saves) == 1
    assert not sync.is_pending()
    sync.flush_now()
    assert len(store.saves) == 1


def test_failure_after_switch_is_not_retried():
    registry = TabRegistry()
    store = FakeTabStore()
    runner = DeferredRunner()
    sync = PersistenceSynchronizer(registry, store, runner, delay_ms=DELAY)
    sync.set_connection("A")
    registry.add_tab(make_query_tab("A", "Query 1"))
    sync.flush_now()
    store.fail_saves = 1
    sync.set_connection("B")
    runner.resolve()
    assert not sync.is_pending()
    assert store.saves == []


def test_saves_never_overlap_and_newest_snapshot_lands_last():
    registry = TabRegistry()
    store = FakeTabStore()
    runner = DeferredRunner()
    sync = PersistenceSynchronizer(registry, store, runner, delay_ms=DELAY)
    sync.set_connection("A")
    tab = registry.add_tab(make_query_tab("A", "Query 1", "old"))
    sync.flush_now()
    registry.update_tab(tab["id"], {"query": "new"})
    sync.flush_now()
    # the second flush waits for the first save instead of racing it
    assert len(runner.pending) == 1
    assert sync.is_saving()
    runner.resolve()
    assert len(runner.pending) == 1
    runner.resolve()
    assert [saved[1][0]["query"] for saved in store.saves] == ["old", "new"]
    assert store.data["A"][0]["query"] == "new"
    assert registry.dirty is False
    assert not sync.is_saving()


def test_requested_flush_runs_after_failed_save():
    registry = TabRegistry()
    store = FakeTabStore()
    runner = DeferredRunner()
    sync = PersistenceSynchronizer(registry, store, runner, delay_ms=DELAY)
    sync.set_connection("A")
    tab = registry.add_tab(make_query_tab("A", "Query 1", "old"))
    sync.flush_now()
    registry.update_tab(tab["id"], {"query": "new"})
    sync.flush_now()
    store.fail_saves = 1
    runner.resolve()
    runner.resolve()
    assert store.data["A"][0]["query"] == "new"
    assert registry.dirty is False


def test_connection_change_drops_requested_flush():
    registry = TabRegistry()
    store = FakeTabStore()
    runner = DeferredRunner()
    sync = PersistenceSynchronizer(registry, store, runner, delay_ms=DELAY)
    sync.set_connection("A")
    tab = registry.add_tab(make_query_tab("A", "Query 1", "old"))
    sync.flush_now()
    registry.update_tab(tab["id"], {"query": "new"})
    sync.flush_now()
    sync.set_connection(None)
    runner.resolve()
    assert runner.pending == []
    assert [saved[1][0]["query"] for saved in store.saves] == ["old"]
