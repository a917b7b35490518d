import sys
from pathlib import Path
import pytest

# Ensure project src directory is on sys.path
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from session.tab_registry import make_query_tab, make_table_tab
from utils.state_store import SavedQueryStore, TabStore


def test_tab_store_round_trips_per_connection(tmp_path):
    store = TabStore(tmp_path / "tabs.json")
    assert store.load("A") == []
    tabs = [make_table_tab("A", "users"), make_query_tab("A", "Query 1", "SELECT 1")]
    store.save("A", tabs)
    store.save("B", [])
    reopened = TabStore(tmp_path / "tabs.json")
    assert reopened.load("A") == tabs
    assert reopened.load("B") == []


def test_tab_store_ignores_malformed_entries(tmp_path):
    path = tmp_path / "tabs.json"
    path.write_text('{"A": [{"title": "no id"}, "junk", {"id": "t1", "kind": "query"}], "B": 3}', encoding="utf-8")
    store = TabStore(path)
    assert store.load("A") == [{"id": "t1", "kind": "query"}]
    assert store.load("B") == []


def test_tab_store_unreadable_file_loads_empty(tmp_path):
    path = tmp_path / "tabs.json"
    path.write_text("[[[", encoding="utf-8")
    assert TabStore(path).load("A") == []


def test_tab_store_forget(tmp_path):
    store = TabStore(tmp_path / "tabs.json")
    store.save("A", [make_query_tab("A", "Query 1")])
    store.forget("A")
    assert store.load("A") == []


def test_tab_store_write_failure_raises(tmp_path):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("", encoding="utf-8")
    store = TabStore(blocker / "tabs.json")
    with pytest.raises(RuntimeError, match="Failed to save tabs"):
        store.save("A", [])


def test_saved_queries_lifecycle(tmp_path):
    store = SavedQueryStore(tmp_path / "saved.json")
    first = store.create("A", "Recent", "SELECT 1")
    second = store.create("A", "Top", "SELECT 2")
    other = store.create("B", "Elsewhere", "SELECT 3")
    assert (first["id"], second["id"], other["id"]) == (1, 2, 3)
    store.update(first["id"], "Recent Orders", "SELECT 1")
    listed = store.list("A")
    assert [q["name"] for q in listed] == ["Recent Orders", "Top"]
    assert listed[0]["query"] == "SELECT 1"
    store.delete(second["id"])
    assert [q["id"] for q in store.list("A")] == [first["id"]]
    assert [q["name"] for q in store.list("B")] == ["Elsewhere"]


def test_saved_query_ids_are_not_reused(tmp_path):
    store = SavedQueryStore(tmp_path / "saved.json")
    first = store.create("A", "One", "SELECT 1")
    store.delete(first["id"])
    assert store.create("A", "Two", "SELECT 2")["id"] == first["id"] + 1


def test_update_missing_saved_query_raises(tmp_path):
    store = SavedQueryStore(tmp_path / "saved.json")
    with pytest.raises(RuntimeError, match="not found"):
        store.update(7, "Recent Orders", "SELECT 1")
