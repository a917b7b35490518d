import sys
from pathlib import Path
import pytest

# Ensure project src directory is on sys.path
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from session.tab_registry import TabRegistry, make_query_tab, make_table_tab


def _registry_with(n):
    reg = TabRegistry()
    tabs = [make_query_tab("A", f"Query {i + 1}") for i in range(n)]
    for tab in tabs:
        reg.add_tab(tab)
    return reg, tabs


def test_add_tab_appends_and_activates():
    reg = TabRegistry()
    mutations = []
    reg.tabs_mutated.connect(mutations.append)
    first = reg.add_tab(make_query_tab("A", "Query 1"))
    second = reg.add_tab(make_table_tab("A", "users"))
    assert [t["id"] for t in reg.tabs()] == [first["id"], second["id"]]
    assert reg.active_tab_id == second["id"]
    assert reg.dirty is True
    assert mutations == ["add", "add"]


def test_duplicate_table_tabs_collapse_to_one():
    reg = TabRegistry()
    original = reg.add_tab(make_table_tab("A", "users"))
    reg.add_tab(make_query_tab("A", "Query 1"))
    for _ in range(3):
        result = reg.add_tab(make_table_tab("A", "users"))
        assert result is original
    users = [t for t in reg.tabs() if t.get("table_name") == "users"]
    assert len(users) == 1
    assert reg.active_tab_id == original["id"]
    assert len(reg) == 2


def test_table_dedup_is_scoped_to_connection():
    reg = TabRegistry()
    reg.add_tab(make_table_tab("A", "users"))
    reg.add_tab(make_table_tab("B", "users"))
    assert len(reg) == 2


def test_query_tabs_are_never_deduplicated():
    reg = TabRegistry()
    reg.add_tab(make_query_tab("A", "Query 1", "SELECT 1"))
    reg.add_tab(make_query_tab("A", "Query 1", "SELECT 1"))
    assert len(reg.query_tabs("A")) == 2


@pytest.mark.parametrize("n", [1, 2, 3, 5])
def test_close_active_selects_neighbor(n):
    for i in range(n):
        reg, tabs = _registry_with(n)
        reg.set_active_tab(tabs[i]["id"])
        assert reg.close_tab(tabs[i]["id"]) is True
        if n == 1:
            assert reg.active_tab_id is None
        else:
            remaining = [t for t in tabs if t is not tabs[i]]
            assert reg.active_tab_id == remaining[min(i, n - 2)]["id"]


def test_close_inactive_keeps_active():
    reg, tabs = _registry_with(3)
    reg.set_active_tab(tabs[2]["id"])
    reg.close_tab(tabs[0]["id"])
    assert reg.active_tab_id == tabs[2]["id"]


def test_close_unknown_tab_is_noop():
    reg, tabs = _registry_with(2)
    reg.reset_dirty()
    mutations = []
    reg.tabs_mutated.connect(mutations.append)
    assert reg.close_tab("missing") is False
    assert len(reg) == 2
    assert mutations == []
    assert reg.dirty is False


def test_partial_updates_compose():
    reg, tabs = _registry_with(1)
    tab_id = tabs[0]["id"]
    reg.update_tab(tab_id, {"query": "X"})
    reg.update_tab(tab_id, {"title": "Y"})
    tab = reg.get_tab(tab_id)
    assert tab["query"] == "X"
    assert tab["title"] == "Y"


def test_update_ignores_identity_fields():
    reg = TabRegistry()
    tab = reg.add_tab(make_table_tab("A", "users"))
    reg.update_tab(tab["id"], {"id": "other", "connection_id": "B", "table_name": "orders", "page": 3})
    stored = reg.get_tab(tab["id"])
    assert stored["connection_id"] == "A"
    assert stored["table_name"] == "users"
    assert stored["page"] == 3


def test_update_unknown_tab_is_noop():
    reg = TabRegistry()
    assert reg.update_tab("missing", {"title": "x"}) is False
    assert reg.dirty is False


def test_dangling_active_pointer_reads_as_no_tab():
    reg, _ = _registry_with(1)
    reg.set_active_tab("not-yet-there")
    assert reg.active_tab_id == "not-yet-there"
    assert reg.active_tab() is None


def test_set_active_does_not_mark_dirty():
    reg, tabs = _registry_with(2)
    reg.reset_dirty()
    reg.set_active_tab(tabs[0]["id"])
    assert reg.dirty is False


def test_replace_all_clears_dirty_without_mutation_signal():
    reg, _ = _registry_with(2)
    mutations, replaced = [], []
    reg.tabs_mutated.connect(mutations.append)
    reg.tabs_replaced.connect(lambda: replaced.append(True))
    loaded = [make_table_tab("B", "orders")]
    reg.replace_all(loaded)
    assert [t["table_name"] for t in reg.tabs()] == ["orders"]
    assert reg.dirty is False
    assert mutations == []
    assert replaced == [True]


def test_snapshot_is_detached_from_registry():
    reg = TabRegistry()
    tab = reg.add_tab(make_table_tab("A", "users"))
    snap = reg.snapshot()
    snap[0]["filters"].append({"column": "id"})
    assert reg.get_tab(tab["id"])["filters"] == []


def test_active_changed_emitted_after_state_update():
    reg, tabs = _registry_with(2)
    seen = []
    reg.active_changed.connect(lambda tab_id: seen.append((tab_id, len(reg))))
    reg.close_tab(tabs[1]["id"])
    assert seen == [(tabs[0]["id"], 1)]
