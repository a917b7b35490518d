"""Ordered collection of open tabs plus the active-tab pointer.

Tabs are plain dicts so they serialize to the tab store unchanged:

    table tab: {"id", "kind": "table", "title", "connection_id", "table_name", "page", "filters"}
    query tab: {"id", "kind": "query", "title", "connection_id", "query"}

Every mutation updates state first and only then emits its signal, so observers always see
the post-mutation registry.
"""
from typing import Any, Dict, List, Optional
import copy
import logging
import uuid

from PyQt6.QtCore import QObject, pyqtSignal

logger = logging.getLogger(__name__)

TABLE = "table"
QUERY = "query"

# keys update_tab never touches; table_name is the dedup identity of a table tab
_IMMUTABLE_KEYS = ("id", "kind", "connection_id", "table_name")


def new_tab_id() -> str:
    return uuid.uuid4().hex


def make_table_tab(connection_id: str, table_name: str, title: Optional[str] = None, tab_id: Optional[str] = None) -> Dict[str, Any]:
    return {
        "id": tab_id or new_tab_id(),
        "kind": TABLE,
        "title": title or table_name,
        "connection_id": connection_id,
        "table_name": table_name,
        "page": 1,
        "filters": [],
    }


def make_query_tab(connection_id: str, title: str, query: str = "", tab_id: Optional[str] = None) -> Dict[str, Any]:
    return {
        "id": tab_id or new_tab_id(),
        "kind": QUERY,
        "title": title,
        "connection_id": connection_id,
        "query": query,
    }


class TabRegistry(QObject):
    """In-memory tab state with deterministic mutation rules.

    Signals:
      tabs_mutated(str): add/close/update happened (operation name); marks the registry dirty.
      tabs_replaced(): the whole sequence was replaced from storage; never marks dirty.
      active_changed(object): the active tab id changed (None when nothing is active).
    """

    tabs_mutated = pyqtSignal(str)
    tabs_replaced = pyqtSignal()
    active_changed = pyqtSignal(object)

    def __init__(self, parent=None):
        super().__init__(parent)
        self._tabs: List[Dict[str, Any]] = []
        self._active_id: Optional[str] = None
        self.dirty = False

    # -- queries -----------------------------------------------------------

    def tabs(self) -> List[Dict[str, Any]]:
        return list(self._tabs)

    def __len__(self) -> int:
        return len(self._tabs)

    def get_tab(self, tab_id: Optional[str]) -> Optional[Dict[str, Any]]:
        for tab in self._tabs:
            if tab["id"] == tab_id:
                return tab
        return None

    def index_of(self, tab_id: Optional[str]) -> int:
        for i, tab in enumerate(self._tabs):
            if tab["id"] == tab_id:
                return i
        return -1

    @property
    def active_tab_id(self) -> Optional[str]:
        return self._active_id

    def active_tab(self) -> Optional[Dict[str, Any]]:
        """The active tab, or None when the pointer is unset or dangling."""
        return self.get_tab(self._active_id)

    def find_table_tab(self, connection_id: str, table_name: str) -> Optional[Dict[str, Any]]:
        for tab in self._tabs:
            if tab.get("kind") == TABLE and tab.get("connection_id") == connection_id and tab.get("table_name") == table_name:
                return tab
        return None

    def query_tabs(self, connection_id: str) -> List[Dict[str, Any]]:
        return [t for t in self._tabs if t.get("kind") == QUERY and t.get("connection_id") == connection_id]

    def snapshot(self) -> List[Dict[str, Any]]:
        """Deep copy of the ordered tabs, safe to hand to another thread."""
        return copy.deepcopy(self._tabs)

    # -- mutations ---------------------------------------------------------

    def add_tab(self, tab: Dict[str, Any]) -> Dict[str, Any]:
        """Append tab and activate it; re-activates the existing tab for a duplicate table tab.

        Returns the tab that ends up active (the existing one on a deduped open).
        """
        if tab.get("kind") == TABLE:
            existing = self.find_table_tab(tab.get("connection_id"), tab.get("table_name"))
            if existing is not None:
                logger.debug("Table tab for %r already open; activating %s", tab.get("table_name"), existing["id"])
                self.set_active_tab(existing["id"])
                return existing
        self._tabs.append(tab)
        self.dirty = True
        self._set_active(tab["id"])
        self.tabs_mutated.emit("add")
        return tab

    def close_tab(self, tab_id: str) -> bool:
        """Remove a tab. Closing the active tab activates the one now at its index (or the new last)."""
        idx = self.index_of(tab_id)
        if idx < 0:
            return False
        del self._tabs[idx]
        self.dirty = True
        if self._active_id == tab_id:
            if self._tabs:
                self._set_active(self._tabs[min(idx, len(self._tabs) - 1)]["id"])
            else:
                self._set_active(None)
        self.tabs_mutated.emit("close")
        return True

    def update_tab(self, tab_id: str, fields: Dict[str, Any]) -> bool:
        """Shallow-merge fields into the tab. Identity keys are ignored."""
        tab = self.get_tab(tab_id)
        if tab is None:
            return False
        for key, value in fields.items():
            if key in _IMMUTABLE_KEYS:
                continue
            tab[key] = value
        self.dirty = True
        self.tabs_mutated.emit("update")
        return True

    def set_active_tab(self, tab_id: Optional[str]) -> None:
        """Point at tab_id; it does not have to exist yet."""
        self._set_active(tab_id)

    def replace_all(self, tabs: List[Dict[str, Any]]) -> None:
        """Bulk-replace the sequence with data read from storage. Clears the dirty flag."""
        self._tabs = [dict(t) for t in tabs]
        self.dirty = False
        self.tabs_replaced.emit()

    def reset_dirty(self) -> None:
        self.dirty = False

    def mark_dirty(self) -> None:
        self.dirty = True

    def _set_active(self, tab_id: Optional[str]) -> None:
        if tab_id == self._active_id:
            return
        self._active_id = tab_id
        self.active_changed.emit(tab_id)
