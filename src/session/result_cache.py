"""Per-tab cache of the last execution outcome.

Entries are {"result": QueryResult | None, "loading": bool, "error": str | None} keyed by tab id.
The cache is transient: it is never persisted and is rebuilt on demand after a reload.
"""
from typing import Any, Dict, Optional
import logging

from PyQt6.QtCore import QObject, pyqtSignal

logger = logging.getLogger(__name__)


def _empty_entry() -> Dict[str, Any]:
    return {"result": None, "loading": False, "error": None}


class ResultCache(QObject):
    """Result/loading/error state per tab with a monotonic request epoch per tab.

    set_loading() returns the epoch of the new request. Completions passed back with an epoch
    are applied only if that epoch is still the latest for the tab and the entry still exists.
    """

    entry_changed = pyqtSignal(str)

    def __init__(self, parent=None):
        super().__init__(parent)
        self._entries: Dict[str, Dict[str, Any]] = {}
        self._epochs: Dict[str, int] = {}
        self._counter = 0

    def get(self, tab_id: Optional[str]) -> Optional[Dict[str, Any]]:
        entry = self._entries.get(tab_id)
        return dict(entry) if entry is not None else None

    def __contains__(self, tab_id) -> bool:
        return tab_id in self._entries

    def seed(self, tab_id: str, loading: bool = False) -> None:
        """Create an idle (or loading) entry for a freshly opened tab."""
        entry = _empty_entry()
        entry["loading"] = loading
        self._entries[tab_id] = entry
        self.entry_changed.emit(tab_id)

    def set_loading(self, tab_id: str) -> int:
        entry = self._entries.setdefault(tab_id, _empty_entry())
        entry["loading"] = True
        entry["error"] = None
        # one counter for all tabs, so a tab reloaded from storage under the same id never
        # reuses an epoch handed out before a clear()
        self._counter += 1
        epoch = self._counter
        self._epochs[tab_id] = epoch
        self.entry_changed.emit(tab_id)
        return epoch

    def is_current(self, tab_id: str, epoch: Optional[int]) -> bool:
        if epoch is None:
            return True
        return tab_id in self._entries and self._epochs.get(tab_id) == epoch

    def set_result(self, tab_id: str, result: Any, epoch: Optional[int] = None) -> bool:
        if not self.is_current(tab_id, epoch):
            logger.debug("Dropping stale result for tab %s (epoch %s)", tab_id, epoch)
            return False
        self._entries[tab_id] = {"result": result, "loading": False, "error": None}
        self.entry_changed.emit(tab_id)
        return True

    def set_error(self, tab_id: str, message: str, epoch: Optional[int] = None) -> bool:
        """Store an error; a previous good result stays in place underneath it."""
        if not self.is_current(tab_id, epoch):
            logger.debug("Dropping stale error for tab %s (epoch %s)", tab_id, epoch)
            return False
        entry = self._entries.setdefault(tab_id, _empty_entry())
        entry["loading"] = False
        entry["error"] = message
        self.entry_changed.emit(tab_id)
        return True

    def evict(self, tab_id: str) -> None:
        self._epochs.pop(tab_id, None)
        if self._entries.pop(tab_id, None) is not None:
            self.entry_changed.emit(tab_id)

    def clear(self) -> None:
        tab_ids = list(self._entries)
        self._entries.clear()
        self._epochs.clear()
        for tab_id in tab_ids:
            self.entry_changed.emit(tab_id)
