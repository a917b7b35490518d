"""Connection selection and the loading of each connection's persisted tabs.

selected_connection_id follows the user's choice immediately; loaded_connection_id only
changes once that connection's tabs have arrived from the tab store. Each selection bumps an
epoch, and a tab fetch completes only if its epoch is still current.
"""
from typing import Any, Callable, Optional
import logging

from PyQt6.QtCore import QObject, pyqtSignal

logger = logging.getLogger(__name__)


class ConnectionBinding(QObject):
    """Binds the TabRegistry to the selected connection.

    Signals:
      connection_changed(object): selection changed (None when deselected).
      tabs_loaded(object): the tabs of this connection are now in the registry.
      load_failed(object, str): the tab fetch failed; an empty tab set was loaded instead.
    """

    connection_changed = pyqtSignal(object)
    tabs_loaded = pyqtSignal(object)
    load_failed = pyqtSignal(object, str)

    def __init__(self, registry, result_cache, synchronizer, tab_store, runner: Callable, directory=None, parent=None):
        super().__init__(parent)
        self.registry = registry
        self.result_cache = result_cache
        self.synchronizer = synchronizer
        self.tab_store = tab_store
        self.runner = runner
        self.directory = directory
        self.selected_connection_id: Optional[Any] = None
        self.loaded_connection_id: Optional[Any] = None
        self.epoch = 0

    @property
    def ready_connection_id(self):
        """The selected connection once its tabs are loaded, else None."""
        if self.selected_connection_id is not None and self.loaded_connection_id == self.selected_connection_id:
            return self.selected_connection_id
        return None

    def is_loading(self) -> bool:
        return self.selected_connection_id is not None and self.ready_connection_id is None

    def select_connection(self, connection_id) -> None:
        previous = self.selected_connection_id
        if connection_id == previous:
            return
        self.epoch += 1
        self.selected_connection_id = connection_id
        # old connection's pending edits are abandoned, and its tabs must not linger under the new one
        self.synchronizer.set_connection(None)
        self._discard_tabs()
        logger.debug("Connection selection %r -> %r (epoch %d)", previous, connection_id, self.epoch)
        self.connection_changed.emit(connection_id)
        if connection_id is None:
            return
        self._remember_selection(connection_id)
        self._fetch_tabs(connection_id, self.epoch)

    def toggle_connection(self, connection_id) -> None:
        """Select connection_id, or deselect it if it is already selected."""
        if connection_id == self.selected_connection_id:
            self.select_connection(None)
        else:
            self.select_connection(connection_id)

    def deselect(self) -> None:
        self.select_connection(None)

    def restore_last_selection(self) -> None:
        """Select the connection the directory remembers as last used, if any."""
        if self.directory is None:
            return

        def on_listing(listing):
            last_id = (listing or {}).get("last_selected_id")
            # the user may have picked a connection while the listing was in flight
            if last_id is not None and self.selected_connection_id is None:
                self.select_connection(last_id)

        def on_error(message: str):
            logger.warning("Failed to read connection directory: %s", message)

        self.runner(self.directory.list, on_listing, on_error)

    def _discard_tabs(self) -> None:
        self.loaded_connection_id = None
        self.result_cache.clear()
        self.registry.replace_all([])
        self.registry.set_active_tab(None)

    def _remember_selection(self, connection_id) -> None:
        if self.directory is None:
            return

        def on_error(message: str):
            logger.warning("Failed to remember selected connection %r: %s", connection_id, message)

        self.runner(lambda: self.directory.select(connection_id), lambda _ack: None, on_error)

    def _fetch_tabs(self, connection_id, epoch: int) -> None:
        def on_tabs(tabs):
            self._apply_tabs(connection_id, epoch, tabs or [])

        def on_error(message: str):
            if not self._is_current(connection_id, epoch):
                return
            logger.warning("Failed to load tabs for %r: %s", connection_id, message)
            self._apply_tabs(connection_id, epoch, [])
            self.load_failed.emit(connection_id, message)

        self.runner(lambda: self.tab_store.load(connection_id), on_tabs, on_error)

    def _is_current(self, connection_id, epoch: int) -> bool:
        return epoch == self.epoch and connection_id == self.selected_connection_id

    def _apply_tabs(self, connection_id, epoch: int, tabs) -> None:
        if not self._is_current(connection_id, epoch):
            logger.debug("Dropping stale tab load for %r (epoch %d, current %d)", connection_id, epoch, self.epoch)
            return
        # tabs always belong to the connection they were stored under
        owned = [t for t in tabs if isinstance(t, dict) and t.get("id") and t.get("connection_id") == connection_id]
        self.registry.replace_all(owned)
        self.loaded_connection_id = connection_id
        self.synchronizer.set_connection(connection_id)
        self.registry.set_active_tab(owned[0]["id"] if owned else None)
        logger.debug("Loaded %d tabs for %r", len(owned), connection_id)
        self.tabs_loaded.emit(connection_id)
