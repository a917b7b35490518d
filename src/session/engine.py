from typing import Callable, Optional
import logging

from PyQt6.QtCore import QObject, pyqtSignal

from session.binding import ConnectionBinding
from session.persistence import PersistenceSynchronizer
from session.result_cache import ResultCache
from session.router import ActionRouter, ShortcutFilter
from session.tab_registry import TabRegistry
from utils.settings import DEFAULT_SESSION_SETTINGS

logger = logging.getLogger(__name__)


class Session(QObject):
    """Owns one TabRegistry/ResultCache pair and the observers wired around it.

    runner(fn, on_result, on_error) runs fn off the GUI thread and calls back on it; pass
    utils.worker.ThreadRunner() in the application.
    """

    connection_removed = pyqtSignal(object)

    def __init__(self, tab_store, executor, runner: Callable, directory=None, saved_queries=None,
                 schema_browser=None, settings: Optional[dict] = None, parent=None):
        super().__init__(parent)
        settings = {**DEFAULT_SESSION_SETTINGS, **(settings or {})}
        self.runner = runner
        self.tab_store = tab_store
        self.directory = directory
        self.registry = TabRegistry(self)
        self.result_cache = ResultCache(self)
        self.synchronizer = PersistenceSynchronizer(
            self.registry, tab_store, runner,
            delay_ms=settings["debounce_ms"],
            max_retries=settings["max_flush_retries"],
            parent=self,
        )
        self.binding = ConnectionBinding(
            self.registry, self.result_cache, self.synchronizer, tab_store, runner,
            directory=directory, parent=self,
        )
        self.router = ActionRouter(
            self.registry, self.result_cache, self.binding, executor, runner,
            saved_queries=saved_queries, schema_browser=schema_browser, parent=self,
        )
        logger.debug("Session created (debounce %d ms)", settings["debounce_ms"])

    def shortcut_filter(self, parent=None) -> ShortcutFilter:
        return ShortcutFilter(self.router, parent)

    def shutdown(self) -> None:
        """Write pending tab edits now; called when the window closes."""
        self.synchronizer.flush_now()

    def remove_connection(self, connection_id) -> None:
        """Drop connection_id from the directory together with its stored tab layout."""
        if self.directory is None or connection_id is None:
            return
        if self.binding.selected_connection_id == connection_id:
            self.binding.deselect()

        def remove():
            self.directory.remove_connection(connection_id)
            self.tab_store.forget(connection_id)

        def on_error(message: str):
            logger.warning("Failed to remove connection %r: %s", connection_id, message)
            self.router.notification.emit("error", f"Failed to remove connection: {message}")

        self.runner(remove, lambda _ack: self.connection_removed.emit(connection_id), on_error)
