"""Debounced persistence of the tab layout.

Registry mutations restart a single-shot QTimer; when it fires, the whole tab sequence is
written to the tab store for the connection whose tabs are loaded. Changing the target
connection cancels the timer without writing.
"""
from typing import Any, Callable, Optional
import logging

from PyQt6.QtCore import QObject, QTimer, pyqtSignal

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_MS = 500
DEFAULT_MAX_RETRIES = 3


class PersistenceSynchronizer(QObject):
    """Flush TabRegistry changes to a tab store, at most once per burst of edits.

    The registry's dirty flag is cleared when a flush snapshot is taken. A failed save marks
    the registry dirty again and restarts the timer, up to max_retries consecutive failures.
    Saves never overlap: a flush requested while one is being written waits for it, so the
    newest snapshot is always the last one stored.
    """

    flushed = pyqtSignal(object)
    flush_failed = pyqtSignal(object, str)

    def __init__(self, registry, tab_store, runner: Callable, delay_ms: int = DEFAULT_DEBOUNCE_MS,
                 max_retries: int = DEFAULT_MAX_RETRIES, parent=None):
        super().__init__(parent)
        self.registry = registry
        self.tab_store = tab_store
        self.runner = runner
        self.max_retries = max_retries
        self._connection_id: Optional[Any] = None
        self._failures = 0
        # one save in flight at a time; a flush requested meanwhile runs when it completes
        self._saving = False
        self._flush_requested = False
        self._timer = QTimer(self)
        self._timer.setSingleShot(True)
        self._timer.setInterval(delay_ms)
        self._timer.timeout.connect(self._on_timeout)
        registry.tabs_mutated.connect(self._on_mutated)

    @property
    def connection_id(self):
        return self._connection_id

    def is_pending(self) -> bool:
        return self._timer.isActive() or self._flush_requested

    def is_saving(self) -> bool:
        return self._saving

    def set_connection(self, connection_id) -> None:
        """Retarget flushes; any pending flush for the previous connection is abandoned."""
        if self._timer.isActive():
            logger.debug("Abandoning pending tab flush for %r", self._connection_id)
        self._timer.stop()
        self._flush_requested = False
        self._connection_id = connection_id
        self._failures = 0

    def flush_now(self) -> None:
        """Write pending edits immediately instead of waiting for the timer."""
        self._timer.stop()
        self._flush()

    def _on_mutated(self, operation: str) -> None:
        # debounce: every mutation pushes the deadline out again
        self._timer.start()

    def _on_timeout(self) -> None:
        self._flush()

    def _flush(self) -> None:
        connection_id = self._connection_id
        if not self.registry.dirty or connection_id is None:
            return
        if self._saving:
            # an older snapshot is still being written; writing this one now could let it land first
            self._flush_requested = True
            return
        tabs = self.registry.snapshot()
        self.registry.reset_dirty()
        logger.debug("Flushing %d tabs for connection %r", len(tabs), connection_id)

        def on_saved(_ack):
            if connection_id == self._connection_id:
                self._failures = 0
            self.flushed.emit(connection_id)
            self._save_finished()

        def on_error(message: str):
            self._on_flush_error(connection_id, message)
            self._save_finished()

        self._saving = True
        self.runner(lambda: self.tab_store.save(connection_id, tabs), on_saved, on_error)

    def _on_flush_error(self, connection_id, message: str) -> None:
        if connection_id != self._connection_id:
            logger.warning("Tab flush for %r failed after switching away: %s", connection_id, message)
            return
        self._failures += 1
        logger.warning("Tab flush for %r failed (%d/%d): %s", connection_id, self._failures, self.max_retries, message)
        self.registry.mark_dirty()
        if self._failures < self.max_retries:
            self._timer.start()
        self.flush_failed.emit(connection_id, message)

    def _save_finished(self) -> None:
        self._saving = False
        if self._flush_requested:
            self._flush_requested = False
            self._flush()
