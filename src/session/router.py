"""User-facing actions expressed as TabRegistry / ResultCache mutations.

The router only acts on the connection whose tabs are loaded (ConnectionBinding.ready_connection_id).
All collaborator calls go through the runner; every completion re-checks that the connection
epoch and, for executions, the tab's request epoch are still current before it is applied.
"""
from typing import Any, Callable, Dict, List, Optional
import logging
import uuid

from PyQt6.QtCore import QEvent, QObject, Qt, pyqtSignal

from session.tab_registry import QUERY, TABLE, make_query_tab, make_table_tab

logger = logging.getLogger(__name__)

EXECUTION_FAILED = "Query failed"
TABLE_FETCH_FAILED = "Failed to fetch table data"


class ActionRouter(QObject):
    """Open/close/execute/save operations invoked by the presentation layer.

    Signals:
      notification(str, str): level ("info" | "error") and a transient message for the user.
      tables_loaded(list): TableInfo dicts of the ready connection.
      saved_queries_loaded(list): saved queries of the ready connection.
      saved_association_changed(object): id of the saved query the active tab is linked to.
    """

    notification = pyqtSignal(str, str)
    tables_loaded = pyqtSignal(list)
    saved_queries_loaded = pyqtSignal(list)
    saved_association_changed = pyqtSignal(object)

    def __init__(self, registry, result_cache, binding, executor, runner: Callable,
                 saved_queries=None, schema_browser=None, parent=None):
        super().__init__(parent)
        self.registry = registry
        self.result_cache = result_cache
        self.binding = binding
        self.executor = executor
        self.runner = runner
        self.saved_queries = saved_queries
        self.schema_browser = schema_browser
        self.active_saved_query_id: Optional[int] = None
        binding.connection_changed.connect(self._on_connection_changed)
        binding.tabs_loaded.connect(self._on_tabs_loaded)

    @property
    def connection_id(self):
        return self.binding.ready_connection_id

    # -- tabs ----------------------------------------------------------------

    def open_table(self, table_name: str) -> Optional[Dict[str, Any]]:
        """Open (or re-activate) the table tab for table_name and start loading its first page."""
        connection_id = self.connection_id
        if connection_id is None or not table_name:
            return None
        tab = make_table_tab(connection_id, table_name)
        active = self.registry.add_tab(tab)
        if active is not tab:
            # deduped reopen: the existing tab keeps its cached page
            self._set_association(None)
            self.ensure_loaded(active["id"])
            return active
        self.result_cache.seed(tab["id"], loading=True)
        self._set_association(None)
        self._fetch_table_page(tab)
        return tab

    def new_query_tab(self) -> Optional[Dict[str, Any]]:
        connection_id = self.connection_id
        if connection_id is None:
            return None
        # numbers can repeat after closes; titles are not identities
        title = f"Query {len(self.registry.query_tabs(connection_id)) + 1}"
        tab = self.registry.add_tab(make_query_tab(connection_id, title))
        self.result_cache.seed(tab["id"])
        self._set_association(None)
        return tab

    def activate_tab(self, tab_id: str) -> None:
        if tab_id != self.registry.active_tab_id:
            # the saved-query link belongs to the tab it was made on
            self._set_association(None)
        self.registry.set_active_tab(tab_id)
        self.ensure_loaded(tab_id)

    def ensure_loaded(self, tab_id: Optional[str]) -> None:
        """Fetch a table tab's page when nothing is cached for it yet (e.g. after a reload)."""
        tab = self.registry.get_tab(tab_id)
        if tab is None or tab.get("kind") != TABLE or tab_id in self.result_cache:
            return
        self._fetch_table_page(tab)

    def close_tab(self, tab_id: str) -> None:
        was_active = tab_id == self.registry.active_tab_id
        self.result_cache.evict(tab_id)
        if self.registry.close_tab(tab_id) and was_active:
            self._set_association(None)
            self.ensure_loaded(self.registry.active_tab_id)

    def close_active_tab(self) -> bool:
        tab = self.registry.active_tab()
        if tab is None:
            return False
        self.close_tab(tab["id"])
        return True

    def edit_query(self, tab_id: str, text: str) -> None:
        tab = self.registry.get_tab(tab_id)
        if tab is None or tab.get("kind") != QUERY:
            return
        if tab.get("query") == text:
            return
        self.registry.update_tab(tab_id, {"query": text})
        if tab_id == self.registry.active_tab_id:
            self._set_association(None)

    def rename_tab(self, tab_id: str, title: str) -> None:
        if title:
            self.registry.update_tab(tab_id, {"title": title})

    def set_table_page(self, tab_id: str, page: int) -> None:
        tab = self.registry.get_tab(tab_id)
        if tab is None or tab.get("kind") != TABLE:
            return
        try:
            page = max(1, int(page))
        except (TypeError, ValueError):
            logger.debug("Ignoring invalid page %r for tab %s", page, tab_id)
            return
        self.registry.update_tab(tab_id, {"page": page})
        self._fetch_table_page(tab)

    def set_table_filters(self, tab_id: str, filters: List[Dict[str, Any]]) -> None:
        """Replace a table tab's filters; the view goes back to the first page."""
        tab = self.registry.get_tab(tab_id)
        if tab is None or tab.get("kind") != TABLE:
            return
        self.registry.update_tab(tab_id, {"filters": [dict(f) for f in filters], "page": 1})
        self._fetch_table_page(tab)

    def add_table_filter(self, tab_id: str, column: str, operator: str, value: Any = None) -> bool:
        """Append one filter to a table tab and reload its first page."""
        tab = self.registry.get_tab(tab_id)
        column = (column or "").strip()
        if tab is None or tab.get("kind") != TABLE or not column or not operator:
            return False
        flt = {"id": uuid.uuid4().hex, "column": column, "operator": operator, "value": value}
        self.set_table_filters(tab_id, list(tab.get("filters") or []) + [flt])
        return True

    def refresh_tab(self, tab_id: str) -> None:
        tab = self.registry.get_tab(tab_id)
        if tab is None:
            return
        if tab.get("kind") == TABLE:
            self._fetch_table_page(tab)
        else:
            self.execute_query(tab_id)

    # -- execution -----------------------------------------------------------

    def execute_query(self, tab_id: str, text: Optional[str] = None) -> bool:
        """Run text (default: the tab's own query) and record the outcome in the result cache."""
        connection_id = self.connection_id
        tab = self.registry.get_tab(tab_id)
        if connection_id is None or tab is None:
            return False
        sql = tab.get("query", "") if text is None else text
        self._run_into_cache(tab_id, lambda: self.executor.execute(connection_id, sql), EXECUTION_FAILED)
        return True

    def _fetch_table_page(self, tab: Dict[str, Any]) -> None:
        connection_id = self.connection_id
        if connection_id is None:
            return
        table_name = tab["table_name"]
        page = tab.get("page") or 1
        filters = [dict(f) for f in tab.get("filters") or []]
        self._run_into_cache(
            tab["id"],
            lambda: self.executor.fetch_table_page(connection_id, table_name, page, filters),
            TABLE_FETCH_FAILED,
        )

    def _run_into_cache(self, tab_id: str, fn: Callable, fallback_error: str) -> None:
        request_epoch = self.result_cache.set_loading(tab_id)
        connection_epoch = self.binding.epoch

        def on_result(result):
            if connection_epoch != self.binding.epoch:
                logger.debug("Dropping result for tab %s from a previous connection", tab_id)
                return
            self.result_cache.set_result(tab_id, result, request_epoch)

        def on_error(message: str):
            if connection_epoch != self.binding.epoch:
                logger.debug("Dropping error for tab %s from a previous connection", tab_id)
                return
            self.result_cache.set_error(tab_id, message or fallback_error, request_epoch)

        self.runner(fn, on_result, on_error)

    # -- saved queries -------------------------------------------------------

    def open_saved_query(self, saved: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Show a saved query: reuse a tab with the same text, else fill an empty active query tab,
        else open a new tab."""
        connection_id = self.connection_id
        if connection_id is None:
            return None
        text = saved.get("query", "")
        for tab in self.registry.query_tabs(connection_id):
            if tab.get("query") == text:
                self.registry.set_active_tab(tab["id"])
                self._set_association(saved.get("id"))
                return tab
        active = self.registry.active_tab()
        if active is not None and active.get("kind") == QUERY and not active.get("query"):
            self.registry.update_tab(active["id"], {"query": text, "title": saved.get("name") or active.get("title")})
            self._set_association(saved.get("id"))
            return active
        tab = self.registry.add_tab(make_query_tab(connection_id, saved.get("name") or "Query", text))
        self.result_cache.seed(tab["id"])
        self._set_association(saved.get("id"))
        return tab

    def save_query(self, name: str) -> bool:
        """Save the active query tab: update its linked saved query, or create a new one."""
        connection_id = self.connection_id
        tab = self.registry.active_tab()
        if connection_id is None or tab is None or tab.get("kind") != QUERY or not name or self.saved_queries is None:
            return False
        tab_id = tab["id"]
        text = tab.get("query", "")
        saved_id = self.active_saved_query_id
        connection_epoch = self.binding.epoch

        if saved_id is not None:
            def call():
                return self.saved_queries.update(saved_id, name, text)
        else:
            def call():
                return self.saved_queries.create(connection_id, name, text)

        def on_saved(saved):
            if connection_epoch != self.binding.epoch:
                return
            self.registry.update_tab(tab_id, {"title": name})
            if tab_id == self.registry.active_tab_id:
                self._set_association(saved.get("id") if saved else saved_id)
            self.notification.emit("info", f"Saved query '{name}'")
            self.list_saved_queries()

        self.runner(call, on_saved, lambda message: self._report_error("Failed to save query", message))
        return True

    def rename_saved_query(self, saved: Dict[str, Any], new_name: str) -> bool:
        """Persist the new name, then retitle every open query tab whose text matches the saved text.

        Tabs are matched by content, not by reference: unrelated tabs with identical text are
        renamed too.
        """
        connection_id = self.connection_id
        if connection_id is None or not new_name or self.saved_queries is None:
            return False
        saved_id = saved.get("id")
        old_text = saved.get("query", "")
        connection_epoch = self.binding.epoch

        def on_renamed(_updated):
            if connection_epoch != self.binding.epoch:
                return
            for tab in self.registry.query_tabs(connection_id):
                if tab.get("query") == old_text:
                    self.registry.update_tab(tab["id"], {"title": new_name})
            self.list_saved_queries()

        self.runner(
            lambda: self.saved_queries.update(saved_id, new_name, old_text),
            on_renamed,
            lambda message: self._report_error("Failed to rename query", message),
        )
        return True

    def delete_saved_query(self, saved: Dict[str, Any]) -> bool:
        if self.connection_id is None or self.saved_queries is None:
            return False
        saved_id = saved.get("id")
        connection_epoch = self.binding.epoch

        def on_deleted(_ack):
            if connection_epoch != self.binding.epoch:
                return
            if self.active_saved_query_id == saved_id:
                self._set_association(None)
            self.list_saved_queries()

        self.runner(
            lambda: self.saved_queries.delete(saved_id),
            on_deleted,
            lambda message: self._report_error("Failed to delete query", message),
        )
        return True

    def list_saved_queries(self) -> None:
        connection_id = self.connection_id
        if connection_id is None or self.saved_queries is None:
            return
        self._list_into(lambda: self.saved_queries.list(connection_id), self.saved_queries_loaded, "Failed to load saved queries")

    def list_tables(self) -> None:
        connection_id = self.connection_id
        if connection_id is None or self.schema_browser is None:
            return
        self._list_into(lambda: self.schema_browser.list_tables(connection_id), self.tables_loaded, "Failed to load tables")

    def _list_into(self, fn: Callable, signal, error_prefix: str) -> None:
        connection_epoch = self.binding.epoch

        def on_items(items):
            if connection_epoch == self.binding.epoch:
                signal.emit(list(items or []))

        def on_error(message: str):
            if connection_epoch == self.binding.epoch:
                self._report_error(error_prefix, message)

        self.runner(fn, on_items, on_error)

    # -- keyboard ------------------------------------------------------------

    def handle_shortcut(self, key: str) -> bool:
        """Ctrl/Cmd+W closes the active tab, Ctrl/Cmd+T opens a query tab.

        Returns True for both keys even when the guard prevents the action, so the caller always
        suppresses the default behavior.
        """
        key = key.lower()
        if key == "w":
            if self.registry.active_tab() is not None:
                self.close_active_tab()
            return True
        if key == "t":
            if self.connection_id is not None:
                self.new_query_tab()
            return True
        return False

    # -- internals -----------------------------------------------------------

    def _set_association(self, saved_id: Optional[int]) -> None:
        if saved_id == self.active_saved_query_id:
            return
        self.active_saved_query_id = saved_id
        self.saved_association_changed.emit(saved_id)

    def _report_error(self, prefix: str, message: str) -> None:
        logger.warning("%s: %s", prefix, message)
        self.notification.emit("error", f"{prefix}: {message}" if message else prefix)

    def _on_connection_changed(self, _connection_id) -> None:
        self._set_association(None)

    def _on_tabs_loaded(self, _connection_id) -> None:
        self.ensure_loaded(self.registry.active_tab_id)
        self.list_tables()
        self.list_saved_queries()


class ShortcutFilter(QObject):
    """Event filter that routes Ctrl/Cmd+W and Ctrl/Cmd+T to the ActionRouter and consumes them."""

    _KEYS = {Qt.Key.Key_W.value: "w", Qt.Key.Key_T.value: "t"}

    def __init__(self, router: ActionRouter, parent=None):
        super().__init__(parent)
        self.router = router

    def eventFilter(self, obj, event) -> bool:
        if event.type() != QEvent.Type.KeyPress:
            return False
        mods = event.modifiers()
        # Cmd reports as ControlModifier on macOS
        if not (mods & Qt.KeyboardModifier.ControlModifier or mods & Qt.KeyboardModifier.MetaModifier):
            return False
        key = self._KEYS.get(event.key())
        if key is None:
            return False
        return self.router.handle_shortcut(key)
