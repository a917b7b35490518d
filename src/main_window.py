from PyQt6.QtWidgets import (
    QMainWindow,
    QWidget,
    QSplitter,
    QVBoxLayout,
    QHBoxLayout,
    QListWidget,
    QListWidgetItem,
    QTabBar,
    QPlainTextEdit,
    QPushButton,
    QLabel,
    QTableView,
    QFileDialog,
    QMessageBox,
    QInputDialog,
    QMenu,
    QLineEdit,
    QComboBox,
    QDialog,
    QApplication,
)
from PyQt6.QtGui import QAction
from PyQt6.QtCore import Qt
import logging

from db.connection import ConnectionManager
from db.executor import FILTER_OPERATORS, QueryExecutor
from db.metadata import SchemaBrowser
from models.table_model import TableModel
from session.engine import Session
from session.tab_registry import QUERY, TABLE
from ui.connection_dialog import ConnectionDialog
from utils.settings import load_app_state, load_session_settings, save_app_state
from utils.state_store import SavedQueryStore, TabStore
from utils.worker import ThreadRunner

logger = logging.getLogger(__name__)


class MainWindow(QMainWindow):
    """Thin shell over the session engine: forwards gestures to the router, renders registry state."""

    def __init__(self):
        super().__init__()
        self.setWindowTitle("sqltabs")
        self.resize(1200, 800)

        settings = load_session_settings()
        self.conn_mgr = ConnectionManager()
        self.runner = ThreadRunner(self)
        self.session = Session(
            TabStore(),
            QueryExecutor(self.conn_mgr, row_limit=settings["row_limit"], page_size=settings["page_size"]),
            self.runner,
            directory=self.conn_mgr,
            saved_queries=SavedQueryStore(),
            schema_browser=SchemaBrowser(self.conn_mgr),
            settings=settings,
            parent=self,
        )
        self.registry = self.session.registry
        self.router = self.session.router
        self._saved_queries = []

        self._init_ui()
        self._init_actions()
        self._connect_session()

        # Ctrl/Cmd+W and Ctrl/Cmd+T are handled for the whole window
        self._shortcut_filter = self.session.shortcut_filter(self)
        self.installEventFilter(self._shortcut_filter)
        for child in (self.editor, self.tab_bar, self.result_view, self.conn_list, self.table_list, self.saved_list):
            child.installEventFilter(self._shortcut_filter)

        state = load_app_state()
        if isinstance(state.get("geometry"), list) and len(state["geometry"]) == 4:
            self.setGeometry(*[int(v) for v in state["geometry"]])

        self._reload_connections()
        self.session.binding.restore_last_selection()

    def _init_ui(self):
        splitter = QSplitter(Qt.Orientation.Horizontal)

        left = QWidget()
        left_layout = QVBoxLayout(left)
        left_layout.addWidget(QLabel("Connections"))
        self.conn_list = QListWidget()
        self.conn_list.itemClicked.connect(self._on_connection_clicked)
        self.conn_list.setContextMenuPolicy(Qt.ContextMenuPolicy.CustomContextMenu)
        self.conn_list.customContextMenuRequested.connect(self._on_connection_menu)
        left_layout.addWidget(self.conn_list)
        left_layout.addWidget(QLabel("Tables"))
        self.table_list = QListWidget()
        self.table_list.itemDoubleClicked.connect(lambda item: self.router.open_table(item.data(Qt.ItemDataRole.UserRole)))
        left_layout.addWidget(self.table_list)
        left_layout.addWidget(QLabel("Saved queries"))
        self.saved_list = QListWidget()
        self.saved_list.itemDoubleClicked.connect(self._on_saved_query_activated)
        self.saved_list.setContextMenuPolicy(Qt.ContextMenuPolicy.CustomContextMenu)
        self.saved_list.customContextMenuRequested.connect(self._on_saved_query_menu)
        left_layout.addWidget(self.saved_list)
        splitter.addWidget(left)

        right = QWidget()
        right_layout = QVBoxLayout(right)
        self.tab_bar = QTabBar()
        self.tab_bar.setTabsClosable(True)
        self.tab_bar.setExpanding(False)
        self.tab_bar.currentChanged.connect(self._on_tab_bar_changed)
        self.tab_bar.tabCloseRequested.connect(self._on_tab_close_requested)
        self.tab_bar.tabBarDoubleClicked.connect(self._on_tab_rename_requested)
        right_layout.addWidget(self.tab_bar)

        self.editor = QPlainTextEdit()
        self.editor.setPlaceholderText("SELECT ...")
        self.editor.textChanged.connect(self._on_editor_changed)
        right_layout.addWidget(self.editor, 1)

        toolbar = QHBoxLayout()
        self.run_btn = QPushButton("Run")
        self.run_btn.setToolTip("Execute the query of this tab")
        self.run_btn.clicked.connect(self._on_run)
        toolbar.addWidget(self.run_btn)
        self.save_btn = QPushButton("Save query")
        self.save_btn.clicked.connect(self._on_save_query)
        toolbar.addWidget(self.save_btn)
        self.prev_btn = QPushButton("< Prev")
        self.prev_btn.clicked.connect(lambda: self._change_page(-1))
        toolbar.addWidget(self.prev_btn)
        self.next_btn = QPushButton("Next >")
        self.next_btn.clicked.connect(lambda: self._change_page(1))
        toolbar.addWidget(self.next_btn)
        self.status_label = QLabel("")
        toolbar.addWidget(self.status_label, 1)
        right_layout.addLayout(toolbar)

        filter_bar = QHBoxLayout()
        self.filter_column_edit = QLineEdit()
        self.filter_column_edit.setPlaceholderText("Column")
        filter_bar.addWidget(self.filter_column_edit)
        self.filter_op_combo = QComboBox()
        self.filter_op_combo.addItems(FILTER_OPERATORS)
        filter_bar.addWidget(self.filter_op_combo)
        self.filter_value_edit = QLineEdit()
        self.filter_value_edit.setPlaceholderText("Value")
        self.filter_value_edit.returnPressed.connect(self._on_add_filter)
        filter_bar.addWidget(self.filter_value_edit, 1)
        self.add_filter_btn = QPushButton("Add filter")
        self.add_filter_btn.clicked.connect(self._on_add_filter)
        filter_bar.addWidget(self.add_filter_btn)
        self.clear_filters_btn = QPushButton("Clear filters")
        self.clear_filters_btn.clicked.connect(self._on_clear_filters)
        filter_bar.addWidget(self.clear_filters_btn)
        right_layout.addLayout(filter_bar)

        self.result_model = TableModel()
        self.result_view = QTableView()
        self.result_view.setModel(self.result_model)
        right_layout.addWidget(self.result_view, 2)
        splitter.addWidget(right)
        splitter.setSizes([260, 940])
        self.setCentralWidget(splitter)
        self._render_tabs()

    def _init_actions(self):
        file_menu = self.menuBar().addMenu("File")
        open_sqlite_action = QAction("Open SQLite Database", self)
        open_sqlite_action.triggered.connect(self.open_sqlite_db)
        file_menu.addAction(open_sqlite_action)
        new_conn_action = QAction("New Server Connection...", self)
        new_conn_action.triggered.connect(self.open_new_connection_dialog)
        file_menu.addAction(new_conn_action)
        new_tab_action = QAction("New Query Tab", self)
        new_tab_action.triggered.connect(self.router.new_query_tab)
        file_menu.addAction(new_tab_action)
        disconnect_action = QAction("Disconnect", self)
        disconnect_action.triggered.connect(self.session.binding.deselect)
        file_menu.addAction(disconnect_action)

    def _connect_session(self):
        self.registry.tabs_mutated.connect(lambda _op: self._render_tabs())
        self.registry.tabs_replaced.connect(self._render_tabs)
        self.registry.active_changed.connect(lambda _id: self._render_tabs())
        self.session.result_cache.entry_changed.connect(self._on_entry_changed)
        self.session.binding.connection_changed.connect(self._on_connection_changed)
        self.session.connection_removed.connect(lambda _cid: self._reload_connections())
        self.session.binding.load_failed.connect(lambda _cid, msg: self.statusBar().showMessage(f"Failed to load tabs: {msg}", 5000))
        self.session.synchronizer.flush_failed.connect(lambda _cid, msg: self.statusBar().showMessage(f"Failed to save tabs: {msg}", 5000))
        self.router.tables_loaded.connect(self._on_tables_loaded)
        self.router.saved_queries_loaded.connect(self._on_saved_queries_loaded)
        self.router.notification.connect(self._on_notification)

    # -- connections ---------------------------------------------------------

    def _reload_connections(self):
        listing = self.conn_mgr.list()
        self.conn_list.clear()
        for conn in listing["connections"]:
            item = QListWidgetItem(conn["name"])
            item.setData(Qt.ItemDataRole.UserRole, conn["id"])
            self.conn_list.addItem(item)
        self._highlight_connection(self.session.binding.selected_connection_id)

    def _highlight_connection(self, connection_id):
        for i in range(self.conn_list.count()):
            item = self.conn_list.item(i)
            font = item.font()
            font.setBold(item.data(Qt.ItemDataRole.UserRole) == connection_id)
            item.setFont(font)

    def _on_connection_clicked(self, item: QListWidgetItem):
        self.session.binding.toggle_connection(item.data(Qt.ItemDataRole.UserRole))

    def _on_connection_changed(self, connection_id):
        self._highlight_connection(connection_id)
        self.table_list.clear()
        self.saved_list.clear()
        if self.session.binding.is_loading():
            self.statusBar().showMessage(f"Loading tabs for '{connection_id}'...", 2000)

    def _on_connection_menu(self, pos):
        item = self.conn_list.itemAt(pos)
        if item is None:
            return
        connection_id = item.data(Qt.ItemDataRole.UserRole)
        menu = QMenu(self)
        remove_action = menu.addAction("Remove")
        if menu.exec(self.conn_list.mapToGlobal(pos)) != remove_action:
            return
        resp = QMessageBox.question(self, "Remove Connection", f"Remove \"{item.text()}\" and its saved tab layout?")
        if resp == QMessageBox.StandardButton.Yes:
            self.session.remove_connection(connection_id)

    def open_new_connection_dialog(self):
        dlg = ConnectionDialog(self)
        if dlg.exec() != QDialog.DialogCode.Accepted:
            return
        data = dlg.get_data()
        try:
            name = self.conn_mgr.add_connection(data.pop("name"), data.pop("conn_type"), **data)
        except Exception as e:
            QMessageBox.critical(self, "Error", f"Failed to add connection: {e}")
            return
        self._reload_connections()
        self.session.binding.select_connection(name)

    def open_sqlite_db(self):
        path, _ = QFileDialog.getOpenFileName(self, "Select SQLite database file", "", "SQLite Files (*.db *.sqlite);;All Files (*)")
        if not path:
            return
        try:
            name = self.conn_mgr.add_sqlite_connection(path)
        except Exception as e:
            QMessageBox.critical(self, "Error", f"Failed to open SQLite DB: {e}")
            return
        self._reload_connections()
        self.session.binding.select_connection(name)

    def _on_tables_loaded(self, tables):
        self.table_list.clear()
        for info in tables:
            label = info["name"] if info.get("type") != "view" else f"{info['name']} (view)"
            item = QListWidgetItem(label)
            item.setData(Qt.ItemDataRole.UserRole, info["name"])
            self.table_list.addItem(item)

    # -- saved queries -------------------------------------------------------

    def _on_saved_queries_loaded(self, queries):
        self._saved_queries = queries
        self.saved_list.clear()
        for saved in queries:
            item = QListWidgetItem(saved["name"])
            item.setData(Qt.ItemDataRole.UserRole, saved)
            self.saved_list.addItem(item)

    def _on_saved_query_activated(self, item: QListWidgetItem):
        self.router.open_saved_query(item.data(Qt.ItemDataRole.UserRole))

    def _on_saved_query_menu(self, pos):
        item = self.saved_list.itemAt(pos)
        if item is None:
            return
        saved = item.data(Qt.ItemDataRole.UserRole)
        menu = QMenu(self)
        rename_action = menu.addAction("Rename")
        delete_action = menu.addAction("Delete")
        chosen = menu.exec(self.saved_list.mapToGlobal(pos))
        if chosen == rename_action:
            name, ok = QInputDialog.getText(self, "Rename query", "Name:", text=saved["name"])
            if ok and name.strip():
                self.router.rename_saved_query(saved, name.strip())
        elif chosen == delete_action:
            resp = QMessageBox.question(self, "Delete Saved Query", f"Are you sure you want to delete \"{saved['name']}\"? This action cannot be undone.")
            if resp == QMessageBox.StandardButton.Yes:
                self.router.delete_saved_query(saved)

    def _on_save_query(self):
        tab = self.registry.active_tab()
        if tab is None or tab.get("kind") != QUERY:
            return
        name, ok = QInputDialog.getText(self, "Save query", "Name:", text=tab.get("title", ""))
        if ok and name.strip():
            self.router.save_query(name.strip())

    # -- tabs ----------------------------------------------------------------

    def _render_tabs(self):
        tabs = self.registry.tabs()
        self.tab_bar.blockSignals(True)
        try:
            while self.tab_bar.count():
                self.tab_bar.removeTab(0)
            for tab in tabs:
                idx = self.tab_bar.addTab(tab.get("title") or "")
                self.tab_bar.setTabData(idx, tab["id"])
            active_idx = self.registry.index_of(self.registry.active_tab_id)
            if active_idx >= 0:
                self.tab_bar.setCurrentIndex(active_idx)
        finally:
            self.tab_bar.blockSignals(False)
        self._render_active()

    def _render_active(self):
        tab = self.registry.active_tab()
        is_query = tab is not None and tab.get("kind") == QUERY
        is_table = tab is not None and tab.get("kind") == TABLE
        self.editor.setEnabled(is_query)
        self.run_btn.setEnabled(is_query)
        self.save_btn.setEnabled(is_query)
        self.prev_btn.setEnabled(is_table and (tab.get("page") or 1) > 1)
        self.next_btn.setEnabled(is_table)
        filter_count = len(tab.get("filters") or []) if is_table else 0
        for widget in (self.filter_column_edit, self.filter_op_combo, self.filter_value_edit, self.add_filter_btn):
            widget.setEnabled(is_table)
        self.clear_filters_btn.setEnabled(filter_count > 0)
        self.clear_filters_btn.setText(f"Clear filters ({filter_count})" if filter_count else "Clear filters")
        text = tab.get("query", "") if is_query else ""
        if self.editor.toPlainText() != text:
            self.editor.blockSignals(True)
            self.editor.setPlainText(text)
            self.editor.blockSignals(False)
        self._render_result(tab["id"] if tab else None)

    def _render_result(self, tab_id):
        entry = self.session.result_cache.get(tab_id) or {}
        self.result_model.set_result(entry.get("result"))
        if entry.get("loading"):
            self.status_label.setText("Loading...")
        elif entry.get("error"):
            self.status_label.setText(f"Error: {entry['error']}")
        elif entry.get("result"):
            res = entry["result"]
            self.status_label.setText(f"{res.get('count', 0)} rows (page {res.get('page', 1)}, total {res.get('total', 0)})")
        else:
            self.status_label.setText("")

    def _on_entry_changed(self, tab_id):
        if tab_id == self.registry.active_tab_id:
            self._render_result(tab_id)

    def _on_tab_bar_changed(self, index: int):
        tab_id = self.tab_bar.tabData(index) if index >= 0 else None
        if tab_id:
            self.router.activate_tab(tab_id)

    def _on_tab_close_requested(self, index: int):
        tab_id = self.tab_bar.tabData(index)
        if tab_id:
            self.router.close_tab(tab_id)

    def _on_tab_rename_requested(self, index: int):
        tab_id = self.tab_bar.tabData(index) if index >= 0 else None
        tab = self.registry.get_tab(tab_id) if tab_id else None
        if tab is None:
            return
        title, ok = QInputDialog.getText(self, "Rename tab", "Title:", text=tab.get("title", ""))
        if ok and title.strip():
            self.router.rename_tab(tab_id, title.strip())

    def _on_editor_changed(self):
        tab = self.registry.active_tab()
        if tab is not None and tab.get("kind") == QUERY:
            self.router.edit_query(tab["id"], self.editor.toPlainText())

    def _on_run(self):
        tab = self.registry.active_tab()
        if tab is not None:
            self.router.execute_query(tab["id"], self.editor.toPlainText())

    def _change_page(self, delta: int):
        tab = self.registry.active_tab()
        if tab is not None and tab.get("kind") == TABLE:
            self.router.set_table_page(tab["id"], (tab.get("page") or 1) + delta)

    def _on_add_filter(self):
        tab = self.registry.active_tab()
        if tab is None:
            return
        operator = self.filter_op_combo.currentText()
        value = None if operator in ("is_null", "is_not_null") else self.filter_value_edit.text()
        if self.router.add_table_filter(tab["id"], self.filter_column_edit.text(), operator, value):
            self.filter_value_edit.clear()

    def _on_clear_filters(self):
        tab = self.registry.active_tab()
        if tab is not None and tab.get("filters"):
            self.router.set_table_filters(tab["id"], [])

    def _on_notification(self, level: str, message: str):
        if level == "error":
            QMessageBox.warning(self, "Error", message)
        else:
            self.statusBar().showMessage(message, 3000)

    def closeEvent(self, event):
        try:
            self.session.shutdown()
            self.runner.wait_all()
            # a flush requested during an in-flight save starts from its completion callback
            for _ in range(3):
                if not self.session.synchronizer.is_saving():
                    break
                QApplication.processEvents()
                self.runner.wait_all()
        except Exception:
            logger.exception("Failed to flush tabs on close")
        try:
            g = self.geometry()
            save_app_state({"geometry": [g.x(), g.y(), g.width(), g.height()]})
        except Exception:
            logger.exception("Failed to save app state")
        super().closeEvent(event)
