from PyQt6.QtWidgets import QDialog, QVBoxLayout, QFormLayout, QLineEdit, QComboBox, QDialogButtonBox, QMessageBox


class ConnectionDialog(QDialog):
    """Dialog to input a new server connection (postgresql or mysql)."""

    def __init__(self, parent=None):
        super().__init__(parent)
        self.setWindowTitle("New Connection")
        self.resize(420, 220)

        layout = QVBoxLayout(self)
        form = QFormLayout()

        self.name_edit = QLineEdit()
        form.addRow("Connection name:", self.name_edit)

        self.type_combo = QComboBox()
        self.type_combo.addItems(["postgresql", "mysql"])
        self.type_combo.currentTextChanged.connect(self._on_type_changed)
        form.addRow("DB Type:", self.type_combo)

        self.host_edit = QLineEdit("localhost")
        form.addRow("Host:", self.host_edit)

        self.port_edit = QLineEdit()
        self.port_edit.setPlaceholderText("Leave blank for default port")
        form.addRow("Port:", self.port_edit)

        self.user_edit = QLineEdit()
        form.addRow("User:", self.user_edit)

        self.password_edit = QLineEdit()
        self.password_edit.setEchoMode(QLineEdit.EchoMode.Password)
        form.addRow("Password:", self.password_edit)

        self.db_edit = QLineEdit()
        form.addRow("Database:", self.db_edit)

        self.schema_edit = QLineEdit()
        self.schema_edit.setPlaceholderText("Optional schema / search_path")
        form.addRow("Schema (Postgres):", self.schema_edit)

        layout.addLayout(form)

        buttons = QDialogButtonBox(QDialogButtonBox.StandardButton.Ok | QDialogButtonBox.StandardButton.Cancel)
        buttons.accepted.connect(self.accept)
        buttons.rejected.connect(self.reject)
        layout.addWidget(buttons)

        self._on_type_changed(self.type_combo.currentText())

    def _on_type_changed(self, t: str):
        # schema only applies to PostgreSQL
        self.schema_edit.setEnabled(t == "postgresql")

    def get_data(self) -> dict:
        """Return keyword arguments for ConnectionManager.add_connection.

        Raises ValueError for a missing name/host/database or a port that is not a valid number.
        """
        t = self.type_combo.currentText()
        name = self.name_edit.text().strip()
        host = self.host_edit.text().strip()
        database = self.db_edit.text().strip()

        port_txt = self.port_edit.text().strip()
        port = None
        if port_txt:
            try:
                port = int(port_txt)
            except ValueError:
                raise ValueError(f"Port must be an integer, got: {port_txt}")
            if port <= 0 or port > 65535:
                raise ValueError(f"Port out of valid range: {port}")

        if not name:
            raise ValueError("Connection name is required")
        if not host:
            raise ValueError("Host is required")
        if not database:
            raise ValueError("Database name is required")

        schema = self.schema_edit.text().strip() if t == "postgresql" else ""
        return {
            "name": name,
            "conn_type": t,
            "host": host,
            "port": port,
            "user": self.user_edit.text().strip() or None,
            "password": self.password_edit.text() or None,
            "database": database,
            "schema": schema or None,
        }

    def accept(self) -> None:
        try:
            self.get_data()
        except ValueError as e:
            QMessageBox.warning(self, "Invalid connection", str(e))
            return
        super().accept()
