import sys
from pathlib import Path
import pytest

# Ensure project src directory is on sys.path
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from ui.connection_dialog import ConnectionDialog


def _filled(**fields):
    dlg = ConnectionDialog()
    dlg.name_edit.setText(fields.get("name", "prod"))
    dlg.type_combo.setCurrentText(fields.get("type", "postgresql"))
    dlg.host_edit.setText(fields.get("host", "db.local"))
    dlg.port_edit.setText(fields.get("port", ""))
    dlg.user_edit.setText(fields.get("user", "app"))
    dlg.db_edit.setText(fields.get("database", "shop"))
    dlg.schema_edit.setText(fields.get("schema", ""))
    return dlg


def test_get_data_returns_add_connection_arguments():
    data = _filled(port="5433", schema="sales").get_data()
    assert data == {
        "name": "prod", "conn_type": "postgresql", "host": "db.local", "port": 5433,
        "user": "app", "password": None, "database": "shop", "schema": "sales",
    }


def test_schema_is_dropped_for_mysql():
    dlg = _filled(type="mysql", schema="sales")
    assert not dlg.schema_edit.isEnabled()
    data = dlg.get_data()
    assert data["conn_type"] == "mysql"
    assert data["schema"] is None
    assert data["port"] is None


@pytest.mark.parametrize("fields, message", [
    ({"port": "abc"}, "Port must be an integer"),
    ({"port": "70000"}, "out of valid range"),
    ({"name": "  "}, "name is required"),
    ({"host": ""}, "Host is required"),
    ({"database": ""}, "Database name is required"),
])
def test_invalid_input_is_rejected(fields, message):
    with pytest.raises(ValueError, match=message):
        _filled(**fields).get_data()


def test_dialog_output_is_accepted_by_connection_manager(tmp_path):
    from db.connection import ConnectionManager

    mgr = ConnectionManager(config_path=tmp_path / "connections.json")
    data = _filled(port="5433").get_data()
    name = mgr.add_connection(data.pop("name"), data.pop("conn_type"), **data)
    assert name == "prod"
    assert name in [c["id"] for c in mgr.list()["connections"]]
