from typing import List, Any, Optional, Dict
from PyQt6.QtCore import QAbstractTableModel, Qt, QModelIndex


class TableModel(QAbstractTableModel):
    """Read-only table model for a QueryResult dict (columns + rows).

    set_result() swaps the data in place so one view can follow the active tab.
    """

    def __init__(self, result: Optional[Dict[str, Any]] = None):
        super().__init__()
        self._columns: List[str] = []
        self._rows: List[List[Any]] = []
        if result:
            self.set_result(result)

    def set_result(self, result: Optional[Dict[str, Any]]) -> None:
        self.beginResetModel()
        self._columns = list((result or {}).get("columns") or [])
        self._rows = [list(r) for r in (result or {}).get("rows") or []]
        self.endResetModel()

    def rowCount(self, parent: QModelIndex = QModelIndex()) -> int:
        return len(self._rows)

    def columnCount(self, parent: QModelIndex = QModelIndex()) -> int:
        return len(self._columns)

    def data(self, index: QModelIndex, role: int = Qt.ItemDataRole.DisplayRole):
        if not index.isValid() or role != Qt.ItemDataRole.DisplayRole:
            return None
        try:
            value = self._rows[index.row()][index.column()]
        except IndexError:
            return None
        return "NULL" if value is None else str(value)

    def headerData(self, section: int, orientation: Qt.Orientation, role: int = Qt.ItemDataRole.DisplayRole):
        if role != Qt.ItemDataRole.DisplayRole:
            return None
        if orientation == Qt.Orientation.Horizontal:
            if 0 <= section < len(self._columns):
                return self._columns[section]
            return None
        return section + 1

