"""Durable stores for per-connection tab layouts and saved queries.

Both stores keep a single JSON document in the config directory. They are called from
background workers, so every read-modify-write happens under a lock and files are
replaced atomically.
"""
import copy
import json
import logging
import os
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List

from utils.settings import CONFIG_DIR

logger = logging.getLogger(__name__)

TABS_PATH = CONFIG_DIR / "tabs.json"
SAVED_QUERIES_PATH = CONFIG_DIR / "saved_queries.json"


def _load_document(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError):
        logger.warning("Ignoring unreadable state file %s", path, exc_info=True)
        return {}
    return data if isinstance(data, dict) else {}


def _write_document(path: Path, data: Dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    with open(tmp_path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)
    os.replace(tmp_path, path)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class TabStore:
    """Persist the ordered tab list of each connection under its connection id."""

    def __init__(self, path: Path | None = None):
        self.path = Path(path) if path else TABS_PATH
        self._lock = threading.Lock()

    def load(self, connection_id: str) -> List[dict]:
        """Return the persisted tabs for connection_id, or [] on first use."""
        with self._lock:
            data = _load_document(self.path)
        tabs = data.get(str(connection_id))
        if not isinstance(tabs, list):
            return []
        return [t for t in tabs if isinstance(t, dict) and t.get("id")]

    def save(self, connection_id: str, tabs: List[dict]) -> None:
        with self._lock:
            data = _load_document(self.path)
            data[str(connection_id)] = copy.deepcopy(list(tabs))
            try:
                _write_document(self.path, data)
            except OSError as e:
                raise RuntimeError(f"Failed to save tabs for '{connection_id}': {e}") from e
        logger.debug("Saved %d tabs for connection %r", len(tabs), connection_id)

    def forget(self, connection_id: str) -> None:
        """Drop the stored layout of a removed connection."""
        with self._lock:
            data = _load_document(self.path)
            if data.pop(str(connection_id), None) is not None:
                _write_document(self.path, data)


class SavedQueryStore:
    """Named, connection-scoped query texts with integer ids.

    Document layout: {"next_id": int, "queries": [saved_query, ...]}.
    """

    def __init__(self, path: Path | None = None):
        self.path = Path(path) if path else SAVED_QUERIES_PATH
        self._lock = threading.Lock()

    def _read(self) -> Dict[str, Any]:
        data = _load_document(self.path)
        queries = data.get("queries")
        if not isinstance(queries, list):
            queries = []
        next_id = data.get("next_id")
        if not isinstance(next_id, int):
            next_id = max([q.get("id", 0) for q in queries if isinstance(q, dict)] or [0]) + 1
        return {"next_id": next_id, "queries": [q for q in queries if isinstance(q, dict)]}

    def _write(self, data: Dict[str, Any]) -> None:
        try:
            _write_document(self.path, data)
        except OSError as e:
            raise RuntimeError(f"Failed to write saved queries: {e}") from e

    def list(self, connection_id: str) -> List[dict]:
        """Saved queries of a connection, most recently updated first."""
        with self._lock:
            queries = self._read()["queries"]
        own = [dict(q) for q in queries if q.get("connection_id") == connection_id]
        own.sort(key=lambda q: q.get("updated_at") or "", reverse=True)
        return own

    def create(self, connection_id: str, name: str, query: str) -> dict:
        with self._lock:
            data = self._read()
            ts = _now()
            saved = {
                "id": data["next_id"],
                "connection_id": connection_id,
                "name": name,
                "query": query,
                "created_at": ts,
                "updated_at": ts,
            }
            data["queries"].append(saved)
            data["next_id"] += 1
            self._write(data)
        return dict(saved)

    def update(self, query_id: int, name: str, query: str) -> dict:
        with self._lock:
            data = self._read()
            for saved in data["queries"]:
                if saved.get("id") == query_id:
                    saved["name"] = name
                    saved["query"] = query
                    saved["updated_at"] = _now()
                    self._write(data)
                    return dict(saved)
        raise RuntimeError(f"Saved query {query_id} not found")

    def delete(self, query_id: int) -> None:
        with self._lock:
            data = self._read()
            remaining = [q for q in data["queries"] if q.get("id") != query_id]
            if len(remaining) != len(data["queries"]):
                data["queries"] = remaining
                self._write(data)
