"""Schema browsing helpers: list the tables and views of a connection.

Introspection goes through SQLAlchemy's inspector. Slow or unresponsive drivers are bounded by
_call_with_timeout so a background worker never hangs forever on metadata calls.
"""
from typing import List, Optional
import logging
import threading
from sqlalchemy import inspect

logger = logging.getLogger(__name__)

# Timeout for short metadata/inspection operations (seconds)
_INTROSPECTION_TIMEOUT = 5


def _call_with_timeout(func, timeout: int = _INTROSPECTION_TIMEOUT):
    """Run func() in a background thread and return its result or raise on error/timeout.

    The caller should handle exceptions and treat timeouts as introspection failure.
    """
    result = {"ok": False, "value": None, "error": None}

    def _target():
        try:
            result["value"] = func()
            result["ok"] = True
        except Exception as e:
            result["error"] = e

    thr = threading.Thread(target=_target, daemon=True)
    thr.start()
    thr.join(timeout)
    if result["ok"]:
        return result["value"]
    # If thread finished with error, raise it; otherwise treat as timeout
    if result["error"]:
        raise result["error"]
    raise TimeoutError(f"Operation timed out after {timeout} seconds")


def list_tables(engine, schema: Optional[str] = None) -> List[dict]:
    """Return [{"name", "type"}] for every table and view, sorted by name.

    A failure to list views is tolerated (some dialects do not support it); a failure to list
    tables is raised as RuntimeError so the caller can report it.
    """
    inspector = inspect(engine)
    try:
        tables = _call_with_timeout(lambda: inspector.get_table_names(schema=schema)) or []
    except Exception as e:
        raise RuntimeError(f"Failed to list tables: {e}") from e
    try:
        views = _call_with_timeout(lambda: inspector.get_view_names(schema=schema)) or []
    except Exception:
        logger.debug("View listing failed (schema=%r); continuing with tables only", schema, exc_info=True)
        views = []
    items = [{"name": t, "type": "table"} for t in tables]
    items.extend({"name": v, "type": "view"} for v in views)
    items.sort(key=lambda it: it["name"])
    return items


class SchemaBrowser:
    """list_tables(connection_id) over a ConnectionManager; honors a connection's saved schema."""

    def __init__(self, conn_mgr):
        self.conn_mgr = conn_mgr

    def list_tables(self, connection_id: str) -> List[dict]:
        engine = self.conn_mgr.get_connection(connection_id)
        schema = self.conn_mgr.get_config(connection_id).get("schema") or None
        return list_tables(engine, schema=schema)
