from typing import List, Tuple, Optional, Dict, Any
from sqlalchemy.engine import Engine
from sqlalchemy import table as sa_table, column as sa_column, select, func, literal_column, and_
import logging
import sqlparse
import threading
import time

logger = logging.getLogger(__name__)

# Per-statement execution timeout (seconds) to avoid indefinite blocking by DB drivers.
_EXECUTION_TIMEOUT = 30

DEFAULT_PAGE_SIZE = 25

FILTER_OPERATORS = ("eq", "neq", "gt", "lt", "gte", "lte", "like", "not_like", "is_null", "is_not_null")


def _close_quietly(conn) -> None:
    try:
        conn.close()
    except Exception:
        try:
            conn.invalidate()
        except Exception:
            pass


def _run_with_timeout(conn, func, label: str):
    """Run func() on a helper thread, giving up after _EXECUTION_TIMEOUT.

    On timeout the connection is closed to interrupt the driver, which some drivers ignore.
    """
    outcome = {"value": None, "error": None}

    def _target():
        try:
            outcome["value"] = func()
        except Exception as e:
            outcome["error"] = e

    thr = threading.Thread(target=_target, daemon=True)
    thr.start()

    waited = 0.0
    interval = 0.1
    while thr.is_alive():
        thr.join(interval)
        waited += interval
        if waited >= _EXECUTION_TIMEOUT:
            _close_quietly(conn)
            raise RuntimeError(f"Execution timed out after {_EXECUTION_TIMEOUT} seconds for statement: {label}")

    if outcome["error"] is not None:
        raise RuntimeError(f"Error executing statement: {label}\n{outcome['error']}") from outcome["error"]
    return outcome["value"]


def execute_sql(engine: Engine, sql: str, row_limit: int = 1000) -> List[Tuple[List[str], List[Tuple], float, bool]]:
    """Execute SQL (possibly multiple statements) and return list of (columns, rows, elapsed_seconds, truncated).

    Statements are split with sqlparse so semicolons inside string literals survive.
    Non-SELECT statements produce a single-row message with affected rowcount (truncated=False).

    row_limit: maximum number of rows to fetch for result sets. Additional rows are discarded.
    """
    statements = [s.strip().rstrip(";").strip() for s in sqlparse.split(sql or "")]
    statements = [s for s in statements if s]
    results: List[Tuple[List[str], List[Tuple], float, bool]] = []
    if not statements:
        return results

    with engine.connect() as conn:
        for stmt in statements:
            def _run_statement(stmt=stmt):
                start = time.perf_counter()
                res = conn.exec_driver_sql(stmt)
                if res.returns_rows:
                    cols = list(res.keys())
                    # fetch up to row_limit + 1 to detect truncation
                    fetched = res.fetchmany(row_limit + 1)
                    truncated = len(fetched) > row_limit
                    rows = [tuple(r) for r in fetched[:row_limit]]
                    return (cols, rows, time.perf_counter() - start, truncated)
                elapsed = time.perf_counter() - start
                return (["Message"], [(f"Affected rows: {res.rowcount}",)], elapsed, False)

            results.append(_run_with_timeout(conn, _run_statement, stmt))
        conn.commit()

    return results


def _filter_clause(flt: Dict[str, Any]):
    """Translate one filter dict into a SQLAlchemy expression; None for filters that should be skipped."""
    column_name = (flt.get("column") or "").strip()
    operator = flt.get("operator")
    if not column_name or operator not in FILTER_OPERATORS:
        return None
    col = sa_column(column_name)
    value = flt.get("value")
    if operator == "eq":
        return col == value
    if operator == "neq":
        return col != value
    if operator == "gt":
        return col > value
    if operator == "lt":
        return col < value
    if operator == "gte":
        return col >= value
    if operator == "lte":
        return col <= value
    if operator == "like":
        return col.like(value)
    if operator == "not_like":
        return col.not_like(value)
    if operator == "is_null":
        return col.is_(None)
    return col.is_not(None)


def build_where(filters: Optional[List[Dict[str, Any]]]):
    """AND together all usable filters; returns None when nothing applies."""
    clauses = [c for c in (_filter_clause(f) for f in (filters or [])) if c is not None]
    if not clauses:
        return None
    return and_(*clauses)


def _split_table_name(table_name: str) -> Tuple[Optional[str], str]:
    if "." in table_name:
        schema, name = table_name.split(".", 1)
        return schema, name
    return None, table_name


class QueryExecutor:
    """Run ad-hoc queries and paginated table reads against connections from a ConnectionManager.

    Both operations block and are meant to be called from a background worker. They return a
    QueryResult dict: columns, rows, count, total, page, limit, elapsed, truncated.
    """

    def __init__(self, conn_mgr, row_limit: int = 1000, page_size: int = DEFAULT_PAGE_SIZE):
        self.conn_mgr = conn_mgr
        self.row_limit = row_limit
        self.page_size = page_size

    def execute(self, connection_id: str, text: str) -> Dict[str, Any]:
        """Execute text and return the result of its last statement."""
        if not (text or "").strip():
            raise RuntimeError("Query is empty")
        engine = self.conn_mgr.get_connection(connection_id)
        results = execute_sql(engine, text, row_limit=self.row_limit)
        if not results:
            raise RuntimeError("Query produced no statements")
        columns, rows, elapsed, truncated = results[-1]
        logger.debug("Executed %d statement(s) on %r in %.3fs", len(results), connection_id, elapsed)
        return {
            "columns": list(columns),
            "rows": [list(r) for r in rows],
            "count": len(rows),
            "total": len(rows),
            "page": 1,
            "limit": self.row_limit,
            "elapsed": elapsed,
            "truncated": truncated,
        }

    def fetch_table_page(self, connection_id: str, table_name: str, page: int = 1, filters: Optional[List[Dict[str, Any]]] = None) -> Dict[str, Any]:
        """Read one page of table_name with filters applied, plus the filtered row total."""
        engine = self.conn_mgr.get_connection(connection_id)
        page = max(1, int(page or 1))
        limit = self.page_size
        schema, name = _split_table_name(table_name)
        tbl = sa_table(name, schema=schema)
        where = build_where(filters)

        count_stmt = select(func.count()).select_from(tbl)
        data_stmt = select(literal_column("*")).select_from(tbl)
        if where is not None:
            count_stmt = count_stmt.where(where)
            data_stmt = data_stmt.where(where)
        data_stmt = data_stmt.limit(limit).offset((page - 1) * limit)

        start = time.perf_counter()
        with engine.connect() as conn:
            def _read():
                total = conn.execute(count_stmt).scalar() or 0
                res = conn.execute(data_stmt)
                return total, list(res.keys()), [list(r) for r in res.fetchall()]

            total, columns, rows = _run_with_timeout(conn, _read, f"SELECT FROM {table_name}")
        return {
            "columns": columns,
            "rows": rows,
            "count": len(rows),
            "total": int(total),
            "page": page,
            "limit": limit,
            "elapsed": time.perf_counter() - start,
            "truncated": False,
        }
