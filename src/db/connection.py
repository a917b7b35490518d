import os
import json
import threading
from typing import Dict, Any, List, Optional
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, URL
from pathlib import Path
import codecs
import logging

from utils.settings import CONFIG_DIR

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = CONFIG_DIR / "config.json"

_DEFAULT_PORTS = {"postgresql": 5432, "mysql": 3306}
_DEFAULT_DRIVERS = {"postgresql": "psycopg2", "mysql": "pymysql"}


class ConnectionManager:
    """Manage DB connections (engines) and persist connection configs.

    Connections are identified by their display name. Engines are created lazily on first use;
    configs are persisted to config.json together with the last selected connection:

        {"connections": {name: cfg, ...}, "last_selected": name | null}
    """

    def __init__(self, config_path: Path | None = None):
        self._engines: Dict[str, Engine] = {}
        self._configs: Dict[str, Dict[str, Any]] = {}
        self._last_selected: Optional[str] = None
        # select() runs on background workers while the GUI thread may add connections
        self._lock = threading.RLock()
        self.config_path = Path(
            config_path) if config_path else DEFAULT_CONFIG_PATH
        self.config_path.parent.mkdir(parents=True, exist_ok=True)
        self._load_config()

    def _load_config(self) -> None:
        if not self.config_path.exists():
            return
        # Try multiple encodings because users may have config written in other encodings on Windows
        data = None
        for enc in ("utf-8", "utf-8-sig", "cp936", "latin-1"):
            try:
                with open(self.config_path, "r", encoding=enc) as f:
                    data = json.loads(f.read())
                break
            except (UnicodeDecodeError, json.JSONDecodeError):
                continue
            except OSError:
                break

        if not isinstance(data, dict):
            # backup the problematic config file and continue with empty configs
            try:
                bad_path = self.config_path.with_suffix(
                    self.config_path.suffix + ".bak")
                with open(self.config_path, "rb") as fsrc, open(bad_path, "wb") as fdst:
                    fdst.write(fsrc.read())
                logger.warning("Unreadable connection config backed up to %s", bad_path)
            except OSError:
                logger.exception("Failed to back up unreadable connection config")
            return

        connections = data.get("connections")
        if isinstance(connections, dict):
            for name, cfg in connections.items():
                if not isinstance(cfg, dict):
                    continue
                cfg = dict(cfg)
                # Decode password saved with rot13 (best-effort). Keep other fields as-is.
                if isinstance(cfg.get('password'), str):
                    cfg['password'] = codecs.decode(cfg['password'], 'rot_13')
                self._configs[name] = cfg
        last = data.get("last_selected")
        if isinstance(last, str) and last in self._configs:
            self._last_selected = last

        # Log the loaded config names for debugging (do not log secrets)
        logger.debug("Loaded connection configs: %r", list(self._configs.keys()))

    def _save_config(self) -> None:
        # Encode passwords using rot13 for simple obfuscation before writing
        to_write: Dict[str, Any] = {}
        for name, cfg in self._configs.items():
            cfg_copy = dict(cfg)
            if isinstance(cfg_copy.get('password'), str):
                cfg_copy['password'] = codecs.encode(cfg_copy['password'], 'rot_13')
            to_write[name] = cfg_copy
        try:
            with open(self.config_path, "w", encoding="utf-8") as f:
                json.dump({"connections": to_write, "last_selected": self._last_selected}, f, indent=2)
        except OSError as e:
            raise RuntimeError(f"Failed to save connection config: {e}") from e

    def _log_engine_url(self, name: str, engine: Engine) -> None:
        """Log the engine's connection URL with password hidden for diagnostics."""
        url_obj = getattr(engine, 'url', None)
        if url_obj is None:
            safe = '<engine-without-url>'
        else:
            safe = url_obj.render_as_string(hide_password=True)
        logger.debug("Engine for %s created: %s", name, safe)

    def _unique_name(self, name: str) -> str:
        display_name = name
        idx = 1
        while display_name in self._engines or display_name in self._configs:
            display_name = f"{name} ({idx})"
            idx += 1
        return display_name

    def add_sqlite_connection(self, path: str) -> str:
        """Add a SQLite connection by file path. Returns a connection name.

        The connection is registered without a live connect so the application stays responsive.
        """
        if not os.path.exists(path):
            raise FileNotFoundError(f"SQLite file not found: {path}")
        with self._lock:
            name = self._unique_name(f"SQLite: {os.path.basename(path)}")
            # Persist only the page inputs; do NOT save the full URL string.
            self._configs[name] = {"type": "sqlite", "path": os.path.abspath(path)}
            self._save_config()
        return name

    def add_connection(self, name: str, conn_type: str, **kwargs) -> str:
        """Add a server connection. conn_type: 'postgresql'|'mysql'.

        kwargs: host, port, user (or username), password, database, driver, schema; any other
        keyword is passed through as a URL query parameter (e.g. sslmode). Returns the connection name.
        """
        if conn_type not in _DEFAULT_PORTS:
            raise ValueError(f"Unsupported connection type: {conn_type}")
        # Normalize common aliases so callers can pass either 'username' or 'user'
        if 'username' in kwargs and 'user' not in kwargs:
            kwargs['user'] = kwargs.pop('username')

        params = {k: str(v) for k, v in kwargs.items()
                  if k not in ("host", "port", "user", "password", "database", "driver", "schema") and v is not None}
        cfg = {
            "type": conn_type,
            "driver": kwargs.get("driver") or _DEFAULT_DRIVERS[conn_type],
            "host": kwargs.get("host") or "localhost",
            "port": kwargs.get("port") or _DEFAULT_PORTS[conn_type],
            "user": kwargs.get("user") or None,
            "password": kwargs.get("password") or None,
            "database": kwargs.get("database") or None,
            "params": params,
        }
        if kwargs.get("schema"):
            cfg["schema"] = str(kwargs["schema"])
        # validate eagerly so a bad config is never persisted
        self._build_url(cfg)
        with self._lock:
            display_name = self._unique_name(name or f"{conn_type}@{cfg['host']}")
            self._configs[display_name] = cfg
            self._save_config()
        return display_name

    def _build_url(self, cfg: Dict[str, Any]):
        ctype = cfg.get('type')
        if ctype == 'sqlite':
            path = cfg.get('path')
            if not path:
                raise RuntimeError('Missing sqlite path in config')
            return f"sqlite:///{os.path.abspath(path)}"
        if ctype not in _DEFAULT_PORTS:
            raise ValueError(f"Unsupported connection type in config: {ctype}")
        try:
            return URL.create(
                drivername=f"{ctype}+{cfg.get('driver') or _DEFAULT_DRIVERS[ctype]}",
                username=cfg.get('user') or None,
                password=cfg.get('password') or None,
                host=cfg.get('host') or None,
                port=int(cfg['port']) if cfg.get('port') else None,
                database=cfg.get('database') or None,
                query=cfg.get('params') or {},
            )
        except (TypeError, ValueError) as e:
            raise RuntimeError(f"Invalid connection parameters: {e}") from e

    def get_connection(self, name: str) -> Engine:
        """Return the SQLAlchemy Engine for the given connection name, creating it on first use."""
        with self._lock:
            if name in self._engines:
                return self._engines[name]
            cfg = self._configs.get(name)
            if cfg is None:
                raise RuntimeError(f"Connection '{name}' is not available")
            try:
                engine = create_engine(self._build_url(cfg), future=True)
            except Exception as e:
                raise RuntimeError(f"Connection '{name}' is not available: {e}") from e
            self._engines[name] = engine
            self._log_engine_url(name, engine)
            return engine

    def get_config(self, name: str) -> Dict[str, Any]:
        """Saved config for name without the password; {} for unknown names."""
        cfg = dict(self._configs.get(name) or {})
        cfg.pop('password', None)
        return cfg

    def list_connections(self) -> List[str]:
        # merge keys from configs and engines to preserve configs without live engine
        with self._lock:
            names = set(self._configs.keys()) | set(self._engines.keys())
        return sorted(names)

    def list(self) -> Dict[str, Any]:
        """Connection Directory listing: {"connections": [{"id", "name", "type"}], "last_selected_id"}."""
        with self._lock:
            connections = [
                {"id": name, "name": name, "type": self._configs.get(name, {}).get("type")}
                for name in self.list_connections()
            ]
            return {"connections": connections, "last_selected_id": self._last_selected}

    def select(self, name: str) -> None:
        """Remember name as the last selected connection."""
        with self._lock:
            if name not in self._configs:
                raise RuntimeError(f"Connection '{name}' is not available")
            if self._last_selected == name:
                return
            self._last_selected = name
            self._save_config()
        logger.debug("Last selected connection set to %r", name)

    def remove_connection(self, name: str) -> None:
        with self._lock:
            if name in self._engines:
                self._engines.pop(name).dispose()
            if name in self._configs:
                del self._configs[name]
                if self._last_selected == name:
                    self._last_selected = None
                self._save_config()
