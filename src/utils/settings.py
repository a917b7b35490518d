import os
import json
from pathlib import Path
from typing import Dict, Any

CONFIG_DIR = Path(os.environ.get("SQLTABS_HOME") or (Path(os.path.expanduser("~")) / ".sqltabs"))
CONFIG_DIR.mkdir(parents=True, exist_ok=True)
SESSION_SETTINGS_PATH = CONFIG_DIR / "settings.json"

DEFAULT_SESSION_SETTINGS: Dict[str, int] = {
    "debounce_ms": 500,
    "page_size": 25,
    "max_flush_retries": 3,
    "row_limit": 1000,
}


def _read_json_dict(path: Path) -> Dict[str, Any]:
    """Read a JSON object from path; returns {} when missing, unreadable or not an object."""
    if not path.exists():
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
            if isinstance(data, dict):
                return data
    except Exception:
        # best-effort: ignore errors and return empty state
        pass
    return {}


def load_session_settings(path: Path | None = None) -> Dict[str, int]:
    """Load session engine settings from settings.json.

    Every key in DEFAULT_SESSION_SETTINGS is always present in the result. Stored values
    are cast to int; values that cannot be cast or are negative fall back to the default.
    """
    data = _read_json_dict(Path(path) if path else SESSION_SETTINGS_PATH)
    settings: Dict[str, int] = {}
    for key, default in DEFAULT_SESSION_SETTINGS.items():
        value = data.get(key, default)
        try:
            value = int(value)
        except (TypeError, ValueError):
            value = default
        if value < 0:
            value = default
        settings[key] = value
    # a zero page size would make pagination meaningless
    if settings["page_size"] == 0:
        settings["page_size"] = DEFAULT_SESSION_SETTINGS["page_size"]
    return settings


def load_app_state() -> dict:
    """Load simple application state from app_state.json.

    Returns a dict; on error or missing file returns empty dict.
    Used for window geometry between sessions.
    """
    return _read_json_dict(CONFIG_DIR / "app_state.json")


def save_app_state(state: dict) -> None:
    """Save application state (dict) to app_state.json. Raises on write failures.

    Keep this simple; callers may catch exceptions if they want to ignore failures.
    """
    state_path = CONFIG_DIR / "app_state.json"
    with open(state_path, "w", encoding="utf-8") as f:
        json.dump(state or {}, f, indent=2)
