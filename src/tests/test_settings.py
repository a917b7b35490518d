import sys
import json
from pathlib import Path

# Ensure project src directory is on sys.path
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from utils.settings import DEFAULT_SESSION_SETTINGS, load_session_settings


def test_defaults_when_missing(tmp_path):
    assert load_session_settings(tmp_path / "settings.json") == DEFAULT_SESSION_SETTINGS


def test_invalid_values_fall_back(tmp_path):
    path = tmp_path / "settings.json"
    path.write_text(json.dumps({"debounce_ms": "250", "page_size": 0, "max_flush_retries": -1, "row_limit": "lots"}),
                    encoding="utf-8")
    settings = load_session_settings(path)
    assert settings["debounce_ms"] == 250
    assert settings["page_size"] == DEFAULT_SESSION_SETTINGS["page_size"]
    assert settings["max_flush_retries"] == DEFAULT_SESSION_SETTINGS["max_flush_retries"]
    assert settings["row_limit"] == DEFAULT_SESSION_SETTINGS["row_limit"]


def test_non_object_document_falls_back(tmp_path):
    path = tmp_path / "settings.json"
    path.write_text("[1, 2]", encoding="utf-8")
    assert load_session_settings(path) == DEFAULT_SESSION_SETTINGS
