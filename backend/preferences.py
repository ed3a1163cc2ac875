"""
Local key/value preferences persisted to <DATA_DIR>/preferences.json.

Keys keep the names the web client stores in localStorage so exported
preference files stay interchangeable.
"""

import json
import logging
from pathlib import Path
from typing import Any

from settings import get_data_dir

logger = logging.getLogger("lineageweaver.preferences")

SHOW_DEV_PANEL_KEY = "lineageweaver_show_dev_panel"
LEARNING_MODE_KEY = "lineageweaver-learning-mode"
ACTIVE_DATASET_KEY = "lineageweaver_activeDatasetId"
THEME_KEY = "lineageweaver-theme"

LEARNING_MODES = ("scholar", "learning", "modern")
DEFAULT_LEARNING_MODE = "learning"

DEFAULTS: dict[str, Any] = {
    SHOW_DEV_PANEL_KEY: False,
    LEARNING_MODE_KEY: DEFAULT_LEARNING_MODE,
    ACTIVE_DATASET_KEY: None,
    THEME_KEY: None,
}


def preferences_path(data_dir: Path | None = None) -> Path:
    return (data_dir or get_data_dir()) / "preferences.json"


def load_preferences(data_dir: Path | None = None) -> dict[str, Any]:
    """Stored preferences merged over the defaults. A corrupt file reads as empty."""
    path = preferences_path(data_dir)
    stored: dict[str, Any] = {}
    if path.exists():
        try:
            stored = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            logger.warning(f"Ignoring unreadable preferences file {path}: {e}")
    return {**DEFAULTS, **stored}


def save_preferences(prefs: dict[str, Any], data_dir: Path | None = None) -> None:
    path = preferences_path(data_dir)
    path.write_text(json.dumps(prefs, indent=2), encoding="utf-8")


def get_preference(key: str, default: Any = None, data_dir: Path | None = None) -> Any:
    value = load_preferences(data_dir).get(key)
    return default if value is None else value


def set_preference(key: str, value: Any, data_dir: Path | None = None) -> None:
    prefs = load_preferences(data_dir)
    prefs[key] = value
    save_preferences(prefs, data_dir)


def remove_preference(key: str, data_dir: Path | None = None) -> None:
    prefs = load_preferences(data_dir)
    prefs.pop(key, None)
    save_preferences(prefs, data_dir)


def update_preferences(updates: dict[str, Any], data_dir: Path | None = None) -> dict[str, Any]:
    """Apply several preference changes at once, validating the learning mode."""
    mode = updates.get(LEARNING_MODE_KEY)
    if mode is not None and mode not in LEARNING_MODES:
        raise ValueError(f"Invalid learning mode: {mode}")
    prefs = {**load_preferences(data_dir), **updates}
    save_preferences(prefs, data_dir)
    return prefs


# ============================================================================
# Learning mode
# ============================================================================

def get_learning_mode(data_dir: Path | None = None) -> str:
    mode = get_preference(LEARNING_MODE_KEY, DEFAULT_LEARNING_MODE, data_dir)
    return mode if mode in LEARNING_MODES else DEFAULT_LEARNING_MODE


def set_learning_mode(mode: str, data_dir: Path | None = None) -> None:
    if mode not in LEARNING_MODES:
        raise ValueError(f"Invalid learning mode: {mode}")
    set_preference(LEARNING_MODE_KEY, mode, data_dir)
