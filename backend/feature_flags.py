"""
Feature flags.

Top-level boolean flags are core features and cannot be switched off.
Grouped flags live under a category and are addressed with a dotted path,
e.g. "EXPERIMENTAL.GEDCOM_EXPORT". Toggles are runtime overrides and are
not persisted.
"""

import copy
import logging
from datetime import datetime, timezone
from typing import Any

logger = logging.getLogger("lineageweaver.features")

FEATURE_FLAGS_VERSION = "2.0.0"

DEFAULT_FEATURE_FLAGS: dict[str, Any] = {
    # Core
    "FAMILY_TREE": True,
    "DATA_MANAGEMENT": True,
    "THEME_SYSTEM": True,
    "ZOOM_CONTROLS": True,
    "MINIMAP": True,
    # Codex
    "CODEX_SYSTEM": True,
    "CODEX_WIKI_LINKS": True,
    "CODEX_BACKLINKS": True,
    "CODEX_BROWSE_PAGES": True,
    "CODEX_ENTRY_CREATION": True,
    "CODEX_CATEGORIES": True,
    "MODULE_1E": {
        "IMPORT_JSON": True,
        "SPECIES_FIELD": True,
        "TITLES_SYSTEM": True,
        "MAGICAL_BLOODLINES": True,
        "TIMELINE_VIEW": False,
        "HORIZONTAL_LAYOUT": True,
    },
    "TREE_CODEX_INTEGRATION": {
        "AUTO_CODEX_ENTRIES": False,
        "BIDIRECTIONAL_NAV": False,
        "CODEX_LINK_IN_TREE": False,
        "UNIFIED_PROFILES": False,
        "CODEX_EDIT_REFLECTS_TREE": False,
        "TREE_EDIT_REFLECTS_CODEX": False,
        "BIOGRAPHY_PREVIEW_HOVER": False,
        "AUTO_WIKI_LINK_DETECTION": False,
        "KNOWLEDGE_GRAPH_VIEW": False,
        "TIMELINE_CODEX_INTEGRATION": False,
    },
    "EXPERIMENTAL": {
        "CODEX_PREVIEW_HOVER": False,
        "RELATIONSHIP_GRAPH": False,
        "ADVANCED_SEARCH": False,
        "BULK_OPERATIONS": False,
        "AI_BIOGRAPHY_ASSISTANT": False,
        "AUTO_RELATIONSHIP_DETECTION": False,
        "DUPLICATE_DETECTION": False,
        "RELATIONSHIP_STRENGTH": False,
        "HOUSE_ALLIANCES_VIEW": False,
        "ANIMATED_TRANSITIONS": False,
        "GEDCOM_EXPORT": False,
        "MARKDOWN_EXPORT": False,
        "COLLABORATIVE_SYNC": False,
    },
    "DEPRECATED": {},
}

# Global flag state (runtime toggles mutate this copy)
_flags: dict[str, Any] = copy.deepcopy(DEFAULT_FEATURE_FLAGS)


def reset_feature_flags() -> None:
    global _flags
    _flags = copy.deepcopy(DEFAULT_FEATURE_FLAGS)


def is_feature_enabled(feature_path: str) -> bool:
    """True only when the path resolves to a flag set to True."""
    value: Any = _flags
    for key in feature_path.split("."):
        if not isinstance(value, dict) or key not in value:
            return False
        value = value[key]
    return value is True


def get_enabled_features(category: str) -> list[str]:
    features = _flags.get(category)
    if not isinstance(features, dict):
        return []
    return [name for name, value in features.items() if value is True]


def require_features(features: list[str]) -> bool:
    return all(is_feature_enabled(f) for f in features)


def has_any_feature(features: list[str]) -> bool:
    return any(is_feature_enabled(f) for f in features)


def get_feature_status() -> dict[str, Any]:
    categories: dict[str, Any] = {}
    for category, features in _flags.items():
        if isinstance(features, dict):
            enabled = sum(1 for v in features.values() if v is True)
            total = len(features)
            categories[category] = {
                "enabled": enabled,
                "total": total,
                "percentage": round(enabled / total * 100) if total else 0,
                "features": dict(features),
            }
        else:
            categories[category] = features
    return {
        "version": FEATURE_FLAGS_VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "categories": categories,
    }


def toggle_feature(feature_path: str, enabled: bool) -> None:
    """
    Override a grouped flag at runtime.

    Raises:
        ValueError: for core flags or paths that do not name an existing flag
    """
    keys = feature_path.split(".")
    if len(keys) < 2:
        raise ValueError(f"Core feature cannot be toggled: {feature_path}")

    container: Any = _flags
    for key in keys[:-1]:
        container = container.get(key) if isinstance(container, dict) else None
        if container is None:
            raise ValueError(f"Unknown feature: {feature_path}")
    if not isinstance(container, dict) or keys[-1] not in container:
        raise ValueError(f"Unknown feature: {feature_path}")

    container[keys[-1]] = bool(enabled)
    logger.info(f"Feature {feature_path} {'enabled' if enabled else 'disabled'}")
