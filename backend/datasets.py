"""
Dataset registry.

Datasets are named partitions of a user's data. Each one has its own
database file; the registry of names lives in <DATA_DIR>/datasets.json and
the active dataset id is kept in preferences.
"""

import json
import logging
import re
import secrets
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import preferences
from database import DEFAULT_DATASET_ID, delete_database_for_dataset
from errors import NotFoundError
from settings import get_data_dir

logger = logging.getLogger("lineageweaver.datasets")

DATASET_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")


def registry_path(data_dir: Path | None = None) -> Path:
    return (data_dir or get_data_dir()) / "datasets.json"


def _load_registry() -> dict[str, dict[str, Any]]:
    path = registry_path()
    if not path.exists():
        return {}
    return json.loads(path.read_text(encoding="utf-8"))


def _save_registry(registry: dict[str, dict[str, Any]]) -> None:
    registry_path().write_text(json.dumps(registry, indent=2), encoding="utf-8")


def generate_dataset_id() -> str:
    return f"dataset_{int(time.time() * 1000)}_{secrets.token_hex(4)}"


# ============================================================================
# Active dataset
# ============================================================================

def get_active_dataset_id() -> str:
    return preferences.get_preference(preferences.ACTIVE_DATASET_KEY, DEFAULT_DATASET_ID)


def set_active_dataset_id(dataset_id: str) -> None:
    if dataset_id != DEFAULT_DATASET_ID and get_dataset(dataset_id) is None:
        raise NotFoundError("datasets", dataset_id)
    preferences.set_preference(preferences.ACTIVE_DATASET_KEY, dataset_id)


def clear_active_dataset_id() -> None:
    preferences.remove_preference(preferences.ACTIVE_DATASET_KEY)


# ============================================================================
# Registry CRUD
# ============================================================================

def create_dataset(dataset_data: dict[str, Any]) -> dict[str, Any]:
    dataset_id = dataset_data.get("id") or generate_dataset_id()
    if not DATASET_ID_PATTERN.match(dataset_id):
        raise ValueError(f"Invalid dataset id: {dataset_id}")

    registry = _load_registry()
    if dataset_id in registry:
        raise ValueError(f"Dataset already exists: {dataset_id}")

    timestamp = datetime.now(timezone.utc).isoformat()
    dataset = {
        "id": dataset_id,
        "name": dataset_data.get("name") or "Untitled Dataset",
        "isDefault": bool(dataset_data.get("isDefault", False)),
        "createdAt": timestamp,
        "updatedAt": timestamp,
    }
    registry[dataset_id] = dataset
    _save_registry(registry)
    logger.info(f"Dataset created: {dataset['name']} ({dataset_id})")
    return dataset


def get_all_datasets() -> list[dict[str, Any]]:
    """Datasets oldest first."""
    return sorted(_load_registry().values(), key=lambda d: d.get("createdAt") or "")


def get_dataset(dataset_id: str) -> dict[str, Any] | None:
    return _load_registry().get(dataset_id)


def has_datasets() -> bool:
    return bool(_load_registry())


def update_dataset(dataset_id: str, updates: dict[str, Any]) -> dict[str, Any]:
    registry = _load_registry()
    if dataset_id not in registry:
        raise NotFoundError("datasets", dataset_id)
    changes = {k: v for k, v in updates.items() if k not in ("id", "createdAt")}
    registry[dataset_id] = {
        **registry[dataset_id],
        **changes,
        "updatedAt": datetime.now(timezone.utc).isoformat(),
    }
    _save_registry(registry)
    return registry[dataset_id]


def delete_dataset(dataset_id: str) -> None:
    """Delete a dataset and its database file. The default dataset cannot be deleted."""
    if dataset_id == DEFAULT_DATASET_ID:
        raise ValueError("The default dataset cannot be deleted")
    registry = _load_registry()
    if dataset_id not in registry:
        raise NotFoundError("datasets", dataset_id)

    delete_database_for_dataset(dataset_id)
    del registry[dataset_id]
    _save_registry(registry)

    if get_active_dataset_id() == dataset_id:
        clear_active_dataset_id()
    logger.info(f"Dataset deleted: {dataset_id}")


def ensure_default_dataset() -> dict[str, Any]:
    existing = get_dataset(DEFAULT_DATASET_ID)
    if existing:
        return existing
    return create_dataset({"id": DEFAULT_DATASET_ID, "name": "Default", "isDefault": True})
