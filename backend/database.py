"""Per-dataset document store.

Each dataset gets its own SQLite file ('lineageweaver.db' for the default
dataset, 'lineageweaver_<datasetId>.db' otherwise). Every collection is a
table of JSON documents keyed by an auto-increment integer id, so records
keep the loose, camelCase shape they arrive in.
"""

import json
import logging
import sqlite3
import threading
from pathlib import Path
from typing import Any, Callable

from settings import get_data_dir

logger = logging.getLogger("lineageweaver.database")

DEFAULT_DATASET_ID = "default"

COLLECTIONS = (
    "houses",
    "people",
    "relationships",
    "codexEntries",
    "codexLinks",
    "acknowledgedDuplicates",
    "heraldry",
    "heraldryLinks",
    "dignities",
    "dignityTenures",
    "dignityLinks",
)

GENEALOGY_COLLECTIONS = ("people", "houses", "relationships", "acknowledgedDuplicates")


class DocumentStore:
    """JSON document collections backed by a single SQLite file."""

    def __init__(self, path: str | Path, dataset_id: str = DEFAULT_DATASET_ID):
        self.path = str(path)
        self.dataset_id = dataset_id
        self._lock = threading.RLock()
        self.conn = sqlite3.connect(self.path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA journal_mode = WAL;")
        for collection in COLLECTIONS:
            self.conn.execute(
                f'CREATE TABLE IF NOT EXISTS "{collection}" ('
                "id INTEGER PRIMARY KEY AUTOINCREMENT, data TEXT NOT NULL)"
            )
        self.conn.commit()

    def _check(self, collection: str) -> None:
        if collection not in COLLECTIONS:
            raise ValueError(f"Unknown collection: {collection}")

    @staticmethod
    def _row_to_doc(row: sqlite3.Row) -> dict[str, Any]:
        doc = json.loads(row["data"])
        doc["id"] = row["id"]
        return doc

    def add(self, collection: str, document: dict[str, Any]) -> int:
        """Insert a document and return its new id."""
        self._check(collection)
        data = {k: v for k, v in document.items() if k != "id"}
        with self._lock:
            cursor = self.conn.execute(
                f'INSERT INTO "{collection}" (data) VALUES (?)', (json.dumps(data),)
            )
            self.conn.commit()
            return int(cursor.lastrowid)

    def get(self, collection: str, doc_id: int) -> dict[str, Any] | None:
        self._check(collection)
        with self._lock:
            row = self.conn.execute(
                f'SELECT id, data FROM "{collection}" WHERE id = ?', (doc_id,)
            ).fetchone()
        return self._row_to_doc(row) if row else None

    def all(self, collection: str) -> list[dict[str, Any]]:
        self._check(collection)
        with self._lock:
            rows = self.conn.execute(f'SELECT id, data FROM "{collection}" ORDER BY id').fetchall()
        return [self._row_to_doc(row) for row in rows]

    def filter(self, collection: str, predicate: Callable[[dict[str, Any]], bool]) -> list[dict[str, Any]]:
        return [doc for doc in self.all(collection) if predicate(doc)]

    def where(self, collection: str, field: str, value: Any) -> list[dict[str, Any]]:
        """Documents whose field equals value; list fields match on membership."""
        def matches(doc: dict[str, Any]) -> bool:
            current = doc.get(field)
            if isinstance(current, list):
                return value in current
            return current == value
        return self.filter(collection, matches)

    def update(self, collection: str, doc_id: int, updates: dict[str, Any]) -> int:
        """Merge updates into a document. Returns 1 if updated, 0 if missing."""
        self._check(collection)
        with self._lock:
            existing = self.get(collection, doc_id)
            if existing is None:
                return 0
            existing.update({k: v for k, v in updates.items() if k != "id"})
            existing.pop("id", None)
            self.conn.execute(
                f'UPDATE "{collection}" SET data = ? WHERE id = ?',
                (json.dumps(existing), doc_id),
            )
            self.conn.commit()
            return 1

    def delete(self, collection: str, doc_id: int) -> None:
        self._check(collection)
        with self._lock:
            self.conn.execute(f'DELETE FROM "{collection}" WHERE id = ?', (doc_id,))
            self.conn.commit()

    def clear(self, collection: str) -> None:
        self._check(collection)
        with self._lock:
            self.conn.execute(f'DELETE FROM "{collection}"')
            self.conn.commit()

    def count(self, collection: str) -> int:
        self._check(collection)
        with self._lock:
            row = self.conn.execute(f'SELECT COUNT(*) FROM "{collection}"').fetchone()
        return int(row[0])

    def close(self) -> None:
        with self._lock:
            self.conn.close()


# ============================================================================
# Dataset instance cache
# ============================================================================

_instances: dict[str, DocumentStore] = {}
_instances_lock = threading.Lock()


def database_path(dataset_id: str | None, data_dir: Path | None = None) -> Path:
    """File path for a dataset's database."""
    dataset_id = dataset_id or DEFAULT_DATASET_ID
    directory = data_dir or get_data_dir()
    if dataset_id == DEFAULT_DATASET_ID:
        return directory / "lineageweaver.db"
    return directory / f"lineageweaver_{dataset_id}.db"


def get_database(dataset_id: str | None = None) -> DocumentStore:
    """Return the cached store for a dataset, opening it on first use."""
    dataset_id = dataset_id or DEFAULT_DATASET_ID
    with _instances_lock:
        if dataset_id not in _instances:
            _instances[dataset_id] = DocumentStore(database_path(dataset_id), dataset_id)
            logger.info(f"Opened database for dataset: {dataset_id}")
        return _instances[dataset_id]


def close_database_instance(dataset_id: str | None = None) -> None:
    dataset_id = dataset_id or DEFAULT_DATASET_ID
    with _instances_lock:
        instance = _instances.pop(dataset_id, None)
    if instance:
        instance.close()
        logger.info(f"Closed database for dataset: {dataset_id}")


def close_all_databases() -> None:
    for dataset_id in list(_instances):
        close_database_instance(dataset_id)


def delete_database_for_dataset(dataset_id: str | None = None) -> None:
    """Permanently delete a dataset's database file."""
    dataset_id = dataset_id or DEFAULT_DATASET_ID
    close_database_instance(dataset_id)
    path = database_path(dataset_id)
    for suffix in ("", "-wal", "-shm"):
        candidate = Path(f"{path}{suffix}")
        if candidate.exists():
            candidate.unlink()
    logger.info(f"Deleted database for dataset: {dataset_id}")
