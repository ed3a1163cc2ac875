"""
Local-first cloud mirroring.

Every write lands in the local store first; the helpers here then copy it
to the cloud document store. Per-record sync is best effort: failures are
logged and the local data stands. A full upload raises so callers can turn
the failure into a warning of their own.
"""

import logging
from datetime import datetime, timezone
from typing import Any

import httpx

from database import COLLECTIONS, DocumentStore
from settings import get_cloud_token, get_cloud_url

from .client import CloudClient, CloudSyncError
from .retry import RetryExhaustedError

logger = logging.getLogger("lineageweaver.cloud.sync")

SYNC_ERRORS = (CloudSyncError, RetryExhaustedError, httpx.HTTPError)

# ============================================================================
# Client accessors
# ============================================================================

_cloud_client: CloudClient | None = None
_client_configured = False

_sync_status: dict[str, Any] = {
    "isSyncing": False,
    "lastSyncTime": None,
    "error": None,
}


def set_cloud_client(client: CloudClient | None) -> None:
    """Install the client used for mirroring (None disables sync)."""
    global _cloud_client, _client_configured
    _cloud_client = client
    _client_configured = True


def get_cloud_client() -> CloudClient | None:
    """Return the active client, building one from settings on first use."""
    global _cloud_client, _client_configured
    if not _client_configured:
        url = get_cloud_url()
        _cloud_client = CloudClient(url, token=get_cloud_token()) if url else None
        _client_configured = True
        if _cloud_client:
            logger.info(f"Cloud sync enabled: {url}")
        else:
            logger.info("Cloud sync disabled (no LINEAGEWEAVER_CLOUD_URL)")
    return _cloud_client


def reset_cloud_client() -> None:
    """Close the active client and re-read settings on next use."""
    global _cloud_client, _client_configured
    if _cloud_client:
        _cloud_client.close()
    _cloud_client = None
    _client_configured = False


def _update_status(**updates) -> None:
    _sync_status.update(updates)


def get_sync_status() -> dict[str, Any]:
    return {**_sync_status, "enabled": get_cloud_client() is not None}


# ============================================================================
# Per-record mirroring (best effort)
# ============================================================================

def sync_add(user_id: str | None, dataset_id: str, collection: str, doc_id: int, data: dict[str, Any]) -> bool:
    """Mirror a newly created document. Returns True if the cloud accepted it."""
    client = get_cloud_client()
    if not client or not user_id:
        return False
    try:
        client.put_document(user_id, dataset_id, collection, doc_id, {**data, "id": doc_id})
        return True
    except SYNC_ERRORS as e:
        logger.warning(f"Cloud sync failed for {collection}/{doc_id} (add): {e}")
        _update_status(error=str(e))
        return False


def sync_update(user_id: str | None, dataset_id: str, collection: str, doc_id: int, updates: dict[str, Any]) -> bool:
    client = get_cloud_client()
    if not client or not user_id:
        return False
    try:
        client.patch_document(user_id, dataset_id, collection, doc_id, updates)
        return True
    except SYNC_ERRORS as e:
        logger.warning(f"Cloud sync failed for {collection}/{doc_id} (update): {e}")
        _update_status(error=str(e))
        return False


def sync_delete(user_id: str | None, dataset_id: str, collection: str, doc_id: int) -> bool:
    client = get_cloud_client()
    if not client or not user_id:
        return False
    try:
        client.delete_document(user_id, dataset_id, collection, doc_id)
        return True
    except SYNC_ERRORS as e:
        logger.warning(f"Cloud sync failed for {collection}/{doc_id} (delete): {e}")
        _update_status(error=str(e))
        return False


# ============================================================================
# Full upload
# ============================================================================

def force_upload_to_cloud(user_id: str | None, store: DocumentStore) -> dict[str, Any]:
    """
    Upload every collection of a dataset to the cloud.

    Returns {"status": "skipped", "reason": ...} when sync is not possible,
    otherwise {"status": "success", "uploaded": {collection: count}}.

    Raises:
        CloudSyncError: when any upload fails
    """
    client = get_cloud_client()
    if not user_id:
        return {"status": "skipped", "reason": "no-user"}
    if not client:
        return {"status": "skipped", "reason": "disabled"}

    _update_status(isSyncing=True, error=None)
    uploaded: dict[str, int] = {}
    try:
        for collection in COLLECTIONS:
            documents = store.all(collection)
            for doc in documents:
                client.put_document(user_id, store.dataset_id, collection, doc["id"], doc)
            uploaded[collection] = len(documents)
    except SYNC_ERRORS as e:
        logger.error(f"Force upload failed: {e}")
        _update_status(isSyncing=False, error=str(e))
        status_code = getattr(e, "status_code", None)
        raise CloudSyncError(f"Cloud upload failed: {e}", status_code=status_code) from e

    logger.info(f"Force upload complete for dataset {store.dataset_id}: {uploaded}")
    _update_status(isSyncing=False, lastSyncTime=datetime.now(timezone.utc).isoformat())
    return {"status": "success", "uploaded": uploaded}
