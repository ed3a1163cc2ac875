"""
Cloud mirroring for LineageWeaver datasets.
"""

from .client import CloudClient, CloudSyncError
from .retry import (
    DEFAULT_RETRY_CONFIG,
    RetryExhaustedError,
    calculate_delay,
    is_retryable_error,
    retry_with_backoff,
)
from .sync import (
    force_upload_to_cloud,
    get_cloud_client,
    get_sync_status,
    reset_cloud_client,
    set_cloud_client,
    sync_add,
    sync_delete,
    sync_update,
)

__all__ = [
    "CloudClient",
    "CloudSyncError",
    "DEFAULT_RETRY_CONFIG",
    "RetryExhaustedError",
    "calculate_delay",
    "is_retryable_error",
    "retry_with_backoff",
    "force_upload_to_cloud",
    "get_cloud_client",
    "get_sync_status",
    "reset_cloud_client",
    "set_cloud_client",
    "sync_add",
    "sync_delete",
    "sync_update",
]
